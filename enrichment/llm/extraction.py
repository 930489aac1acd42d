"""Structured extraction: one prompt per company, JSON answer, defaults for every field."""
from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Protocol

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from enrichment.errors import ParseError
from enrichment.schemas import ExtractionOutcome, ExtractionResult, SearchEnrichment, WebsiteScrapeData

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a business intelligence analyst. You extract structured company "
    "facts from website and search evidence and answer with JSON only."
)

RESPONSE_SCHEMA = {
    "company": {"legal_name": "string", "dba": ["string"], "industry": "string", "description": "string"},
    "business": {
        "target_customers": ["string"],
        "funding": ["string"],
        "revenue": "string",
        "founded": "integer year or null",
        "categories": ["string"],
    },
    "people": {
        "executives": [{"name": "string", "title": "string", "linkedin": "string", "email": "string"}],
        "employee_count": "string, e.g. '51-200'",
    },
    "technology": {"platforms": ["string"], "tools": ["string"], "infrastructure": ["string"]},
    "market": {"target_customers": ["string"], "competitors": ["string"], "geographic": ["string"]},
}

MAX_PAGE_SNIPPETS = 5
MAX_SEARCH_RESULTS = 10


class StructuredOracle(Protocol):
    model: str

    def complete(self, prompt: str) -> str:
        ...


class ChatOpenAIOracle:
    """Default oracle backed by langchain-openai's chat model."""

    def __init__(self, *, model: str = "gpt-4o-mini", temperature: float = 0.1,
                 api_key: Optional[str] = None, timeout_s: float = 60.0) -> None:
        self.model = model
        kwargs: Dict[str, Any] = {"model": model, "temperature": temperature, "timeout": timeout_s, "max_retries": 0}
        if api_key:
            kwargs["api_key"] = api_key
        self._chat = ChatOpenAI(**kwargs)

    def complete(self, prompt: str) -> str:
        reply = self._chat.invoke([SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=prompt)])
        content = reply.content
        if isinstance(content, list):
            content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
        return str(content)


def first_json_object(text: str) -> str:
    """Return the first balanced ``{...}`` block, aware of JSON strings and escapes."""
    start = (text or "").find("{")
    if start < 0:
        raise ParseError("no JSON object in oracle response", raw=text)
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    raise ParseError("unbalanced JSON object in oracle response", raw=text)


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {_snake(str(k)): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def _fill(template: Any, value: Any) -> Any:
    if isinstance(template, dict):
        src = value if isinstance(value, dict) else {}
        return {k: _fill(tv, src.get(k)) for k, tv in template.items()}
    if isinstance(template, list):
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return []
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]
    if isinstance(template, str):
        if isinstance(value, str):
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return ""
    return value


def _year(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 1000 <= value <= 2100 else None
    if isinstance(value, str):
        m = re.search(r"\b(1[0-9]{3}|20[0-9]{2})\b", value)
        return int(m.group(1)) if m else None
    return None


def fill_defaults(parsed: Dict[str, Any]) -> ExtractionResult:
    data = _snake_keys(parsed)
    template = ExtractionResult().model_dump()
    filled = _fill(template, data)
    people = data.get("people") if isinstance(data.get("people"), dict) else {}
    executives = []
    for ex in people.get("executives") or []:
        if isinstance(ex, dict) and isinstance(ex.get("name"), str) and ex["name"].strip():
            executives.append({k: _fill("", ex.get(k)) for k in ("name", "title", "linkedin", "email")})
    filled["people"]["executives"] = executives
    business = data.get("business") if isinstance(data.get("business"), dict) else {}
    filled["business"]["founded"] = _year(business.get("founded"))
    return ExtractionResult.model_validate(filled)


def parse_response(raw: str) -> ExtractionResult:
    block = first_json_object(raw)
    try:
        parsed = json.loads(block)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON from oracle: {e}", raw=raw) from e
    if not isinstance(parsed, dict):
        raise ParseError("oracle JSON is not an object", raw=raw)
    return fill_defaults(parsed)


def build_prompt(scrape: Optional[WebsiteScrapeData], search: Optional[SearchEnrichment],
                 *, max_content_chars: int = 4000) -> str:
    lines: List[str] = ["Extract company information from the evidence below.", ""]
    if scrape is not None:
        lines += [
            "WEBSITE",
            f"URL: {scrape.url}",
            f"Title: {scrape.title}",
            f"Description: {scrape.description}",
            f"Technologies detected: {', '.join(scrape.technologies) or 'none'}",
            f"Social links: {json.dumps(scrape.social_links)}",
        ]
        if scrape.emails:
            lines.append("Verified emails (occurrences across pages):")
            lines += [f"  - {e} ({scrape.email_counts.get(e, 1)})" for e in scrape.emails]
        if scrape.phones:
            lines.append("Phone numbers (occurrences across pages); report in E.164 format when possible:")
            lines += [f"  - {p.normalized_value} [{p.source.value}] ({scrape.phone_counts.get(p.normalized_value, 1)})"
                      for p in scrape.phones]
        lines += ["Content excerpt:", scrape.content[:max_content_chars], ""]
        pages = [p for p in scrape.successful_pages if p.extracted_data.title][:MAX_PAGE_SNIPPETS]
        if pages:
            lines.append("Pages:")
            lines += [f"  - [{p.category.value}] {p.url}: {p.extracted_data.title} - {p.extracted_data.description[:200]}"
                      for p in pages]
            lines.append("")
    if search is not None and search.results:
        lines.append("SEARCH RESULTS")
        lines += [f"  - ({r.source}) {r.title}: {r.snippet}" for r in search.results[:MAX_SEARCH_RESULTS]]
        lines.append("")
    lines += [
        "Respond with a single JSON object matching this schema. Use empty strings or empty lists when unknown:",
        json.dumps(RESPONSE_SCHEMA, indent=2),
    ]
    return "\n".join(lines)


class StructuredExtractionClient:
    def __init__(self, oracle: Optional[StructuredOracle], *, max_content_chars: int = 4000) -> None:
        self.oracle = oracle
        self.max_content_chars = max_content_chars

    @property
    def configured(self) -> bool:
        return self.oracle is not None

    def extract(self, scrape: Optional[WebsiteScrapeData], search: Optional[SearchEnrichment]) -> ExtractionOutcome:
        """Ask the oracle once. Oracle or parse failures yield ``parsed=None`` with the error recorded."""
        prompt = build_prompt(scrape, search, max_content_chars=self.max_content_chars)
        outcome = ExtractionOutcome(model=getattr(self.oracle, "model", ""), prompt=prompt)
        if self.oracle is None:
            outcome.parsing_errors.append("structured extraction oracle not configured")
            return outcome
        started = time.time()
        try:
            outcome.raw_response = self.oracle.complete(prompt)
            outcome.parsed = parse_response(outcome.raw_response)
        except ParseError as e:
            logger.warning("oracle response could not be parsed: %s", e)
            outcome.parsing_errors.append(str(e))
        except Exception as e:  # provider/network errors degrade the stage, they do not fail the job
            logger.warning("oracle call failed: %s", e)
            outcome.parsing_errors.append(f"{type(e).__name__}: {e}")
        outcome.duration_ms = int((time.time() - started) * 1000)
        return outcome
