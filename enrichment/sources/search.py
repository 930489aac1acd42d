"""Google Custom Search enrichment: templated queries, source scoring, signal regexes."""
from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from enrichment.errors import FetchError
from enrichment.pipeline.domain import company_name_from_domain
from enrichment.schemas import QueryOutcome, SearchEnrichment, SearchResultItem, SearchSignals

logger = logging.getLogger(__name__)

CSE_URL = "https://www.googleapis.com/customsearch/v1"

QUERY_TEMPLATES = [
    '"{name}" site:linkedin.com',
    '"{name}" site:crunchbase.com',
    '"{name}" news press release',
    '"{name}" funding investment',
    '"{name}" reviews ratings',
    '"{name}" tech stack',
    '"{name}" careers jobs',
]

SOURCE_WEIGHTS: Dict[str, float] = {
    "LinkedIn": 0.9,
    "Crunchbase": 0.8,
    "Glassdoor": 0.7,
    "News": 0.6,
    "Careers": 0.5,
    "Blog": 0.4,
    "GitHub": 0.3,
    "StackOverflow": 0.2,
    "Other": 0.1,
}

_NEWS_HOSTS = ("news", "techcrunch", "reuters", "bloomberg", "forbes", "businesswire", "prnewswire", "venturebeat")

EMPLOYEE_RE = re.compile(r"(\d+(?:,\d+)?(?:\s*-\s*\d+(?:,\d+)?)?\+?)\s*(?:employees?|people|staff)", re.IGNORECASE)
FUNDING_RE = re.compile(r"(?:raised|funding|investment|series\s+[a-z])\s*(?:of\s*)?\$?(\d+(?:\.\d+)?\s*[kmb]?)\b", re.IGNORECASE)


def classify_source(link: str) -> str:
    p = urlparse(link)
    host = (p.hostname or "").lower()
    path = (p.path or "").lower()
    if "linkedin.com" in host:
        return "LinkedIn"
    if "crunchbase.com" in host:
        return "Crunchbase"
    if "glassdoor." in host:
        return "Glassdoor"
    if "github.com" in host:
        return "GitHub"
    if "stackoverflow.com" in host:
        return "StackOverflow"
    if any(h in host for h in _NEWS_HOSTS) or "/news" in path or "/press" in path:
        return "News"
    if "careers" in host or "jobs" in host or "/careers" in path or "/jobs" in path:
        return "Careers"
    if "blog" in host or "/blog" in path or "medium.com" in host:
        return "Blog"
    return "Other"


def _published_at(item: dict) -> Optional[datetime]:
    metatags = (item.get("pagemap") or {}).get("metatags") or []
    if not metatags or not isinstance(metatags[0], dict):
        return None
    raw = metatags[0].get("article:published_time")
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def score_result(item: dict, source: str, now: Optional[datetime] = None) -> float:
    score = SOURCE_WEIGHTS.get(source, SOURCE_WEIGHTS["Other"])
    published = _published_at(item)
    if published is not None:
        age_days = ((now or datetime.now(timezone.utc)) - published).days
        if age_days < 30:
            score += 0.2
        elif age_days < 90:
            score += 0.1
    if len(item.get("snippet") or "") > 100:
        score += 0.1
    return round(min(score, 1.0), 3)


def extract_signals(results: List[SearchResultItem]) -> SearchSignals:
    signals = SearchSignals()
    for r in results:
        text = f"{r.title} {r.snippet}"
        if signals.employee_count is None:
            m = EMPLOYEE_RE.search(text)
            if m:
                signals.employee_count = m.group(1).replace(" ", "")
        if signals.funding is None:
            m = FUNDING_RE.search(text)
            if m:
                signals.funding = m.group(1).replace(" ", "").upper()
        if r.source == "News" and r.title:
            signals.news.append(r.title)
        if r.source == "Glassdoor" and r.title:
            signals.reviews.append(r.title)
    return signals


class ExternalSearchEnricher:
    def __init__(
        self,
        *,
        api_key: Optional[str],
        engine_id: Optional[str],
        results_per_query: int = 10,
        delay_s: float = 1.0,
        timeout_s: float = 10.0,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.engine_id = engine_id
        self.results_per_query = results_per_query
        self.delay_s = delay_s
        self._client = client or httpx.Client(timeout=timeout_s)
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.engine_id)

    def close(self) -> None:
        self._client.close()

    def search(self, query: str) -> List[dict]:
        params = {"key": self.api_key, "cx": self.engine_id, "q": query, "num": self.results_per_query}
        try:
            resp = self._client.get(CSE_URL, params=params)
        except httpx.HTTPError as e:
            raise FetchError(f"search request failed: {e}", url=CSE_URL) from e
        if resp.status_code != 200:
            raise FetchError(f"search API returned HTTP {resp.status_code}", url=CSE_URL, status_code=resp.status_code)
        try:
            payload = resp.json()
        except ValueError as e:
            raise FetchError(f"search API returned invalid JSON: {e}", url=CSE_URL) from e
        if not isinstance(payload, dict):
            raise FetchError(f"search API returned {type(payload).__name__}, expected an object", url=CSE_URL)
        items = payload.get("items") or []
        if not isinstance(items, list):
            raise FetchError("search API items is not a list", url=CSE_URL)
        return [item for item in items if isinstance(item, dict)]

    def enrich(self, domain: str, company_name: Optional[str] = None) -> SearchEnrichment:
        """Run all query templates sequentially; individual query failures are recorded, not raised."""
        name = (company_name or "").strip() or company_name_from_domain(domain)
        outcomes: List[QueryOutcome] = []
        by_link: Dict[str, SearchResultItem] = {}
        now = datetime.now(timezone.utc)

        for i, template in enumerate(QUERY_TEMPLATES):
            if i > 0 and self.delay_s > 0:
                self._sleep(self.delay_s)
            query = template.format(name=name)
            started = time.time()
            try:
                items = self.search(query)
            except FetchError as e:
                logger.warning("search query failed (%s): %s", query, e)
                outcomes.append(QueryOutcome(query=query, success=False, error=str(e),
                                             duration_ms=int((time.time() - started) * 1000)))
                continue
            results: List[SearchResultItem] = []
            for item in items:
                link = item.get("link")
                if not link:
                    continue
                source = classify_source(link)
                results.append(SearchResultItem(
                    title=item.get("title") or "",
                    link=link,
                    snippet=item.get("snippet") or "",
                    source=source,
                    relevance=score_result(item, source, now),
                ))
            for r in results:
                key = r.link.lower()
                if key not in by_link or by_link[key].relevance < r.relevance:
                    by_link[key] = r
            outcomes.append(QueryOutcome(query=query, success=True, result_count=len(results), results=results,
                                         duration_ms=int((time.time() - started) * 1000)))

        ranked = sorted(by_link.values(), key=lambda r: r.relevance, reverse=True)
        return SearchEnrichment(company_name=name, results=ranked, extracted=extract_signals(ranked), queries=outcomes)
