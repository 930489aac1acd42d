"""Multi-source consolidation.

``merge_fields`` is a pure function: given named source trees and an ordered
list of precedence rules it returns the merged record and the conflicts it
observed. ``DataConsolidator`` builds the source trees from the pipeline's
stage outputs and feeds them through the rule table.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from enrichment.pipeline.domain import company_name_from_domain, normalize_domain
from enrichment.pipeline.extractors import clean_company_name
from enrichment.schemas import (
    ConsolidatedCompanyRecord,
    ExtractionResult,
    SearchEnrichment,
    WebsiteScrapeData,
)

logger = logging.getLogger(__name__)

DEFAULT_INDUSTRY = "Technology"

FIRST = "first"
UNION = "union"


@dataclass(frozen=True)
class PrecedenceRule:
    field: str
    candidates: Tuple[str, ...]
    strategy: str = FIRST
    default: Any = None
    compare: Tuple[str, ...] = ()


def _lookup(sources: Mapping[str, Any], path: str) -> Any:
    node: Any = sources
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, (list, tuple, set)):
        return frozenset(str(v).strip().lower() for v in value if not _is_empty(v))
    return value


def _union(values: Sequence[Any]) -> List[Any]:
    out: List[Any] = []
    seen: set = set()
    for v in values:
        items = v if isinstance(v, (list, tuple)) else [v]
        for item in items:
            if _is_empty(item):
                continue
            key = item.strip().lower() if isinstance(item, str) else repr(item)
            if key not in seen:
                seen.add(key)
                out.append(item)
    return out


def _assign(record: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = record
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def merge_fields(sources: Mapping[str, Any], rules: Sequence[PrecedenceRule]) -> Tuple[Dict[str, Any], List[str]]:
    record: Dict[str, Any] = {}
    conflicts: List[str] = []
    for rule in rules:
        values = [_lookup(sources, c) for c in rule.candidates]
        if rule.strategy == UNION:
            merged = _union(values)
            value = merged if merged else rule.default
        else:
            value = next((v for v in values if not _is_empty(v)), rule.default)
        _assign(record, rule.field, value)

        if rule.compare:
            seen = [(p, _lookup(sources, p)) for p in rule.compare]
            present = [(p, v) for p, v in seen if not _is_empty(v)]
            if len({_comparable(v) for _, v in present}) > 1:
                detail = " vs ".join(f"{p}={v!r}" for p, v in present)
                conflicts.append(f"{rule.field}: {detail}")
    return record, conflicts


CONSOLIDATION_RULES: Tuple[PrecedenceRule, ...] = (
    PrecedenceRule("company_name", ("oracle.company.legal_name", "scrape.company_name", "domain.company_name"),
                   default="", compare=("scrape.company_name", "oracle.company.legal_name")),
    PrecedenceRule("legal_name", ("oracle.company.legal_name",)),
    PrecedenceRule("dba", ("oracle.company.dba",), strategy=UNION, default=[]),
    PrecedenceRule("description", ("oracle.company.description", "scrape.description"), default=""),
    PrecedenceRule("founded", ("oracle.business.founded",)),
    PrecedenceRule("contact.email", ("scrape.primary_email",), compare=("scrape.emails", "oracle.emails")),
    PrecedenceRule("contact.phone", ("scrape.primary_phone",)),
    PrecedenceRule("contact.social_media", ("scrape.social",), default={}),
    PrecedenceRule("business.industry", ("oracle.company.industry",), default=DEFAULT_INDUSTRY),
    PrecedenceRule("business.employee_range", ("oracle.people.employee_count", "search.employee_count")),
    PrecedenceRule("business.revenue", ("oracle.business.revenue",)),
    PrecedenceRule("business.funding", ("oracle.business.funding", "search.funding"), default=[]),
    PrecedenceRule("business.categories", ("oracle.business.categories",), strategy=UNION, default=[]),
    PrecedenceRule("technology.platforms", ("oracle.technology.platforms", "scrape.technologies"),
                   strategy=UNION, default=[]),
    PrecedenceRule("technology.tools", ("oracle.technology.tools",), strategy=UNION, default=[]),
    PrecedenceRule("technology.infrastructure", ("oracle.technology.infrastructure",), strategy=UNION, default=[]),
    PrecedenceRule("people.executives", ("oracle.people.executives",), default=[]),
    PrecedenceRule("market.target_customers", ("oracle.market.target_customers", "oracle.business.target_customers"),
                   strategy=UNION, default=[]),
    PrecedenceRule("market.competitors", ("oracle.market.competitors",), strategy=UNION, default=[]),
    PrecedenceRule("market.geographic", ("oracle.market.geographic",), strategy=UNION, default=[]),
    PrecedenceRule("market.keywords", ("scrape.keywords",), strategy=UNION, default=[]),
)


def parse_employee_count(value: Optional[str]) -> Optional[int]:
    """Exact headcounts only ("250", "1,200"); ranges stay in employee_range."""
    if not value:
        return None
    s = value.replace(",", "").strip()
    return int(s) if re.fullmatch(r"\d+", s) else None


def build_sources(
    domain: str,
    scrape: Optional[WebsiteScrapeData],
    search: Optional[SearchEnrichment],
    extraction: Optional[ExtractionResult],
) -> Dict[str, Any]:
    sources: Dict[str, Any] = {"domain": {"company_name": company_name_from_domain(domain)}}
    if scrape is not None:
        sources["scrape"] = {
            "company_name": clean_company_name(scrape.title),
            "description": scrape.description,
            "emails": list(scrape.emails),
            "primary_email": scrape.emails[0] if scrape.emails else None,
            "primary_phone": scrape.phones[0].normalized_value if scrape.phones else None,
            "technologies": list(scrape.technologies),
            "social": dict(scrape.social_links),
            "keywords": list(scrape.keywords),
        }
    if search is not None:
        sources["search"] = {
            "employee_count": search.extracted.employee_count,
            "funding": [search.extracted.funding] if search.extracted.funding else [],
        }
    if extraction is not None:
        oracle = extraction.model_dump()
        oracle["emails"] = [ex.email.lower() for ex in extraction.people.executives if ex.email]
        sources["oracle"] = oracle
    return sources


class DataConsolidator:
    def __init__(self, rules: Sequence[PrecedenceRule] = CONSOLIDATION_RULES) -> None:
        self.rules = tuple(rules)

    def consolidate(
        self,
        domain: str,
        scrape: Optional[WebsiteScrapeData],
        search: Optional[SearchEnrichment],
        extraction: Optional[ExtractionResult],
    ) -> Tuple[ConsolidatedCompanyRecord, List[str]]:
        normalized = normalize_domain(domain)
        merged, conflicts = merge_fields(build_sources(normalized, scrape, search, extraction), self.rules)
        for c in conflicts:
            logger.warning("consolidation conflict for %s: %s", normalized, c)

        merged["website"] = f"https://{normalized}"
        business = merged.setdefault("business", {})
        headcount = parse_employee_count(business.get("employee_range"))
        business["employee_count"] = headcount
        merged.setdefault("people", {})["total_employees"] = headcount
        merged["sources"] = {
            "website": scrape is not None,
            "search": search is not None and bool(search.results),
            "extraction": extraction is not None,
        }
        return ConsolidatedCompanyRecord.model_validate(merged), conflicts
