"""Downstream marketing artifacts derived from a consolidated record."""
from __future__ import annotations

from typing import List, Optional

from enrichment.pipeline.roles import DecisionLevel, classify_role
from enrichment.schemas import ConsolidatedCompanyRecord, ContactPriority, MarketingData, WebsiteScrapeData

MAX_LEAD_SCORE = 100
MAX_CONTACT_PRIORITIES = 10


def _headcount(record: ConsolidatedCompanyRecord) -> Optional[int]:
    if record.business.employee_count is not None:
        return record.business.employee_count
    rng = (record.business.employee_range or "").replace(",", "")
    digits = [int(p) for p in rng.replace("+", " ").replace("-", " ").split() if p.isdigit()]
    return max(digits) if digits else None


def lead_score(record: ConsolidatedCompanyRecord) -> int:
    score = 0
    employees = _headcount(record)
    if employees is not None:
        if employees > 1000:
            score += 30
        elif employees > 100:
            score += 20
        elif employees > 10:
            score += 10
    if record.business.funding:
        score += 20
    if len(record.technology.platforms) > 5:
        score += 15
    if record.people.executives:
        score += 15
    if record.contact.email:
        score += 10
    if record.contact.phone:
        score += 10
    return min(score, MAX_LEAD_SCORE)


def target_segments(record: ConsolidatedCompanyRecord) -> List[str]:
    segments: List[str] = []
    if record.business.industry:
        segments.append(f"industry:{record.business.industry}")
    employees = _headcount(record)
    if employees is not None:
        size = "enterprise" if employees > 1000 else "mid-market" if employees > 100 else "smb"
        segments.append(f"size:{size}")
    segments += [f"customer:{c}" for c in record.market.target_customers]
    segments += [f"region:{g}" for g in record.market.geographic]
    if record.business.funding:
        segments.append("funded")
    return segments


def contact_priorities(record: ConsolidatedCompanyRecord) -> List[ContactPriority]:
    """Executives ordered founder/CEO first, then C-level, then VP/director."""
    ranked = []
    for idx, ex in enumerate(record.people.executives):
        level, _reasons = classify_role(ex.title)
        if level <= DecisionLevel.NON_DM:
            continue
        ranked.append((-int(level), idx, ex, level))
    ranked.sort(key=lambda t: (t[0], t[1]))
    return [
        ContactPriority(name=ex.name, title=ex.title, level=level.name,
                        email=ex.email or None, linkedin=ex.linkedin or None)
        for _, _, ex, level in ranked[:MAX_CONTACT_PRIORITIES]
    ]


def prepare_marketing_data(record: ConsolidatedCompanyRecord,
                           scrape: Optional[WebsiteScrapeData] = None) -> MarketingData:
    technologies = list(record.technology.platforms)
    if scrape is not None:
        technologies += [t for t in scrape.technologies if t not in technologies]
    return MarketingData(
        lead_score=lead_score(record),
        target_segments=target_segments(record),
        tech_based_targeting=[f"uses:{t}" for t in technologies],
        competitor_analysis=[f"competitor:{c}" for c in record.market.competitors],
        contact_priorities=contact_priorities(record),
    )
