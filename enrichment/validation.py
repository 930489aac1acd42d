"""Data-quality validation for scrape output, oracle output and consolidated records."""
from __future__ import annotations

import re
from collections import OrderedDict
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from enrichment.pipeline.extractors import EMAIL_PATTERN, normalize_phone
from enrichment.schemas import (
    ConsolidatedCompanyRecord,
    ExtractionResult,
    QualityReport,
    Severity,
    ValidationIssue,
    WebsiteScrapeData,
)

SEVERITY_PENALTY = {Severity.ERROR: 15, Severity.WARNING: 10, Severity.INFO: 5}
_SEVERITY_ORDER = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFO: 2}
VALID_THRESHOLD = 70

EMPLOYEE_COUNT_PATTERNS = [
    re.compile(r"^\d+$"),
    re.compile(r"^\d+\s*-\s*\d+$"),
    re.compile(r"^\d+\+$"),
    re.compile(r"^under \d+$", re.I),
    re.compile(r"^over \d+$", re.I),
]

GENERAL_SUGGESTIONS = [
    "Re-run enrichment with headless rendering enabled for JavaScript-heavy sites",
    "Configure external search to corroborate company facts",
]


def score_issues(issues: Iterable[ValidationIssue]) -> int:
    return max(0, 100 - sum(SEVERITY_PENALTY[i.severity] for i in issues))


def confidence_band(score: int) -> str:
    if score >= 80:
        return "high"
    if score >= 60:
        return "medium"
    return "low"


def _is_valid_url(value: Optional[str]) -> bool:
    if not value:
        return False
    p = urlparse(value)
    return p.scheme in ("http", "https") and bool(p.netloc) and "." in p.netloc


def _is_valid_phone(value: str) -> bool:
    digits = normalize_phone(value).lstrip("+")
    return 7 <= len(digits) <= 15


def build_report(issues: List[ValidationIssue]) -> QualityReport:
    ordered = sorted(issues, key=lambda i: (_SEVERITY_ORDER[i.severity], i.field))
    score = score_issues(ordered)
    grouped: "OrderedDict[str, List[str]]" = OrderedDict()
    for issue in ordered:
        top = issue.field.split(".", 1)[0]
        bucket = grouped.setdefault(top, [])
        if issue.suggestion and issue.suggestion not in bucket:
            bucket.append(issue.suggestion)
    suggestions = [
        f"Focus on improving {field} extraction and validation" + (f": {'; '.join(hints)}" if hints else "")
        for field, hints in grouped.items()
    ]
    if ordered:
        suggestions.extend(GENERAL_SUGGESTIONS)
    return QualityReport(score=score, is_valid=score >= VALID_THRESHOLD, confidence=confidence_band(score),
                         issues=ordered, suggestions=suggestions)


class DataValidator:
    """Stateless validator; each shape has its own rule set and shares one scoring primitive."""

    def validate_website_data(self, data: WebsiteScrapeData) -> QualityReport:
        issues: List[ValidationIssue] = []
        if data.status != "success":
            issues.append(ValidationIssue(field="website.status", issue="Website scraping failed",
                                          severity=Severity.ERROR, suggestion="Check domain reachability",
                                          data=data.error))
        if len(data.title.strip()) < 5:
            issues.append(ValidationIssue(field="website.title", issue="Title missing or too short",
                                          severity=Severity.WARNING, suggestion="Extract title from h1 or og:title"))
        if len(data.description.strip()) < 20:
            issues.append(ValidationIssue(field="website.description", issue="Description missing or too short",
                                          severity=Severity.WARNING, suggestion="Use meta or first paragraph text"))
        if not data.technologies:
            issues.append(ValidationIssue(field="website.technologies", issue="No technologies detected",
                                          severity=Severity.INFO))
        if not data.emails and not data.phones:
            issues.append(ValidationIssue(field="website.contact", issue="No contact information found",
                                          severity=Severity.INFO, suggestion="Crawl contact pages"))
        return build_report(issues)

    def validate_extraction(self, result: Optional[ExtractionResult]) -> QualityReport:
        issues: List[ValidationIssue] = []
        if result is None:
            issues.append(ValidationIssue(field="extraction", issue="Structured extraction unavailable",
                                          severity=Severity.ERROR, suggestion="Check oracle configuration and output"))
            return build_report(issues)
        if not result.company.legal_name:
            issues.append(ValidationIssue(field="company.legal_name", issue="Legal name missing",
                                          severity=Severity.ERROR, suggestion="Provide more about-page context"))
        if not result.company.industry:
            issues.append(ValidationIssue(field="company.industry", issue="Industry missing",
                                          severity=Severity.WARNING))
        if not result.business.target_customers:
            issues.append(ValidationIssue(field="business.target_customers", issue="Target customers missing",
                                          severity=Severity.INFO))
        if not result.technology.platforms:
            issues.append(ValidationIssue(field="technology.platforms", issue="Platforms missing",
                                          severity=Severity.WARNING))
        return build_report(issues)

    def validate_record(self, record: ConsolidatedCompanyRecord) -> QualityReport:
        issues: List[ValidationIssue] = []
        name = record.company_name.strip()
        if not name:
            issues.append(ValidationIssue(field="company_name", issue="Company name missing",
                                          severity=Severity.ERROR, suggestion="Fall back to page title or domain"))
        elif len(name) < 3:
            issues.append(ValidationIssue(field="company_name", issue="Company name suspiciously short",
                                          severity=Severity.WARNING, data=name))
        if not _is_valid_url(record.website):
            issues.append(ValidationIssue(field="website", issue="Website URL invalid",
                                          severity=Severity.ERROR, data=record.website))
        if len(record.description.strip()) < 20:
            issues.append(ValidationIssue(field="description", issue="Description missing or too short",
                                          severity=Severity.WARNING, suggestion="Use about page content"))

        email = record.contact.email
        if email is None:
            issues.append(ValidationIssue(field="contact.email", issue="No verified email",
                                          severity=Severity.WARNING, suggestion="Crawl contact pages for mailto links"))
        elif not EMAIL_PATTERN.fullmatch(email):
            issues.append(ValidationIssue(field="contact.email", issue="Email format invalid",
                                          severity=Severity.ERROR, data=email))
        phone = record.contact.phone
        if phone is None:
            issues.append(ValidationIssue(field="contact.phone", issue="No phone number",
                                          severity=Severity.WARNING, suggestion="Look for tel: links and schema.org data"))
        elif not _is_valid_phone(phone):
            issues.append(ValidationIssue(field="contact.phone", issue="Phone format invalid",
                                          severity=Severity.WARNING, data=phone))
        if not record.contact.address:
            issues.append(ValidationIssue(field="contact.address", issue="Address incomplete",
                                          severity=Severity.INFO))

        if not record.business.industry:
            issues.append(ValidationIssue(field="business.industry", issue="Industry missing",
                                          severity=Severity.WARNING))
        rng = record.business.employee_range
        if rng and not any(p.match(rng.strip()) for p in EMPLOYEE_COUNT_PATTERNS):
            issues.append(ValidationIssue(field="business.employee_range", issue="Employee count format unclear",
                                          severity=Severity.INFO, data=rng))

        if not record.technology.platforms:
            issues.append(ValidationIssue(field="technology.platforms", issue="No platforms identified",
                                          severity=Severity.WARNING))
        elif any(not p.strip() for p in record.technology.platforms):
            issues.append(ValidationIssue(field="technology.platforms", issue="Empty platform entry",
                                          severity=Severity.WARNING))
        if not record.market.target_customers:
            issues.append(ValidationIssue(field="market.target_customers", issue="Target customers missing",
                                          severity=Severity.INFO))
        return build_report(issues)
