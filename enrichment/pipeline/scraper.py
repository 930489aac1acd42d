from __future__ import annotations

import logging
import time
from typing import List, Optional

from enrichment.errors import FetchError
from enrichment.schemas import PageCategory, PageData, PageRecord
from .domain import normalize_url
from .escalation import SpaDetector, detect_spa_shell
from .extractors import (
    ContactExtractor,
    KeywordSignalExtractor,
    SocialSignalExtractor,
    TechnologySignalExtractor,
    extract_description,
    extract_title,
    parse_page,
)
from .fetchers.base import FetchResult, PageFetcher
from .fetchers.static import StaticFetcher

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 5000


class PageScraper:
    """Fetch one page (static first, headless when the SPA predicate fires) and extract signals."""

    def __init__(
        self,
        *,
        static_fetcher: Optional[PageFetcher] = None,
        headless_fetcher: Optional[PageFetcher] = None,
        spa_detector: SpaDetector = detect_spa_shell,
        enable_headless: bool = True,
        contact_extractor: Optional[ContactExtractor] = None,
        technology_extractor: Optional[TechnologySignalExtractor] = None,
        social_extractor: Optional[SocialSignalExtractor] = None,
        keyword_extractor: Optional[KeywordSignalExtractor] = None,
    ) -> None:
        self.static_fetcher = static_fetcher or StaticFetcher()
        self.headless_fetcher = headless_fetcher
        self.spa_detector = spa_detector
        self.enable_headless = bool(enable_headless) and headless_fetcher is not None
        self.contact_extractor = contact_extractor or ContactExtractor()
        self.technology_extractor = technology_extractor or TechnologySignalExtractor()
        self.social_extractor = social_extractor or SocialSignalExtractor()
        self.keyword_extractor = keyword_extractor or KeywordSignalExtractor()

    def _maybe_render(self, fetch: FetchResult) -> tuple[FetchResult, List[str]]:
        decision = self.spa_detector(fetch)
        if not decision.escalate or not self.enable_headless:
            return fetch, decision.reasons
        rendered = self.headless_fetcher.fetch(fetch.url)  # type: ignore[union-attr]
        if rendered.error or not rendered.html:
            logger.info("headless render failed for %s, keeping static HTML: %s", fetch.url, rendered.error)
            return fetch, decision.reasons
        return rendered, decision.reasons

    def extract(self, url: str, html: str) -> PageData:
        page = parse_page(url, html)
        emails, phones = self.contact_extractor.extract(page)
        return PageData(
            title=extract_title(page),
            description=extract_description(page),
            content=page.text[:MAX_CONTENT_CHARS],
            technologies=[s.value for s in self.technology_extractor.extract(page)],
            social_links={s.source: s.value for s in self.social_extractor.extract(page)},
            keywords=[s.value for s in self.keyword_extractor.extract(page)],
            emails=emails,
            phones=phones,
        )

    def scrape(
        self,
        url: str,
        *,
        category: PageCategory = PageCategory.OTHER,
        prefetched: Optional[FetchResult] = None,
    ) -> PageRecord:
        started = time.time()
        record_url = normalize_url(url)

        def elapsed() -> int:
            return int((time.time() - started) * 1000)

        try:
            fetch = prefetched or self.static_fetcher.fetch(url)
        except FetchError as e:
            logger.warning("fetch failed for %s: %s", url, e)
            return PageRecord(url=record_url, category=category, status="failed",
                              duration_ms=elapsed(), error=str(e))
        if fetch.blocked_by_robots:
            return PageRecord(url=record_url, category=category, status="failed",
                              duration_ms=elapsed(), error="blocked by robots.txt")
        if not fetch.is_html_ok:
            return PageRecord(url=record_url, category=category, status="failed", http_status=fetch.status_code,
                              duration_ms=elapsed(), error=f"HTTP {fetch.status_code} ({fetch.mime})")

        final, reasons = self._maybe_render(fetch)
        data = self.extract(final.url or url, final.html or "")
        return PageRecord(
            url=record_url,
            category=category,
            status="success",
            method="headless" if final.method == "headless" else "static",
            http_status=final.status_code,
            duration_ms=elapsed(),
            escalation_reasons=reasons,
            extracted_data=data,
        )
