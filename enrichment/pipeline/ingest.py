from __future__ import annotations

import logging
import time
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional

from enrichment.errors import FetchError
from enrichment.schemas import ContactCandidate, PageRecord, WebsiteScrapeData
from .discovery import PageDiscoverer, categorize_url
from .domain import normalize_domain
from .extractors import rank_phones
from .scraper import PageScraper

logger = logging.getLogger(__name__)

MERGED_CONTENT_CHARS = 8000


class WebsiteIngestor:
    """Crawl stage: discover pages, scrape them concurrently, merge per-page signals.

    Each page future is joined on its own; a failure or timeout on one page
    becomes a ``failed`` PageRecord and never affects its siblings.
    """

    def __init__(
        self,
        *,
        discoverer: Optional[PageDiscoverer] = None,
        scraper: Optional[PageScraper] = None,
        max_workers: int = 4,
        page_timeout_s: Optional[float] = 60.0,
    ) -> None:
        self.discoverer = discoverer or PageDiscoverer()
        self.scraper = scraper or PageScraper()
        self.max_workers = max(1, int(max_workers))
        self.page_timeout_s = page_timeout_s

    def run(self, domain: str, max_pages: Optional[int] = None) -> WebsiteScrapeData:
        normalized = normalize_domain(domain)
        discovery = self.discoverer.discover(normalized, max_pages=max_pages)
        urls = discovery.summary.prioritized
        if not urls:
            raise FetchError(f"No pages discovered for {normalized}", url=discovery.summary.base_url)

        records: List[PageRecord] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures: Dict[str, Future[PageRecord]] = {
                url: pool.submit(
                    self.scraper.scrape,
                    url,
                    category=categorize_url(url),
                    prefetched=discovery.responses.get(url),
                )
                for url in urls
            }
            for url, fut in futures.items():
                started = time.time()
                try:
                    records.append(fut.result(timeout=self.page_timeout_s))
                except Exception as e:  # contain any per-page failure, including timeouts
                    logger.warning("page scrape failed for %s: %s", url, e)
                    records.append(PageRecord(
                        url=url,
                        category=categorize_url(url),
                        status="failed",
                        duration_ms=int((time.time() - started) * 1000),
                        error=f"{type(e).__name__}: {e}",
                    ))

        data = merge_pages(f"https://{normalized}", records)
        data.discovery = discovery.summary
        if not data.successful_pages:
            raise FetchError(f"No pages could be scraped successfully for {normalized}",
                             url=discovery.summary.base_url)
        logger.info("scraped %d/%d pages for %s", len(data.successful_pages), len(records), normalized)
        return data


def merge_pages(url: str, records: List[PageRecord]) -> WebsiteScrapeData:
    """Fold page records (already in priority order) into one scrape summary."""
    ok = [r for r in records if r.ok]
    title = next((r.extracted_data.title for r in ok if r.extracted_data.title), "")
    description = next((r.extracted_data.description for r in ok if r.extracted_data.description), "")

    keywords: List[str] = []
    seen_kw: set[str] = set()
    technologies: List[str] = []
    social: Dict[str, str] = {}
    emails: List[str] = []
    email_counts: Counter[str] = Counter()
    phone_counts: Counter[str] = Counter()
    phones: List[ContactCandidate] = []
    content_parts: List[str] = []

    for r in ok:
        d = r.extracted_data
        for kw in d.keywords:
            if kw.lower() not in seen_kw:
                seen_kw.add(kw.lower())
                keywords.append(kw)
        for tech in d.technologies:
            if tech not in technologies:
                technologies.append(tech)
        for platform, link in d.social_links.items():
            social.setdefault(platform, link)
        for e in d.emails:
            email_counts[e] += 1
            if e not in emails:
                emails.append(e)
        for p in d.phones:
            phone_counts[p.normalized_value] += 1
        phones.extend(d.phones)
        if d.content:
            content_parts.append(d.content)

    return WebsiteScrapeData(
        url=url,
        title=title,
        description=description,
        keywords=keywords[:50],
        content=" ".join(content_parts)[:MERGED_CONTENT_CHARS],
        social_links=social,
        emails=emails,
        phones=rank_phones(phones),
        email_counts=dict(email_counts),
        phone_counts=dict(phone_counts),
        technologies=technologies,
        page_results=records,
        status="success" if ok else "failed",
        error=None if ok else "no successful pages",
    )
