"""
Bounded breadth-first page discovery for a company website.

Frontier = root + fixed seed paths + sitemap URLs (robots.txt ``Sitemap:``
directives and common sitemap paths). A URL counts as discovered only after a
live fetch returns 2xx text/html; error pages are still mined for links.
"""
from __future__ import annotations

import logging
import re
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set
from urllib.parse import urljoin, urlparse

from selectolax.parser import HTMLParser

from enrichment.errors import FetchError
from enrichment.schemas import DiscoverySummary, PageCategory
from .domain import normalize_domain, normalize_url, same_host
from .fetchers.base import FetchResult
from .fetchers.static import StaticFetcher

logger = logging.getLogger(__name__)

SEED_PATHS = [
    "/",
    "/about",
    "/about-us",
    "/company",
    "/contact",
    "/contact-us",
    "/services",
    "/products",
    "/team",
    "/our-team",
    "/blog",
]

SITEMAP_PATHS = ["/sitemap.xml", "/sitemap_index.xml"]

# Bucket precedence used to flatten the categorized map
CATEGORY_ORDER = [
    PageCategory.HOME,
    PageCategory.ABOUT,
    PageCategory.CONTACT,
    PageCategory.SERVICES,
    PageCategory.PRODUCTS,
    PageCategory.TEAM,
    PageCategory.BLOG,
    PageCategory.OTHER,
]

CATEGORY_KEYWORDS: list[tuple[PageCategory, tuple[str, ...]]] = [
    (PageCategory.ABOUT, ("about", "company", "who-we-are", "our-story", "mission")),
    (PageCategory.CONTACT, ("contact", "get-in-touch", "locations", "support")),
    (PageCategory.SERVICES, ("services", "service", "solutions", "what-we-do")),
    (PageCategory.PRODUCTS, ("products", "product", "shop", "store", "pricing", "features")),
    (PageCategory.TEAM, ("team", "people", "leadership", "staff", "management", "careers")),
    (PageCategory.BLOG, ("blog", "news", "articles", "press", "insights", "resources")),
]

_SKIP_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".zip", ".mp4", ".mp3",
    ".css", ".js", ".xml", ".json", ".ico", ".doc", ".docx", ".xls", ".xlsx",
)
_LOC_RE = re.compile(r"<loc>\s*([^<\s]+)\s*</loc>", re.IGNORECASE)


def categorize_url(url: str) -> PageCategory:
    path = (urlparse(url).path or "/").lower().rstrip("/")
    if path in ("", "/index.html", "/index.php", "/home"):
        return PageCategory.HOME
    for category, keywords in CATEGORY_KEYWORDS:
        if any(k in path for k in keywords):
            return category
    return PageCategory.OTHER


def prioritize(categorized: Dict[PageCategory, List[str]], max_pages: int) -> List[str]:
    out: List[str] = []
    seen: Set[str] = set()
    for category in CATEGORY_ORDER:
        for url in categorized.get(category, []):
            if url not in seen:
                seen.add(url)
                out.append(url)
    return out[:max_pages]


def extract_links(base_url: str, html: str, domain: str) -> List[str]:
    parser = HTMLParser(html)
    out: List[str] = []
    seen: Set[str] = set()
    for a in parser.css("a"):
        href = (a.attributes.get("href") or "").strip() if a.attributes else ""
        if not href or href.startswith(("mailto:", "tel:", "javascript:", "#")):
            continue
        abs_url = urljoin(base_url, href)
        if urlparse(abs_url).scheme not in ("http", "https"):
            continue
        if not same_host(abs_url, domain):
            continue
        nu = normalize_url(abs_url)
        if urlparse(nu).path.lower().endswith(_SKIP_EXTENSIONS):
            continue
        if nu not in seen:
            seen.add(nu)
            out.append(nu)
    return out


def parse_sitemap(xml_text: str) -> List[str]:
    return _LOC_RE.findall(xml_text or "")


@dataclass
class DiscoveryResult:
    summary: DiscoverySummary
    # Responses fetched during discovery, keyed by normalized URL, so pages are not fetched twice
    responses: Dict[str, FetchResult] = field(default_factory=dict)


class PageDiscoverer:
    def __init__(
        self,
        fetcher: Optional[StaticFetcher] = None,
        *,
        max_pages: int = 10,
        max_sitemaps: int = 5,
        fetch_budget_factor: int = 5,
    ) -> None:
        self.fetcher = fetcher or StaticFetcher()
        self.max_pages = max_pages
        self.max_sitemaps = max_sitemaps
        self.fetch_budget_factor = fetch_budget_factor

    def _harvest_sitemaps(self, base_url: str, domain: str) -> List[str]:
        queue = deque(self.fetcher.sitemaps_from_robots(base_url))
        queue.extend(urljoin(base_url, p) for p in SITEMAP_PATHS)
        seen_maps: Set[str] = set()
        pages: List[str] = []
        while queue and len(seen_maps) < self.max_sitemaps:
            sm = queue.popleft()
            if sm in seen_maps:
                continue
            seen_maps.add(sm)
            text = self.fetcher.fetch_text(sm)
            if not text:
                continue
            for loc in parse_sitemap(text):
                if not same_host(loc, domain):
                    continue
                if loc.lower().endswith(".xml"):
                    queue.append(loc)
                else:
                    pages.append(normalize_url(loc))
        return pages

    def discover(self, domain: str, max_pages: Optional[int] = None) -> DiscoveryResult:
        limit = max_pages or self.max_pages
        normalized = normalize_domain(domain)
        base_url = f"https://{normalized}/"
        started = time.time()

        sitemap_urls = self._harvest_sitemaps(base_url, normalized)
        frontier: deque[str] = deque()
        frontier.extend(normalize_url(urljoin(base_url, p)) for p in SEED_PATHS)
        frontier.extend(sitemap_urls)

        visited: Set[str] = set()
        discovered: List[str] = []
        responses: Dict[str, FetchResult] = {}
        fetch_budget = limit * self.fetch_budget_factor
        fetches = 0

        while frontier and len(discovered) < limit and fetches < fetch_budget:
            url = frontier.popleft()
            if url in visited:
                continue
            visited.add(url)
            fetches += 1
            try:
                res = self.fetcher.fetch(url)
            except FetchError as e:
                logger.debug("discovery fetch failed for %s: %s", url, e)
                continue
            if res.blocked_by_robots:
                continue
            final_url = normalize_url(res.url) if res.url else url
            if not same_host(final_url, normalized):
                continue
            if res.is_html_ok and final_url not in responses:
                discovered.append(final_url)
                responses[final_url] = res
                visited.add(final_url)
            if res.html:
                for link in extract_links(res.url or url, res.html, normalized):
                    if link not in visited:
                        frontier.append(link)

        categorized: Dict[PageCategory, List[str]] = {c: [] for c in CATEGORY_ORDER}
        for url in discovered:
            categorized[categorize_url(url)].append(url)
        summary = DiscoverySummary(
            base_url=base_url,
            discovered=discovered,
            categorized={c: urls for c, urls in categorized.items() if urls},
            prioritized=prioritize(categorized, limit),
            sitemap_urls=sitemap_urls,
            fetch_count=fetches,
            duration_ms=int((time.time() - started) * 1000),
        )
        logger.info("discovered %d pages for %s (%d fetches)", len(discovered), normalized, fetches)
        return DiscoveryResult(summary=summary, responses=responses)
