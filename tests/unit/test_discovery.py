from typing import Dict, List, Optional

from enrichment.errors import FetchError
from enrichment.pipeline.discovery import (
    PageDiscoverer,
    categorize_url,
    extract_links,
    parse_sitemap,
    prioritize,
)
from enrichment.pipeline.fetchers.base import FetchResult
from enrichment.schemas import PageCategory


def _html(body: str) -> str:
    return f"<html><body>{body}</body></html>"


class _FakeSite:
    """In-memory site; unknown URLs answer 404 with a small HTML body."""

    def __init__(self, pages: Dict[str, str], *, errors: Optional[Dict[str, str]] = None,
                 sitemaps: Optional[Dict[str, str]] = None, robots_sitemaps: Optional[List[str]] = None):
        self.pages = pages
        self.errors = errors or {}
        self.sitemaps = sitemaps or {}
        self.robots_sitemaps = robots_sitemaps or []
        self.fetched: List[str] = []

    def fetch(self, url: str) -> FetchResult:
        self.fetched.append(url)
        if url in self.pages:
            html = self.pages[url]
            return FetchResult(url=url, status_code=200, mime="text/html", content_length=len(html), html=html)
        if url == "https://example.com/broken":
            raise FetchError("connection reset", url=url)
        html = self.errors.get(url, _html("<p>Not found</p>"))
        return FetchResult(url=url, status_code=404, mime="text/html", content_length=len(html), html=html)

    def fetch_text(self, url: str) -> Optional[str]:
        return self.sitemaps.get(url)

    def sitemaps_from_robots(self, base_url: str) -> List[str]:
        return list(self.robots_sitemaps)


def _site() -> _FakeSite:
    return _FakeSite(
        pages={
            "https://example.com/": _html(
                '<a href="/about">About</a><a href="/pricing">Pricing</a><a href="/broken">x</a>'
                '<a href="/logo.png">logo</a><a href="https://other.com/x">ext</a>'
                '<a href="mailto:hi@example.com">mail</a>'
            ),
            "https://example.com/about": _html("<h1>About</h1>"),
            "https://example.com/contact": _html("<h1>Contact</h1>"),
            "https://example.com/services": _html("<h1>Services</h1>"),
            "https://example.com/pricing": _html("<h1>Pricing</h1>"),
            "https://example.com/careers": _html("<h1>Careers</h1>"),
        },
        errors={"https://example.com/about-us": _html('<a href="/careers">Careers</a>')},
        sitemaps={
            "https://example.com/sitemap.xml": (
                "<urlset><url><loc>https://example.com/services/</loc></url>"
                "<url><loc>https://other.com/a</loc></url></urlset>"
            ),
        },
    )


def test_categorize_url():
    assert categorize_url("https://example.com/") == PageCategory.HOME
    assert categorize_url("https://example.com/index.html") == PageCategory.HOME
    assert categorize_url("https://example.com/about-us") == PageCategory.ABOUT
    assert categorize_url("https://example.com/contact") == PageCategory.CONTACT
    assert categorize_url("https://example.com/pricing") == PageCategory.PRODUCTS
    assert categorize_url("https://example.com/leadership") == PageCategory.TEAM
    assert categorize_url("https://example.com/news/launch") == PageCategory.BLOG
    assert categorize_url("https://example.com/legal") == PageCategory.OTHER


def test_prioritize_respects_category_order_and_limit():
    categorized = {
        PageCategory.BLOG: ["https://example.com/blog"],
        PageCategory.HOME: ["https://example.com/"],
        PageCategory.CONTACT: ["https://example.com/contact"],
    }
    assert prioritize(categorized, 2) == ["https://example.com/", "https://example.com/contact"]


def test_extract_links_filters_and_normalizes():
    html = _html(
        '<a href="/team/">Team</a><a href="https://www.example.com/team">dup</a>'
        '<a href="#top">top</a><a href="tel:+1">tel</a><a href="/brochure.pdf">pdf</a>'
        '<a href="https://elsewhere.com/">ext</a><a href="blog?page=2">rel</a>'
    )
    links = extract_links("https://example.com/about/", html, "example.com")
    assert links == ["https://example.com/team", "https://example.com/about/blog"]


def test_parse_sitemap():
    xml = "<urlset><url><loc> https://example.com/a </loc></url><url><loc>https://example.com/b</loc></url></urlset>"
    assert parse_sitemap(xml) == ["https://example.com/a", "https://example.com/b"]
    assert parse_sitemap("") == []


def test_discover_counts_only_live_html_pages():
    site = _site()
    result = PageDiscoverer(site, max_pages=10).discover("www.example.com")
    summary = result.summary

    assert summary.base_url == "https://example.com/"
    assert set(summary.discovered) == {
        "https://example.com/",
        "https://example.com/about",
        "https://example.com/contact",
        "https://example.com/services",
        "https://example.com/pricing",
        "https://example.com/careers",
    }
    assert summary.prioritized == [
        "https://example.com/",
        "https://example.com/about",
        "https://example.com/contact",
        "https://example.com/services",
        "https://example.com/pricing",
        "https://example.com/careers",
    ]
    assert summary.sitemap_urls == ["https://example.com/services"]
    assert summary.categorized[PageCategory.TEAM] == ["https://example.com/careers"]
    assert set(result.responses) == set(summary.discovered)
    assert "https://example.com/logo.png" not in site.fetched
    assert not any(u.startswith("https://other.com") for u in site.fetched)


def test_discover_stops_at_max_pages():
    site = _site()
    summary = PageDiscoverer(site).discover("example.com", max_pages=3).summary
    assert len(summary.discovered) == 3
    assert summary.prioritized[0] == "https://example.com/"
    assert len(summary.prioritized) <= 3


def test_discover_respects_fetch_budget():
    site = _FakeSite(pages={})
    summary = PageDiscoverer(site, max_pages=1, fetch_budget_factor=2).discover("example.com").summary
    assert summary.discovered == []
    assert summary.fetch_count == 2
    assert summary.prioritized == []
