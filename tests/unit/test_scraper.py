from unittest.mock import Mock

from enrichment.errors import FetchError
from enrichment.pipeline.escalation import EscalationDecision
from enrichment.pipeline.fetchers.base import FetchResult
from enrichment.pipeline.scraper import PageScraper
from enrichment.schemas import PageCategory

URL = "https://example.com/contact"

STATIC_HTML = (
    "<html><head><title>Acme Corp | Contact</title>"
    '<meta name="description" content="Reach the Acme team anytime."></head><body>'
    '<a href="/a">a</a><a href="/b">b</a><a href="/c">c</a>'
    '<a href="mailto:info@acme.com">Email us</a>'
    '<a href="https://www.linkedin.com/company/acme">LinkedIn</a>'
    "</body></html>"
)
SHELL_HTML = '<html><body><div id="root"></div><script src="/bundle.js"></script></body></html>'
RENDERED_HTML = (
    "<html><head><title>Acme Rendered</title></head><body>"
    '<a href="tel:+14155550100">Call</a><h1>Rocket services</h1></body></html>'
)


def _fr(html, *, status=200, mime="text/html", method="static", error=None, url=URL):
    return FetchResult(url=url, status_code=status, mime=mime, content_length=len(html or ""),
                       html=html, method=method, error=error)


def test_static_page_is_extracted_without_rendering():
    static = Mock()
    static.fetch.return_value = _fr(STATIC_HTML)
    headless = Mock()
    scraper = PageScraper(static_fetcher=static, headless_fetcher=headless)

    record = scraper.scrape(URL, category=PageCategory.CONTACT)

    assert record.ok
    assert record.method == "static"
    assert record.category == PageCategory.CONTACT
    assert record.http_status == 200
    assert record.extracted_data.title == "Acme Corp | Contact"
    assert record.extracted_data.description == "Reach the Acme team anytime."
    assert record.extracted_data.emails == ["info@acme.com"]
    assert record.extracted_data.social_links["linkedin"] == "https://www.linkedin.com/company/acme"
    headless.fetch.assert_not_called()


def test_spa_shell_escalates_to_headless():
    static = Mock()
    static.fetch.return_value = _fr(SHELL_HTML)
    headless = Mock()
    headless.fetch.return_value = _fr(RENDERED_HTML, method="headless")
    scraper = PageScraper(static_fetcher=static, headless_fetcher=headless)

    record = scraper.scrape(URL)

    headless.fetch.assert_called_once_with(URL)
    assert record.method == "headless"
    assert record.escalation_reasons
    assert record.extracted_data.title == "Acme Rendered"
    assert [p.normalized_value for p in record.extracted_data.phones] == ["+14155550100"]


def test_failed_render_keeps_static_html():
    static = Mock()
    static.fetch.return_value = _fr(SHELL_HTML)
    headless = Mock()
    headless.fetch.return_value = _fr(None, status=0, mime=None, method="headless", error="Timeout")
    scraper = PageScraper(static_fetcher=static, headless_fetcher=headless)

    record = scraper.scrape(URL)

    assert record.ok
    assert record.method == "static"


def test_headless_disabled_never_renders():
    static = Mock()
    static.fetch.return_value = _fr(SHELL_HTML)
    headless = Mock()
    scraper = PageScraper(static_fetcher=static, headless_fetcher=headless, enable_headless=False)

    assert scraper.scrape(URL).method == "static"
    headless.fetch.assert_not_called()


def test_custom_spa_detector_is_used():
    static = Mock()
    static.fetch.return_value = _fr(STATIC_HTML)
    headless = Mock()
    headless.fetch.return_value = _fr(RENDERED_HTML, method="headless")
    detector = Mock(return_value=EscalationDecision(escalate=True, reasons=["forced"]))
    scraper = PageScraper(static_fetcher=static, headless_fetcher=headless, spa_detector=detector)

    record = scraper.scrape(URL)
    assert record.escalation_reasons == ["forced"]
    assert record.method == "headless"


def test_prefetched_response_skips_static_fetch():
    static = Mock()
    scraper = PageScraper(static_fetcher=static)

    record = scraper.scrape(URL, prefetched=_fr(STATIC_HTML))
    assert record.ok
    static.fetch.assert_not_called()


def test_fetch_error_becomes_failed_record():
    static = Mock()
    static.fetch.side_effect = FetchError("connection refused", url=URL)
    record = PageScraper(static_fetcher=static).scrape(URL)

    assert not record.ok
    assert record.status == "failed"
    assert "connection refused" in record.error


def test_non_html_and_robots_blocked_fail():
    static = Mock()
    static.fetch.return_value = _fr(None, status=200, mime="application/pdf")
    record = PageScraper(static_fetcher=static).scrape(URL)
    assert record.status == "failed"
    assert record.http_status == 200

    static.fetch.return_value = FetchResult(url=URL, status_code=0, mime=None, content_length=0,
                                            html=None, blocked_by_robots=True)
    record = PageScraper(static_fetcher=static).scrape(URL)
    assert record.error == "blocked by robots.txt"
