from __future__ import annotations

import logging

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from .base import FetchResult
from .static import USER_AGENTS

logger = logging.getLogger(__name__)


class PlaywrightFetcher:
    """Headless browser fetcher for JavaScript-rendered (SPA) pages.

    Security-first launch settings: sandbox enabled, extensions and plugins
    disabled, headless only. Failures are reported in ``FetchResult.error``
    instead of raising, so the caller can fall back to static HTML.
    """

    def __init__(self, *, timeout_ms: int = 20000, user_agent: str = USER_AGENTS[0]) -> None:
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent

    def fetch(self, url: str) -> FetchResult:
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(
                    headless=True,
                    args=[
                        "--disable-dev-shm-usage",
                        "--disable-gpu",
                        "--disable-extensions",
                        "--disable-plugins",
                        "--no-first-run",
                        "--disable-default-apps",
                    ],
                )
                try:
                    context = browser.new_context(user_agent=self.user_agent)
                    page = context.new_page()
                    response = page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
                    if not response:
                        return FetchResult(url=url, status_code=0, mime=None, content_length=0, html=None,
                                           method="headless", error="No response received")
                    html = page.content()
                    return FetchResult(
                        url=page.url,
                        status_code=response.status,
                        mime="text/html",
                        content_length=len(html.encode("utf-8")),
                        html=html,
                        headers=dict(response.headers),
                        method="headless",
                    )
                finally:
                    browser.close()
        except PlaywrightError as e:
            logger.warning("headless fetch failed for %s: %s", url, e)
            return FetchResult(url=url, status_code=0, mime=None, content_length=0, html=None,
                               method="headless", error=str(e))
