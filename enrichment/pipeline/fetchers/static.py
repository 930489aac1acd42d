from __future__ import annotations

import logging
import random
import threading
from typing import Optional, Sequence
from urllib import robotparser
from urllib.parse import urlparse

import httpx

from enrichment.errors import FetchError
from .base import FetchResult

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
]


class StaticFetcher:
    """Static-first HTML fetcher with optional robots.txt enforcement.

    - Uses httpx for network IO, one shared client (thread-safe)
    - Rotates the User-Agent per request
    - Parses robots.txt once per host using urllib.robotparser
    - Does NOT execute JavaScript
    """

    def __init__(
        self,
        *,
        timeout_s: float = 12.0,
        user_agents: Sequence[str] = USER_AGENTS,
        respect_robots: bool = True,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.timeout_s = timeout_s
        self.user_agents = list(user_agents) or list(USER_AGENTS)
        self.respect_robots = respect_robots
        self._client = client or httpx.Client(timeout=self.timeout_s, follow_redirects=True)
        self._robots: dict[str, Optional[robotparser.RobotFileParser]] = {}
        self._robots_lock = threading.Lock()

    def close(self) -> None:
        self._client.close()

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": random.choice(self.user_agents),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

    def _robots_for(self, url: str) -> Optional[robotparser.RobotFileParser]:
        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        with self._robots_lock:
            if origin in self._robots:
                return self._robots[origin]
        rp: Optional[robotparser.RobotFileParser] = None
        try:
            resp = self._client.get(f"{origin}/robots.txt", headers=self._headers())
            if resp.status_code < 400:
                rp = robotparser.RobotFileParser()
                rp.parse(resp.text.splitlines())
        except httpx.HTTPError as e:
            # Unreachable robots.txt means allow
            logger.debug("robots.txt unavailable for %s: %s", origin, e)
        with self._robots_lock:
            self._robots[origin] = rp
        return rp

    def _robots_allows(self, url: str) -> bool:
        if not self.respect_robots:
            return True
        rp = self._robots_for(url)
        if rp is None:
            return True
        return rp.can_fetch("*", url)

    def sitemaps_from_robots(self, base_url: str) -> list[str]:
        rp = self._robots_for(base_url)
        if rp is None:
            return []
        return list(rp.site_maps() or [])

    def fetch(self, url: str) -> FetchResult:
        if not self._robots_allows(url):
            return FetchResult(
                url=url,
                status_code=0,
                mime=None,
                content_length=0,
                html=None,
                headers={},
                blocked_by_robots=True,
            )
        try:
            resp = self._client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise FetchError(f"{type(e).__name__}: {e}", url=url) from e
        mime = resp.headers.get("Content-Type")
        mime_main = None
        if mime:
            mime_main = mime.split(";")[0].strip().lower()
        html_text = None
        if mime_main == "text/html":
            html_text = resp.text
        return FetchResult(
            url=str(resp.request.url),
            status_code=resp.status_code,
            mime=mime_main,
            content_length=len(resp.content or b""),
            html=html_text,
            headers={k: v for k, v in resp.headers.items()},
        )

    def fetch_text(self, url: str) -> Optional[str]:
        """GET a non-HTML resource (sitemap XML). Returns None on any non-2xx or transport error."""
        try:
            resp = self._client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            logger.debug("fetch_text failed for %s: %s", url, e)
            return None
        if not (200 <= resp.status_code < 300):
            return None
        return resp.text

    def probe(self, url: str) -> int:
        """Reachability check: HEAD, falling back to GET when HEAD is not allowed."""
        try:
            resp = self._client.head(url, headers=self._headers())
            if resp.status_code in (405, 501):
                resp = self._client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise FetchError(f"{type(e).__name__}: {e}", url=url) from e
        return resp.status_code
