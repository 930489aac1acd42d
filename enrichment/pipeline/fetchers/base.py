from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol


@dataclass(frozen=True)
class FetchResult:
    url: str
    status_code: int
    mime: str | None
    content_length: int
    html: str | None
    headers: dict[str, str] = field(default_factory=dict)
    blocked_by_robots: bool = False
    method: str = "static"
    error: Optional[str] = None

    @property
    def is_html_ok(self) -> bool:
        return 200 <= self.status_code < 300 and self.mime == "text/html" and self.html is not None


class PageFetcher(Protocol):
    """Anything that turns a URL into a FetchResult (static HTTP, headless browser...)."""

    def fetch(self, url: str) -> FetchResult:
        ...
