from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List

from .fetchers.base import FetchResult


ANTI_BOT_MARKERS = [
    r"Just a moment\s*\.\.\.",
    r"Enable JavaScript and cookies to continue",
    r"__cf_chl_",  # Cloudflare challenge scripts
]

# Framework hydration markers: the server shipped a shell that JS fills in
HYDRATION_MARKERS = [
    r"__NEXT_DATA__",
    r"data-reactroot",
    r"ng-version=",
    r"ng-app",
    r"id=[\"']__nuxt[\"']",
    r"window\.__NUXT__",
    r"data-server-rendered",
    r"<div[^>]+id=[\"'](?:root|app)[\"'][^>]*>\s*</div>",
]

MIN_ANCHORS = 3

_ANCHOR_RE = re.compile(r"<a\s[^>]*href", re.IGNORECASE)


@dataclass(frozen=True)
class EscalationDecision:
    escalate: bool
    reasons: List[str]


SpaDetector = Callable[[FetchResult], EscalationDecision]


def detect_anti_bot(html: str | None) -> bool:
    if not html:
        return False
    for pat in ANTI_BOT_MARKERS:
        if re.search(pat, html, flags=re.IGNORECASE):
            return True
    return False


def detect_hydration_markers(html: str | None) -> list[str]:
    reasons: list[str] = []
    if not html:
        return reasons
    for pat in HYDRATION_MARKERS:
        if re.search(pat, html, flags=re.IGNORECASE):
            reasons.append(f"js:{pat}")
    return reasons


def count_anchors(html: str | None) -> int:
    if not html:
        return 0
    return len(_ANCHOR_RE.findall(html))


def detect_spa_shell(fetch: FetchResult) -> EscalationDecision:
    """Default SPA predicate: hydration markers, anti-bot interstitial, or too few links."""
    reasons: List[str] = []
    if fetch.html is None:
        return EscalationDecision(escalate=False, reasons=reasons)
    if detect_anti_bot(fetch.html):
        reasons.append("anti-bot markers detected")
    reasons.extend(detect_hydration_markers(fetch.html))
    anchors = count_anchors(fetch.html)
    if anchors < MIN_ANCHORS:
        reasons.append(f"anchors<{MIN_ANCHORS} ({anchors})")
    return EscalationDecision(escalate=len(reasons) > 0, reasons=reasons)
