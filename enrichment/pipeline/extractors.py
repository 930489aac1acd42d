from __future__ import annotations

import html as html_lib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple
from urllib.parse import unquote, urlparse

from selectolax.parser import HTMLParser

from enrichment.schemas import ContactCandidate, ContactSource, Signal

logger = logging.getLogger(__name__)

NOISE_TAGS = ["script", "style", "noscript", "svg", "iframe", "template"]

EMAIL_PATTERN = re.compile(r"\b[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}\b", re.IGNORECASE)
PHONE_TEXT_PATTERN = re.compile(r"(?<![\w+])(\+?\d[\d\s().\-]{5,}\d)(?!\w)")
MAX_EMAIL_LEN = 254
_EMAIL_ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".css", ".js", ".ico")

SNIPPET_RADIUS = 80
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15

_PLUS_ONE_RE = re.compile(r"\+1[\s(.\-]?\d")
_NA_COUNTRY_RE = re.compile(r"\b(canada|united states|usa|u\.s\.a?\.?)(?!\w)", re.IGNORECASE)
_NA_TLDS = (".ca", ".us")

# Technology name -> lowercase fingerprints searched in raw HTML
TECH_FINGERPRINTS: Dict[str, Tuple[str, ...]] = {
    "React": ("data-reactroot", "react-dom", "__next_data__"),
    "Vue": ("data-v-app", "vue.js", "vue.min.js", "__nuxt"),
    "Angular": ("ng-version", "angular.js", "angular.min.js"),
    "jQuery": ("jquery",),
    "Bootstrap": ("bootstrap.min.css", "bootstrap.min.js", "bootstrap.css"),
    "Tailwind": ("tailwindcss", "tailwind.min.css"),
    "WordPress": ("wp-content", "wp-includes"),
    "Shopify": ("cdn.shopify.com", "shopify.theme"),
    "WooCommerce": ("woocommerce",),
    "Magento": ("mage/cookies", "magento"),
    "Drupal": ("drupal.settings", "/sites/default/files"),
    "AWS": ("amazonaws.com", "cloudfront.net"),
    "Azure": ("azureedge.net", "windows.net"),
    "Google Cloud": ("storage.googleapis.com", "appspot.com"),
    "Cloudflare": ("cdnjs.cloudflare.com", "cf-ray", "cloudflareinsights"),
    "Vercel": ("vercel.app", "_vercel"),
    "Stripe": ("js.stripe.com",),
    "PayPal": ("paypal.com/sdk", "paypalobjects.com"),
    "Square": ("squareup.com", "square.site"),
    "Braintree": ("braintreegateway.com", "braintree-api"),
    "Google Analytics": ("google-analytics.com", "gtag(", "ga('create'"),
    "Google Tag Manager": ("googletagmanager.com",),
    "Facebook Pixel": ("connect.facebook.net", "fbq("),
    "HubSpot": ("js.hs-scripts.com", "hs-analytics", "hubspot"),
    "Salesforce": ("salesforce.com", "force.com"),
    "Mailchimp": ("list-manage.com", "mailchimp"),
    "SendGrid": ("sendgrid",),
}

SOCIAL_PATTERNS: Dict[str, re.Pattern[str]] = {
    "linkedin": re.compile(r"https?://(?:[a-z]{2,3}\.)?linkedin\.com/(?:company|in|school)/[^\s\"'<>?#]+", re.I),
    "twitter": re.compile(r"https?://(?:www\.)?(?:twitter|x)\.com/(?!intent|share|home)[A-Za-z0-9_]{1,15}(?![\w/])", re.I),
    "facebook": re.compile(r"https?://(?:www\.)?facebook\.com/(?!sharer|share|dialog|plugins|tr\?)[^\s\"'<>?#]+", re.I),
    "instagram": re.compile(r"https?://(?:www\.)?instagram\.com/[A-Za-z0-9_.]+", re.I),
    "youtube": re.compile(r"https?://(?:www\.)?youtube\.com/(?:@|c/|channel/|user/)[^\s\"'<>?#]+", re.I),
}

MAX_KEYWORDS = 50


@dataclass
class ParsedPage:
    """A fetched page split into the views extractors need.

    ``raw_html`` and the pre-strip collections (JSON-LD, mailto/tel anchors)
    are captured before noise tags are removed from ``tree``.
    """
    url: str
    raw_html: str
    tree: HTMLParser
    text: str
    json_ld: List[Any] = field(default_factory=list)
    mailto_links: List[Tuple[str, str]] = field(default_factory=list)
    tel_links: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def host(self) -> str:
        return (urlparse(self.url).hostname or "").lower()


def _collapse(s: str) -> str:
    return re.sub(r"\s+", " ", s or "").strip()


def parse_page(url: str, html: str) -> ParsedPage:
    tree = HTMLParser(html or "")
    json_ld: List[Any] = []
    for node in tree.css('script[type="application/ld+json"]'):
        body = node.text(deep=True) or ""
        try:
            json_ld.append(json.loads(body))
        except json.JSONDecodeError:
            logger.debug("skipping malformed JSON-LD block on %s", url)
    mailto: List[Tuple[str, str]] = []
    tel: List[Tuple[str, str]] = []
    for a in tree.css("a[href]"):
        href = (a.attributes.get("href") or "").strip()
        low = href.lower()
        if low.startswith("mailto:"):
            mailto.append((href, a.text() or ""))
        elif low.startswith("tel:"):
            tel.append((href, a.text() or ""))
    tree.strip_tags(NOISE_TAGS)
    root = tree.body or tree.root
    text = _collapse(html_lib.unescape(root.text(separator=" "))) if root is not None else ""
    return ParsedPage(url=url, raw_html=html or "", tree=tree, text=text,
                      json_ld=json_ld, mailto_links=mailto, tel_links=tel)


class SignalExtractor(Protocol):
    name: str

    def extract(self, page: ParsedPage) -> List[Signal]:
        ...


# -------------------------
# Email
# -------------------------
def sanitize_mailto(href: str, fallback_text: Optional[str] = None) -> Optional[str]:
    """Sanitize a mailto href and fall back to link text if needed."""
    if not href:
        return None
    s = href.strip()
    raw = s[7:] if s.lower().startswith("mailto:") else s
    email = unquote(raw.split("?", 1)[0].split("#", 1)[0]).strip().lower()
    if EMAIL_PATTERN.fullmatch(email):
        return email
    if fallback_text:
        m = EMAIL_PATTERN.search(html_lib.unescape(str(fallback_text)).strip().lower())
        if m:
            return m.group(0)
    return None


REDACTED_EMAIL = "[email removed]"


def redact_emails(text: str, keep: Iterable[str]) -> str:
    """Replace every address in ``text`` that is not in ``keep`` (case-insensitive)."""
    if not text:
        return text
    allowed = {e.lower() for e in keep}
    return EMAIL_PATTERN.sub(lambda m: m.group(0) if m.group(0).lower() in allowed else REDACTED_EMAIL, text)


def is_acceptable_email(email: str) -> bool:
    if not email or len(email) > MAX_EMAIL_LEN:
        return False
    if ".." in email or email.startswith(".") or ".@" in email or "@." in email:
        return False
    return not email.lower().endswith(_EMAIL_ASSET_SUFFIXES)


class EmailSignalExtractor:
    name = "email"

    def extract(self, page: ParsedPage) -> List[Signal]:
        out: List[Signal] = []
        seen: set[str] = set()

        def add(email: Optional[str], source: str, hint: float) -> None:
            if not email:
                return
            e = email.lower()
            if e in seen or not is_acceptable_email(e):
                return
            seen.add(e)
            out.append(Signal(value=e, source=source, confidence_hint=hint))

        for href, text in page.mailto_links:
            add(sanitize_mailto(href, text), "mailto", 0.9)
        for m in EMAIL_PATTERN.finditer(html_lib.unescape(page.raw_html)):
            add(m.group(0), "html", 0.6)
        return out


# -------------------------
# Phone
# -------------------------
def normalize_phone(raw: str) -> str:
    s = (raw or "").strip()
    digits = re.sub(r"\D", "", s)
    return f"+{digits}" if s.startswith("+") and digits else digits


def _digits(value: str) -> str:
    return value.lstrip("+")


def is_repeated_digit(digits: str) -> bool:
    return len(digits) > 0 and len(set(digits)) == 1


def violates_na_area_code(digits: str) -> bool:
    if len(digits) == 11 and digits.startswith("1"):
        national = digits[1:]
    elif len(digits) == 10:
        national = digits
    else:
        return False
    return national[0] in "01"


def has_na_signals(page: ParsedPage) -> bool:
    if page.host.endswith(_NA_TLDS):
        return True
    if _PLUS_ONE_RE.search(page.text):
        return True
    return bool(_NA_COUNTRY_RE.search(page.text))


def is_plausible_phone(normalized: str, *, north_american: bool, strict: bool = True) -> bool:
    digits = _digits(normalized)
    if is_repeated_digit(digits):
        return False
    if not (MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS):
        return False
    if strict and north_american and violates_na_area_code(digits):
        return False
    return True


_SOURCE_RANK = {ContactSource.TEL: 0, ContactSource.SCHEMA: 0, ContactSource.TEXT: 1}


def rank_phones(candidates: Iterable[ContactCandidate]) -> List[ContactCandidate]:
    ordered = sorted(candidates, key=lambda c: (_SOURCE_RANK[c.source], -len(_digits(c.normalized_value))))
    out: List[ContactCandidate] = []
    seen: set[str] = set()
    for c in ordered:
        key = _digits(c.normalized_value)
        if key in seen:
            continue
        seen.add(key)
        out.append(c)
    return out


def _walk_json_ld(node: Any) -> Iterable[str]:
    if isinstance(node, dict):
        for k, v in node.items():
            if k.lower() == "telephone":
                if isinstance(v, str):
                    yield v
                elif isinstance(v, list):
                    yield from (x for x in v if isinstance(x, str))
            else:
                yield from _walk_json_ld(v)
    elif isinstance(node, list):
        for item in node:
            yield from _walk_json_ld(item)


class PhoneSignalExtractor:
    name = "phone"

    def raw_candidates(self, page: ParsedPage) -> List[ContactCandidate]:
        out: List[ContactCandidate] = []
        for href, _text in page.tel_links:
            raw = unquote(href.strip()[4:])
            raw = re.split(r"[;,]|ext", raw, maxsplit=1, flags=re.I)[0].strip()
            out.append(ContactCandidate(raw_value=raw, normalized_value=normalize_phone(raw), source=ContactSource.TEL))
        for block in page.json_ld:
            for raw in _walk_json_ld(block):
                out.append(ContactCandidate(raw_value=raw, normalized_value=normalize_phone(raw), source=ContactSource.SCHEMA))
        for m in PHONE_TEXT_PATTERN.finditer(page.text):
            raw = m.group(1).strip()
            snippet = page.text[max(0, m.start(1) - SNIPPET_RADIUS): m.end(1) + SNIPPET_RADIUS]
            out.append(ContactCandidate(raw_value=raw, normalized_value=normalize_phone(raw),
                                        source=ContactSource.TEXT, snippet=snippet))
        return out

    def candidates(self, page: ParsedPage) -> List[ContactCandidate]:
        """Strict pass first; when it yields nothing, relax the regional rule for tel, then text."""
        raw = self.raw_candidates(page)
        na = has_na_signals(page)
        strict = [c for c in raw if is_plausible_phone(c.normalized_value, north_american=na)]
        if strict:
            return rank_phones(strict)
        for tier in (ContactSource.TEL, ContactSource.TEXT):
            relaxed = [c for c in raw if c.source is tier
                       and is_plausible_phone(c.normalized_value, north_american=na, strict=False)]
            if relaxed:
                return rank_phones(relaxed)
        return []

    def extract(self, page: ParsedPage) -> List[Signal]:
        hints = {ContactSource.TEL: 0.9, ContactSource.SCHEMA: 0.8, ContactSource.TEXT: 0.5}
        return [Signal(value=c.normalized_value, source=c.source.value, confidence_hint=hints[c.source])
                for c in self.candidates(page)]


class ContactExtractor:
    """Email + phone extraction for one parsed page."""

    def __init__(self, email_extractor: Optional[EmailSignalExtractor] = None,
                 phone_extractor: Optional[PhoneSignalExtractor] = None) -> None:
        self.email_extractor = email_extractor or EmailSignalExtractor()
        self.phone_extractor = phone_extractor or PhoneSignalExtractor()

    def extract(self, page: ParsedPage) -> Tuple[List[str], List[ContactCandidate]]:
        emails = [s.value for s in self.email_extractor.extract(page)]
        phones = self.phone_extractor.candidates(page)
        return emails, phones


# -------------------------
# Technology / social / keywords
# -------------------------
class TechnologySignalExtractor:
    name = "technology"

    def __init__(self, fingerprints: Optional[Dict[str, Sequence[str]]] = None) -> None:
        self.fingerprints = dict(fingerprints or TECH_FINGERPRINTS)

    def extract(self, page: ParsedPage) -> List[Signal]:
        low = page.raw_html.lower()
        found: Dict[str, Signal] = {}
        gen = page.tree.css_first('meta[name="generator"]')
        generator = ((gen.attributes.get("content") if gen is not None else "") or "").lower()
        for tech, prints in self.fingerprints.items():
            if generator and tech.lower() in generator:
                found[tech] = Signal(value=tech, source="meta:generator", confidence_hint=0.9)
            elif any(p in low for p in prints):
                found[tech] = Signal(value=tech, source="html", confidence_hint=0.6)
        return list(found.values())


class SocialSignalExtractor:
    name = "social"

    def extract(self, page: ParsedPage) -> List[Signal]:
        out: List[Signal] = []
        for platform, pat in SOCIAL_PATTERNS.items():
            m = pat.search(page.raw_html)
            if m:
                out.append(Signal(value=m.group(0).rstrip("/"), source=platform, confidence_hint=0.8))
        return out


class KeywordSignalExtractor:
    name = "keywords"

    def __init__(self, max_keywords: int = MAX_KEYWORDS) -> None:
        self.max_keywords = max_keywords

    def extract(self, page: ParsedPage) -> List[Signal]:
        terms: List[Tuple[str, str]] = []
        meta = page.tree.css_first('meta[name="keywords"]')
        if meta is not None:
            for kw in (meta.attributes.get("content") or "").split(","):
                terms.append((kw, "meta"))
        for node in page.tree.css("h1, h2, h3"):
            terms.append((node.text(separator=" ") or "", "heading"))
        out: List[Signal] = []
        seen: set[str] = set()
        for term, source in terms:
            t = _collapse(term)
            if not t or t.lower() in seen:
                continue
            seen.add(t.lower())
            out.append(Signal(value=t, source=source, confidence_hint=0.7 if source == "meta" else 0.4))
            if len(out) >= self.max_keywords:
                break
        return out


# -------------------------
# Title / description
# -------------------------
def extract_title(page: ParsedPage) -> str:
    for selector in ("title", "h1"):
        node = page.tree.css_first(selector)
        if node is not None:
            text = _collapse(node.text())
            if text:
                return text
    return ""


def extract_description(page: ParsedPage) -> str:
    for selector in ('meta[name="description"]', 'meta[property="og:description"]'):
        node = page.tree.css_first(selector)
        if node is not None:
            content = _collapse(node.attributes.get("content") or "")
            if content:
                return content
    for p in page.tree.css("p"):
        text = _collapse(p.text())
        if text:
            return text
    return ""


def clean_company_name(title: str) -> str:
    """Strip the tagline after a '-' or '|' separator; drop generic section headers."""
    name = re.sub(r"\s+[-|–—:].*$", "", title or "").strip()
    if re.search(r"^(Home|Contact|Contacts|News|Press|Team|People|About)\b", name, re.IGNORECASE):
        return ""
    return name[:100]
