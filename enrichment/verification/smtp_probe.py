"""
SMTP RCPT probe used as the email verification gate.

The probe resolves MX hosts with dnspython and performs a lightweight SMTP
dialogue (EHLO, optional STARTTLS, MAIL FROM, RCPT TO) without sending DATA.
Verification is fail-closed: any timeout, network error, policy skip or
non-2xx reply leaves the address unverified.
"""
from __future__ import annotations

import logging
import re
import smtplib
import socket
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Protocol

import dns.exception
import dns.resolver

from enrichment.errors import VerificationTimeout

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

FREE_DOMAINS = {
    "gmail.com",
    "googlemail.com",
    "outlook.com",
    "hotmail.com",
    "live.com",
    "yahoo.com",
    "icloud.com",
    "aol.com",
    "proton.me",
    "protonmail.com",
}


def validate_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


def parse_domain(email: str) -> str:
    if "@" not in email:
        raise ValueError("Invalid email: missing @")
    local, domain = email.rsplit("@", 1)
    if not local or not domain:
        raise ValueError("Invalid email format")
    return domain.lower()


def should_skip_domain(domain: str) -> bool:
    return domain.lower() in FREE_DOMAINS


def resolve_mx(domain: str, *, lifetime_s: float = 5.0) -> List[str]:
    """MX hosts ordered by preference; empty when the domain has none or DNS fails."""
    try:
        resolver = dns.resolver.Resolver()
        resolver.timeout = lifetime_s
        resolver.lifetime = lifetime_s
        answers = resolver.resolve(domain, "MX")
    except dns.exception.Timeout as e:
        raise VerificationTimeout(f"MX lookup timed out for {domain}") from e
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers) as e:
        logger.debug("no MX for %s: %s", domain, e)
        return []
    except (dns.exception.DNSException, ValueError) as e:
        # Malformed names (empty or oversized labels, bad IDNA) and resolver misconfiguration
        logger.info("MX lookup failed for %s: %s", domain, e)
        return []
    records = sorted(answers, key=lambda r: r.preference)
    return [str(r.exchange).rstrip(".") for r in records if str(r.exchange).rstrip(".")]


@dataclass
class ProbeResult:
    email: str
    domain: str
    mx_used: Optional[str]
    accepts_rcpt: bool
    smtp_code: Optional[int]
    smtp_message: Optional[str]
    error_category: Optional[str]  # ok|temp|perm|network|timeout|policy|input
    rtt_ms: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _classify(code: Optional[int], exc: Optional[BaseException] = None) -> str:
    if code is not None:
        if 200 <= code < 300:
            return "ok"
        if 400 <= code < 500:
            return "temp"
        if 500 <= code < 600:
            return "perm"
    if exc is not None:
        return "network"
    return "unknown"


def probe_rcpt(mx_host: str, email: str, timeout: float = 10) -> ProbeResult:
    """Probe an MX for RCPT acceptance. Raises VerificationTimeout on socket timeouts."""
    domain = parse_domain(email)
    start_ts = time.time()
    smtp_code: Optional[int] = None
    smtp_msg: Optional[str] = None
    category: Optional[str] = None
    try:
        with smtplib.SMTP(mx_host, 25, timeout=timeout) as smtp:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                try:
                    smtp.starttls()
                    smtp.ehlo()
                except smtplib.SMTPException as e:
                    logger.debug("STARTTLS failed on %s, continuing in clear: %s", mx_host, e)
            smtp.mail(f"<probe@{domain}>")
            smtp_code, msg = smtp.rcpt(f"<{email}>")
            smtp_msg = msg.decode("utf-8", errors="ignore") if isinstance(msg, (bytes, bytearray)) else str(msg)
            category = _classify(smtp_code)
    except (socket.timeout, TimeoutError) as e:
        raise VerificationTimeout(f"SMTP probe timed out on {mx_host}") from e
    except (smtplib.SMTPException, OSError) as e:
        category = _classify(None, e)
        smtp_msg = str(e)
    return ProbeResult(
        email=email,
        domain=domain,
        mx_used=mx_host,
        accepts_rcpt=200 <= (smtp_code or 0) < 300,
        smtp_code=smtp_code,
        smtp_message=smtp_msg,
        error_category=category,
        rtt_ms=int((time.time() - start_ts) * 1000),
    )


class EmailVerifier(Protocol):
    def verify(self, email: str) -> ProbeResult:
        ...


class SmtpEmailVerifier:
    """Fail-closed verifier: only a 2xx RCPT reply counts as verified."""

    def __init__(self, *, timeout_s: float = 10.0, dns_lifetime_s: float = 5.0, skip_free: bool = True) -> None:
        self.timeout_s = timeout_s
        self.dns_lifetime_s = dns_lifetime_s
        self.skip_free = skip_free

    def _unverified(self, email: str, domain: str, category: str, message: str) -> ProbeResult:
        return ProbeResult(email=email, domain=domain, mx_used=None, accepts_rcpt=False, smtp_code=None,
                           smtp_message=message, error_category=category, rtt_ms=None)

    def verify(self, email: str) -> ProbeResult:
        if not validate_email(email):
            return self._unverified(email, "", "input", "invalid email")
        domain = parse_domain(email)
        if self.skip_free and should_skip_domain(domain):
            return self._unverified(email, domain, "policy", "skipped free domain")
        try:
            hosts = resolve_mx(domain, lifetime_s=self.dns_lifetime_s)
            if not hosts:
                return self._unverified(email, domain, "network", "no MX records")
            return probe_rcpt(hosts[0], email, timeout=self.timeout_s)
        except VerificationTimeout as e:
            logger.info("verification timed out for %s: %s", email, e)
            return self._unverified(email, domain, "timeout", str(e))
        except (dns.exception.DNSException, ValueError) as e:
            logger.info("verification rejected %s: %s", email, e)
            return self._unverified(email, domain, "input", str(e))


def _parse_args(argv=None):
    import argparse

    ap = argparse.ArgumentParser(description="SMTP RCPT probe")
    ap.add_argument("--email", action="append", required=True, help="email to probe (repeatable)")
    ap.add_argument("--mx", help="explicit MX host (skips DNS lookup)")
    ap.add_argument("--timeout", type=float, default=10.0)
    ap.add_argument("--no-skip-free", dest="skip_free", action="store_false", default=True)
    return ap.parse_args(argv)


def main(argv=None) -> int:
    import json

    args = _parse_args(argv)
    verifier = SmtpEmailVerifier(timeout_s=args.timeout, skip_free=args.skip_free)
    rows: List[Dict[str, Any]] = []
    for email in args.email:
        if args.mx and validate_email(email):
            try:
                rows.append(probe_rcpt(args.mx, email, timeout=args.timeout).to_dict())
            except VerificationTimeout as e:
                rows.append(verifier._unverified(email, parse_domain(email), "timeout", str(e)).to_dict())
        else:
            rows.append(verifier.verify(email).to_dict())
    print(json.dumps(rows, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    import sys
    sys.exit(main())
