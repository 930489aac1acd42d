import json
import socket
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import dns.name
import dns.resolver
import pytest

from enrichment.errors import VerificationTimeout
from enrichment.verification import smtp_probe as sp


def _smtp(mock_smtp, rcpt_reply):
    smtp = MagicMock()
    mock_smtp.return_value.__enter__.return_value = smtp
    smtp.has_extn.return_value = False
    smtp.ehlo.return_value = (250, b"OK")
    smtp.mail.return_value = (250, b"OK")
    smtp.rcpt.return_value = rcpt_reply
    return smtp


def test_validate_email_and_parse_domain():
    assert sp.validate_email("user@example.com") is True
    assert sp.validate_email("bad@") is False
    assert sp.validate_email("not-an-email") is False

    assert sp.parse_domain("user@Example.com") == "example.com"
    with pytest.raises(ValueError):
        sp.parse_domain("no-at-symbol")


def test_should_skip_domain():
    assert sp.should_skip_domain("gmail.com") is True
    assert sp.should_skip_domain("Outlook.com") is True
    assert sp.should_skip_domain("example.com") is False


@patch("smtplib.SMTP")
def test_probe_rcpt_accepts(mock_smtp):
    _smtp(mock_smtp, (250, b"Accepted"))

    res = sp.probe_rcpt("mx.example.com", "user@example.com", timeout=3)
    assert res.accepts_rcpt is True
    assert res.smtp_code == 250
    assert res.error_category == "ok"
    assert res.smtp_message == "Accepted"
    mock_smtp.assert_called_once_with("mx.example.com", 25, timeout=3)


@patch("smtplib.SMTP")
def test_probe_rcpt_temp_fail_4xx(mock_smtp):
    _smtp(mock_smtp, (450, b"Mailbox busy"))

    res = sp.probe_rcpt("mx.example.com", "user@example.com", timeout=3)
    assert res.accepts_rcpt is False
    assert res.error_category == "temp"


@patch("smtplib.SMTP")
def test_probe_rcpt_perm_fail_5xx(mock_smtp):
    _smtp(mock_smtp, (550, b"No such user"))

    res = sp.probe_rcpt("mx.example.com", "nosuch@example.com", timeout=3)
    assert res.accepts_rcpt is False
    assert res.smtp_code == 550
    assert res.error_category == "perm"


@patch("smtplib.SMTP")
def test_probe_rcpt_uses_starttls_when_offered(mock_smtp):
    smtp = _smtp(mock_smtp, (250, b"OK"))
    smtp.has_extn.return_value = True

    sp.probe_rcpt("mx.example.com", "user@example.com")
    smtp.starttls.assert_called_once()
    assert smtp.ehlo.call_count == 2


@patch("smtplib.SMTP", side_effect=ConnectionRefusedError("refused"))
def test_probe_rcpt_network_error(_mock_smtp):
    res = sp.probe_rcpt("mx.example.com", "user@example.com")
    assert res.accepts_rcpt is False
    assert res.error_category == "network"
    assert "refused" in res.smtp_message


@patch("smtplib.SMTP", side_effect=socket.timeout("timed out"))
def test_probe_rcpt_timeout_raises(_mock_smtp):
    with pytest.raises(VerificationTimeout):
        sp.probe_rcpt("mx.example.com", "user@example.com", timeout=1)


@patch("dns.resolver.Resolver")
def test_resolve_mx_orders_by_preference(mock_resolver_cls):
    resolver = mock_resolver_cls.return_value
    resolver.resolve.return_value = [
        SimpleNamespace(preference=20, exchange="mx2.example.com."),
        SimpleNamespace(preference=10, exchange="mx1.example.com."),
    ]
    assert sp.resolve_mx("example.com") == ["mx1.example.com", "mx2.example.com"]
    resolver.resolve.assert_called_once_with("example.com", "MX")


@patch("dns.resolver.Resolver")
def test_resolve_mx_nxdomain_is_empty(mock_resolver_cls):
    mock_resolver_cls.return_value.resolve.side_effect = dns.resolver.NXDOMAIN()
    assert sp.resolve_mx("nope.invalid") == []


@pytest.mark.parametrize("error", [dns.name.EmptyLabel(), dns.name.LabelTooLong(),
                                   dns.resolver.NoResolverConfiguration(), UnicodeError("bad idna")])
@patch("dns.resolver.Resolver")
def test_resolve_mx_malformed_names_are_empty(mock_resolver_cls, error):
    mock_resolver_cls.return_value.resolve.side_effect = error
    assert sp.resolve_mx("foo..com") == []


class TestSmtpEmailVerifier:
    def test_invalid_input(self):
        res = sp.SmtpEmailVerifier().verify("nope")
        assert res.accepts_rcpt is False
        assert res.error_category == "input"

    def test_free_domain_skipped(self):
        res = sp.SmtpEmailVerifier().verify("someone@gmail.com")
        assert res.accepts_rcpt is False
        assert res.error_category == "policy"

    @patch("enrichment.verification.smtp_probe.resolve_mx", return_value=[])
    def test_no_mx_is_unverified(self, _mock_mx):
        res = sp.SmtpEmailVerifier().verify("info@example.com")
        assert res.accepts_rcpt is False
        assert res.error_category == "network"

    @patch("enrichment.verification.smtp_probe.resolve_mx", side_effect=VerificationTimeout("slow dns"))
    def test_timeout_fails_closed(self, _mock_mx):
        res = sp.SmtpEmailVerifier().verify("info@example.com")
        assert res.accepts_rcpt is False
        assert res.error_category == "timeout"

    @patch("dns.resolver.Resolver")
    def test_empty_label_fails_closed(self, mock_resolver_cls):
        mock_resolver_cls.return_value.resolve.side_effect = dns.name.EmptyLabel()
        res = sp.SmtpEmailVerifier().verify("info@foo..com")
        assert res.accepts_rcpt is False
        assert res.error_category == "network"

    @patch("enrichment.verification.smtp_probe.resolve_mx", side_effect=ValueError("label too long"))
    def test_value_error_fails_closed(self, _mock_mx):
        res = sp.SmtpEmailVerifier().verify("info@example.com")
        assert res.accepts_rcpt is False
        assert res.error_category == "input"
        assert "label too long" in res.smtp_message

    @patch("enrichment.verification.smtp_probe.probe_rcpt")
    @patch("enrichment.verification.smtp_probe.resolve_mx", return_value=["mx1.example.com", "mx2.example.com"])
    def test_probes_first_mx(self, _mock_mx, mock_probe):
        mock_probe.return_value = sp.ProbeResult(
            email="info@example.com", domain="example.com", mx_used="mx1.example.com",
            accepts_rcpt=True, smtp_code=250, smtp_message="OK", error_category="ok", rtt_ms=5,
        )
        res = sp.SmtpEmailVerifier(timeout_s=4).verify("info@example.com")
        assert res.accepts_rcpt is True
        mock_probe.assert_called_once_with("mx1.example.com", "info@example.com", timeout=4)


def test_main_prints_json_rows(capsys):
    assert sp.main(["--email", "a@gmail.com", "--email", "bad"]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert [r["error_category"] for r in rows] == ["policy", "input"]


@patch("dns.resolver.Resolver", side_effect=dns.resolver.NoResolverConfiguration())
def test_resolve_mx_without_resolver_config_is_empty(_mock_resolver_cls):
    assert sp.resolve_mx("example.com") == []
