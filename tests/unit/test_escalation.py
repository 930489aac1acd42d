from enrichment.pipeline.escalation import detect_anti_bot, detect_spa_shell
from enrichment.pipeline.fetchers.base import FetchResult


def _fr(html: str | None, mime: str = "text/html") -> FetchResult:
    return FetchResult(url="https://example.com/", status_code=200, mime=mime,
                       content_length=len(html or ""), html=html, headers={})


LINKS = '<a href="/a">a</a><a href="/b">b</a><a href="/c">c</a><a href="/d">d</a>'


def test_anti_bot_markers():
    assert detect_anti_bot("<title>Just a moment...</title>") is True
    assert detect_anti_bot("Enable JavaScript and cookies to continue") is True
    assert detect_anti_bot("<html>regular</html>") is False
    assert detect_anti_bot(None) is False


def test_server_rendered_page_with_links_does_not_escalate():
    decision = detect_spa_shell(_fr(f"<html><body><h1>Acme</h1>{LINKS}</body></html>"))
    assert decision.escalate is False
    assert decision.reasons == []


def test_next_data_marker_escalates():
    html = f'<html><body>{LINKS}<script id="__NEXT_DATA__" type="application/json">{{}}</script></body></html>'
    decision = detect_spa_shell(_fr(html))
    assert decision.escalate is True
    assert any("__NEXT_DATA__" in r for r in decision.reasons)


def test_empty_root_mount_point_escalates():
    decision = detect_spa_shell(_fr('<html><body><div id="root"></div><script src="/app.js"></script></body></html>'))
    assert decision.escalate is True
    assert any(r.startswith("anchors<") for r in decision.reasons)


def test_non_html_never_escalates():
    decision = detect_spa_shell(_fr(None, mime="application/pdf"))
    assert decision.escalate is False
