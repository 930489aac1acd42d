from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from enrichment.errors import FetchError
from enrichment.schemas import SearchResultItem
from enrichment.sources.search import (
    QUERY_TEMPLATES,
    ExternalSearchEnricher,
    classify_source,
    extract_signals,
    score_result,
)

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)


class _MockTransport(httpx.BaseTransport):
    def __init__(self, by_query: dict[str, tuple[int, object]]):
        self.by_query = by_query
        self.queries: list[str] = []

    def handle_request(self, request: httpx.Request) -> httpx.Response:  # type: ignore[override]
        q = request.url.params["q"]
        self.queries.append(q)
        status, payload = self.by_query.get(q, (200, {}))
        if isinstance(payload, (bytes, str)):
            return httpx.Response(status, content=payload, request=request)
        return httpx.Response(status, json=payload, request=request)


def _enricher(by_query, **kwargs):
    transport = _MockTransport(by_query)
    sleeps: list[float] = []
    enricher = ExternalSearchEnricher(api_key="k", engine_id="cx", client=httpx.Client(transport=transport),
                                      sleep=sleeps.append, **kwargs)
    return enricher, transport, sleeps


def test_classify_source():
    assert classify_source("https://www.linkedin.com/company/acme") == "LinkedIn"
    assert classify_source("https://www.crunchbase.com/organization/acme") == "Crunchbase"
    assert classify_source("https://techcrunch.com/2026/acme-raises") == "News"
    assert classify_source("https://acme.com/press/launch") == "News"
    assert classify_source("https://jobs.lever.co/acme") == "Careers"
    assert classify_source("https://medium.com/@acme/post") == "Blog"
    assert classify_source("https://example.org/") == "Other"


def test_score_result_recency_and_snippet_bonus():
    fresh = {"pagemap": {"metatags": [{"article:published_time": (NOW - timedelta(days=3)).isoformat()}]}}
    older = {"pagemap": {"metatags": [{"article:published_time": (NOW - timedelta(days=60)).isoformat()}]}}
    assert score_result({}, "News", NOW) == 0.6
    assert score_result(fresh, "News", NOW) == 0.8
    assert score_result(older, "News", NOW) == 0.7
    assert score_result({"snippet": "x" * 101}, "Other", NOW) == 0.2
    assert score_result({**fresh, "snippet": "x" * 200}, "LinkedIn", NOW) == 1.0
    assert score_result({"pagemap": {"metatags": [{"article:published_time": "yesterday"}]}}, "Blog", NOW) == 0.4


def test_extract_signals():
    results = [
        SearchResultItem(title="Acme | LinkedIn", link="https://linkedin.com/company/acme",
                         snippet="Acme has 51-200 employees", source="LinkedIn"),
        SearchResultItem(title="Acme raises Series B", link="https://techcrunch.com/acme",
                         snippet="Acme raised $25M in Series B funding", source="News"),
        SearchResultItem(title="Acme reviews", link="https://glassdoor.com/acme", source="Glassdoor"),
    ]
    signals = extract_signals(results)
    assert signals.employee_count == "51-200"
    assert signals.funding == "25M"
    assert signals.news == ["Acme raises Series B"]
    assert signals.reviews == ["Acme reviews"]


def test_enrich_runs_every_template_and_dedupes():
    enricher, transport, sleeps = _enricher({
        '"Acme" site:linkedin.com': (200, {"items": [
            {"title": "Acme | LinkedIn", "link": "https://www.linkedin.com/company/acme", "snippet": "short"},
            {"title": "no link"},
        ]}),
        '"Acme" site:crunchbase.com': (200, {"items": [
            {"title": "Acme - Crunchbase", "link": "https://www.crunchbase.com/organization/acme",
             "snippet": "Acme raised $25M in Series B funding"},
            {"title": "Acme", "link": "https://www.linkedin.com/company/ACME",
             "snippet": "Acme has 51-200 employees. " + "x" * 120},
        ]}),
        '"Acme" news press release': (500, {"error": "backend"}),
    }, delay_s=0.5)

    data = enricher.enrich("www.acme.com")

    assert data.company_name == "Acme"
    assert transport.queries == [t.format(name="Acme") for t in QUERY_TEMPLATES]
    assert sleeps == [0.5] * (len(QUERY_TEMPLATES) - 1)
    assert len(data.queries) == len(QUERY_TEMPLATES)
    failed = [q for q in data.queries if not q.success]
    assert len(failed) == 1 and "HTTP 500" in failed[0].error
    assert data.queries[0].result_count == 1

    assert [r.source for r in data.results] == ["LinkedIn", "Crunchbase"]
    assert data.results[0].relevance == 1.0
    assert data.extracted.employee_count == "51-200"
    assert data.extracted.funding == "25M"


def test_enrich_uses_company_name_hint():
    enricher, transport, _ = _enricher({}, delay_s=0)
    enricher.enrich("acme.com", company_name="Acme Rockets")
    assert transport.queries[0] == '"Acme Rockets" site:linkedin.com'


def test_search_errors():
    enricher, _, _ = _enricher({"bad json": (200, b"not json"), "denied": (403, {"error": "quota"})})
    with pytest.raises(FetchError, match="invalid JSON"):
        enricher.search("bad json")
    with pytest.raises(FetchError) as exc:
        enricher.search("denied")
    assert exc.value.status_code == 403


def test_configured():
    assert ExternalSearchEnricher(api_key="k", engine_id="cx").configured
    assert not ExternalSearchEnricher(api_key="k", engine_id=None).configured


def test_non_object_payload_is_a_query_failure():
    enricher, _, _ = _enricher({
        "list body": (200, [1, 2]),
        "bad items": (200, {"items": "nope"}),
        '"Acme" site:linkedin.com': (200, ["unexpected"]),
        '"Acme" site:crunchbase.com': (200, {"items": [
            "junk",
            {"title": "Acme - Crunchbase", "link": "https://www.crunchbase.com/organization/acme"},
        ]}),
    }, delay_s=0)
    with pytest.raises(FetchError, match="expected an object"):
        enricher.search("list body")
    with pytest.raises(FetchError, match="not a list"):
        enricher.search("bad items")

    data = enricher.enrich("acme.com")
    assert data.queries[0].success is False
    assert "expected an object" in data.queries[0].error
    assert data.queries[1].result_count == 1
    assert [r.source for r in data.results] == ["Crunchbase"]
