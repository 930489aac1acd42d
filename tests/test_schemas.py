"""
Test suite for the enrichment Pydantic schemas.

Basic validation tests for requests, jobs, traces and consolidated records.
"""

import pytest
from pydantic import ValidationError

from enrichment.schemas import (
    ConsolidatedCompanyRecord,
    ContactCandidate,
    ContactSource,
    EnrichmentJob,
    EnrichmentRequest,
    EnrichmentTrace,
    ExtractionOutcome,
    JobStatus,
    PageRecord,
    PipelineStep,
    Priority,
    QualityReport,
    Signal,
    StepStatus,
)


class TestEnrichmentRequest:
    def test_defaults(self):
        req = EnrichmentRequest(domain="  acme.com ")
        assert req.domain == "acme.com"
        assert req.priority == Priority.MEDIUM
        assert req.force_refresh is False
        assert req.company_name is None

    def test_empty_domain_rejected(self):
        with pytest.raises(ValidationError, match="Domain cannot be empty"):
            EnrichmentRequest(domain="   ")

    def test_unknown_priority_rejected(self):
        with pytest.raises(ValidationError):
            EnrichmentRequest(domain="acme.com", priority="urgent")


class TestEnrichmentJob:
    def test_progress_bounds(self):
        with pytest.raises(ValidationError):
            EnrichmentJob(id="j", domain="acme.com", normalized_domain="acme.com", progress=101)

    def test_terminal_states(self):
        job = EnrichmentJob(id="j", domain="acme.com", normalized_domain="acme.com")
        assert job.status == JobStatus.PENDING
        assert not job.is_terminal
        job.status = JobStatus.FAILED
        assert job.is_terminal
        assert job.retry_count == 0 and job.max_retries == 3


def test_trace_starts_with_every_step_pending():
    trace = EnrichmentTrace(id="t", job_id="j", domain="acme.com", normalized_domain="acme.com")
    assert list(trace.steps) == list(PipelineStep)
    assert {s.status for s in trace.steps.values()} == {StepStatus.PENDING}
    assert trace.status == JobStatus.IN_PROGRESS


def test_pipeline_step_order():
    assert [s.value for s in PipelineStep] == [
        "domain_validation",
        "website_scraping",
        "search_enrichment",
        "structured_extraction",
        "data_consolidation",
        "database_upsert",
        "marketing_tools",
    ]


def test_frozen_value_objects():
    candidate = ContactCandidate(raw_value="+1 415", normalized_value="+1415", source=ContactSource.TEL)
    with pytest.raises(ValidationError):
        candidate.normalized_value = "x"
    with pytest.raises(ValidationError):
        Signal(value="x", source="html", confidence_hint=1.5)


def test_record_requires_website():
    with pytest.raises(ValidationError):
        ConsolidatedCompanyRecord()
    record = ConsolidatedCompanyRecord(website="https://acme.com")
    assert record.business.industry == ""
    assert record.contact.social_media.linkedin is None


def test_misc_properties():
    assert PageRecord(url="https://acme.com/").ok
    assert not PageRecord(url="https://acme.com/", status="failed").ok
    assert ExtractionOutcome().degraded
    with pytest.raises(ValidationError):
        QualityReport(score=120, is_valid=True, confidence="high")
