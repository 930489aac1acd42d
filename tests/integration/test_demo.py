"""
Live end-to-end enrichment run against a real website.

Usage:
    ENRICH_RUN_INTEGRATION=1 pytest tests/integration/test_demo.py -v
    ENRICH_TEST_DOMAIN=example.org ENRICH_RUN_INTEGRATION=1 pytest tests/integration/test_demo.py -v

Requirements:
    - ENRICH_RUN_INTEGRATION=1 (guards against accidental network use)
    - Playwright browsers installed when headless rendering is enabled
    - GOOGLE_CUSTOM_SEARCH_* / OPENAI_API_KEY are optional; missing ones degrade their stages
"""

import os

import pytest

from enrichment.engine import EnrichmentEngine
from enrichment.schemas import EnrichmentRequest, JobStatus, PipelineStep, StepStatus
from enrichment.settings import load_config

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(os.getenv("ENRICH_RUN_INTEGRATION") != "1",
                       reason="Integration tests require ENRICH_RUN_INTEGRATION=1"),
]


def test_end_to_end_enrichment(tmp_path):
    domain = os.getenv("ENRICH_TEST_DOMAIN", "python.org")
    cfg = load_config()
    cfg.crawl.max_pages = 3
    cfg.verification.verify_emails = False
    cfg.storage.db_path = str(tmp_path / "enrichment.db")
    cfg.tracing.logs_dir = str(tmp_path / "logs")

    engine = EnrichmentEngine(cfg)
    try:
        result = engine.enrich_company(EnrichmentRequest(domain=domain, force_refresh=True))
    finally:
        engine.close()

    print(f"\n{domain}: status={result.status.value} progress={result.progress} "
          f"quality={result.quality.score if result.quality else '-'}")
    assert result.status == JobStatus.COMPLETED, result.error
    assert result.data.website == f"https://{result.normalized_domain}"
    assert result.sources.website.successful_pages

    trace = engine.tracer.get_trace(result.metadata.trace_id)
    assert trace.steps[PipelineStep.WEBSITE_SCRAPING].status == StepStatus.COMPLETED
    assert os.path.exists(os.path.join(result.metadata.trace_dir, "11_final_summary.json"))
