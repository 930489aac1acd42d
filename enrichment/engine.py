"""Enrichment orchestration: seven sequential stages per job, one trace per job."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from enrichment.consolidation import DataConsolidator
from enrichment.db.sqlite_store import PersistenceGateway, SqliteCompanyStore
from enrichment.errors import EnrichmentError, FetchError, ValidationError
from enrichment.jobs import InMemoryJobStore, JobStore, terminal_jobs
from enrichment.llm.extraction import ChatOpenAIOracle, StructuredExtractionClient
from enrichment.marketing import prepare_marketing_data
from enrichment.ops_logger import OpsLogger
from enrichment.pipeline.discovery import PageDiscoverer
from enrichment.pipeline.domain import looks_like_domain, normalize_domain
from enrichment.pipeline.extractors import clean_company_name, redact_emails
from enrichment.pipeline.fetchers.playwright import PlaywrightFetcher
from enrichment.pipeline.fetchers.static import StaticFetcher
from enrichment.pipeline.ingest import WebsiteIngestor
from enrichment.pipeline.scraper import PageScraper
from enrichment.schemas import (
    ConsolidatedCompanyRecord,
    DatabaseResult,
    EnrichmentJob,
    EnrichmentRequest,
    EnrichmentResult,
    ExtractionOutcome,
    JobStatus,
    MarketingData,
    PipelineStep,
    QualityReport,
    ResultMetadata,
    ResultSources,
    SearchEnrichment,
    StepStatus,
    TraceProgress,
    WebsiteScrapeData,
    utcnow,
)
from enrichment.settings import EnrichmentConfig
from enrichment.sources.search import ExternalSearchEnricher
from enrichment.tracing import EnrichmentTracer
from enrichment.validation import DataValidator
from enrichment.verification.smtp_probe import EmailVerifier, SmtpEmailVerifier

logger = logging.getLogger(__name__)

# Progress reached once each stage completes
CHECKPOINTS: Dict[PipelineStep, int] = {
    PipelineStep.DOMAIN_VALIDATION: 15,
    PipelineStep.WEBSITE_SCRAPING: 30,
    PipelineStep.SEARCH_ENRICHMENT: 45,
    PipelineStep.STRUCTURED_EXTRACTION: 60,
    PipelineStep.DATA_CONSOLIDATION: 75,
    PipelineStep.DATABASE_UPSERT: 90,
    PipelineStep.MARKETING_TOOLS: 100,
}

MAX_EMAILS_TO_VERIFY = 5


def withhold_unverified_emails(scrape: WebsiteScrapeData, verified: List[str]) -> WebsiteScrapeData:
    """Copy of the scrape where only ``verified`` addresses survive, in the lists and in free text."""
    keep = set(verified)

    def clean(text: str) -> str:
        return redact_emails(text, keep)

    pages = []
    for page in scrape.page_results:
        data = page.extracted_data
        pages.append(page.model_copy(update={"extracted_data": data.model_copy(update={
            "title": clean(data.title),
            "description": clean(data.description),
            "content": clean(data.content),
            "emails": [e for e in data.emails if e in keep],
        })}))
    return scrape.model_copy(update={
        "title": clean(scrape.title),
        "description": clean(scrape.description),
        "content": clean(scrape.content),
        "emails": [e for e in scrape.emails if e in keep],
        "email_counts": {e: n for e, n in scrape.email_counts.items() if e in keep},
        "page_results": pages,
    })


def new_job_id() -> str:
    return f"enrich_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class StageOutcome:
    output: Any = None
    warnings: List[str] = field(default_factory=list)
    degraded: bool = False


@dataclass
class _RunContext:
    request: EnrichmentRequest
    job: EnrichmentJob
    trace_id: str
    normalized: str
    scrape: Optional[WebsiteScrapeData] = None
    search: Optional[SearchEnrichment] = None
    extraction: Optional[ExtractionOutcome] = None
    record: Optional[ConsolidatedCompanyRecord] = None
    conflicts: List[str] = field(default_factory=list)
    quality: Optional[QualityReport] = None
    industry_ids: List[int] = field(default_factory=list)
    category_ids: List[int] = field(default_factory=list)
    database_result: Optional[DatabaseResult] = None
    marketing: Optional[MarketingData] = None
    confidence: float = 0.0


def confidence_score(scrape: Optional[WebsiteScrapeData], search: Optional[SearchEnrichment],
                     extraction: Optional[ExtractionOutcome]) -> float:
    """Weighted evidence presence across the three sources, 0..1."""
    score = 0
    if scrape is not None:
        score += 20 if scrape.title else 0
        score += 15 if scrape.description else 0
        score += 15 if scrape.emails else 0
        score += 10 if scrape.phones else 0
    if search is not None:
        score += 15 if search.extracted.employee_count else 0
        score += 10 if search.extracted.funding else 0
        score += 10 if search.extracted.news else 0
    parsed = extraction.parsed if extraction is not None else None
    if parsed is not None:
        score += 5 if parsed.people.executives else 0
        score += 5 if parsed.technology.platforms else 0
        score += 5 if parsed.market.target_customers else 0
    return round(min(score, 100) / 100, 2)


def data_completeness(record: ConsolidatedCompanyRecord) -> float:
    checks = [
        bool(record.company_name),
        bool(record.description),
        bool(record.contact.email),
        bool(record.contact.phone),
        bool(record.business.industry),
        bool(record.business.employee_range),
        bool(record.technology.platforms),
        bool(record.people.executives),
        bool(record.market.target_customers),
        any(v for v in record.contact.social_media.model_dump().values()),
    ]
    return round(sum(checks) / len(checks), 2)


class EnrichmentEngine:
    def __init__(
        self,
        config: Optional[EnrichmentConfig] = None,
        *,
        job_store: Optional[JobStore] = None,
        tracer: Optional[EnrichmentTracer] = None,
        static_fetcher: Optional[StaticFetcher] = None,
        ingestor: Optional[WebsiteIngestor] = None,
        search_enricher: Optional[ExternalSearchEnricher] = None,
        extraction_client: Optional[StructuredExtractionClient] = None,
        email_verifier: Optional[EmailVerifier] = None,
        consolidator: Optional[DataConsolidator] = None,
        validator: Optional[DataValidator] = None,
        store: Optional[PersistenceGateway] = None,
        ops_logger: Optional[OpsLogger] = None,
    ) -> None:
        self.config = config or EnrichmentConfig()
        cfg = self.config
        self.job_store: JobStore = job_store or InMemoryJobStore()
        self.tracer = tracer or EnrichmentTracer(cfg.tracing.logs_dir, write_files=cfg.tracing.write_files)
        self.static_fetcher = static_fetcher or StaticFetcher(
            timeout_s=cfg.crawl.timeout_s, respect_robots=cfg.crawl.respect_robots
        )
        if ingestor is None:
            headless = PlaywrightFetcher(timeout_ms=cfg.crawl.headless_timeout_ms) if cfg.crawl.enable_headless else None
            ingestor = WebsiteIngestor(
                discoverer=PageDiscoverer(self.static_fetcher, max_pages=cfg.crawl.max_pages,
                                          max_sitemaps=cfg.crawl.max_sitemaps),
                scraper=PageScraper(static_fetcher=self.static_fetcher, headless_fetcher=headless,
                                    enable_headless=cfg.crawl.enable_headless),
                max_workers=cfg.crawl.max_workers,
            )
        self.ingestor = ingestor
        if search_enricher is None and cfg.search.configured:
            search_enricher = ExternalSearchEnricher(
                api_key=cfg.search.api_key,
                engine_id=cfg.search.engine_id,
                results_per_query=cfg.search.results_per_query,
                delay_s=cfg.search.delay_s,
                timeout_s=cfg.search.timeout_s,
            )
        self.search_enricher = search_enricher
        if extraction_client is None:
            oracle = None
            if cfg.llm.configured:
                oracle = ChatOpenAIOracle(model=cfg.llm.model, temperature=cfg.llm.temperature,
                                          api_key=cfg.llm.api_key, timeout_s=cfg.llm.timeout_s)
            extraction_client = StructuredExtractionClient(oracle, max_content_chars=cfg.llm.max_content_chars)
        self.extraction_client = extraction_client
        if email_verifier is None and cfg.verification.verify_emails:
            email_verifier = SmtpEmailVerifier(timeout_s=cfg.verification.smtp_timeout_s,
                                               dns_lifetime_s=cfg.verification.dns_lifetime_s)
        self.email_verifier = email_verifier
        self.consolidator = consolidator or DataConsolidator()
        self.validator = validator or DataValidator()
        self.store: PersistenceGateway = store or SqliteCompanyStore(cfg.storage.db_path)
        if ops_logger is None and cfg.tracing.ops_log_path:
            ops_logger = OpsLogger(cfg.tracing.ops_log_path)
        self.ops_logger = ops_logger
        self._trace_by_job: Dict[str, str] = {}

    def close(self) -> None:
        self.static_fetcher.close()
        if self.search_enricher is not None:
            self.search_enricher.close()

    # --- public API ------------------------------------------------------

    def enrich_company(self, request: EnrichmentRequest | str) -> EnrichmentResult:
        if isinstance(request, str):
            request = EnrichmentRequest(domain=request)
        normalized = normalize_domain(request.domain)

        if not request.force_refresh:
            cached = self._cached_result(normalized)
            if cached is not None:
                logger.info("returning cached result %s for %s", cached.job_id, normalized)
                return cached.model_copy(update={"metadata": cached.metadata.model_copy(update={"cached": True})})

        job = EnrichmentJob(id=new_job_id(), domain=request.domain, normalized_domain=normalized,
                            priority=request.priority)
        self.job_store.create(job)
        job.status = JobStatus.IN_PROGRESS
        job.started_at = utcnow()
        started = time.time()
        trace = self.tracer.start_trace(job.id, request.domain, normalized, job_info=job)
        self._trace_by_job[job.id] = trace.id
        ctx = _RunContext(request=request, job=job, trace_id=trace.id, normalized=normalized)

        current: Optional[PipelineStep] = None
        error: Optional[str] = None
        try:
            for step, stage in self._stages():
                current = step
                job.current_step = step
                self.tracer.start_step(trace.id, step, {"domain": normalized, "progress": job.progress})
                outcome = stage(ctx)
                self.tracer.complete_step(trace.id, step, outcome.output,
                                          warnings=outcome.warnings, degraded=outcome.degraded)
                job.progress = CHECKPOINTS[step]
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error("enrichment failed for %s at %s: %s", normalized, current.value if current else "-", error)
            if current is not None and trace.steps[current].status == StepStatus.IN_PROGRESS:
                self.tracer.fail_step(trace.id, current, error)

        job.completed_at = utcnow()
        job.status = JobStatus.FAILED if error else JobStatus.COMPLETED
        job.error = error
        result = self._build_result(ctx, error, int((time.time() - started) * 1000))
        if error:
            self.tracer.fail_trace(trace.id, error, {"progress": job.progress, "failed_step": current})
        else:
            self.tracer.complete_trace(trace.id, result)
        self.job_store.save_result(result)
        self._emit_ops_log(ctx, result)
        return result

    def get_job_status(self, job_id: str) -> Optional[EnrichmentJob]:
        return self.job_store.get(job_id)

    def list_jobs(self) -> List[EnrichmentJob]:
        return self.job_store.list()

    def clear_completed_jobs(self) -> int:
        removed = 0
        for job in terminal_jobs(self.job_store):
            if self.job_store.delete(job.id):
                trace_id = self._trace_by_job.pop(job.id, None)
                if trace_id is not None:
                    self.tracer.discard(trace_id)
                removed += 1
        return removed

    def get_job_result(self, job_id: str) -> Optional[EnrichmentResult]:
        return self.job_store.get_result(job_id)

    def get_domain_result(self, domain: str) -> Optional[EnrichmentResult]:
        """Most recent completed result for the domain."""
        normalized = normalize_domain(domain)
        matches = [r for r in self.job_store.list_results()
                   if r.normalized_domain == normalized and r.status == JobStatus.COMPLETED]
        if not matches:
            return None
        return max(matches, key=lambda r: r.completed_at or r.started_at)

    def list_results(self) -> List[EnrichmentResult]:
        return self.job_store.list_results()

    def clear_completed_results(self) -> int:
        removed = 0
        for r in self.job_store.list_results():
            if r.status in (JobStatus.COMPLETED, JobStatus.FAILED) and self.job_store.delete_result(r.job_id):
                removed += 1
        return removed

    def get_progress(self, job_id: str) -> Optional[TraceProgress]:
        trace_id = self._trace_by_job.get(job_id)
        return self.tracer.get_progress(trace_id) if trace_id else None

    # --- internals -------------------------------------------------------

    def _cached_result(self, normalized: str) -> Optional[EnrichmentResult]:
        result = self.get_domain_result(normalized)
        if result is None or result.completed_at is None:
            return None
        if utcnow() - result.completed_at > timedelta(seconds=self.config.cache.ttl_s):
            return None
        return result

    def _stages(self) -> List[Tuple[PipelineStep, Callable[[_RunContext], StageOutcome]]]:
        return [
            (PipelineStep.DOMAIN_VALIDATION, self._validate_domain),
            (PipelineStep.WEBSITE_SCRAPING, self._scrape_website),
            (PipelineStep.SEARCH_ENRICHMENT, self._search),
            (PipelineStep.STRUCTURED_EXTRACTION, self._extract),
            (PipelineStep.DATA_CONSOLIDATION, self._consolidate),
            (PipelineStep.DATABASE_UPSERT, self._persist),
            (PipelineStep.MARKETING_TOOLS, self._marketing),
        ]

    def _validate_domain(self, ctx: _RunContext) -> StageOutcome:
        if not looks_like_domain(ctx.normalized):
            raise ValidationError(f"Invalid domain format: {ctx.request.domain!r}", domain=ctx.request.domain)
        url = f"https://{ctx.normalized}"
        try:
            status = self.static_fetcher.probe(url)
        except FetchError as e:
            raise ValidationError(f"Domain {ctx.normalized} is not accessible: {e}", domain=ctx.normalized) from e
        if status >= 400:
            raise ValidationError(f"Domain {ctx.normalized} is not accessible (HTTP {status})", domain=ctx.normalized)
        return StageOutcome(output={"url": url, "status_code": status, "accessible": True})

    def _scrape_website(self, ctx: _RunContext) -> StageOutcome:
        scrape = self.ingestor.run(ctx.normalized, max_pages=self.config.crawl.max_pages)
        if scrape.discovery is not None:
            self.tracer.record_page_discovery(ctx.trace_id, scrape.discovery)
        for page in scrape.page_results:
            self.tracer.record_page(ctx.trace_id, page)
        ctx.scrape = scrape
        failed = [p for p in scrape.page_results if not p.ok]
        return StageOutcome(
            output={
                "title": scrape.title,
                "description": scrape.description,
                "pages_total": len(scrape.page_results),
                "pages_successful": len(scrape.successful_pages),
                "emails": scrape.emails,
                "phones": [p.normalized_value for p in scrape.phones],
                "technologies": scrape.technologies,
                "social_links": scrape.social_links,
            },
            warnings=[f"page failed: {p.url}: {p.error}" for p in failed],
        )

    def _search(self, ctx: _RunContext) -> StageOutcome:
        if self.search_enricher is None:
            return StageOutcome(output=None, warnings=["external search not configured"])
        hint = ctx.request.company_name or (clean_company_name(ctx.scrape.title) if ctx.scrape else "")
        enrichment = self.search_enricher.enrich(ctx.normalized, hint or None)
        for i, q in enumerate(enrichment.queries, start=1):
            self.tracer.record_search_query(ctx.trace_id, i, q)
        warnings = [f"query failed: {q.query}: {q.error}" for q in enrichment.queries if not q.success]
        ctx.search = enrichment if enrichment.results else None
        if ctx.search is None:
            warnings.append("external search returned no results")
        return StageOutcome(
            output={
                "company_name": enrichment.company_name,
                "result_count": len(enrichment.results),
                "extracted": enrichment.extracted.model_dump(),
            },
            warnings=warnings,
        )

    def _verify_emails(self, emails: List[str]) -> Tuple[List[str], Dict[str, str]]:
        if self.email_verifier is None:
            return list(emails), {e: "not_checked" for e in emails}
        verified: List[str] = []
        outcomes: Dict[str, str] = {}
        for i, email in enumerate(emails):
            if i >= MAX_EMAILS_TO_VERIFY:
                outcomes[email] = "skipped"
                continue
            res = self.email_verifier.verify(email)
            outcomes[email] = res.error_category or "unknown"
            if res.accepts_rcpt:
                verified.append(email)
        return verified, outcomes

    def _extract(self, ctx: _RunContext) -> StageOutcome:
        warnings: List[str] = []
        verification: Dict[str, str] = {}
        if ctx.scrape is not None:
            verified = list(ctx.scrape.emails)
            if ctx.scrape.emails:
                verified, verification = self._verify_emails(ctx.scrape.emails)
                dropped = [e for e in ctx.scrape.emails if e not in verified]
                if dropped:
                    warnings.append(f"unverified emails removed: {', '.join(dropped)}")
            ctx.scrape = withhold_unverified_emails(ctx.scrape, verified)
        outcome = self.extraction_client.extract(ctx.scrape, ctx.search)
        ctx.extraction = outcome
        warnings.extend(outcome.parsing_errors)
        return StageOutcome(
            output={
                "model": outcome.model,
                "email_verification": verification,
                "raw_response": outcome.raw_response,
                "parsed": outcome.parsed,
                "duration_ms": outcome.duration_ms,
            },
            warnings=warnings,
            degraded=outcome.degraded,
        )

    def _consolidate(self, ctx: _RunContext) -> StageOutcome:
        parsed = ctx.extraction.parsed if ctx.extraction else None
        record, conflicts = self.consolidator.consolidate(ctx.normalized, ctx.scrape, ctx.search, parsed)
        quality = self.validator.validate_record(record)
        website_quality = self.validator.validate_website_data(ctx.scrape) if ctx.scrape else None
        extraction_quality = self.validator.validate_extraction(parsed)
        ctx.record, ctx.conflicts, ctx.quality = record, conflicts, quality
        ctx.confidence = confidence_score(ctx.scrape, ctx.search, ctx.extraction)
        self.tracer.set_quality(
            ctx.trace_id,
            confidence_score=ctx.confidence,
            data_completeness=data_completeness(record),
            validation_errors=[f"{i.field}: {i.issue}" for i in quality.issues if i.severity.value == "error"],
            accuracy_issues=conflicts,
        )
        ctx.industry_ids, ctx.category_ids = self.store.ensure_taxonomy(
            record.business.industry, record.business.categories
        )
        return StageOutcome(
            output={
                "record": record,
                "conflicts": conflicts,
                "quality": quality,
                "website_quality": website_quality,
                "extraction_quality": extraction_quality,
                "industry_ids": ctx.industry_ids,
                "category_ids": ctx.category_ids,
            },
            warnings=conflicts,
        )

    def _persist(self, ctx: _RunContext) -> StageOutcome:
        if ctx.record is None:
            raise EnrichmentError("no consolidated record to persist")
        ctx.database_result = self.store.upsert_company(
            ctx.record, industry_ids=ctx.industry_ids, category_ids=ctx.category_ids
        )
        return StageOutcome(output=ctx.database_result)

    def _marketing(self, ctx: _RunContext) -> StageOutcome:
        if ctx.record is None:
            raise EnrichmentError("no consolidated record for marketing preparation")
        ctx.marketing = prepare_marketing_data(ctx.record, ctx.scrape)
        return StageOutcome(output=ctx.marketing)

    def _build_result(self, ctx: _RunContext, error: Optional[str], duration_ms: int) -> EnrichmentResult:
        job = ctx.job
        trace = self.tracer.get_trace(ctx.trace_id)
        return EnrichmentResult(
            job_id=job.id,
            domain=job.domain,
            normalized_domain=job.normalized_domain,
            status=job.status,
            progress=job.progress,
            data=None if error else ctx.record,
            marketing_data=None if error else ctx.marketing,
            database_result=None if error else ctx.database_result,
            quality=ctx.quality,
            error=error,
            duration_ms=duration_ms,
            started_at=job.started_at or job.created_at,
            completed_at=job.completed_at,
            sources=ResultSources(
                website=ctx.scrape,
                search=ctx.search,
                extraction=ctx.extraction.parsed if ctx.extraction else None,
            ),
            metadata=ResultMetadata(
                confidence=ctx.confidence,
                conflicts=ctx.conflicts,
                trace_id=ctx.trace_id,
                trace_dir=trace.job_dir if trace else None,
            ),
        )

    def _emit_ops_log(self, ctx: _RunContext, result: EnrichmentResult) -> None:
        if self.ops_logger is None:
            return
        trace = self.tracer.get_trace(ctx.trace_id)
        pages = ctx.scrape.page_results if ctx.scrape else []
        self.ops_logger.emit({
            "job_id": result.job_id,
            "domain": result.normalized_domain,
            "status": result.status.value,
            "progress": result.progress,
            "error": result.error,
            "duration_ms": result.duration_ms,
            "durations": dict(trace.performance.step_durations) if trace else {},
            "counts": {
                "pages": len(pages),
                "pages_ok": sum(1 for p in pages if p.ok),
                "headless": sum(1 for p in pages if p.method == "headless"),
                "emails": len(ctx.scrape.emails) if ctx.scrape else 0,
                "search_results": len(ctx.search.results) if ctx.search else 0,
            },
        })
