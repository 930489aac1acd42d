"""Per-job execution tracing.

Every job owns one trace holding the seven pipeline steps. Steps move through
``pending -> in_progress -> {completed, failed}``; any other transition raises
``InvalidStepTransition``. A trace is frozen once its job terminates.

When file output is enabled each event is also written to a per-job directory
as an indented UTF-8 JSON file whose numeric prefix follows execution order.
"""
from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from enrichment.errors import InvalidStepTransition
from enrichment.pipeline.domain import safe_filename
from enrichment.schemas import (
    EnrichmentTrace,
    JobStatus,
    PageRecord,
    PipelineStep,
    QueryOutcome,
    StepStatus,
    TraceProgress,
    utcnow,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[StepStatus, frozenset] = {
    StepStatus.PENDING: frozenset({StepStatus.IN_PROGRESS}),
    StepStatus.IN_PROGRESS: frozenset({StepStatus.COMPLETED, StepStatus.FAILED}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
}

STEP_FILES: Dict[PipelineStep, str] = {
    PipelineStep.DOMAIN_VALIDATION: "01_domain_validation",
    PipelineStep.WEBSITE_SCRAPING: "04_website_scraping_complete",
    PipelineStep.SEARCH_ENRICHMENT: "06_search_enrichment",
    PipelineStep.STRUCTURED_EXTRACTION: "07_structured_extraction",
    PipelineStep.DATA_CONSOLIDATION: "08_data_consolidation",
    PipelineStep.DATABASE_UPSERT: "09_database_upsert",
    PipelineStep.MARKETING_TOOLS: "10_marketing_tools",
}

JOB_INFO_FILE = "00_job_info"
PAGE_DISCOVERY_FILE = "02_page_discovery"
PAGE_SCRAPING_PREFIX = "03_page_scraping_"
SEARCH_QUERY_PREFIX = "05_external_search_"
FINAL_SUMMARY_FILE = "11_final_summary"

ProgressCallback = Callable[[TraceProgress], None]


def _jsonable(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, dict):
        return {str(k.value if hasattr(k, "value") else k): _jsonable(v) for k, v in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [_jsonable(v) for v in payload]
    return payload


def job_dir_name(normalized_domain: str, started_at: datetime) -> str:
    stamp = started_at.isoformat().replace(":", "-").replace(".", "-")
    return f"{normalized_domain}_{stamp}"


class TraceFileSink:
    """Best-effort JSON writer for one job directory; never raises."""

    def __init__(self, job_dir: Path) -> None:
        self.job_dir = Path(job_dir)
        self._lock = threading.Lock()
        try:
            self.job_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("trace directory unavailable (%s): %s", self.job_dir, e)

    def write(self, name: str, payload: Any) -> Optional[Path]:
        path = self.job_dir / f"{name}.json"
        try:
            text = json.dumps(_jsonable(payload), indent=2, ensure_ascii=False, default=str)
            with self._lock:
                path.write_text(text, encoding="utf-8")
            return path
        except (OSError, TypeError, ValueError) as e:
            logger.warning("trace write failed for %s: %s", path, e)
            return None


class EnrichmentTracer:
    def __init__(self, logs_dir: str | Path = "logs/enrichment", *, write_files: bool = True) -> None:
        self.logs_dir = Path(logs_dir)
        self.write_files = write_files
        self._traces: Dict[str, EnrichmentTrace] = {}
        self._sinks: Dict[str, TraceFileSink] = {}
        self._subscribers: Dict[str, List[ProgressCallback]] = {}
        self._lock = threading.RLock()

    # --- lifecycle -------------------------------------------------------

    def start_trace(self, job_id: str, domain: str, normalized_domain: str, job_info: Any = None) -> EnrichmentTrace:
        trace = EnrichmentTrace(
            id=f"trace_{uuid.uuid4().hex[:12]}",
            job_id=job_id,
            domain=domain,
            normalized_domain=normalized_domain,
        )
        with self._lock:
            self._traces[trace.id] = trace
            if self.write_files:
                job_dir = self.logs_dir / job_dir_name(normalized_domain, trace.started_at)
                trace.job_dir = str(job_dir)
                self._sinks[trace.id] = TraceFileSink(job_dir)
        self.write_event(trace.id, JOB_INFO_FILE, {
            "trace_id": trace.id,
            "job_id": job_id,
            "domain": domain,
            "normalized_domain": normalized_domain,
            "started_at": trace.started_at,
            "job": job_info,
        })
        return trace

    def get_trace(self, trace_id: str) -> Optional[EnrichmentTrace]:
        with self._lock:
            return self._traces.get(trace_id)

    def list_active(self) -> List[EnrichmentTrace]:
        with self._lock:
            return [t for t in self._traces.values() if t.status == JobStatus.IN_PROGRESS]

    def discard(self, trace_id: str) -> bool:
        """Forget a trace and its sink and subscribers. Files already written stay on disk."""
        with self._lock:
            self._sinks.pop(trace_id, None)
            self._subscribers.pop(trace_id, None)
            return self._traces.pop(trace_id, None) is not None

    def _require_open(self, trace_id: str, step: PipelineStep, target: StepStatus) -> EnrichmentTrace:
        trace = self._traces.get(trace_id)
        if trace is None:
            raise KeyError(f"unknown trace {trace_id}")
        if trace.status in (JobStatus.COMPLETED, JobStatus.FAILED):
            raise InvalidStepTransition(step.value, f"trace {trace.status.value}", target.value)
        return trace

    def _transition(self, trace_id: str, step: PipelineStep, target: StepStatus) -> EnrichmentTrace:
        trace = self._require_open(trace_id, step, target)
        st = trace.steps[step]
        if target not in ALLOWED_TRANSITIONS[st.status]:
            raise InvalidStepTransition(step.value, st.status.value, target.value)
        now = utcnow()
        st.status = target
        if target == StepStatus.IN_PROGRESS:
            st.started_at = now
        else:
            st.completed_at = now
            st.duration_ms = int((now - st.started_at).total_seconds() * 1000) if st.started_at else 0
            trace.performance.step_durations[step.value] = st.duration_ms
        return trace

    def start_step(self, trace_id: str, step: PipelineStep, input_data: Any = None) -> None:
        with self._lock:
            trace = self._transition(trace_id, step, StepStatus.IN_PROGRESS)
            trace.steps[step].input_data = _jsonable(input_data)
        self._notify(trace_id)

    def complete_step(self, trace_id: str, step: PipelineStep, output_data: Any = None, *,
                      warnings: Optional[List[str]] = None, degraded: bool = False) -> None:
        with self._lock:
            trace = self._transition(trace_id, step, StepStatus.COMPLETED)
            st = trace.steps[step]
            st.output_data = _jsonable(output_data)
            st.warnings.extend(warnings or [])
            st.degraded = degraded
        self.write_event(trace_id, STEP_FILES[step], st)
        self._notify(trace_id)

    def fail_step(self, trace_id: str, step: PipelineStep, error: str) -> None:
        with self._lock:
            trace = self._transition(trace_id, step, StepStatus.FAILED)
            st = trace.steps[step]
            st.errors.append(error)
        self.write_event(trace_id, STEP_FILES[step], st)
        self._notify(trace_id)

    def _finish(self, trace_id: str, status: JobStatus, summary: Any) -> EnrichmentTrace:
        with self._lock:
            trace = self._traces[trace_id]
            if trace.status != JobStatus.IN_PROGRESS:
                raise InvalidStepTransition("trace", trace.status.value, status.value)
            trace.completed_at = utcnow()
            trace.performance.total_duration_ms = int((trace.completed_at - trace.started_at).total_seconds() * 1000)
            trace.status = status
        self.write_event(trace_id, FINAL_SUMMARY_FILE, {
            "status": status.value,
            "trace": trace,
            "summary": summary,
        })
        self._notify(trace_id)
        return trace

    def complete_trace(self, trace_id: str, summary: Any = None) -> EnrichmentTrace:
        return self._finish(trace_id, JobStatus.COMPLETED, summary)

    def fail_trace(self, trace_id: str, error: str, summary: Any = None) -> EnrichmentTrace:
        return self._finish(trace_id, JobStatus.FAILED, {"error": error, "details": summary})

    # --- events ----------------------------------------------------------

    def write_event(self, trace_id: str, name: str, payload: Any) -> None:
        sink = self._sinks.get(trace_id)
        if sink is not None:
            sink.write(name, payload)

    def record_page_discovery(self, trace_id: str, summary: Any) -> None:
        self.write_event(trace_id, PAGE_DISCOVERY_FILE, summary)

    def record_page(self, trace_id: str, page: PageRecord) -> None:
        self.write_event(trace_id, f"{PAGE_SCRAPING_PREFIX}{safe_filename(page.url)}", page)

    def record_search_query(self, trace_id: str, index: int, outcome: QueryOutcome) -> None:
        self.write_event(trace_id, f"{SEARCH_QUERY_PREFIX}{index:02d}", outcome)

    def set_quality(self, trace_id: str, *, confidence_score: float, data_completeness: float,
                    validation_errors: List[str], accuracy_issues: List[str]) -> None:
        with self._lock:
            trace = self._traces[trace_id]
            if trace.status != JobStatus.IN_PROGRESS:
                raise InvalidStepTransition("quality_metrics", trace.status.value, "update")
            qm = trace.quality_metrics
            qm.confidence_score = confidence_score
            qm.data_completeness = data_completeness
            qm.validation_errors = list(validation_errors)
            qm.accuracy_issues = list(accuracy_issues)

    # --- progress --------------------------------------------------------

    def get_progress(self, trace_id: str) -> Optional[TraceProgress]:
        with self._lock:
            trace = self._traces.get(trace_id)
            if trace is None:
                return None
            steps = list(trace.steps.values())
            done = [s for s in steps if s.status == StepStatus.COMPLETED]
            current = next((s for s in steps if s.status == StepStatus.IN_PROGRESS), None)
            failed = next((s for s in steps if s.status == StepStatus.FAILED), None)
            total = len(steps)
            eta_ms = None
            if done and trace.status == JobStatus.IN_PROGRESS:
                mean = sum(s.duration_ms or 0 for s in done) / len(done)
                eta_ms = int(mean * (total - len(done)))
            if current is not None:
                operation = f"{current.step.value} in progress"
            elif failed is not None:
                operation = f"{failed.step.value} failed"
            elif trace.status == JobStatus.COMPLETED:
                operation = "completed"
            else:
                operation = "waiting"
            return TraceProgress(
                trace_id=trace_id,
                current_step=current.step if current else None,
                progress=int(len(done) / total * 100),
                eta_ms=eta_ms,
                current_operation=operation,
                completed_steps=len(done),
                total_steps=total,
                step_details={s.step.value: s.status for s in steps},
            )

    def subscribe(self, trace_id: str, callback: ProgressCallback) -> None:
        with self._lock:
            self._subscribers.setdefault(trace_id, []).append(callback)

    def unsubscribe(self, trace_id: str, callback: Optional[ProgressCallback] = None) -> None:
        with self._lock:
            if callback is None:
                self._subscribers.pop(trace_id, None)
            elif callback in self._subscribers.get(trace_id, []):
                self._subscribers[trace_id].remove(callback)

    def _notify(self, trace_id: str) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(trace_id, []))
        if not callbacks:
            return
        snapshot = self.get_progress(trace_id)
        for cb in callbacks:
            try:
                cb(snapshot)
            except Exception:  # subscriber errors never reach the pipeline
                logger.exception("progress subscriber failed for %s", trace_id)
