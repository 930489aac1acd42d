from __future__ import annotations

import threading
from typing import Dict, List, Optional, Protocol

from enrichment.schemas import EnrichmentJob, EnrichmentResult, JobStatus


class JobStore(Protocol):
    """Job and result registry injected into the engine."""

    def create(self, job: EnrichmentJob) -> EnrichmentJob: ...

    def get(self, job_id: str) -> Optional[EnrichmentJob]: ...

    def list(self) -> List[EnrichmentJob]: ...

    def delete(self, job_id: str) -> bool: ...

    def save_result(self, result: EnrichmentResult) -> None: ...

    def get_result(self, job_id: str) -> Optional[EnrichmentResult]: ...

    def list_results(self) -> List[EnrichmentResult]: ...

    def delete_result(self, job_id: str) -> bool: ...


class InMemoryJobStore:
    """Process-local store; insertion order is preserved."""

    def __init__(self) -> None:
        self._jobs: Dict[str, EnrichmentJob] = {}
        self._results: Dict[str, EnrichmentResult] = {}
        self._lock = threading.Lock()

    def create(self, job: EnrichmentJob) -> EnrichmentJob:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"job {job.id} already exists")
            self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> Optional[EnrichmentJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def list(self) -> List[EnrichmentJob]:
        with self._lock:
            return list(self._jobs.values())

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def save_result(self, result: EnrichmentResult) -> None:
        with self._lock:
            self._results[result.job_id] = result

    def get_result(self, job_id: str) -> Optional[EnrichmentResult]:
        with self._lock:
            return self._results.get(job_id)

    def list_results(self) -> List[EnrichmentResult]:
        with self._lock:
            return list(self._results.values())

    def delete_result(self, job_id: str) -> bool:
        with self._lock:
            return self._results.pop(job_id, None) is not None


def terminal_jobs(store: JobStore, status: Optional[JobStatus] = None) -> List[EnrichmentJob]:
    wanted = (status,) if status else (JobStatus.COMPLETED, JobStatus.FAILED)
    return [j for j in store.list() if j.status in wanted]
