import pytest

from enrichment.jobs import InMemoryJobStore, terminal_jobs
from enrichment.schemas import EnrichmentJob, EnrichmentResult, JobStatus


def _job(job_id, status=JobStatus.PENDING):
    return EnrichmentJob(id=job_id, domain="acme.com", normalized_domain="acme.com", status=status)


def test_create_get_list_delete():
    store = InMemoryJobStore()
    store.create(_job("a"))
    store.create(_job("b", JobStatus.COMPLETED))

    assert store.get("a").id == "a"
    assert [j.id for j in store.list()] == ["a", "b"]
    with pytest.raises(ValueError):
        store.create(_job("a"))
    assert store.delete("a") is True
    assert store.delete("a") is False
    assert store.get("a") is None


def test_results_are_kept_separately():
    store = InMemoryJobStore()
    result = EnrichmentResult(job_id="a", domain="acme.com", normalized_domain="acme.com", status=JobStatus.FAILED)
    store.save_result(result)

    assert store.get_result("a") is result
    assert store.list_results() == [result]
    assert store.delete_result("a") is True
    assert store.get_result("a") is None


def test_terminal_jobs():
    store = InMemoryJobStore()
    for job_id, status in (("p", JobStatus.PENDING), ("r", JobStatus.IN_PROGRESS),
                           ("c", JobStatus.COMPLETED), ("f", JobStatus.FAILED)):
        store.create(_job(job_id, status))
    assert [j.id for j in terminal_jobs(store)] == ["c", "f"]
    assert [j.id for j in terminal_jobs(store, JobStatus.FAILED)] == ["f"]
    assert store.get("c").is_terminal and not store.get("r").is_terminal
