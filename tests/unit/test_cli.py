import json
from unittest.mock import patch

from cie.run import main, read_input_domains
from enrichment.schemas import EnrichmentResult, JobStatus


def _result(domain, status=JobStatus.COMPLETED, error=None):
    return EnrichmentResult(job_id=f"job_{domain}", domain=domain, normalized_domain=domain,
                            status=status, progress=100 if status == JobStatus.COMPLETED else 15, error=error)


def test_read_input_domains_skips_comments(tmp_path):
    path = tmp_path / "domains.txt"
    path.write_text("# targets\nacme.com\n\n  apex.io  \n", encoding="utf-8")
    assert read_input_domains(path) == ["acme.com", "apex.io"]


def test_dry_run(tmp_path, capsys):
    code = main(["--domain", "acme.com", "--out", str(tmp_path / "out"), "--dry-run"])
    assert code == 0
    assert "Dry run OK: 1 domain(s)" in capsys.readouterr().out


def test_input_errors(tmp_path):
    assert main(["--input", str(tmp_path / "missing.txt"), "--out", str(tmp_path)]) == 2
    assert main(["--out", str(tmp_path)]) == 2


def test_config_error(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("crawl: [oops", encoding="utf-8")
    assert main(["--domain", "acme.com", "--config", str(bad), "--out", str(tmp_path)]) == 1


def test_unwritable_out_dir(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    assert main(["--domain", "acme.com", "--out", str(blocker / "out")]) == 3


@patch("cie.run.EnrichmentEngine")
def test_run_writes_results(mock_engine_cls, tmp_path):
    engine = mock_engine_cls.return_value
    engine.enrich_company.side_effect = [_result("acme.com"), _result("apex.io")]
    domains = tmp_path / "domains.txt"
    domains.write_text("apex.io\n", encoding="utf-8")
    out = tmp_path / "out"

    code = main(["--domain", "acme.com", "--input", str(domains), "--out", str(out),
                 "--max-pages", "3", "--no-headless", "--no-verify-emails", "--priority", "high"])

    assert code == 0
    cfg = mock_engine_cls.call_args.args[0]
    assert cfg.crawl.max_pages == 3
    assert cfg.crawl.enable_headless is False
    assert cfg.verification.verify_emails is False
    requests = [c.args[0] for c in engine.enrich_company.call_args_list]
    assert [r.domain for r in requests] == ["acme.com", "apex.io"]
    assert requests[0].priority.value == "high"
    rows = json.loads((out / "results.json").read_text(encoding="utf-8"))
    assert [r["normalized_domain"] for r in rows] == ["acme.com", "apex.io"]
    engine.close.assert_called_once()


@patch("cie.run.EnrichmentEngine")
def test_failed_job_exit_code(mock_engine_cls, tmp_path):
    mock_engine_cls.return_value.enrich_company.return_value = _result(
        "acme.com", JobStatus.FAILED, "Domain acme.com is not accessible (HTTP 404)")
    assert main(["--domain", "acme.com", "--out", str(tmp_path / "out")]) == 3
