"""
Company Intel Enrichment - CLI Runner

Usage:
  python -m cie.run --domain example.com --out ./out
  python -m cie.run --input domains.txt --config config/example.yaml --out ./out

Dry run (validate only):
  python -m cie.run --input domains.txt --config config/example.yaml --out ./out --dry-run

Exit codes:
  0 - success
  1 - config error (file missing or invalid YAML)
  2 - input error (no domains / input file missing)
  3 - processing error (output not writable or at least one job failed)
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

from enrichment.engine import EnrichmentEngine
from enrichment.errors import ConfigError
from enrichment.ops_logger import OpsLogger
from enrichment.schemas import EnrichmentRequest, JobStatus, Priority
from enrichment.settings import load_config

logger = logging.getLogger("cie.run")


def read_input_domains(input_path: Path) -> List[str]:
    domains: List[str] = []
    for line in input_path.read_text(encoding="utf-8").splitlines():
        s = line.strip()
        if not s or s.startswith("#"):
            continue
        domains.append(s)
    return domains


def ensure_out_dir(out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    test_file = out_dir / ".write_test"
    test_file.write_text("ok", encoding="utf-8")
    test_file.unlink(missing_ok=True)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="cie.run", description="Company domain enrichment runner")
    parser.add_argument("--domain", "-d", action="append", default=[], help="Domain to enrich (repeatable)")
    parser.add_argument("--input", "-i", default=None, help="Path to domains file (one per line)")
    parser.add_argument("--config", "-c", default=None, help="Path to YAML config file")
    parser.add_argument("--out", "-o", default="out", help="Output directory (default: ./out)")
    parser.add_argument("--dry-run", action="store_true", help="Validate inputs/config and exit")
    parser.add_argument("--priority", choices=[p.value for p in Priority], default=Priority.MEDIUM.value)
    parser.add_argument("--force-refresh", action="store_true", help="Ignore cached results for repeated domains")
    parser.add_argument("--max-pages", type=int, default=None, help="Override crawl.max_pages")
    parser.add_argument("--no-headless", action="store_true", help="Disable Playwright rendering (static-only)")
    parser.add_argument("--no-verify-emails", action="store_true", help="Skip the SMTP verification gate")
    parser.add_argument("--db-path", default=None, help="SQLite DB path (default from config)")
    parser.add_argument("--logs-dir", default=None, help="Trace directory root (default from config)")
    parser.add_argument("--ops-log", default=None, help="Path to ops JSONL log file (default: <out>/ops.log)")
    parser.add_argument("--ops-stdout", action="store_true", help="Also mirror ops JSON to stdout")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    domains = list(args.domain)
    if args.input:
        input_path = Path(args.input)
        if not input_path.is_file():
            print(f"Input error: file not found: {input_path}", file=sys.stderr)
            return 2
        domains.extend(read_input_domains(input_path))
    if not domains:
        print("Input error: no domains given (use --domain or --input)", file=sys.stderr)
        return 2

    out_dir = Path(args.out)
    try:
        ensure_out_dir(out_dir)
    except OSError as e:
        print(f"Output error: cannot write to {out_dir}: {e}", file=sys.stderr)
        return 3

    if args.dry_run:
        print(f"Dry run OK: {len(domains)} domain(s), out={out_dir}")
        return 0

    if args.max_pages is not None:
        cfg.crawl.max_pages = max(1, args.max_pages)
    if args.no_headless:
        cfg.crawl.enable_headless = False
    if args.no_verify_emails:
        cfg.verification.verify_emails = False
    if args.db_path:
        cfg.storage.db_path = args.db_path
    if args.logs_dir:
        cfg.tracing.logs_dir = args.logs_dir

    ops_logger = OpsLogger(Path(args.ops_log) if args.ops_log else out_dir / "ops.log", also_stdout=args.ops_stdout)
    engine = EnrichmentEngine(cfg, ops_logger=ops_logger)
    results = []
    try:
        for domain in domains:
            request = EnrichmentRequest(domain=domain, priority=Priority(args.priority),
                                        force_refresh=args.force_refresh)
            result = engine.enrich_company(request)
            status = "OK" if result.status == JobStatus.COMPLETED else f"FAILED ({result.error})"
            print(f"{result.normalized_domain}: {status} progress={result.progress}% "
                  f"quality={result.quality.score if result.quality else '-'}")
            results.append(result.model_dump(mode="json"))
    finally:
        engine.close()

    out_file = out_dir / "results.json"
    out_file.write_text(json.dumps(results, indent=2, ensure_ascii=False), encoding="utf-8")
    print(f"Results written to {out_file}")
    failed = sum(1 for r in results if r["status"] == JobStatus.FAILED.value)
    return 3 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
