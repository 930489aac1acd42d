"""Runtime configuration: YAML file (optional) overridden by environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigError


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip() in ("1", "true", "TRUE", "yes", "on")


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {v!r}")


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return float(v)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {v!r}")


@dataclass
class CrawlConfig:
    max_pages: int = 10
    max_workers: int = 4
    timeout_s: float = 12.0
    respect_robots: bool = True
    enable_headless: bool = True
    headless_timeout_ms: int = 20000
    max_sitemaps: int = 5


@dataclass
class SearchConfig:
    api_key: Optional[str] = None
    engine_id: Optional[str] = None
    results_per_query: int = 10
    delay_s: float = 1.0
    timeout_s: float = 10.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.engine_id)


@dataclass
class LLMConfig:
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.1
    timeout_s: float = 60.0
    max_content_chars: int = 4000

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class VerificationConfig:
    verify_emails: bool = True
    smtp_timeout_s: float = 10.0
    dns_lifetime_s: float = 5.0


@dataclass
class StorageConfig:
    db_path: str = "data/enrichment.db"


@dataclass
class TracingConfig:
    logs_dir: str = "logs/enrichment"
    write_files: bool = True
    ops_log_path: Optional[str] = None


@dataclass
class CacheConfig:
    ttl_s: int = 86400


@dataclass
class EnrichmentConfig:
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    tracing: TracingConfig = field(default_factory=TracingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)


def _apply_section(target: Any, values: dict, path: str) -> None:
    if not isinstance(values, dict):
        raise ConfigError(f"config section '{path}' must be a mapping")
    known = {f.name: f for f in fields(target)}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"unknown config key '{path}.{key}'" if path else f"unknown config key '{key}'")
        current = getattr(target, key)
        if is_dataclass(current):
            _apply_section(current, value or {}, f"{path}.{key}" if path else key)
        else:
            setattr(target, key, value)


def _apply_env(cfg: EnrichmentConfig) -> None:
    cfg.search.api_key = os.getenv("GOOGLE_CUSTOM_SEARCH_API_KEY", cfg.search.api_key)
    cfg.search.engine_id = os.getenv("GOOGLE_CUSTOM_SEARCH_ENGINE_ID", cfg.search.engine_id)
    cfg.search.delay_s = _env_float("ENRICH_SEARCH_DELAY_S", cfg.search.delay_s)
    cfg.llm.api_key = os.getenv("OPENAI_API_KEY", cfg.llm.api_key)
    cfg.llm.model = os.getenv("ENRICH_LLM_MODEL", cfg.llm.model)
    cfg.crawl.max_pages = _env_int("ENRICH_MAX_PAGES", cfg.crawl.max_pages)
    cfg.crawl.enable_headless = _env_bool("ENRICH_HEADLESS", cfg.crawl.enable_headless)
    cfg.verification.verify_emails = _env_bool("ENRICH_VERIFY_EMAILS", cfg.verification.verify_emails)
    cfg.tracing.logs_dir = os.getenv("ENRICH_LOGS_DIR", cfg.tracing.logs_dir)
    cfg.storage.db_path = os.getenv("ENRICH_DB_PATH", cfg.storage.db_path)


def load_config(path: Optional[Path | str] = None, *, use_env: bool = True) -> EnrichmentConfig:
    """Build the configuration.

    Precedence: environment > YAML file > dataclass defaults.
    """
    cfg = EnrichmentConfig()
    if path is not None:
        config_path = Path(path)
        if not config_path.is_file():
            raise ConfigError(f"config file not found: {config_path}")
        try:
            with config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {config_path}: {e}")
        _apply_section(cfg, data, "")
    if use_env:
        _apply_env(cfg)
    if cfg.crawl.max_pages < 1:
        raise ConfigError("crawl.max_pages must be >= 1")
    return cfg
