"""Error taxonomy for the enrichment pipeline.

Stage-fatal errors (ValidationError, PersistenceError, a crawl that yields no
pages) propagate to the engine's top-level handler. Page/query level errors
(FetchError, ParseError, VerificationTimeout) are contained by the component
that raises them.
"""
from __future__ import annotations

from typing import Optional


class EnrichmentError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(EnrichmentError):
    pass


class ValidationError(EnrichmentError):
    """Domain is malformed or unreachable."""

    def __init__(self, message: str, domain: Optional[str] = None) -> None:
        super().__init__(message)
        self.domain = domain


class FetchError(EnrichmentError):
    """A page fetch or a search query failed."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ParseError(EnrichmentError):
    """Oracle output could not be parsed into JSON."""

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw


class PersistenceError(EnrichmentError):
    pass


class VerificationTimeout(EnrichmentError):
    """Email/phone probe exceeded its time budget."""


class InvalidStepTransition(EnrichmentError):
    def __init__(self, step: str, current: str, target: str) -> None:
        super().__init__(f"Invalid transition for step {step}: {current} -> {target}")
        self.step = step
        self.current = current
        self.target = target
