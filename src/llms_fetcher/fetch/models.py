from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

from llms_fetcher.cache.models import Validators
from llms_fetcher.fetch.errors import FetchError

DEFAULT_MAX_REDIRECTS = 5

OutcomeKind = Literal["fresh", "revalidated", "updated", "served_stale", "failed"]


@dataclass(frozen=True, slots=True)
class FetchConfig:
    """Per-call inputs for the freshness controller. Durations are in seconds."""

    source_url: str
    output_path: Path
    metadata_path: Path
    user_agent: str
    timeout: float
    ttl: float = 0.0
    max_redirects: int = DEFAULT_MAX_REDIRECTS


@dataclass(frozen=True, slots=True)
class FetchResult:
    status: int
    body: Optional[str]
    validators: Validators
    final_url: str
    redirects: int = 0

    @property
    def not_modified(self) -> bool:
        return self.status == 304


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    """
    Result of one freshness check.

    ``error`` is the failure reason for ``served_stale`` and ``failed``. On ``updated``
    and ``revalidated`` it is set only when the metadata could not be persisted.
    """

    kind: OutcomeKind
    path: Path
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.kind != "failed"

    @property
    def from_network(self) -> bool:
        return self.kind in ("revalidated", "updated")

    @classmethod
    def fresh(cls, path: Path) -> FetchOutcome:
        return cls(kind="fresh", path=path)

    @classmethod
    def revalidated(cls, path: Path, error: Optional[FetchError] = None) -> FetchOutcome:
        return cls(kind="revalidated", path=path, error=error)

    @classmethod
    def updated(cls, path: Path, error: Optional[FetchError] = None) -> FetchOutcome:
        return cls(kind="updated", path=path, error=error)

    @classmethod
    def served_stale(cls, path: Path, reason: FetchError) -> FetchOutcome:
        return cls(kind="served_stale", path=path, error=reason)

    @classmethod
    def failed(cls, path: Path, error: FetchError) -> FetchOutcome:
        return cls(kind="failed", path=path, error=error)
