from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class Validators:
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.etag and not self.last_modified


@dataclass(frozen=True, slots=True)
class CacheMetadata:
    etag: Optional[str]
    last_modified: Optional[str]
    last_fetched_at: datetime

    @property
    def validators(self) -> Validators:
        return Validators(etag=self.etag, last_modified=self.last_modified)

    def touched(self, now: datetime) -> CacheMetadata:
        """Return a copy with only the fetch timestamp moved to ``now``."""
        return replace(self, last_fetched_at=now)
