from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union
from uuid import UUID


@dataclass(frozen=True)
class Site:
    """The site owning the hits. Administration of sites happens elsewhere."""
    id: int
    code: str


@dataclass(frozen=True)
class LegacySession:
    """Numeric session identity from before sessions became 128-bit values."""
    value: int

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class CanonicalSession:
    value: UUID

    def __str__(self) -> str:
        return str(self.value)


SessionRef = Union[LegacySession, CanonicalSession]


class RefScheme(str, Enum):
    HTTP = "h"
    OTHER = "o"
    GENERATED = "g"
    CAMPAIGN = "c"


@dataclass(frozen=True)
class Hit:
    """
    One recorded pageview or event.

    hit_id:
      Store-assigned identity, ascending in insertion order. None for hits
      that have not been stored yet (e.g. freshly decoded from an export).

    created_at:
      Always timezone-aware.
    """
    path: str
    created_at: datetime
    hit_id: int | None = None
    site_id: int = 0
    title: str = ""
    event: bool = False
    bot: int = 0
    session: SessionRef | None = None
    first_visit: bool = False
    ref: str = ""
    ref_scheme: str | None = None
    browser: str = ""
    size: tuple[float, ...] = ()
    location: str = ""


@dataclass
class ExportJob:
    """
    One export run.

    last_hit_id doubles as the checkpoint: a new job started from it picks up
    where this one stopped. Jobs are never resumed in place.
    """
    site_id: int
    path: str
    created_at: datetime
    start_from_hit_id: int = 0
    id: int | None = None
    last_hit_id: int | None = None
    finished_at: datetime | None = None
    num_rows: int | None = None
    size: str | None = None  # MiB, one decimal
    hash: str | None = None  # sha256
    error: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None or self.error is not None

    @property
    def is_verified(self) -> bool:
        return self.hash is not None and self.error is None


@dataclass
class ImportResult:
    site_id: int
    rows_imported: int = 0
    fault_count: int = 0
    faults: list[str] = field(default_factory=list)
    error: str | None = None
    replaced: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None
