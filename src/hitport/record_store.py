from typing import Protocol
from uuid import UUID

from hitport.domain import ExportJob, Hit


class HitSource(Protocol):
    def list_after(self, site_id: int, after_id: int, limit: int) -> tuple[list[Hit], int]:
        """
        Up to `limit` hits with hit_id > after_id, ascending by hit_id.

        Returns the hits and the hit_id of the last one (after_id when there
        are none). An empty list means there is nothing left.
        """
        ...


class HitSink(Protocol):
    def ingest(self, hit: Hit) -> None:
        """Accept a hit for storage; it may only become visible after flush()."""
        ...

    def new_session_id(self) -> UUID:
        ...

    def wipe_all(self, site_id: int) -> None:
        """Delete every hit of the site. All or nothing."""
        ...

    def flush(self) -> None:
        """Returns once everything passed to ingest() is stored."""
        ...


class ExportLedger(Protocol):
    def insert_export(self, job: ExportJob) -> int:
        ...

    def record_export_error(self, export_id: int, message: str) -> None:
        ...

    def finish_export(self, job: ExportJob) -> None:
        ...
