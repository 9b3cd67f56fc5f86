import csv
import dataclasses
import gzip
import io
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from hitport.domain import CanonicalSession, ExportJob, Hit, RefScheme
from hitport.ledger_store import HitLedgerStore
from hitport.notifier import NotificationKind
from hitport.transfer_config import ExportConfig, ImportConfig


class InMemoryHitStore:
    """Fake hit store implementing HitSource, HitSink and ExportLedger."""

    def __init__(self):
        self.hits: list[Hit] = []
        self.exports: dict[int, ExportJob] = {}
        self.export_errors: dict[int, str] = {}
        self.wiped_sites: list[int] = []
        self.flush_count = 0
        self.minted: list[uuid.UUID] = []
        self._next_hit_id = 1

    def add(self, hit: Hit) -> Hit:
        stored = dataclasses.replace(hit, hit_id=self._next_hit_id)
        self._next_hit_id += 1
        self.hits.append(stored)
        return stored

    def site_hits(self, site_id: int) -> list[Hit]:
        return [h for h in self.hits if h.site_id == site_id]

    # HitSource
    def list_after(self, site_id: int, after_id: int, limit: int) -> tuple[list[Hit], int]:
        batch = [h for h in self.hits if h.site_id == site_id and h.hit_id > after_id][:limit]
        return batch, (batch[-1].hit_id if batch else after_id)

    # HitSink
    def ingest(self, hit: Hit) -> None:
        self.add(hit)

    def new_session_id(self) -> uuid.UUID:
        session = uuid.uuid4()
        self.minted.append(session)
        return session

    def wipe_all(self, site_id: int) -> None:
        self.wiped_sites.append(site_id)
        self.hits = [h for h in self.hits if h.site_id != site_id]

    def flush(self) -> None:
        self.flush_count += 1

    # ExportLedger
    def insert_export(self, job: ExportJob) -> int:
        export_id = len(self.exports) + 1
        self.exports[export_id] = dataclasses.replace(job, id=export_id)
        return export_id

    def record_export_error(self, export_id: int, message: str) -> None:
        self.export_errors[export_id] = message

    def finish_export(self, job: ExportJob) -> None:
        self.exports[job.id] = dataclasses.replace(job)


class RecordingNotifier:
    def __init__(self):
        self.calls: list[tuple[NotificationKind, dict[str, Any]]] = []

    def notify(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        self.calls.append((kind, payload))

    @property
    def kinds(self) -> list[NotificationKind]:
        return [kind for kind, _ in self.calls]


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_hit(i: int = 1, **overrides: Any) -> Hit:
    values: dict[str, Any] = dict(
        site_id=1,
        path=f"/page/{i}",
        title=f"Page {i}",
        event=False,
        bot=0,
        session=CanonicalSession(uuid.UUID(int=i)),
        first_visit=i == 1,
        ref="https://example.com/from",
        ref_scheme=RefScheme.HTTP.value,
        browser="Mozilla/5.0 Firefox/120.0",
        size=(1920.0, 1080.0, 1.0),
        location="NL",
        created_at=datetime(2020, 1, 1 + (i % 28), 12, 30, 15, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return Hit(**values)


def read_artifact_rows(path: Path | str) -> list[list[str]]:
    with gzip.open(path, "rt", encoding="utf-8", newline="") as f:
        return list(csv.reader(f))


def gzip_csv(rows: list[list[str]]) -> io.BytesIO:
    text = io.StringIO()
    csv.writer(text, lineterminator="\n").writerows(rows)
    return io.BytesIO(gzip.compress(text.getvalue().encode("utf-8")))


@pytest.fixture
def store() -> InMemoryHitStore:
    return InMemoryHitStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def export_config(tmp_path: Path) -> ExportConfig:
    return ExportConfig(batch_size=2, throttle_seconds=0.5, throttle_enabled=False, export_dir=tmp_path / "exports")


@pytest.fixture
def import_config() -> ImportConfig:
    return ImportConfig(throttle_every_rows=5000, throttle_seconds=10.0, throttle_enabled=False, settle_seconds=10.0)


@pytest.fixture
def ledger_store():
    with HitLedgerStore(duckdb_path=":memory:", flush_threshold=2) as s:
        yield s
