import dataclasses
import uuid
from datetime import timedelta

import pyarrow as pa
import pytest

from conftest import gzip_csv, make_hit
from hitport.domain import CanonicalSession, ExportJob, LegacySession, Site
from hitport.exporter import ExportEngine
from hitport.importer import ImportEngine
from hitport.ledger_store import HitLedgerStore
from hitport.row_codec import encode_hit, header_row
from hitport.utils import utc_now


class TestHits:
    def test_list_after_pages_in_id_order(self, ledger_store):
        ledger_store.insert_hits(make_hit(i) for i in range(1, 6))

        first, last_id = ledger_store.list_after(1, 0, 2)
        assert [h.hit_id for h in first] == [1, 2]
        assert last_id == 2

        second, last_id = ledger_store.list_after(1, last_id, 2)
        assert [h.path for h in second] == ["/page/3", "/page/4"]

        third, last_id = ledger_store.list_after(1, last_id, 2)
        assert [h.hit_id for h in third] == [5]

        empty, same = ledger_store.list_after(1, last_id, 2)
        assert empty == []
        assert same == last_id == 5

    def test_list_after_is_per_site(self, ledger_store):
        ledger_store.insert_hits([make_hit(1), make_hit(2, site_id=2), make_hit(3)])
        hits, last_id = ledger_store.list_after(1, 0, 10)
        assert [h.path for h in hits] == ["/page/1", "/page/3"]
        assert last_id == 3

    def test_stored_hit_reads_back(self, ledger_store):
        hit = make_hit(1, event=True, bot=3, size=(800.0, 600.0))
        ledger_store.insert_hits([hit])

        [stored], _ = ledger_store.list_after(1, 0, 1)
        assert stored == dataclasses.replace(hit, hit_id=1)
        assert stored.created_at.utcoffset() == timedelta(0)

    def test_both_session_shapes_persist(self, ledger_store):
        canonical = CanonicalSession(uuid.uuid4())
        ledger_store.insert_hits([
            make_hit(1, session=canonical),
            make_hit(2, session=LegacySession(123456789012)),
            make_hit(3, session=None, ref_scheme=None, size=()),
        ])

        hits, _ = ledger_store.list_after(1, 0, 10)
        assert [h.session for h in hits] == [canonical, LegacySession(123456789012), None]
        assert hits[2].ref_scheme is None
        assert hits[2].size == ()

    def test_ingest_is_buffered_until_threshold(self, ledger_store):
        # flush_threshold=2 in the fixture
        ledger_store.ingest(make_hit(1))
        assert ledger_store._pending
        ledger_store.ingest(make_hit(2))
        assert not ledger_store._pending

        ledger_store.ingest(make_hit(3))
        assert ledger_store.count_hits(1) == 3

    def test_wipe_all(self, ledger_store):
        ledger_store.insert_hits([make_hit(1), make_hit(2, site_id=2)])
        ledger_store.ingest(make_hit(3))

        ledger_store.wipe_all(1)

        assert ledger_store.count_hits(1) == 0
        assert ledger_store.count_hits(2) == 1

    def test_new_session_ids_are_unique(self, ledger_store):
        assert len({ledger_store.new_session_id() for _ in range(100)}) == 100

    def test_requires_context(self):
        store = HitLedgerStore()
        with pytest.raises(RuntimeError):
            store.count_hits(1)

    def test_flush_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            HitLedgerStore(flush_threshold=0)

    def test_pending_hits_are_flushed_on_exit(self, tmp_path):
        db_path = str(tmp_path / "hits.duckdb")
        with HitLedgerStore(duckdb_path=db_path, flush_threshold=100) as store:
            store.ingest(make_hit(1))

        with HitLedgerStore(duckdb_path=db_path) as store:
            assert store.count_hits(1) == 1

    def test_pending_hits_are_dropped_on_error(self, tmp_path):
        db_path = str(tmp_path / "hits.duckdb")
        with pytest.raises(KeyError):
            with HitLedgerStore(duckdb_path=db_path, flush_threshold=100) as store:
                store.ingest(make_hit(1))
                raise KeyError("boom")

        with HitLedgerStore(duckdb_path=db_path) as store:
            assert store.count_hits(1) == 0


class TestExports:
    def new_job(self, **overrides):
        values = dict(site_id=1, path="/tmp/export.csv.gz", created_at=utc_now(), start_from_hit_id=0)
        values.update(overrides)
        return ExportJob(**values)

    def test_insert_and_finish(self, ledger_store):
        job = self.new_job(start_from_hit_id=4)
        job.id = ledger_store.insert_export(job)

        stored = ledger_store.get_export(job.id)
        assert stored.start_from_hit_id == 4
        assert stored.finished_at is None
        assert not stored.is_finished

        job.last_hit_id = 9
        job.num_rows = 5
        job.size = "0.1"
        job.hash = "ab" * 32
        job.finished_at = utc_now()
        ledger_store.finish_export(job)

        stored = ledger_store.get_export(job.id)
        assert stored.is_verified
        assert stored.last_hit_id == 9
        assert stored.num_rows == 5
        assert stored.hash == "ab" * 32
        assert abs(stored.finished_at - job.finished_at) < timedelta(milliseconds=1)

    def test_record_error(self, ledger_store):
        job = self.new_job()
        job.id = ledger_store.insert_export(job)
        ledger_store.record_export_error(job.id, "disk full")
        assert ledger_store.get_export(job.id).error == "disk full"

    def test_unknown_export(self, ledger_store):
        assert ledger_store.get_export(404) is None

    def test_list_exports_defaults_to_last_day(self, ledger_store):
        old = self.new_job(created_at=utc_now() - timedelta(days=2))
        recent = self.new_job()
        other_site = self.new_job(site_id=2)
        for job in (old, recent, other_site):
            job.id = ledger_store.insert_export(job)

        assert [j.id for j in ledger_store.list_exports(1)] == [recent.id]
        assert [j.id for j in ledger_store.list_exports(1, since=utc_now() - timedelta(days=3))] == [recent.id, old.id]


def test_export_then_import_through_duckdb(ledger_store, export_config, import_config):
    ledger_store.insert_hits([
        make_hit(1),
        make_hit(2, session=LegacySession(77)),
        make_hit(3, session=make_hit(1).session),
        make_hit(4, session=None),
    ])

    engine = ExportEngine(source=ledger_store, ledger=ledger_store, config=export_config)
    job = engine.run(*engine.create(Site(id=1, code="example")))
    assert job.is_verified
    assert ledger_store.get_export(job.id).hash == job.hash

    with open(job.path, "rb") as fp:
        result = ImportEngine(sink=ledger_store, config=import_config).run(1, fp, replace=True)

    assert result.ok
    assert result.rows_imported == 4
    assert ledger_store.count_hits(1) == 4

    hits, _ = ledger_store.list_after(1, 0, 10)
    assert [h.path for h in hits] == ["/page/1", "/page/2", "/page/3", "/page/4"]
    assert all(isinstance(h.session, CanonicalSession) for h in hits[:3])
    assert hits[0].session == hits[2].session
    assert hits[3].session is None
    # Re-imported hits get fresh ids.
    assert hits[0].hit_id > 4


def test_out_of_range_row_does_not_poison_the_store(ledger_store, import_config):
    rows = [header_row()] + [encode_hit(make_hit(i)) for i in range(1, 6)]
    oversized = encode_hit(make_hit(6))
    oversized[3] = "3000000000"
    rows.append(oversized)
    rows += [encode_hit(make_hit(i)) for i in range(7, 12)]

    result = ImportEngine(sink=ledger_store, config=import_config).run(1, gzip_csv(rows))

    assert result.ok
    assert result.rows_imported == 10
    assert result.fault_count == 1
    assert "bot" in result.faults[0]
    assert ledger_store.count_hits(1) == 10


def test_failed_flush_drops_only_that_batch(ledger_store):
    ledger_store.insert_hits([make_hit(1)])

    ledger_store.ingest(make_hit(2, bot=2**40))
    with pytest.raises((pa.ArrowInvalid, OverflowError)):
        ledger_store.flush()

    # Later calls work again.
    assert ledger_store.count_hits(1) == 1
    ledger_store.insert_hits([make_hit(3)])
    assert ledger_store.count_hits(1) == 2
