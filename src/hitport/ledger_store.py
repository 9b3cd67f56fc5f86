import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence

import duckdb
import pyarrow as pa

from core.settings import TABLE_EXPORTS, TABLE_HITS
from hitport.domain import CanonicalSession, ExportJob, Hit, LegacySession
from hitport.utils import from_utc_naive, to_utc_naive, utc_now

logger = logging.getLogger(__name__)


HITS_ARROW_SCHEMA: pa.Schema = pa.schema([
    pa.field("site_id", pa.int64(), nullable=False),
    pa.field("path", pa.string(), nullable=False),
    pa.field("title", pa.string(), nullable=False),
    pa.field("event", pa.bool_(), nullable=False),
    pa.field("bot", pa.int32(), nullable=False),
    pa.field("session", pa.string(), nullable=True),
    pa.field("legacy_session", pa.int64(), nullable=True),
    pa.field("first_visit", pa.bool_(), nullable=False),
    pa.field("ref", pa.string(), nullable=False),
    pa.field("ref_scheme", pa.string(), nullable=True),
    pa.field("browser", pa.string(), nullable=False),
    pa.field("size", pa.list_(pa.float64()), nullable=True),
    pa.field("location", pa.string(), nullable=False),
    pa.field("created_at", pa.timestamp("us"), nullable=False),
])

HIT_COLUMNS: tuple[str, ...] = tuple(HITS_ARROW_SCHEMA.names)

EXPORT_COLUMNS: tuple[str, ...] = (
    "export_id", "site_id", "start_from_hit_id", "last_hit_id", "path", "created_at",
    "finished_at", "num_rows", "size", "hash", "error",
)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class HitLedgerStore:
    """
    Hit storage and export bookkeeping backed by DuckDB.

    Ingest is buffered: hits passed to ingest() are kept in memory and written
    in one transaction once `flush_threshold` of them are pending, or when
    flush() is called. Reads and wipes flush first so they never miss a
    pending hit. A flush that fails drops its batch and re-raises.

    Tables:
      hits     (hit_id from hit_id_seq)
      exports  (export_id from export_id_seq)

    Timestamps are stored as naive UTC and handed back timezone-aware.
    """

    def __init__(self, *, duckdb_path: str = ":memory:", flush_threshold: int = 1000, auto_bootstrap: bool = True):
        if flush_threshold < 1:
            raise ValueError("flush_threshold must be at least 1")
        self._duckdb_path = duckdb_path
        self._flush_threshold = flush_threshold
        self._auto_bootstrap = auto_bootstrap

        self._connection: duckdb.DuckDBPyConnection | None = None
        self._pending: list[Hit] = []

    def __enter__(self) -> "HitLedgerStore":
        if self._connection is not None:
            raise RuntimeError("Store connection already open")

        self._connection = duckdb.connect(self._duckdb_path)

        if self._auto_bootstrap:
            self._bootstrap()

        logger.debug("Hit store connected. duckdb=%s", self._duckdb_path)
        return self

    def __exit__(self, exc_type, exc_value, tb) -> None:
        if self._connection is None:
            return
        try:
            if exc_type is None:
                self.flush()
            elif self._pending:
                logger.warning("Discarding %s unflushed hits after error", len(self._pending))
        finally:
            self._pending.clear()
            self._connection.close()
            self._connection = None

    def _require_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            raise RuntimeError("Store is not connected; use it as a context manager")
        return self._connection

    # ----------------------------
    # Reading
    # ----------------------------
    def list_after(self, site_id: int, after_id: int, limit: int) -> tuple[list[Hit], int]:
        self.flush()
        conn = self._require_connection()
        rows = conn.execute(
            f"""
            SELECT hit_id, {", ".join(HIT_COLUMNS)}
            FROM {TABLE_HITS}
            WHERE site_id = ? AND hit_id > ?
            ORDER BY hit_id
            LIMIT ?
            """,
            [site_id, after_id, limit],
        ).fetchall()

        hits = [self._row_to_hit(r) for r in rows]
        last_id = hits[-1].hit_id if hits else after_id
        return hits, last_id

    def count_hits(self, site_id: int) -> int:
        self.flush()
        conn = self._require_connection()
        row = conn.execute(f"SELECT COUNT(*) FROM {TABLE_HITS} WHERE site_id = ?", [site_id]).fetchone()
        return int(row[0]) if row else 0

    # ----------------------------
    # Writing
    # ----------------------------
    def ingest(self, hit: Hit) -> None:
        self._pending.append(hit)
        if len(self._pending) >= self._flush_threshold:
            self.flush()

    def insert_hits(self, hits: Iterable[Hit]) -> None:
        """Store hits right away. hit_id on the input is ignored; the store assigns one."""
        self._pending.extend(hits)
        self.flush()

    def flush(self) -> None:
        if not self._pending:
            return
        conn = self._require_connection()

        # A batch that fails to convert or insert is dropped, never retried.
        batch, self._pending = self._pending, []
        try:
            table = self._hits_to_arrow(batch)
        except (pa.ArrowInvalid, pa.ArrowTypeError, OverflowError):
            logger.error("Dropping batch of %s hits that cannot be stored", len(batch))
            raise

        column_list = ", ".join(HIT_COLUMNS)
        conn.register("incoming_hits", table)
        try:
            with self.transaction(conn) as tx:
                tx.execute(f"INSERT INTO {TABLE_HITS} ({column_list}) SELECT {column_list} FROM incoming_hits")
        except Exception:
            logger.error("Dropping batch of %s hits after failed insert", len(batch))
            raise
        finally:
            conn.unregister("incoming_hits")

        logger.debug("Flushed %s hits", table.num_rows)

    def new_session_id(self) -> uuid.UUID:
        return uuid.uuid4()

    def wipe_all(self, site_id: int) -> None:
        conn = self._require_connection()
        self._pending = [h for h in self._pending if h.site_id != site_id]
        self.flush()

        with self.transaction(conn) as tx:
            tx.execute(f"DELETE FROM {TABLE_HITS} WHERE site_id = ?", [site_id])
        logger.info("Deleted all hits for site %s", site_id)

    # ----------------------------
    # Exports
    # ----------------------------
    def insert_export(self, job: ExportJob) -> int:
        conn = self._require_connection()
        row = conn.execute(
            f"""
            INSERT INTO {TABLE_EXPORTS} (site_id, path, created_at, start_from_hit_id)
            VALUES (?, ?, ?, ?)
            RETURNING export_id
            """,
            [job.site_id, job.path, to_utc_naive(job.created_at), job.start_from_hit_id],
        ).fetchone()
        if row is None:
            raise RuntimeError("Insert into exports returned no export_id")
        return int(row[0])

    def record_export_error(self, export_id: int, message: str) -> None:
        conn = self._require_connection()
        conn.execute(f"UPDATE {TABLE_EXPORTS} SET error = ? WHERE export_id = ?", [message, export_id])

    def finish_export(self, job: ExportJob) -> None:
        conn = self._require_connection()
        conn.execute(
            f"""
            UPDATE {TABLE_EXPORTS}
            SET finished_at = ?, num_rows = ?, size = ?, hash = ?, last_hit_id = ?, error = ?
            WHERE export_id = ?
            """,
            [
                to_utc_naive(job.finished_at) if job.finished_at else None,
                job.num_rows,
                job.size,
                job.hash,
                job.last_hit_id,
                job.error,
                job.id,
            ],
        )

    def get_export(self, export_id: int) -> ExportJob | None:
        conn = self._require_connection()
        row = conn.execute(
            f"SELECT {', '.join(EXPORT_COLUMNS)} FROM {TABLE_EXPORTS} WHERE export_id = ?",
            [export_id],
        ).fetchone()
        return self._row_to_export(row) if row else None

    def list_exports(self, site_id: int, since: datetime | None = None) -> list[ExportJob]:
        """Exports of the site created after `since` (default: the last day), newest first."""
        if since is None:
            since = utc_now() - timedelta(days=1)
        conn = self._require_connection()
        rows = conn.execute(
            f"""
            SELECT {', '.join(EXPORT_COLUMNS)}
            FROM {TABLE_EXPORTS}
            WHERE site_id = ? AND created_at > ?
            ORDER BY created_at DESC, export_id DESC
            """,
            [site_id, to_utc_naive(since)],
        ).fetchall()
        return [self._row_to_export(r) for r in rows]

    # ----------------------------
    # Bootstrap / helpers
    # ----------------------------
    def _bootstrap(self) -> None:
        conn = self._require_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS hit_id_seq START 1")
        conn.execute("CREATE SEQUENCE IF NOT EXISTS export_id_seq START 1")

        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {TABLE_HITS} (
              hit_id          BIGINT PRIMARY KEY DEFAULT nextval('hit_id_seq'),
              site_id         BIGINT    NOT NULL,
              path            VARCHAR   NOT NULL,
              title           VARCHAR   NOT NULL DEFAULT '',
              event           BOOLEAN   NOT NULL DEFAULT FALSE,
              bot             INTEGER   NOT NULL DEFAULT 0,
              session         VARCHAR,
              legacy_session  BIGINT,
              first_visit     BOOLEAN   NOT NULL DEFAULT FALSE,
              ref             VARCHAR   NOT NULL DEFAULT '',
              ref_scheme      VARCHAR,
              browser         VARCHAR   NOT NULL DEFAULT '',
              size            DOUBLE[],
              location        VARCHAR   NOT NULL DEFAULT '',
              created_at      TIMESTAMP NOT NULL
            );
            """
        )

        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {TABLE_EXPORTS} (
              export_id          BIGINT PRIMARY KEY DEFAULT nextval('export_id_seq'),
              site_id            BIGINT    NOT NULL,
              start_from_hit_id  BIGINT    NOT NULL,
              last_hit_id        BIGINT,
              path               VARCHAR   NOT NULL,
              created_at         TIMESTAMP NOT NULL,
              finished_at        TIMESTAMP,
              num_rows           INTEGER,
              size               VARCHAR,
              hash               VARCHAR,
              error              VARCHAR
            );
            """
        )

    @contextmanager
    def transaction(self, conn: duckdb.DuckDBPyConnection):
        conn.execute("BEGIN TRANSACTION")
        try:
            yield conn
        except Exception:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    @staticmethod
    def _hits_to_arrow(hits: Sequence[Hit]) -> pa.Table:
        return pa.Table.from_pydict(
            {
                "site_id": [h.site_id for h in hits],
                "path": [h.path for h in hits],
                "title": [h.title for h in hits],
                "event": [h.event for h in hits],
                "bot": [h.bot for h in hits],
                "session": [str(h.session.value) if isinstance(h.session, CanonicalSession) else None for h in hits],
                "legacy_session": [h.session.value if isinstance(h.session, LegacySession) else None for h in hits],
                "first_visit": [h.first_visit for h in hits],
                "ref": [h.ref for h in hits],
                "ref_scheme": [_enum_value(h.ref_scheme) for h in hits],
                "browser": [h.browser for h in hits],
                "size": [list(h.size) for h in hits],
                "location": [h.location for h in hits],
                "created_at": [to_utc_naive(h.created_at) for h in hits],
            },
            schema=HITS_ARROW_SCHEMA,
        )

    @staticmethod
    def _row_to_hit(row: Sequence[Any]) -> Hit:
        (hit_id, site_id, path, title, event, bot, session, legacy_session, first_visit,
         ref, ref_scheme, browser, size, location, created_at) = row

        session_ref: CanonicalSession | LegacySession | None = None
        if session is not None:
            session_ref = CanonicalSession(uuid.UUID(session))
        elif legacy_session is not None:
            session_ref = LegacySession(int(legacy_session))

        return Hit(
            hit_id=int(hit_id),
            site_id=int(site_id),
            path=path,
            title=title,
            event=bool(event),
            bot=int(bot),
            session=session_ref,
            first_visit=bool(first_visit),
            ref=ref,
            ref_scheme=ref_scheme,
            browser=browser,
            size=tuple(size or ()),
            location=location,
            created_at=from_utc_naive(created_at),
        )

    @staticmethod
    def _row_to_export(row: Sequence[Any]) -> ExportJob:
        (export_id, site_id, start_from_hit_id, last_hit_id, path, created_at,
         finished_at, num_rows, size, hash_, error) = row
        return ExportJob(
            id=int(export_id),
            site_id=int(site_id),
            start_from_hit_id=int(start_from_hit_id),
            last_hit_id=last_hit_id,
            path=path,
            created_at=from_utc_naive(created_at),
            finished_at=from_utc_naive(finished_at),
            num_rows=num_rows,
            size=size,
            hash=hash_,
            error=error,
        )
