import csv
import dataclasses
import gzip
import io
import logging
import time
import zlib
from typing import BinaryIO, Callable, TextIO
from uuid import UUID

from hitport.domain import CanonicalSession, ImportResult
from hitport.faults import FaultGroup, ImportRowError
from hitport.notifier import NotificationKind, Notifier, notify_safely
from hitport.record_store import HitSink
from hitport.row_codec import EXPORT_VERSION, ExportRow, RowDecodeError, is_supported_header
from hitport.transfer_config import ImportConfig

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"

# Errors that leave the stream in an unknown position; reading stops.
# Bad UTF-8 is not one of them: it is escaped and rejected per row.
STREAM_ERRORS = (OSError, EOFError, zlib.error)


class UnsupportedExportVersionError(ValueError):
    pass


class SessionRemapTable:
    """
    Maps session tokens found in one file to freshly minted session IDs.

    Every row with the same token gets the same new ID; a new table (a new
    import) never hands out IDs from a previous one. Not persisted.

    Rows with an empty token are never passed through the table: they are
    imported without a session rather than all sharing one minted ID.
    Tokens are opaque text; their shape is not checked.
    """

    def __init__(self, mint: Callable[[], UUID]):
        self._mint = mint
        self._sessions: dict[str, UUID] = {}

    def resolve(self, token: str) -> UUID:
        session = self._sessions.get(token)
        if session is None:
            session = self._mint()
            self._sessions[token] = session
        return session

    def __len__(self) -> int:
        return len(self._sessions)


def open_csv_text(fp: BinaryIO) -> TextIO:
    """Text view of fp, transparently decompressing gzip input."""
    if fp.seekable():
        start = fp.tell()
        magic = fp.read(len(GZIP_MAGIC))
        fp.seek(start)
        source: BinaryIO = fp
    else:
        source = io.BufferedReader(fp)  # type: ignore[arg-type]
        magic = source.peek(len(GZIP_MAGIC))[: len(GZIP_MAGIC)]

    if magic == GZIP_MAGIC:
        source = gzip.GzipFile(fileobj=source, mode="rb")  # type: ignore[assignment]
    return io.TextIOWrapper(source, encoding="utf-8", errors="surrogateescape", newline="")


class ImportEngine:
    """
    Reads an export file back into the hit store.

    All or nothing only for the header check and the optional wipe; after
    that every row stands on its own. Rows that fail to decode are counted
    in a FaultGroup and skipped, the rest are ingested.
    """

    def __init__(
        self,
        *,
        sink: HitSink,
        config: ImportConfig | None = None,
        notifier: Notifier | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.sink = sink
        self.config = config or ImportConfig()
        self.notifier = notifier
        self.sleep = sleep

    def run(self, site_id: int, fp: BinaryIO, replace: bool = False, notify: bool = False) -> ImportResult:
        log_prefix = f"[import site {site_id}]"
        logger.info("%s Import started (replace=%s)", log_prefix, replace)
        result = ImportResult(site_id=site_id, replaced=replace)

        try:
            reader = csv.reader(open_csv_text(fp))
            header = next(reader, None)
        except (csv.Error, *STREAM_ERRORS) as e:
            return self._abort(result, e)

        if not header or not is_supported_header(header):
            found = header[0][:1] if header and header[0] else ""
            return self._abort(result, UnsupportedExportVersionError(
                f"wrong version of CSV database: {found!r} (expected: {EXPORT_VERSION!r})"
            ))

        if replace:
            try:
                self.sink.wipe_all(site_id)
            except Exception as e:
                logger.exception("%s Could not delete existing hits", log_prefix)
                return self._abort(result, e)

        faults = FaultGroup(self.config.fault_capacity)
        sessions = SessionRemapTable(self.sink.new_session_id)

        while True:
            try:
                line = next(reader)
            except StopIteration:
                break
            except csv.Error as e:
                faults.append(ImportRowError(reader.line_num, e))
                continue
            except STREAM_ERRORS as e:
                logger.exception("%s Input stream is unreadable after line %s", log_prefix, reader.line_num)
                faults.append(ImportRowError(reader.line_num, e))
                break

            if not line:
                continue

            try:
                row = ExportRow.from_line(line)
                hit = row.to_hit(site_id)
            except RowDecodeError as e:
                faults.append(ImportRowError(reader.line_num, e))
                continue

            # Hits without a session stay without one instead of sharing a
            # single remapped session.
            session = CanonicalSession(sessions.resolve(row.session)) if row.session else None
            try:
                self.sink.ingest(dataclasses.replace(hit, session=session))
            except Exception as e:
                logger.exception("%s Hit store rejected line %s", log_prefix, reader.line_num)
                self._collect(result, faults)
                return self._abort(result, e)

            result.rows_imported += 1

            # Spread out the load a bit.
            if self.config.throttle_enabled and result.rows_imported % self.config.throttle_every_rows == 0:
                self.sleep(self.config.throttle_seconds)

        try:
            self.sink.flush()
        except Exception as e:
            logger.exception("%s Could not flush imported hits", log_prefix)
            self._collect(result, faults)
            return self._abort(result, e)

        if faults:
            logger.error("%s %s rows could not be imported:\n%s", log_prefix, faults.count(), faults.summary())
        self._collect(result, faults)
        logger.info("%s Imported %s rows using %s sessions", log_prefix, result.rows_imported, len(sessions))

        if notify:
            # The store aggregates asynchronously; give it a moment before
            # telling anyone the data is there.
            self.sleep(self.config.settle_seconds)
            notify_safely(self.notifier, NotificationKind.IMPORT_DONE, {
                "site_id": site_id,
                "rows": result.rows_imported,
                "fault_count": result.fault_count,
                "faults": result.faults,
            })
        return result

    @staticmethod
    def _collect(result: ImportResult, faults: FaultGroup) -> None:
        result.fault_count = faults.count()
        result.faults = [str(f) for f in faults.drain()]

    def _abort(self, result: ImportResult, error: BaseException) -> ImportResult:
        result.error = str(error) or type(error).__name__
        logger.error("[import site %s] Import failed: %s", result.site_id, result.error)
        notify_safely(self.notifier, NotificationKind.IMPORT_ERROR, {
            "site_id": result.site_id,
            "error": result.error,
        })
        return result
