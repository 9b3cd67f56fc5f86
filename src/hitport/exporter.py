import csv
import gzip
import io
import logging
import os
import time
from pathlib import Path
from typing import BinaryIO, Callable

from hitport.domain import ExportJob, Site
from hitport.notifier import NotificationKind, Notifier, notify_safely
from hitport.record_store import ExportLedger, HitSource
from hitport.row_codec import encode_hit, header_row
from hitport.transfer_config import ExportConfig
from hitport.utils import format_size_mib, sha256_file_hash, utc_now

logger = logging.getLogger(__name__)


class ExportEngine:
    """
    Streams all hits of a site into a gzipped CSV file.

    Hits are read in batches in ascending hit_id order, starting after the
    job's start_from_hit_id. The checkpoint (last_hit_id) only moves once a
    batch is written through to the compressor, so a failed job can be
    continued by a new job started from its last_hit_id.

    Failures never raise out of run(); they end up on the job:
      - read/write failure: error set, partial file deleted
      - failure after all data was written (sync, stat, hash): file kept,
        hash left empty and error set to "artifact unverified: ..."
    """

    def __init__(
        self,
        *,
        source: HitSource,
        ledger: ExportLedger,
        config: ExportConfig | None = None,
        notifier: Notifier | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.ledger = ledger
        self.config = config or ExportConfig()
        self.notifier = notifier
        self.sleep = sleep

    def create(self, site: Site, start_from: int = 0) -> tuple[ExportJob, BinaryIO]:
        """Record a new export job and open its (empty) artifact for writing."""
        created_at = utc_now()
        file_name = f"hitport-export-{site.code}-{created_at.strftime('%Y%m%dT%H%M%S%fZ')}-{start_from}.csv.gz"
        job = ExportJob(
            site_id=site.id,
            path=str(Path(self.config.export_dir) / file_name),
            created_at=created_at,
            start_from_hit_id=start_from,
        )

        Path(self.config.export_dir).mkdir(parents=True, exist_ok=True)
        job.id = self.ledger.insert_export(job)
        # "x": nobody else may be writing this artifact.
        fp = open(job.path, "xb")
        return job, fp

    def run(self, job: ExportJob, fp: BinaryIO, notify: bool = False) -> ExportJob:
        log_prefix = f"[export {job.id}]"
        logger.info("%s Export started for site %s from hit %s", log_prefix, job.site_id, job.start_from_hit_id)

        job.last_hit_id = job.start_from_hit_id
        job.num_rows = 0

        gz = gzip.GzipFile(fileobj=fp, mode="wb")
        text = io.TextIOWrapper(gz, encoding="utf-8", newline="")
        writer = csv.writer(text, lineterminator="\n")

        try:
            writer.writerow(header_row())
            while True:
                hits, last_id = self.source.list_after(job.site_id, job.last_hit_id, self.config.batch_size)
                if not hits:
                    break

                for hit in hits:
                    writer.writerow(encode_hit(hit))
                text.flush()

                job.last_hit_id = last_id
                job.num_rows += len(hits)
                logger.debug("%s Wrote %s rows, checkpoint at hit %s", log_prefix, job.num_rows, job.last_hit_id)

                # Small amount of breathing space for the store.
                if self.config.throttle_enabled:
                    self.sleep(self.config.throttle_seconds)

        except Exception as e:
            logger.exception("%s Export failed after %s rows", log_prefix, job.num_rows)
            self._fail(job, (text, gz, fp), str(e) or type(e).__name__)
            return job

        try:
            text.close()  # closes gz and writes the gzip trailer; fp stays open
            fp.flush()
            os.fsync(fp.fileno())
            job.size = format_size_mib(os.fstat(fp.fileno()).st_size)
            fp.close()
            job.hash = sha256_file_hash(Path(job.path))
        except Exception as e:
            logger.exception("%s Export wrote all rows but could not be finalized", log_prefix)
            job.size = None
            job.hash = None
            job.error = f"artifact unverified: {e}"
        finally:
            if not fp.closed:
                fp.close()

        job.finished_at = utc_now()
        try:
            self.ledger.finish_export(job)
        except Exception:
            logger.exception("%s Could not store export result", log_prefix)

        if job.error is not None:
            return job

        logger.info("%s Export finished: %s rows, %s MiB, sha256 %s", log_prefix, job.num_rows, job.size, job.hash)
        if notify:
            notify_safely(self.notifier, NotificationKind.EXPORT_DONE, {"site_id": job.site_id, "export": job})
        return job

    def _fail(self, job: ExportJob, streams: tuple[io.IOBase, ...], message: str) -> None:
        job.error = message
        job.size = None
        job.hash = None
        try:
            self.ledger.record_export_error(job.id, message)
        except Exception:
            logger.exception("Could not record error for export %s", job.id)

        for closable in streams:
            try:
                closable.close()
            except Exception as e:
                logger.debug("Ignoring close error on failed export %s: %s", job.id, e)
        try:
            os.remove(job.path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("Could not remove partial export %s", job.path)
