import argparse
import logging
import sys
from logging.config import dictConfig
from pathlib import Path

from core.settings import CONFIG_FILE_PATH, DUCKDB_PATH, LOGGING_CONFIG
from hitport.domain import Site
from hitport.exporter import ExportEngine
from hitport.importer import ImportEngine
from hitport.ledger_store import HitLedgerStore
from hitport.notifier import LoggingNotifier
from hitport.transfer_config import load_transfer_config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export and import site hits as gzipped CSV.")
    parser.add_argument("--db", default=DUCKDB_PATH, help="DuckDB database file (default: %(default)s)")
    parser.add_argument("--config", type=Path, default=CONFIG_FILE_PATH, help="transfer YAML config")
    commands = parser.add_subparsers(dest="command", required=True)

    export = commands.add_parser("export", help="export all hits of a site")
    export.add_argument("--site-id", type=int, required=True)
    export.add_argument("--site-code", required=True, help="used in the artifact file name")
    export.add_argument("--start-from", type=int, default=0, help="continue after this hit ID (a previous export's last_hit_id)")
    export.add_argument("--notify", action="store_true")

    import_ = commands.add_parser("import", help="import an export file into a site")
    import_.add_argument("--site-id", type=int, required=True)
    import_.add_argument("--file", type=Path, required=True)
    import_.add_argument("--replace", action="store_true", help="delete all existing hits of the site first")
    import_.add_argument("--notify", action="store_true")

    exports = commands.add_parser("exports", help="list exports of the last day")
    exports.add_argument("--site-id", type=int, required=True)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_transfer_config(args.config)
    notifier = LoggingNotifier()
    logger.info("Running %s against %s", args.command, args.db)

    with HitLedgerStore(duckdb_path=args.db) as store:
        if args.command == "export":
            engine = ExportEngine(source=store, ledger=store, config=config.export, notifier=notifier)
            job, fp = engine.create(Site(id=args.site_id, code=args.site_code), start_from=args.start_from)
            job = engine.run(job, fp, notify=args.notify)
            if job.error:
                print(f"export {job.id} failed: {job.error}", file=sys.stderr)
                return 1
            print(f"export {job.id}: {job.path} rows={job.num_rows} last_hit_id={job.last_hit_id} sha256={job.hash}")
            return 0

        if args.command == "import":
            engine = ImportEngine(sink=store, config=config.import_, notifier=notifier)
            with open(args.file, "rb") as fp:
                result = engine.run(args.site_id, fp, replace=args.replace, notify=args.notify)
            if not result.ok:
                print(f"import failed: {result.error}", file=sys.stderr)
                return 1
            print(f"imported {result.rows_imported} rows, {result.fault_count} faults")
            return 0

        for job in store.list_exports(args.site_id):
            status = "error" if job.error else ("done" if job.finished_at else "running")
            print(f"{job.id}\t{status}\t{job.created_at:%Y-%m-%d %H:%M:%S}\t{job.num_rows}\t{job.last_hit_id}\t{job.path}")
        return 0


if __name__ == "__main__":
    dictConfig(LOGGING_CONFIG)
    sys.exit(main())
