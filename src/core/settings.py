import os
import tempfile
from typing import Any
from pathlib import Path

PROJECT_NAME = "hitport"

# Throttling between batches only happens in production.
PROD = os.getenv("HITPORT_ENV", "development").lower() == "production"

# Paths
PROJECT_ROOT_DIR = Path(__file__).parent.parent.parent.resolve()

DATA_DIR = PROJECT_ROOT_DIR / "data"
DUCKDB_PATH = os.getenv("HITPORT_DB_PATH", str(DATA_DIR / "hits.duckdb"))

EXPORT_DIR = Path(os.getenv("HITPORT_EXPORT_DIR", tempfile.gettempdir()))
CONFIG_FILE_PATH = PROJECT_ROOT_DIR / "configs" / "transfer.yaml"
LOG_FOLDER = PROJECT_ROOT_DIR / "logs"

os.makedirs(LOG_FOLDER, exist_ok=True)
os.makedirs(DATA_DIR, exist_ok=True)

# Tables
TABLE_HITS = "hits"
TABLE_EXPORTS = "exports"


# Logging Configuration
# Results of CLI commands go to stdout, so log lines stay on stderr.

LOG_LEVEL = os.getenv("HITPORT_LOG_LEVEL", "INFO").upper()
LOG_FILE_PATH = LOG_FOLDER / f"{PROJECT_NAME}.log"

LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "console": {
            "format": "%(levelname)-7s %(name)s: %(message)s"
        },
        "detailed": {
            "format": "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d %(message)s"
        },
    },
    "handlers": {
        "stderr": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "console",
            "level": LOG_LEVEL,
        },
        "transfer_log": {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "detailed",
            "level": "DEBUG",
            "filename": str(LOG_FILE_PATH),
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 3,
            "encoding": "utf8",
        },
    },
    "loggers": {
        PROJECT_NAME: {
            "handlers": ["stderr", "transfer_log"],
            "level": "DEBUG",
            "propagate": False,
        },
        "__main__": {
            "handlers": ["stderr", "transfer_log"],
            "level": "DEBUG",
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["stderr"],
        "level": "WARNING",
    },
}
