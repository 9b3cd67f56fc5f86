import logging
from pathlib import Path
from typing import Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from core import settings

logger = logging.getLogger(__name__)


class StrictBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, populate_by_name=True)


class ExportConfig(StrictBaseModel):
    batch_size: int = 5000
    throttle_seconds: float = 0.5
    throttle_enabled: bool = settings.PROD
    export_dir: Path = Field(default_factory=lambda: settings.EXPORT_DIR)

    @model_validator(mode="after")
    def validate_config(self) -> Self:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.throttle_seconds < 0:
            raise ValueError("throttle_seconds must not be negative")
        return self


class ImportConfig(StrictBaseModel):
    throttle_every_rows: int = 5000
    throttle_seconds: float = 10.0
    throttle_enabled: bool = settings.PROD
    # Wait before notifying so asynchronous aggregation can catch up. A guess,
    # not a guarantee.
    settle_seconds: float = 10.0
    fault_capacity: int = 50

    @model_validator(mode="after")
    def validate_config(self) -> Self:
        if self.throttle_every_rows < 1:
            raise ValueError("throttle_every_rows must be at least 1")
        if self.fault_capacity < 1:
            raise ValueError("fault_capacity must be at least 1")
        if self.throttle_seconds < 0 or self.settle_seconds < 0:
            raise ValueError("throttle_seconds and settle_seconds must not be negative")
        return self


class TransferConfig(StrictBaseModel):
    export: ExportConfig = Field(default_factory=ExportConfig)
    import_: ImportConfig = Field(default_factory=ImportConfig, alias="import")


def load_transfer_config(file_path: Path | str) -> TransferConfig:
    file_path = Path(file_path)
    if not file_path.exists():
        logger.warning("No transfer configuration found at %s, using defaults.", file_path)
        return TransferConfig()

    with open(file_path, "r") as file:
        config_yaml = yaml.safe_load(file) or {}

    try:
        # YAML gives plain str/float/int; validate in lax mode so paths and
        # integral delays are coerced.
        return TransferConfig.model_validate(config_yaml, strict=False)
    except Exception as e:
        raise ValueError(f"Error loading transfer config from {file_path}: {e}")
