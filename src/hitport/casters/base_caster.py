from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CastError(ValueError):
    """A raw CSV value could not be converted to its column type."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CasterBase(BaseModel, ABC):
    output_type: str
    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)
    null_strings: frozenset[str] = Field(default_factory=lambda: frozenset({""}))

    @abstractmethod
    def encode(self, value: Any) -> str: ...

    @abstractmethod
    def decode(self, raw: str) -> Any: ...

    def is_null(self, raw: str) -> bool:
        return raw in self.null_strings
