import re
from typing import Literal

from pydantic import model_validator

from hitport.casters.base_caster import CasterBase, CastError

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


class IntegerCaster(CasterBase):
    output_type: Literal["integer"] = "integer"
    min_value: int | None = None
    max_value: int | None = None

    @model_validator(mode="after")
    def check_bounds(self) -> "IntegerCaster":
        if self.min_value is not None and self.max_value is not None and self.min_value > self.max_value:
            raise ValueError("min_value must not be greater than max_value")
        return self

    def encode(self, value: int) -> str:
        return str(value)

    def decode(self, raw: str) -> int:
        if not _INTEGER_RE.fullmatch(raw):
            raise CastError("must be a whole number")
        value = int(raw)
        if (self.min_value is not None and value < self.min_value) or (
            self.max_value is not None and value > self.max_value
        ):
            raise CastError(f"{value} is out of range (min: {self.min_value}, max: {self.max_value})")
        return value
