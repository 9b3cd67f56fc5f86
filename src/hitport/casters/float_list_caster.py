import math
from typing import Literal

from pydantic import model_validator

from hitport.casters.base_caster import CasterBase, CastError


def format_float(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


class FloatListCaster(CasterBase):
    output_type: Literal["float_list"] = "float_list"
    separator: str = ","
    max_length: int | None = None
    min_value: float | None = None

    @model_validator(mode="after")
    def check_separator(self) -> "FloatListCaster":
        if not self.separator:
            raise ValueError("separator must not be empty")
        return self

    def encode(self, value: tuple[float, ...]) -> str:
        return self.separator.join(format_float(v) for v in value)

    def decode(self, raw: str) -> tuple[float, ...]:
        if self.is_null(raw):
            return ()

        values: list[float] = []
        for part in raw.split(self.separator):
            try:
                number = float(part.strip())
            except ValueError:
                raise CastError(f"invalid number {part!r}")
            if not math.isfinite(number):
                raise CastError(f"invalid number {part!r}")
            if self.min_value is not None and number < self.min_value:
                raise CastError(f"{format_float(number)} is below the minimum of {format_float(self.min_value)}")
            values.append(number)

        if self.max_length is not None and len(values) > self.max_length:
            raise CastError(f"too many values: {len(values)} (max: {self.max_length})")
        return tuple(values)
