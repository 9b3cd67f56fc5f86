from typing import Literal

from pydantic import model_validator

from hitport.casters.base_caster import CasterBase, CastError


class ChoiceCaster(CasterBase):
    output_type: Literal["choice"] = "choice"
    choices: tuple[str, ...]

    @model_validator(mode="after")
    def check_choices(self) -> "ChoiceCaster":
        if not self.choices:
            raise ValueError("choices must not be empty")
        return self

    def encode(self, value: str) -> str:
        return str(getattr(value, "value", value))

    def decode(self, raw: str) -> str:
        if raw not in self.choices:
            raise CastError(f"must be one of {', '.join(self.choices)}")
        return raw
