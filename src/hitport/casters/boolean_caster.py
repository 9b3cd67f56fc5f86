from typing import Literal

from pydantic import Field, model_validator

from hitport.casters.base_caster import CasterBase, CastError


class BooleanCaster(CasterBase):
    output_type: Literal["boolean"] = "boolean"

    true_values: frozenset[str] = Field(default_factory=lambda: frozenset({"1", "t", "T", "TRUE", "true", "True"}))
    false_values: frozenset[str] = Field(default_factory=lambda: frozenset({"0", "f", "F", "FALSE", "false", "False"}))

    @model_validator(mode="after")
    def no_overlap(self) -> "BooleanCaster":
        overlap = self.true_values & self.false_values
        if overlap:
            raise ValueError(f"true_values and false_values overlap: {sorted(overlap)}")
        return self

    def encode(self, value: bool) -> str:
        return "true" if value else "false"

    def decode(self, raw: str) -> bool:
        # Case sensitive on purpose: "tRuE" is not a boolean.
        if raw in self.true_values:
            return True
        if raw in self.false_values:
            return False
        raise CastError("must be a boolean (true or false)")
