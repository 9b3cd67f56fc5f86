from typing import Literal

from hitport.casters.base_caster import CasterBase


class StringCaster(CasterBase):
    output_type: Literal["string"] = "string"

    def encode(self, value: str) -> str:
        return value

    def decode(self, raw: str) -> str:
        return raw
