from typing import Literal
from uuid import UUID

from hitport.casters.base_caster import CasterBase, CastError
from hitport.domain import CanonicalSession, LegacySession, SessionRef


class SessionCaster(CasterBase):
    """
    Sessions are written as-is: legacy numeric IDs keep their decimal form and
    are never upgraded to the 128-bit textual shape. Both shapes are accepted
    back.

    lenient:
      Tokens of any other shape decode to None instead of failing. Imports
      only use the raw token as a remap key, so foreign exports still load.
    """
    output_type: Literal["session"] = "session"
    lenient: bool = False

    def encode(self, value: SessionRef) -> str:
        return str(value)

    def decode(self, raw: str) -> SessionRef | None:
        if raw.isascii() and raw.isdigit():
            return LegacySession(int(raw))
        try:
            return CanonicalSession(UUID(raw))
        except ValueError:
            if self.lenient:
                return None
            raise CastError("not a valid session identifier")
