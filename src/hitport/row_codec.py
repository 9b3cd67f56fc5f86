from dataclasses import dataclass
from typing import Annotated, Any, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from hitport.casters.base_caster import CastError
from hitport.casters.boolean_caster import BooleanCaster
from hitport.casters.choice_caster import ChoiceCaster
from hitport.casters.datetime_caster import DateTimeCaster
from hitport.casters.float_list_caster import FloatListCaster
from hitport.casters.integer_caster import IntegerCaster
from hitport.casters.session_caster import SessionCaster
from hitport.casters.string_caster import StringCaster
from hitport.domain import Hit, RefScheme


EXPORT_VERSION = "1"

# Hit counters are stored as 32-bit integers.
INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

TypeCasterSpec = Annotated[
    Union[BooleanCaster, ChoiceCaster, DateTimeCaster, FloatListCaster, IntegerCaster, SessionCaster, StringCaster],
    Field(discriminator="output_type"),
]


class RowDecodeError(ValueError):
    pass


class MalformedRowError(RowDecodeError):
    pass


class RowValidationError(RowDecodeError):
    """All problems found in one row, keyed by Hit attribute name."""

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        super().__init__(
            "; ".join(f"{name}: {', '.join(messages)}" for name, messages in errors.items())
        )


class StrictBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)


class ColumnSpec(StrictBaseModel):
    csv_header: str
    attribute: str
    type_caster: TypeCasterSpec = Field(default_factory=lambda: StringCaster())
    is_nullable: bool = False
    required: bool = False
    # Fail the whole row on this column before collecting anything else.
    fail_fast: bool = False


# Order is the file format. Never reorder; append and bump EXPORT_VERSION.
COLUMNS: tuple[ColumnSpec, ...] = (
    ColumnSpec(csv_header="Path", attribute="path", required=True),
    ColumnSpec(csv_header="Title", attribute="title"),
    ColumnSpec(csv_header="Event", attribute="event", type_caster=BooleanCaster()),
    ColumnSpec(csv_header="Bot", attribute="bot", type_caster=IntegerCaster(min_value=INT32_MIN, max_value=INT32_MAX)),
    ColumnSpec(csv_header="Session", attribute="session", type_caster=SessionCaster(lenient=True), is_nullable=True),
    ColumnSpec(csv_header="FirstVisit", attribute="first_visit", type_caster=BooleanCaster()),
    ColumnSpec(csv_header="Referrer", attribute="ref"),
    ColumnSpec(
        csv_header="Referrer scheme",
        attribute="ref_scheme",
        type_caster=ChoiceCaster(choices=tuple(s.value for s in RefScheme)),
        is_nullable=True,
    ),
    ColumnSpec(csv_header="Browser", attribute="browser"),
    ColumnSpec(
        csv_header="Screen size",
        attribute="size",
        type_caster=FloatListCaster(max_length=3, min_value=0.0),
        fail_fast=True,
    ),
    ColumnSpec(csv_header="Location", attribute="location"),
    ColumnSpec(csv_header="Date", attribute="created_at", type_caster=DateTimeCaster(), required=True),
)

SESSION_COLUMN_INDEX = next(i for i, c in enumerate(COLUMNS) if c.attribute == "session")


def header_row() -> list[str]:
    headers = [c.csv_header for c in COLUMNS]
    headers[0] = EXPORT_VERSION + headers[0]
    return headers


def is_supported_header(header: Sequence[str]) -> bool:
    return bool(header) and header[0].startswith(EXPORT_VERSION)


def encode_hit(hit: Hit) -> list[str]:
    row: list[str] = []
    for column in COLUMNS:
        value = getattr(hit, column.attribute)
        row.append("" if value is None else column.type_caster.encode(value))
    return row


@dataclass(frozen=True)
class ExportRow:
    """One CSV record, still as raw strings, in column order."""
    values: tuple[str, ...]

    @classmethod
    def from_line(cls, line: Sequence[str]) -> "ExportRow":
        if len(line) != len(COLUMNS):
            raise MalformedRowError(f"wrong number of fields: {len(line)} (want: {len(COLUMNS)})")
        # Input is decoded with surrogateescape; undecodable bytes show up here.
        for column, value in zip(COLUMNS, line):
            try:
                value.encode("utf-8")
            except UnicodeEncodeError:
                raise MalformedRowError(f"{column.csv_header}: not valid UTF-8")
        return cls(values=tuple(line))

    @property
    def session(self) -> str:
        return self.values[SESSION_COLUMN_INDEX]

    def to_hit(self, site_id: int) -> Hit:
        pairs = list(zip(COLUMNS, self.values))
        decoded: dict[str, Any] = {}

        for column, raw in pairs:
            if not column.fail_fast:
                continue
            try:
                decoded[column.attribute] = _decode_value(column, raw)
            except CastError as e:
                raise RowValidationError({column.attribute: [e.reason]})

        errors: dict[str, list[str]] = {}
        for column, raw in pairs:
            if column.fail_fast:
                continue
            try:
                decoded[column.attribute] = _decode_value(column, raw)
            except CastError as e:
                errors.setdefault(column.attribute, []).append(e.reason)

        if errors:
            raise RowValidationError(errors)

        return Hit(site_id=site_id, **decoded)


def _decode_value(column: ColumnSpec, raw: str) -> Any:
    if column.required and raw == "":
        raise CastError("required")
    if column.is_nullable and column.type_caster.is_null(raw):
        return None
    return column.type_caster.decode(raw)


def decode_line(line: Sequence[str], site_id: int) -> Hit:
    return ExportRow.from_line(line).to_hit(site_id)
