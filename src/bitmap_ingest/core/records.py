"""Record types for bulk import.

A record is one unit of ingest data:

- `SetRecord`: associates a row with a column (sets one bit). Rows and
  columns are addressed either by integer ID or by string key.
- `ValueRecord`: assigns a signed integer value to a column of an
  integer (BSI) field.
- `EmptyRecord`: the "no value" variant, exposed as `EMPTY_RECORD`. Record
  sources may yield it for blank input; the pipeline skips it.

All records are immutable. Their import order is by column identifier only;
row identifiers and values take no part in it, so a stable sort keeps
records with the same column in the order they were submitted.

Example:
    >>> records = [ValueRecord(column_id=10, value=5), ValueRecord(column_id=5, value=7)]
    >>> [r.column_id for r in sorted(records, key=sort_key)]
    [5, 10]
"""

from datetime import datetime
from enum import Enum
from typing import Union

import attrs

from bitmap_ingest.config import SHARD_WIDTH

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_UINT64_MAX = 2**64 - 1


class RecordKind(str, Enum):
    """Closed set of record variants a bucket can hold."""

    SET = "set"
    VALUE = "value"


def shard(column_id: int, shard_width: int = SHARD_WIDTH) -> int:
    """Return the shard a column ID falls into (floor division)."""
    return column_id // shard_width


def _to_epoch_seconds(value: int | datetime) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return value


def _check_id(name: str, value: int | None) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{name} must be an int, got {type(value).__name__}"
        raise ValueError(msg)
    if not 0 <= value <= _UINT64_MAX:
        msg = f"{name} must be between 0 and 2**64-1, got {value}"
        raise ValueError(msg)


def _check_key(name: str, value: str | None) -> None:
    if value is not None and not isinstance(value, str):
        msg = f"{name} must be a str, got {type(value).__name__}"
        raise ValueError(msg)


def _check_exactly_one(id_name: str, id_value: object, key_name: str, key_value: object) -> None:
    if (id_value is None) == (key_value is None):
        msg = f"exactly one of {id_name} or {key_name} is required"
        raise ValueError(msg)


@attrs.define(frozen=True, slots=True, kw_only=True)
class SetRecord:
    """A row/column association.

    Attributes:
        row_id: Integer row ID (mutually exclusive with row_key).
        row_key: String row key, for fields that use keys.
        column_id: Integer column ID (mutually exclusive with column_key).
        column_key: String column key, for indexes that use keys.
        timestamp: Seconds since the epoch for time fields; 0 means unset.
            A datetime is converted on construction.

    Example:
        >>> SetRecord(row_id=1, column_id=10).shard()
        0
        >>> SetRecord(row_key="blue", column_key="user-7").keyed_column
        True
    """

    row_id: int | None = None
    row_key: str | None = None
    column_id: int | None = None
    column_key: str | None = None
    timestamp: int = attrs.field(default=0, converter=_to_epoch_seconds)

    def __attrs_post_init__(self) -> None:
        _check_exactly_one("row_id", self.row_id, "row_key", self.row_key)
        _check_exactly_one("column_id", self.column_id, "column_key", self.column_key)
        _check_id("row_id", self.row_id)
        _check_id("column_id", self.column_id)
        _check_key("row_key", self.row_key)
        _check_key("column_key", self.column_key)
        if not isinstance(self.timestamp, int) or isinstance(self.timestamp, bool):
            msg = f"timestamp must be an int or datetime, got {type(self.timestamp).__name__}"
            raise ValueError(msg)

    @classmethod
    def for_bool(
        cls,
        flag: bool,
        *,
        column_id: int | None = None,
        column_key: str | None = None,
        timestamp: int | datetime = 0,
    ) -> "SetRecord":
        """Create a record for a bool field (True is row 1, False is row 0)."""
        return cls(row_id=1 if flag else 0, column_id=column_id, column_key=column_key, timestamp=timestamp)

    @property
    def kind(self) -> RecordKind:
        return RecordKind.SET

    @property
    def keyed_row(self) -> bool:
        return self.row_key is not None

    @property
    def keyed_column(self) -> bool:
        return self.column_key is not None

    @property
    def column(self) -> int | str:
        """The column identifier, ID or key."""
        return self.column_key if self.column_id is None else self.column_id

    def shard(self, shard_width: int = SHARD_WIDTH) -> int:
        """Return the shard of this record.

        Key-addressed columns cannot be placed by the client (the server owns
        the key to ID translation), so they all belong to shard 0.
        """
        if self.column_id is None:
            return 0
        return shard(self.column_id, shard_width)


@attrs.define(frozen=True, slots=True, kw_only=True)
class ValueRecord:
    """An integer value assigned to a column.

    Attributes:
        column_id: Integer column ID (mutually exclusive with column_key).
        column_key: String column key, for indexes that use keys.
        value: Signed 64-bit value.
    """

    column_id: int | None = None
    column_key: str | None = None
    value: int = 0

    def __attrs_post_init__(self) -> None:
        _check_exactly_one("column_id", self.column_id, "column_key", self.column_key)
        _check_id("column_id", self.column_id)
        _check_key("column_key", self.column_key)
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            msg = f"value must be an int, got {type(self.value).__name__}"
            raise ValueError(msg)
        if not _INT64_MIN <= self.value <= _INT64_MAX:
            msg = f"value must fit in a signed 64-bit integer, got {self.value}"
            raise ValueError(msg)

    @property
    def kind(self) -> RecordKind:
        return RecordKind.VALUE

    @property
    def keyed_row(self) -> bool:
        return False

    @property
    def keyed_column(self) -> bool:
        return self.column_key is not None

    @property
    def column(self) -> int | str:
        return self.column_key if self.column_id is None else self.column_id

    def shard(self, shard_width: int = SHARD_WIDTH) -> int:
        if self.column_id is None:
            return 0
        return shard(self.column_id, shard_width)


@attrs.define(frozen=True, slots=True)
class EmptyRecord:
    """The "no value" record."""


EMPTY_RECORD = EmptyRecord()

Record = Union[SetRecord, ValueRecord]


def sort_key(record: Record) -> int | str:
    """Sort key used when encoding a batch: the column identifier only."""
    return record.column
