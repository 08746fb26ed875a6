"""Encoding of a sorted shard batch into an ImportRequest.

The encoding is chosen from the record kind and the field's addressing
mode:

| record kind | index_keys | field_keys | encoding |
|-------------|------------|------------|----------|
| set         | False      | False      | roaring (when enabled and the batch fits) |
| set         | any other combination   | CSV (protobuf ImportRequest) |
| value       | any        | any        | CSV (protobuf ImportValueRequest) |

A roaring body is ordered by bit position and has no room for timestamps,
so a batch with any timestamp, or with a row whose bits fall past the
64-bit position space, is sent as CSV even when roaring is enabled.

Everything here is pure: no I/O, no clocks, no shared state.
"""

from collections.abc import Sequence
from enum import Enum

from bitmap_ingest.config import SHARD_WIDTH
from bitmap_ingest.core.models import FieldRef, ImportRequest
from bitmap_ingest.core.records import RecordKind, SetRecord, ValueRecord

from . import wire

PROTOBUF_CONTENT_TYPE = "application/x-protobuf"
ROARING_CONTENT_TYPE = "application/x-binary"
PQL_VERSION = "1.0"

_MAX_POSITION = 2**64 - 1


class Encoding(str, Enum):
    ROARING = "roaring"
    CSV = "csv"


def _fits_roaring(records: Sequence[SetRecord], shard_width: int) -> bool:
    return all(r.timestamp == 0 and (r.row_id + 1) * shard_width - 1 <= _MAX_POSITION for r in records)


def choose_encoding(
    kind: RecordKind,
    field: FieldRef,
    roaring: bool = False,
    records: Sequence[SetRecord] = (),
    shard_width: int = SHARD_WIDTH,
) -> Encoding:
    """Pick the wire encoding for a batch.

    Args:
        kind: Kind of the records in the batch.
        field: Target field and its addressing mode.
        roaring: True enables roaring for eligible batches.
        records: Records of the batch, checked for timestamps and row range.
        shard_width: Columns per shard.

    Returns:
        Encoding.ROARING for ID-only set batches that fit a roaring body,
        Encoding.CSV otherwise.
    """
    if kind is not RecordKind.SET or not roaring or field.index_keys or field.field_keys:
        return Encoding.CSV
    if not _fits_roaring(records, shard_width):
        return Encoding.CSV
    return Encoding.ROARING


def build_path(field: FieldRef, shard: int, encoding: Encoding, clear: bool = False) -> str:
    path = field.roaring_import_path(shard) if encoding is Encoding.ROARING else field.import_path
    if clear:
        path += "?clear=true"
    return path


def build_headers(encoding: Encoding) -> dict[str, str]:
    return {
        "Content-Type": ROARING_CONTENT_TYPE if encoding is Encoding.ROARING else PROTOBUF_CONTENT_TYPE,
        "Accept": PROTOBUF_CONTENT_TYPE,
        "PQL-Version": PQL_VERSION,
    }


def _encode_set_csv(field: FieldRef, shard: int, records: Sequence[SetRecord]) -> bytes:
    rows: dict = (
        {"row_keys": [r.row_key for r in records]}
        if field.field_keys
        else {"row_ids": [r.row_id for r in records]}
    )
    columns: dict = (
        {"column_keys": [r.column_key for r in records]}
        if field.index_keys
        else {"column_ids": [r.column_id for r in records]}
    )
    return wire.encode_import_request(
        field.index,
        field.field,
        shard,
        timestamps=[r.timestamp for r in records],
        **rows,
        **columns,
    )


def _encode_value_csv(field: FieldRef, shard: int, records: Sequence[ValueRecord]) -> bytes:
    columns: dict = (
        {"column_keys": [r.column_key for r in records]}
        if field.index_keys
        else {"column_ids": [r.column_id for r in records]}
    )
    return wire.encode_import_value_request(
        field.index,
        field.field,
        shard,
        values=[r.value for r in records],
        **columns,
    )


def encode_batch(
    field: FieldRef,
    shard: int,
    kind: RecordKind,
    records: Sequence[SetRecord] | Sequence[ValueRecord],
    *,
    clear: bool = False,
    roaring: bool = False,
    shard_width: int = SHARD_WIDTH,
) -> ImportRequest:
    """Encode records that are already in import order.

    Args:
        field: Target field.
        shard: Shard all records belong to.
        kind: Kind of every record in `records`.
        records: Records sorted by column.
        clear: Encode a removal instead of a set.
        roaring: Allow roaring encoding.
        shard_width: Columns per shard.

    Returns:
        The ImportRequest to POST.
    """
    encoding = choose_encoding(kind, field, roaring, records, shard_width)
    if encoding is Encoding.ROARING:
        payload = wire.encode_roaring(wire.bit_position(r.row_id, r.column_id, shard_width) for r in records)
    elif kind is RecordKind.SET:
        payload = _encode_set_csv(field, shard, records)
    else:
        payload = _encode_value_csv(field, shard, records)

    return ImportRequest(
        path=build_path(field, shard, encoding, clear),
        payload=payload,
        headers=build_headers(encoding),
        roaring=encoding is Encoding.ROARING,
        clear=clear,
        shard=shard,
        record_count=len(records),
    )
