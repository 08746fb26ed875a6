"""Wire codecs for import request bodies.

Two body formats are produced:

- **Protobuf** `ImportRequest` / `ImportValueRequest` messages, using the
  field numbers of the server's public schema. The message classes are built
  at import time from a `FileDescriptorProto` in a private descriptor pool,
  so no generated `_pb2` module has to be kept in sync.
- **Roaring**: a portable 64-bit roaring bitmap (pyroaring `BitMap64`) of
  bit positions `row_id * shard_width + column_id % shard_width`.

The decode helpers are the inverse of the encoders and are used by tests and
debugging tools to inspect a payload.
"""

from collections.abc import Iterable, Sequence

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import Message
from pyroaring import BitMap64

from bitmap_ingest.config import SHARD_WIDTH

_PACKAGE = "bitmap_ingest.wire"

_FDP = descriptor_pb2.FieldDescriptorProto

# (name, number, type, repeated)
_IMPORT_REQUEST_FIELDS = (
    ("Index", 1, _FDP.TYPE_STRING, False),
    ("Field", 2, _FDP.TYPE_STRING, False),
    ("Shard", 3, _FDP.TYPE_UINT64, False),
    ("RowIDs", 4, _FDP.TYPE_UINT64, True),
    ("ColumnIDs", 5, _FDP.TYPE_UINT64, True),
    ("Timestamps", 6, _FDP.TYPE_INT64, True),
    ("RowKeys", 7, _FDP.TYPE_STRING, True),
    ("ColumnKeys", 8, _FDP.TYPE_STRING, True),
)

_IMPORT_VALUE_REQUEST_FIELDS = (
    ("Index", 1, _FDP.TYPE_STRING, False),
    ("Field", 2, _FDP.TYPE_STRING, False),
    ("Shard", 3, _FDP.TYPE_UINT64, False),
    ("ColumnIDs", 5, _FDP.TYPE_UINT64, True),
    ("Values", 6, _FDP.TYPE_INT64, True),
    ("ColumnKeys", 7, _FDP.TYPE_STRING, True),
)


def _add_message(file_proto: descriptor_pb2.FileDescriptorProto, name: str, fields: Sequence[tuple]) -> None:
    message = file_proto.message_type.add(name=name)
    for field_name, number, field_type, repeated in fields:
        message.field.add(
            name=field_name,
            number=number,
            type=field_type,
            label=_FDP.LABEL_REPEATED if repeated else _FDP.LABEL_OPTIONAL,
        )


def _build_message_classes() -> tuple[type[Message], type[Message]]:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="bitmap_ingest/wire/import.proto",
        package=_PACKAGE,
        syntax="proto3",
    )
    _add_message(file_proto, "ImportRequest", _IMPORT_REQUEST_FIELDS)
    _add_message(file_proto, "ImportValueRequest", _IMPORT_VALUE_REQUEST_FIELDS)

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return (
        message_factory.GetMessageClass(pool.FindMessageTypeByName(f"{_PACKAGE}.ImportRequest")),
        message_factory.GetMessageClass(pool.FindMessageTypeByName(f"{_PACKAGE}.ImportValueRequest")),
    )


ImportRequestMessage, ImportValueRequestMessage = _build_message_classes()


# =============================================================================
# Protobuf bodies
# =============================================================================


def encode_import_request(
    index: str,
    field: str,
    shard: int,
    *,
    row_ids: Iterable[int] = (),
    row_keys: Iterable[str] = (),
    column_ids: Iterable[int] = (),
    column_keys: Iterable[str] = (),
    timestamps: Iterable[int] = (),
) -> bytes:
    """Serialize a set-record batch as an `ImportRequest` message.

    Callers populate exactly one of row_ids/row_keys and one of
    column_ids/column_keys; all populated arrays are parallel.
    """
    message = ImportRequestMessage(Index=index, Field=field, Shard=shard)
    message.RowIDs.extend(row_ids)
    message.RowKeys.extend(row_keys)
    message.ColumnIDs.extend(column_ids)
    message.ColumnKeys.extend(column_keys)
    message.Timestamps.extend(timestamps)
    return message.SerializeToString()


def encode_import_value_request(
    index: str,
    field: str,
    shard: int,
    *,
    column_ids: Iterable[int] = (),
    column_keys: Iterable[str] = (),
    values: Iterable[int] = (),
) -> bytes:
    """Serialize a value-record batch as an `ImportValueRequest` message."""
    message = ImportValueRequestMessage(Index=index, Field=field, Shard=shard)
    message.ColumnIDs.extend(column_ids)
    message.ColumnKeys.extend(column_keys)
    message.Values.extend(values)
    return message.SerializeToString()


def decode_import_request(payload: bytes) -> Message:
    message = ImportRequestMessage()
    message.ParseFromString(payload)
    return message


def decode_import_value_request(payload: bytes) -> Message:
    message = ImportValueRequestMessage()
    message.ParseFromString(payload)
    return message


# =============================================================================
# Roaring bodies
# =============================================================================


def bit_position(row_id: int, column_id: int, shard_width: int = SHARD_WIDTH) -> int:
    """Position of a (row, column) bit inside a shard's bitmap."""
    return row_id * shard_width + column_id % shard_width


def encode_roaring(positions: Iterable[int]) -> bytes:
    """Serialize bit positions as a portable 64-bit roaring bitmap."""
    return BitMap64(positions).serialize()


def decode_roaring(payload: bytes) -> BitMap64:
    return BitMap64.deserialize(payload)
