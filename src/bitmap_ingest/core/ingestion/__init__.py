"""Shard-partitioned ingestion: buckets, encoding, scheduling and delivery.

Modules:
- `wire`: protobuf and roaring body codecs
- `encoder`: encoding choice, paths and headers for a shard batch
- `bucket`: per-shard accumulation buffer and its lifecycle
- `scheduler`: flush policy and bounded worker pool
- `dispatcher`: delivery with node removal and bounded retry
- `pipeline`: end-to-end import of a record stream
"""

from .bucket import ShardBucket
from .dispatcher import Dispatcher
from .encoder import Encoding, choose_encoding, encode_batch
from .pipeline import ImportPipeline
from .scheduler import BatchScheduler

__all__ = [
    "BatchScheduler",
    "Dispatcher",
    "Encoding",
    "ImportPipeline",
    "ShardBucket",
    "choose_encoding",
    "encode_batch",
]
