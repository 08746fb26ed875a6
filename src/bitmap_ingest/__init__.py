"""Shard-partitioned bulk import client for a distributed bitmap index.

```python
from bitmap_ingest import FieldRef, SetRecord, configure_logging, create_import_client

records = (SetRecord(row_id=1, column_id=c) for c in range(1_000_000))
configure_logging()
with create_import_client() as client:
    summary = client.run(FieldRef("repo", "stargazer"), records)
```
"""

from .config import ImportOptions, ImportStrategy
from .core import EMPTY_RECORD, FieldRef, ImportSummary, SetRecord, ShardResult, ValueRecord
from .clients import create_import_client
from .foundation.logger import configure_logging

__all__ = [
    "EMPTY_RECORD",
    "FieldRef",
    "ImportOptions",
    "ImportStrategy",
    "ImportSummary",
    "SetRecord",
    "ShardResult",
    "ValueRecord",
    "configure_logging",
    "create_import_client",
]
