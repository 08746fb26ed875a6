"""Core domain models and the ingestion pipeline.

This module provides shared domain code used across all layers:
- Exception hierarchy for error handling
- Record types and sharding
- Result classes for structured return values
- The ingestion pipeline (core/ingestion/)
"""

from .exceptions import IngestError, ShardImportError, UpstreamError
from .models import FieldRef, ImportRequest, ImportSummary, ShardResult
from .records import EMPTY_RECORD, EmptyRecord, SetRecord, ValueRecord

__all__ = [
    "EMPTY_RECORD",
    "EmptyRecord",
    "FieldRef",
    "ImportRequest",
    "ImportSummary",
    "IngestError",
    "SetRecord",
    "ShardImportError",
    "ShardResult",
    "UpstreamError",
    "ValueRecord",
]
