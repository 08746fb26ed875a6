"""Configuration management for the bulk import client.

This module provides the configuration system using Pydantic models. Every
model is frozen; values are validated on construction and can be loaded
from environment variables with sensible local defaults.

## Configuration Sources

Configuration is read from environment variables through the `from_env()`
classmethods. `get_settings()` uses `@lru_cache` so the environment is read
once per process.

## Environment Variables

**Import behaviour**
- `INGEST_THREAD_COUNT`: Concurrent flush workers (default: `1`)
- `INGEST_BATCH_SIZE`: Records per shard batch (default: `10000`)
- `INGEST_TIMEOUT_MS`: Max age of a partially filled batch in milliseconds,
  TIMEOUT strategy only (default: `100`)
- `INGEST_STRATEGY`: `timeout` or `batch` (default: `timeout`)
- `INGEST_CLEAR`: Send batches as removals (default: `false`)
- `INGEST_ROARING`: Use roaring encoding where the batch allows it
  (default: `false`)

**Cluster**
- `INGEST_HOSTS`: Comma separated node addresses
  (default: `http://localhost:10101`)
- `INGEST_CONNECT_TIMEOUT`: Connect timeout in seconds (default: `30`)
- `INGEST_SOCKET_TIMEOUT`: Read timeout in seconds (default: `300`)
- `INGEST_POOL_SIZE`: HTTP connections per host (default: `10`)
- `INGEST_RETRY_MAX_ATTEMPTS`: Attempts per shard batch (default: `3`)
- `INGEST_RETRY_WAIT_MIN`: Minimum backoff in seconds (default: `0.5`)
- `INGEST_RETRY_WAIT_MAX`: Maximum backoff in seconds (default: `10.0`)
- `INGEST_RETRY_MULTIPLIER`: Backoff multiplier (default: `1.0`)
- `INGEST_FRAGMENT_NODES`: Route each shard to the nodes that own it
  (default: `true`); when false batches are spread round-robin over hosts
- `INGEST_CIRCUIT_BREAKER_THRESHOLD`: Lookup failures before the circuit
  opens (default: `5`)
- `INGEST_CIRCUIT_BREAKER_TIMEOUT`: Circuit recovery timeout in seconds
  (default: `60`)

## Usage

```python
from bitmap_ingest.config import ImportOptions, ImportStrategy, get_settings

settings = get_settings()
options = ImportOptions(batch_size=50_000, strategy=ImportStrategy.BATCH)
```
"""

import os
from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import SettingsConfigDict

# Width of a shard in columns (2**20). Fixed by the server's storage format.
SHARD_WIDTH = 1_048_576

DEFAULT_HOST = "http://localhost:10101"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class ImportStrategy(str, Enum):
    """When a partially filled shard batch is flushed.

    - TIMEOUT: flush on batch size or when the batch is older than timeout_ms
    - BATCH: flush on batch size only
    """

    TIMEOUT = "timeout"
    BATCH = "batch"


class ImportOptions(BaseModel):
    """Batching and concurrency policy for one import job.

    Attributes:
        thread_count: Maximum concurrent flush operations. Default: 1.
        batch_size: Records per shard batch before it is flushed.
            Default: 10000.
        timeout_ms: Maximum age of a batch, in milliseconds, under the
            TIMEOUT strategy. Default: 100.
        strategy: Flush strategy. Default: TIMEOUT.
        clear: Batches remove bits/values instead of setting them.
            Default: False.
        roaring: Use roaring encoding for set batches of fields that use
            neither row keys nor column keys. A roaring body is ordered by
            bit position, not by column, and carries no timestamps, so
            timestamped batches are still sent as CSV. Default: False.
    """

    thread_count: int = Field(default=1, ge=1)
    batch_size: int = Field(default=10_000, gt=0)
    timeout_ms: int = Field(default=100, ge=0)
    strategy: ImportStrategy = ImportStrategy.TIMEOUT
    clear: bool = False
    roaring: bool = False

    model_config = SettingsConfigDict(frozen=True)

    @property
    def shard_width(self) -> int:
        """Columns per shard (always SHARD_WIDTH)."""
        return SHARD_WIDTH

    @property
    def timeout_s(self) -> float:
        """Batch timeout in seconds."""
        return self.timeout_ms / 1000.0

    @classmethod
    def from_env(cls) -> "ImportOptions":
        """Create ImportOptions from environment variables.

        Returns:
            Configured ImportOptions instance.

        Raises:
            ValueError: If INGEST_STRATEGY is not a known strategy.
        """
        strategy = os.getenv("INGEST_STRATEGY", ImportStrategy.TIMEOUT.value).lower()
        valid_strategies = tuple(s.value for s in ImportStrategy)
        if strategy not in valid_strategies:
            msg = f"Invalid INGEST_STRATEGY: {strategy}. Must be one of: {valid_strategies}"
            raise ValueError(msg)

        return cls(
            thread_count=int(os.getenv("INGEST_THREAD_COUNT", "1")),
            batch_size=int(os.getenv("INGEST_BATCH_SIZE", "10000")),
            timeout_ms=int(os.getenv("INGEST_TIMEOUT_MS", "100")),
            strategy=ImportStrategy(strategy),
            clear=_env_bool("INGEST_CLEAR", "false"),
            roaring=_env_bool("INGEST_ROARING", "false"),
        )


class ClusterConfig(BaseModel):
    """Connection, retry and routing settings for the target cluster.

    Attributes:
        hosts: Node addresses used for routing lookups (and for sending
            batches when fragment_nodes is False).
        connect_timeout: Connect timeout in seconds. Default: 30.
        socket_timeout: Read timeout in seconds. Default: 300.
        pool_size: HTTP connections kept per host. Default: 10.
        retry_max_attempts: Attempts per shard batch before it fails.
            Default: 3.
        retry_wait_min: Minimum backoff between attempts in seconds.
            Default: 0.5.
        retry_wait_max: Maximum backoff between attempts in seconds.
            Default: 10.0.
        retry_multiplier: Exponential backoff multiplier. Default: 1.0.
        fragment_nodes: Resolve the owner of each shard through the
            cluster instead of round-robin over hosts. Default: True.
        circuit_breaker_threshold: Lookup failures before the circuit
            opens. Default: 5.
        circuit_breaker_timeout: Circuit recovery timeout in seconds.
            Default: 60.
    """

    hosts: list[str] = Field(default_factory=lambda: [DEFAULT_HOST], min_length=1)
    connect_timeout: float = Field(default=30.0, gt=0)
    socket_timeout: float = Field(default=300.0, gt=0)
    pool_size: int = Field(default=10, ge=1)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_wait_min: float = Field(default=0.5, ge=0)
    retry_wait_max: float = Field(default=10.0, ge=0)
    retry_multiplier: float = Field(default=1.0, ge=0)
    fragment_nodes: bool = True
    circuit_breaker_threshold: int = Field(default=5, ge=1)
    circuit_breaker_timeout: int = Field(default=60, ge=1)

    model_config = SettingsConfigDict(frozen=True)

    @field_validator("hosts")
    @classmethod
    def _strip_hosts(cls, hosts: list[str]) -> list[str]:
        stripped = [h.strip() for h in hosts if h.strip()]
        if not stripped:
            raise ValueError("at least one host is required")
        return stripped

    @classmethod
    def from_env(cls) -> "ClusterConfig":
        """Create ClusterConfig from environment variables.

        Returns:
            Configured ClusterConfig instance.
        """
        return cls(
            hosts=os.getenv("INGEST_HOSTS", DEFAULT_HOST).split(","),
            connect_timeout=float(os.getenv("INGEST_CONNECT_TIMEOUT", "30")),
            socket_timeout=float(os.getenv("INGEST_SOCKET_TIMEOUT", "300")),
            pool_size=int(os.getenv("INGEST_POOL_SIZE", "10")),
            retry_max_attempts=int(os.getenv("INGEST_RETRY_MAX_ATTEMPTS", "3")),
            retry_wait_min=float(os.getenv("INGEST_RETRY_WAIT_MIN", "0.5")),
            retry_wait_max=float(os.getenv("INGEST_RETRY_WAIT_MAX", "10.0")),
            retry_multiplier=float(os.getenv("INGEST_RETRY_MULTIPLIER", "1.0")),
            fragment_nodes=_env_bool("INGEST_FRAGMENT_NODES", "true"),
            circuit_breaker_threshold=int(os.getenv("INGEST_CIRCUIT_BREAKER_THRESHOLD", "5")),
            circuit_breaker_timeout=int(os.getenv("INGEST_CIRCUIT_BREAKER_TIMEOUT", "60")),
        )


class Settings(BaseModel):
    """Immutable runtime configuration.

    Attributes:
        cluster: Cluster connection and routing settings.
        import_options: Default import policy.
    """

    cluster: ClusterConfig
    import_options: ImportOptions

    model_config = SettingsConfigDict(frozen=True)

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings from environment variables."""
        return cls(cluster=ClusterConfig.from_env(), import_options=ImportOptions.from_env())


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Load and return settings (cached per process).

    Returns:
        A frozen `Settings` instance.

    Note:
        Settings are loaded once per process. Call `get_settings.cache_clear()`
        to pick up environment changes (tests do this).
    """
    return Settings.from_env()
