"""Cluster membership and shard-to-node resolution.

## Components

- `normalize_address`: canonical `scheme://host:port` form of a node address.
- `Cluster`: thread-safe round-robin pool of node addresses.
- `StaticClusterTopology`: sends every shard to any live host of a `Cluster`.
- `FragmentNodeTopology`: asks the cluster which nodes own a shard, caches
  the answer per `(index, shard)` and skips nodes that have failed.

## Fragment-node lookup

```
GET /internal/fragment/nodes?shard=3&index=repo
[{"id": "...", "uri": {"scheme": "http", "host": "10.0.0.7", "port": 10101}}]
```

Older servers answer with `{"scheme": "http", "host": "10.0.0.7:10101"}`
per node; both forms are accepted.
"""

import re
import threading
from collections.abc import Iterable
from typing import Any

import attrs
import pybreaker
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from bitmap_ingest.config import ClusterConfig
from bitmap_ingest.core.exceptions import NoAvailableHostsError, TransportError, UpstreamError
from bitmap_ingest.foundation.circuit_breaker import with_circuit_breaker

from .interfaces.topology import ClusterTopology
from .interfaces.transport import Transport
from .mixins import CircuitBreakerMixin, LoggerMixin

DEFAULT_SCHEME = "http"
DEFAULT_PORT = 10101

# Coordinator hosts tried per fragment-node lookup
MAX_HOSTS = 10

FRAGMENT_NODES_PATH = "/internal/fragment/nodes"

_ADDRESS_RE = re.compile(
    r"^(?:(?P<scheme>[a-z][a-z0-9+.-]*)://)?(?P<host>\[[0-9a-fA-F:.]+\]|[0-9A-Za-z._-]+)(?::(?P<port>\d+))?/?$"
)


def normalize_address(address: str) -> str:
    """Return `address` as `scheme://host:port`.

    The scheme defaults to http and the port to 10101. A `+suffix` on the
    scheme (e.g. `http+protobuf`) is dropped.

    Raises:
        ValueError: If the address cannot be parsed.

    Example:
        >>> normalize_address("db1")
        'http://db1:10101'
        >>> normalize_address("https+pb://db1:8000")
        'https://db1:8000'
    """
    match = _ADDRESS_RE.match(address.strip())
    if match is None:
        msg = f"Invalid node address: {address!r}"
        raise ValueError(msg)
    scheme = (match.group("scheme") or DEFAULT_SCHEME).split("+")[0]
    port = int(match.group("port") or DEFAULT_PORT)
    if not 0 < port < 65536:
        msg = f"Invalid port in node address: {address!r}"
        raise ValueError(msg)
    return f"{scheme}://{match.group('host')}:{port}"


def _normalize_all(addresses: Iterable[str]) -> list[str]:
    result: list[str] = []
    for address in addresses:
        normalized = normalize_address(address)
        if normalized not in result:
            result.append(normalized)
    return result


# =============================================================================
# Host pool
# =============================================================================


@attrs.define(frozen=False, slots=True)
class Cluster(LoggerMixin):
    """Round-robin pool of node addresses.

    Example:
        ```python
        cluster = Cluster(["db1:10101", "db2:10101"])
        cluster.get_host()  # 'http://db1:10101'
        cluster.get_host()  # 'http://db2:10101'
        cluster.remove_host("db1:10101")
        cluster.get_host()  # 'http://db2:10101'
        ```
    """

    _hosts: list[str] = attrs.field(factory=list, converter=_normalize_all, alias="hosts")
    _next: int = attrs.field(init=False, default=0)
    _lock: threading.Lock = attrs.field(init=False, factory=threading.Lock)

    def __len__(self) -> int:
        with self._lock:
            return len(self._hosts)

    def __contains__(self, address: str) -> bool:
        address = normalize_address(address)
        with self._lock:
            return address in self._hosts

    @property
    def hosts(self) -> list[str]:
        """Snapshot of the live addresses."""
        with self._lock:
            return list(self._hosts)

    def add_host(self, address: str) -> None:
        address = normalize_address(address)
        with self._lock:
            if address not in self._hosts:
                self._hosts.append(address)

    def remove_host(self, address: str) -> None:
        """Remove an address. Unknown addresses are ignored."""
        address = normalize_address(address)
        with self._lock:
            if address not in self._hosts:
                return
            self._hosts.remove(address)
            remaining = len(self._hosts)
        self._logger.warning("Removed host from cluster", extra={"address": address, "remaining_hosts": remaining})

    def get_host(self) -> str:
        """Return the next live address in round-robin order.

        Raises:
            NoAvailableHostsError: If the pool is empty.
        """
        with self._lock:
            if not self._hosts:
                raise NoAvailableHostsError("There are no available hosts")
            address = self._hosts[self._next % len(self._hosts)]
            self._next = (self._next + 1) % len(self._hosts)
            return address


# =============================================================================
# Topologies
# =============================================================================


@attrs.define(frozen=False, slots=True)
class StaticClusterTopology(ClusterTopology):
    """Any live host of the cluster accepts any shard."""

    cluster: Cluster

    def address_for(self, index: str, shard: int) -> str:
        return self.cluster.get_host()

    def remove_address(self, address: str) -> None:
        self.cluster.remove_host(address)


class NodeURI(BaseModel):
    """Address part of a fragment node."""

    scheme: str = Field(DEFAULT_SCHEME, description="URI scheme")
    host: str = Field(min_length=1, description="Host name or IP address")
    port: int = Field(DEFAULT_PORT, description="Port number")


class FragmentNode(BaseModel):
    """A node owning a fragment, as returned by the fragment-node lookup.

    Attributes:
        uri: Node URI (current servers).
        scheme: URI scheme (legacy servers).
        host: `host:port` (legacy servers).
    """

    uri: NodeURI | None = None
    scheme: str = DEFAULT_SCHEME
    host: str | None = None

    @property
    def address(self) -> str:
        if self.uri is not None:
            return normalize_address(f"{self.uri.scheme}://{self.uri.host}:{self.uri.port}")
        if self.host is None:
            raise ValueError("fragment node has neither uri nor host")
        return normalize_address(f"{self.scheme}://{self.host}")


_FRAGMENT_NODES = TypeAdapter(list[FragmentNode])


def parse_fragment_nodes(data: Any) -> list[str]:
    """Extract node addresses from a fragment-node lookup response.

    Raises:
        UpstreamError: If the response is not a list of nodes.
    """
    try:
        return [node.address for node in _FRAGMENT_NODES.validate_python(data)]
    except (ValidationError, ValueError) as e:
        msg = f"Malformed fragment node response: {e}"
        raise UpstreamError(msg) from e


@attrs.define(frozen=False, slots=True)
class FragmentNodeTopology(CircuitBreakerMixin, LoggerMixin, ClusterTopology):
    """Routes each shard to the nodes that own it.

    The owners of `(index, shard)` are looked up once through a coordinator
    host and cached. Addresses removed after a failure are filtered out of
    every cached entry; when an entry runs empty it is looked up again.

    Attributes:
        cluster: Coordinator hosts used for lookups.
        transport: Transport for the lookup GET.
        failure_threshold: Lookup failures before the circuit opens.
        recovery_timeout: Seconds before a half-open retry.
    """

    cluster: Cluster
    transport: Transport
    failure_threshold: int = 5
    recovery_timeout: int = 60
    _cache: dict[tuple[str, int], list[str]] = attrs.field(init=False, factory=dict)
    _removed: set[str] = attrs.field(init=False, factory=set)
    _lock: threading.Lock = attrs.field(init=False, factory=threading.Lock)
    _breaker: pybreaker.CircuitBreaker = attrs.field(init=False)

    def _circuit_breaker_config(self) -> tuple[str, int, int]:
        return ("fragment-nodes", self.failure_threshold, self.recovery_timeout)

    def __attrs_post_init__(self) -> None:
        self._init_circuit_breaker(exclude=[NoAvailableHostsError])

    @classmethod
    def from_config(cls, config: ClusterConfig, transport: Transport) -> "FragmentNodeTopology":
        return cls(
            cluster=Cluster(config.hosts),
            transport=transport,
            failure_threshold=config.circuit_breaker_threshold,
            recovery_timeout=config.circuit_breaker_timeout,
        )

    def address_for(self, index: str, shard: int) -> str:
        key = (index, shard)
        with self._lock:
            cached = [a for a in self._cache.get(key, ()) if a not in self._removed]
            if cached:
                self._cache[key] = cached
                return cached[0]

        nodes = [a for a in self._fetch_nodes(index, shard) if a not in self._removed]
        if not nodes:
            msg = f"No available node owns shard {shard} of index {index!r}"
            raise NoAvailableHostsError(msg)
        with self._lock:
            self._cache[key] = nodes
        return nodes[0]

    def remove_address(self, address: str) -> None:
        address = normalize_address(address)
        with self._lock:
            self._removed.add(address)
        self.cluster.remove_host(address)

    def invalidate(self, index: str | None = None) -> None:
        """Drop cached lookups, for one index or all of them.

        Removed nodes stay excluded from lookups until a full invalidate
        (`index=None`), which lets a recovered node be used again. The
        coordinator pool is not restored.
        """
        with self._lock:
            if index is None:
                self._cache.clear()
                self._removed.clear()
            else:
                for key in [k for k in self._cache if k[0] == index]:
                    del self._cache[key]

    @with_circuit_breaker("fragment-nodes")
    def _fetch_nodes(self, index: str, shard: int) -> list[str]:
        last_error: TransportError | None = None
        for _ in range(MAX_HOSTS):
            coordinator = self.cluster.get_host()
            try:
                data = self.transport.get_json(
                    coordinator, FRAGMENT_NODES_PATH, params={"shard": shard, "index": index}
                )
            except TransportError as e:
                self._logger.warning(
                    "Fragment node lookup failed",
                    extra={"address": coordinator, "index": index, "shard": shard, "error": str(e)},
                )
                self.remove_address(coordinator)
                last_error = e
                continue
            nodes = parse_fragment_nodes(data)
            self._logger.debug(
                "Resolved fragment nodes",
                extra={"index": index, "shard": shard, "nodes": nodes},
            )
            return nodes

        msg = f"Fragment node lookup failed on {MAX_HOSTS} hosts"
        raise TransportError(msg) from last_error
