"""Cluster clients (transport, topology) and the import client factory.

This module provides factory functions for creating configured client
instances from centralized configuration.
"""

from bitmap_ingest.config import ClusterConfig, ImportOptions, get_settings
from bitmap_ingest.core.ingestion.pipeline import ImportPipeline
from bitmap_ingest.foundation.retry import default_backoff

from .cluster import Cluster, FragmentNodeTopology, StaticClusterTopology, normalize_address
from .interfaces.topology import ClusterTopology
from .interfaces.transport import Transport
from .transport import RequestsTransport


def create_transport(config: ClusterConfig | None = None) -> RequestsTransport:
    """Create a configured requests transport.

    Args:
        config: Optional ClusterConfig. If None, uses settings from
            get_settings().
    """
    if config is None:
        config = get_settings().cluster
    return RequestsTransport.from_config(config)


def create_topology(config: ClusterConfig | None = None, transport: Transport | None = None) -> ClusterTopology:
    """Create the node resolver selected by `config.fragment_nodes`.

    Args:
        config: Optional ClusterConfig. If None, uses settings from
            get_settings().
        transport: Transport for fragment-node lookups. Created from
            `config` when omitted.

    Returns:
        FragmentNodeTopology when fragment_nodes is enabled, otherwise a
        StaticClusterTopology over the configured hosts.
    """
    if config is None:
        config = get_settings().cluster
    if not config.fragment_nodes:
        return StaticClusterTopology(Cluster(config.hosts))
    if transport is None:
        transport = create_transport(config)
    return FragmentNodeTopology.from_config(config, transport)


def create_import_client(
    config: ClusterConfig | None = None,
    options: ImportOptions | None = None,
) -> ImportPipeline:
    """Create an import pipeline wired to the configured cluster.

    Args:
        config: Optional ClusterConfig. If None, uses settings from
            get_settings().
        options: Default ImportOptions. If None, uses settings from
            get_settings().

    Returns:
        ImportPipeline sharing one transport between delivery and lookups.

    Example:
        ```python
        from bitmap_ingest.clients import create_import_client
        from bitmap_ingest.core import FieldRef, SetRecord

        with create_import_client() as client:
            summary = client.run(FieldRef("repo", "stargazer"), records)
        summary.raise_for_failures()
        ```
    """
    settings = None
    if config is None or options is None:
        settings = get_settings()
    if config is None:
        config = settings.cluster
    if options is None:
        options = settings.import_options

    transport = create_transport(config)
    return ImportPipeline(
        transport=transport,
        topology=create_topology(config, transport),
        options=options,
        max_attempts=config.retry_max_attempts,
        wait=default_backoff(config.retry_wait_min, config.retry_wait_max, config.retry_multiplier),
    )


__all__ = [
    "Cluster",
    "FragmentNodeTopology",
    "RequestsTransport",
    "StaticClusterTopology",
    "create_import_client",
    "create_topology",
    "create_transport",
    "normalize_address",
]
