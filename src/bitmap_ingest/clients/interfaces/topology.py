"""Cluster topology interface.

A topology answers one question for the dispatcher: which node should receive
the batch for `(index, shard)`. It also learns from failures: an address the
dispatcher could not reach is removed and never handed out again.
"""

from abc import ABC, abstractmethod


class ClusterTopology(ABC):
    """Abstract base class for node resolution.

    Implementations must be safe to call from several worker threads at once.
    """

    @abstractmethod
    def address_for(self, index: str, shard: int) -> str:
        """Return the address of a live node that accepts imports for a shard.

        Args:
            index: Index name.
            shard: Shard number.

        Returns:
            Node address (`scheme://host:port`).

        Raises:
            NoAvailableHostsError: If every known node has been removed.
        """

    @abstractmethod
    def remove_address(self, address: str) -> None:
        """Stop handing out an address. Removing an unknown address is a no-op."""
