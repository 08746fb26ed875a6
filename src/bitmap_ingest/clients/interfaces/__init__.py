"""Abstract base classes (interfaces) for cluster communication.

This sub-package contains the ABCs that define the contracts the ingestion
pipeline depends on. Concrete implementations live in the parent `clients`
package.
"""

from .topology import ClusterTopology
from .transport import Transport, TransportResponse

__all__ = [
    "ClusterTopology",
    "Transport",
    "TransportResponse",
]
