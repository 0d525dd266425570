"""
Last-write-wins synchronization against the shared room endpoint.

Modules:
- client: async HTTP client for `/rooms/{room}/{resource}`
- gateway: per-resource versioning, polling and background pushes
"""

from .client import RESOURCES, RoomClient, SyncError
from .gateway import SyncGateway

__all__ = ["RESOURCES", "RoomClient", "SyncError", "SyncGateway"]
