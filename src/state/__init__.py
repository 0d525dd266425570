"""
Coin jar state: models, local persistence and the stores built on them.

Modules:
- models: wire models (VersionedPayload, Archive, JarSnapshot, Settings) and clamping
- local: versioned blobs under the three local storage keys
- tasks: free-text task parsing and the pending task registry
- settings_store / archive_store / jar: the synchronized stores
- record: slider-to-coin conversion
"""

from .models import Archive, JarSnapshot, PendingTask, Settings, VersionedPayload

__all__ = ["Archive", "JarSnapshot", "PendingTask", "Settings", "VersionedPayload"]
