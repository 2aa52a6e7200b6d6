"""Persistent state — global settings, tags and the active-tag pointer.

Every file is a small JSON document under the nvmcp home directory.
No locking: concurrent writers race and the last write wins.
"""

from nvmcp.store.settings import ConfigStore
from nvmcp.store.tags import ActiveTagPointer, Tag, TagSettings, TagStore

__all__ = ["ActiveTagPointer", "ConfigStore", "Tag", "TagSettings", "TagStore"]
