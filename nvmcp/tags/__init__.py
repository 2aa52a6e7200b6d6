"""Use-case layer: one TagManager method per CLI command."""

from nvmcp.tags.manager import StartResult, TagManager, TagSummary

__all__ = ["StartResult", "TagManager", "TagSummary"]
