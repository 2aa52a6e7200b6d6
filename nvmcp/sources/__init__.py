"""Source resolution — turn source strings into runnable launch specs.

- classify(): source string → SourceDescriptor
- SourceResolver: descriptor → LaunchSpec, cloning repositories on demand
- RegistryClient: npm / GitHub metadata for the ``info`` command
"""

from nvmcp.sources.descriptor import (
    RegistryPackage,
    RemoteEndpoint,
    Repository,
    SourceDescriptor,
    VcsUrl,
    classify,
)
from nvmcp.sources.resolver import SourceResolver, find_entry_point

__all__ = [
    "RegistryPackage",
    "RemoteEndpoint",
    "Repository",
    "SourceDescriptor",
    "SourceResolver",
    "VcsUrl",
    "classify",
    "find_entry_point",
]
