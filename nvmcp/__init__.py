"""nvmcp — tag-scoped MCP environments with supervised processes."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("nvmcp")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
