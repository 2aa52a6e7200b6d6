"""SourceResolver — descriptor → LaunchSpec.

Registry packages and remote endpoints run through npx and need no local
copy. Repositories are shallow-cloned into ``<cache>/<name>`` once and then
scanned for an entry point.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

import orjson

from nvmcp.config import NvmcpSettings, settings as default_settings
from nvmcp.exceptions import ResolutionError
from nvmcp.sources.descriptor import (
    RegistryPackage,
    RemoteEndpoint,
    Repository,
    VcsUrl,
    classify,
)
from nvmcp.types import LaunchSpec

_logger = logging.getLogger(__name__)

NODE_ENTRY_FILES = ("index.js", "server.js")
PYTHON_ENTRY_FILES = ("main.py", "server.py", "mcp.py")


def _package_json_entry(directory: Path) -> str | None:
    """Relative entry path from package.json ``bin`` or ``main``, if any."""
    pkg_path = directory / "package.json"
    if not pkg_path.exists():
        return None
    try:
        pkg = orjson.loads(pkg_path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        _logger.warning("Ignoring unreadable %s: %s", pkg_path, e)
        return None
    if not isinstance(pkg, dict):
        _logger.warning("Ignoring %s: not a JSON object", pkg_path)
        return None

    bin_field = pkg.get("bin")
    if isinstance(bin_field, str) and bin_field:
        return bin_field
    if isinstance(bin_field, dict) and bin_field:
        first = bin_field[sorted(bin_field)[0]]
        if isinstance(first, str) and first:
            return first

    main = pkg.get("main")
    if isinstance(main, str) and main:
        return main
    return None


def find_entry_point(
    directory: Path,
    node_command: str = "node",
    python_command: str = "python3",
) -> LaunchSpec:
    """Scan a working copy for something runnable. First match wins."""
    directory = directory.resolve()
    working_dir = str(directory)
    checked = [str(directory / "package.json")]

    entry = _package_json_entry(directory)
    if entry:
        return LaunchSpec(
            command=node_command,
            args=[str((directory / entry).resolve())],
            working_dir=working_dir,
        )

    for filename in NODE_ENTRY_FILES:
        candidate = directory / filename
        checked.append(str(candidate))
        if candidate.is_file():
            return LaunchSpec(command=node_command, args=[str(candidate)], working_dir=working_dir)

    for filename in PYTHON_ENTRY_FILES:
        candidate = directory / filename
        checked.append(str(candidate))
        if candidate.is_file():
            return LaunchSpec(command=python_command, args=[str(candidate)], working_dir=working_dir)

    raise ResolutionError(
        f"Could not determine how to run {directory.name}: no entry point found",
        {"directory": working_dir, "checked": checked},
    )


class SourceResolver:
    """Produces launch specs, materializing a local copy where needed."""

    def __init__(self, cache_dir: Path, config: NvmcpSettings | None = None) -> None:
        self._cache_dir = cache_dir
        self._config = config or default_settings

    def cache_path(self, descriptor: Repository | VcsUrl) -> Path:
        return self._cache_dir / descriptor.name

    async def resolve_source(self, source: str) -> LaunchSpec:
        return await self.resolve(classify(source))

    async def resolve(
        self, descriptor: RegistryPackage | Repository | RemoteEndpoint | VcsUrl
    ) -> LaunchSpec:
        cfg = self._config
        if isinstance(descriptor, RegistryPackage):
            return LaunchSpec(command=cfg.npx_command, args=["-y", descriptor.package])
        if isinstance(descriptor, RemoteEndpoint):
            return LaunchSpec(
                command=cfg.npx_command,
                args=["-y", cfg.remote_bridge_package, descriptor.url],
            )
        if isinstance(descriptor, Repository):
            url = descriptor.clone_url
        elif isinstance(descriptor, VcsUrl):
            url = descriptor.url
        else:
            raise ResolutionError(f"Unsupported source type: {type(descriptor).__name__}")

        target = self.cache_path(descriptor)
        if not target.exists():
            await self.clone(url, target)
        return find_entry_point(target, cfg.node_command, cfg.python_command)

    async def clone(self, url: str, target: Path) -> None:
        """Shallow clone, bounded by the clone timeout. Never retried.

        Any failure removes the partially-created directory.
        """
        target.parent.mkdir(parents=True, exist_ok=True)
        timeout = self._config.clone_timeout_s
        _logger.info("Cloning %s into %s", url, target)

        try:
            proc = await asyncio.create_subprocess_exec(
                self._config.git_command, "clone", "--depth", "1", url, str(target),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            shutil.rmtree(target, ignore_errors=True)
            raise ResolutionError(
                f"Could not run git to clone {url}: {e}", {"url": url}
            ) from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            shutil.rmtree(target, ignore_errors=True)
            raise ResolutionError(
                f"Clone of {url} timed out after {timeout:g}s", {"url": url}
            ) from None

        if proc.returncode != 0:
            shutil.rmtree(target, ignore_errors=True)
            message = stderr.decode("utf-8", errors="replace").strip()[:500]
            raise ResolutionError(
                f"Git clone failed with exit code {proc.returncode}",
                {"url": url, "stderr": message or None},
            )
