"""Registry metadata — npm registry and GitHub API lookups for ``info``.

Read-only and never on the start path; one request per call, fixed timeout.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from nvmcp.config import NvmcpSettings, settings as default_settings
from nvmcp.exceptions import NetworkError

_logger = logging.getLogger(__name__)


class NpmPackageInfo(BaseModel):
    name: str
    version: str = ""
    description: str = ""
    homepage: str = ""


class GithubRepoInfo(BaseModel):
    name: str
    full_name: str
    description: str = ""
    clone_url: str = ""
    default_branch: str = ""


class RegistryClient:
    """Fetches package / repository metadata over HTTP."""

    def __init__(self, config: NvmcpSettings | None = None) -> None:
        self._config = config or default_settings

    async def _get_json(self, url: str) -> dict:
        _logger.debug("GET %s", url)
        try:
            async with httpx.AsyncClient(
                timeout=self._config.request_timeout_s, follow_redirects=True
            ) as client:
                resp = await client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise NetworkError(f"Request to {url} failed: {e}", {"url": url}) from e

        if resp.status_code < 200 or resp.status_code >= 300:
            raise NetworkError(
                f"HTTP {resp.status_code} from {url}",
                {"url": url, "status": resp.status_code},
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkError(f"Invalid JSON from {url}", {"url": url}) from e
        if not isinstance(data, dict):
            raise NetworkError(f"Unexpected response from {url}", {"url": url})
        return data

    async def fetch_npm_package(self, name: str) -> NpmPackageInfo:
        base = self._config.npm_registry_url.rstrip("/")
        data = await self._get_json(f"{base}/{quote(name, safe='@')}")
        latest = (data.get("dist-tags") or {}).get("latest", "")
        version_info = (data.get("versions") or {}).get(latest) or {}
        return NpmPackageInfo(
            name=data.get("name") or name,
            version=latest,
            description=version_info.get("description") or data.get("description") or "",
            homepage=version_info.get("homepage") or data.get("homepage") or "",
        )

    async def fetch_github_repo(self, owner: str, repo: str) -> GithubRepoInfo:
        base = self._config.github_api_url.rstrip("/")
        data = await self._get_json(f"{base}/repos/{owner}/{repo}")
        return GithubRepoInfo(
            name=data.get("name") or repo,
            full_name=data.get("full_name") or f"{owner}/{repo}",
            description=data.get("description") or "",
            clone_url=data.get("clone_url") or "",
            default_branch=data.get("default_branch") or "",
        )
