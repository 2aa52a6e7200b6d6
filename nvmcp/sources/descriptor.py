"""Source string classification.

Grammars, first match wins:

    npm:<package>            RegistryPackage
    github:<owner>/<repo>    Repository
    http(s)://...            RemoteEndpoint
    git+<url>                VcsUrl
    <bare package name>      RegistryPackage

The derived ``name`` doubles as the cache directory key, so it never
contains a path separator.
"""

from __future__ import annotations

import posixpath
import re
from typing import Annotated, Literal, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from nvmcp.exceptions import ClassificationError

GITHUB_OWNER_PATTERN = re.compile(r"^[A-Za-z0-9-_]+$")
GITHUB_REPO_PATTERN = re.compile(r"^[A-Za-z0-9-_.]+$")
BARE_PACKAGE_PATTERN = re.compile(r"^[a-zA-Z0-9@/._-]+$")

DEFAULT_REMOTE_NAME = "remote-mcp"


class RegistryPackage(BaseModel):
    kind: Literal["npm"] = "npm"
    package: str
    name: str


class Repository(BaseModel):
    kind: Literal["github"] = "github"
    owner: str
    repo: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def clone_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}.git"


class RemoteEndpoint(BaseModel):
    kind: Literal["remote"] = "remote"
    url: str
    name: str


class VcsUrl(BaseModel):
    kind: Literal["git"] = "git"
    url: str
    name: str


SourceDescriptor = Annotated[
    Union[RegistryPackage, Repository, RemoteEndpoint, VcsUrl],
    Field(discriminator="kind"),
]


def _strip_git_suffix(value: str) -> str:
    return value[:-4] if value.endswith(".git") else value


def _check_name(name: str, source: str) -> str:
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise ClassificationError(
            f"Cannot derive a name from source: {source}", {"source": source}
        )
    return name


def _classify_npm(package: str, source: str) -> RegistryPackage:
    if not package or not BARE_PACKAGE_PATTERN.match(package):
        raise ClassificationError(f"Invalid npm package: {source}", {"source": source})
    return RegistryPackage(package=package, name=_check_name(package.split("/")[-1], source))


def _classify_github(spec: str, source: str) -> Repository:
    owner, sep, repo = spec.partition("/")
    if not sep or not GITHUB_OWNER_PATTERN.match(owner) or not GITHUB_REPO_PATTERN.match(repo):
        raise ClassificationError(
            f"Invalid GitHub source '{source}'. Expected github:<owner>/<repo>",
            {"source": source},
        )
    return Repository(owner=owner, repo=repo, name=_check_name(repo, source))


def _classify_remote(source: str) -> RemoteEndpoint:
    parsed = urlparse(source)
    if not parsed.netloc:
        raise ClassificationError(f"Invalid URL: {source}", {"source": source})
    parts = [p for p in parsed.path.split("/") if p]
    name = parts[-1] if parts else DEFAULT_REMOTE_NAME
    return RemoteEndpoint(url=source, name=_check_name(_strip_git_suffix(name), source))


def _classify_vcs(url: str, source: str) -> VcsUrl:
    if not url:
        raise ClassificationError(f"Missing URL in source: {source}", {"source": source})
    name = _strip_git_suffix(posixpath.basename(url.rstrip("/")))
    return VcsUrl(url=url, name=_check_name(name, source))


def classify(source: str) -> RegistryPackage | Repository | RemoteEndpoint | VcsUrl:
    """Classify a source string. Raises ClassificationError if nothing matches."""
    if source is None or not source.strip():
        raise ClassificationError("Source is required")
    source = source.strip()

    if source.startswith("npm:"):
        return _classify_npm(source[len("npm:"):], source)
    if source.startswith("github:"):
        return _classify_github(source[len("github:"):], source)
    if source.startswith(("https://", "http://")):
        return _classify_remote(source)
    if source.startswith("git+"):
        return _classify_vcs(source[len("git+"):], source)
    if BARE_PACKAGE_PATTERN.match(source):
        return _classify_npm(source, source)

    raise ClassificationError(
        f"Unrecognized source format: {source}. "
        "Use npm:<package>, github:<owner>/<repo>, an http(s) URL or git+<url>",
        {"source": source},
    )
