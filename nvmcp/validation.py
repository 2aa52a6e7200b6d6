"""Input validation — runs before any mutation so failures never leave partial writes."""

from __future__ import annotations

import re

from nvmcp.exceptions import ValidationError

TAG_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-_]*[a-zA-Z0-9])?$")
TAG_NAME_MIN_LENGTH = 1
TAG_NAME_MAX_LENGTH = 50
RESERVED_TAG_NAMES = frozenset({
    "help", "version", "list", "ls", "create", "delete", "use", "config", "init",
})
DESCRIPTION_MAX_LENGTH = 200

PROCESS_ID_PATTERN = re.compile(r"^(?P<name>.+)-\d+$")
ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_MCP_NAME_FORBIDDEN = re.compile(r"[\s\\/\x00-\x1f\x7f]")


def sanitize_input(value: str) -> str:
    """Strip control characters and surrounding whitespace."""
    return _CONTROL_CHARS.sub("", value).strip()


def validate_tag_name(name: str | None) -> str:
    if not name:
        raise ValidationError("Tag name is required", {"field": "name"})
    if not TAG_NAME_MIN_LENGTH <= len(name) <= TAG_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Tag name must be {TAG_NAME_MIN_LENGTH}-{TAG_NAME_MAX_LENGTH} characters long",
            {"field": "name", "value": name},
        )
    if not TAG_NAME_PATTERN.match(name):
        raise ValidationError(
            "Tag name must start and end with alphanumeric characters, "
            "and may contain hyphens and underscores",
            {"field": "name", "value": name},
        )
    if name.lower() in RESERVED_TAG_NAMES:
        raise ValidationError(
            f"'{name}' is a reserved name and cannot be used as a tag name",
            {"field": "name", "value": name},
        )
    return name


def validate_description(description: str | None) -> str:
    description = description or ""
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"Description must be no more than {DESCRIPTION_MAX_LENGTH} characters long",
            {"field": "description"},
        )
    return description


def validate_process_id(process_id: str | None) -> str:
    """``<mcp name>-<epoch millis>``; the name part follows the MCP name rules."""
    if not process_id:
        raise ValidationError("Process ID is required", {"field": "processId"})
    match = PROCESS_ID_PATTERN.match(process_id)
    if match is None:
        raise ValidationError(
            f"Invalid process ID format: {process_id}",
            {"field": "processId", "value": process_id},
        )
    try:
        validate_mcp_name(match.group("name"))
    except ValidationError:
        raise ValidationError(
            f"Invalid process ID format: {process_id}",
            {"field": "processId", "value": process_id},
        ) from None
    return process_id


def validate_mcp_name(name: str | None) -> str:
    if not name or not name.strip():
        raise ValidationError("MCP name is required", {"field": "mcp"})
    if name.startswith((".", "-")) or _MCP_NAME_FORBIDDEN.search(name):
        raise ValidationError(
            f"Invalid MCP name: {name}", {"field": "mcp", "value": name}
        )
    return name


def validate_env_key(key: str | None) -> str:
    if not key or not ENV_KEY_PATTERN.match(key):
        raise ValidationError(
            f"Invalid environment variable name: {key!r}", {"field": "key"}
        )
    return key
