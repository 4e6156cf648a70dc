"""
Role-based tool visibility.

Maps caller roles to the tool names they may see and call. The mapping is
read once at startup from ROLE_TOOL_CONFIG, a JSON object whose values are
lists of tool names; the sentinel "all" grants every tool.

Features:
- Strict parsing: malformed config aborts startup rather than failing open
  per request
- Fallback to the "user" entry for roles the config does not name
- Filtered registries are new views; the base registry is never mutated

Environment Variables:
- ROLE_TOOL_CONFIG: e.g. '{"admin": ["all"], "user": ["calculator"]}'
- DEFAULT_ROLE: Role used when neither auth nor header supplies one

Example:
    config = parse_role_tool_config(os.getenv("ROLE_TOOL_CONFIG"))
    role = resolve_role(request.headers, jwt_role=claims_role)
    scoped = build_filtered_registry(base_registry, role, config)
"""

from __future__ import annotations

import json
import logging
from types import MappingProxyType
from typing import Mapping, Optional

from ..tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

ROLE_HEADER = "x-openwebui-user-role"
ALL_TOOLS = "all"
FALLBACK_ROLE = "user"

RoleToolConfig = Mapping[str, tuple[str, ...]]


class RoleToolConfigError(ValueError):
    """Raised when ROLE_TOOL_CONFIG is malformed."""


def parse_role_tool_config(raw: Optional[str]) -> Optional[RoleToolConfig]:
    """Parse the role → tool names mapping.

    Args:
        raw: JSON text, typically the ROLE_TOOL_CONFIG environment variable

    Returns:
        Read-only mapping of role to allowed tool names, or None when the
        input is absent or blank (RBAC disabled)

    Raises:
        RoleToolConfigError: If the text is not a JSON object of string arrays
    """
    if raw is None or raw.strip() == "":
        return None

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RoleToolConfigError(f"ROLE_TOOL_CONFIG is not valid JSON: {raw}") from e

    if not isinstance(parsed, dict):
        raise RoleToolConfigError(
            "ROLE_TOOL_CONFIG must be a JSON object mapping role names to string arrays"
        )

    config: dict[str, tuple[str, ...]] = {}
    for role, names in parsed.items():
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise RoleToolConfigError(f'ROLE_TOOL_CONFIG["{role}"] must be an array of strings')
        config[role] = tuple(names)

    logger.info(f"Loaded RBAC config for roles: {', '.join(config) or '(none)'}")
    return MappingProxyType(config)


def _apply_allowed(all_names: list[str], allowed: tuple[str, ...]) -> list[str]:
    if ALL_TOOLS in allowed:
        return list(all_names)
    allowed_set = set(allowed)
    return [name for name in all_names if name in allowed_set]


def filter_tools_for_role(
    all_names: list[str],
    role: str,
    config: Optional[RoleToolConfig],
) -> list[str]:
    """Return the subset of tool names visible to a role.

    Order follows ``all_names``; configured names with no matching tool are
    dropped silently. A role missing from the config falls back to the
    "user" entry. When neither exists every tool is allowed and a warning
    is logged.
    """
    if config is None:
        return list(all_names)

    if role in config:
        return _apply_allowed(all_names, config[role])

    if FALLBACK_ROLE in config:
        return _apply_allowed(all_names, config[FALLBACK_ROLE])

    logger.warning(
        f'Role "{role}" not found in ROLE_TOOL_CONFIG and no "{FALLBACK_ROLE}" '
        f"fallback, allowing all tools"
    )
    return list(all_names)


def _header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; Starlette headers are not
        for key, candidate in headers.items():
            if key.lower() == name:
                return candidate
    return value


def _non_blank(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def resolve_role(
    headers: Mapping[str, str],
    jwt_role: Optional[str] = None,
    default_role: Optional[str] = None,
) -> str:
    """Resolve the effective role for a request.

    Priority: role asserted by the auth layer, then the role header,
    then the configured default, then "user".
    """
    return (
        _non_blank(jwt_role)
        or _non_blank(_header_value(headers, ROLE_HEADER))
        or _non_blank(default_role)
        or FALLBACK_ROLE
    )


def build_filtered_registry(
    base: ToolRegistry,
    role: str,
    config: Optional[RoleToolConfig],
) -> ToolRegistry:
    """Build a new registry holding only the tools allowed for ``role``.

    Tool objects are shared by reference with ``base``.
    """
    filtered = ToolRegistry()
    for name in filter_tools_for_role(base.list(), role, config):
        tool = base.get(name)
        if tool is not None:
            filtered.register(tool)
    logger.debug(f"Role {role} sees {len(filtered)}/{len(base)} tools")
    return filtered
