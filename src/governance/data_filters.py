"""
Row-level access control: per-user data filters merged into every query.

Policies live in a YAML file with two sections:

  roles:
    north_sales:
      data_filters: {region: North}
    finance:
      data_filters: {}
  users:
    u-123:
      roles: [north_sales]
      department: Retail        # user attributes become filters too
    u-456:
      roles: [finance]

A user's effective filters are the union of the ``data_filters`` of all of
their roles, overlaid by their own ``region`` / ``department`` /
``agent_code`` attributes.  Unknown users get no extra filters.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Protocol

import yaml

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

USER_ATTRIBUTE_FILTERS = {
    "region": "region",
    "department": "department",
    "agent_code": "agentCode",
}


class DataFilterProvider(Protocol):
    def merge_data_filters(self, user_id: str | None, base_filters: Mapping[str, Any] | None) -> dict[str, Any]: ...


# ── Data classes ────────────────────────────────────────


@dataclass(frozen=True)
class Role:
    name: str
    data_filters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UserAccess:
    user_id: str
    roles: list[str] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)


# ── Parsing ─────────────────────────────────────────────


def parse_roles(raw: dict[str, Any] | None) -> dict[str, Role]:
    if not raw:
        return {}
    return {
        name: Role(name=name, data_filters=dict((cfg or {}).get("data_filters") or {}))
        for name, cfg in raw.items()
    }


def parse_users(raw: dict[str, Any] | None) -> dict[str, UserAccess]:
    if not raw:
        return {}
    users: dict[str, UserAccess] = {}
    for user_id, cfg in raw.items():
        cfg = cfg or {}
        attributes = {
            column: cfg[attr]
            for attr, column in USER_ATTRIBUTE_FILTERS.items()
            if cfg.get(attr) is not None
        }
        users[str(user_id)] = UserAccess(
            user_id=str(user_id),
            roles=list(cfg.get("roles") or []),
            attributes=attributes,
        )
    return users


# ── Merge ───────────────────────────────────────────────


def and_filters(base: Mapping[str, Any] | None, extra: Mapping[str, Any] | None) -> dict[str, Any]:
    """AND two filter trees; either side may be empty."""
    if not extra:
        return dict(base or {})
    if not base:
        return dict(extra)
    return {"AND": [dict(base), dict(extra)]}


class RoleDataFilterProvider:
    """DataFilterProvider backed by parsed role/user policy."""

    def __init__(self, roles: dict[str, Role], users: dict[str, UserAccess]):
        self.roles = roles
        self.users = users

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "RoleDataFilterProvider":
        raw = raw or {}
        return cls(parse_roles(raw.get("roles")), parse_users(raw.get("users")))

    def user_data_filters(self, user_id: str | None) -> dict[str, Any]:
        """Collected filters for *user_id* (empty when unknown)."""
        if not user_id:
            return {}
        user = self.users.get(user_id)
        if user is None:
            return {}

        filters: dict[str, Any] = {}
        for role_name in user.roles:
            role = self.roles.get(role_name)
            if role is None:
                logger.warning("User %s references unknown role '%s'", user_id, role_name)
                continue
            filters.update(role.data_filters)
        filters.update(user.attributes)
        return filters

    def merge_data_filters(
        self,
        user_id: str | None,
        base_filters: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        """Caller filters ANDed with the user's row-level filters."""
        user_filters = self.user_data_filters(user_id)
        if user_filters:
            logger.debug("Applying data filters for user=%s: %s", user_id, user_filters)
        return and_filters(base_filters, user_filters)


# ── Loader ──────────────────────────────────────────────


@lru_cache
def load_data_filter_provider(path: str | None = None) -> RoleDataFilterProvider:
    """Load and cache the access policy YAML (missing file -> open access)."""
    policy_path = Path(path or get_settings().data_access_path)
    if not policy_path.exists():
        logger.warning("Access policy %s not found -- no row-level filters applied", policy_path)
        return RoleDataFilterProvider({}, {})
    with open(policy_path) as f:
        raw = yaml.safe_load(f)
    return RoleDataFilterProvider.from_dict(raw)
