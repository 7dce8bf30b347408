"""
Unit tests -- row-level data filters and their merge with caller filters.
"""
from src.governance.data_filters import (
    RoleDataFilterProvider,
    and_filters,
    load_data_filter_provider,
    parse_users,
)
from src.query.filters import build_conditions

POLICY = {
    "roles": {
        "admin": {"data_filters": {}},
        "north_sales": {"data_filters": {"region": "North"}},
        "store_only": {"data_filters": {"channel": {"in": ["store"]}}},
    },
    "users": {
        "admin": {"roles": ["admin"]},
        "alice": {"roles": ["north_sales"]},
        "bob": {"roles": ["store_only", "ghost_role"], "department": "Retail"},
        "carol": {"roles": [], "region": "South", "agent_code": "AG-042"},
    },
}


def _provider() -> RoleDataFilterProvider:
    return RoleDataFilterProvider.from_dict(POLICY)


# ── and_filters ──────────────────────────────────────────

def test_and_filters_empty_sides():
    assert and_filters({}, {}) == {}
    assert and_filters({"a": 1}, {}) == {"a": 1}
    assert and_filters(None, {"b": 2}) == {"b": 2}


def test_and_filters_both_sides():
    assert and_filters({"a": 1}, {"b": 2}) == {"AND": [{"a": 1}, {"b": 2}]}


# ── User filters ─────────────────────────────────────────

def test_role_filters():
    assert _provider().user_data_filters("alice") == {"region": "North"}


def test_user_attributes_become_filters():
    filters = _provider().user_data_filters("carol")
    assert filters == {"region": "South", "agentCode": "AG-042"}


def test_unknown_role_is_skipped():
    filters = _provider().user_data_filters("bob")
    assert filters == {"channel": {"in": ["store"]}, "department": "Retail"}


def test_unknown_or_anonymous_user_has_no_filters():
    provider = _provider()
    assert provider.user_data_filters("mallory") == {}
    assert provider.user_data_filters(None) == {}
    assert provider.user_data_filters("admin") == {}


def test_parse_users_ignores_null_attributes():
    users = parse_users({"dave": {"roles": None, "region": None}})
    assert users["dave"].roles == []
    assert users["dave"].attributes == {}


# ── Merge ────────────────────────────────────────────────

def test_merge_keeps_caller_filters_for_open_users():
    assert _provider().merge_data_filters("admin", {"year": 2024}) == {"year": 2024}


def test_merge_cannot_be_widened_by_caller():
    merged = _provider().merge_data_filters("alice", {"OR": [{"region": "South"}, {"region": "West"}]})
    sql = build_conditions(merged)
    assert sql == (
        "((\"region\" = 'South' OR \"region\" = 'West') AND \"region\" = 'North')"
    )


def test_merge_with_no_caller_filters():
    assert _provider().merge_data_filters("alice", None) == {"region": "North"}


# ── Loader ───────────────────────────────────────────────

def test_loader_missing_file_gives_open_access(tmp_path):
    provider = load_data_filter_provider(str(tmp_path / "absent.yml"))
    assert provider.merge_data_filters("alice", {"a": 1}) == {"a": 1}


def test_loader_reads_yaml(tmp_path):
    path = tmp_path / "access.yml"
    path.write_text(
        "roles:\n"
        "  north_sales:\n"
        "    data_filters:\n"
        "      region: North\n"
        "users:\n"
        "  alice:\n"
        "    roles: [north_sales]\n"
    )
    provider = load_data_filter_provider(str(path))
    assert provider.user_data_filters("alice") == {"region": "North"}


def test_bundled_policy_loads():
    provider = load_data_filter_provider()
    assert provider.user_data_filters("alice") == {"region": "North"}
    assert provider.user_data_filters("carol")["agentCode"] == "AG-042"
