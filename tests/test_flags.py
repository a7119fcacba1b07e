"""Flag declaration table tests."""
from __future__ import annotations

import pytest

from dkronagent.config import KEY_FIELDS, ConfigError, default_config
from dkronagent.flags import (
    FLAG_NAMES,
    FlagKind,
    config_flag_set,
    flag_overrides,
    split_list_values,
)

EXPECTED_FLAGS = {
    "server": (FlagKind.BOOL, False),
    "node-name": (FlagKind.STRING, "flag-host"),
    "bind-addr": (FlagKind.STRING, "0.0.0.0:8946"),
    "advertise-addr": (FlagKind.STRING, ""),
    "http-addr": (FlagKind.STRING, ":8080"),
    "discover": (FlagKind.STRING, "dkron"),
    "backend": (FlagKind.STRING, "etcd"),
    "backend-machine": (FlagKind.STRING_LIST, ["127.0.0.1:2379"]),
    "profile": (FlagKind.STRING, "lan"),
    "join": (FlagKind.STRING_LIST, []),
    "tag": (FlagKind.STRING_LIST, []),
    "keyspace": (FlagKind.STRING, "dkron"),
    "encrypt": (FlagKind.STRING, ""),
    "log-level": (FlagKind.STRING, "info"),
    "rpc-port": (FlagKind.INT, 6868),
    "advertise-rpc-port": (FlagKind.INT, 0),
    "mail-host": (FlagKind.STRING, ""),
    "mail-port": (FlagKind.INT, 0),
    "mail-username": (FlagKind.STRING, ""),
    "mail-password": (FlagKind.STRING, ""),
    "mail-from": (FlagKind.STRING, ""),
    "mail-payload": (FlagKind.STRING, ""),
    "mail-subject-prefix": (FlagKind.STRING, "[Dkron]"),
    "webhook-url": (FlagKind.STRING, ""),
    "webhook-payload": (FlagKind.STRING, ""),
    "webhook-header": (FlagKind.STRING_LIST, []),
    "dog-statsd-addr": (FlagKind.STRING, ""),
    "dog-statsd-tags": (FlagKind.STRING_LIST, []),
    "statsd-addr": (FlagKind.STRING, ""),
}


@pytest.fixture
def specs() -> dict[str, object]:
    config = default_config(hostname_provider=lambda: "flag-host")
    return {spec.name: spec for spec in config_flag_set(config)}


def test_flag_table_contains_every_flag(specs: dict[str, object]) -> None:
    """The declared flags match the documented surface exactly."""
    assert set(specs) == set(EXPECTED_FLAGS)
    assert set(FLAG_NAMES) == set(EXPECTED_FLAGS)


@pytest.mark.parametrize("name", sorted(EXPECTED_FLAGS))
def test_flag_kind_and_default(specs: dict[str, object], name: str) -> None:
    """Each flag carries the documented shape and default."""
    kind, default = EXPECTED_FLAGS[name]
    spec = specs[name]

    assert spec.kind is kind  # type: ignore[attr-defined]
    assert spec.default == default  # type: ignore[attr-defined]
    assert spec.help  # type: ignore[attr-defined]


def test_flag_defaults_match_default_config() -> None:
    """Flag defaults never drift from the default configuration."""
    config = default_config()

    for spec in config_flag_set(config):
        if spec.name == "tag":
            continue
        assert spec.default == getattr(config, KEY_FIELDS[spec.key]), spec.name


def test_flag_set_defaults_are_copies() -> None:
    """List defaults in the table are not the config's own lists."""
    config = default_config()
    backend = next(spec for spec in config_flag_set(config) if spec.name == "backend-machine")

    backend.default.append("10.9.9.9:2379")  # type: ignore[attr-defined]

    assert config.backend_machines == ["127.0.0.1:2379"]


def test_flags_map_to_configuration_keys() -> None:
    """Renamed flags populate the matching configuration key."""
    keys = {spec.name: spec.key for spec in config_flag_set()}

    assert keys["join"] == "start-join"
    assert keys["tag"] == "tags"
    assert keys["encrypt"] == "encrypt-key"
    assert keys["webhook-header"] == "webhook-headers"
    assert set(keys.values()) <= set(KEY_FIELDS)


def test_flag_overrides_skip_missing_values() -> None:
    """Flags that were not supplied produce no override."""
    overrides = flag_overrides({"server": None, "join": None, "bind-addr": "10.0.0.1", "tag": []})

    assert overrides == {"bind-addr": "10.0.0.1"}


def test_flag_overrides_keep_false_and_zero() -> None:
    """Explicit false and zero values still override."""
    overrides = flag_overrides({"server": False, "rpc-port": 0})

    assert overrides == {"server": False, "rpc-port": 0}


def test_flag_overrides_split_lists_preserving_order() -> None:
    """Repeated and comma-separated list values keep order and duplicates."""
    overrides = flag_overrides(
        {
            "join": ["10.0.0.2,10.0.0.3", "10.0.0.2"],
            "dog-statsd-tags": ["env:prod", "team:jobs"],
        }
    )

    assert overrides == {
        "start-join": ["10.0.0.2", "10.0.0.3", "10.0.0.2"],
        "dog-statsd-tags": ["env:prod", "team:jobs"],
    }


def test_flag_overrides_parse_tags() -> None:
    """Tag flags become a tag mapping."""
    overrides = flag_overrides({"tag": ["role=web,zone=a", "expr=a=b"]})

    assert overrides == {"tags": {"role": "web", "zone": "a", "expr": "a=b"}}


@pytest.mark.parametrize("bad", ["role", "=web"])
def test_flag_overrides_reject_malformed_tags(bad: str) -> None:
    """Tags need a non-empty key and an equals sign."""
    with pytest.raises(ConfigError, match="Invalid tag"):
        flag_overrides({"tag": [bad]})


def test_flag_overrides_unknown_flag() -> None:
    """Unknown flag names are rejected."""
    with pytest.raises(ConfigError, match="Unknown flag 'nope'"):
        flag_overrides({"nope": "x"})


def test_split_list_values_accepts_plain_string() -> None:
    """Strings split on commas with padding and empty elements kept."""
    assert split_list_values("a, b,,c") == ["a", " b", "", "c"]
    assert split_list_values(["", "X-Token: abc "]) == ["X-Token: abc "]
