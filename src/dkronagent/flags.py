"""Declarative flag surface for the dkron agent.

The table below is static metadata: every supported command-line tunable,
its shape, the configuration key it populates and its help text. Defaults
are drawn from a :class:`~dkronagent.config.Config` (normally
:func:`~dkronagent.config.default_config`) so the two can never drift.
Parsing is left to the CLI; :func:`flag_overrides` only translates values the
user actually supplied into overrides for :func:`~dkronagent.config.load_config`.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from .config import KEY_FIELDS, Config, ConfigError, default_config, parse_tags


class FlagKind(str, Enum):
    """Value shape expected by a flag."""

    BOOL = "bool"
    STRING = "string"
    INT = "int"
    STRING_LIST = "string-list"


@dataclass(frozen=True, slots=True)
class FlagSpec:
    """Description of a single command-line flag."""

    name: str
    kind: FlagKind
    default: object
    help: str
    key: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "default": self.default,
            "help": self.help,
            "key": self.key,
        }


class _FromConfig:
    """Marker: take the default from the matching ``Config`` field."""


FROM_CONFIG = _FromConfig()

# (flag name, kind, configuration key, default, help)
_DECLARATIONS: tuple[tuple[str, FlagKind, str, object, str], ...] = (
    ("server", FlagKind.BOOL, "server", False, "start dkron server"),
    ("node-name", FlagKind.STRING, "node-name", FROM_CONFIG, "node name"),
    ("bind-addr", FlagKind.STRING, "bind-addr", FROM_CONFIG, "address to bind listeners to"),
    (
        "advertise-addr",
        FlagKind.STRING,
        "advertise-addr",
        FROM_CONFIG,
        "address to advertise to other nodes",
    ),
    ("http-addr", FlagKind.STRING, "http-addr", FROM_CONFIG, "HTTP address"),
    ("discover", FlagKind.STRING, "discover", FROM_CONFIG, "mDNS discovery name"),
    ("backend", FlagKind.STRING, "backend", FROM_CONFIG, "store backend"),
    (
        "backend-machine",
        FlagKind.STRING_LIST,
        "backend-machine",
        FROM_CONFIG,
        "store backend machines addresses",
    ),
    ("profile", FlagKind.STRING, "profile", FROM_CONFIG, "timing profile to use (lan, wan, local)"),
    (
        "join",
        FlagKind.STRING_LIST,
        "start-join",
        FROM_CONFIG,
        "address of agent to join on startup",
    ),
    ("tag", FlagKind.STRING_LIST, "tags", [], "tag pair, specified as key=value"),
    ("keyspace", FlagKind.STRING, "keyspace", FROM_CONFIG, "key namespace to use"),
    ("encrypt", FlagKind.STRING, "encrypt-key", "", "encryption key"),
    (
        "log-level",
        FlagKind.STRING,
        "log-level",
        FROM_CONFIG,
        "Log level (debug, info, warn, error, fatal, panic), defaults to info",
    ),
    ("rpc-port", FlagKind.INT, "rpc-port", FROM_CONFIG, "RPC port"),
    ("advertise-rpc-port", FlagKind.INT, "advertise-rpc-port", FROM_CONFIG, "advertise RPC port"),
    ("mail-host", FlagKind.STRING, "mail-host", FROM_CONFIG, "notification mail server host"),
    ("mail-port", FlagKind.INT, "mail-port", FROM_CONFIG, "port to use for the mail server"),
    (
        "mail-username",
        FlagKind.STRING,
        "mail-username",
        FROM_CONFIG,
        "username for the mail server",
    ),
    ("mail-password", FlagKind.STRING, "mail-password", FROM_CONFIG, "password of the mail server"),
    ("mail-from", FlagKind.STRING, "mail-from", FROM_CONFIG, "notification emails from address"),
    ("mail-payload", FlagKind.STRING, "mail-payload", FROM_CONFIG, "notification mail payload"),
    (
        "mail-subject-prefix",
        FlagKind.STRING,
        "mail-subject-prefix",
        FROM_CONFIG,
        "notification mail subject prefix",
    ),
    ("webhook-url", FlagKind.STRING, "webhook-url", FROM_CONFIG, "notification webhook url"),
    (
        "webhook-payload",
        FlagKind.STRING,
        "webhook-payload",
        FROM_CONFIG,
        "notification webhook payload",
    ),
    (
        "webhook-header",
        FlagKind.STRING_LIST,
        "webhook-headers",
        FROM_CONFIG,
        "notification webhook additional header",
    ),
    ("dog-statsd-addr", FlagKind.STRING, "dog-statsd-addr", FROM_CONFIG, "DataDog Agent address"),
    (
        "dog-statsd-tags",
        FlagKind.STRING_LIST,
        "dog-statsd-tags",
        FROM_CONFIG,
        "Datadog tags, specified as key:value",
    ),
    ("statsd-addr", FlagKind.STRING, "statsd-addr", FROM_CONFIG, "Statsd Address"),
)

FLAG_NAMES: tuple[str, ...] = tuple(entry[0] for entry in _DECLARATIONS)
_BY_NAME = {entry[0]: entry for entry in _DECLARATIONS}
FLAG_HELP: dict[str, str] = {entry[0]: entry[4] for entry in _DECLARATIONS}


def config_flag_set(config: Config | None = None) -> tuple[FlagSpec, ...]:
    """Return the flag declarations with defaults drawn from *config*."""
    source = config if config is not None else default_config()
    specs: list[FlagSpec] = []
    for name, kind, key, default, help_text in _DECLARATIONS:
        if isinstance(default, _FromConfig):
            default = getattr(source, KEY_FIELDS[key])
        if isinstance(default, list):
            default = list(default)
        specs.append(FlagSpec(name=name, kind=kind, default=default, help=help_text, key=key))
    return tuple(specs)


def flag_overrides(values: Mapping[str, object]) -> dict[str, object]:
    """Translate supplied flag values into configuration-key overrides.

    ``None`` (and empty lists) mean the flag was not given. List values are
    split on commas with order and duplicates preserved; ``tag`` values are
    parsed into a tag mapping.
    """
    overrides: dict[str, object] = {}
    for name, value in values.items():
        entry = _BY_NAME.get(name)
        if entry is None:
            raise ConfigError(f"Unknown flag '{name}'.")
        _, kind, key, _, _ = entry
        if value is None:
            continue
        if kind is FlagKind.STRING_LIST:
            items = split_list_values(value)
            if not items:
                continue
            overrides[key] = parse_tags(items) if name == "tag" else items
            continue
        overrides[key] = value
    return overrides


def split_list_values(value: object) -> list[str]:
    """Flatten repeated and comma-separated list flag values, keeping each element as given."""
    raw: Iterable[object] = [value] if isinstance(value, str) else value  # type: ignore[assignment]
    items: list[str] = []
    for entry in raw:
        text = str(entry)
        if text:
            items.extend(text.split(","))
    return items


__all__ = [
    "FLAG_HELP",
    "FLAG_NAMES",
    "FlagKind",
    "FlagSpec",
    "config_flag_set",
    "flag_overrides",
    "split_list_values",
]
