"""Configuration model and loader for the dkron agent.

This module owns the canonical defaults and merges configuration sources on
top of them, in increasing order of precedence:

1. Built-in defaults (:func:`default_config`).
2. ``/etc/dkron/dkron.yml`` (or an override path).
3. Environment variables prefixed with ``DKRON_``.
4. Explicit overrides, normally produced from command-line flags by
   :func:`dkronagent.flags.flag_overrides`.

Keys use the hyphenated names shown by ``dkronagent show``. Environment
variables swap hyphens for underscores, e.g.::

    export DKRON_BIND_ADDR=10.0.0.5
    export DKRON_BACKEND_MACHINE=10.0.0.1:2379,10.0.0.2:2379

Merging happens on plain mappings. The result is a frozen :class:`Config`
that is shared read-only by everything that consumes it.
"""
from __future__ import annotations

import base64
import logging
import math
import os
import re
import socket
from collections.abc import Callable, Iterable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure surfaces at startup
    raise RuntimeError(
        "PyYAML is required to load dkron configuration. Install with "
        "`pip install dkronagent` or ensure PyYAML>=6.0 is available."
    ) from exc

from . import __version__
from .network import (
    DEFAULT_BIND_PORT,
    AddressError,
    InterfaceNotFoundError,
    NetworkInterface,
    find_interface,
    resolve_addr_parts,
)

LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "DKRON_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
DEFAULT_CONFIG_FILE = "/etc/dkron/dkron.yml"
VERSION_TAG = "dkron_version"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


class HostIdentityError(RuntimeError):
    """Raised when the local host name cannot be determined.

    The agent cannot run without a node name, so this is fatal for startup
    and deliberately not a :class:`ConfigError`.
    """


class KeyDecodeError(ConfigError):
    """Raised when the configured encryption key is not valid base64."""


@dataclass(frozen=True)
class Config:
    """Resolved configuration values for the dkron agent.

    Instances are immutable once built; lists and the tag mapping are
    allocated per instance and never shared between two configs.
    """

    node_name: str
    bind_addr: str = ""
    http_addr: str = ""
    discover: str = ""
    backend: str = ""
    backend_machines: list[str] = field(default_factory=list)
    profile: str = ""
    interface: str = ""
    advertise_addr: str = ""
    tags: dict[str, str] = field(default_factory=dict)
    snapshot_path: str = ""
    reconnect_interval: timedelta = timedelta(0)
    reconnect_timeout: timedelta = timedelta(0)
    tombstone_timeout: timedelta = timedelta(0)
    disable_name_resolution: bool = False
    keyring_file: str = ""
    rejoin_after_leave: bool = False
    server: bool = False
    encrypt_key: str = ""
    start_join: list[str] = field(default_factory=list)
    keyspace: str = ""
    rpc_port: int = 0
    advertise_rpc_port: int = 0
    log_level: str = ""

    mail_host: str = ""
    mail_port: int = 0
    mail_username: str = ""
    mail_password: str = ""
    mail_from: str = ""
    mail_payload: str = ""
    mail_subject_prefix: str = ""

    webhook_url: str = ""
    webhook_payload: str = ""
    webhook_headers: list[str] = field(default_factory=list)

    # Global tags sent with every dogstatsd packet, each "name:value".
    dog_statsd_addr: str = ""
    dog_statsd_tags: list[str] = field(default_factory=list)
    statsd_addr: str = ""

    def addr_parts(self, address: str) -> tuple[str, int]:
        """Return the IP and port *address* resolves to.

        A missing port defaults to :data:`DEFAULT_BIND_PORT`. Raises
        :class:`~dkronagent.network.AddressError` otherwise.
        """
        return resolve_addr_parts(address, default_port=DEFAULT_BIND_PORT)

    def network_interface(self) -> NetworkInterface | None:
        """Return the configured interface, or ``None`` when none is set."""
        return find_interface(self.interface)

    def encrypt_bytes(self) -> bytes:
        """Return the decoded encryption key (empty when unset)."""
        return decode_encrypt_key(self.encrypt_key)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation keyed by configuration key."""
        data: dict[str, object] = {}
        for key, attr, kind in _FIELDS:
            value = getattr(self, attr)
            if kind == "duration":
                data[key] = value.total_seconds()
            elif kind == "str_list":
                data[key] = list(value)
            elif kind == "tags":
                data[key] = dict(value)
            else:
                data[key] = value
        return data


# (key, attribute, kind) for every configuration field, in display order.
_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("node-name", "node_name", "str"),
    ("bind-addr", "bind_addr", "str"),
    ("http-addr", "http_addr", "str"),
    ("discover", "discover", "str"),
    ("backend", "backend", "str"),
    ("backend-machine", "backend_machines", "str_list"),
    ("profile", "profile", "str"),
    ("interface", "interface", "str"),
    ("advertise-addr", "advertise_addr", "str"),
    ("tags", "tags", "tags"),
    ("snapshot-path", "snapshot_path", "str"),
    ("reconnect-interval", "reconnect_interval", "duration"),
    ("reconnect-timeout", "reconnect_timeout", "duration"),
    ("tombstone-timeout", "tombstone_timeout", "duration"),
    ("disable-name-resolution", "disable_name_resolution", "bool"),
    ("keyring-file", "keyring_file", "str"),
    ("rejoin-after-leave", "rejoin_after_leave", "bool"),
    ("server", "server", "bool"),
    ("encrypt-key", "encrypt_key", "str"),
    ("start-join", "start_join", "str_list"),
    ("keyspace", "keyspace", "str"),
    ("rpc-port", "rpc_port", "int"),
    ("advertise-rpc-port", "advertise_rpc_port", "int"),
    ("log-level", "log_level", "str"),
    ("mail-host", "mail_host", "str"),
    ("mail-port", "mail_port", "int"),
    ("mail-username", "mail_username", "str"),
    ("mail-password", "mail_password", "str"),
    ("mail-from", "mail_from", "str"),
    ("mail-payload", "mail_payload", "str"),
    ("mail-subject-prefix", "mail_subject_prefix", "str"),
    ("webhook-url", "webhook_url", "str"),
    ("webhook-payload", "webhook_payload", "str"),
    ("webhook-headers", "webhook_headers", "str_list"),
    ("dog-statsd-addr", "dog_statsd_addr", "str"),
    ("dog-statsd-tags", "dog_statsd_tags", "str_list"),
    ("statsd-addr", "statsd_addr", "str"),
)

KEY_FIELDS: dict[str, str] = {key: attr for key, attr, _ in _FIELDS}
ALLOWED_KEYS = frozenset(KEY_FIELDS)


def default_config(
    *,
    version: str = __version__,
    hostname_provider: Callable[[], str] = socket.gethostname,
) -> Config:
    """Return a fresh :class:`Config` populated with the built-in defaults.

    *version* is stored under the reserved ``dkron_version`` tag. The node
    name comes from *hostname_provider*; failing to obtain one raises
    :class:`HostIdentityError`.
    """
    try:
        hostname = hostname_provider()
    except OSError as exc:
        raise HostIdentityError(f"Unable to determine the local host name: {exc}") from exc
    if not hostname:
        raise HostIdentityError("Unable to determine the local host name: empty result.")

    return Config(
        node_name=hostname,
        bind_addr=f"0.0.0.0:{DEFAULT_BIND_PORT}",
        http_addr=":8080",
        discover="dkron",
        backend="etcd",
        backend_machines=["127.0.0.1:2379"],
        profile="lan",
        keyspace="dkron",
        log_level="info",
        rpc_port=6868,
        mail_subject_prefix="[Dkron]",
        tags={VERSION_TAG: version},
    )


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
    version: str = __version__,
    hostname_provider: Callable[[], str] = socket.gethostname,
) -> Config:
    """Load and merge configuration sources into a :class:`Config`."""
    merged = default_config(version=version, hostname_provider=hostname_provider).to_dict()
    resolved_env = dict(os.environ if env is None else env)

    config_path = _determine_config_path(config_file, resolved_env)
    file_values = _load_yaml_file(config_path)
    if file_values:
        LOGGER.debug("Merging %d key(s) from %s", len(file_values), config_path)
        _merge(merged, file_values, f"file:{config_path}")

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        LOGGER.debug("Merging environment keys: %s", ", ".join(sorted(env_values)))
        _merge(merged, env_values, "env")

    if overrides:
        LOGGER.debug("Merging override keys: %s", ", ".join(sorted(overrides)))
        _merge(merged, dict(overrides), "overrides")

    _validate_keys(merged)
    return _build_config(merged, version=version)


def parse_tags(pairs: Iterable[str]) -> dict[str, str]:
    """Parse ``key=value`` strings into a tag mapping; later keys win."""
    tags: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigError(f"Invalid tag {pair!r}; expected key=value.")
        tags[key] = value
    return tags


def decode_encrypt_key(key: str) -> bytes:
    """Decode a standard (padded) base64 encryption key."""
    if not key:
        return b""
    try:
        return base64.b64decode(key, validate=True)
    except ValueError as exc:  # binascii.Error subclasses ValueError
        raise KeyDecodeError(f"Encryption key is not valid base64: {exc}") from exc


def _determine_config_path(
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if env.get(CONFIG_ENV_VAR):
        return Path(env[CONFIG_ENV_VAR])
    return Path(DEFAULT_CONFIG_FILE)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        LOGGER.debug("Config file %s not found; using defaults.", path)
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS or not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        if not suffix:
            continue
        name = suffix.lower().replace("_", "-")
        overrides[name] = _coerce_value(value) if name in _STRUCTURED_KEYS else value
    return overrides


_STRUCTURED_KEYS = frozenset(key for key, _, kind in _FIELDS if kind in ("str_list", "tags"))


def _coerce_value(raw: str) -> object:
    # Flow-style YAML only, so "Content-Type: text/plain" stays a single item.
    text = raw.strip()
    if not text.startswith(("{", "[")):
        return raw
    try:
        parsed = yaml.safe_load(text)
    except yaml.YAMLError:
        return raw
    return parsed if isinstance(parsed, (Mapping, list)) else raw


def _merge(
    target: MutableMapping[str, object],
    overrides: Mapping[str, object],
    source: str,
) -> None:
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "tags":
            tags = _expect_tags(target.get("tags"), "tags")
            tags.update(_expect_tags(value, f"{source}.tags"))
            target[key] = tags
            continue
        target[key] = value


def _validate_keys(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")


def _build_config(raw: Mapping[str, object], *, version: str) -> Config:
    values: dict[str, object] = {}
    for key, attr, kind in _FIELDS:
        values[attr] = _COERCERS[kind](raw.get(key), key)

    mail_port = values["mail_port"]
    if not 0 <= mail_port <= 65535:  # type: ignore[operator]
        raise ConfigError(f"mail-port must be between 0 and 65535. Got {mail_port}.")

    tags = values["tags"]
    tags[VERSION_TAG] = version  # type: ignore[index]
    return Config(**values)  # type: ignore[arg-type]


def _expect_str(value: object, label: str) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    raise ConfigError(f"Expected {label} to be a string. Got {type(value).__name__}.")


_TRUE_STRINGS = {"1", "t", "true", "yes", "y", "on"}
_FALSE_STRINGS = {"0", "f", "false", "no", "n", "off"}


def _expect_bool(value: object, label: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_int(value: object, label: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str_list(value: object, label: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                parsed = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid list for {label}: {value!r}.") from exc
            return _expect_str_list(parsed, label)
        return value.split(",") if value else []
    items = _as_sequence(value, label)
    result: list[str] = []
    for index, item in enumerate(items):
        if isinstance(item, (str, int, float)) and not isinstance(item, bool):
            result.append(str(item))
        else:
            raise ConfigError(f"Expected {label}[{index}] to be a string. Got {item!r}.")
    return result


def _expect_tags(value: object, label: str) -> dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        tags: dict[str, str] = {}
        for key, item in _as_dict(value, label).items():
            if isinstance(item, (Mapping, list, tuple)):
                raise ConfigError(f"Tag {label}.{key} must be a scalar value.")
            tags[key] = "" if item is None else _expect_str(item, f"{label}.{key}")
        return tags
    return parse_tags(_expect_str_list(value, label))


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_TOKEN = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def _expect_duration(value: object, label: str) -> timedelta:
    if value is None:
        return timedelta(0)
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a duration. Got boolean {value!r}.")
    elif isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        seconds = _parse_duration(value, label)
    else:
        raise ConfigError(f"Expected {label} to be a duration. Got {type(value).__name__}.")
    if not math.isfinite(seconds):
        raise ConfigError(f"Invalid duration for {label}: {value!r}.")
    if seconds < 0:
        raise ConfigError(f"{label} must not be negative. Got {value!r}.")
    try:
        return timedelta(seconds=seconds)
    except OverflowError as exc:
        raise ConfigError(f"Duration for {label} is out of range: {value!r}.") from exc


def _parse_duration(value: str, label: str) -> float:
    """Parse Go-style durations such as ``30s`` or ``1h30m`` into seconds."""
    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass

    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if not text:
        raise ConfigError(f"Invalid duration for {label}: {value!r}.")

    total = 0.0
    position = 0
    while position < len(text):
        match = _DURATION_TOKEN.match(text, position)
        if match is None:
            raise ConfigError(f"Invalid duration for {label}: {value!r}.")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    return sign * total


_COERCERS: dict[str, Callable[[object, str], object]] = {
    "str": _expect_str,
    "bool": _expect_bool,
    "int": _expect_int,
    "str_list": _expect_str_list,
    "tags": _expect_tags,
    "duration": _expect_duration,
}


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ALLOWED_KEYS",
    "DEFAULT_BIND_PORT",
    "KEY_FIELDS",
    "VERSION_TAG",
    "AddressError",
    "Config",
    "ConfigError",
    "HostIdentityError",
    "InterfaceNotFoundError",
    "KeyDecodeError",
    "NetworkInterface",
    "decode_encrypt_key",
    "default_config",
    "load_config",
    "parse_tags",
]
