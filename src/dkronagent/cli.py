"""Typer-powered command line for the dkron agent configuration layer.

Every agent flag is accepted on the root command. Values the user supplies are
layered over the config file and ``DKRON_*`` environment variables, and the
subcommands then inspect the result:

* ``show``   renders the effective configuration;
* ``check``  resolves addresses, the interface and the encryption key;
* ``flags``  lists the declared flags and their defaults.
"""
from __future__ import annotations

import json
import logging
import textwrap
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from . import __version__
from .config import (
    AddressError,
    Config,
    ConfigError,
    HostIdentityError,
    InterfaceNotFoundError,
    KeyDecodeError,
    load_config,
)
from .exit_codes import ExitCode
from .flags import FLAG_HELP, FlagSpec, config_flag_set, flag_overrides
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)

console = Console()

REDACTED = "********"
_SECRET_KEYS = frozenset({"encrypt-key", "mail-password"})


def _flag_option(name: str, *param_decls: str) -> Any:
    """Build a Typer option for an agent flag; ``None`` means "not given"."""
    return typer.Option(
        None,
        *(param_decls or (f"--{name}",)),
        help=FLAG_HELP[name],
        show_default=False,
    )


CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to the dkron YAML config file.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

SERVER_OPTION = _flag_option("server", "--server/--no-server")
NODE_NAME_OPTION = _flag_option("node-name")
BIND_ADDR_OPTION = _flag_option("bind-addr")
ADVERTISE_ADDR_OPTION = _flag_option("advertise-addr")
HTTP_ADDR_OPTION = _flag_option("http-addr")
DISCOVER_OPTION = _flag_option("discover")
BACKEND_OPTION = _flag_option("backend")
BACKEND_MACHINE_OPTION = _flag_option("backend-machine")
PROFILE_OPTION = _flag_option("profile")
JOIN_OPTION = _flag_option("join")
TAG_OPTION = _flag_option("tag")
KEYSPACE_OPTION = _flag_option("keyspace")
ENCRYPT_OPTION = _flag_option("encrypt")
LOG_LEVEL_OPTION = _flag_option("log-level")
RPC_PORT_OPTION = _flag_option("rpc-port")
ADVERTISE_RPC_PORT_OPTION = _flag_option("advertise-rpc-port")
MAIL_HOST_OPTION = _flag_option("mail-host")
MAIL_PORT_OPTION = _flag_option("mail-port")
MAIL_USERNAME_OPTION = _flag_option("mail-username")
MAIL_PASSWORD_OPTION = _flag_option("mail-password")
MAIL_FROM_OPTION = _flag_option("mail-from")
MAIL_PAYLOAD_OPTION = _flag_option("mail-payload")
MAIL_SUBJECT_PREFIX_OPTION = _flag_option("mail-subject-prefix")
WEBHOOK_URL_OPTION = _flag_option("webhook-url")
WEBHOOK_PAYLOAD_OPTION = _flag_option("webhook-payload")
WEBHOOK_HEADER_OPTION = _flag_option("webhook-header")
DOG_STATSD_ADDR_OPTION = _flag_option("dog-statsd-addr")
DOG_STATSD_TAGS_OPTION = _flag_option("dog-statsd-tags")
STATSD_ADDR_OPTION = _flag_option("statsd-addr")


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        dkron agent configuration resolver.

        Agent flags are given before the subcommand, e.g.
        ``dkronagent --server --join 10.0.0.2 check``.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Resolved objects shared by commands."""

    config: Config
    flags: tuple[FlagSpec, ...]


def _fail(message: str, *, rc: int = ExitCode.VALIDATION) -> NoReturn:
    """Print an error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    raise typer.Exit(code=rc)


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    flag_values: Mapping[str, object],
) -> RuntimeContext:
    if isinstance(ctx.obj, RuntimeContext):
        return ctx.obj
    try:
        overrides = flag_overrides(flag_values)
        config = load_config(config_file=config_file, overrides=overrides)
        configure_logging(config.log_level)
        flag_specs = config_flag_set()
    except HostIdentityError as exc:
        _fail(str(exc), rc=ExitCode.ENVIRONMENT)
    except ConfigError as exc:
        _fail(f"Configuration error: {exc}")

    runtime = RuntimeContext(config=config, flags=flag_specs)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, {})


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the dkronagent version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    server: bool | None = SERVER_OPTION,
    node_name: str | None = NODE_NAME_OPTION,
    bind_addr: str | None = BIND_ADDR_OPTION,
    advertise_addr: str | None = ADVERTISE_ADDR_OPTION,
    http_addr: str | None = HTTP_ADDR_OPTION,
    discover: str | None = DISCOVER_OPTION,
    backend: str | None = BACKEND_OPTION,
    backend_machine: list[str] | None = BACKEND_MACHINE_OPTION,
    profile: str | None = PROFILE_OPTION,
    join: list[str] | None = JOIN_OPTION,
    tag: list[str] | None = TAG_OPTION,
    keyspace: str | None = KEYSPACE_OPTION,
    encrypt: str | None = ENCRYPT_OPTION,
    log_level: str | None = LOG_LEVEL_OPTION,
    rpc_port: int | None = RPC_PORT_OPTION,
    advertise_rpc_port: int | None = ADVERTISE_RPC_PORT_OPTION,
    mail_host: str | None = MAIL_HOST_OPTION,
    mail_port: int | None = MAIL_PORT_OPTION,
    mail_username: str | None = MAIL_USERNAME_OPTION,
    mail_password: str | None = MAIL_PASSWORD_OPTION,
    mail_from: str | None = MAIL_FROM_OPTION,
    mail_payload: str | None = MAIL_PAYLOAD_OPTION,
    mail_subject_prefix: str | None = MAIL_SUBJECT_PREFIX_OPTION,
    webhook_url: str | None = WEBHOOK_URL_OPTION,
    webhook_payload: str | None = WEBHOOK_PAYLOAD_OPTION,
    webhook_header: list[str] | None = WEBHOOK_HEADER_OPTION,
    dog_statsd_addr: str | None = DOG_STATSD_ADDR_OPTION,
    dog_statsd_tags: list[str] | None = DOG_STATSD_TAGS_OPTION,
    statsd_addr: str | None = STATSD_ADDR_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"dkronagent {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    flag_values: dict[str, object] = {
        "server": server,
        "node-name": node_name,
        "bind-addr": bind_addr,
        "advertise-addr": advertise_addr,
        "http-addr": http_addr,
        "discover": discover,
        "backend": backend,
        "backend-machine": backend_machine,
        "profile": profile,
        "join": join,
        "tag": tag,
        "keyspace": keyspace,
        "encrypt": encrypt,
        "log-level": log_level,
        "rpc-port": rpc_port,
        "advertise-rpc-port": advertise_rpc_port,
        "mail-host": mail_host,
        "mail-port": mail_port,
        "mail-username": mail_username,
        "mail-password": mail_password,
        "mail-from": mail_from,
        "mail-payload": mail_payload,
        "mail-subject-prefix": mail_subject_prefix,
        "webhook-url": webhook_url,
        "webhook-payload": webhook_payload,
        "webhook-header": webhook_header,
        "dog-statsd-addr": dog_statsd_addr,
        "dog-statsd-tags": dog_statsd_tags,
        "statsd-addr": statsd_addr,
    }
    _ensure_runtime(ctx, config_file, flag_values)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _redact(data: Mapping[str, object]) -> dict[str, object]:
    redacted = dict(data)
    for key in _SECRET_KEYS:
        if redacted.get(key):
            redacted[key] = REDACTED
    return redacted


def _render_value(value: object) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


@app.command("show")
def show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = _redact(runtime.config.to_dict())

    if json_output:
        console.print_json(data=data)
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, Text(_render_value(value)))
    console.print(table)


def _join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _run_check(name: str, probe: Callable[[], str | None]) -> dict[str, object]:
    """Run a single derivation and capture its outcome."""
    try:
        value = probe()
    except (AddressError, InterfaceNotFoundError, KeyDecodeError) as exc:
        LOGGER.debug("Check %s failed: %s", name, exc)
        return {"check": name, "status": "error", "detail": str(exc)}
    if value is None:
        return {"check": name, "status": "skipped", "detail": "not set"}
    return {"check": name, "status": "ok", "detail": value}


@app.command("check")
def check(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Resolve addresses, the network interface and the encryption key."""
    config = _get_runtime(ctx).config

    def bind_probe() -> str:
        return _join_host_port(*config.addr_parts(config.bind_addr))

    def advertise_probe() -> str | None:
        if not config.advertise_addr:
            return None
        return _join_host_port(*config.addr_parts(config.advertise_addr))

    def interface_probe() -> str | None:
        interface = config.network_interface()
        if interface is None:
            return None
        addresses = ", ".join(interface.addresses) or "no addresses"
        return f"{interface.name} (index {interface.index}, {addresses})"

    def encrypt_probe() -> str | None:
        key = config.encrypt_bytes()
        if not key:
            return None
        return f"{len(key)} bytes"

    results = [
        _run_check("bind-addr", bind_probe),
        _run_check("advertise-addr", advertise_probe),
        _run_check("interface", interface_probe),
        _run_check("encrypt-key", encrypt_probe),
    ]
    failed = [result for result in results if result["status"] == "error"]

    if json_output:
        console.print_json(data={"results": results, "ok": not failed})
    else:
        styles = {
            "ok": "[green]OK[/green]",
            "skipped": "[yellow]SKIP[/yellow]",
            "error": "[red]FAIL[/red]",
        }
        for result in results:
            console.print(
                f"{styles[str(result['status'])]} {result['check']}: "
                f"{escape(str(result['detail']))}"
            )

    if failed:
        raise typer.Exit(code=ExitCode.VALIDATION)


@app.command("flags")
def flags(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List agent flags with their defaults."""
    specs = _get_runtime(ctx).flags

    if json_output:
        console.print_json(data={"flags": [spec.to_dict() for spec in specs]})
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Flag", style="bold")
    table.add_column("Type")
    table.add_column("Default")
    table.add_column("Description")
    for spec in specs:
        table.add_row(
            f"--{spec.name}",
            spec.kind.value,
            Text(_render_value(spec.default)),
            Text(spec.help),
        )
    console.print(table)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
