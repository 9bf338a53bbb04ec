"""Command-line bootstrap for the editor bridge."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .services.bridge import BridgeConnectionManager, BridgeContext
from .services.bridge_types import BridgeError, ConnectionState, MalformedMessage, TransportFactory
from .services.context_service import ContextService
from .services.discovery import InstanceDirectory
from .services.settings import BridgeSettings, SettingsStore
from .services.storage import JsonFileKeyValueStore
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

COMMANDS = ("discover", "status", "fetch", "info", "files")


def configure_logging(debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> BridgeSettings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return BridgeSettings()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `webaibridge` console script."""

    args = _parse_cli_args(argv)
    debug = _env_flag("WEBAIBRIDGE_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("WEBAIBRIDGE_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if settings.debug_logging and not debug:
        logging_utils.set_level(logging.DEBUG)
        _LOGGER.debug("Debug logging enabled by settings")

    state_path = Path(args.state_path).expanduser() if args.state_path else None
    context = BridgeContext.create(settings, store=JsonFileKeyValueStore(state_path))
    try:
        return asyncio.run(
            run_command(context, args.command, context_type=args.context_type, file_path=args.file)
        )
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
        return 130


async def run_command(
    context: BridgeContext,
    command: str,
    *,
    context_type: str | None = None,
    file_path: str | None = None,
    directory: InstanceDirectory | None = None,
    transport_factory: TransportFactory | None = None,
    stream: TextIO | None = None,
) -> int:
    """Run one bridge command against the best running editor host.

    Returns a process exit code: ``0`` on success, ``1`` when no host could be
    reached or the request failed.
    """

    destination = stream or sys.stdout
    manager = BridgeConnectionManager(context, directory=directory, transport_factory=transport_factory)

    if command == "discover":
        instances = await manager.discover()
        _write_json([instance.to_payload() for instance in instances], destination)
        return 0 if instances else 1

    try:
        chosen = await manager.rediscover()
        if chosen is None:
            print("No editor instances found.", file=sys.stderr)
            return 1
        if not await _wait_for_open(manager, context.settings.request_timeout_ms / 1000.0):
            print(f"Could not connect to port {chosen.port}.", file=sys.stderr)
            return 1

        service = ContextService(manager)
        if command == "status":
            _write_json(manager.status(), destination)
        elif command == "fetch":
            payload = await service.fetch_context(context_type or "selection", file_path)
            _LOGGER.info("Fetched %s (%d tokens)", payload.label, payload.tokens)
            destination.write(payload.text)
            destination.write("\n")
        elif command == "info":
            _write_json(await service.fetch_context_info(), destination)
        elif command == "files":
            for entry in await service.fetch_file_list():
                destination.write(f"{entry.path}\t{entry.language_id}\n")
        else:
            print(f"Unknown command: {command}", file=sys.stderr)
            return 2
        return 0
    except (BridgeError, MalformedMessage) as exc:
        print(f"Request failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await manager.stop()


async def _wait_for_open(manager: BridgeConnectionManager, timeout: float) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while manager.state is not ConnectionState.OPEN:
        if loop.time() >= deadline or manager.context.reconnect_exhausted:
            return False
        await asyncio.sleep(0.01)
    return True


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="webaibridge",
        description="Talk to a running editor host or inspect the bridge configuration.",
    )
    parser.add_argument("command", nargs="?", default="discover", choices=COMMANDS)
    parser.add_argument(
        "context_type",
        nargs="?",
        help="Context option for the fetch command (selection, file, problems, ...).",
    )
    parser.add_argument("--file", metavar="PATH", help="Workspace file path for `fetch file`.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.webaibridge/settings.json path.",
    )
    parser.add_argument(
        "--state-path",
        metavar="PATH",
        help="Override the default ~/.webaibridge/state.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = BridgeSettings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(BridgeSettings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is dict:
        try:
            payload = json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(payload, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return payload
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is dict:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: BridgeSettings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    _write_json({"settings": asdict(settings), "meta": metadata}, destination)


def _write_json(payload: Any, destination: TextIO) -> None:
    json.dump(payload, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("WEBAIBRIDGE_"))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
