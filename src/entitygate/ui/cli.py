from __future__ import annotations

import argparse
import dataclasses
import importlib
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv
from sqlalchemy.engine import make_url
from sqlalchemy.orm import registry

from entitygate.adapters.sqlalchemy import SqlAlchemyMappingEngine
from entitygate.config import ConfigurationError, configure_logging, load_registry
from entitygate.domain.helpers import load_all

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from entitygate.config import ConfigurationRegistry, GateSettings

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect entity gate connections")
    subparsers = parser.add_subparsers(dest="command", required=True)

    show_config = subparsers.add_parser("show-config", help="Print resolved connection settings")
    show_config.add_argument(
        "--connection",
        type=str,
        help="Connection name (defaults to the first configured connection)",
    )

    list_rows = subparsers.add_parser("list", help="List every entity of a shape")
    list_rows.add_argument(
        "--mappings",
        type=str,
        required=True,
        help="module:attribute of a SQLAlchemy registry (or a callable returning one)",
    )
    list_rows.add_argument("shape", type=str, help="Shape name (mapped class name)")
    list_rows.add_argument(
        "--connection",
        type=str,
        help="Connection name (defaults to the first configured connection)",
    )

    return parser.parse_args(list(argv))


def _resolve_mappings(target: str) -> registry:
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Invalid mappings target (expected module:attribute): {target}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ValueError(f"Unable to import mappings module: {module_name}") from exc
    value = getattr(module, attribute, None)
    if callable(value) and not isinstance(value, registry):
        value = value()
    if not isinstance(value, registry):
        raise ValueError(f"{target} is not a SQLAlchemy registry")
    return value


def _select_settings(configs: ConfigurationRegistry, connection: str | None) -> GateSettings:
    return configs.get(connection) if connection else configs.first()


def _describe_settings(settings: GateSettings) -> list[str]:
    lines: list[str] = []
    for item in dataclasses.fields(settings):
        value: Any = getattr(settings, item.name)
        if item.name == "database_uri":
            value = make_url(value).render_as_string(hide_password=True)
        lines.append(f"{item.name} = {value}")
    return lines


def _show_config(args: argparse.Namespace) -> None:
    settings = _select_settings(load_registry(), args.connection)
    for line in _describe_settings(settings):
        print(line)  # noqa: T201


def _list_rows(args: argparse.Namespace, mappings: registry) -> None:
    engine = SqlAlchemyMappingEngine(mappings)
    try:
        shape = engine.shapes.get(args.shape)
        settings = _select_settings(load_registry(), args.connection)
        entities = load_all(engine, shape.entity_type, settings=settings)
        for entity in entities:
            print(shape.friendly_name(entity))  # noqa: T201
        log.info("Listed %d %s entities", len(entities), shape.name)
    finally:
        engine.dispose()


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    try:
        configure_logging()
    except ConfigurationError as exc:
        print(f"entitygate: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(2)
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    mappings: registry | None = None
    try:
        if parsed_args.command == "list":
            mappings = _resolve_mappings(parsed_args.mappings)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        if parsed_args.command == "show-config":
            _show_config(parsed_args)
        elif parsed_args.command == "list" and mappings is not None:
            _list_rows(parsed_args, mappings)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301
    except Exception:
        log.exception("Fatal error while running %s", parsed_args.command)
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
