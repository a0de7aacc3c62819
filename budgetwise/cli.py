"""Command-line interface for running and administering BudgetWise."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

from . import crud, templates
from .config import ConfigError, Settings, load_settings
from .database import Database
from .errors import BudgetWiseError
from .logging import configure_cli_logging

DESCRIPTION = "BudgetWise 50/30/20 budgeting service"

LOG = logging.getLogger(__name__)


def _add_serve_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=3000, help="Port to listen on (default: 3000)")


def _add_template_subparsers(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    export = subparsers.add_parser("export-template", help="Write a user's category/recurring template")
    export.add_argument("--username", required=True, help="Owner of the exported configuration")
    export.add_argument(
        "--output",
        type=Path,
        help="Destination file (default: stdout)",
    )

    imported = subparsers.add_parser("import-template", help="Merge a template file into a user's setup")
    imported.add_argument("--username", required=True, help="Owner receiving the configuration")
    imported.add_argument("path", type=Path, help="Template JSON file to import")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="budgetwise", description=DESCRIPTION)
    parser.add_argument("--config", type=Path, help="Optional YAML settings file")
    parser.add_argument("--json-logs", action="store_true", help="Also write JSON-line logs")
    parser.add_argument("--log-level", default=None, help="Override the log level (e.g. DEBUG)")

    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_serve_subparser(subparsers)
    subparsers.add_parser("init-db", help="Create the database tables")
    _add_template_subparsers(subparsers)
    return parser


def _resolve_user_id(database: Database, username: str) -> int:
    with database.session_scope() as session:
        user = crud.get_user_by_username(session, username)
        if user is None:
            raise SystemExit(f"Unknown user '{username}'")
        return user.id


def _handle_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    from .server import create_app

    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_config=None)
    return 0


def _handle_init_db(database: Database) -> int:
    database.init_db()
    LOG.info("Initialised database at %s", database.url)
    return 0


def _handle_export(args: argparse.Namespace, database: Database) -> int:
    user_id = _resolve_user_id(database, args.username)
    with database.session_scope() as session:
        rendered = templates.render_template(templates.export_template(session, user_id))
    if args.output is None:
        sys.stdout.write(rendered)
    else:
        args.output.write_text(rendered, encoding="utf-8")
        LOG.info("Template written to %s", args.output)
    return 0


def _handle_import(args: argparse.Namespace, database: Database, settings: Settings) -> int:
    user_id = _resolve_user_id(database, args.username)
    payload = templates.load_template_payload(args.path.read_bytes(), settings.max_import_bytes)
    with database.session_scope() as session:
        result = templates.import_template(session, user_id, payload)
    print(json.dumps(result.model_dump(), indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        parser.error(f"invalid configuration: {exc}")
    settings = replace(
        settings,
        json_logs=args.json_logs or settings.json_logs,
        log_level=args.log_level or settings.log_level,
    )
    configure_cli_logging(settings.json_logs, settings.log_level)

    if args.command == "serve":
        return _handle_serve(args, settings)

    database = Database(settings.database_url)
    try:
        if args.command == "init-db":
            return _handle_init_db(database)
        database.init_db()
        if args.command == "export-template":
            return _handle_export(args, database)
        return _handle_import(args, database, settings)
    except BudgetWiseError as exc:
        LOG.error("%s", exc.message)
        return 1
    finally:
        database.dispose()


if __name__ == "__main__":  # pragma: no cover - manual execution
    raise SystemExit(main())
