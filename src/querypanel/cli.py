#!/usr/bin/env python3
"""
CLI entrypoint for querypanel.

Databases come from the YAML attachment file (``--config``); the remote
service connection comes from the ``QUERYPANEL_*`` environment settings.
"""
import argparse
import json
import pathlib
import sys
from typing import List, Optional

from querypanel.common.cancellation import CancellationToken
from querypanel.common.errors import QueryPanelError
from querypanel.common.logger import configure_logging
from querypanel.common.settings import settings
from querypanel.engine.config import build_query_engine, load_attachments
from querypanel.routes.ingest import SchemaSyncOptions
from querypanel.routes.query import AskOptions


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="querypanel", description="Natural-language queries over attached SQL databases.")
    parser.add_argument("--config", type=pathlib.Path, default=pathlib.Path(settings.databases_config_path), help="Path to the databases YAML")
    parser.add_argument("--env", type=str, default=None, help="Load .env.<env> on top of .env")
    parser.add_argument("--verbose", action="store_true", help="Log at INFO")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")

    sub = parser.add_subparsers(dest="command", required=True)

    introspect = sub.add_parser("introspect", help="Print the schema of an attached database")
    introspect.add_argument("--db", type=str, default=None, help="Database name (default: first attached)")
    introspect.add_argument("--tables", nargs="+", default=None, help="Restrict to these tables")

    sync = sub.add_parser("sync", help="Push an attached database's schema to the query service")
    sync.add_argument("--db", type=str, required=True)
    sync.add_argument("--tenant", type=str, default=None)
    sync.add_argument("--tables", nargs="+", default=None)
    sync.add_argument("--force-reindex", action="store_true")

    ask = sub.add_parser("ask", help="Ask a natural-language question")
    ask.add_argument("question", type=str)
    ask.add_argument("--db", type=str, default=None)
    ask.add_argument("--tenant", type=str, default=None)
    ask.add_argument("--max-retry", type=int, default=None)

    sql = sub.add_parser("sql", help="Run SQL through the allow-list and tenant isolation")
    sql.add_argument("sql", type=str)
    sql.add_argument("--db", type=str, default=None)
    sql.add_argument("--tenant", type=str, default=None)
    sql.add_argument("--param", action="append", default=[], metavar="KEY=VALUE", help="Named parameter (repeatable)")

    return parser.parse_args(argv)


def _parse_params(pairs: List[str]) -> dict:
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise SystemExit(f"Invalid --param '{pair}', expected KEY=VALUE.")
        params[key] = value
    return params


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.env:
        settings.configure_env(args.env)

    level = settings.log_level
    if args.debug:
        level = "DEBUG"
    elif args.verbose:
        level = "INFO"
    configure_logging(level=level, json_format=args.json_logs or settings.observability_exporter == "otlp")

    token = CancellationToken()
    try:
        engine = build_query_engine(load_attachments(args.config))

        if args.command == "introspect":
            _print(engine.get_database(args.db).introspect(args.tables, cancel_token=token).model_dump())
            return 0

        if args.command == "sql":
            tenant = args.tenant or settings.default_tenant_id or ""
            result = engine.validate_and_execute(args.sql, _parse_params(args.param), args.db, tenant, cancel_token=token)
            _print(result.model_dump())
            return 0

        # Remote commands need the service connection.
        from querypanel.sdk import QueryPanelSDK

        sdk = QueryPanelSDK(engine=engine)
        if args.command == "sync":
            options = SchemaSyncOptions(tenant_id=args.tenant, tables=args.tables, force_reindex=args.force_reindex)
            _print(sdk.sync_schema(args.db, options, cancel_token=token).model_dump())
        elif args.command == "ask":
            options = AskOptions(tenant_id=args.tenant, database=args.db, max_retry=args.max_retry)
            _print(sdk.ask(args.question, options, cancel_token=token).model_dump())
        return 0
    except QueryPanelError as e:
        print(f"Error: {json.dumps(e.to_dict(), default=str)}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        token.cancel("Interrupted by user.")
        print("Cancelled.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
