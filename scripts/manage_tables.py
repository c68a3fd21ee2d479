#!/usr/bin/env python3
"""
Administer document store tables and indexes.

Creates or drops a table keyed by its identifier field, and builds simple or
compound secondary indexes, blocking until they are queryable. Connection
settings come from the CACHED_DB_* environment unless overridden.
"""

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional
import sys

from cached_db.connections import open_pool
from cached_db.persistence.gateway import StoreGateway
from cached_db.persistence.postgres import DocumentStore
from cached_db.models import field_identifier
from shared.config import get_settings
from shared.logging import configure_logging, get_logger, request_scope


async def run(
    *,
    command: str,
    table: str,
    id_field: Optional[str],
    dsn: Optional[str],
    field: Optional[str] = None,
    name: Optional[str] = None,
    fields: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Execute one administration command and return its summary."""
    overrides = {}
    if dsn:
        overrides["postgres_dsn"] = dsn
    if id_field:
        overrides["id_field"] = id_field
    settings = get_settings(**overrides)

    pool = await open_pool(settings)
    try:
        store = DocumentStore(pool, index_poll_interval=settings.index_poll_interval)
        gateway = StoreGateway(
            store,
            table,
            settings.id_field,
            field_identifier(settings.id_field),
            get_logger("cached_db.admin").bind(table=table),
        )

        if command == "create-table":
            return {"command": command, "table": await gateway.create_table()}
        if command == "drop-table":
            return {"command": command, "table": await gateway.drop_table()}
        if name:
            index = await gateway.create_compound_index(name, fields or [])
            return {"command": command, "table": table, "index": index, "fields": fields}
        index = await gateway.create_simple_index(field)
        return {"command": command, "table": table, "index": index, "fields": [field]}
    finally:
        await pool.close()


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Administer cached document store tables.")
    parser.add_argument("command", choices=["create-table", "drop-table", "create-index"], help="Operation to run")
    parser.add_argument("--table", required=True, help="Table name")
    parser.add_argument("--id-field", default=None, help="Identifier field (defaults to CACHED_DB_ID_FIELD or uuid)")
    parser.add_argument("--dsn", default=None, help="PostgreSQL DSN override")
    parser.add_argument("--field", default=None, help="Field for a simple index")
    parser.add_argument("--name", default=None, help="Name of a compound index")
    parser.add_argument("--fields", nargs="+", default=None, help="Fields of a compound index")
    parser.add_argument("--log-level", default="warning", choices=["debug", "info", "warning", "error"], help="Log level")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    args = parser.parse_args(argv)

    if args.command == "create-index":
        if args.name and not args.fields:
            parser.error("--name requires --fields")
        if not args.name and not args.field:
            parser.error("create-index requires --field or --name with --fields")
    return args


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging("cached_db", args.log_level)
    try:
        with request_scope():
            summary = asyncio.run(
                run(
                    command=args.command,
                    table=args.table,
                    id_field=args.id_field,
                    dsn=args.dsn,
                    field=args.field,
                    name=args.name,
                    fields=args.fields,
                )
            )
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        print(f"[manage-tables] failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.write_text(json.dumps(summary, indent=2))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
