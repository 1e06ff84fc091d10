from __future__ import annotations

import argparse
import json
from typing import Any, Dict, Iterable, List, Type

from .db.seeds import DEFAULT_BLOCKED_EMAIL_DOMAINS
from .models.audit import AuditEntry
from .models.base import DBSerializableModel
from .models.fraud import BlockedEmailDomain, DeviceFingerprint, IPSignupRecord
from .models.transaction import CreditTransaction
from .models.user import Plan, UserAccount


MODEL_REGISTRY: List[Type[DBSerializableModel]] = [
    Plan,
    UserAccount,
    CreditTransaction,
    DeviceFingerprint,
    IPSignupRecord,
    BlockedEmailDomain,
    AuditEntry,
]

# Secondary indexes the gates query by
INDEXES: Dict[str, List[List[str]]] = {
    DeviceFingerprint.collection_name: [["fingerprint_hash"], ["user_id"], ["ip_address"]],
    IPSignupRecord.collection_name: [["ip_address"], ["created_at"]],
    CreditTransaction.collection_name: [["user_id", "created_at"]],
}

UNIQUE_COLUMNS: Dict[str, List[str]] = {
    BlockedEmailDomain.collection_name: ["domain"],
}


def generate_logical_schema() -> Dict[str, Any]:
    """
    Backend-agnostic logical schema for all registered models.
    """
    schema = {model.collection_name: model.db_schema() for model in MODEL_REGISTRY}
    for table_name, spec in schema.items():
        spec["indexes"] = INDEXES.get(table_name, [])
        spec["unique"] = UNIQUE_COLUMNS.get(table_name, [])
    return schema


def render_sql_ddl(schema: Dict[str, Any], dialect: str = "postgres") -> str:
    """
    Very small SQL DDL renderer. For production you would typically
    plug this into a migration tool.
    """
    lines: List[str] = []
    for table_name, spec in schema.items():
        props = spec["properties"]
        pk = spec.get("primary_key") or "id"
        columns: List[str] = []
        for field_name, meta in props.items():
            sql_type = _map_logical_to_sql(meta["type"], dialect=dialect)
            nullable = "NOT NULL" if field_name in spec.get("required", []) else "NULL"
            unique = " UNIQUE" if field_name in spec.get("unique", []) else ""
            columns.append(f'    "{field_name}" {sql_type} {nullable}{unique}')
        columns.append(f'    PRIMARY KEY ("{pk}")')
        ddl = f'CREATE TABLE IF NOT EXISTS "{table_name}" (\n' + ",\n".join(columns) + "\n);\n"
        lines.append(ddl)
        for index_columns in spec.get("indexes", []):
            index_name = f"idx_{table_name}_{'_'.join(index_columns)}"
            cols = ", ".join(f'"{c}"' for c in index_columns)
            lines.append(
                f'CREATE INDEX IF NOT EXISTS "{index_name}" ON "{table_name}" ({cols});\n'
            )
    return "\n".join(lines)


def render_seed_sql(domains: Iterable[str] = DEFAULT_BLOCKED_EMAIL_DOMAINS) -> str:
    table = BlockedEmailDomain.collection_name
    values = ",\n".join(f"    ('{d}', '{d}', 'disposable')" for d in domains)
    return (
        f'INSERT INTO "{table}" ("id", "domain", "reason") VALUES\n'
        f"{values}\nON CONFLICT (\"domain\") DO NOTHING;\n"
    )


def render_nosql_schema(schema: Dict[str, Any]) -> str:
    """
    JSON representation usable to configure validators and indexes
    for document databases like MongoDB.
    """
    return json.dumps(schema, indent=2, default=str)


def _map_logical_to_sql(logical_type: str, dialect: str) -> str:
    logical_type = logical_type.lower()
    if logical_type == "integer":
        return "INTEGER"
    if logical_type == "number":
        return "DOUBLE PRECISION"
    if logical_type == "boolean":
        return "BOOLEAN"
    if logical_type == "string":
        return "TEXT"
    if logical_type in {"datetime", "date"}:
        return "TIMESTAMPTZ" if dialect == "postgres" else "TIMESTAMP"
    if logical_type == "object":
        return "JSONB" if dialect == "postgres" else "TEXT"
    return "TEXT"


def main(argv: List[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Generate DB schemas for the Termyx gating services."
    )
    parser.add_argument(
        "--backend",
        choices=["sql", "nosql"],
        required=True,
        help="Type of schema to generate.",
    )
    parser.add_argument(
        "--dialect",
        default="postgres",
        help="SQL dialect hint (e.g. postgres, mysql).",
    )
    parser.add_argument(
        "--no-seed",
        action="store_true",
        help="Skip the blocked email domain INSERTs (sql only).",
    )
    args = parser.parse_args(argv)

    schema = generate_logical_schema()

    if args.backend == "sql":
        print(render_sql_ddl(schema, dialect=args.dialect))
        if not args.no_seed:
            print(render_seed_sql())
    else:
        print(render_nosql_schema(schema))


if __name__ == "__main__":
    main()
