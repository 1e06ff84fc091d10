from __future__ import annotations

import json

from termyx.models.user import UserAccount
from termyx.schema_generator import (
    generate_logical_schema,
    main,
    render_nosql_schema,
    render_seed_sql,
    render_sql_ddl,
)


def test_logical_schema_covers_all_collections():
    schema = generate_logical_schema()

    assert set(schema) == {
        "plans",
        "users",
        "credit_transactions",
        "device_fingerprints",
        "ip_signup_tracking",
        "blocked_email_domains",
        "audit_logs",
    }
    assert schema["blocked_email_domains"]["unique"] == ["domain"]
    assert ["fingerprint_hash"] in schema["device_fingerprints"]["indexes"]


def test_user_schema_types():
    props = UserAccount.db_schema()["properties"]

    assert props["credits"]["type"] == "integer"
    assert props["credits"]["default"] == 0
    assert props["free_trial_used"]["type"] == "boolean"
    assert props["plan_id"]["type"] == "string"
    assert props["created_at"]["type"] == "datetime"


def test_sql_ddl():
    ddl = render_sql_ddl(generate_logical_schema())

    assert 'CREATE TABLE IF NOT EXISTS "users"' in ddl
    assert '"created_at" TIMESTAMPTZ' in ddl
    assert '"payload" JSONB' in ddl
    assert '"domain" TEXT NOT NULL UNIQUE' in ddl
    assert 'CREATE INDEX IF NOT EXISTS "idx_ip_signup_tracking_ip_address"' in ddl


def test_seed_sql_is_idempotent_insert():
    sql = render_seed_sql(["mailinator.com"])

    assert "('mailinator.com', 'mailinator.com', 'disposable')" in sql
    assert 'ON CONFLICT ("domain") DO NOTHING' in sql


def test_nosql_schema_is_json():
    parsed = json.loads(render_nosql_schema(generate_logical_schema()))

    assert parsed["users"]["primary_key"] == "id"


def test_cli(capsys):
    main(["--backend", "sql", "--no-seed"])
    out = capsys.readouterr().out
    assert "CREATE TABLE" in out
    assert "INSERT INTO" not in out

    main(["--backend", "sql"])
    assert "mailinator.com" in capsys.readouterr().out
