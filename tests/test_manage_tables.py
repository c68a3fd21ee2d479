"""
Tests for the table administration script.
"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'scripts'))

import manage_tables
from shared.test_helpers import InMemoryDocumentStore


class TestParseArgs:
    """Test cases for argument parsing."""

    def test_create_table(self):
        args = manage_tables._parse_args(["create-table", "--table", "users", "--id-field", "account_id"])
        assert args.command == "create-table"
        assert args.table == "users"
        assert args.id_field == "account_id"

    def test_compound_index(self):
        args = manage_tables._parse_args(
            ["create-index", "--table", "users", "--name", "name_email", "--fields", "name", "email"]
        )
        assert args.name == "name_email"
        assert args.fields == ["name", "email"]

    def test_table_is_required(self):
        with pytest.raises(SystemExit):
            manage_tables._parse_args(["create-table"])

    def test_index_needs_a_field(self):
        with pytest.raises(SystemExit):
            manage_tables._parse_args(["create-index", "--table", "users"])

    def test_name_needs_fields(self):
        with pytest.raises(SystemExit):
            manage_tables._parse_args(["create-index", "--table", "users", "--name", "name_email"])


class TestRun:
    """Test cases for command execution."""

    @pytest.fixture
    def pool(self):
        return AsyncMock()

    @pytest.fixture
    def store(self):
        return InMemoryDocumentStore()

    @pytest.mark.asyncio
    async def test_create_table_and_indexes(self, pool, store):
        with patch.object(manage_tables, "open_pool", AsyncMock(return_value=pool)), \
                patch.object(manage_tables, "DocumentStore", return_value=store):
            created = await manage_tables.run(
                command="create-table", table="users", id_field="account_id", dsn="postgres://db/app"
            )
            simple = await manage_tables.run(
                command="create-index", table="users", id_field=None, dsn=None, field="email"
            )
            compound = await manage_tables.run(
                command="create-index", table="users", id_field=None, dsn=None,
                name="name_email", fields=["name", "email"],
            )

        assert created == {"command": "create-table", "table": "users"}
        assert store.primary_keys["users"] == "account_id"
        assert simple["index"] == "email"
        assert compound["fields"] == ["name", "email"]
        assert store.indexes["users"] == {"email": ["email"], "name_email": ["name", "email"]}
        assert pool.close.await_count == 3

    @pytest.mark.asyncio
    async def test_dsn_override(self, pool, store):
        opener = AsyncMock(return_value=pool)
        with patch.object(manage_tables, "open_pool", opener), \
                patch.object(manage_tables, "DocumentStore", return_value=store):
            await manage_tables.run(command="create-table", table="users", id_field=None, dsn="postgres://db/app")

        assert opener.await_args.args[0].postgres_dsn == "postgres://db/app"

    @pytest.mark.asyncio
    async def test_pool_closed_on_failure(self, pool, store):
        with patch.object(manage_tables, "open_pool", AsyncMock(return_value=pool)), \
                patch.object(manage_tables, "DocumentStore", return_value=store):
            with pytest.raises(LookupError):
                await manage_tables.run(command="drop-table", table="missing", id_field=None, dsn=None)

        pool.close.assert_awaited_once()


class TestMain:
    """Test cases for the entry point."""

    def test_success_writes_summary(self, tmp_path, capsys):
        output = tmp_path / "summary.json"
        summary = {"command": "create-table", "table": "users"}
        with patch.object(manage_tables, "configure_logging"), \
                patch.object(manage_tables, "run", AsyncMock(return_value=summary)):
            code = manage_tables.main(["create-table", "--table", "users", "--output", str(output)])

        assert code == 0
        assert json.loads(output.read_text()) == summary
        assert json.loads(capsys.readouterr().out) == summary

    def test_failure_returns_one(self, capsys):
        with patch.object(manage_tables, "configure_logging"), \
                patch.object(manage_tables, "run", AsyncMock(side_effect=RuntimeError("boom"))):
            code = manage_tables.main(["drop-table", "--table", "users"])

        assert code == 1
        assert "boom" in capsys.readouterr().err

    def test_interrupt_returns_130(self):
        with patch.object(manage_tables, "configure_logging"), \
                patch.object(manage_tables, "run", MagicMock(side_effect=KeyboardInterrupt)):
            assert manage_tables.main(["drop-table", "--table", "users"]) == 130
