"""Checks on the SQL emitted by the PostgreSQL row level security migration."""
import importlib.util
import re
from pathlib import Path

import pytest

MIGRATION = Path(__file__).resolve().parents[2] / "alembic" / "versions" / "0002_row_level_security.py"
TABLES = ("profiles", "vehicles", "mods", "images")


class RecordingOp:
    def __init__(self):
        self.statements = []

    def execute(self, sql):
        self.statements.append(" ".join(sql.split()))


@pytest.fixture
def migration():
    spec = importlib.util.spec_from_file_location("row_level_security_migration", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def upgrade_sql(migration, monkeypatch):
    op = RecordingOp()
    monkeypatch.setattr(migration, "op", op)
    migration.upgrade()
    return op.statements


def _statement(statements, prefix):
    return next(sql for sql in statements if sql.startswith(prefix))


def _reads(sql):
    return set(re.findall(r"\b(?:from|join) (\w+)", sql)) & set(TABLES)


def test_policies_never_reach_back_to_their_own_table(upgrade_sql):
    graph = {table: set() for table in TABLES}
    for sql in upgrade_sql:
        m = re.match(r"create policy \w+ on (\w+) .*? using (.*)", sql)
        if m:
            graph[m.group(1)] |= _reads(m.group(2))

    def reachable(start):
        seen, stack = set(), list(graph[start])
        while stack:
            table = stack.pop()
            if table not in seen:
                seen.add(table)
                stack.extend(graph[table])
        return seen

    assert graph["vehicles"] == {"profiles"}
    for table in TABLES:
        assert table not in reachable(table), table


def test_public_vehicles_view_reads_vehicles_once(upgrade_sql):
    view = _statement(upgrade_sql, "create or replace view public_vehicles")
    assert len(re.findall(r"\bfrom vehicles\b", view)) == 1


def test_path_functions_reject_traversal_before_ownership(upgrade_sql):
    clean = _statement(upgrade_sql, "create or replace function garage_object_path_is_clean")
    assert "position('//' in object_name) = 0" in clean
    assert "not ('..' = any(string_to_array(object_name, '/')))" in clean

    for name in ("garage_object_owner_can_write", "garage_object_is_public_readable"):
        body = _statement(upgrade_sql, f"create or replace function {name}")
        assert "garage_object_path_is_clean(object_name)" in body


def test_public_readable_compares_the_requested_bucket(migration, monkeypatch):
    monkeypatch.setattr(migration, "DEFAULT_BUCKET", "garage-media")
    op = RecordingOp()
    monkeypatch.setattr(migration, "op", op)
    migration.upgrade()

    body = _statement(op.statements, "create or replace function garage_object_is_public_readable")
    assert "bucket_name text default 'garage-media'" in body
    assert "pi.storage_bucket = bucket_name" in body
    assert "'mygarage'" not in body
