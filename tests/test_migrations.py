from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import inspect

from app.core.database import build_engine

VERSIONS = Path(__file__).resolve().parent.parent / "alembic" / "versions"


def load_revision(name: str):
    spec = importlib.util.spec_from_file_location(name, VERSIONS / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


REVISIONS = [load_revision("0001_realtime_schema"), load_revision("0002_channel_members")]


@pytest.fixture
def migrated(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'migrated.db'}")
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            for revision in REVISIONS:
                revision.upgrade()
    yield engine
    engine.dispose()


def unique_columns(engine, table: str) -> set:
    return {tuple(c["column_names"]) for c in inspect(engine).get_unique_constraints(table)}


def test_revisions_chain():
    assert REVISIONS[0].down_revision is None
    assert REVISIONS[1].down_revision == REVISIONS[0].revision


def test_profiles_username_unique(migrated):
    assert ("username",) in unique_columns(migrated, "profiles")
    indexes = {i["name"]: i for i in inspect(migrated).get_indexes("profiles")}
    assert indexes["ix_profiles_user_id"]["unique"]


def test_channel_members_table(migrated):
    columns = {c["name"] for c in inspect(migrated).get_columns("channel_members")}
    assert columns == {"id", "channel_id", "user_id", "role", "joined_at"}
    assert ("channel_id", "user_id") in unique_columns(migrated, "channel_members")


def test_downgrade_drops_everything(migrated):
    with migrated.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            for revision in reversed(REVISIONS):
                revision.downgrade()
    assert inspect(migrated).get_table_names() == []
