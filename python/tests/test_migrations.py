"""Tests for database migrations.

Runs the Alembic chain against a throwaway SQLite file and checks that the
migrated schema matches the ORM metadata the application uses.
"""

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

from polychat.config import clear_settings_cache
from polychat.db.models import Base

SCRIPT_LOCATION = Path(__file__).resolve().parents[2] / "migrations" / "alembic"


@pytest.fixture
def migration_db(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'migrations.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    clear_settings_cache()

    config = Config()
    config.set_main_option("script_location", str(SCRIPT_LOCATION))

    engine = create_engine(url)
    yield config, engine
    engine.dispose()


class TestMigrations:
    def test_upgrade_matches_orm_metadata(self, migration_db):
        config, engine = migration_db

        command.upgrade(config, "head")

        inspector = inspect(engine)
        tables = set(inspector.get_table_names()) - {"alembic_version"}
        assert tables == set(Base.metadata.tables)
        for name, table in Base.metadata.tables.items():
            migrated = {column["name"] for column in inspector.get_columns(name)}
            assert migrated == set(table.columns.keys()), name

    def test_check_constraints_are_applied(self, migration_db):
        config, engine = migration_db
        command.upgrade(config, "head")

        with pytest.raises(IntegrityError), engine.begin() as conn:
            conn.execute(
                text(
                    "INSERT INTO models (id, key, display_name, provider, max_context_tokens,"
                    " created_at) VALUES ('m1', 'x/y', 'X', 'mistral', 1000, '2026-01-01')"
                )
            )

    def test_downgrade_to_base(self, migration_db):
        config, engine = migration_db
        command.upgrade(config, "head")

        command.downgrade(config, "base")

        assert set(inspect(engine).get_table_names()) <= {"alembic_version"}
