"""
The alembic history builds the same schema as the ORM models and tears it down again.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from fieldcal.models.calendar import Base

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "fieldcal" / "migrations"


@pytest.fixture
def alembic_config(tmp_path):
    database_url = f"sqlite:///{tmp_path / 'migrations.db'}"
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", database_url)
    return config, database_url


def _columns(inspector, table_name: str) -> set[str]:
    return {column["name"] for column in inspector.get_columns(table_name)}


def test_upgrade_matches_models_and_downgrade_clears(alembic_config):
    config, database_url = alembic_config
    engine = create_engine(database_url)
    try:
        command.upgrade(config, "head")
        inspector = inspect(engine)
        assert set(inspector.get_table_names()) == set(Base.metadata.tables) | {"alembic_version"}
        for name, table in Base.metadata.tables.items():
            assert _columns(inspector, name) == {column.name for column in table.columns}, name
        assert {index["name"] for index in inspector.get_indexes("calendar_holds")} >= {
            "idx_holds_worker_status",
            "idx_holds_expires",
        }

        command.downgrade(config, "base")
        assert inspect(engine).get_table_names() == ["alembic_version"]
    finally:
        engine.dispose()
