"""Tests for database migrations."""

import importlib.util
import sys
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

ALEMBIC_INI = Path(__file__).parent.parent / "alembic.ini"
MIGRATION_PATH = Path(__file__).parent.parent / "alembic/versions/001_initial_schema.py"

EXPECTED_TABLES = {
    "transportation_modes",
    "routes",
    "stations",
    "route_stations",
    "users",
    "trips",
    "user_monthly_summaries",
    "route_analytics",
    "agg_run_log",
}


class TestMigrationScript:
    """Tests for migration script structure."""

    @pytest.fixture
    def migration_module(self) -> object:
        """Load the initial migration module."""
        spec = importlib.util.spec_from_file_location("migration_001", MIGRATION_PATH)
        assert spec is not None
        assert spec.loader is not None
        module = importlib.util.module_from_spec(spec)
        sys.modules["migration_001"] = module
        spec.loader.exec_module(module)
        return module

    def test_migration_has_revision_id(self, migration_module: object) -> None:
        assert migration_module.revision == "001"  # type: ignore[attr-defined]

    def test_migration_is_the_root(self, migration_module: object) -> None:
        assert migration_module.down_revision is None  # type: ignore[attr-defined]

    def test_migration_has_upgrade_and_downgrade(self, migration_module: object) -> None:
        assert callable(migration_module.upgrade)  # type: ignore[attr-defined]
        assert callable(migration_module.downgrade)  # type: ignore[attr-defined]


class TestMigrationUpgradeOperations:
    """Tests for verifying the upgrade creates correct structures."""

    @pytest.fixture
    def migration_source(self) -> str:
        return MIGRATION_PATH.read_text()

    @pytest.mark.parametrize("table", sorted(EXPECTED_TABLES))
    def test_creates_table(self, migration_source: str, table: str) -> None:
        assert f'op.create_table(\n        "{table}"' in migration_source

    def test_creates_fold_marker_columns(self, migration_source: str) -> None:
        assert '"folded_state"' in migration_source
        assert '"folded_at"' in migration_source

    def test_creates_summary_period_constraint(self, migration_source: str) -> None:
        assert "uq_user_monthly_summaries_period" in migration_source

    def test_downgrade_drops_every_table(self, migration_source: str) -> None:
        downgrade = migration_source.split("def downgrade()")[1]
        for table in EXPECTED_TABLES:
            assert f'op.drop_table("{table}")' in downgrade


class TestMigrationLifecycleSqlite:
    """Run the migration chain against a throwaway SQLite file."""

    @pytest.fixture
    def db_path(self, tmp_path: Path) -> Path:
        return tmp_path / "migrations.db"

    @pytest.fixture
    def alembic_config(self, db_path: Path) -> Config:
        config = Config(str(ALEMBIC_INI))
        config.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{db_path}")
        config.attributes["configure_logger"] = False
        return config

    def _inspect(self, db_path: Path) -> tuple[set[str], dict[str, set[str]]]:
        engine = create_engine(f"sqlite:///{db_path}")
        try:
            inspector = inspect(engine)
            tables = set(inspector.get_table_names())
            indexes = {
                table: {idx["name"] for idx in inspector.get_indexes(table)}
                for table in tables & EXPECTED_TABLES
            }
            return tables, indexes
        finally:
            engine.dispose()

    def test_upgrade_then_downgrade(self, alembic_config: Config, db_path: Path) -> None:
        command.upgrade(alembic_config, "head")

        tables, indexes = self._inspect(db_path)
        assert EXPECTED_TABLES <= tables
        assert {"ix_trips_user_date", "ix_trips_route_date"} <= indexes["trips"]
        assert "ix_agg_run_log_started_at" in indexes["agg_run_log"]

        command.downgrade(alembic_config, "base")

        tables, _ = self._inspect(db_path)
        assert EXPECTED_TABLES.isdisjoint(tables)

    def test_upgrade_is_repeatable(self, alembic_config: Config, db_path: Path) -> None:
        command.upgrade(alembic_config, "head")
        command.downgrade(alembic_config, "base")
        command.upgrade(alembic_config, "head")

        tables, _ = self._inspect(db_path)
        assert EXPECTED_TABLES <= tables
