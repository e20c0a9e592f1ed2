"""
Unit tests for engine and database configuration.
"""

import pytest

from dcompare.config import DatabaseConfig, EngineConfig
from dcompare.errors import ConfigurationError
from dcutils.database_types import DatabaseType


class TestDatabaseConfig:
    """Test DC_<ROLE>_* environment parsing"""

    def test_defaults(self):
        config = DatabaseConfig.from_env("source", {})
        assert config.db_type == DatabaseType.POSTGRESQL
        assert config.port == 5432
        assert config.host == "localhost"

    def test_sqlserver_default_port(self):
        config = DatabaseConfig.from_env("target", {"DC_TARGET_TYPE": "mssql"})
        assert config.db_type == DatabaseType.SQLSERVER
        assert config.port == 1433

    def test_all_fields(self):
        env = {
            "DC_SOURCE_TYPE": "sqlserver",
            "DC_SOURCE_HOST": "mssql.internal",
            "DC_SOURCE_PORT": "14330",
            "DC_SOURCE_DBNAME": "sales",
            "DC_SOURCE_USER": "reader",
            "DC_SOURCE_PASSWORD": "secret",
            "DC_SOURCE_POOL_MIN": "2",
            "DC_SOURCE_POOL_MAX": "8",
        }
        config = DatabaseConfig.from_env("source", env)
        assert config.host == "mssql.internal"
        assert config.port == 14330
        assert config.database == "sales"
        assert config.user == "reader"
        assert config.password == "secret"
        assert (config.min_pool_size, config.max_pool_size) == (2, 8)

    def test_repr_hides_password(self):
        config = DatabaseConfig.from_env("repo", {"DC_REPO_PASSWORD": "hunter2"})
        assert "hunter2" not in repr(config)

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="DC_SOURCE_TYPE"):
            DatabaseConfig.from_env("source", {"DC_SOURCE_TYPE": "oracle"})

    def test_bad_port(self):
        with pytest.raises(ConfigurationError, match="DC_REPO_PORT"):
            DatabaseConfig.from_env("repo", {"DC_REPO_PORT": "abc"})

    def test_pool_min_above_max(self):
        with pytest.raises(ConfigurationError, match="pool minimum"):
            DatabaseConfig.from_env("source", {"DC_SOURCE_POOL_MIN": "5", "DC_SOURCE_POOL_MAX": "2"})

    def test_repository_must_be_postgres(self):
        with pytest.raises(ConfigurationError, match="PostgreSQL"):
            DatabaseConfig.from_env("repo", {"DC_REPO_TYPE": "sqlserver"})


class TestEngineConfig:
    """Test engine options"""

    def test_defaults(self):
        config = EngineConfig()
        assert config.stage_table_parallel == 0
        assert config.batch_fetch_size == 2000
        assert config.batch_commit_size == 2000
        assert config.float_scale == 10
        assert config.table_workers == 1

    def test_from_options(self):
        config = EngineConfig.from_options(
            {"stage-table-parallel": "4", "batch-fetch-size": 500, "table-workers": None}
        )
        assert config.stage_table_parallel == 4
        assert config.batch_fetch_size == 500
        assert config.table_workers == 1

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError, match="Unknown option"):
            EngineConfig.from_options({"loader-threads": 4})

    @pytest.mark.parametrize(
        "option,value",
        [
            ("batch-fetch-size", 0),
            ("batch-commit-size", -1),
            ("table-workers", 0),
            ("stage-table-parallel", -1),
            ("float-scale", "ten"),
            ("table-workers", True),
        ],
    )
    def test_invalid_values(self, option, value):
        with pytest.raises(ConfigurationError):
            EngineConfig.from_options({option: value})

    def test_direct_construction_validated(self):
        with pytest.raises(ConfigurationError):
            EngineConfig(table_workers=0)

    def test_frozen(self):
        config = EngineConfig()
        with pytest.raises(AttributeError):
            config.table_workers = 5

    def test_from_env(self):
        env = {
            "DC_TABLE_WORKERS": "3",
            "DC_FLOAT_SCALE": "6",
            "DC_SOURCE_TYPE": "sqlserver",
        }
        config = EngineConfig.from_env(env)
        assert config.table_workers == 3
        assert config.float_scale == 6
        assert config.source.db_type == DatabaseType.SQLSERVER
        assert config.repository.db_type == DatabaseType.POSTGRESQL

    def test_with_options_overrides_only_given(self):
        base = EngineConfig.from_options({"batch-fetch-size": 100, "table-workers": 2})

        config = base.with_options({"table-workers": 6, "batch-fetch-size": None})

        assert config.table_workers == 6
        assert config.batch_fetch_size == 100
        assert base.table_workers == 2
