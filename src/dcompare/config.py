"""
Engine configuration.

Configuration is built once at process start (environment, then CLI
overrides) and passed to every component; nothing reads settings from
global state afterwards.

Environment variables:
    DC_STAGE_TABLE_PARALLEL, DC_BATCH_FETCH_SIZE, DC_BATCH_COMMIT_SIZE,
    DC_FLOAT_SCALE, DC_TABLE_WORKERS
    DC_<ROLE>_TYPE, DC_<ROLE>_HOST, DC_<ROLE>_PORT, DC_<ROLE>_DBNAME,
    DC_<ROLE>_USER, DC_<ROLE>_PASSWORD, DC_<ROLE>_CONNECTION_STRING,
    DC_<ROLE>_POOL_MIN, DC_<ROLE>_POOL_MAX
    where ROLE is REPO, SOURCE or TARGET.
"""

import dataclasses
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from dcutils.database_types import DatabaseType

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ROLES = ("repo", "source", "target")

_DEFAULT_PORTS = {
    DatabaseType.POSTGRESQL: 5432,
    DatabaseType.SQLSERVER: 1433,
}


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for one database (repository, source or target)."""

    db_type: DatabaseType = DatabaseType.POSTGRESQL
    host: str = "localhost"
    port: int = 5432
    database: str = "postgres"
    user: str = "postgres"
    password: str | None = None
    connection_string: str | None = None
    min_pool_size: int = 1
    max_pool_size: int = 10

    def __repr__(self) -> str:
        return (
            f"DatabaseConfig(db_type={self.db_type.value!r}, host={self.host!r}, "
            f"port={self.port}, database={self.database!r}, user={self.user!r})"
        )

    @classmethod
    def from_env(
        cls, role: str, environ: Mapping[str, str] | None = None
    ) -> "DatabaseConfig":
        """Read ``DC_<ROLE>_*`` variables for one database role."""
        env = os.environ if environ is None else environ
        prefix = f"DC_{role.upper()}_"

        try:
            db_type = DatabaseType.parse(env.get(prefix + "TYPE", "postgresql"))
        except ValueError as e:
            raise ConfigurationError(f"{prefix}TYPE: {e}") from e

        config = cls(
            db_type=db_type,
            host=env.get(prefix + "HOST", "localhost"),
            port=_int_option(
                prefix + "PORT", env.get(prefix + "PORT", _DEFAULT_PORTS[db_type]), 1
            ),
            database=env.get(prefix + "DBNAME", "postgres"),
            user=env.get(prefix + "USER", "postgres"),
            password=env.get(prefix + "PASSWORD"),
            connection_string=env.get(prefix + "CONNECTION_STRING"),
            min_pool_size=_int_option(prefix + "POOL_MIN", env.get(prefix + "POOL_MIN", 1), 0),
            max_pool_size=_int_option(prefix + "POOL_MAX", env.get(prefix + "POOL_MAX", 10), 1),
        )
        config.validate(role)
        return config

    def validate(self, role: str) -> None:
        if self.min_pool_size > self.max_pool_size:
            raise ConfigurationError(
                f"{role}: pool minimum {self.min_pool_size} exceeds maximum {self.max_pool_size}"
            )
        if role == "repo" and self.db_type != DatabaseType.POSTGRESQL:
            raise ConfigurationError("The repository database must be PostgreSQL")


@dataclass(frozen=True)
class EngineConfig:
    """
    Settings shared by all engine components.

    Attributes:
        stage_table_parallel: ``parallel_workers`` storage parameter on
            staging tables (0 disables parallel scans of them)
        batch_fetch_size: Rows fetched per round trip from source/target
        batch_commit_size: Staging rows written per insert and commit
        float_scale: Decimal places binary floats are rounded to before hashing
        table_workers: Tables reconciled concurrently
    """

    repository: DatabaseConfig = dataclasses.field(default_factory=DatabaseConfig)
    source: DatabaseConfig = dataclasses.field(default_factory=DatabaseConfig)
    target: DatabaseConfig = dataclasses.field(default_factory=DatabaseConfig)
    stage_table_parallel: int = 0
    batch_fetch_size: int = 2000
    batch_commit_size: int = 2000
    float_scale: int = 10
    table_workers: int = 1

    # option name -> (field, minimum)
    OPTIONS = {
        "stage-table-parallel": ("stage_table_parallel", 0),
        "batch-fetch-size": ("batch_fetch_size", 1),
        "batch-commit-size": ("batch_commit_size", 1),
        "float-scale": ("float_scale", 0),
        "table-workers": ("table_workers", 1),
    }

    def __post_init__(self):
        for option, (name, minimum) in self.OPTIONS.items():
            _int_option(option, getattr(self, name), minimum)

    @classmethod
    def from_options(
        cls, options: Mapping[str, Any], **databases: DatabaseConfig
    ) -> "EngineConfig":
        """
        Build from hyphenated option names, e.g. ``{"stage-table-parallel": 4}``.

        Unknown option names raise ConfigurationError; database settings
        are passed as ``repository=``, ``source=`` and ``target=``.
        """
        values: dict[str, Any] = {}
        for option, value in options.items():
            if value is None:
                continue
            if option not in cls.OPTIONS:
                raise ConfigurationError(f"Unknown option: {option}")
            name, minimum = cls.OPTIONS[option]
            values[name] = _int_option(option, value, minimum)
        return cls(**values, **databases)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        env = os.environ if environ is None else environ

        options = {}
        for option in cls.OPTIONS:
            key = "DC_" + option.replace("-", "_").upper()
            if key in env:
                options[option] = env[key]

        config = cls.from_options(
            options,
            repository=DatabaseConfig.from_env("repo", env),
            source=DatabaseConfig.from_env("source", env),
            target=DatabaseConfig.from_env("target", env),
        )
        logger.debug(f"Loaded engine configuration: {config}")
        return config

    def with_options(self, options: Mapping[str, Any]) -> "EngineConfig":
        """Return a copy with the given hyphenated options overridden."""
        overrides = EngineConfig.from_options(options)
        changed = {
            name: getattr(overrides, name)
            for option, (name, _) in self.OPTIONS.items()
            if options.get(option) is not None
        }
        return dataclasses.replace(self, **changed)


def _int_option(name: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e
    if number < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {number}")
    return number
