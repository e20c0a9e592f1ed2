"""
Integration tests for a full reconciliation against a live PostgreSQL.

The repository, source and target all live in one scratch database:
source and target tables go in two throwaway schemas, the repository
tables in the default schema. Point the ``DC_TEST_PG_*`` variables
(HOST, PORT, DBNAME, USER, PASSWORD) at it; without DC_TEST_PG_HOST
every test here is skipped.
"""

import os
import random
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from dcompare.config import DatabaseConfig, EngineConfig
from dcompare.discovery import CatalogReader, Discovery
from dcompare.models import Fingerprint, Side, TableStatus
from dcompare.orchestrator import STATUS_COMPLETE, Orchestrator
from dcompare.repository import Database, Repository
from dcompare.staging import StagingStore
from dcutils.database_types import DatabaseType
from dcutils.db_pool import create_pool

pytestmark = pytest.mark.integration

_REPOSITORY_TABLES = ("dc_table_history", "dc_result", "dc_source", "dc_target", "dc_table")


@pytest.fixture(scope="module")
def engine_config():
    if not os.getenv("DC_TEST_PG_HOST"):
        pytest.skip("DC_TEST_PG_HOST is not set")
    database = DatabaseConfig.from_env("test_pg")
    return EngineConfig(
        repository=database,
        source=database,
        target=database,
        batch_fetch_size=40,
        batch_commit_size=25,
        table_workers=2,
    )


@pytest.fixture(scope="module")
def repo(engine_config):
    repository = Repository(
        Database(create_pool(engine_config.repository, "integration")), engine_config
    )
    repository.create_schema()
    yield repository
    repository.db.close()


@pytest.fixture
def schemas(repo):
    """A fresh source and target schema; both are dropped afterwards."""
    suffix = uuid.uuid4().hex[:8]
    source, target = f"dc_it_src_{suffix}", f"dc_it_tgt_{suffix}"
    for schema in (source, target):
        repo.db.execute(f"CREATE SCHEMA {schema}")

    yield source, target

    tids = [
        row[0]
        for row in repo.db.execute_query(
            "SELECT tid FROM dc_table WHERE source_schema = %s", [source]
        )
    ]
    for table in _REPOSITORY_TABLES if tids else ():
        repo.db.execute(f"DELETE FROM {table} WHERE tid = ANY(%s)", [tids])
    for schema in (source, target):
        repo.db.execute(f"DROP SCHEMA {schema} CASCADE")


@pytest.fixture
def batch_nbr():
    return random.randint(100_000, 999_999)


@pytest.fixture
def orchestrator(engine_config):
    orchestrator = Orchestrator.from_config(engine_config)
    yield orchestrator
    orchestrator.close()


def _create_table(repo, schema, name, rows, key_type="integer"):
    with repo.db.session() as session:
        session.execute(
            f"CREATE TABLE {schema}.{name} (id {key_type} PRIMARY KEY, val text)"
        )
        if rows:
            session.execute_values(f"INSERT INTO {schema}.{name} (id, val) VALUES %s", rows)
        session.commit()


def _register(repo, schemas, batch_nbr, parallel_degree=1):
    source, target = schemas
    catalog_pool = create_pool(repo.config.source, "integration-catalog")
    try:
        catalog = CatalogReader(catalog_pool, DatabaseType.POSTGRESQL)
        discovery = Discovery(repo, catalog, catalog)
        registered = discovery.register_schema(
            source, target, batch_nbr=batch_nbr, parallel_degree=parallel_degree
        )
        again = discovery.register_schema(
            source, target, batch_nbr=batch_nbr, parallel_degree=parallel_degree
        )
    finally:
        catalog_pool.close()
    assert again == []
    return dict(registered)


def _findings_pk_hashes(repo, tid, batch_nbr):
    rows = repo.db.execute_query(
        "SELECT count(DISTINCT pk_hash) FROM ("
        " SELECT pk_hash FROM dc_source WHERE tid = %s AND batch_nbr = %s"
        " UNION ALL"
        " SELECT pk_hash FROM dc_target WHERE tid = %s AND batch_nbr = %s) f",
        [tid, batch_nbr, tid, batch_nbr],
    )
    return rows[0][0]


class TestScenarios:
    """Classification through the real repository SQL"""

    def test_classification_scenarios(self, repo, schemas, batch_nbr, orchestrator):
        source, target = schemas
        _create_table(repo, source, "pairs", [(1, "a"), (2, "b")])
        _create_table(repo, target, "pairs", [(1, "a"), (3, "c")])
        _create_table(repo, source, "changed", [(1, "a")])
        _create_table(repo, target, "changed", [(1, "z")])
        _create_table(repo, source, "emptied", [])
        _create_table(repo, target, "emptied", [(9, "x")])
        tids = _register(repo, schemas, batch_nbr, parallel_degree=2)

        outcome = orchestrator.run_batch(batch_nbr=batch_nbr)

        results = {t.table: t.result for t in outcome.tables}
        assert all(t.status == STATUS_COMPLETE for t in outcome.tables)
        counts = {
            name: (r.equal_cnt, r.not_equal_cnt, r.missing_source_cnt, r.missing_target_cnt)
            for name, r in results.items()
        }
        assert counts == {
            "pairs": (1, 0, 1, 1),
            "changed": (0, 1, 0, 0),
            "emptied": (0, 0, 1, 0),
        }
        for tid in tids.values():
            assert repo.get_table(tid).status == TableStatus.COMPLETE
            assert [h.action_type for h in repo.get_history(tid) if h.is_open] == []


class TestProperties:
    """Counting and staging guarantees against PostgreSQL"""

    def test_counts_conserved_and_partitions_complete(
        self, repo, schemas, batch_nbr, orchestrator
    ):
        source, target = schemas
        source_rows = [(f"C{i:04d}", f"v{i}") for i in range(300)]
        target_rows = [
            (code, "changed" if i % 37 == 1 else val)
            for i, (code, val) in enumerate(source_rows)
            if i % 50
        ] + [(f"C9{i:03d}", "extra") for i in range(5)]
        _create_table(repo, source, "codes", source_rows, key_type="varchar(20)")
        _create_table(repo, target, "codes", target_rows, key_type="varchar(20)")
        _create_table(repo, source, "numbers", [(i, "n") for i in range(-50, 150)])
        _create_table(repo, target, "numbers", [(i, "n") for i in range(-40, 150)])
        tids = _register(repo, schemas, batch_nbr, parallel_degree=3)

        outcome = orchestrator.run_batch(batch_nbr=batch_nbr)

        for table in outcome.tables:
            tid = tids[table.table]
            result = table.result
            assert table.status == STATUS_COMPLETE
            assert result.source_cnt == repo.count_findings(Side.SOURCE, tid, batch_nbr)
            assert result.target_cnt == repo.count_findings(Side.TARGET, tid, batch_nbr)
            assert result.counts.total == _findings_pk_hashes(repo, tid, batch_nbr)

        by_table = {t.table: t.result for t in outcome.tables}
        codes = by_table["codes"]
        assert (codes.source_cnt, codes.target_cnt) == (300, 299)
        assert codes.missing_target_cnt == 6
        assert codes.missing_source_cnt == 5
        assert codes.not_equal_cnt == len([i for i in range(300) if i % 37 == 1 and i % 50])
        numbers = by_table["numbers"]
        assert (numbers.equal_cnt, numbers.missing_target_cnt) == (190, 10)

    def test_concurrent_count_increments(self, repo, schemas):
        source, target = schemas
        tid = repo.save_table(source, "counted", target, "counted")
        cid = repo.create_result(tid, "counted", rid=1)
        increments = [(Side.SOURCE if n % 2 else Side.TARGET, n) for n in range(1, 41)]

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(lambda item: repo.increment_result_count(cid, *item), increments))

        result = repo.get_result(cid)
        assert result.source_cnt == sum(k for side, k in increments if side == Side.SOURCE)
        assert result.target_cnt == sum(k for side, k in increments if side == Side.TARGET)

    def test_staging_creation_is_idempotent(self, repo, schemas):
        source, target = schemas
        tid = repo.save_table(source, "staged", target, "staged")
        staging = StagingStore(repo, repo.config)
        try:
            name = staging.create(Side.SOURCE, tid, 1)
            staging.write(name, [Fingerprint("a" * 32, "b" * 32, {"id": 1})])

            assert staging.create(Side.SOURCE, tid, 1) == name
            assert repo.list_staging_tables().count(name) == 1
            assert repo.count_staging_rows(name) == 0
        finally:
            staging.cleanup_orphans(tid)
        assert name not in repo.list_staging_tables()
