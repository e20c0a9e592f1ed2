"""DDL for the repository tables.

Every statement is idempotent, so ``dcompare init`` also upgrades a
repository created by an older release (the ``ALTER ... ADD COLUMN IF
NOT EXISTS`` statements).
"""

TABLES = ("dc_table", "dc_table_history", "dc_result", "dc_source", "dc_target")

_FINDINGS_TABLE = """
    CREATE UNLOGGED TABLE IF NOT EXISTS {name} (
        tid bigint,
        table_name varchar(128),
        thread_nbr int,
        pk_hash varchar(100),
        column_hash varchar(100),
        pk jsonb,
        compare_result bpchar(1),
        batch_nbr int
    )
"""

DDL = [
    """
    CREATE TABLE IF NOT EXISTS dc_table (
        tid bigserial PRIMARY KEY,
        source_schema varchar(128) NOT NULL,
        source_table varchar(128) NOT NULL,
        target_schema varchar(128) NOT NULL,
        target_table varchar(128) NOT NULL,
        table_filter varchar(2000),
        parallel_degree int NOT NULL DEFAULT 1,
        status varchar(10) NOT NULL DEFAULT 'ready',
        batch_nbr int NOT NULL DEFAULT 1,
        mod_column varchar(128),
        column_map jsonb,
        CONSTRAINT dc_table_status_chk
            CHECK (status IN ('ready', 'running', 'complete', 'error')),
        CONSTRAINT dc_table_parallel_chk CHECK (parallel_degree >= 1)
    )
    """,
    # a table pair is registered once
    """
    CREATE UNIQUE INDEX IF NOT EXISTS dc_table_pair_uq
        ON dc_table (source_schema, source_table, target_schema, target_table)
    """,
    """
    CREATE TABLE IF NOT EXISTS dc_table_history (
        tid bigint NOT NULL,
        action_type varchar(40) NOT NULL,
        start_dt timestamptz NOT NULL,
        end_dt timestamptz,
        load_id varchar(100),
        batch_nbr int NOT NULL,
        row_count bigint,
        action_result jsonb
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS dc_table_history_idx1
        ON dc_table_history (tid, action_type, load_id, batch_nbr)
    """,
    """
    CREATE TABLE IF NOT EXISTS dc_result (
        cid serial PRIMARY KEY,
        rid numeric,
        compare_dt timestamptz,
        table_name varchar(128),
        equal_cnt bigint NOT NULL DEFAULT 0,
        missing_source_cnt bigint NOT NULL DEFAULT 0,
        missing_target_cnt bigint NOT NULL DEFAULT 0,
        not_equal_cnt bigint NOT NULL DEFAULT 0,
        source_cnt bigint NOT NULL DEFAULT 0,
        target_cnt bigint NOT NULL DEFAULT 0,
        status varchar(10),
        tid bigint
    )
    """,
    "ALTER TABLE dc_result ADD COLUMN IF NOT EXISTS tid bigint",
    """
    CREATE INDEX IF NOT EXISTS dc_result_idx1 ON dc_result (table_name, compare_dt)
    """,
    _FINDINGS_TABLE.format(name="dc_source"),
    "ALTER TABLE dc_source ADD COLUMN IF NOT EXISTS tid bigint",
    """
    CREATE INDEX IF NOT EXISTS dc_source_idx2 ON dc_source (tid, batch_nbr, pk_hash)
    """,
    _FINDINGS_TABLE.format(name="dc_target"),
    "ALTER TABLE dc_target ADD COLUMN IF NOT EXISTS tid bigint",
    """
    CREATE INDEX IF NOT EXISTS dc_target_idx2 ON dc_target (tid, batch_nbr, pk_hash)
    """,
]
