"""
Integration tests against a live PostgreSQL-compatible database.

Skipped unless PQSFUZZ_TEST_DSN holds a libpq connection string, e.g.

    PQSFUZZ_TEST_DSN="host=localhost port=5433 dbname=yugabyte user=yugabyte" pytest tests/test_integration.py
"""

import os
import random
import threading

import pytest

from config import PQSFuzzConfig
from core.bootstrap import BootstrapController
from core.engine import PivotFuzzer
from core.errors import OracleMismatchDetected
from core.generator import StatementGenerator
from core.pivot import PivotSelector, TableColumn
from core.schema import SchemaSnapshot
from oracles import PQSOracle
from utils.db_executor import DBExecutor, QueryCell

TEST_DSN = os.environ.get("PQSFUZZ_TEST_DSN")
TEST_SCHEMA = os.environ.get("PQSFUZZ_TEST_SCHEMA", "pqsfuzz_test")

pytestmark = pytest.mark.skipif(not TEST_DSN, reason="PQSFUZZ_TEST_DSN is not set")


@pytest.fixture
def executor():
    executor = DBExecutor(TEST_DSN)
    yield executor
    executor.execute(f'DROP SCHEMA IF EXISTS "{TEST_SCHEMA}" CASCADE')
    executor.close()


@pytest.fixture
def bootstrap(executor):
    rng = random.Random(0)
    return BootstrapController(executor, StatementGenerator(executor, TEST_SCHEMA, rng), rng)


class TestLiveDatabase:

    def test_reset_twice_leaves_an_empty_schema(self, executor, bootstrap):
        bootstrap.reset(TEST_SCHEMA)
        executor.execute("CREATE TABLE t (a INTEGER)")
        bootstrap.reset(TEST_SCHEMA)
        bootstrap.reset(TEST_SCHEMA)

        assert executor.list_tables(TEST_SCHEMA) == []

    def test_pivot_row_found_and_missing(self, executor, bootstrap):
        bootstrap.reset(TEST_SCHEMA)
        executor.execute("CREATE TABLE t (a INTEGER, b VARCHAR(10))")
        executor.execute("INSERT INTO t VALUES (1, 'x')")

        tables = SchemaSnapshot(executor).refresh(TEST_SCHEMA)
        pivot, used = PivotSelector(executor, random.Random(0)).choose_pivot(tables)

        assert [t.name for t in used] == ["t"]
        assert pivot[TableColumn("t", "a")] == QueryCell.from_value(1, "int4")
        assert pivot[TableColumn("t", "b")] == QueryCell.from_value("x", "varchar")

        columns = [TableColumn("t", "a"), TableColumn("t", "b")]
        oracle = PQSOracle(executor)
        assert oracle.check("SELECT a, b FROM t WHERE a = 1", pivot, columns)
        with pytest.raises(OracleMismatchDetected):
            oracle.check("SELECT a, b FROM t WHERE a = 2", pivot, columns)

    def test_prepared_statement_round(self, executor, bootstrap):
        bootstrap.reset(TEST_SCHEMA)
        executor.execute("CREATE TABLE t (a INTEGER)")
        executor.execute("INSERT INTO t VALUES (NULL)")

        rows = executor.select("SELECT a FROM t WHERE a IS NULL", prepared=True)
        rows_again = executor.select("SELECT a FROM t WHERE a IS NULL", prepared=True)

        assert rows == rows_again == [[QueryCell.from_value(None, "int4")]]

    def test_fuzzing_session(self):
        config = PQSFuzzConfig(random_seed=1)
        config.database.schema_name = TEST_SCHEMA
        config.fuzzing.max_iterations = 50
        config.pivot.max_create_tables = 3

        fuzzer = PivotFuzzer(TEST_DSN, TEST_SCHEMA, config)
        try:
            fuzzer.start(threading.Event())
            failure = fuzzer.wait(timeout=300)
        finally:
            fuzzer.close()

        assert failure is None
        assert fuzzer.stats.iterations == 50
