"""
Shared test fixtures for PQSFuzz tests.
"""

import random
from unittest.mock import MagicMock

import pytest

from utils.db_executor import Column, DBExecutor, Table


class MaxRandom(random.Random):
    """Random source whose ``randint`` always returns the upper bound."""

    def randint(self, a, b):
        return b


@pytest.fixture
def rng():
    """Deterministically seeded random source."""
    return random.Random(1234)


@pytest.fixture
def max_rng():
    return MaxRandom(1234)


@pytest.fixture
def mock_db_executor():
    """Executor double that never touches a database."""
    executor = MagicMock(spec=DBExecutor)
    executor.is_cancellation.return_value = False
    return executor


@pytest.fixture
def sample_tables():
    """Two tables covering every type family."""
    return [
        Table(name="t0", columns=[
            Column("c0", "integer"),
            Column("c1", "character varying(10)"),
            Column("c2", "boolean"),
        ]),
        Table(name="t1", columns=[
            Column("c0", "bigint", nullable=False),
            Column("c1", "text"),
        ]),
    ]
