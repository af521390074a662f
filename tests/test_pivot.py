"""
Tests for pivot row selection.
"""

import random
import re

import pytest

from core.errors import ExecutionError, PivotSelectionError
from core.pivot import PivotSelector, TableColumn, quote_ident
from utils.db_executor import Column, QueryCell, Table


def make_table(name, *columns):
    return Table(name=name, columns=[Column(c, "integer") for c in columns])


def fake_rows(empty=()):
    """A ``select_with_columns`` stand-in returning one row per table, none for ``empty``."""
    def select_with_columns(sql, prepared=False):
        table = re.search(r'FROM "([^"]+)"', sql).group(1)
        if table in empty:
            return [], []
        return ["a", "b"], [[QueryCell.from_value(1, "int4"), QueryCell.from_value(table, "text")]]
    return select_with_columns


class TestQuoteIdent:

    def test_plain_name(self):
        assert quote_ident("t0") == '"t0"'

    def test_embedded_quote_is_doubled(self):
        assert quote_ident('we"ird') == '"we""ird"'


class TestChoosePivot:
    """Tests for PivotSelector.choose_pivot."""

    def test_no_tables_raises(self, mock_db_executor, rng):
        selector = PivotSelector(mock_db_executor, rng)
        with pytest.raises(PivotSelectionError):
            selector.choose_pivot([])

    def test_used_table_count_within_bounds(self, mock_db_executor):
        mock_db_executor.select_with_columns.side_effect = fake_rows()
        for size in range(1, 6):
            for seed in range(50):
                tables = [make_table(f"t{i}", "a", "b") for i in range(size)]
                selector = PivotSelector(mock_db_executor, random.Random(seed))
                _, used = selector.choose_pivot(tables)
                assert 1 <= len(used) <= size

    def test_keys_cover_every_column_of_used_tables(self, mock_db_executor, max_rng):
        mock_db_executor.select_with_columns.side_effect = fake_rows()
        tables = [make_table("t0", "a", "b"), make_table("t1", "a", "b")]

        pivot, used = PivotSelector(mock_db_executor, max_rng).choose_pivot(tables)

        expected = {TableColumn(t.name, c) for t in used for c in ("a", "b")}
        assert set(pivot) == expected
        assert pivot[TableColumn("t1", "b")] == QueryCell.from_value("t1", "text")

    def test_empty_tables_are_excluded(self, mock_db_executor, max_rng):
        mock_db_executor.select_with_columns.side_effect = fake_rows(empty=("t1",))
        tables = [make_table("t0", "a", "b"), make_table("t1", "a", "b")]

        pivot, used = PivotSelector(mock_db_executor, max_rng).choose_pivot(tables)

        assert [t.name for t in used] == ["t0"]
        assert all(key.table == "t0" for key in pivot)

    def test_all_tables_empty_gives_nothing(self, mock_db_executor, max_rng):
        mock_db_executor.select_with_columns.side_effect = fake_rows(empty=("t0",))

        pivot, used = PivotSelector(mock_db_executor, max_rng).choose_pivot([make_table("t0", "a")])

        assert used == []
        assert len(pivot) == 0

    def test_fetch_failure_is_wrapped(self, mock_db_executor, rng):
        failure = ExecutionError("query failed: boom", sql="SELECT 1")
        mock_db_executor.select_with_columns.side_effect = failure

        with pytest.raises(PivotSelectionError) as exc_info:
            PivotSelector(mock_db_executor, rng).choose_pivot([make_table("t0", "a")])

        assert exc_info.value.cause is failure

    def test_duplicate_key_raises(self, mock_db_executor, max_rng):
        mock_db_executor.select_with_columns.side_effect = fake_rows()
        # Same name twice: the second table lands on keys already taken.
        tables = [make_table("t0", "a", "b"), make_table("t0", "a", "b")]

        with pytest.raises(PivotSelectionError, match="duplicate pivot column"):
            PivotSelector(mock_db_executor, max_rng).choose_pivot(tables)

    def test_tables_are_shuffled_in_place(self, mock_db_executor):
        mock_db_executor.select_with_columns.side_effect = fake_rows()
        original = [make_table(f"t{i}", "a", "b") for i in range(8)]
        tables = list(original)

        PivotSelector(mock_db_executor, random.Random(3)).choose_pivot(tables)

        assert sorted(t.name for t in tables) == sorted(t.name for t in original)
        assert all(any(t is o for o in original) for t in tables)
        replay = random.Random(3)
        replay.randint(1, len(original))
        expected = list(original)
        replay.shuffle(expected)
        assert [t.name for t in tables] == [t.name for t in expected]
