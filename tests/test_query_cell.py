"""
Tests for cell equality and table identity.
"""

from utils.db_executor import Column, QueryCell, Table


class TestQueryCellEquality:
    """The oracle's comparison rule for fetched cells."""

    def test_equal_values_of_same_type(self):
        assert QueryCell.from_value(1, "int4") == QueryCell.from_value(1, "int4")

    def test_different_values_of_same_type(self):
        assert QueryCell.from_value(1, "int4") != QueryCell.from_value(2, "int4")

    def test_both_null_equal_regardless_of_string(self):
        left = QueryCell(is_null=True, string_value="leftover", value_type="text")
        right = QueryCell(is_null=True, string_value="", value_type="text")
        assert left == right

    def test_null_never_equals_empty_string(self):
        assert QueryCell.from_value(None, "text") != QueryCell.from_value("", "text")

    def test_null_never_equals_zero(self):
        assert QueryCell.from_value(None, "int4") != QueryCell.from_value(0, "int4")
        assert QueryCell.from_value(None, "text") != QueryCell.from_value("0", "text")

    def test_type_mismatch_rejected_even_with_same_string(self):
        assert QueryCell.from_value(1, "int4") != QueryCell.from_value("1", "text")

    def test_nulls_of_different_types_differ(self):
        assert QueryCell.from_value(None, "int4") != QueryCell.from_value(None, "text")

    def test_value_is_not_part_of_equality(self):
        left = QueryCell(is_null=False, string_value="1", value_type="int4", value=1)
        right = QueryCell(is_null=False, string_value="1", value_type="int4", value="other")
        assert left == right
        assert hash(left) == hash(right)

    def test_from_value_stringifies(self):
        cell = QueryCell.from_value(True, "bool")
        assert not cell.is_null
        assert cell.string_value == "True"
        assert cell.value is True

    def test_str_shows_null_flag_and_value(self):
        assert str(QueryCell.from_value("x", "varchar")) == "[null: False, value: x]"


class TestTableIdentity:
    """Tables are identified by their case-insensitive name."""

    def test_case_insensitive_equality(self):
        assert Table(name="Orders") == Table(name="orders", columns=[Column("a", "integer")])

    def test_hash_matches_equality(self):
        assert len({Table(name="T0"), Table(name="t0")}) == 1

    def test_column_names(self):
        table = Table(name="t", columns=[Column("a", "integer"), Column("b", "text")])
        assert table.column_names() == ["a", "b"]
