"""
Pivoted query synthesis.

The synthesizer builds a random boolean expression over the columns of the
used tables, evaluates it against the pivot row and rectifies it so that it
is TRUE for that row:

- TRUE stays as it is
- FALSE becomes ``NOT (expr)``
- NULL becomes ``(expr) IS NULL``

The rendered SELECT projects every column of every used table, so the oracle
can look for the pivot row in the result set column by column.
"""

import logging
import random
from dataclasses import dataclass
from typing import List, Optional, Tuple

from core.errors import SynthesisError
from core.generator import (
    BOOL, INT, TEXT,
    ColumnNode, ComparisonNode, IsNullNode, LiteralNode, LogicalNode, NotNode, SQLNode,
    StatementGenerator,
)
from core.pivot import PivotRow, TableColumn, quote_ident
from utils.db_executor import Table

DEFAULT_MAX_DEPTH = 6

SCAN_HINTS = ["SeqScan", "IndexScan", "IndexOnlyScan", "BitmapScan", "NoSeqScan", "NoIndexScan"]
JOIN_HINTS = ["NestLoop", "HashJoin", "MergeJoin", "NoNestLoop", "NoHashJoin"]


@dataclass
class SelectAst:
    tables: List[Table]
    predicate: SQLNode
    hint: Optional[str] = None


class QuerySynthesizer:
    """Builds and renders pivot-satisfying SELECT statements."""

    def __init__(self, generator: StatementGenerator, rng: random.Random, use_optimizer_hints: bool = False):
        self.generator = generator
        self.rng = rng
        self.use_optimizer_hints = use_optimizer_hints
        self.logger = logging.getLogger(self.__class__.__name__)

    def build_ast(self, max_depth: int, tables: List[Table]) -> SelectAst:
        """Builds a random predicate of depth at most ``max_depth`` over ``tables``."""
        if not tables:
            raise SynthesisError("cannot build a query without tables")
        if max_depth < 1:
            raise SynthesisError(f"invalid expression depth {max_depth}")

        columns = [ColumnNode(t, c) for t in tables for c in t.columns]
        predicate = self._gen_bool(max_depth, columns)
        hint = self._gen_hint(tables) if self.use_optimizer_hints else None
        return SelectAst(tables=list(tables), predicate=predicate, hint=hint)

    def render(self, ast: SelectAst, tables: List[Table], pivot_row: PivotRow) -> Tuple[str, List[TableColumn]]:
        """
        Renders ``ast`` as SQL whose WHERE clause holds for ``pivot_row``.

        Returns:
            The SQL text and the ``TableColumn`` of every projected
            expression, in SELECT list order.
        """
        if not tables:
            raise SynthesisError("cannot render a query without tables")

        predicate = self.rectify(ast.predicate, pivot_row)

        output_columns: List[TableColumn] = []
        projections: List[str] = []
        for table in tables:
            for column in table.columns:
                output_columns.append(TableColumn(table.name, column.name))
                projections.append(f"{quote_ident(table.name)}.{quote_ident(column.name)}")
        if not projections:
            raise SynthesisError("used tables have no columns to project")

        sql = f"SELECT {', '.join(projections)} FROM {', '.join(quote_ident(t.name) for t in tables)} WHERE {predicate.to_sql()}"
        if ast.hint:
            sql = f"{ast.hint} {sql}"
        return sql, output_columns

    def rectify(self, predicate: SQLNode, pivot_row: PivotRow) -> SQLNode:
        value = predicate.evaluate(pivot_row)
        if value is None:
            return IsNullNode(predicate)
        if value is False:
            return NotNode(predicate)
        return predicate

    # --- Expression generation ---

    def _gen_bool(self, depth: int, columns: List[ColumnNode]) -> SQLNode:
        if depth <= 1:
            return self._bool_leaf(columns)

        choice = self.rng.random()
        if choice < 0.35:
            return self._gen_comparison(depth, columns)
        if choice < 0.55:
            return LogicalNode(self._gen_bool(depth - 1, columns), "AND", self._gen_bool(depth - 1, columns))
        if choice < 0.75:
            return LogicalNode(self._gen_bool(depth - 1, columns), "OR", self._gen_bool(depth - 1, columns))
        if choice < 0.85:
            return NotNode(self._gen_bool(depth - 1, columns))
        if choice < 0.95:
            family = self.rng.choice([INT, TEXT, BOOL])
            return IsNullNode(self._gen_operand(family, depth - 1, columns), negated=self.rng.random() < 0.5)
        return self._bool_leaf(columns)

    def _gen_comparison(self, depth: int, columns: List[ColumnNode]) -> SQLNode:
        families = sorted({c.family for c in columns if c.family})
        family = self.rng.choice(families) if families and self.rng.random() < 0.9 else self.rng.choice([INT, TEXT])
        op = self.rng.choice(["=", "<>", "<", "<=", ">", ">="])
        left = self._gen_operand(family, depth - 1, columns)
        right = self._gen_operand(family, depth - 1, columns)
        return ComparisonNode(left, op, right, family)

    def _gen_operand(self, family: str, depth: int, columns: List[ColumnNode]) -> SQLNode:
        if family == BOOL:
            return self._gen_bool(depth, columns)
        candidates = [c for c in columns if c.family == family]
        if candidates and self.rng.random() < 0.7:
            return self.rng.choice(candidates)
        return self._literal(family)

    def _bool_leaf(self, columns: List[ColumnNode]) -> SQLNode:
        candidates = [c for c in columns if c.family == BOOL]
        if candidates and self.rng.random() < 0.6:
            return self.rng.choice(candidates)
        return self._literal(BOOL)

    def _literal(self, family: str) -> LiteralNode:
        if self.rng.random() < 0.1:
            return LiteralNode(None, family)
        declared = {INT: "integer", TEXT: "text", BOOL: "boolean"}[family]
        return LiteralNode(self.generator.random_value(declared), family)

    def _gen_hint(self, tables: List[Table]) -> str:
        if len(tables) > 1 and self.rng.random() < 0.5:
            names = " ".join(quote_ident(t.name) for t in tables)
            return f"/*+ {self.rng.choice(JOIN_HINTS)}({names}) */"
        table = self.rng.choice(tables)
        return f"/*+ {self.rng.choice(SCAN_HINTS)}({quote_ident(table.name)}) */"
