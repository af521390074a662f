"""
PQS Oracle - Pivoted Query Synthesis (OSDI 2020).

The query under test was synthesized so that its WHERE clause is true for
the pivot row. This oracle executes it and checks that the pivot row is
actually among the returned rows. A missing pivot row means the engine
evaluated the predicate, planned the query or read its storage wrongly.

Cells are compared with ``QueryCell`` equality: same engine type, and
either both NULL or identical string forms.
"""

from typing import List

from core.errors import OracleMismatchDetected
from core.pivot import PivotRow, TableColumn
from oracles.base_oracle import BaseOracle
from utils.db_executor import DBExecutor, QueryCell


class PQSOracle(BaseOracle):
    """Pivoted Query Synthesis Oracle for detecting logic bugs."""

    def __init__(self, db_executor: DBExecutor, use_prepared_statements: bool = False):
        super().__init__(db_executor)
        self.use_prepared_statements = use_prepared_statements

    def run(self, sql: str) -> List[List[QueryCell]]:
        """Executes the synthesized statement. Raises ``ExecutionError``."""
        return self.db_executor.select(sql, prepared=self.use_prepared_statements)

    def check(self, sql: str, pivot_row: PivotRow, output_columns: List[TableColumn]) -> List[List[QueryCell]]:
        rows = self.run(sql)
        if not self.verify(pivot_row, output_columns, rows):
            raise OracleMismatchDetected(sql, pivot_row, output_columns, rows)
        return rows

    def verify(self, pivot_row: PivotRow, output_columns: List[TableColumn], rows: List[List[QueryCell]]) -> bool:
        """Returns True when some row of ``rows`` carries the pivot row's values."""
        self.logger.info("=========  ORIGIN ROWS ======")
        for key, cell in pivot_row.items():
            self.logger.info(f"key: {key}, value: [null: {cell.is_null}, value: {cell.string_value}]")

        self.logger.info("=========  COLUMNS ======")
        for c in output_columns:
            self.logger.info(f"Table: {c.table}, Name: {c.column}")

        for row in rows:
            if self._check_row(pivot_row, output_columns, row):
                return True

        self.logger.info(f"=========  DATA ======, count: {len(rows)}")
        for i, row in enumerate(rows):
            self.logger.info(f"$$$$$$$$$ line {i}")
            for j, cell in enumerate(row):
                column = output_columns[j] if j < len(output_columns) else TableColumn("?", "?")
                self.logger.info(f"  table: {column.table}, field: {column.column}, type: {cell.value_type}, value: {cell.string_value}")

        self.logger.info("Verify failed!")
        return False

    def _check_row(self, pivot_row: PivotRow, output_columns: List[TableColumn], row: List[QueryCell]) -> bool:
        if len(row) < len(output_columns):
            return False
        for i, column in enumerate(output_columns):
            expected = pivot_row.get(column)
            if expected is None or expected != row[i]:
                self.logger.debug(f"i: {i}, column: {column}, left: {expected}, right: {row[i]}")
                return False
        return True
