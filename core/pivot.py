# Chooses the pivot rows that act as ground truth for one oracle iteration.

import logging
import random
from types import MappingProxyType
from typing import Dict, List, Mapping, NamedTuple, Tuple

from core.errors import ExecutionError, PivotSelectionError
from utils.db_executor import DBExecutor, QueryCell, Table


class TableColumn(NamedTuple):
    """Identifies a column of a used table: table name plus column name."""
    table: str
    column: str


PivotRow = Mapping[TableColumn, QueryCell]


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class PivotSelector:
    """
    Picks a random subset of tables and one random existing row from each.

    The returned mapping holds every column of every contributing table,
    keyed by ``TableColumn``. Tables without rows are left out of the used
    table list instead of failing the iteration.
    """

    def __init__(self, db_executor: DBExecutor, rng: random.Random):
        self.db_executor = db_executor
        self.rng = rng
        self.logger = logging.getLogger(self.__class__.__name__)

    def choose_pivot(self, tables: List[Table]) -> Tuple[PivotRow, List[Table]]:
        """
        Shuffles ``tables`` in place and draws a pivot row from the first
        ``count`` of them, ``count`` being uniform in ``[1, len(tables)]``.

        Raises:
            PivotSelectionError: no tables were given, a row fetch failed,
                or two cells landed on the same key.
        """
        if not tables:
            raise PivotSelectionError("no tables to choose a pivot row from")

        count = self.rng.randint(1, len(tables))
        self.rng.shuffle(tables)
        candidates = tables[:count]

        result: Dict[TableColumn, QueryCell] = {}
        really_used: List[Table] = []

        for table in candidates:
            sql = f"SELECT * FROM {quote_ident(table.name)} ORDER BY RANDOM() LIMIT 1"
            try:
                names, rows = self.db_executor.select_with_columns(sql)
            except ExecutionError as e:
                raise PivotSelectionError(f"fetching a pivot row from {table.name} failed: {e.message}", cause=e) from e

            if not rows:
                self.logger.debug(f"Table {table.name} is empty, skipping it as pivot source")
                continue

            for name, cell in zip(names, rows[0]):
                key = TableColumn(table.name, name)
                if key in result:
                    raise PivotSelectionError(f"duplicate pivot column {key.table}.{key.column}")
                result[key] = cell
            really_used.append(table)

        return MappingProxyType(result), really_used
