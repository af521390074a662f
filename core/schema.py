# In-memory mirror of the working schema: tables, their columns and indexes.

import logging
import time
from typing import List

from core.errors import SchemaFetchError
from utils.db_executor import DBExecutor, Table


class SchemaSnapshot:
    """
    Maintains the list of tables the oracle iterates over.

    A refresh builds a complete new list before swapping it in, so readers
    only ever see the previous snapshot or the new one.
    """

    def __init__(self, db_executor: DBExecutor):
        self.db_executor = db_executor
        self.logger = logging.getLogger(self.__class__.__name__)
        self._tables: List[Table] = []

    @property
    def tables(self) -> List[Table]:
        """A copy of the current table list; callers may shuffle it freely."""
        return list(self._tables)

    def refresh(self, database_name: str) -> List[Table]:
        """
        Reloads every table of ``database_name`` from the live database.

        Raises:
            SchemaFetchError: any metadata probe failed.
        """
        self.logger.info("Refreshing schema snapshot (tables, columns, indexes)...")
        start_time = time.time()

        tables = []
        try:
            for name in self.db_executor.list_tables(database_name):
                table = Table(name=name)
                table.columns = self.db_executor.list_columns(database_name, name)
                table.indexes = self.db_executor.list_indexes(database_name, name)
                tables.append(table)
        except SchemaFetchError:
            raise
        except Exception as e:
            raise SchemaFetchError(f"schema refresh failed: {e}", cause=e) from e

        self._tables = tables
        elapsed_time = time.time() - start_time
        self.logger.info(f"Schema snapshot refreshed in {elapsed_time:.2f}s. Found {len(tables)} tables.")
        return self.tables
