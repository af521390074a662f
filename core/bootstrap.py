# Wipes and recreates the working schema, then fills it with a random
# schema and seed data. Individual generated statements are allowed to fail:
# a broken statement is logged and skipped, never fatal to the bootstrap.

import logging
import random
from dataclasses import dataclass
from typing import Callable

from core.errors import FuzzerError
from core.generator import DDLOptions, Statement, StatementGenerator
from core.pivot import quote_ident
from utils.db_executor import DBExecutor


@dataclass
class BootstrapReport:
    executed: int = 0
    failed: int = 0


class BootstrapController:
    """Resets the working schema and populates it through the statement generator."""

    def __init__(self, db_executor: DBExecutor, generator: StatementGenerator, rng: random.Random,
                 max_create_tables: int = 10, max_create_indexes: int = 10, online_ddl: bool = True):
        self.db_executor = db_executor
        self.generator = generator
        self.rng = rng
        self.max_create_tables = max_create_tables
        self.max_create_indexes = max_create_indexes
        self.online_ddl = online_ddl
        self.logger = logging.getLogger(self.__class__.__name__)

    def reset(self, database_name: str) -> None:
        """Drops the working schema if present, recreates it empty and selects it."""
        schema = quote_ident(database_name)
        self.logger.info(f"Resetting working schema '{database_name}'")
        self.db_executor.execute(f"DROP SCHEMA IF EXISTS {schema} CASCADE")
        self.db_executor.execute(f"CREATE SCHEMA {schema}")
        self.db_executor.execute(f"SET search_path TO {schema}")

    def populate(self) -> BootstrapReport:
        """Creates random tables and indexes and inserts one batch of rows per table."""
        report = BootstrapReport()

        for _ in range(self.rng.randint(1, self.max_create_tables)):
            self._run("create table", self.generator.gen_create_table, report)

        try:
            self.generator.reload_schema()
        except FuzzerError as e:
            self.logger.error(f"reload schema failed: {e}")

        ddl_options = DDLOptions(online_ddl=self.online_ddl, tables=[])
        for _ in range(self.rng.randint(0, self.max_create_indexes - 1)):
            self._run("create index", lambda: self.generator.gen_create_index(ddl_options), report)

        for table in self.generator.tables:
            self._run("insert data", lambda: self.generator.gen_insert(table), report)

        self.logger.info(f"Bootstrap finished: {report.executed} statements executed, {report.failed} failed")
        return report

    def _run(self, what: str, produce: Callable[[], Statement], report: BootstrapReport) -> None:
        try:
            statement = produce()
        except FuzzerError as e:
            self.logger.error(f"{what} failed: could not generate statement: {e}")
            report.failed += 1
            return

        try:
            self.db_executor.execute(statement.sql)
            self.logger.debug(f"{what}: {statement.sql}")
            report.executed += 1
        except FuzzerError as e:
            self.logger.error(f"{what} failed. sql: {statement.sql}, error: {e}")
            report.failed += 1
