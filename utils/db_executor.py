# This module encapsulates all direct interaction with the database.
# It owns the single psycopg2 connection of a session and exposes the
# metadata probes, row fetches and statement execution the fuzzer needs,
# translating driver errors into the fuzzer's own exception types.

import psycopg2
import psycopg2.extensions
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.errors import ExecutionError, SchemaFetchError

PREPARED_STATEMENT_NAME = "pqs_stmt"

# Built-in type OIDs, so that the common cases never need a catalog lookup.
KNOWN_TYPE_NAMES: Dict[int, str] = {
    16: "bool",
    18: "char",
    19: "name",
    20: "int8",
    21: "int2",
    23: "int4",
    25: "text",
    26: "oid",
    700: "float4",
    701: "float8",
    1042: "bpchar",
    1043: "varchar",
    1082: "date",
    1114: "timestamp",
    1184: "timestamptz",
    1700: "numeric",
}


# --- Schema Representation ---
@dataclass
class Column:
    name: str
    type: str
    nullable: bool = True


@dataclass(eq=False)
class Table:
    """A table as seen by the fuzzer. Identity is the case-insensitive name."""
    name: str
    columns: List[Column] = field(default_factory=list)
    indexes: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return self.name.lower()

    def __eq__(self, other):
        if not isinstance(other, Table):
            return NotImplemented
        return self.key == other.key

    def __hash__(self):
        return hash(self.key)

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


@dataclass(frozen=True, eq=False)
class QueryCell:
    """
    A single fetched value.

    ``value`` is the decoded Python value and only serves expression
    evaluation; equality looks at the type name, the null flag and the
    string form.
    """
    is_null: bool
    string_value: str
    value_type: str
    value: Any = None

    @classmethod
    def from_value(cls, value: Any, value_type: str) -> "QueryCell":
        if value is None:
            return cls(is_null=True, string_value="", value_type=value_type, value=None)
        return cls(is_null=False, string_value=str(value), value_type=value_type, value=value)

    def __eq__(self, other):
        if not isinstance(other, QueryCell):
            return NotImplemented
        if self.value_type != other.value_type:
            return False
        if self.is_null != other.is_null:
            return False
        return self.is_null or self.string_value == other.string_value

    def __hash__(self):
        return hash((self.value_type, self.is_null, "" if self.is_null else self.string_value))

    def __str__(self):
        return f"[null: {self.is_null}, value: {self.string_value}]"


class DBExecutor:
    """Owns the database connection and runs every statement of a session."""

    def __init__(self, dsn: str, connect_timeout: int = 10, statement_timeout: int = 0):
        self.dsn = dsn
        self.connect_timeout = connect_timeout
        self.statement_timeout = statement_timeout
        self.logger = logging.getLogger(self.__class__.__name__)
        self.conn = None
        self._type_names: Dict[int, str] = dict(KNOWN_TYPE_NAMES)
        self._lock = threading.Lock()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self.conn = psycopg2.connect(
                self.dsn,
                connect_timeout=self.connect_timeout,
                application_name="PQSFuzz",
            )
            self.conn.autocommit = True

            if self.statement_timeout:
                with self.conn.cursor() as cursor:
                    cursor.execute("SET statement_timeout = %s", (self.statement_timeout,))

            self.logger.info(f"Connected to database '{self.conn.info.dbname}' on {self.conn.info.host}:{self.conn.info.port}")

        except psycopg2.Error as e:
            self.logger.error(f"Database connection failed: {e}")
            raise ExecutionError(f"connection failed: {e}", cause=e) from e

    def get_connection(self):
        """Returns the open connection. A dropped connection is never reopened."""
        if not self.conn or self.conn.closed:
            raise ExecutionError("connection to the database is closed")
        return self.conn

    # --- Metadata probes ---

    def list_tables(self, schema: str) -> List[str]:
        rows = self._fetch_metadata(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = %s AND table_type = 'BASE TABLE' ORDER BY table_name",
            (schema,),
        )
        return [r[0] for r in rows]

    def list_columns(self, schema: str, table: str) -> List[Column]:
        rows = self._fetch_metadata(
            "SELECT column_name, data_type, is_nullable, character_maximum_length FROM information_schema.columns "
            "WHERE table_schema = %s AND table_name = %s ORDER BY ordinal_position",
            (schema, table),
        )
        columns = []
        for name, data_type, is_nullable, max_length in rows:
            declared = f"{data_type}({max_length})" if max_length else data_type
            columns.append(Column(name=name, type=declared, nullable=is_nullable == 'YES'))
        return columns

    def list_indexes(self, schema: str, table: str) -> List[str]:
        rows = self._fetch_metadata(
            "SELECT indexname FROM pg_indexes WHERE schemaname = %s AND tablename = %s ORDER BY indexname",
            (schema, table),
        )
        return [r[0] for r in rows]

    def _fetch_metadata(self, query: str, params: tuple) -> List[tuple]:
        try:
            with self.get_connection().cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg2.Error as e:
            self.logger.error(f"Metadata query failed: {e}")
            raise SchemaFetchError(f"metadata query failed: {e}", cause=e) from e

    # --- Statement execution ---

    def select(self, sql: str, prepared: bool = False) -> List[List[QueryCell]]:
        """Runs a row query and returns its cells."""
        _, rows = self.select_with_columns(sql, prepared=prepared)
        return rows

    def select_with_columns(self, sql: str, prepared: bool = False) -> Tuple[List[str], List[List[QueryCell]]]:
        """Runs a row query and returns the result column names along with the cells."""
        self.logger.debug(f"Executing query: {sql}")
        try:
            with self.get_connection().cursor() as cur:
                if prepared:
                    cur.execute(f"PREPARE {PREPARED_STATEMENT_NAME} AS {sql.rstrip().rstrip(';')}")
                    try:
                        cur.execute(f"EXECUTE {PREPARED_STATEMENT_NAME}")
                        data = cur.fetchall()
                        description = cur.description
                    finally:
                        cur.execute(f"DEALLOCATE {PREPARED_STATEMENT_NAME}")
                else:
                    cur.execute(sql)
                    data = cur.fetchall()
                    description = cur.description

                names = [d.name for d in description] if description else []
                types = [self._type_name(d.type_code) for d in description] if description else []
                rows = [
                    [QueryCell.from_value(value, types[i]) for i, value in enumerate(row)]
                    for row in data
                ]
                return names, rows

        except psycopg2.Error as e:
            raise ExecutionError(f"query failed: {e}", sql=sql, cause=e) from e

    def execute(self, sql: str) -> None:
        """Runs a statement that produces no rows."""
        self.logger.debug(f"Executing statement: {sql}")
        try:
            with self.get_connection().cursor() as cur:
                cur.execute(sql)
        except psycopg2.Error as e:
            raise ExecutionError(f"statement failed: {e}", sql=sql, cause=e) from e

    def _type_name(self, oid: int) -> str:
        """Resolves a result type OID to its engine type name, caching lookups."""
        with self._lock:
            if oid in self._type_names:
                return self._type_names[oid]
        try:
            with self.get_connection().cursor() as cur:
                cur.execute("SELECT typname FROM pg_catalog.pg_type WHERE oid = %s", (oid,))
                row = cur.fetchone()
        except psycopg2.Error as e:
            self.logger.warning(f"Type lookup for oid {oid} failed: {e}")
            row = None
        name = row[0] if row else f"oid:{oid}"
        with self._lock:
            self._type_names[oid] = name
        return name

    def cancel(self) -> None:
        """Asks the server to abandon the statement currently running, if any."""
        if self.conn and not self.conn.closed:
            try:
                self.conn.cancel()
                self.logger.info("Cancel request sent to the database.")
            except psycopg2.Error as e:
                self.logger.warning(f"Cancel request failed: {e}")

    @staticmethod
    def is_cancellation(error: BaseException) -> bool:
        """True when ``error`` was caused by a cancelled statement."""
        seen = set()
        while error is not None and id(error) not in seen:
            if isinstance(error, psycopg2.extensions.QueryCanceledError):
                return True
            seen.add(id(error))
            error = getattr(error, "cause", None) or error.__cause__
        return False

    def close(self):
        """Closes the database connection."""
        if self.conn and not self.conn.closed:
            self.conn.close()
            self.logger.info("Database connection closed.")
