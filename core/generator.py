# Contains the SQL abstract syntax tree and the random statement generator
# used to bootstrap a schema. Expression nodes render themselves to SQL and
# also evaluate themselves against a pivot row with SQL three-valued logic,
# which is what the query synthesizer relies on to rectify predicates.

import logging
import operator
import random
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from core.errors import SynthesisError
from core.pivot import PivotRow, TableColumn, quote_ident
from utils.db_executor import Column, DBExecutor, Table

# --- Type families ---
INT = "int"
TEXT = "text"
BOOL = "bool"

_FAMILY_BY_TYPE = {
    "smallint": INT, "integer": INT, "bigint": INT,
    "int2": INT, "int4": INT, "int8": INT,
    "text": TEXT, "character varying": TEXT, "varchar": TEXT,
    "boolean": BOOL, "bool": BOOL,
}

_CAST_BY_FAMILY = {INT: "BIGINT", TEXT: "TEXT", BOOL: "BOOLEAN"}

_INT_RANGES = {
    "SMALLINT": (-32768, 32767),
    "INTEGER": (-2147483648, 2147483647),
    "BIGINT": (-9223372036854775808, 9223372036854775807),
}

_TEXT_ALPHABET = string.ascii_letters + string.digits + " _-'%"


def type_family(column_type: str) -> Optional[str]:
    """Maps a declared column type to the family expressions can compare, or None."""
    base = column_type.lower().split("(")[0].strip()
    return _FAMILY_BY_TYPE.get(base)


# --- Rich Abstract Syntax Tree (AST) Nodes ---
class SQLNode(ABC):
    @abstractmethod
    def to_sql(self) -> str: pass

    def evaluate(self, row: PivotRow) -> Any:
        """Evaluates the node against a pivot row. ``None`` stands for SQL NULL."""
        raise NotImplementedError(f"{self.__class__.__name__} cannot be evaluated")

    def depth(self) -> int:
        return 1


class ColumnNode(SQLNode):
    def __init__(self, table: Table, column: Column):
        self.table = table; self.column = column
        self.family = type_family(column.type)

    @property
    def key(self) -> TableColumn:
        return TableColumn(self.table.name, self.column.name)

    def to_sql(self) -> str: return f"{quote_ident(self.table.name)}.{quote_ident(self.column.name)}"

    def evaluate(self, row: PivotRow) -> Any:
        cell = row.get(self.key)
        if cell is None:
            raise SynthesisError(f"pivot row has no value for {self.table.name}.{self.column.name}")
        return None if cell.is_null else cell.value


class LiteralNode(SQLNode):
    def __init__(self, value, family: str): self.value = value; self.family = family

    def to_sql(self) -> str:
        if self.value is None: return f"NULL::{_CAST_BY_FAMILY[self.family]}"
        if isinstance(self.value, bool): return "TRUE" if self.value else "FALSE"
        if isinstance(self.value, int): return str(self.value)
        return "'" + str(self.value).replace("'", "''") + "'::TEXT"

    def evaluate(self, row: PivotRow) -> Any:
        return self.value


_COMPARISONS: Dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


class ComparisonNode(SQLNode):
    def __init__(self, left: SQLNode, op: str, right: SQLNode, family: str):
        self.left = left; self.op = op; self.right = right; self.family = family

    def to_sql(self) -> str:
        left_sql = self.left.to_sql()
        # Byte-wise ordering keeps engine comparisons aligned with str ordering.
        if self.family == TEXT:
            left_sql = f'{left_sql} COLLATE "C"'
        return f"({left_sql} {self.op} {self.right.to_sql()})"

    def evaluate(self, row: PivotRow) -> Any:
        left = self.left.evaluate(row)
        right = self.right.evaluate(row)
        if left is None or right is None:
            return None
        return _COMPARISONS[self.op](left, right)

    def depth(self) -> int:
        return 1 + max(self.left.depth(), self.right.depth())


class LogicalNode(SQLNode):
    """AND / OR under three-valued logic."""
    def __init__(self, left: SQLNode, op: str, right: SQLNode):
        self.left = left; self.op = op; self.right = right

    def to_sql(self) -> str: return f"({self.left.to_sql()} {self.op} {self.right.to_sql()})"

    def evaluate(self, row: PivotRow) -> Any:
        left = self.left.evaluate(row)
        right = self.right.evaluate(row)
        if self.op == "AND":
            if left is False or right is False:
                return False
            if left is None or right is None:
                return None
            return True
        if left is True or right is True:
            return True
        if left is None or right is None:
            return None
        return False

    def depth(self) -> int:
        return 1 + max(self.left.depth(), self.right.depth())


class NotNode(SQLNode):
    def __init__(self, child: SQLNode): self.child = child
    def to_sql(self) -> str: return f"(NOT {self.child.to_sql()})"

    def evaluate(self, row: PivotRow) -> Any:
        value = self.child.evaluate(row)
        return None if value is None else not value

    def depth(self) -> int:
        return 1 + self.child.depth()


class IsNullNode(SQLNode):
    def __init__(self, child: SQLNode, negated: bool = False): self.child = child; self.negated = negated

    def to_sql(self) -> str:
        return f"({self.child.to_sql()} IS {'NOT ' if self.negated else ''}NULL)"

    def evaluate(self, row: PivotRow) -> Any:
        is_null = self.child.evaluate(row) is None
        return not is_null if self.negated else is_null

    def depth(self) -> int:
        return 1 + self.child.depth()


# --- Statements ---
@dataclass
class Statement:
    sql: str
    kind: str


@dataclass
class DDLOptions:
    """Options for index generation. An empty table list leaves the choice to the generator."""
    online_ddl: bool = True
    tables: List[str] = field(default_factory=list)


class StatementGenerator:
    """
    Produces random CREATE TABLE, CREATE INDEX and INSERT statements.

    It keeps its own view of the schema, refreshed by ``reload_schema``, so
    that generated indexes and inserts refer to tables that exist.
    """

    COLUMN_TYPES = ["SMALLINT", "INTEGER", "BIGINT", "TEXT", "VARCHAR", "BOOLEAN"]

    def __init__(self, db_executor: DBExecutor, schema_name: str, rng: random.Random):
        self.db_executor = db_executor
        self.schema_name = schema_name
        self.rng = rng
        self.tables: List[Table] = []
        self.logger = logging.getLogger(self.__class__.__name__)
        self._table_seq = 0
        self._index_seq = 0

    def reload_schema(self) -> None:
        """Re-reads tables and columns of the working schema."""
        tables = []
        for name in self.db_executor.list_tables(self.schema_name):
            tables.append(Table(name=name, columns=self.db_executor.list_columns(self.schema_name, name)))
        self.tables = tables
        self.logger.debug(f"Generator schema reloaded: {[t.name for t in tables]}")

    def gen_create_table(self) -> Statement:
        existing = {t.key for t in self.tables}
        name = f"t{self._table_seq}"
        while name in existing:
            self._table_seq += 1
            name = f"t{self._table_seq}"
        self._table_seq += 1

        definitions = []
        for i in range(self.rng.randint(1, 6)):
            col_type = self.rng.choice(self.COLUMN_TYPES)
            if col_type == "VARCHAR":
                col_type = f"VARCHAR({self.rng.randint(1, 64)})"
            definition = f"c{i} {col_type}"
            if self.rng.random() < 0.2:
                definition += " NOT NULL"
            definitions.append(definition)

        return Statement(sql=f"CREATE TABLE {quote_ident(name)} ({', '.join(definitions)})", kind="create_table")

    def gen_create_index(self, options: DDLOptions) -> Statement:
        if options.tables:
            wanted = {n.lower() for n in options.tables}
            candidates = [t for t in self.tables if t.key in wanted]
        else:
            candidates = [t for t in self.tables if t.columns]
        if not candidates:
            raise SynthesisError("no table available for CREATE INDEX")

        table = self.rng.choice(candidates)
        count = self.rng.randint(1, min(3, len(table.columns)))
        columns = self.rng.sample(table.columns, count)
        parts = [quote_ident(c.name) + (" DESC" if self.rng.random() < 0.3 else "") for c in columns]

        name = f"i{self._index_seq}"
        self._index_seq += 1
        concurrently = " CONCURRENTLY" if options.online_ddl else ""
        return Statement(
            sql=f"CREATE INDEX{concurrently} {quote_ident(name)} ON {quote_ident(table.name)} ({', '.join(parts)})",
            kind="create_index",
        )

    def gen_insert(self, table: Table) -> Statement:
        if not table.columns:
            raise SynthesisError(f"table {table.name} has no columns to insert into")

        rows = []
        for _ in range(self.rng.randint(1, 10)):
            rows.append("(" + ", ".join(self._random_value_sql(c) for c in table.columns) + ")")
        columns = ", ".join(quote_ident(name) for name in table.column_names())
        return Statement(
            sql=f"INSERT INTO {quote_ident(table.name)} ({columns}) VALUES {', '.join(rows)}",
            kind="insert",
        )

    def _random_value_sql(self, column: Column) -> str:
        if column.nullable and self.rng.random() < 0.15:
            return "NULL"
        return LiteralNode(self.random_value(column.type), type_family(column.type) or TEXT).to_sql()

    def random_value(self, column_type: str) -> Any:
        """Draws a non-null value of the given declared type, favouring boundaries."""
        family = type_family(column_type)
        if family == BOOL:
            return self.rng.random() < 0.5
        if family == INT:
            low, high = _INT_RANGES.get(_int_type_name(column_type), _INT_RANGES["INTEGER"])
            if self.rng.random() < 0.3:
                return self.rng.choice([low, high, 0, 1, -1])
            return self.rng.randint(-100, 100)
        limit = _varchar_length(column_type) or 16
        length = self.rng.randint(0, min(limit, 16))
        return "".join(self.rng.choice(_TEXT_ALPHABET) for _ in range(length))


def _int_type_name(column_type: str) -> str:
    base = column_type.lower()
    if base in ("smallint", "int2"):
        return "SMALLINT"
    if base in ("bigint", "int8"):
        return "BIGINT"
    return "INTEGER"


def _varchar_length(column_type: str) -> Optional[int]:
    if "(" not in column_type:
        return None
    try:
        return int(column_type.split("(")[1].rstrip(")"))
    except ValueError:
        return None
