"""
Exception hierarchy for PQSFuzz.

Two disjoint families exist: infrastructure faults (the database or a
collaborator misbehaved) and oracle mismatches (the engine under test
violated the pivot inclusion guarantee). Every exception carries the exit
code the CLI returns when it ends the session.
"""

from typing import Any, List, Mapping, Optional


class FuzzerError(Exception):
    """Base exception for all PQSFuzz errors."""

    exit_code: int = 1

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InfrastructureFault(FuzzerError):
    """Connection, metadata or generator failure."""

    exit_code: int = 2

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class SchemaFetchError(InfrastructureFault):
    """Table, column or index metadata could not be read."""


class ExecutionError(InfrastructureFault):
    """A statement failed to execute."""

    def __init__(self, message: str, sql: str = "", cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.sql = sql


class PivotSelectionError(InfrastructureFault):
    """No pivot row could be assembled."""


class SynthesisError(InfrastructureFault):
    """The statement generator or query synthesizer could not build a statement."""


class OracleMismatchDetected(FuzzerError):
    """The pivot row is missing from the result set of its own query."""

    exit_code: int = 1

    def __init__(self, sql: str, pivot_row: Mapping, output_columns: List, rows: List[List[Any]]):
        super().__init__(f"pivot row not found in result of query: {sql}")
        self.sql = sql
        self.pivot_row = pivot_row
        self.output_columns = output_columns
        self.rows = rows


class ConfigError(FuzzerError):
    """Malformed or invalid configuration."""

    exit_code: int = 3
