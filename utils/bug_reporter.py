import logging
from datetime import datetime
from typing import List, Optional

from core.errors import FuzzerError, InfrastructureFault, OracleMismatchDetected

"""
Bug Reporter - diagnostic context for session-ending failures.

The log stream is the only audit trail of a session, so when the fuzzing
loop stops on a failure this module writes everything needed to reproduce
it: the failing SQL, the pivot row, the projected columns and the complete
result set. Nothing is persisted beyond the log.
"""


class BugReporter:
    """Writes the diagnostic report of a failed iteration to the log."""

    def __init__(self, session_name: str = "pqsfuzz"):
        self.logger = logging.getLogger(__name__)
        self.session_id = f"{session_name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        self.bug_count = 0

    def report(self, error: FuzzerError, sql: Optional[str] = None) -> List[str]:
        """
        Logs the report for ``error`` and returns its lines.

        Args:
            error: The failure that ended the iteration
            sql: The statement being processed, when the error does not carry it

        Returns:
            The report lines, in the order they were logged
        """
        if isinstance(error, OracleMismatchDetected):
            self.bug_count += 1
            lines = self._mismatch_lines(error)
        elif isinstance(error, InfrastructureFault):
            lines = self._fault_lines(error, sql)
        else:
            lines = [f"Session {self.session_id} stopped: {error}"]

        for line in lines:
            self.logger.error(line)
        return lines

    def _mismatch_lines(self, error: OracleMismatchDetected) -> List[str]:
        lines = [
            "=" * 77,
            f"PQS oracle mismatch #{self.bug_count} in session {self.session_id}",
            "=" * 77,
            f"query: {error.sql}",
            "pivot row:",
        ]
        for key, cell in error.pivot_row.items():
            lines.append(f"  {key.table}.{key.column} ({cell.value_type}) = {cell}")
        lines.append("output columns: " + ", ".join(f"{c.table}.{c.column}" for c in error.output_columns))
        lines.append(f"result rows ({len(error.rows)}):")
        for i, row in enumerate(error.rows):
            lines.append(f"  [{i}] " + ", ".join("NULL" if c.is_null else c.string_value for c in row))
        lines.append("data verified failed: pivot row missing from the result set")
        return lines

    def _fault_lines(self, error: InfrastructureFault, sql: Optional[str]) -> List[str]:
        lines = [f"Infrastructure fault in session {self.session_id}: {error.__class__.__name__}: {error.message}"]
        failing_sql = getattr(error, "sql", None) or sql
        if failing_sql:
            lines.append(f"query: {failing_sql}")
        if error.cause is not None:
            lines.append(f"cause: {error.cause!r}")
        return lines
