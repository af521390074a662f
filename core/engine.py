"""
PQSFuzz Engine - the pivoted query synthesis fuzzing loop.

The engine bootstraps a random schema, snapshots it, and then runs oracle
iterations on a single background worker until it is cancelled, reaches its
iteration bound, or an iteration fails:

    IDLE -> BOOTSTRAPPING -> SNAPSHOTTING -> ITERATING -> DRAINING -> CLOSED

Each iteration picks pivot rows, synthesizes a query that must return them,
executes it and verifies the pivot row is in the result. Failures come back
through ``wait()`` as typed exceptions instead of ending the process: an
oracle mismatch always stops the loop, an infrastructure fault stops it
unless the configuration says to keep going.
"""

import logging
import random
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import psutil

from config import PQSFuzzConfig
from core.bootstrap import BootstrapController
from core.errors import FuzzerError, InfrastructureFault, OracleMismatchDetected
from core.generator import StatementGenerator
from core.pivot import PivotSelector
from core.schema import SchemaSnapshot
from core.synthesizer import QuerySynthesizer
from oracles.pqs_oracle import PQSOracle
from utils.bug_reporter import BugReporter
from utils.db_executor import DBExecutor


class FuzzerState(Enum):
    IDLE = "idle"
    BOOTSTRAPPING = "bootstrapping"
    SNAPSHOTTING = "snapshotting"
    ITERATING = "iterating"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass
class IterationStats:
    """Counters of the iteration loop."""
    iterations: int = 0
    successes: int = 0
    skipped: int = 0
    infrastructure_faults: int = 0
    mismatches: int = 0
    start_time: Optional[datetime] = None

    def get_summary(self) -> Dict[str, Any]:
        runtime = (datetime.now() - self.start_time).total_seconds() if self.start_time else 0.0
        return {
            'iterations': self.iterations,
            'successes': self.successes,
            'skipped': self.skipped,
            'infrastructure_faults': self.infrastructure_faults,
            'mismatches': self.mismatches,
            'runtime_seconds': runtime,
            'iterations_per_second': self.iterations / runtime if runtime > 0 else 0.0,
        }


class PivotFuzzer:
    """Drives bootstrap, snapshot and the oracle iteration loop for one working schema."""

    def __init__(self, dsn: str, database_name: str, config: Optional[PQSFuzzConfig] = None,
                 db_executor: Optional[DBExecutor] = None, rng: Optional[random.Random] = None):
        """
        Initialize the fuzzer.

        Args:
            dsn: libpq connection string of the database under test
            database_name: Working schema that is wiped and rebuilt
            config: Configuration (defaults when omitted)
            db_executor: Executor to use instead of opening a new connection
            rng: Random source shared by every randomised component
        """
        self.config = config or PQSFuzzConfig()
        self.database_name = database_name
        self.logger = logging.getLogger(__name__)

        self.rng = rng or random.Random(self.config.random_seed)
        self.db_executor = db_executor or DBExecutor(
            dsn,
            connect_timeout=self.config.database.connect_timeout,
            statement_timeout=self.config.database.statement_timeout,
        )

        pivot_config = self.config.pivot
        self.generator = StatementGenerator(self.db_executor, database_name, self.rng)
        self.bootstrap = BootstrapController(
            self.db_executor, self.generator, self.rng,
            max_create_tables=pivot_config.max_create_tables,
            max_create_indexes=pivot_config.max_create_indexes,
            online_ddl=pivot_config.online_ddl,
        )
        self.snapshot = SchemaSnapshot(self.db_executor)
        self.pivot_selector = PivotSelector(self.db_executor, self.rng)
        self.synthesizer = QuerySynthesizer(self.generator, self.rng, use_optimizer_hints=pivot_config.use_optimizer_hints)
        self.oracle = PQSOracle(self.db_executor, use_prepared_statements=pivot_config.use_prepared_statements)
        self.bug_reporter = BugReporter()

        self.state = FuzzerState.IDLE
        self.stats = IterationStats()
        self.failure: Optional[FuzzerError] = None
        self._cancel_event: Optional[threading.Event] = None
        self._worker: Optional[threading.Thread] = None
        self._current_sql: Optional[str] = None

    # --- Lifecycle ---

    def start(self, cancel_event: threading.Event) -> None:
        """
        Bootstraps the working schema and starts the iteration worker.

        Bootstrap and snapshot run on the caller's thread; their errors
        propagate from here. Iteration failures are reported by ``wait()``.
        """
        if self.state != FuzzerState.IDLE:
            raise RuntimeError(f"fuzzer cannot start from state {self.state.value}")
        self._cancel_event = cancel_event

        self.state = FuzzerState.BOOTSTRAPPING
        self.bootstrap.reset(self.database_name)
        self.bootstrap.populate()

        self.state = FuzzerState.SNAPSHOTTING
        self.init()

        self.state = FuzzerState.ITERATING
        self.stats.start_time = datetime.now()
        self._worker = threading.Thread(target=self._run_worker, name="pqs-worker", daemon=True)
        self._worker.start()
        self.logger.info(f"Fuzzing started on schema '{self.database_name}' with seed {self.config.random_seed}")

    def init(self) -> None:
        """Refreshes the schema snapshot of the working schema."""
        self.snapshot.refresh(self.database_name)

    def cancel(self) -> None:
        """Requests the worker to stop and abandons the statement in flight."""
        if self._cancel_event is not None:
            self._cancel_event.set()
        self.db_executor.cancel()

    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def wait(self, timeout: Optional[float] = None) -> Optional[FuzzerError]:
        """Waits for the worker to retire and returns the failure that stopped it, if any."""
        if self._worker is not None:
            self._worker.join(timeout)
        return self.failure

    def close(self) -> None:
        """Waits for the worker, resets the working schema and releases the connection."""
        if self.state == FuzzerState.CLOSED:
            return
        self.logger.info("Shutting down fuzzer...")
        self.state = FuzzerState.DRAINING
        if self._worker is not None:
            self._worker.join()

        try:
            self.bootstrap.reset(self.database_name)
        except FuzzerError as e:
            self.logger.error(f"Cleanup of schema '{self.database_name}' failed: {e}")
        self.db_executor.close()

        self.state = FuzzerState.CLOSED
        self._log_summary()
        self.logger.info("Fuzzer shutdown completed")

    # --- Iteration loop ---

    def _run_worker(self) -> None:
        fuzzing = self.config.fuzzing
        while True:
            if self._cancel_event.is_set():
                self.logger.info("Cancellation requested, stopping iteration loop")
                break
            if fuzzing.max_iterations is not None and self.stats.iterations >= fuzzing.max_iterations:
                self.logger.info(f"Reached {fuzzing.max_iterations} iterations, stopping iteration loop")
                break

            try:
                self.progress()
            except OracleMismatchDetected as e:
                self.stats.mismatches += 1
                self.bug_reporter.report(e)
                self.failure = e
                break
            except InfrastructureFault as e:
                if self._cancel_event.is_set() and self.db_executor.is_cancellation(e):
                    self.logger.info("Statement cancelled, stopping iteration loop")
                    break
                self.stats.infrastructure_faults += 1
                self.bug_reporter.report(e, sql=self._current_sql)
                if not fuzzing.continue_on_infrastructure_fault:
                    self.failure = e
                    break
            except Exception as e:
                self.logger.exception(f"Unexpected error in iteration {self.stats.iterations}: {e}")
                self.failure = InfrastructureFault(f"unexpected error: {e}", cause=e)
                break

            if fuzzing.stats_interval and self.stats.iterations % fuzzing.stats_interval == 0:
                self._log_summary()

    def progress(self) -> None:
        """Runs one oracle iteration: pivot, synthesize, execute, verify."""
        self._current_sql = None
        self.stats.iterations += 1
        if self.config.pivot.refresh_schema_each_iteration:
            self.init()

        pivot_row, used_tables = self.pivot_selector.choose_pivot(self.snapshot.tables)
        if not used_tables:
            self.stats.skipped += 1
            self.logger.warning("All chosen tables are empty, skipping iteration")
            return

        ast = self.synthesizer.build_ast(self.config.pivot.max_depth, used_tables)
        sql, columns = self.synthesizer.render(ast, used_tables, pivot_row)
        self._current_sql = sql

        self.oracle.check(sql, pivot_row, columns)
        self.stats.successes += 1
        self.logger.info(f"run one statement [{sql}] successfully!")

    def _log_summary(self) -> None:
        summary = self.stats.get_summary()
        memory_mb = psutil.Process().memory_info().rss / (1024 * 1024)
        self.logger.info(
            f"Iterations: {summary['iterations']} (ok: {summary['successes']}, skipped: {summary['skipped']}, "
            f"faults: {summary['infrastructure_faults']}, mismatches: {summary['mismatches']}) | "
            f"{summary['iterations_per_second']:.1f} it/s | RSS {memory_mb:.1f} MB"
        )
