#!/usr/bin/env python3
"""
PQSFuzz - Pivoted Query Synthesis fuzzer for PostgreSQL-compatible databases

This module provides the main entry point of the fuzzer:
- Configuration loading and command line overrides
- Logging to the console and a log file
- Graceful cancellation on SIGINT/SIGTERM
- Exit codes that tell a mismatch apart from an infrastructure fault
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, List, Optional

from config import PQSFuzzConfig, build_config, create_default_config, load_config, validate_config
from core.engine import PivotFuzzer
from core.errors import ConfigError, FuzzerError
from utils.db_executor import DBExecutor

EXIT_OK = 0


def setup_logging(config: PQSFuzzConfig) -> logging.Logger:
    """
    Setup logging with a console handler and, when configured, a file handler.

    Args:
        config: Configuration object

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger()
    level = logging.DEBUG if config.debug else getattr(logging, config.logging.log_level)
    logger.setLevel(level)

    # Clear existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(name)s] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(console_handler)

    if config.logging.log_file:
        log_path = Path(config.logging.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode='w', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(levelname)s - [%(name)s] - %(funcName)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)

    return logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="PQSFuzz - Pivoted Query Synthesis fuzzer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fuzz a local YugabyteDB until a mismatch is found or Ctrl+C
  python3 main.py --dsn "host=localhost port=5433 dbname=yugabyte user=yugabyte"

  # Replay a session from its seed, with prepared statements and plan hints
  python3 main.py -c config.yaml --seed 1712345678 --prepared --hints

  # Write a default configuration file
  python3 main.py --init-config config.yaml
        """
    )

    parser.add_argument('-c', '--config', help='Configuration file path')
    parser.add_argument('--dsn', help='libpq connection string of the database under test')
    parser.add_argument('--schema', help='Working schema to wipe and rebuild')
    parser.add_argument('--seed', type=int, help='Random seed')
    parser.add_argument('--max-iterations', type=int, help='Stop after this many iterations')
    parser.add_argument('--prepared', action='store_true', help='Run synthesized queries as prepared statements')
    parser.add_argument('--hints', action='store_true', help='Prepend pg_hint_plan optimizer hints')
    parser.add_argument('--keep-going', action='store_true', help='Continue after infrastructure faults')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    parser.add_argument('--validate-only', action='store_true', help='Validate configuration and exit')
    parser.add_argument('--init-config', metavar='PATH', help='Write a default configuration file and exit')

    return parser


def resolve_config(args: argparse.Namespace) -> PQSFuzzConfig:
    """Loads the configuration file, if any, and applies command line overrides."""
    config = build_config(load_config(args.config) if args.config else {})

    if args.dsn:
        config.database.dsn = args.dsn
    if args.schema:
        config.database.schema_name = args.schema
    if args.seed is not None:
        config.random_seed = args.seed
    if args.max_iterations is not None:
        config.fuzzing.max_iterations = args.max_iterations
    if args.prepared:
        config.pivot.use_prepared_statements = True
    if args.hints:
        config.pivot.use_optimizer_hints = True
    if args.keep_going:
        config.fuzzing.continue_on_infrastructure_fault = True
    if args.debug:
        config.debug = True

    return config


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point of the fuzzer.

    Returns:
        Exit code: 0 clean stop, 1 oracle mismatch, 2 infrastructure fault,
        3 configuration error
    """
    args = build_parser().parse_args(argv)

    if args.init_config:
        create_default_config(args.init_config)
        print(f"Default configuration written to {args.init_config}")
        return EXIT_OK

    try:
        config = resolve_config(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return e.exit_code

    if not validate_config(config):
        return ConfigError.exit_code

    logger = setup_logging(config)

    if args.validate_only:
        return EXIT_OK

    cancel_event = threading.Event()
    fuzzer: Optional[PivotFuzzer] = None

    def signal_handler(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signal.Signals(signum).name}, initiating graceful shutdown...")
        cancel_event.set()
        if fuzzer is not None:
            fuzzer.cancel()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(f"PQSFuzz starting with seed {config.random_seed}")
    try:
        fuzzer = PivotFuzzer(config.database.to_dsn(), config.database.schema_name, config)
        fuzzer.start(cancel_event)
        while fuzzer.is_running():
            fuzzer.wait(timeout=1.0)
        failure = fuzzer.failure
    except FuzzerError as e:
        if cancel_event.is_set() and DBExecutor.is_cancellation(e):
            logger.info("Setup interrupted by cancellation")
            failure = None
        else:
            logger.error(f"Fuzzer setup failed: {e}")
            failure = e
    finally:
        if fuzzer is not None:
            fuzzer.close()

    if failure is not None:
        logger.error(f"Session ended by {failure.__class__.__name__}: {failure.message}")
        return failure.exit_code

    logger.info("PQSFuzz completed successfully")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
