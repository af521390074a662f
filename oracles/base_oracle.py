# Defines the abstract base class for bug-finding oracles.
# An oracle runs a synthesized statement and decides whether the result
# contradicts what the statement was built to guarantee.

import logging
from abc import ABC, abstractmethod
from typing import Any, List

from utils.db_executor import DBExecutor, QueryCell


class BaseOracle(ABC):
    """Base class for all oracles."""

    def __init__(self, db_executor: DBExecutor):
        """Initialize oracle with the executor it runs statements on."""
        self.db_executor = db_executor
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def check(self, sql: str, *args: Any) -> List[List[QueryCell]]:
        """
        Run ``sql`` and check its result.

        Returns:
            The fetched rows when the check passes.

        Raises:
            OracleMismatchDetected: the result contradicts the oracle.
            ExecutionError: the statement could not be run.
        """
        pass

    def get_oracle_name(self) -> str:
        """
        Get the name of this oracle.

        Returns:
            The oracle's name
        """
        return self.__class__.__name__

    def get_oracle_description(self) -> str:
        """
        Get a description of what this oracle does.

        Returns:
            Description of the oracle's functionality
        """
        return f"{self.get_oracle_name()} - {self.__class__.__doc__ or 'No description available'}"
