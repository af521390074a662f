"""
Oracle implementations for detecting database bugs.
"""

from .base_oracle import BaseOracle
from .pqs_oracle import PQSOracle

__all__ = [
    'BaseOracle',
    'PQSOracle',
]
