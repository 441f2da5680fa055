"""
Observability module: structured logging and operation statistics.
"""

from commtrack.observability.logging import StructuredLogger, LogLevel, setup_logging
from commtrack.observability.metrics import OperationStats

__all__ = [
    "StructuredLogger",
    "LogLevel",
    "setup_logging",
    "OperationStats",
]
