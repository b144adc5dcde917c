"""
Activity logging module for lotbook.

Provides append-only activity logging for audit and reproducibility.
"""

from lotbook.logging.activity_log import (
    ActivityLogger,
    DecimalEncoder,
    get_logger,
)

__all__ = [
    "ActivityLogger",
    "DecimalEncoder",
    "get_logger",
]
