"""
Core risk algorithms
"""

from .errors import ErrorCategory, ErrorCode, PerpInvariantError, PerpsError, error_for, require
from .fixed_point import BPS_SCALE, FP

__all__ = [
    "ErrorCategory",
    "ErrorCode",
    "PerpInvariantError",
    "PerpsError",
    "error_for",
    "require",
    "BPS_SCALE",
    "FP",
]
