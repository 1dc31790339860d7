# src/housingflow/errors.py
"""Exceptions raised across housingflow.

Each error also derives from the built-in type the rest of the code base
would otherwise raise (ValueError / KeyError / RuntimeError), so callers
catching the broad type keep working.
"""
from __future__ import annotations

from typing import Any

__all__ = [
    "HousingflowError",
    "InvalidFractionError",
    "InvalidFoldCountError",
    "UnknownColumnError",
    "RoleConflictError",
    "SchemaMismatchError",
    "NonPositiveValueError",
    "UnseenLevelError",
    "UnresolvedHyperparameterError",
    "TuningFailedError",
    "ConfigError",
]


class HousingflowError(Exception):
    """Base exception for housingflow errors."""


class InvalidFractionError(HousingflowError, ValueError):
    """Raised when a split proportion is not strictly between 0 and 1."""


class InvalidFoldCountError(HousingflowError, ValueError):
    """Raised when k < 2 or k exceeds the number of rows to partition."""


class UnknownColumnError(HousingflowError, KeyError):
    """Raised when a selector or name refers to no column of the table."""

    def __str__(self) -> str:
        # KeyError repr-quotes its message; keep it readable.
        return str(self.args[0]) if self.args else ""


class RoleConflictError(HousingflowError, ValueError):
    """Raised when role assignment yields zero or several outcome columns."""


class SchemaMismatchError(HousingflowError, ValueError):
    """Raised when a table lacks columns a prepared recipe requires."""


class NonPositiveValueError(HousingflowError, ValueError):
    """Raised by the log step on zero or negative input."""


class UnseenLevelError(HousingflowError, ValueError):
    """Raised when a categorical level was not seen at preparation time."""


class UnresolvedHyperparameterError(HousingflowError, ValueError):
    """Raised when fitting a model whose hyperparameters are still tune() markers."""


class TuningFailedError(HousingflowError, RuntimeError):
    """Raised after a grid search in which one or more cells failed.

    The partial result (successful cells plus the collected per-cell errors)
    is available as ``.result``.
    """

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class ConfigError(HousingflowError, ValueError):
    """Raised when configs/config.yaml is missing keys or holds invalid values."""
