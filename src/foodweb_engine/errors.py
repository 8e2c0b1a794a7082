# src/foodweb_engine/errors.py
"""Error types and standardized raise helpers for foodweb_engine.

This module centralizes:
- explicit error classes with actionable messages, and
- small helpers that build those messages consistently.

Design intent:
- configuration problems are detected before any simulation work starts
- a failing q-value aborts the whole sweep (fail-fast) and names itself
- species extinction is a valid trajectory outcome and never raises
"""

from __future__ import annotations

from typing import Final

_CONFIG_HINT_MSG: Final[str] = (
    "Check the sweep configuration (or the matching command line option) and "
    "run again; no simulation work has been started."
)


class FoodwebEngineError(Exception):
    """Base exception for foodweb_engine errors."""


class ConfigurationError(FoodwebEngineError, ValueError):
    """Raised when a sweep, model or solver parameter is invalid."""


class NumericDegeneracyError(FoodwebEngineError, ValueError):
    """Raised when a trajectory window is too short to evaluate."""


class IntegrationError(FoodwebEngineError, RuntimeError):
    """Raised when the solver cannot advance to the next output time."""


class SweepWorkerError(FoodwebEngineError, RuntimeError):
    """Raised when a sweep worker fails on one q-value.

    The constructor arguments are stored in ``args`` unchanged so the error
    survives pickling across worker processes.

    Attributes:
        chunk_index: Index of the chunk (worker) that failed.
        q_value: The q-value being simulated when the failure happened.
        detail: Human-readable description of the underlying error.
    """

    def __init__(self, chunk_index: int, q_value: float, detail: str) -> None:
        super().__init__(chunk_index, q_value, detail)
        self.chunk_index = int(chunk_index)
        self.q_value = float(q_value)
        self.detail = str(detail)

    def __str__(self) -> str:
        return (
            f"Sweep worker for chunk {self.chunk_index} failed at "
            f"q = {self.q_value!r}: {self.detail}"
        )


def invalid_config_error(
    *, name: str, detail: str, value: object = None
) -> ConfigurationError:
    """Build a standardized ConfigurationError without raising it.

    Args:
        name: Name of the offending parameter.
        detail: Human-readable description of the violated constraint.
        value: Optional offending value (included when not None).

    Returns:
        The error instance.
    """
    parts: list[str] = [f"Invalid parameter '{name}': {detail.rstrip('.')}."]
    if value is not None:
        parts.append(f"Got: {value!r}.")
    parts.append(_CONFIG_HINT_MSG)
    return ConfigurationError(" ".join(parts))


def raise_invalid_config(*, name: str, detail: str, value: object = None) -> None:
    """Raise a standardized ConfigurationError.

    Raises:
        ConfigurationError: Always.
    """
    raise invalid_config_error(name=name, detail=detail, value=value)


def require_positive(name: str, value: float) -> None:
    """Require that a numeric parameter is strictly positive.

    Args:
        name: Parameter name used in the error message.
        value: Value to check.

    Raises:
        ConfigurationError: If value is not a finite number > 0.
    """
    v = float(value)
    if not (v > 0.0) or v == float("inf"):
        raise_invalid_config(name=name, detail="must be a finite number > 0", value=value)


def raise_numeric_degeneracy(*, n_samples: int, minimum: int = 3) -> None:
    """Raise a standardized NumericDegeneracyError.

    Args:
        n_samples: Number of samples in the offending sequence.
        minimum: Minimum number of samples needed.

    Raises:
        NumericDegeneracyError: Always.
    """
    msg = (
        f"Cannot detect extrema in a non-constant sequence of {n_samples} "
        f"sample(s); at least {minimum} are required. The analysis window is "
        "too short: increase ts_length/analyze_ts or decrease steplength."
    )
    raise NumericDegeneracyError(msg)
