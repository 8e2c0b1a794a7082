# src/foodweb_engine/config.py
"""Configuration models for chain and web sweeps.

This module defines the pydantic-facing sweep configuration objects and
translates them into native solver RunConfig objects.

Notes:
    - Configs are frozen and forbid unknown keys; a typo in an option name is
      a configuration error, not a silently ignored field.
    - ``noC`` (worker count) is accepted under its historical name and as
      ``n_workers``.
    - Use :func:`load_chain_config` / :func:`load_web_config` to build configs
      from plain mappings; they report pydantic validation failures as
      :class:`~foodweb_engine.errors.ConfigurationError`.
"""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final, Literal

import numpy as np
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .core_solver import AdaptiveConfig, DtControllerConfig, MethodName, RunConfig
from .errors import invalid_config_error
from .parameters import (
    DEFAULT_A,
    DEFAULT_B,
    DEFAULT_E,
    DEFAULT_N0,
    DEFAULT_R,
    DEFAULT_RRANGE,
    DEFAULT_Y,
)

Regime = Literal["strong", "weak"]

DEFAULT_WORKER_FRACTION: Final[float] = 0.75

# regime -> (relative max feeding rate y, output file name)
REGIMES: Final[dict[str, tuple[float, str]]] = {
    "strong": (8.0, "strong_interactions.csv"),
    "weak": (4.0, "weak_interactions.csv"),
}

_VALUE_ERROR_PREFIX = "Value error, "


def default_worker_count(fraction: float = DEFAULT_WORKER_FRACTION) -> int:
    """Return ``ceil(fraction * cpu_count)``, at least 1."""
    return max(1, math.ceil(fraction * (os.cpu_count() or 1)))


def _as_float_tuple(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return value
    try:
        return tuple(np.asarray(value, dtype=np.float64).ravel().tolist())
    except (TypeError, ValueError):
        return value


class _SweepConfigBase(BaseModel):
    """Options shared by both sweep kinds."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    qrange: tuple[float, ...]
    steplength: float = Field(gt=0.0, description="Nominal output step size")
    output_path: Path = Field(
        default=Path("SIM_OUT"),
        description="Directory receiving the output tables",
    )
    n_workers: int | None = Field(
        default=None,
        ge=1,
        alias="noC",
        description="Worker processes (None: 75% of available CPUs)",
    )
    seed: int | None = Field(
        default=None,
        ge=0,
        description="Seed for initial conditions, shuffling and body-mass draws",
    )

    # Allometric inputs
    a: float = Field(default=DEFAULT_A, gt=0.0)
    b: float = Field(default=DEFAULT_B)
    e: float = Field(default=DEFAULT_E, gt=0.0, le=1.0)
    y: float = Field(default=DEFAULT_Y, gt=0.0)
    N0: float = Field(default=DEFAULT_N0, gt=0.0)  # noqa: N815

    # Solver controls
    method: MethodName = Field(default="cash-karp", description="Integration method")
    rtol: float = Field(default=1e-8, gt=0.0)
    atol: float = Field(default=1e-8, gt=0.0)

    @field_validator("qrange", mode="before")
    @classmethod
    def coerce_qrange(cls, value: Any) -> Any:
        return _as_float_tuple(value)

    @field_validator("qrange")
    @classmethod
    def check_qrange(cls, value: tuple[float, ...]) -> tuple[float, ...]:
        if len(value) == 0:
            msg = "must contain at least one q-value"
            raise ValueError(msg)
        if not all(math.isfinite(q) and q >= 0.0 for q in value):
            msg = "q-values must be finite and >= 0"
            raise ValueError(msg)
        return value

    def worker_count(self) -> int:
        """Requested worker count, falling back to the CPU-based default."""
        return self.n_workers if self.n_workers is not None else default_worker_count()

    def to_run_config(self) -> RunConfig:
        """Convert this config to a native RunConfig.

        Returns:
            Fully constructed RunConfig instance.
        """
        return RunConfig(
            method=self.method,
            adaptive=True,
            strict=True,
            adaptive_cfg=AdaptiveConfig(rtol=self.rtol, atol=self.atol),
            dt_controller=DtControllerConfig(),
        )


class ChainSweepConfig(_SweepConfigBase):
    """Sweep of the three-species chain producing bifurcation tables."""

    qrange: tuple[float, ...] = Field(
        default_factory=lambda: tuple(np.linspace(0.0, 0.2, 501).tolist()),
        description="Shaping exponents to simulate",
    )
    ts_length: float = Field(default=100_000.0, gt=0.0, description="Simulated time")
    steplength: float = Field(default=0.5, gt=0.0)
    analyze_ts: float = Field(
        default=0.05,
        gt=0.0,
        le=1.0,
        description="Trailing share of the simulated time analyzed for extrema",
    )
    unique_out: bool = Field(default=True, description="Drop repeated extrema")
    max_out: int = Field(
        default=20,
        ge=0,
        description="Cap on extrema kept per species and q-value (0: no cap)",
    )
    R: float = Field(default=DEFAULT_R, gt=0.0)  # noqa: N815
    record_substeps: bool = Field(
        default=True,
        description="Also search extrema on accepted adaptive substeps",
    )

    @model_validator(mode="after")
    def check_horizon(self) -> ChainSweepConfig:
        if self.steplength > self.ts_length:
            msg = "steplength: must not exceed ts_length"
            raise ValueError(msg)
        return self


class WebSweepConfig(_SweepConfigBase):
    """Sweep of the ten-species web producing a diversity table."""

    qrange: tuple[float, ...] = Field(
        default_factory=lambda: tuple(np.linspace(0.0, 4.0, 201).tolist()),
        description="Shaping exponents to simulate",
    )
    steplength: float = Field(default=1.0, gt=0.0)
    ts_runs: int = Field(default=10, ge=1, description="Number of resumed segments")
    ts_run_length: float = Field(
        default=500.0, gt=0.0, description="Simulated time per segment"
    )
    Rrange: tuple[float, float] = Field(default=DEFAULT_RRANGE)  # noqa: N815
    output_filename: str = Field(default=REGIMES["strong"][1], min_length=1)
    rtol: float = Field(default=1e-12, gt=0.0)
    atol: float = Field(default=1e-12, gt=0.0)

    @field_validator("Rrange")
    @classmethod
    def check_rrange(cls, value: tuple[float, float]) -> tuple[float, float]:
        r_min, r_max = value
        if not (r_min > 0.0 and r_max > 0.0):
            msg = "bounds must be > 0"
            raise ValueError(msg)
        if not r_min < r_max:
            msg = "min must be < max"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def check_horizon(self) -> WebSweepConfig:
        if self.steplength > self.ts_run_length:
            msg = "steplength: must not exceed ts_run_length"
            raise ValueError(msg)
        return self

    @classmethod
    def for_regime(cls, regime: Regime, **overrides: Any) -> WebSweepConfig:
        """Build a config for a named interaction-strength regime.

        Args:
            regime: "strong" (y = 8) or "weak" (y = 4).
            **overrides: Further options; explicit ``y``/``output_filename``
                win over the preset.

        Returns:
            Validated WebSweepConfig.

        Raises:
            ConfigurationError: If the regime or an option is invalid.
        """
        if regime not in REGIMES:
            raise invalid_config_error(
                name="regime", detail=f"must be one of {sorted(REGIMES)}", value=regime
            )
        y, filename = REGIMES[regime]
        data = {"y": y, "output_filename": filename, **overrides}
        return load_web_config(data)


def _translate(exc: ValidationError) -> Exception:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err["loc"])
    detail = str(err["msg"]).removeprefix(_VALUE_ERROR_PREFIX)
    value = err.get("input")
    if not loc:
        # model-level checks name their parameter as "<name>: <detail>"
        loc, _, detail = detail.partition(": ")
        value = None
    if isinstance(value, Mapping):
        value = None
    return invalid_config_error(name=loc, detail=detail, value=value)


def load_chain_config(
    data: Mapping[str, Any] | None = None, **overrides: Any
) -> ChainSweepConfig:
    """Validate chain sweep options.

    Raises:
        ConfigurationError: Naming the first offending option.
    """
    try:
        return ChainSweepConfig.model_validate({**(data or {}), **overrides})
    except ValidationError as exc:
        raise _translate(exc) from exc


def load_web_config(
    data: Mapping[str, Any] | None = None, **overrides: Any
) -> WebSweepConfig:
    """Validate web sweep options.

    Raises:
        ConfigurationError: Naming the first offending option.
    """
    try:
        return WebSweepConfig.model_validate({**(data or {}), **overrides})
    except ValidationError as exc:
        raise _translate(exc) from exc
