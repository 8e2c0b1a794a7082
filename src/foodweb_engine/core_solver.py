# src/foodweb_engine/core_solver.py
"""Explicit Runge-Kutta integration of population models.

A :class:`CoreSolver` advances an ``rhs(t, y)`` callable across the output
grid of a :class:`Trajectory`, appending the state reached at every output
time. With ``adaptive=True`` each output interval is covered by
error-controlled substeps, the last one clipped to land on the output time;
otherwise one step spans the interval.

Methods (``RunConfig.method``):
    - "euler": Euler with a step-doubling error estimate (order 1).
    - "heun": Heun's method with its embedded Euler predictor.
    - "cash-karp": Cash-Karp 5(4); propagates the fifth-order solution.
    - "rk45", "dop853": handed to ``scipy.integrate.solve_ivp``, always adaptive.

:meth:`CoreSolver.run_segments` restarts the integration ``n_runs`` times from
the previous segment's final state. Species that dropped below the
extinction threshold in any segment restart at exactly zero.

Scratch arrays are allocated once per solver and reused by every step.
"""

from __future__ import annotations

import warnings
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Final, Literal

import numpy as np
from numpy.typing import NDArray
from scipy.integrate import solve_ivp

from .errors import IntegrationError, raise_invalid_config
from .trajectory import Trajectory, TrajectoryOptions, uniform_time_grid

_RHS_SHAPE_MSG = "rhs shape {actual} differs from state shape {expected}"
_UNKNOWN_METHOD_MSG = "Unknown method: {method}"
_REJECTS_MSG = "Too many rejected steps before t = {t1} (stuck at t = {t}, last dt = {dt})"
_UNDERFLOW_MSG = "step size dropped below dt_min before t = {t1}"
_MAX_STEPS_MSG = "Exceeded max_steps ({limit}) before t = {t1}"
_SCIPY_FAILED_MSG = "solve_ivp ({method}) failed: {message}"
_ALWAYS_ADAPTIVE_MSG = "Method '{method}' is always adaptive; adaptive=False is ignored."

EXTINCTION_THRESHOLD: Final[float] = 1e-10
INITIAL_STATE_RANGE: Final[tuple[float, float]] = (0.1, 1.0)

RHSFunction = Callable[[float, NDArray[np.floating]], NDArray[np.floating]]
MethodName = Literal["euler", "heun", "cash-karp", "rk45", "dop853"]

_SCIPY_METHODS: Final[dict[str, str]] = {"rk45": "RK45", "dop853": "DOP853"}


@dataclass(frozen=True)
class _Tableau:
    """Explicit Butcher tableau with an embedded error row ``e = b - b_hat``."""

    c: NDArray[np.floating]
    a: tuple[tuple[float, ...], ...]
    b: NDArray[np.floating]
    e: NDArray[np.floating]
    err_order: int

    @property
    def stages(self) -> int:
        return self.b.size


_HEUN = _Tableau(
    c=np.array([0.0, 1.0]),
    a=((), (1.0,)),
    b=np.array([0.5, 0.5]),
    e=np.array([-0.5, 0.5]),
    err_order=1,
)

_CK_B5 = np.array([37 / 378, 0.0, 250 / 621, 125 / 594, 0.0, 512 / 1771])
_CK_B4 = np.array([2825 / 27648, 0.0, 18575 / 48384, 13525 / 55296, 277 / 14336, 1 / 4])
_CASH_KARP = _Tableau(
    c=np.array([0.0, 1 / 5, 3 / 10, 3 / 5, 1.0, 7 / 8]),
    a=(
        (),
        (1 / 5,),
        (3 / 40, 9 / 40),
        (3 / 10, -9 / 10, 6 / 5),
        (-11 / 54, 5 / 2, -70 / 27, 35 / 27),
        (1631 / 55296, 175 / 512, 575 / 13824, 44275 / 110592, 253 / 4096),
    ),
    b=_CK_B5,
    e=_CK_B5 - _CK_B4,
    err_order=4,
)


@dataclass(slots=True, frozen=True)
class DtControllerConfig:
    """Bounds and gains of the substep-size controller.

    Attributes:
        dt_min: Smallest substep; reaching it on a rejection is an error
            (0 disables the check).
        dt_max: Largest substep.
        safety: Factor applied to the optimal step-size ratio.
        fac_min: Lower bound of the per-step change ratio.
        fac_max: Upper bound of the per-step change ratio.
    """

    dt_min: float = 0.0
    dt_max: float = float("inf")
    safety: float = 0.9
    fac_min: float = 0.2
    fac_max: float = 5.0


@dataclass(slots=True, frozen=True)
class AdaptiveConfig:
    """Tolerances and work limits of adaptive substepping.

    Attributes:
        rtol: Relative tolerance.
        atol: Absolute tolerance, scalar or per species.
        dt_init: First substep guess; the output step is used when None.
        max_reject: Rejected attempts allowed per accepted substep.
        max_steps: Accepted substeps allowed per output interval.
    """

    rtol: float = 1e-8
    atol: float | NDArray[np.floating] = 1e-8
    dt_init: float | None = None
    max_reject: int = 25
    max_steps: int = 1_000_000


@dataclass(slots=True, frozen=True)
class RunConfig:
    """Settings of a :class:`CoreSolver`.

    With ``strict=False`` a SciPy method combined with ``adaptive=False`` only
    warns; with ``strict=True`` it raises.
    """

    method: str = "cash-karp"
    adaptive: bool = True
    strict: bool = True
    dt_controller: DtControllerConfig = DtControllerConfig()
    adaptive_cfg: AdaptiveConfig = AdaptiveConfig()


@dataclass(slots=True)
class SegmentedRun:
    """Result of :meth:`CoreSolver.run_segments`.

    Attributes:
        last_segment: Trajectory of the final segment.
        initial_states: Start state of every segment, shape (n_runs, n_states).
        final_state: End state of the last segment, extinct species zeroed.
        extinct: Species that fell below the threshold in any segment.
        threshold: Extinction threshold used.
    """

    last_segment: Trajectory
    initial_states: NDArray[np.floating]
    final_state: NDArray[np.floating]
    extinct: NDArray[np.bool_]
    threshold: float = field(default=EXTINCTION_THRESHOLD)

    def survivors(self) -> NDArray[np.bool_]:
        """Species above the threshold at some output time of the last segment."""
        return np.asarray((self.last_segment.states > self.threshold).any(axis=0))

    def count_survivors(self) -> int:
        return int(self.survivors().sum())


def random_initial_state(
    n_states: int,
    rng: np.random.Generator,
    *,
    low: float = INITIAL_STATE_RANGE[0],
    high: float = INITIAL_STATE_RANGE[1],
) -> NDArray[np.float64]:
    """Draw independent U(low, high) initial densities."""
    return rng.uniform(low, high, size=int(n_states)).astype(np.float64)


def _next_dt(dt: float, err_norm: float, order: int, ctrl: DtControllerConfig) -> float:
    """Standard controller ``dt * safety * err^(-1/(order+1))``, ratio- and range-bounded."""
    if err_norm == 0.0:
        ratio = ctrl.fac_max
    else:
        ratio = ctrl.safety * err_norm ** (-1.0 / (order + 1))
        ratio = min(ctrl.fac_max, max(ctrl.fac_min, ratio))
    return float(np.clip(dt * ratio, ctrl.dt_min, ctrl.dt_max))


class CoreSolver:
    """Explicit ODE solver filling :class:`Trajectory` output grids."""

    def __init__(
        self,
        rhs_func: RHSFunction,
        n_states: int,
        *,
        config: RunConfig | None = None,
        species_names: tuple[str, ...] | None = None,
    ) -> None:
        """Create a solver for ``dy/dt = rhs_func(t, y)``.

        Args:
            rhs_func: Derivative of a 1D state vector.
            n_states: Length of the state vector.
            config: Method and tolerances; defaults to adaptive Cash-Karp.
            species_names: Names attached to produced trajectories.

        Raises:
            ConfigurationError: If the method is unknown, or a SciPy method is
                requested with ``adaptive=False`` under ``strict=True``.
        """
        self.rhs_func = rhs_func
        self.n_states = int(n_states)
        self.species_names = species_names
        self.config = config or RunConfig()
        self.method: MethodName = self._resolve_method(self.config.method)

        kernels: dict[str, Callable[[float, float, NDArray[np.floating]], int]] = {
            "euler": self._euler_doubling,
            "heun": partial(self._rk_step, _HEUN),
            "cash-karp": partial(self._rk_step, _CASH_KARP),
        }
        self._step = kernels.get(self.method)

        n = self.n_states
        self._k = np.zeros((_CASH_KARP.stages, n))
        self._y_stage = np.zeros(n)
        self._y_coarse = np.zeros(n)
        self._err = np.zeros(n)
        self._weights = np.zeros(n)
        self._y_curr = np.zeros(n)
        self._y_try = np.zeros(n)
        # substep size carried from one output interval to the next
        self._dt_carry: float | None = None

    def _resolve_method(self, method: str) -> MethodName:
        name = str(method).strip().lower()
        if name not in ("euler", "heun", "cash-karp") and name not in _SCIPY_METHODS:
            raise_invalid_config(name="method", detail=_UNKNOWN_METHOD_MSG.format(method=method))
        if name in _SCIPY_METHODS and not self.config.adaptive:
            msg = _ALWAYS_ADAPTIVE_MSG.format(method=name)
            if self.config.strict:
                raise_invalid_config(name="adaptive", detail=msg)
            warnings.warn(msg, RuntimeWarning, stacklevel=3)
        return name  # type: ignore[return-value]

    def _rhs_into(self, out: NDArray[np.floating], t: float, y: NDArray[np.floating]) -> None:
        f = np.asarray(self.rhs_func(float(t), y), dtype=np.float64)
        if f.shape != out.shape:
            raise ValueError(_RHS_SHAPE_MSG.format(actual=f.shape, expected=out.shape))
        out[:] = f

    # ------------------------------------------------------------------
    # Step kernels: write the proposal into _y_try and the local error
    # estimate into _err, return the order of that estimate.
    # ------------------------------------------------------------------

    def _euler_doubling(self, t: float, h: float, y: NDArray[np.floating]) -> int:
        k0, k1 = self._k[0], self._k[1]
        self._rhs_into(k0, t, y)
        np.multiply(k0, h, out=self._y_coarse)
        self._y_coarse += y

        np.multiply(k0, 0.5 * h, out=self._y_stage)
        self._y_stage += y
        self._rhs_into(k1, t + 0.5 * h, self._y_stage)
        np.multiply(k1, 0.5 * h, out=self._y_try)
        self._y_try += self._y_stage

        np.subtract(self._y_try, self._y_coarse, out=self._err)
        return 1

    def _rk_step(self, tab: _Tableau, t: float, h: float, y: NDArray[np.floating]) -> int:
        k = self._k[: tab.stages]
        self._rhs_into(k[0], t, y)
        for s in range(1, tab.stages):
            self._y_stage[:] = y
            for j, a_sj in enumerate(tab.a[s]):
                if a_sj != 0.0:
                    self._y_stage += (h * a_sj) * k[j]
            self._rhs_into(k[s], t + tab.c[s] * h, self._y_stage)

        np.dot(tab.b, k, out=self._y_try)
        self._y_try *= h
        self._y_try += y
        np.dot(tab.e, k, out=self._err)
        self._err *= h
        return tab.err_order

    # ------------------------------------------------------------------
    # Output intervals
    # ------------------------------------------------------------------

    def _error_norm(self, y_new: NDArray[np.floating], y_old: NDArray[np.floating]) -> float:
        """RMS of ``err / (atol + rtol * max(|y_new|, |y_old|))``; inf if not finite."""
        cfg = self.config.adaptive_cfg
        w = self._weights
        np.maximum(np.abs(y_new), np.abs(y_old), out=w)
        w *= cfg.rtol
        w += cfg.atol
        np.divide(self._err, w, out=w)
        norm = float(np.sqrt(np.mean(w * w)))
        return norm if np.isfinite(norm) else float("inf")

    def _accept(self) -> None:
        self._y_curr, self._y_try = self._y_try, self._y_curr

    def _first_dt(self, dt_out: float) -> float:
        if self._dt_carry is not None:
            return self._dt_carry
        guess = self.config.adaptive_cfg.dt_init
        dt = float(guess) if guess is not None and np.isfinite(guess) and guess > 0 else dt_out
        dt = min(dt, self.config.dt_controller.dt_max)
        return dt if dt > 0.0 else dt_out

    def _adaptive_interval(
        self,
        t0: float,
        t1: float,
        on_substep: Callable[[float, NDArray[np.floating]], None] | None = None,
    ) -> None:
        """Move ``_y_curr`` from t0 to exactly t1 in error-controlled substeps.

        ``on_substep(t, y)`` sees every accepted substep that ends before t1.

        Raises:
            IntegrationError: If a substep is rejected ``max_reject`` times, the
                step size underflows ``dt_min`` or ``max_steps`` is exhausted.
        """
        cfg = self.config.adaptive_cfg
        ctrl = self.config.dt_controller
        dt = self._first_dt(t1 - t0)
        t = t0
        for _ in range(cfg.max_steps):
            remaining = t1 - t
            if remaining <= 0.0:
                break
            h = min(dt, remaining)
            for _attempt in range(cfg.max_reject):
                order = self._step(t, h, self._y_curr)
                err_norm = self._error_norm(self._y_try, self._y_curr)
                proposal = _next_dt(h, err_norm, order, ctrl)
                if err_norm <= 1.0:
                    break
                if ctrl.dt_min > 0.0 and proposal <= ctrl.dt_min:
                    raise IntegrationError(_UNDERFLOW_MSG.format(t1=t1))
                h = dt = proposal
            else:
                raise IntegrationError(_REJECTS_MSG.format(t1=t1, t=t, dt=h))

            landed = h >= remaining
            t = t1 if landed else t + h
            self._accept()
            if on_substep is not None and t < t1:
                on_substep(t, self._y_curr)
            # a substep clipped to hit t1 does not shrink the next one
            dt = max(dt, proposal) if landed else proposal
        else:
            if t < t1:
                raise IntegrationError(_MAX_STEPS_MSG.format(limit=cfg.max_steps, t1=t1))
        self._dt_carry = dt

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def run(self, trajectory: Trajectory) -> Trajectory:
        """Fill a Trajectory from its current state to its last output time.

        Raises:
            IntegrationError: If an output time cannot be reached.
        """
        if self._step is None:
            return self._run_scipy(trajectory)

        self._dt_carry = None
        grid = trajectory.time_grid
        on_substep = trajectory.record_substep if trajectory.record_substeps else None
        for i in range(trajectory.current_step, trajectory.n_timesteps - 1):
            t0, t1 = float(grid[i]), float(grid[i + 1])
            self._y_curr[:] = trajectory.current_state
            if self.config.adaptive:
                self._adaptive_interval(t0, t1, on_substep)
            else:
                self._step(t0, t1 - t0, self._y_curr)
                self._accept()
            trajectory.append_state(self._y_curr)
        return trajectory

    def _run_scipy(self, trajectory: Trajectory) -> Trajectory:
        t_eval = trajectory.time_grid[trajectory.current_step :].astype(float)
        if t_eval.size < 2:
            return trajectory
        cfg = self.config.adaptive_cfg
        dense = trajectory.record_substeps
        sol = solve_ivp(
            self.rhs_func,
            (float(t_eval[0]), float(t_eval[-1])),
            trajectory.current_state.astype(float),
            method=_SCIPY_METHODS[self.method],
            t_eval=None if dense else t_eval,
            dense_output=dense,
            rtol=cfg.rtol,
            atol=cfg.atol,
            max_step=self.config.dt_controller.dt_max,
        )
        if not sol.success:
            raise IntegrationError(
                _SCIPY_FAILED_MSG.format(method=self.method, message=sol.message)
            )
        if not dense:
            for column in sol.y.T[1:]:
                trajectory.append_state(column)
            return trajectory

        # internal steps become substeps; output states come from the interpolant
        at_grid = sol.sol(t_eval).T
        steps = iter(zip(sol.t[1:-1], sol.y.T[1:-1]))
        pending = next(steps, None)
        for t1, state in zip(t_eval[1:], at_grid[1:]):
            while pending is not None and pending[0] < t1:
                if pending[0] > trajectory.time_grid[trajectory.current_step]:
                    trajectory.record_substep(*pending)
                pending = next(steps, None)
            trajectory.append_state(state)
        return trajectory

    def integrate(
        self,
        y0: NDArray[np.floating],
        duration: float,
        steplength: float,
        *,
        t0: float = 0.0,
        store_history: bool = True,
        record_substeps: bool = False,
    ) -> Trajectory:
        """Integrate from ``y0`` over ``duration``, storing every ``steplength``.

        Args:
            y0: Initial state, shape (n_states,).
            duration: Simulated time span.
            steplength: Output step size.
            t0: Start time.
            store_history: Keep every output state; False keeps only the last.
            record_substeps: Also keep accepted adaptive substeps between
                output times (adaptive runs only).
        """
        grid = uniform_time_grid(duration, steplength, t0=t0)
        options = TrajectoryOptions(
            species_names=self.species_names,
            store_history=store_history,
            record_substeps=record_substeps,
        )
        trajectory = Trajectory(self.n_states, grid, options=options)
        trajectory.set_initial_state(y0)
        return self.run(trajectory)

    def run_segments(
        self,
        y0: NDArray[np.floating],
        *,
        n_runs: int,
        run_length: float,
        steplength: float,
        threshold: float = EXTINCTION_THRESHOLD,
    ) -> SegmentedRun:
        """Chain ``n_runs`` integrations of ``run_length`` each.

        Segment ``j`` starts at ``t = j * run_length`` from the end state of
        segment ``j - 1``. A species that drops below ``threshold`` at any
        output time is restarted at 0 in every later segment.

        Raises:
            ConfigurationError: If n_runs < 1.
        """
        n_runs = int(n_runs)
        if n_runs < 1:
            raise_invalid_config(name="ts_runs", detail="must be >= 1", value=n_runs)

        state = np.array(y0, dtype=np.float64)
        extinct = np.zeros(self.n_states, dtype=bool)
        starts = np.empty((n_runs, self.n_states))
        for j in range(n_runs):
            starts[j] = state
            segment = self.integrate(state, run_length, steplength, t0=j * float(run_length))
            extinct |= (segment.states < threshold).any(axis=0)
            state = np.where(extinct, 0.0, segment.final_state)

        return SegmentedRun(
            last_segment=segment,
            initial_states=starts,
            final_state=state,
            extinct=extinct,
            threshold=float(threshold),
        )
