# src/foodweb_engine/trajectory.py
"""Output grid and stored states of one integration call.

The solver appends one state per output time and, when asked to, the
accepted adaptive substeps in between; analysis code then cuts the trailing
window and reads per-species series. Nothing here evaluates a model.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
import numpy.typing as npt
import pandas as pd

from .errors import raise_invalid_config

FloatArray = npt.NDArray[np.floating[Any]]

_GRID_SHAPE_MSG = "output grid must be a non-empty 1D array, got shape {shape}"
_GRID_ORDER_MSG = "output grid must be strictly increasing in time"
_NAMES_MSG = "got {actual} species names for {expected} state variables"
_STATE_SHAPE_MSG = "{what} state has shape {actual}, expected {expected}"
_NO_HISTORY_MSG = "state history was not kept (store_history=False)"
_PARTIAL_MSG = "trajectory is incomplete: {done} of {total} output times filled"
_FULL_MSG = "every output time already holds a state"
_SUBSTEP_TIME_MSG = "substep at t = {t} lies outside the current interval ({t0}, {t1})"
_UNKNOWN_SPECIES_MSG = "Unknown species: {species!r}"


@dataclass(slots=True)
class TrajectoryOptions:
    """Optional settings of a :class:`Trajectory`.

    Attributes:
        species_names: Column names of the state vector; ``x0, x1, ...`` if
            omitted.
        store_history: Keep every output state. Without history only the
            latest state survives.
        record_substeps: Also keep the states of accepted adaptive substeps
            between output times. Requires ``store_history``.
    """

    species_names: tuple[str, ...] | None = None
    store_history: bool = True
    record_substeps: bool = False


def uniform_time_grid(duration: float, steplength: float, *, t0: float = 0.0) -> np.ndarray:
    """Build the output grid ``t0, t0 + h, ..., t0 + duration``.

    The number of steps is ``round(duration / steplength)``; the final point is
    exactly ``t0 + n_steps * steplength``.

    Raises:
        ConfigurationError: If duration or steplength are not positive, or if
            duration is shorter than one step.
    """
    if not (duration > 0.0):
        raise_invalid_config(name="ts_length", detail="must be > 0", value=duration)
    if not (steplength > 0.0):
        raise_invalid_config(name="steplength", detail="must be > 0", value=steplength)
    n_steps = int(round(float(duration) / float(steplength)))
    if n_steps < 1:
        raise_invalid_config(
            name="steplength",
            detail="must not exceed the simulated duration",
            value=steplength,
        )
    return float(t0) + np.arange(n_steps + 1, dtype=np.float64) * float(steplength)


def _as_grid(time_grid: npt.ArrayLike) -> np.ndarray:
    grid = np.asarray(time_grid, dtype=np.float64)
    if grid.ndim != 1 or grid.size == 0:
        raise ValueError(_GRID_SHAPE_MSG.format(shape=grid.shape))
    if np.any(np.diff(grid) <= 0):
        raise ValueError(_GRID_ORDER_MSG)
    return grid


class Trajectory:
    """Time grid plus the state vector stored at each output time.

    ``times`` and ``states`` are the samples in time order: the output grid,
    merged with recorded substeps if there are any.
    """

    def __init__(
        self,
        n_states: int,
        time_grid: npt.ArrayLike,
        *,
        options: TrajectoryOptions | None = None,
    ) -> None:
        opts = options or TrajectoryOptions()
        self.time_grid = _as_grid(time_grid)
        self.n_timesteps = self.time_grid.size

        self.n_states = int(n_states)
        names = opts.species_names or tuple(f"x{i}" for i in range(self.n_states))
        if len(names) != self.n_states:
            raise ValueError(_NAMES_MSG.format(actual=len(names), expected=self.n_states))
        self.species_names = tuple(names)

        self.current_step = 0
        self.current_state = np.zeros(self.n_states)
        self.state_array: FloatArray | None = (
            np.zeros((self.n_timesteps, self.n_states)) if opts.store_history else None
        )
        self.record_substeps = bool(opts.record_substeps and opts.store_history)
        self._sub_times: list[float] = []
        self._sub_states: list[np.ndarray] = []
        self._merged: tuple[np.ndarray, FloatArray] | None = None

    def _coerce(self, state: npt.ArrayLike, what: str) -> np.ndarray:
        arr = np.asarray(state, dtype=np.float64)
        if arr.shape != (self.n_states,):
            raise ValueError(
                _STATE_SHAPE_MSG.format(what=what, actual=arr.shape, expected=(self.n_states,))
            )
        return arr

    def _store(self, state: np.ndarray) -> None:
        self.current_state[:] = state
        if self.state_array is not None:
            self.state_array[self.current_step] = state

    # ------------------------------------------------------------------
    # Filling
    # ------------------------------------------------------------------

    @property
    def is_complete(self) -> bool:
        """True once the last output time holds a state."""
        return self.current_step == self.n_timesteps - 1

    def set_initial_state(self, initial_state: npt.ArrayLike) -> None:
        """Store the state at the first output time and rewind to it."""
        state = self._coerce(initial_state, "Initial")
        self.current_step = 0
        self._sub_times.clear()
        self._sub_states.clear()
        self._merged = None
        self._store(state)

    def append_state(self, next_state: npt.ArrayLike) -> None:
        """Store the state reached at the next output time.

        Raises:
            ValueError: If the state has the wrong shape.
            RuntimeError: If the trajectory is already complete.
        """
        state = self._coerce(next_state, "Next")
        if self.is_complete:
            raise RuntimeError(_FULL_MSG)
        self.current_step += 1
        self._merged = None
        self._store(state)

    def record_substep(self, t: float, state: npt.ArrayLike) -> None:
        """Keep an accepted substep strictly inside the interval being filled.

        Ignored unless ``record_substeps`` is on.

        Raises:
            ValueError: If the state has the wrong shape or ``t`` is not
                between the current and the next output time.
        """
        if not self.record_substeps:
            return
        arr = self._coerce(state, "Substep")
        if self.is_complete:
            raise RuntimeError(_FULL_MSG)
        t0 = self.time_grid[self.current_step]
        t1 = self.time_grid[self.current_step + 1]
        if not (t0 < t < t1):
            raise ValueError(_SUBSTEP_TIME_MSG.format(t=t, t0=t0, t1=t1))
        self._sub_times.append(float(t))
        self._sub_states.append(arr.copy())
        self._merged = None

    # ------------------------------------------------------------------
    # Samples
    # ------------------------------------------------------------------

    def _samples(self) -> tuple[np.ndarray, FloatArray]:
        if self.state_array is None:
            raise RuntimeError(_NO_HISTORY_MSG)
        if not self.is_complete:
            raise RuntimeError(
                _PARTIAL_MSG.format(done=self.current_step + 1, total=self.n_timesteps)
            )
        if not self._sub_times:
            return self.time_grid, self.state_array
        if self._merged is None:
            times = np.concatenate([self.time_grid, self._sub_times])
            states = np.vstack([self.state_array, np.asarray(self._sub_states)])
            order = np.argsort(times, kind="stable")
            self._merged = (times[order], states[order])
        return self._merged

    @property
    def n_substeps(self) -> int:
        return len(self._sub_times)

    @property
    def times(self) -> np.ndarray:
        """Sample times, shape ``(n_samples,)``."""
        return self._samples()[0]

    @property
    def states(self) -> FloatArray:
        """Sampled states, shape ``(n_samples, n_states)``."""
        return self._samples()[1]

    @property
    def final_state(self) -> np.ndarray:
        """Copy of the latest stored state."""
        return self.current_state.copy()

    def species_index(self, species: str | int) -> int:
        if isinstance(species, (int, np.integer)):
            if not (0 <= species < self.n_states):
                raise IndexError(_UNKNOWN_SPECIES_MSG.format(species=species))
            return int(species)
        if species not in self.species_names:
            raise ValueError(_UNKNOWN_SPECIES_MSG.format(species=species))
        return self.species_names.index(species)

    def species(self, species: str | int) -> FloatArray:
        """Time series of one species, by name or column index."""
        return self.states[:, self.species_index(species)]

    # ------------------------------------------------------------------
    # Analysis views
    # ------------------------------------------------------------------

    def window(self, fraction: float) -> Trajectory:
        """Trailing part of the run as a new, complete Trajectory.

        Samples with ``t > t_end - fraction * (t_end - t_start)`` are kept,
        i.e. ``t > t_end * (1 - fraction)`` for runs starting at 0. If no
        sample is that late, the last one is kept alone. Recorded substeps
        become ordinary samples of the result.

        Raises:
            ConfigurationError: If fraction is outside (0, 1].
        """
        if not (0.0 < fraction <= 1.0):
            raise_invalid_config(name="analyze_ts", detail="must lie in (0, 1]", value=fraction)
        times, states = self._samples()
        t_start, t_end = times[0], times[-1]
        keep = times > t_end - fraction * (t_end - t_start)
        keep[-1] = True

        out = Trajectory(
            self.n_states,
            times[keep],
            options=TrajectoryOptions(species_names=self.species_names),
        )
        out.state_array[:] = states[keep]  # type: ignore[index]
        out.current_step = out.n_timesteps - 1
        out.current_state[:] = states[-1]
        return out

    def to_frame(self) -> pd.DataFrame:
        """``Time`` column followed by one column per species."""
        times, states = self._samples()
        frame = pd.DataFrame(states, columns=list(self.species_names))
        frame.insert(0, "Time", times)
        return frame
