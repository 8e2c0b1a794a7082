"""Local extrema of a trajectory window.

A bifurcation diagram plots every long-run minimum and maximum of a species'
biomass against the swept parameter. ``minmax`` finds them with a three-point
comparison; ``reduce_extrema`` bounds how many are kept per q-value.
"""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING, Literal, overload

import numpy as np

from .errors import raise_numeric_degeneracy

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

_MIN_SAMPLES = 3
_FLAT_POSITIONS_MSG = "No extrema found in a constant sequence; returning its length"


@overload
def minmax(x: ArrayLike, return_vals: Literal[True] = ...) -> NDArray[np.float64]: ...


@overload
def minmax(
    x: ArrayLike, return_vals: Literal[False]
) -> tuple[NDArray[np.intp], NDArray[np.intp]]: ...


def minmax(
    x: ArrayLike,
    return_vals: bool = True,
) -> NDArray[np.float64] | tuple[NDArray[np.intp], NDArray[np.intp]]:
    """Return all local minima and maxima of a sequence.

    Position ``i`` is a local minimum when ``x[i-1] > x[i] < x[i+1]`` and a
    local maximum when ``x[i-1] < x[i] > x[i+1]``. Endpoints are never
    extrema and ties never count.

    A constant sequence is an equilibrium: its mean is returned as the only
    value.

    Args:
        x: 1D numeric sequence (e.g. one species' biomass density).
        return_vals: If True return values (minima first, then maxima);
            otherwise return the (minimum positions, maximum positions) pair.

    Returns:
        Extremum values, or a tuple of index arrays.

    Raises:
        NumericDegeneracyError: If x is empty, or has fewer than three samples
            and is not constant.
    """
    arr = np.asarray(x, dtype=np.float64).ravel()
    n = int(arr.size)
    if n == 0:
        raise_numeric_degeneracy(n_samples=0, minimum=_MIN_SAMPLES)

    if arr.min() == arr.max():
        if return_vals:
            return np.array([arr.mean()], dtype=np.float64)
        warnings.warn(_FLAT_POSITIONS_MSG, RuntimeWarning, stacklevel=2)
        last = np.array([n], dtype=np.intp)
        return last, last.copy()

    if n < _MIN_SAMPLES:
        raise_numeric_degeneracy(n_samples=n, minimum=_MIN_SAMPLES)

    left = arr[:-2]
    mid = arr[1:-1]
    right = arr[2:]

    min_pos = np.flatnonzero((left > mid) & (mid < right)) + 1
    max_pos = np.flatnonzero((left < mid) & (mid > right)) + 1

    if not return_vals:
        return min_pos.astype(np.intp), max_pos.astype(np.intp)
    return arr[np.concatenate((min_pos, max_pos))]


def reduce_extrema(
    values: ArrayLike,
    *,
    unique_out: bool = True,
    max_out: int = 0,
    rng: np.random.Generator | None = None,
) -> NDArray[np.float64]:
    """Deduplicate and subsample extremum values.

    Subsampling is uniform without replacement and only bounds output size;
    it does not preserve the distribution of extrema.

    Args:
        values: Extremum values for one species and one q-value.
        unique_out: Drop repeated values (first occurrence order is kept).
        max_out: Keep at most this many values; 0 keeps all.
        rng: Random source for subsampling (a fresh default_rng if None).

    Returns:
        The reduced values.
    """
    out = np.asarray(values, dtype=np.float64).ravel()

    if unique_out and out.size > 1:
        _, first = np.unique(out, return_index=True)
        out = out[np.sort(first)]

    if max_out > 0 and out.size > max_out:
        gen = rng if rng is not None else np.random.default_rng()
        out = gen.choice(out, size=int(max_out), replace=False)

    return out
