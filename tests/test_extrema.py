# tests/test_extrema.py
"""Unit tests for minmax and reduce_extrema."""

from __future__ import annotations

import numpy as np
import pytest

from foodweb_engine.errors import NumericDegeneracyError
from foodweb_engine.extrema import minmax, reduce_extrema

# -------------------------------------------------------------------
# minmax
# -------------------------------------------------------------------


@pytest.mark.parametrize("n", [1, 2, 3, 50])
def test_flat_sequence_returns_its_value(n: int) -> None:
    out = minmax(np.full(n, 0.37))
    assert out.shape == (1,)
    assert out[0] == pytest.approx(0.37)


def test_single_interior_maximum() -> None:
    x = np.array([0.1, 0.2, 0.5, 0.9, 0.4, 0.3, 0.2])
    assert np.array_equal(minmax(x), np.array([0.9]))


def test_minima_are_listed_before_maxima() -> None:
    x = np.array([1.0, 3.0, 0.0, 2.0, -1.0, 4.0])
    # minima at 2, 4; maxima at 1, 3
    assert np.array_equal(minmax(x), np.array([0.0, -1.0, 3.0, 2.0]))

    mins, maxs = minmax(x, return_vals=False)
    assert np.array_equal(mins, np.array([2, 4]))
    assert np.array_equal(maxs, np.array([1, 3]))


def test_endpoints_and_plateaus_are_not_extrema() -> None:
    # monotone with a plateau; the plateau is a tie, not an extremum
    x = np.array([0.0, 1.0, 1.0, 2.0, 3.0])
    assert minmax(x).size == 0

    # flat top of a hill
    y = np.array([0.0, 2.0, 2.0, 0.0])
    assert minmax(y).size == 0


def test_sine_wave_extrema() -> None:
    t = np.linspace(0.0, 4.0 * np.pi, 2001)
    vals = minmax(np.sin(t))
    assert vals.size == 4
    assert np.allclose(np.sort(vals), [-1.0, -1.0, 1.0, 1.0], atol=1e-4)


def test_positions_on_flat_sequence_warn() -> None:
    with pytest.warns(RuntimeWarning, match="constant sequence"):
        mins, maxs = minmax(np.ones(5), return_vals=False)
    assert mins.tolist() == [5]
    assert maxs.tolist() == [5]


def test_short_non_constant_sequence_raises() -> None:
    with pytest.raises(NumericDegeneracyError, match="at least 3"):
        minmax([0.1, 0.2])


def test_empty_sequence_raises() -> None:
    with pytest.raises(NumericDegeneracyError):
        minmax([])


# -------------------------------------------------------------------
# reduce_extrema
# -------------------------------------------------------------------


def test_reduce_unique_keeps_first_occurrence_order() -> None:
    out = reduce_extrema([0.5, 0.2, 0.5, 0.9, 0.2], unique_out=True)
    assert out.tolist() == [0.5, 0.2, 0.9]


def test_reduce_without_unique_keeps_duplicates() -> None:
    out = reduce_extrema([0.5, 0.5, 0.5], unique_out=False)
    assert out.tolist() == [0.5, 0.5, 0.5]


def test_reduce_subsamples_without_replacement(rng: np.random.Generator) -> None:
    values = np.arange(100, dtype=float)
    out = reduce_extrema(values, max_out=20, rng=rng)
    assert out.size == 20
    assert np.unique(out).size == 20
    assert set(out.tolist()) <= set(values.tolist())


def test_reduce_max_out_zero_is_unbounded() -> None:
    values = np.arange(30, dtype=float)
    assert reduce_extrema(values, max_out=0).size == 30


def test_reduce_is_deterministic_for_a_seed(make_rng) -> None:
    values = np.linspace(0.0, 1.0, 50)
    a = reduce_extrema(values, max_out=5, rng=make_rng(7))
    b = reduce_extrema(values, max_out=5, rng=make_rng(7))
    assert np.array_equal(a, b)
