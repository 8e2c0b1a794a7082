# tests/test_models.py
"""Unit tests for the model evaluators and the functional response."""

from __future__ import annotations

import numpy as np
import pytest

from foodweb_engine.models import (
    CHAIN_SPECIES,
    WEB_DIET,
    FoodChain,
    FoodWeb,
    Topology,
    functional_response,
    functional_response_table,
    make_model,
    trophic_levels,
)
from foodweb_engine.parameters import set_foodchain_parms, set_foodweb_parms

# -------------------------------------------------------------------
# Functional response
# -------------------------------------------------------------------


def test_type_ii_at_q_zero() -> None:
    n = np.linspace(0.0, 10.0, 101)
    fmax, n0 = 3.0, 0.5
    expected = fmax * n / (n0 + n)
    assert np.allclose(functional_response(n, fmax, n0, 0.0), expected)


@pytest.mark.parametrize("q", [0.0, 0.3, 1.0, 2.5])
def test_zero_density_feeds_nobody(q: float) -> None:
    assert functional_response(0.0, 5.0, 0.5, q) == 0.0


def test_type_iii_is_sigmoid_and_half_saturates_at_n0() -> None:
    n0 = 0.5
    assert functional_response(n0, 2.0, n0, 1.0) == pytest.approx(1.0)
    # slope at the origin vanishes for q > 0
    assert functional_response(1e-4, 1.0, n0, 1.0) < 1e-6


def test_negative_density_is_treated_as_zero() -> None:
    out = functional_response(np.array([-1e-9, 0.2]), 1.0, 0.5, 0.2)
    assert out[0] == 0.0
    assert out[1] > 0.0


def test_functional_response_table_layout() -> None:
    table = functional_response_table()
    assert list(table.columns) == [
        "N",
        "theta = 1",
        "theta = 1.25",
        "theta = 1.5",
        "theta = 2",
        "theta = 3",
    ]
    assert len(table) == 1000
    # theta = 1 is the hyperbolic curve with Fmax = 10, N0 = 10/3
    n = table["N"].to_numpy()
    assert np.allclose(table["theta = 1"], 10.0 * n / (10.0 / 3.0 + n))


def test_functional_response_table_custom_grid() -> None:
    table = functional_response_table([0.0, 1.0], fmax=1.0, n0=1.0, theta=(2.0,))
    assert table["theta = 2"].tolist() == [0.0, 0.5]


# -------------------------------------------------------------------
# Topology / diet structure
# -------------------------------------------------------------------


def test_topology_sizes() -> None:
    assert Topology.CHAIN.n_species == 3
    assert Topology.WEB.n_species == 10
    assert isinstance(make_model("chain"), FoodChain)
    assert isinstance(make_model(Topology.WEB), FoodWeb)


def test_web_diet_is_read_only() -> None:
    with pytest.raises(TypeError):
        WEB_DIET[2] = {0: 1.0}  # type: ignore[index]


def test_trophic_levels_of_the_web() -> None:
    levels = trophic_levels()
    assert levels[:2].tolist() == [1.0, 1.0]
    assert levels[2] == pytest.approx(2.0)
    assert levels[4] == pytest.approx(2.0)
    assert levels[5] == pytest.approx(3.0)
    # 1 + 0.4*2 + 0.4*2 + 0.2*3
    assert levels[7] == pytest.approx(3.2)
    assert levels[8] == pytest.approx(4.2)
    assert levels[9] == pytest.approx(3.2)


def test_trophic_levels_rejects_bad_fractions() -> None:
    with pytest.raises(ValueError, match="sum to"):
        trophic_levels({2: {0: 0.5, 1: 0.4}})


def test_trophic_levels_rejects_resource_after_consumer() -> None:
    with pytest.raises(ValueError, match="resources must precede"):
        trophic_levels({2: {3: 1.0}, 3: {0: 1.0}})


def test_food_web_diet_matrix_matches_table() -> None:
    web = FoodWeb()
    assert web.diet_matrix.shape == (10, 10)
    assert web.diet_matrix[3, 7] == pytest.approx(0.4)
    assert web.diet_matrix[7, 8] == pytest.approx(1.0)
    # every consumer column sums to one, basal columns are empty
    col_sums = web.diet_matrix.sum(axis=0)
    assert np.allclose(col_sums[2:], 1.0)
    assert np.allclose(col_sums[:2], 0.0)
    assert web.basal_mask.tolist() == [True, True] + [False] * 8


# -------------------------------------------------------------------
# Chain derivative
# -------------------------------------------------------------------


def test_chain_derivative_by_hand() -> None:
    params = set_foodchain_parms(q=0.0)
    chain = FoodChain()
    y = np.array([0.6, 0.3, 0.2])

    f1 = params.fmax1 * 0.6 / (params.N0 + 0.6)
    f2 = params.fmax2 * 0.3 / (params.N0 + 0.3)
    expected = np.array(
        [
            0.6 * 0.4 - f1 * 0.3,
            params.e * f1 * 0.3 - params.m1 * 0.3 - f2 * 0.2,
            params.e * f2 * 0.2 - params.m2 * 0.2,
        ]
    )
    assert np.allclose(chain.derivative(0.0, y, params), expected)
    assert chain.species_names == CHAIN_SPECIES


def test_chain_basal_alone_grows_logistically() -> None:
    rhs = FoodChain().bind(set_foodchain_parms(q=0.1))
    out = rhs(0.0, np.array([0.25, 0.0, 0.0]))
    assert np.allclose(out, [0.25 * 0.75, 0.0, 0.0])
    # carrying capacity is a fixed point
    assert np.allclose(rhs(0.0, np.array([1.0, 0.0, 0.0])), 0.0)


def test_chain_rejects_wrong_state_shape() -> None:
    with pytest.raises(ValueError, match="state shape"):
        FoodChain().derivative(0.0, np.ones(4), set_foodchain_parms())


# -------------------------------------------------------------------
# Web derivative
# -------------------------------------------------------------------


def test_web_derivative_matches_explicit_sum(rng: np.random.Generator) -> None:
    params = set_foodweb_parms(q=0.4, rng=rng)
    web = FoodWeb()
    x = rng.uniform(0.1, 1.0, size=10)
    m = np.asarray(params.metabolic_rates)

    def fr(n: float) -> float:
        h = params.q + 1.0
        return n**h / (params.N0**h + n**h)

    expected = np.zeros(10)
    for i in (0, 1):
        expected[i] = x[i] * (1.0 - x[i])
    for consumer, diet in WEB_DIET.items():
        expected[consumer] -= m[consumer] * x[consumer]
        for resource, frac in diet.items():
            flux = frac * params.y * m[consumer] * fr(x[resource]) * x[consumer]
            expected[resource] -= flux
            expected[consumer] += params.e * flux

    assert np.allclose(web.derivative(0.0, x, params), expected)


def test_web_extinct_species_stay_at_zero(rng: np.random.Generator) -> None:
    rhs = FoodWeb().bind(set_foodweb_parms(rng=rng))
    x = np.full(10, 0.5)
    x[[6, 8]] = 0.0
    out = rhs(0.0, x)
    assert out[6] == 0.0
    assert out[8] == 0.0
