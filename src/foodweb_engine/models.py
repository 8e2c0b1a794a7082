# src/foodweb_engine/models.py
"""Right-hand sides of the food-chain and food-web models.

Both topologies share one building block, the generalized functional response

    F(N) = Fmax * N^(q+1) / (N0^(q+1) + N^(q+1)),

which is hyperbolic (type II) for q = 0 and sigmoid (type III) for q > 0.

Model evaluators are plain objects: a worker constructs its own instance and
binds it to one parameter set to obtain an ``rhs(t, y)`` callable for the
solver. They hold no mutable state, so a single instance may be reused across
q-values.

State ordering:
    chain: (basal, intermediate, top)
    web:   species 0-1 are basal resources, 2-9 are consumers (see WEB_DIET)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Final, TypeAlias

import numpy as np
import pandas as pd
from numpy.typing import NDArray

if TYPE_CHECKING:
    from .parameters import ChainParameters, WebParameters

FloatArray: TypeAlias = NDArray[np.float64]
RHSFunction = Callable[[float, FloatArray], FloatArray]

_STATE_SHAPE_ERROR_MSG = "state shape {actual} does not match expected {expected}"
_DIET_FRACTION_ERROR_MSG = "diet fractions of consumer {consumer} sum to {total}, not 1"
_DIET_ORDER_ERROR_MSG = (
    "consumer {consumer} feeds on species {resource}; resources must precede "
    "their consumers"
)


class Topology(str, Enum):
    """Supported food-web topologies."""

    CHAIN = "chain"
    WEB = "web"

    @property
    def n_species(self) -> int:
        """Number of state variables of the topology."""
        return 3 if self is Topology.CHAIN else 10


CHAIN_SPECIES: Final[tuple[str, ...]] = ("basal", "intermediate", "top")

WEB_N_SPECIES: Final[int] = 10
WEB_BASAL: Final[tuple[int, ...]] = (0, 1)

# consumer -> {resource: diet fraction}
WEB_DIET: Final[Mapping[int, Mapping[int, float]]] = MappingProxyType(
    {
        2: MappingProxyType({0: 0.5, 1: 0.5}),
        3: MappingProxyType({0: 0.5, 1: 0.5}),
        4: MappingProxyType({1: 1.0}),
        5: MappingProxyType({2: 0.5, 3: 0.5}),
        6: MappingProxyType({2: 1.0}),
        7: MappingProxyType({3: 0.4, 4: 0.4, 5: 0.2}),
        8: MappingProxyType({7: 1.0}),
        9: MappingProxyType({4: 0.8, 5: 0.2}),
    }
)


def functional_response(
    n: float | FloatArray,
    fmax: float | FloatArray,
    n0: float,
    q: float,
) -> float | FloatArray:
    """Generalized (Hill-type) functional response.

    Negative densities (tiny undershoots of the adaptive solver) feed nobody
    and are treated as zero.

    Args:
        n: Resource density (scalar or array).
        fmax: Maximum feeding rate.
        n0: Half-saturation density, > 0.
        q: Shaping exponent, >= 0.

    Returns:
        Feeding rate per unit consumer biomass.
    """
    h = float(q) + 1.0
    n_h = np.power(np.maximum(n, 0.0), h)
    return fmax * n_h / (float(n0) ** h + n_h)


def functional_response_table(
    n: Sequence[float] | FloatArray | None = None,
    *,
    fmax: float = 10.0,
    n0: float = 10.0 / 3.0,
    theta: Sequence[float] = (1.0, 1.25, 1.5, 2.0, 3.0),
) -> pd.DataFrame:
    """Tabulate functional-response curves for several exponents.

    ``theta`` is the full Hill exponent (theta = q + 1).

    Args:
        n: Resource densities (default: 1000 points on [0, 20]).
        fmax: Maximum feeding rate.
        n0: Half-saturation density.
        theta: Hill exponents to tabulate.

    Returns:
        DataFrame with column ``N`` followed by one ``theta = <value>`` column
        per exponent.
    """
    densities = (
        np.linspace(0.0, 20.0, 1000)
        if n is None
        else np.asarray(n, dtype=np.float64)
    )
    table: dict[str, FloatArray] = {"N": densities}
    for th in theta:
        table[f"theta = {th:g}"] = np.asarray(
            functional_response(densities, fmax, n0, float(th) - 1.0),
            dtype=np.float64,
        )
    return pd.DataFrame(table)


def trophic_levels(diet: Mapping[int, Mapping[int, float]] = WEB_DIET) -> FloatArray:
    """Prey-averaged trophic level of every species.

    Basal species sit at level 1; a consumer's level is one plus the
    diet-weighted mean level of its resources.

    Args:
        diet: Consumer -> {resource: fraction} table.

    Returns:
        Array of trophic levels indexed by species.

    Raises:
        ValueError: If a consumer's fractions do not sum to one or a resource
            index does not precede its consumer.
    """
    n = max([WEB_N_SPECIES - 1, *diet.keys()]) + 1
    levels = np.ones(n, dtype=np.float64)
    for consumer in sorted(diet):
        fractions = diet[consumer]
        total = sum(fractions.values())
        if not np.isclose(total, 1.0):
            raise ValueError(
                _DIET_FRACTION_ERROR_MSG.format(consumer=consumer, total=total)
            )
        level = 1.0
        for resource, frac in fractions.items():
            if resource >= consumer:
                raise ValueError(
                    _DIET_ORDER_ERROR_MSG.format(consumer=consumer, resource=resource)
                )
            level += frac * levels[resource]
        levels[consumer] = level
    return levels


def _check_state(y: FloatArray, n: int) -> FloatArray:
    arr = np.asarray(y, dtype=np.float64)
    if arr.shape != (n,):
        raise ValueError(_STATE_SHAPE_ERROR_MSG.format(actual=arr.shape, expected=(n,)))
    return arr


class FoodChain:
    """Three-species chain: basal <- intermediate <- top.

    The basal species grows logistically with unit growth rate and carrying
    capacity; consumers lose biomass at their metabolic rate.
    """

    topology = Topology.CHAIN
    species_names = CHAIN_SPECIES

    @property
    def n_species(self) -> int:
        """Number of state variables (3)."""
        return 3

    def derivative(
        self,
        t: float,  # noqa: ARG002
        y: FloatArray,
        params: ChainParameters,
    ) -> FloatArray:
        """Compute dy/dt.

        Args:
            t: Time (the model is autonomous).
            y: State (basal, intermediate, top).
            params: Chain coefficients.

        Returns:
            Derivative vector of shape (3,).
        """
        basal, inter, top = _check_state(y, 3)
        f1 = functional_response(basal, params.fmax1, params.N0, params.q)
        f2 = functional_response(inter, params.fmax2, params.N0, params.q)

        return np.array(
            [
                basal * (1.0 - basal) - f1 * inter,
                params.e * f1 * inter - params.m1 * inter - f2 * top,
                params.e * f2 * top - params.m2 * top,
            ],
            dtype=np.float64,
        )

    def bind(self, params: ChainParameters) -> RHSFunction:
        """Return rhs(t, y) for a fixed parameter set."""

        def rhs(t: float, y: FloatArray) -> FloatArray:
            return self.derivative(t, y, params)

        return rhs


class FoodWeb:
    """Ten-species web with fixed diet fractions.

    Feeding flux of consumer j on resource i:

        diet[i, j] * y * m_j * F(x_i) * x_j,   with F using Fmax = 1

    Resources lose the flux, consumers gain ``e`` times it and lose
    ``m_j * x_j`` to metabolism.
    """

    topology = Topology.WEB
    species_names: tuple[str, ...] = tuple(f"species_{i}" for i in range(WEB_N_SPECIES))

    def __init__(self, diet: Mapping[int, Mapping[int, float]] = WEB_DIET) -> None:
        """Build the dense diet matrix.

        Args:
            diet: Consumer -> {resource: fraction} table.
        """
        matrix = np.zeros((WEB_N_SPECIES, WEB_N_SPECIES), dtype=np.float64)
        for consumer, fractions in diet.items():
            for resource, frac in fractions.items():
                matrix[resource, consumer] = float(frac)
        matrix.setflags(write=False)
        self.diet_matrix = matrix

        basal = np.zeros(WEB_N_SPECIES, dtype=bool)
        basal[list(WEB_BASAL)] = True
        basal.setflags(write=False)
        self.basal_mask = basal

    @property
    def n_species(self) -> int:
        """Number of state variables (10)."""
        return WEB_N_SPECIES

    def derivative(
        self,
        t: float,  # noqa: ARG002
        y: FloatArray,
        params: WebParameters,
    ) -> FloatArray:
        """Compute dy/dt.

        Args:
            t: Time (the model is autonomous).
            y: State of all ten species.
            params: Web coefficients.

        Returns:
            Derivative vector of shape (10,).
        """
        x = _check_state(y, WEB_N_SPECIES)
        m = np.asarray(params.metabolic_rates, dtype=np.float64)

        fr = functional_response(x, 1.0, params.N0, params.q)
        demand = params.y * m * x
        flux = self.diet_matrix * np.multiply.outer(fr, demand)

        dxdt = params.e * flux.sum(axis=0) - flux.sum(axis=1) - m * x
        b = self.basal_mask
        dxdt[b] += x[b] * (1.0 - x[b])
        return dxdt

    def bind(self, params: WebParameters) -> RHSFunction:
        """Return rhs(t, y) for a fixed parameter set."""

        def rhs(t: float, y: FloatArray) -> FloatArray:
            return self.derivative(t, y, params)

        return rhs


def make_model(topology: Topology | str) -> FoodChain | FoodWeb:
    """Construct a fresh model evaluator for a topology name."""
    topo = Topology(topology)
    if topo is Topology.CHAIN:
        return FoodChain()
    return FoodWeb()
