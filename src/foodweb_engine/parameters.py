"""Map allometric inputs to model coefficients.

Metabolic rates scale with consumer/resource body-mass ratio R as ``a * R^b``
and maximum feeding rates are ``y`` times the metabolic rate. The chain uses a
fixed ratio; the web draws a fresh random ratio per consumer on every call,
so a parameter set must never be reused across runs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import numpy as np

from .errors import invalid_config_error, raise_invalid_config, require_positive
from .models import WEB_BASAL, WEB_DIET, WEB_N_SPECIES, trophic_levels

# Otto et al. (2007) allometric defaults
DEFAULT_A = 0.2227
DEFAULT_B = -0.25
DEFAULT_E = 0.85
DEFAULT_Y = 8.0
DEFAULT_N0 = 0.5
DEFAULT_R = 100.0
DEFAULT_RRANGE = (10.0, 100.0)


@dataclass(slots=True, frozen=True)
class ChainParameters:
    """Coefficients of the three-species chain.

    Attributes:
        m1: Metabolic rate of the intermediate consumer.
        m2: Metabolic rate of the top consumer.
        e: Assimilation efficiency.
        fmax1: Maximum feeding rate of the intermediate consumer.
        fmax2: Maximum feeding rate of the top consumer.
        N0: Half-saturation density.
        q: Shaping exponent.
    """

    m1: float
    m2: float
    e: float
    fmax1: float
    fmax2: float
    N0: float  # noqa: N815
    q: float

    def as_dict(self) -> dict[str, float]:
        """Return the named coefficients."""
        return {
            "m1": self.m1,
            "m2": self.m2,
            "e": self.e,
            "fmax1": self.fmax1,
            "fmax2": self.fmax2,
            "N0": self.N0,
            "q": self.q,
        }


@dataclass(slots=True, frozen=True)
class WebParameters:
    """Coefficients of the ten-species web.

    Attributes:
        metabolic_rates: Per-species metabolic rate (0 for basal species).
        body_mass_ratios: Per-species body mass relative to the basal species.
        e: Assimilation efficiency.
        y: Relative maximum feeding rate.
        N0: Half-saturation density.
        q: Shaping exponent.
    """

    metabolic_rates: tuple[float, ...]
    body_mass_ratios: tuple[float, ...]
    e: float
    y: float
    N0: float  # noqa: N815
    q: float

    def as_dict(self) -> dict[str, float]:
        """Return the named coefficients (``m<i>`` for every consumer i)."""
        out = {
            f"m{i}": rate
            for i, rate in enumerate(self.metabolic_rates)
            if i not in WEB_BASAL
        }
        out.update({"e": self.e, "y": self.y, "N0": self.N0, "q": self.q})
        return out


def _validate_common(*, a: float, e: float, y: float, N0: float, q: float) -> None:  # noqa: N803
    require_positive("a", a)
    require_positive("N0", N0)
    require_positive("y", y)
    if not (0.0 < float(e) <= 1.0):
        raise_invalid_config(name="e", detail="must lie in (0, 1]", value=e)
    if not (float(q) >= 0.0) or not np.isfinite(q):
        raise_invalid_config(name="q", detail="must be a finite number >= 0", value=q)


def set_foodchain_parms(
    *,
    a: float = DEFAULT_A,
    b: float = DEFAULT_B,
    e: float = DEFAULT_E,
    y: float = DEFAULT_Y,
    N0: float = DEFAULT_N0,  # noqa: N803
    q: float = 0.0,
    R: float = DEFAULT_R,  # noqa: N803
) -> ChainParameters:
    """Derive chain coefficients from allometric inputs.

    The top species is R times heavier than the intermediate one, which is R
    times heavier than the basal species, so the top:basal ratio is R^2.

    Args:
        a: Allometric constant.
        b: Allometric exponent.
        e: Assimilation efficiency.
        y: Maximum feeding rate relative to the metabolic rate.
        N0: Half-saturation density.
        q: Shaping exponent.
        R: Consumer:resource body-mass ratio.

    Returns:
        ChainParameters.

    Raises:
        ConfigurationError: If any input is out of range.
    """
    _validate_common(a=a, e=e, y=y, N0=N0, q=q)
    require_positive("R", R)

    m1 = a * R**b
    m2 = a * (R * R) ** b
    return ChainParameters(
        m1=float(m1),
        m2=float(m2),
        e=float(e),
        fmax1=float(y * m1),
        fmax2=float(y * m2),
        N0=float(N0),
        q=float(q),
    )


def validate_rrange(Rrange: Sequence[float]) -> tuple[float, float]:  # noqa: N803
    """Validate a body-mass-ratio range.

    Args:
        Rrange: Two-element [min, max] with 0 < min < max.

    Returns:
        (min, max) as floats.

    Raises:
        ConfigurationError: If the range is malformed.
    """
    try:
        values = tuple(float(v) for v in Rrange)
    except (TypeError, ValueError) as exc:
        raise invalid_config_error(
            name="Rrange", detail="must be two numbers [min, max]", value=Rrange
        ) from exc
    if len(values) != 2:
        raise_invalid_config(
            name="Rrange", detail="must contain exactly two values [min, max]", value=Rrange
        )
    r_min, r_max = values
    require_positive("Rrange", r_min)
    require_positive("Rrange", r_max)
    if not r_min < r_max:
        raise_invalid_config(name="Rrange", detail="min must be < max", value=Rrange)
    return r_min, r_max


def draw_body_mass_ratios(
    rng: np.random.Generator,
    Rrange: Sequence[float] = DEFAULT_RRANGE,  # noqa: N803
    *,
    diet: Mapping[int, Mapping[int, float]] = WEB_DIET,
) -> np.ndarray:
    """Draw body-mass ratios relative to the basal species.

    Each consumer gets ``U(Rmin, Rmax) ** (level - 1)``; basal species get 1.

    Args:
        rng: Random source.
        Rrange: [min, max] ratio between adjacent trophic levels.
        diet: Consumer -> {resource: fraction} table.

    Returns:
        Array of ratios indexed by species.
    """
    r_min, r_max = validate_rrange(Rrange)
    levels = trophic_levels(diet)
    ratios = np.ones_like(levels)
    for i in range(levels.size):
        if i in WEB_BASAL:
            continue
        ratios[i] = rng.uniform(r_min, r_max) ** (levels[i] - 1.0)
    return ratios


def set_foodweb_parms(
    *,
    a: float = DEFAULT_A,
    b: float = DEFAULT_B,
    e: float = DEFAULT_E,
    y: float = DEFAULT_Y,
    N0: float = DEFAULT_N0,  # noqa: N803
    q: float = 0.0,
    Rrange: Sequence[float] = DEFAULT_RRANGE,  # noqa: N803
    rng: np.random.Generator | None = None,
) -> WebParameters:
    """Derive web coefficients with a fresh random body-mass draw.

    Args:
        a: Allometric constant.
        b: Allometric exponent.
        e: Assimilation efficiency.
        y: Maximum feeding rate relative to the metabolic rate.
        N0: Half-saturation density.
        q: Shaping exponent.
        Rrange: [min, max] ratio between adjacent trophic levels.
        rng: Random source (a fresh default_rng if None).

    Returns:
        WebParameters.

    Raises:
        ConfigurationError: If any input is out of range.
    """
    _validate_common(a=a, e=e, y=y, N0=N0, q=q)
    gen = rng if rng is not None else np.random.default_rng()

    ratios = draw_body_mass_ratios(gen, Rrange)
    rates = a * ratios**b
    rates[list(WEB_BASAL)] = 0.0

    return WebParameters(
        metabolic_rates=tuple(float(r) for r in rates[:WEB_N_SPECIES]),
        body_mass_ratios=tuple(float(r) for r in ratios[:WEB_N_SPECIES]),
        e=float(e),
        y=float(y),
        N0=float(N0),
        q=float(q),
    )
