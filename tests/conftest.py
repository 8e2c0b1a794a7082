"""Global pytest configuration and shared fixtures for foodweb_engine."""

from __future__ import annotations

import numpy as np
import pytest

# -----------------------------------------------------------------------------
# Global markers registration safety (for local pytest runs)
# -----------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "slow: runs a sweep through a process pool",
    )


# -----------------------------------------------------------------------------
# Random sources
# -----------------------------------------------------------------------------


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded generator; every test gets a fresh copy."""
    return np.random.default_rng(20240117)


@pytest.fixture
def make_rng():
    """Factory for seeded generators (for comparing two identical draws)."""

    def _make(seed: int = 20240117) -> np.random.Generator:
        return np.random.default_rng(seed)

    return _make
