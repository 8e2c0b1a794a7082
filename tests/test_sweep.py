# tests/test_sweep.py
"""Tests for partitioning, chunk workers and whole sweeps.

Sweeps use tiny horizons; process-pool runs are marked ``slow``.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from pathlib import Path

import numpy as np
import pytest

from foodweb_engine.config import load_chain_config, load_web_config
from foodweb_engine.dataset import read_chain_tables, read_diversity_table
from foodweb_engine.errors import ConfigurationError, SweepWorkerError
from foodweb_engine.models import FoodChain
from foodweb_engine.sweep import (
    SweepOrchestrator,
    SweepState,
    partition_qrange,
    run_chain_chunk,
    run_chain_sweep,
    run_web_chunk,
    run_web_sweep,
    simulate_chain_q,
)


def _chain_options(**overrides: object) -> dict[str, object]:
    base: dict[str, object] = {
        "qrange": [0.0, 0.1, 0.2],
        "ts_length": 1000.0,
        "steplength": 0.5,
        "analyze_ts": 0.5,
        "noC": 1,
        "seed": 1234,
    }
    base.update(overrides)
    return base


def _web_options(**overrides: object) -> dict[str, object]:
    base: dict[str, object] = {
        "qrange": [0.0, 1.0],
        "ts_runs": 2,
        "ts_run_length": 20.0,
        "steplength": 1.0,
        "rtol": 1e-8,
        "atol": 1e-8,
        "noC": 1,
        "seed": 42,
    }
    base.update(overrides)
    return base


# a two-sample window on the output grid cannot be searched for extrema
_DEGENERATE_WINDOW = {"ts_length": 10.0, "analyze_ts": 0.1, "record_substeps": False}


def _echo_chunk(
    chunk_index: int,
    q_values: tuple[float, ...],
    config: object,
    seed: np.random.SeedSequence,
    abort: object = None,
) -> tuple[int, tuple[float, ...]]:
    return chunk_index, q_values


def _fail_or_wait_chunk(
    chunk_index: int,
    q_values: tuple[float, ...],
    config: object,
    seed: np.random.SeedSequence,
    abort: threading.Event | None = None,
) -> int:
    """Chunk 0 fails at once; the others poll the abort flag for up to 60 s."""
    if chunk_index == 0:
        raise SweepWorkerError(chunk_index, q_values[0], "RuntimeError: boom")
    deadline = time.monotonic() + 60.0
    while time.monotonic() < deadline:
        if abort is not None and abort.is_set():
            break
        time.sleep(0.05)
    return chunk_index


# -------------------------------------------------------------------
# Partitioning
# -------------------------------------------------------------------


@pytest.mark.parametrize(("length", "n_chunks"), [(1, 1), (7, 3), (10, 10), (501, 6)])
def test_partition_is_a_permutation_with_balanced_chunks(
    length: int, n_chunks: int, rng: np.random.Generator
) -> None:
    qrange = np.linspace(0.0, 0.2, length)
    chunks = partition_qrange(qrange, n_chunks, rng)

    assert len(chunks) == n_chunks
    merged = [q for chunk in chunks for q in chunk]
    assert Counter(merged) == Counter(qrange.tolist())
    sizes = [len(c) for c in chunks]
    assert max(sizes) - min(sizes) <= 1


def test_partition_shuffles(rng: np.random.Generator) -> None:
    qrange = np.arange(50, dtype=float)
    (only,) = partition_qrange(qrange, 1, rng)
    assert sorted(only) == qrange.tolist()
    assert list(only) != qrange.tolist()


def test_partition_is_reproducible(make_rng) -> None:
    qrange = np.arange(20, dtype=float)
    assert partition_qrange(qrange, 4, make_rng(5)) == partition_qrange(qrange, 4, make_rng(5))


def test_partition_clamps_excess_workers(rng: np.random.Generator) -> None:
    with pytest.warns(RuntimeWarning, match="exceeds the number of q-values"):
        chunks = partition_qrange([0.0, 0.5], 8, rng)
    assert sorted(len(c) for c in chunks) == [1, 1]


def test_partition_rejects_empty_range_and_zero_workers() -> None:
    with pytest.raises(ConfigurationError, match="'qrange'"):
        partition_qrange([], 2)
    with pytest.raises(ConfigurationError, match="'noC'"):
        partition_qrange([0.0], 0)


# -------------------------------------------------------------------
# Orchestrator
# -------------------------------------------------------------------


def test_orchestrator_state_and_chunk_order() -> None:
    orch = SweepOrchestrator(_echo_chunk, n_workers=1, seed=3)
    assert orch.state is SweepState.IDLE

    results = orch.run([0.3, 0.1, 0.2], config=None)
    assert orch.state is SweepState.MERGED
    assert results[0][0] == 0
    assert sorted(results[0][1]) == [0.1, 0.2, 0.3]

    orch.finish()
    assert orch.state is SweepState.DONE


def test_orchestrator_partition_depends_on_seed_only() -> None:
    a = SweepOrchestrator(_echo_chunk, n_workers=3, seed=9).partition(range(12))
    b = SweepOrchestrator(_echo_chunk, n_workers=3, seed=9).partition(range(12))
    assert a == b


# -------------------------------------------------------------------
# Per-q simulation and chunk workers
# -------------------------------------------------------------------


def test_simulate_chain_q_caps_extrema(rng: np.random.Generator) -> None:
    cfg = load_chain_config(_chain_options(ts_length=300.0, max_out=2))
    out = simulate_chain_q(0.05, cfg, model=FoodChain(), rng=rng)

    assert set(out) == {"basal", "intermediate", "top"}
    for values in out.values():
        assert 1 <= values.size <= 2


def test_chain_chunk_failure_names_chunk_and_q() -> None:
    cfg = load_chain_config(_chain_options(**_DEGENERATE_WINDOW))
    with pytest.raises(SweepWorkerError) as excinfo:
        run_chain_chunk(4, (0.15,), cfg, np.random.SeedSequence(0))

    err = excinfo.value
    assert err.chunk_index == 4
    assert err.q_value == 0.15
    assert "NumericDegeneracyError" in err.detail
    assert isinstance(err.__cause__, ValueError)


def test_chunks_stop_once_aborted() -> None:
    abort = threading.Event()
    abort.set()
    chain = run_chain_chunk(
        0, (0.0, 0.1), load_chain_config(_chain_options()), np.random.SeedSequence(0), abort
    )
    web = run_web_chunk(
        0, (0.0, 1.0), load_web_config(_web_options()), np.random.SeedSequence(0), abort
    )
    assert all(len(table) == 0 for table in chain.values())
    assert len(web) == 0


def test_sweep_fails_fast_in_process(tmp_path: Path) -> None:
    cfg = load_chain_config(
        _chain_options(**_DEGENERATE_WINDOW, output_path=tmp_path / "out")
    )
    with pytest.raises(SweepWorkerError, match="chunk 0 failed"):
        run_chain_sweep(cfg)
    # nothing is written when the sweep aborts
    assert not (tmp_path / "out").exists()


# -------------------------------------------------------------------
# Whole sweeps
# -------------------------------------------------------------------


def test_chain_sweep_end_to_end(tmp_path: Path) -> None:
    cfg = load_chain_config(_chain_options(output_path=tmp_path))
    tables = run_chain_sweep(cfg)

    assert set(tables) == {"basal", "intermediate", "top"}
    for table in tables.values():
        assert list(table.columns) == ["q", "extremum"]
        assert set(table["q"]) <= {0.0, 0.1, 0.2}
        counts = table.groupby("q").size()
        assert set(counts.index) == {0.0, 0.1, 0.2}
        assert counts.min() >= 1
        assert counts.max() <= cfg.max_out
        assert table["extremum"].between(-1e-8, 5.0).all()

    on_disk = read_chain_tables(tmp_path)
    for name, table in tables.items():
        assert np.allclose(on_disk[name].to_numpy(), table.to_numpy())


def test_chain_sweep_is_reproducible(tmp_path: Path) -> None:
    options = _chain_options(ts_length=300.0, unique_out=False, max_out=0)
    run_chain_sweep(load_chain_config(options, output_path=tmp_path / "a"))
    run_chain_sweep(load_chain_config(options, output_path=tmp_path / "b"))

    for name in ("basal", "intermediate", "top"):
        first = (tmp_path / "a" / f"bifout_{name}.csv").read_bytes()
        second = (tmp_path / "b" / f"bifout_{name}.csv").read_bytes()
        assert first == second


def test_chain_sweep_without_writing(tmp_path: Path) -> None:
    cfg = load_chain_config(_chain_options(ts_length=200.0, output_path=tmp_path / "none"))
    tables = run_chain_sweep(cfg, write=False)
    assert len(tables["basal"]) >= 3
    assert not (tmp_path / "none").exists()


def test_web_sweep_end_to_end(tmp_path: Path) -> None:
    cfg = load_web_config(
        _web_options(output_path=tmp_path, output_filename="weak_interactions.csv", y=4.0)
    )
    table = run_web_sweep(cfg)

    assert list(table.columns) == ["q", "div"]
    assert sorted(table["q"]) == [0.0, 1.0]
    assert table["div"].between(0, 10).all()

    back = read_diversity_table(tmp_path / "weak_interactions.csv")
    assert back.sort_values("q")["div"].tolist() == table.sort_values("q")["div"].tolist()


def test_web_sweep_is_reproducible(tmp_path: Path) -> None:
    options = _web_options(qrange=[0.0, 0.5, 1.0, 2.0], seed=2024)
    run_web_sweep(load_web_config(options, output_path=tmp_path / "a"))
    run_web_sweep(load_web_config(options, output_path=tmp_path / "b"))

    name = "strong_interactions.csv"
    assert (tmp_path / "a" / name).read_bytes() == (tmp_path / "b" / name).read_bytes()


@pytest.mark.slow
def test_chain_sweep_process_pool_is_deterministic() -> None:
    options = _chain_options(
        qrange=[0.0, 0.05, 0.1, 0.15], ts_length=200.0, noC=2, seed=77
    )
    first = run_chain_sweep(load_chain_config(options), write=False)
    second = run_chain_sweep(load_chain_config(options), write=False)

    for name in first:
        assert set(first[name]["q"]) == {0.0, 0.05, 0.1, 0.15}
        assert first[name].equals(second[name])


@pytest.mark.slow
def test_process_pool_failure_propagates() -> None:
    cfg = load_chain_config(
        _chain_options(qrange=[0.0, 0.1], **_DEGENERATE_WINDOW, noC=2)
    )
    with pytest.raises(SweepWorkerError, match="NumericDegeneracyError"):
        run_chain_sweep(cfg, write=False)


@pytest.mark.slow
def test_process_pool_failure_stops_running_chunks() -> None:
    orch = SweepOrchestrator(_fail_or_wait_chunk, n_workers=2, seed=0)
    start = time.monotonic()
    with pytest.raises(SweepWorkerError, match="boom"):
        orch.run([0.0, 1.0], config=None)
    # the sibling chunk would otherwise poll for a full minute
    assert time.monotonic() - start < 30.0
