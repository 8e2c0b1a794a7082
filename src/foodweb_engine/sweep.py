# src/foodweb_engine/sweep.py
"""Parallel q-value sweeps.

A sweep shuffles the requested q-values, splits them into near-equal chunks
and hands every chunk to a worker process. A worker builds its own model
evaluator, then for each q-value derives a parameter set, integrates one
trajectory and reduces it to table rows. Partial tables come back through the
futures of a ``ProcessPoolExecutor`` and are concatenated in chunk order.

Randomness:
    One ``SeedSequence(seed)`` drives the whole sweep. The shuffle uses a
    generator on the root sequence; every chunk gets its own spawned child
    sequence, so results depend on ``seed`` and the number of chunks only.

Failure policy:
    Fail-fast. The first failing q-value raises :class:`SweepWorkerError`
    naming the chunk and the q-value. Pending chunks are cancelled, and a
    shared abort event stops running chunks before their next q-value. The
    sweep returns only once every worker has stopped; no table is written.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ProcessPoolExecutor, as_completed
from concurrent.futures.process import BrokenProcessPool
from enum import Enum
from multiprocessing import Manager
from typing import Any, Generic, Protocol, TypeVar

import numpy as np
import pandas as pd

from .config import ChainSweepConfig, WebSweepConfig
from .core_solver import CoreSolver, random_initial_state
from .dataset import (
    CHAIN_COLUMNS,
    WEB_COLUMNS,
    BifurcationAssembler,
    DiversityAssembler,
    DiversityRecord,
    concat_tables,
    write_chain_tables,
    write_diversity_table,
)
from .errors import SweepWorkerError, raise_invalid_config
from .extrema import minmax, reduce_extrema
from .models import FoodChain, FoodWeb
from .parameters import set_foodchain_parms, set_foodweb_parms

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AbortFlag(Protocol):
    """Event-like flag shared with chunk workers (a manager or threading Event)."""

    def is_set(self) -> bool: ...

    def set(self) -> None: ...


ChunkWorker = Callable[
    [int, tuple[float, ...], Any, np.random.SeedSequence, AbortFlag | None], T
]

_CLAMP_WORKERS_MSG = "noC = {requested} exceeds the number of q-values ({n}); using {n}"
_ABORTED_MSG = "Chunk %d stopped before q = %g: sweep aborted"
_POOL_BROKEN_MSG = "worker process terminated abruptly ({detail})"


class SweepState(str, Enum):
    """Lifecycle of a sweep."""

    IDLE = "idle"
    PARTITIONED = "partitioned"
    RUNNING = "running"
    MERGED = "merged"
    DONE = "done"


# =============================================================================
# Partitioning
# =============================================================================


def partition_qrange(
    qrange: Sequence[float],
    n_chunks: int,
    rng: np.random.Generator | None = None,
) -> list[tuple[float, ...]]:
    """Shuffle q-values and split them into near-equal contiguous chunks.

    Chunk sizes differ by at most one. Asking for more chunks than q-values
    yields one chunk per q-value (with a warning).

    Args:
        qrange: Sweep points.
        n_chunks: Requested number of chunks (noC).
        rng: Random source for the shuffle.

    Returns:
        The chunks; together a permutation of ``qrange``.

    Raises:
        ConfigurationError: If qrange is empty or n_chunks < 1.
    """
    values = np.asarray(qrange, dtype=np.float64).ravel()
    if values.size == 0:
        raise_invalid_config(name="qrange", detail="must contain at least one q-value")
    if int(n_chunks) < 1:
        raise_invalid_config(name="noC", detail="must be >= 1", value=n_chunks)

    n = int(n_chunks)
    if n > values.size:
        warnings.warn(
            _CLAMP_WORKERS_MSG.format(requested=n, n=values.size),
            RuntimeWarning,
            stacklevel=2,
        )
        n = int(values.size)

    gen = rng if rng is not None else np.random.default_rng()
    shuffled = gen.permutation(values)
    return [tuple(chunk.tolist()) for chunk in np.array_split(shuffled, n)]


# =============================================================================
# Per-q simulation
# =============================================================================


def simulate_chain_q(
    q: float,
    config: ChainSweepConfig,
    *,
    model: FoodChain,
    rng: np.random.Generator,
) -> dict[str, np.ndarray]:
    """Run one chain trajectory and return the kept extrema per species.

    A window without interior extrema (still converging monotonically)
    contributes its final value, so every q-value yields at least one row
    per species.
    """
    params = set_foodchain_parms(
        a=config.a, b=config.b, e=config.e, y=config.y, N0=config.N0, q=q, R=config.R
    )
    solver = CoreSolver(
        model.bind(params),
        model.n_species,
        config=config.to_run_config(),
        species_names=model.species_names,
    )
    y0 = random_initial_state(model.n_species, rng)
    trajectory = solver.integrate(
        y0, config.ts_length, config.steplength, record_substeps=config.record_substeps
    )
    window = trajectory.window(config.analyze_ts)

    out: dict[str, np.ndarray] = {}
    for name in model.species_names:
        series = window.species(name)
        values = minmax(series)
        if values.size == 0:
            values = series[-1:]
        out[name] = reduce_extrema(
            values, unique_out=config.unique_out, max_out=config.max_out, rng=rng
        )
    return out


def simulate_web_q(
    q: float,
    config: WebSweepConfig,
    *,
    model: FoodWeb,
    rng: np.random.Generator,
) -> int:
    """Run one resumed web trajectory and return the number of survivors."""
    params = set_foodweb_parms(
        a=config.a,
        b=config.b,
        e=config.e,
        y=config.y,
        N0=config.N0,
        q=q,
        Rrange=config.Rrange,
        rng=rng,
    )
    solver = CoreSolver(
        model.bind(params),
        model.n_species,
        config=config.to_run_config(),
        species_names=model.species_names,
    )
    y0 = random_initial_state(model.n_species, rng)
    run = solver.run_segments(
        y0,
        n_runs=config.ts_runs,
        run_length=config.ts_run_length,
        steplength=config.steplength,
    )
    return run.count_survivors()


# =============================================================================
# Chunk workers (top-level so they pickle)
# =============================================================================


def _worker_error(chunk_index: int, q: float, exc: Exception) -> SweepWorkerError:
    logger.error("Chunk %d failed at q = %r: %s", chunk_index, q, exc)
    return SweepWorkerError(chunk_index, q, f"{type(exc).__name__}: {exc}")


def _aborted(abort: AbortFlag | None, chunk_index: int, q: float) -> bool:
    if abort is None or not abort.is_set():
        return False
    logger.info(_ABORTED_MSG, chunk_index, q)
    return True


def run_chain_chunk(
    chunk_index: int,
    q_values: tuple[float, ...],
    config: ChainSweepConfig,
    seed: np.random.SeedSequence,
    abort: AbortFlag | None = None,
) -> dict[str, pd.DataFrame]:
    """Simulate every q-value of one chunk of a chain sweep.

    Once ``abort`` is set the chunk stops before its next q-value and returns
    the rows gathered so far.

    Raises:
        SweepWorkerError: On the first failing q-value.
    """
    model = FoodChain()
    rng = np.random.default_rng(seed)
    assembler = BifurcationAssembler(model.species_names)

    for q in q_values:
        if _aborted(abort, chunk_index, q):
            break
        try:
            extrema = simulate_chain_q(q, config, model=model, rng=rng)
        except Exception as exc:
            raise _worker_error(chunk_index, q, exc) from exc
        for name, values in extrema.items():
            assembler.extend(name, q, values)
        logger.debug("Chunk %d: q = %g done", chunk_index, q)

    return assembler.finalize()


def run_web_chunk(
    chunk_index: int,
    q_values: tuple[float, ...],
    config: WebSweepConfig,
    seed: np.random.SeedSequence,
    abort: AbortFlag | None = None,
) -> pd.DataFrame:
    """Simulate every q-value of one chunk of a web sweep; ``abort`` as for the chain.

    Raises:
        SweepWorkerError: On the first failing q-value.
    """
    model = FoodWeb()
    rng = np.random.default_rng(seed)
    assembler = DiversityAssembler()

    for q in q_values:
        if _aborted(abort, chunk_index, q):
            break
        try:
            richness = simulate_web_q(q, config, model=model, rng=rng)
        except Exception as exc:
            raise _worker_error(chunk_index, q, exc) from exc
        assembler.append(DiversityRecord(q, richness))
        logger.debug("Chunk %d: q = %g done (%d survivors)", chunk_index, q, richness)

    return assembler.finalize()


# =============================================================================
# Orchestrator
# =============================================================================


class SweepOrchestrator(Generic[T]):
    """Partition, dispatch and collect one sweep.

    Args:
        worker: Top-level chunk function ``(chunk_index, q_values, config, seed)``.
        n_workers: Requested number of chunks / worker processes.
        seed: Root seed (None draws fresh OS entropy).
    """

    def __init__(
        self,
        worker: ChunkWorker[T],
        *,
        n_workers: int,
        seed: int | None = None,
    ) -> None:
        self.worker = worker
        self.n_workers = int(n_workers)
        self.seed_sequence = np.random.SeedSequence(seed)
        self.state = SweepState.IDLE
        self.chunks: list[tuple[float, ...]] = []

    def partition(self, qrange: Sequence[float]) -> list[tuple[float, ...]]:
        """Shuffle and split qrange; moves the sweep to PARTITIONED."""
        shuffle_rng = np.random.default_rng(self.seed_sequence)
        self.chunks = partition_qrange(qrange, self.n_workers, shuffle_rng)
        self.state = SweepState.PARTITIONED
        logger.info(
            "Partitioned %d q-values into %d chunk(s) of sizes %s",
            sum(len(c) for c in self.chunks),
            len(self.chunks),
            sorted({len(c) for c in self.chunks}),
        )
        return self.chunks

    def run(self, qrange: Sequence[float], config: Any) -> list[T]:
        """Run every chunk and return the partial results in chunk order.

        Raises:
            SweepWorkerError: If any chunk fails.
        """
        chunks = self.partition(qrange)
        seeds = self.seed_sequence.spawn(len(chunks))
        self.state = SweepState.RUNNING

        if len(chunks) == 1:
            results = [self.worker(0, chunks[0], config, seeds[0], None)]
        else:
            results = self._run_pool(chunks, config, seeds)

        self.state = SweepState.MERGED
        return results

    def _run_pool(
        self,
        chunks: list[tuple[float, ...]],
        config: Any,
        seeds: list[np.random.SeedSequence],
    ) -> list[T]:
        results: list[T | None] = [None] * len(chunks)
        with Manager() as manager:
            abort = manager.Event()
            # leaving the pool block waits for every worker to return
            with ProcessPoolExecutor(max_workers=len(chunks)) as pool:
                futures: dict[Future[T], int] = {
                    pool.submit(self.worker, idx, chunk, config, seed, abort): idx
                    for idx, (chunk, seed) in enumerate(zip(chunks, seeds))
                }
                try:
                    for done, fut in enumerate(as_completed(futures), start=1):
                        idx = futures[fut]
                        try:
                            results[idx] = fut.result()
                        except BrokenProcessPool as exc:
                            raise SweepWorkerError(
                                idx, float("nan"), _POOL_BROKEN_MSG.format(detail=exc)
                            ) from exc
                        logger.info("Chunk %d finished (%d/%d)", idx, done, len(chunks))
                except BaseException:
                    abort.set()
                    for fut in futures:
                        fut.cancel()
                    logger.info("Sweep aborted; waiting for running chunks to stop")
                    raise
        return [r for r in results if r is not None]

    def finish(self) -> None:
        """Mark the sweep as DONE."""
        self.state = SweepState.DONE


# =============================================================================
# Entry points
# =============================================================================


def run_chain_sweep(
    config: ChainSweepConfig, *, write: bool = True
) -> dict[str, pd.DataFrame]:
    """Run a chain sweep and return one ``(q, extremum)`` table per species.

    Rows follow chunk order, not q order; sort on ``q`` if needed.

    Args:
        config: Validated sweep configuration.
        write: Also write ``bifout_<species>.csv`` to ``config.output_path``.

    Returns:
        Species name -> table.

    Raises:
        SweepWorkerError: If any q-value fails.
    """
    orchestrator: SweepOrchestrator[dict[str, pd.DataFrame]] = SweepOrchestrator(
        run_chain_chunk, n_workers=config.worker_count(), seed=config.seed
    )
    partials = orchestrator.run(config.qrange, config)

    species = FoodChain.species_names
    tables = {
        name: concat_tables((p[name] for p in partials), CHAIN_COLUMNS)
        for name in species
    }
    logger.info(
        "Chain sweep merged: %s",
        ", ".join(f"{name}={len(tables[name])} rows" for name in species),
    )
    if write:
        write_chain_tables(tables, config.output_path)
    orchestrator.finish()
    return tables


def run_web_sweep(config: WebSweepConfig, *, write: bool = True) -> pd.DataFrame:
    """Run a web sweep and return the ``(q, div)`` table.

    Rows follow chunk order, not q order; sort on ``q`` if needed.

    Args:
        config: Validated sweep configuration.
        write: Also write ``config.output_filename`` to ``config.output_path``.

    Returns:
        Diversity table.

    Raises:
        SweepWorkerError: If any q-value fails.
    """
    orchestrator: SweepOrchestrator[pd.DataFrame] = SweepOrchestrator(
        run_web_chunk, n_workers=config.worker_count(), seed=config.seed
    )
    partials = orchestrator.run(config.qrange, config)

    table = concat_tables(partials, WEB_COLUMNS)
    logger.info("Web sweep merged: %d rows", len(table))
    if write:
        write_diversity_table(table, config.output_path, config.output_filename)
    orchestrator.finish()
    return table
