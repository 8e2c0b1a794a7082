# src/foodweb_engine/dataset.py
"""Result tables of chain and web sweeps.

Assemblers collect ``(q, observation)`` records and finalize them into
column-fixed pandas DataFrames. The CSV helpers are the boundary to plotting
code: one comma-separated file per species (chain) or per interaction regime
(web), header row included, no index column.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, NamedTuple

import numpy as np
import pandas as pd

from .models import CHAIN_SPECIES

logger = logging.getLogger(__name__)

CHAIN_COLUMNS: Final[tuple[str, str]] = ("q", "extremum")
WEB_COLUMNS: Final[tuple[str, str]] = ("q", "div")
CHAIN_FILE_TEMPLATE: Final[str] = "bifout_{species}.csv"

_MISSING_DIR_MSG = "output path {path} does not exist - creating it"
_HEADER_ERROR_MSG = "{path}: expected columns {expected}, found {actual}"
_UNKNOWN_SPECIES_MSG = "Unknown species {species!r}; expected one of {expected}"


class BifurcationRecord(NamedTuple):
    """One observed extremum of one species at one q-value."""

    q: float
    value: float


class DiversityRecord(NamedTuple):
    """Number of surviving species at one q-value."""

    q: float
    richness: int


def _bifurcation_frame(rows: list[BifurcationRecord]) -> pd.DataFrame:
    q_col, value_col = CHAIN_COLUMNS
    return pd.DataFrame(
        {
            q_col: np.array([r.q for r in rows], dtype=np.float64),
            value_col: np.array([r.value for r in rows], dtype=np.float64),
        }
    )


@dataclass(slots=True)
class BifurcationAssembler:
    """Per-species buffers of bifurcation records."""

    species: tuple[str, ...] = CHAIN_SPECIES
    _rows: dict[str, list[BifurcationRecord]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._rows = {name: [] for name in self.species}

    def _buffer(self, species: str) -> list[BifurcationRecord]:
        try:
            return self._rows[species]
        except KeyError as exc:
            raise KeyError(
                _UNKNOWN_SPECIES_MSG.format(species=species, expected=self.species)
            ) from exc

    def append(self, species: str, record: BifurcationRecord) -> None:
        """Add one record for a species."""
        self._buffer(species).append(BifurcationRecord(float(record.q), float(record.value)))

    def extend(self, species: str, q: float, values: Iterable[float]) -> None:
        """Add one record per extremum value observed at q."""
        buf = self._buffer(species)
        buf.extend(BifurcationRecord(float(q), float(v)) for v in values)

    def __len__(self) -> int:
        return sum(len(rows) for rows in self._rows.values())

    def finalize(self) -> dict[str, pd.DataFrame]:
        """Return one ``(q, extremum)`` table per species."""
        return {name: _bifurcation_frame(rows) for name, rows in self._rows.items()}


@dataclass(slots=True)
class DiversityAssembler:
    """Buffer of diversity records."""

    _rows: list[DiversityRecord] = field(default_factory=list, repr=False)

    def append(self, record: DiversityRecord) -> None:
        """Add one record."""
        self._rows.append(DiversityRecord(float(record.q), int(record.richness)))

    def __len__(self) -> int:
        return len(self._rows)

    def finalize(self) -> pd.DataFrame:
        """Return the ``(q, div)`` table."""
        q_col, div_col = WEB_COLUMNS
        return pd.DataFrame(
            {
                q_col: np.array([r.q for r in self._rows], dtype=np.float64),
                div_col: np.array([r.richness for r in self._rows], dtype=np.int64),
            }
        )


def concat_tables(parts: Iterable[pd.DataFrame], columns: tuple[str, ...]) -> pd.DataFrame:
    """Concatenate partial tables in the given order, resetting the index."""
    items = list(parts)
    frames = [p for p in items if len(p)]
    if not frames:
        return items[0].copy() if items else pd.DataFrame(columns=list(columns))
    return pd.concat(frames, ignore_index=True)[list(columns)]


def ensure_output_dir(path: str | Path) -> Path:
    """Create the output directory on first use, warning when it was missing."""
    out = Path(path)
    if not out.is_dir():
        warnings.warn(_MISSING_DIR_MSG.format(path=out), RuntimeWarning, stacklevel=3)
        out.mkdir(parents=True, exist_ok=True)
    return out


def chain_table_path(output_path: str | Path, species: str) -> Path:
    """File holding the bifurcation table of one species."""
    return Path(output_path) / CHAIN_FILE_TEMPLATE.format(species=species)


def write_chain_tables(
    tables: Mapping[str, pd.DataFrame], output_path: str | Path
) -> dict[str, Path]:
    """Write one CSV per species.

    Args:
        tables: Species name -> ``(q, extremum)`` table.
        output_path: Destination directory (created if missing).

    Returns:
        Species name -> written file.
    """
    out = ensure_output_dir(output_path)
    written: dict[str, Path] = {}
    for species, table in tables.items():
        target = chain_table_path(out, species)
        table.loc[:, list(CHAIN_COLUMNS)].to_csv(target, index=False)
        logger.info("Wrote %d rows to %s", len(table), target)
        written[species] = target
    return written


def write_diversity_table(
    table: pd.DataFrame, output_path: str | Path, filename: str
) -> Path:
    """Write the ``(q, div)`` table to ``output_path / filename``."""
    out = ensure_output_dir(output_path)
    target = out / filename
    table.loc[:, list(WEB_COLUMNS)].to_csv(target, index=False)
    logger.info("Wrote %d rows to %s", len(table), target)
    return target


def _read_table(path: Path, columns: tuple[str, ...]) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Result table not found: {path}")
    frame = pd.read_csv(path)
    if tuple(frame.columns) != columns:
        raise ValueError(
            _HEADER_ERROR_MSG.format(path=path, expected=list(columns), actual=list(frame.columns))
        )
    return frame


def read_chain_tables(
    output_path: str | Path, species: Iterable[str] = CHAIN_SPECIES
) -> dict[str, pd.DataFrame]:
    """Read the per-species bifurcation tables written by :func:`write_chain_tables`.

    Raises:
        FileNotFoundError: If a table is missing.
        ValueError: If a header does not read ``q,extremum``.
    """
    return {
        name: _read_table(chain_table_path(output_path, name), CHAIN_COLUMNS)
        for name in species
    }


def read_diversity_table(path: str | Path) -> pd.DataFrame:
    """Read a ``(q, div)`` table.

    Raises:
        FileNotFoundError: If the file is missing.
        ValueError: If the header does not read ``q,div``.
    """
    return _read_table(Path(path), WEB_COLUMNS)
