"""foodweb_engine: q-sweeps of food-chain and food-web population models."""

from __future__ import annotations

from .config import (
    ChainSweepConfig,
    WebSweepConfig,
    load_chain_config,
    load_web_config,
)
from .core_solver import CoreSolver, RunConfig, SegmentedRun, random_initial_state
from .dataset import (
    BifurcationAssembler,
    BifurcationRecord,
    DiversityAssembler,
    DiversityRecord,
    read_chain_tables,
    read_diversity_table,
    write_chain_tables,
    write_diversity_table,
)
from .errors import (
    ConfigurationError,
    FoodwebEngineError,
    IntegrationError,
    NumericDegeneracyError,
    SweepWorkerError,
)
from .extrema import minmax, reduce_extrema
from .models import (
    WEB_DIET,
    FoodChain,
    FoodWeb,
    Topology,
    functional_response,
    functional_response_table,
    make_model,
    trophic_levels,
)
from .parameters import (
    ChainParameters,
    WebParameters,
    set_foodchain_parms,
    set_foodweb_parms,
)
from .sweep import SweepOrchestrator, partition_qrange, run_chain_sweep, run_web_sweep
from .trajectory import Trajectory, TrajectoryOptions

__all__ = [
    "WEB_DIET",
    "BifurcationAssembler",
    "BifurcationRecord",
    "ChainParameters",
    "ChainSweepConfig",
    "ConfigurationError",
    "CoreSolver",
    "DiversityAssembler",
    "DiversityRecord",
    "FoodChain",
    "FoodWeb",
    "FoodwebEngineError",
    "IntegrationError",
    "NumericDegeneracyError",
    "RunConfig",
    "SegmentedRun",
    "SweepOrchestrator",
    "SweepWorkerError",
    "Topology",
    "Trajectory",
    "TrajectoryOptions",
    "WebParameters",
    "WebSweepConfig",
    "functional_response",
    "functional_response_table",
    "load_chain_config",
    "load_web_config",
    "make_model",
    "minmax",
    "partition_qrange",
    "random_initial_state",
    "read_chain_tables",
    "read_diversity_table",
    "reduce_extrema",
    "run_chain_sweep",
    "run_web_sweep",
    "set_foodchain_parms",
    "set_foodweb_parms",
    "trophic_levels",
    "write_chain_tables",
    "write_diversity_table",
]

__version__ = "0.1.0"
