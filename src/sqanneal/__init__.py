"""Simulated quantum annealing for dense-graph QUBO problems.

Runs P coupled trotter replicas of an Ising system on a torch device,
with batched linear algebra and buffered device random numbers.
"""

from __future__ import annotations

import logging

from sqanneal.dense.annealer import AnnealingEngine
from sqanneal.errors import (
    AnnealerError,
    DeviceFailure,
    DimensionMismatch,
    InvalidArgument,
    NotReady,
    NotSeeded,
)
from sqanneal.schedule import run_anneal
from sqanneal.types import (
    Algorithm,
    AnnealerConfig,
    AnnealResult,
    AnnealSchedule,
    BatchOp,
    MatrixOp,
    OptimizeMethod,
)

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Algorithm",
    "AnnealResult",
    "AnnealSchedule",
    "AnnealerConfig",
    "AnnealerError",
    "AnnealingEngine",
    "BatchOp",
    "DeviceFailure",
    "DimensionMismatch",
    "InvalidArgument",
    "MatrixOp",
    "NotReady",
    "NotSeeded",
    "OptimizeMethod",
    "run_anneal",
]
