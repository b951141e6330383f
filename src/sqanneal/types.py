"""Enums and dataclass definitions shared by the annealer."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

import numpy as np
import torch
from numpy.typing import NDArray

from sqanneal.errors import InvalidArgument


class OptimizeMethod(enum.Enum):
    """Direction of optimization for the raw coupling matrix."""

    MINIMIZE = 0
    MAXIMIZE = 1


class BatchOp(enum.Enum):
    """Axis a batched reduction or broadcast runs along."""

    ROWWISE = "rowwise"
    COLWISE = "colwise"


class MatrixOp(enum.Enum):
    """Operand transform applied before a product."""

    NONE = "none"
    TRANSPOSE = "transpose"


class Algorithm(enum.Enum):
    """Flip-candidate selection used by a Monte-Carlo sweep.

    SEQUENTIAL_SITES visits sites in index order, the same site in every
    replica. RANDOM_SITES draws one candidate site per replica per sub-step
    from the position buffer.
    """

    DEFAULT = "default"
    SEQUENTIAL_SITES = "sequential_sites"
    RANDOM_SITES = "random_sites"

    @classmethod
    def parse(cls, value: Algorithm | str) -> Algorithm:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidArgument(f"unknown algorithm: {value!r}") from None


_DTYPES = ("float32", "float64")


@dataclass
class AnnealerConfig:
    """Configuration for an annealing engine."""

    device: str = "cpu"
    dtype: str = "float64"
    algorithm: Algorithm | str = Algorithm.DEFAULT
    random_runs_per_refill: int = 10  # sweeps' worth of random values per refill
    symmetry_atol: float = 1e-8
    symmetry_rtol: float = 1e-6

    def __post_init__(self) -> None:
        if self.dtype not in _DTYPES:
            raise InvalidArgument(
                f"dtype must be one of {_DTYPES}, got {self.dtype!r}"
            )
        self.algorithm = Algorithm.parse(self.algorithm)
        if self.random_runs_per_refill < 1:
            raise InvalidArgument("random_runs_per_refill must be >= 1")
        if self.symmetry_atol < 0 or self.symmetry_rtol < 0:
            raise InvalidArgument("symmetry tolerances must be non-negative")


@dataclass
class IsingModel:
    """Device-resident (h, J, c) decomposition of a dense problem."""

    h: torch.Tensor
    J: torch.Tensor
    c: torch.Tensor  # 0-d

    @property
    def n_spins(self) -> int:
        return int(self.h.shape[0])


@dataclass
class AnnealSchedule:
    """Cooling schedule for a caller-driven annealing run."""

    n_steps: int = 100
    gamma_initial: float = 5.0       # transverse field start
    gamma_final: float = 0.01        # transverse field end
    kt_initial: float = 0.02         # thermal parameter start
    kt_final: float = 0.02           # thermal parameter end
    schedule_type: str = "exponential"  # 'exponential' or 'linear'


@dataclass
class AnnealResult:
    """Result of one run of a cooling schedule."""

    final_q: NDArray[np.int8]
    final_x: NDArray[np.int8]
    energies: NDArray[np.float64]
    best_x: NDArray[np.int8]
    best_energy: float
    best_replica: int
    n_steps: int
    replica_agreement: float = 0.0   # fraction of sites unanimous across replicas
    energy_trace: list[float] = field(default_factory=list)
