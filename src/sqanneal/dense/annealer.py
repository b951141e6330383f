"""Simulated quantum annealing for dense-graph problems.

P trotter replicas of an N-spin system are held as one P x N spin matrix on
the device. Each call to ``anneal_one_step`` runs one Monte-Carlo sweep of
N sub-steps; in every sub-step each replica proposes one spin flip and all
P proposals are accepted or rejected together (Metropolis) against

    dE = -(2/P) q_ps (h_s + 2 (J q_p)_s) + 2 J_perp q_ps (q_(p-1)s + q_(p+1)s)

where J_perp = -(kT/2) ln tanh(G / (P kT)) couples replica p to its two
neighbours on the imaginary-time ring.
"""

from __future__ import annotations

import logging
import math
import numbers
from collections.abc import Callable
from typing import Any

import numpy as np
import torch
from numpy.typing import ArrayLike, NDArray

from sqanneal.dense.formulas import DenseGraphFormulas, bits_to_spins, spins_to_bits
from sqanneal.device.device import Device
from sqanneal.device.linalg import BatchedMath
from sqanneal.device.rng import RandomStream
from sqanneal.errors import DimensionMismatch, InvalidArgument
from sqanneal.state import AnnealerState
from sqanneal.types import (
    Algorithm,
    AnnealerConfig,
    BatchOp,
    IsingModel,
    OptimizeMethod,
)

logger = logging.getLogger(__name__)


class AnnealingEngine:
    """Device-resident SQA engine.

    Operation order is gated by ``AnnealerState``::

        seed -> set_problem -> set_num_trotters -> init_anneal
             -> randomize_q | set_x -> anneal_one_step ... -> calculate_E

    The engine never loops over a schedule itself; callers drive
    ``anneal_one_step`` with their own (G, kT) sequence.
    """

    def __init__(
        self,
        config: AnnealerConfig | None = None,
        shape: Callable[[BatchedMath], DenseGraphFormulas] = DenseGraphFormulas,
    ) -> None:
        self.config = config or AnnealerConfig()
        self.device = Device(self.config.device, self.config.dtype)
        self.math = BatchedMath(self.device)
        self.formulas = shape(self.math)
        self.random = RandomStream(self.device)
        self.state = AnnealerState()

        self._algorithm = Algorithm.SEQUENTIAL_SITES
        self.select_algorithm(self.config.algorithm)
        self._om = OptimizeMethod.MINIMIZE
        self._model: IsingModel | None = None
        self._n = 0
        self._m = 0

        self._q: torch.Tensor | None = None
        self._E: torch.Tensor | None = None
        self._E_valid = False
        self._replicas: torch.Tensor | None = None
        self._prev: torch.Tensor | None = None
        self._next: torch.Tensor | None = None

    def __enter__(self) -> AnnealingEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._release_replicas()
        self.state.invalidate_replicas()

    # -- configuration ----------------------------------------------------

    def seed(self, value: int) -> None:
        self.random.seed(value)
        self.state.seeded = True

    def set_problem(
        self, W: ArrayLike, om: OptimizeMethod = OptimizeMethod.MINIMIZE
    ) -> None:
        """Decompose W and make it the current problem.

        Any replica state from a previous problem is discarded.
        """
        model = self.formulas.calculate_hJc(
            W, om, atol=self.config.symmetry_atol, rtol=self.config.symmetry_rtol
        )
        self._release_replicas()
        self.state.invalidate_replicas()
        self._model = model
        self._n = model.n_spins
        self._om = om
        self.state.problem_set = True
        logger.debug("problem set: N=%d, %s", self._n, om.name.lower())

    @property
    def optimize_method(self) -> OptimizeMethod:
        return self._om

    def get_problem_size(self) -> tuple[int, int]:
        """Return (N, number of trotters)."""
        self.state.require("problem_set")
        return self._n, self._m

    def set_num_trotters(self, m: int) -> None:
        if isinstance(m, bool) or not isinstance(m, numbers.Integral) or m < 1:
            raise InvalidArgument(f"number of trotters must be a positive integer, got {m!r}")
        m = int(m)
        if m != self._m:
            self._release_replicas()
            self.state.invalidate_replicas()
            logger.debug("number of trotters: %d -> %d", self._m, m)
        self._m = m
        self.state.trotters_set = True

    def select_algorithm(self, algo: Algorithm | str) -> Algorithm:
        """Choose the flip-candidate strategy; returns the one in effect."""
        algo = Algorithm.parse(algo)
        if algo is Algorithm.DEFAULT:
            algo = Algorithm.SEQUENTIAL_SITES
        self._algorithm = algo
        logger.debug("algorithm: %s", algo.value)
        return algo

    def get_algorithm(self) -> Algorithm:
        return self._algorithm

    def get_preferences(self) -> dict[str, Any]:
        return {
            "algorithm": self._algorithm.value,
            "problem_shape": self.formulas.kind,
            "n_trotters": self._m if self.state.trotters_set else None,
            "device": str(self.device.torch_device),
            "dtype": self.config.dtype,
            "random_runs_per_refill": self.config.random_runs_per_refill,
        }

    def set_preference(self, name: str, value: Any) -> None:
        if name == "algorithm":
            self.select_algorithm(value)
        elif name == "n_trotters":
            self.set_num_trotters(value)
        else:
            raise InvalidArgument(f"preference {name!r} is unknown or read-only")

    # -- lifecycle --------------------------------------------------------

    def init_anneal(self) -> None:
        """Allocate the replica spin matrix and per-replica index tables."""
        self.state.require("seeded", "problem_set", "trotters_set")
        n, m = self._n, self._m
        dev = self.device.torch_device
        self._q = self.device.zeros((m, n))
        self._E = self.device.zeros(m)
        self._E_valid = False
        self._replicas = torch.arange(m, device=dev)
        self._prev = torch.roll(self._replicas, 1)   # p - 1 mod P
        self._next = torch.roll(self._replicas, -1)  # p + 1 mod P
        self.random.set_batch_size(n * m * self.config.random_runs_per_refill)
        self.state.initialized = True
        self.state.spins_ready = False
        logger.debug("initialized: N=%d, P=%d", n, m)

    def fin_anneal(self) -> None:
        """Release replica state; the problem and seed are kept."""
        self.state.require("initialized")
        self.device.synchronize()
        self._release_replicas()
        self.state.invalidate_replicas()
        logger.debug("finalized")

    def _release_replicas(self) -> None:
        self._q = None
        self._E = None
        self._E_valid = False
        self._replicas = None
        self._prev = None
        self._next = None

    # -- spins ------------------------------------------------------------

    def randomize_q(self) -> None:
        """Set every spin of every replica to an independent random +-1."""
        self.state.require("seeded", "problem_set", "initialized")
        n, m = self._n, self._m
        with self.device.execution():
            draws = self.random.next_floats(n * m).view(m, n)
            self._q.copy_(torch.where(draws < 0.5, 1.0, -1.0))
        self.state.spins_ready = True
        self._E_valid = False

    def set_x(self, x: ArrayLike) -> None:
        """Broadcast one bit configuration to every replica."""
        self.state.require("seeded", "problem_set", "initialized")
        x = np.asarray(x)
        if x.shape != (self._n,):
            raise DimensionMismatch(
                f"bit vector shape {x.shape} does not match N={self._n}"
            )
        spins = self.device.to_device(bits_to_spins(x))
        with self.device.execution():
            self.math.scale_broadcast(self._q, 1.0, spins, BatchOp.ROWWISE)
        self.state.spins_ready = True
        self._E_valid = False

    # -- annealing --------------------------------------------------------

    @staticmethod
    def transverse_coupling(G: float, kT: float, n_trotters: int) -> float:
        """Ferromagnetic coupling between neighbouring replicas.

        Zero for a single replica, for G == 0, and in the kT -> 0 limit.
        """
        if n_trotters <= 1 or G <= 0.0 or kT <= 0.0:
            return 0.0
        return -0.5 * kT * math.log(math.tanh(G / (n_trotters * kT)))

    def anneal_one_step(self, G: float, kT: float) -> None:
        """Run one Monte-Carlo sweep at transverse field G and thermal kT.

        The sweep works on a copy of the spin matrix that replaces the
        current one only once every sub-step has completed.
        """
        G, kT = float(G), float(kT)
        if not (math.isfinite(G) and math.isfinite(kT)) or G < 0.0 or kT < 0.0:
            raise InvalidArgument(f"G and kT must be finite and >= 0, got G={G}, kT={kT}")
        self.state.require("seeded", "problem_set", "initialized", "spins_ready")
        n, m = self._n, self._m
        coupling = self.transverse_coupling(G, kT, m)

        with self.device.execution(), self.math.scratch.scope() as scratch:
            draws = self.random.next_floats(n * m).view(n, m)
            if self._algorithm is Algorithm.RANDOM_SITES:
                sites = self.random.next_positions(n * m, n).view(n, m)
            else:
                sites = None
            q = self._q.clone()
            jq = scratch.vector(m)
            for i in range(n):
                if sites is None:
                    pos = torch.full((m,), i, dtype=torch.long, device=q.device)
                    # J is symmetric: row i equals column i
                    self.math.mv_product(q, self._model.J[i], out=jq)
                else:
                    pos = sites[i]
                    self.math.dot_batched(self._model.J.index_select(0, pos), q, out=jq)
                self._flip(q, self._q, pos, jq, draws[i], coupling, kT)
            self._q.copy_(q)
        self._E_valid = False

    def _flip(
        self,
        q: torch.Tensor,
        pre_sweep: torch.Tensor,
        pos: torch.Tensor,
        jq: torch.Tensor,
        draws: torch.Tensor,
        coupling: float,
        kT: float,
    ) -> None:
        """Accept or reject one proposed flip per replica, all at once.

        Every decision sees q as it was before this sub-step. Ring-neighbour
        spins are read from ``pre_sweep``, the spins as they were before the
        sweep started.
        """
        m = self._m
        q_site = q[self._replicas, pos]
        dE = (-2.0 / m) * q_site * (self._model.h.index_select(0, pos) + 2.0 * jq)
        if coupling != 0.0:
            neighbours = pre_sweep[self._prev, pos] + pre_sweep[self._next, pos]
            dE = dE + 2.0 * coupling * q_site * neighbours
        if kT > 0.0:
            threshold = torch.exp(-dE / kT).clamp(max=1.0)
        else:
            threshold = (dE <= 0.0).to(dE.dtype)
        flip = draws < threshold
        q[self._replicas, pos] = torch.where(flip, -q_site, q_site)

    # -- readback ---------------------------------------------------------

    def calculate_E(self) -> None:
        """Recompute per-replica energies from the current spins."""
        self.state.require("seeded", "problem_set", "initialized", "spins_ready")
        self.formulas.calculate_E(self._model, self._q, out=self._E)
        if self._om is OptimizeMethod.MAXIMIZE:
            self._E.neg_()
        self._E_valid = True

    def get_E(self) -> NDArray[np.float64]:
        """Energy per replica in the caller's objective frame (x^T W x)."""
        self.state.require("seeded", "problem_set", "initialized", "spins_ready")
        if not self._E_valid:
            self.calculate_E()
        return self.device.to_host(self._E).astype(np.float64)

    def get_q(self) -> NDArray[np.int8]:
        """Replica spin matrix, P x N, values +-1."""
        self.state.require("seeded", "problem_set", "initialized", "spins_ready")
        return self.device.to_host(self._q).astype(np.int8)

    def get_x(self) -> NDArray[np.int8]:
        """Bit configuration of each replica, P x N, values 0/1."""
        return spins_to_bits(self.get_q())

    def get_hJc(self) -> tuple[NDArray[np.float64], NDArray[np.float64], float]:
        """Host copy of the (sign-adjusted) decomposition."""
        self.state.require("problem_set")
        model = self._model
        h = self.device.to_host(model.h).astype(np.float64)
        J = self.device.to_host(model.J).astype(np.float64)
        c = float(self.device.to_host(model.c))
        return h, J, c
