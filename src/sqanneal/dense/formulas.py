"""Dense-graph problem decomposition and energy formulas.

A dense QUBO problem is an N x N symmetric matrix W with objective
E(x) = x^T W x over bits x in {0, 1}^N. With spins q = 2x - 1 the same
objective is the Ising form

    E(q) = c + h . q + q^T J q

where h = W 1 / 2, J = W / 4 with its diagonal cleared (q_i^2 = 1 folds
self-coupling into c), and c = (sum(W) + tr(W)) / 4.
"""

from __future__ import annotations

import logging

import numpy as np
import scipy.linalg
import torch
from numpy.typing import ArrayLike, NDArray

from sqanneal.device.linalg import BatchedMath
from sqanneal.errors import DimensionMismatch, InvalidArgument
from sqanneal.types import BatchOp, IsingModel, OptimizeMethod

logger = logging.getLogger(__name__)


def validate_problem(
    W: ArrayLike, atol: float = 1e-8, rtol: float = 1e-6
) -> NDArray[np.float64]:
    """Check that W is a finite, square, symmetric matrix and return it."""
    W = np.asarray(W, dtype=np.float64)
    if W.ndim != 2 or W.shape[0] != W.shape[1]:
        raise DimensionMismatch(f"W must be a square matrix, got shape {W.shape}")
    if W.shape[0] == 0:
        raise DimensionMismatch("W must have at least one row")
    if not np.all(np.isfinite(W)):
        raise InvalidArgument("W contains non-finite values")
    if not scipy.linalg.issymmetric(W, atol=atol, rtol=rtol):
        raise DimensionMismatch("W is not symmetric within tolerance")
    return W


def bits_to_spins(x: ArrayLike) -> NDArray[np.int8]:
    """Map bits {0, 1} to spins {-1, +1}."""
    x = np.asarray(x)
    if not np.isin(x, (0, 1)).all():
        raise InvalidArgument("bits must be 0 or 1")
    return (2 * x.astype(np.int8) - 1).astype(np.int8)


def spins_to_bits(q: ArrayLike) -> NDArray[np.int8]:
    """Map spins {-1, +1} to bits {0, 1}."""
    q = np.asarray(q)
    return ((q.astype(np.int8) + 1) // 2).astype(np.int8)


class DenseGraphFormulas:
    """Decomposition and energies for dense-graph problems.

    The annealing engine takes one of these at construction; it is the
    only place that knows how a raw problem maps onto (h, J, c).
    """

    kind = "dense"

    def __init__(self, math: BatchedMath) -> None:
        self.math = math

    def calculate_hJc(
        self,
        W: ArrayLike,
        om: OptimizeMethod = OptimizeMethod.MINIMIZE,
        atol: float = 1e-8,
        rtol: float = 1e-6,
    ) -> IsingModel:
        """Decompose W into device-resident (h, J, c).

        Maximization negates W once up front, so the result is the exact
        negation of the minimize decomposition and the engine only ever
        minimizes.
        """
        if not isinstance(om, OptimizeMethod):
            raise InvalidArgument(f"unknown optimize method: {om!r}")
        W = validate_problem(W, atol=atol, rtol=rtol)
        math = self.math
        device = math.device
        n = W.shape[0]

        with device.execution():
            d_W = device.to_device(W)
            if om is OptimizeMethod.MAXIMIZE:
                math.scale(d_W, -1.0, d_W)

            h = math.sum_batched(d_W, BatchOp.ROWWISE, alpha=0.5)
            J = math.scale(device.empty((n, n)), 0.25, d_W)
            math.set_to_diagonals(J, 0.0)
            c = math.sum(d_W, alpha=0.25)
            math.sum_diagonals(d_W, alpha=0.25, out=c, add_factor=1.0)

        logger.debug("decomposed %dx%d problem (%s)", n, n, om.name.lower())
        return IsingModel(h=h, J=J, c=c)

    def calculate_E(
        self,
        model: IsingModel,
        q: torch.Tensor,
        out: torch.Tensor | None = None,
    ) -> torch.Tensor:
        """Per-replica energies c + h . q_p + q_p^T J q_p for a P x N spin matrix."""
        math = self.math
        n = model.n_spins
        if q.dim() != 2 or q.shape[1] != n:
            raise DimensionMismatch(
                f"spin matrix shape {tuple(q.shape)} does not match N={n}"
            )
        with math.device.execution():
            E = math.batched_vmv_product(q, model.J, q, out=out)
            math.mv_product(q, model.h, out=E, add_factor=1.0)
            E.add_(model.c)
        return E
