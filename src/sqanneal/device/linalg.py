"""Batched vector and matrix primitives over device tensors.

Every primitive that writes into a caller-supplied destination follows the
BLAS convention ``out = alpha * f(inputs) + add_factor * out``. With
``add_factor == 0`` the previous contents of ``out`` are ignored, so an
uninitialised buffer is a valid destination. When ``out`` is omitted a new
device tensor is allocated and returned.

Batched forms treat each row of a matrix as one vector, so P replicas of an
N-site system are a P x N matrix and a batched call processes all of them in
one dispatch. Transposed operands of the batched reductions are materialised
into call-scoped scratch buffers; products pass transposes straight through
to gemm, which handles them without a copy.
"""

from __future__ import annotations

import torch

from sqanneal.device.device import Device
from sqanneal.device.scratch import Scratch, ScratchPool
from sqanneal.errors import DimensionMismatch, InvalidArgument
from sqanneal.types import BatchOp, MatrixOp


def _axpby(
    y: torch.Tensor, alpha: float, x: torch.Tensor, beta: float
) -> torch.Tensor:
    """y = alpha * x + beta * y, ignoring y's contents when beta is zero."""
    if beta == 0.0:
        y.copy_(x * alpha)
    else:
        y.copy_(x * alpha + y * beta)
    return y


def _check_batch_op(op: BatchOp) -> None:
    if not isinstance(op, BatchOp):
        raise InvalidArgument(f"unknown batch op: {op!r}")


def _check_matrix_op(op: MatrixOp) -> None:
    if not isinstance(op, MatrixOp):
        raise InvalidArgument(f"unknown matrix op: {op!r}")


def _require_dim(tensor: torch.Tensor, ndim: int, name: str) -> None:
    if tensor.dim() != ndim:
        raise DimensionMismatch(
            f"{name} must be {ndim}-d, got shape {tuple(tensor.shape)}"
        )


def product_shape(
    A: torch.Tensor, op_a: MatrixOp, B: torch.Tensor, op_b: MatrixOp
) -> tuple[int, int]:
    """Shape of op(A) @ op(B); fails if the inner dimensions differ."""
    _check_matrix_op(op_a)
    _check_matrix_op(op_b)
    _require_dim(A, 2, "A")
    _require_dim(B, 2, "B")
    a_rows, a_cols = A.shape if op_a is MatrixOp.NONE else A.shape[::-1]
    b_rows, b_cols = B.shape if op_b is MatrixOp.NONE else B.shape[::-1]
    if a_cols != b_rows:
        raise DimensionMismatch(
            f"inner dimensions do not match: ({a_rows}, {a_cols}) x ({b_rows}, {b_cols})"
        )
    return int(a_rows), int(b_cols)


class BatchedMath:
    """Stateless batched linear algebra on one device."""

    def __init__(self, device: Device) -> None:
        self.device = device
        self.scratch = ScratchPool(device)

    def _output(
        self,
        out: torch.Tensor | None,
        shape: tuple[int, ...],
        add_factor: float,
    ) -> tuple[torch.Tensor, float]:
        if out is None:
            return self.device.empty(shape), 0.0
        if tuple(out.shape) != shape:
            raise DimensionMismatch(
                f"destination shape {tuple(out.shape)} does not match {shape}"
            )
        return out, add_factor

    def _as_rows(
        self, scratch: Scratch, M: torch.Tensor, op: MatrixOp
    ) -> torch.Tensor:
        """Row-major view of a batch, transposing into its own scratch slot."""
        if op is MatrixOp.NONE:
            return M
        rows = scratch.matrix(M.shape[1], M.shape[0])
        return self.transpose(rows, M)

    # -- element-wise -----------------------------------------------------

    def scale(
        self,
        y: torch.Tensor,
        alpha: float,
        x: torch.Tensor,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """y = alpha * x + add_factor * y."""
        if y.shape != x.shape:
            raise DimensionMismatch(
                f"length does not match: {tuple(y.shape)} != {tuple(x.shape)}"
            )
        return _axpby(y, alpha, x, add_factor)

    def scale_broadcast(
        self,
        A: torch.Tensor,
        alpha: float,
        x: torch.Tensor,
        op: BatchOp = BatchOp.ROWWISE,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """Broadcast x over A: A = alpha * bcast(x) + add_factor * A.

        A 0-d x fills every element. A vector x is repeated across rows
        (ROWWISE, len(x) == cols) or across columns (COLWISE, len(x) == rows).
        """
        _check_batch_op(op)
        if x.dim() == 0:
            return _axpby(A, alpha, x.expand_as(A), add_factor)
        _require_dim(A, 2, "A")
        _require_dim(x, 1, "x")
        if op is BatchOp.ROWWISE:
            if A.shape[1] != x.shape[0]:
                raise DimensionMismatch(
                    f"cols of matrix ({A.shape[1]}) do not match vector length ({x.shape[0]})"
                )
            expanded = x.unsqueeze(0).expand_as(A)
        else:
            if A.shape[0] != x.shape[0]:
                raise DimensionMismatch(
                    f"rows of matrix ({A.shape[0]}) do not match vector length ({x.shape[0]})"
                )
            expanded = x.unsqueeze(1).expand_as(A)
        return _axpby(A, alpha, expanded, add_factor)

    def set_to_diagonals(self, A: torch.Tensor, value: float) -> torch.Tensor:
        _require_dim(A, 2, "A")
        A.diagonal().fill_(value)
        return A

    def transpose(self, out: torch.Tensor, A: torch.Tensor) -> torch.Tensor:
        """Copy A^T into out. This is a real copy, not a view."""
        _require_dim(A, 2, "A")
        expected = (A.shape[1], A.shape[0])
        if tuple(out.shape) != expected:
            raise DimensionMismatch(
                f"transpose destination {tuple(out.shape)} != {expected}"
            )
        out.copy_(A.t())
        return out

    # -- reductions -------------------------------------------------------

    def sum(
        self,
        x: torch.Tensor,
        alpha: float = 1.0,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """Sum of every element of a vector or matrix into a 0-d tensor."""
        out, add_factor = self._output(out, (), add_factor)
        return _axpby(out, alpha, x.sum(), add_factor)

    def sum_diagonals(
        self,
        A: torch.Tensor,
        alpha: float = 1.0,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        _require_dim(A, 2, "A")
        out, add_factor = self._output(out, (), add_factor)
        return _axpby(out, alpha, torch.diagonal(A).sum(), add_factor)

    def sum_batched(
        self,
        A: torch.Tensor,
        op: BatchOp = BatchOp.ROWWISE,
        alpha: float = 1.0,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """Per-row (ROWWISE) or per-column (COLWISE) sums of A.

        COLWISE transposes A into scratch first and then reduces rows.
        Callers reducing the same columns repeatedly should transpose once.
        """
        _check_batch_op(op)
        _require_dim(A, 2, "A")
        with self.scratch.scope() as scratch:
            if op is BatchOp.COLWISE:
                rows = self.transpose(scratch.matrix(A.shape[1], A.shape[0]), A)
            else:
                rows = A
            out, add_factor = self._output(out, (rows.shape[0],), add_factor)
            _axpby(out, alpha, rows.sum(dim=1), add_factor)
        return out

    def min(self, A: torch.Tensor) -> torch.Tensor:
        # Whether this is a global or per-row/column minimum is undecided.
        raise NotImplementedError("min reduction is not implemented")

    # -- inner products ---------------------------------------------------

    def dot(
        self,
        x: torch.Tensor,
        y: torch.Tensor,
        alpha: float = 1.0,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        _require_dim(x, 1, "x")
        _require_dim(y, 1, "y")
        if x.shape[0] != y.shape[0]:
            raise DimensionMismatch(
                f"vector length does not match: {x.shape[0]} != {y.shape[0]}"
            )
        out, add_factor = self._output(out, (), add_factor)
        return _axpby(out, alpha, torch.dot(x, y), add_factor)

    def dot_batched(
        self,
        A: torch.Tensor,
        B: torch.Tensor,
        alpha: float = 1.0,
        op_a: MatrixOp = MatrixOp.NONE,
        op_b: MatrixOp = MatrixOp.NONE,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """Row-by-row inner products: out[p] = alpha * <rows(A)[p], rows(B)[p]>."""
        _check_matrix_op(op_a)
        _check_matrix_op(op_b)
        _require_dim(A, 2, "A")
        _require_dim(B, 2, "B")
        with self.scratch.scope() as scratch:
            a_rows = self._as_rows(scratch, A, op_a)
            b_rows = self._as_rows(scratch, B, op_b)
            if a_rows.shape != b_rows.shape:
                raise DimensionMismatch(
                    f"batched operands do not match: {tuple(a_rows.shape)} != {tuple(b_rows.shape)}"
                )
            out, add_factor = self._output(out, (a_rows.shape[0],), add_factor)
            _axpby(out, alpha, (a_rows * b_rows).sum(dim=1), add_factor)
        return out

    # -- products ---------------------------------------------------------

    def gemm(
        self,
        alpha: float,
        A: torch.Tensor,
        op_a: MatrixOp,
        B: torch.Tensor,
        op_b: MatrixOp,
        beta: float = 0.0,
        C: torch.Tensor | None = None,
    ) -> torch.Tensor:
        """C = alpha * op(A) @ op(B) + beta * C.

        The single product primitive every other product dispatches to.
        """
        shape = product_shape(A, op_a, B, op_b)
        a = A.t() if op_a is MatrixOp.TRANSPOSE else A
        b = B.t() if op_b is MatrixOp.TRANSPOSE else B
        C, beta = self._output(C, shape, beta)
        C.copy_(torch.addmm(C, a, b, beta=beta, alpha=alpha))
        return C

    def mv_product(
        self,
        A: torch.Tensor,
        x: torch.Tensor,
        alpha: float = 1.0,
        op_a: MatrixOp = MatrixOp.NONE,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """out = alpha * op(A) @ x + add_factor * out."""
        _check_matrix_op(op_a)
        _require_dim(A, 2, "A")
        _require_dim(x, 1, "x")
        rows = A.shape[0] if op_a is MatrixOp.NONE else A.shape[1]
        out, add_factor = self._output(out, (rows,), add_factor)
        self.gemm(alpha, A, op_a, x.unsqueeze(1), MatrixOp.NONE,
                  add_factor, out.unsqueeze(1))
        return out

    def vm_product(
        self,
        x: torch.Tensor,
        A: torch.Tensor,
        alpha: float = 1.0,
        op_a: MatrixOp = MatrixOp.NONE,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """out = alpha * x @ op(A) + add_factor * out."""
        _check_matrix_op(op_a)
        _require_dim(A, 2, "A")
        _require_dim(x, 1, "x")
        cols = A.shape[1] if op_a is MatrixOp.NONE else A.shape[0]
        out, add_factor = self._output(out, (cols,), add_factor)
        self.gemm(alpha, x.unsqueeze(0), MatrixOp.NONE, A, op_a,
                  add_factor, out.unsqueeze(0))
        return out

    def mm_product(
        self,
        A: torch.Tensor,
        B: torch.Tensor,
        alpha: float = 1.0,
        op_a: MatrixOp = MatrixOp.NONE,
        op_b: MatrixOp = MatrixOp.NONE,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """out = alpha * op(A) @ op(B) + add_factor * out."""
        return self.gemm(alpha, A, op_a, B, op_b, add_factor, out)

    def vmv_product(
        self,
        y: torch.Tensor,
        A: torch.Tensor,
        x: torch.Tensor,
        alpha: float = 1.0,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """alpha * y^T A x, via A @ x followed by a dot."""
        _require_dim(A, 2, "A")
        with self.scratch.scope() as scratch:
            Ax = self.mv_product(A, x, out=scratch.vector(A.shape[0]))
            return self.dot(y, Ax, alpha, out, add_factor)

    def batched_vmv_product(
        self,
        Y: torch.Tensor,
        A: torch.Tensor,
        X: torch.Tensor,
        alpha: float = 1.0,
        op_y: MatrixOp = MatrixOp.NONE,
        op_x: MatrixOp = MatrixOp.NONE,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """out[p] = alpha * y_p^T A x_p for every row pair of Y and X.

        With op TRANSPOSE a batch is given column-wise (one vector per
        column). Each transposed batch gets its own scratch slot.
        """
        _check_matrix_op(op_y)
        _check_matrix_op(op_x)
        _require_dim(A, 2, "A")
        _require_dim(X, 2, "X")
        _require_dim(Y, 2, "Y")
        with self.scratch.scope() as scratch:
            x_rows = self._as_rows(scratch, X, op_x)
            y_rows = self._as_rows(scratch, Y, op_y)
            # rows of x_rows @ A^T are A @ x_p
            Ax = scratch.matrix(*product_shape(x_rows, MatrixOp.NONE, A, MatrixOp.TRANSPOSE))
            self.gemm(1.0, x_rows, MatrixOp.NONE, A, MatrixOp.TRANSPOSE, 0.0, Ax)
            return self.dot_batched(y_rows, Ax, alpha, out=out, add_factor=add_factor)

    def mmm_product(
        self,
        Y: torch.Tensor,
        A: torch.Tensor,
        X: torch.Tensor,
        alpha: float = 1.0,
        op_y: MatrixOp = MatrixOp.NONE,
        op_a: MatrixOp = MatrixOp.NONE,
        op_x: MatrixOp = MatrixOp.NONE,
        out: torch.Tensor | None = None,
        add_factor: float = 0.0,
    ) -> torch.Tensor:
        """out = alpha * op(Y) @ op(A) @ op(X) + add_factor * out."""
        with self.scratch.scope() as scratch:
            Ax = scratch.matrix(*product_shape(A, op_a, X, op_x))
            self.gemm(1.0, A, op_a, X, op_x, 0.0, Ax)
            return self.gemm(alpha, Y, op_y, Ax, MatrixOp.NONE, add_factor, out)
