"""Call-scoped scratch buffers for intermediate results."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator

import torch

from sqanneal.device.device import Device


class Scratch:
    """Buffers leased inside one ``ScratchPool.scope()`` block.

    Everything handed out here is released when the block exits, on
    error paths too. Callers must not keep references past that point.
    """

    def __init__(self, pool: ScratchPool) -> None:
        self._pool = pool
        self._buffers: list[torch.Tensor] = []
        self.closed = False

    def _lease(self, shape: tuple[int, ...]) -> torch.Tensor:
        if self.closed:
            raise RuntimeError("scratch scope already released")
        buf = self._pool.device.empty(shape)
        self._buffers.append(buf)
        self._pool._in_use += 1
        return buf

    def vector(self, size: int) -> torch.Tensor:
        return self._lease((size,))

    def matrix(self, rows: int, cols: int) -> torch.Tensor:
        return self._lease((rows, cols))

    def _release(self) -> None:
        self._pool._in_use -= len(self._buffers)
        self._buffers.clear()
        self.closed = True


class ScratchPool:
    """Hands out temporary device buffers with call-scoped lifetime."""

    def __init__(self, device: Device) -> None:
        self.device = device
        self._in_use = 0

    @property
    def in_use(self) -> int:
        """Number of scratch buffers currently leased."""
        return self._in_use

    @contextlib.contextmanager
    def scope(self) -> Iterator[Scratch]:
        scratch = Scratch(self)
        try:
            yield scratch
        finally:
            scratch._release()
