"""Accelerator memory and stream handling on top of torch."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator, Sequence

import numpy as np
import torch
from numpy.typing import ArrayLike

from sqanneal.errors import DeviceFailure, InvalidArgument

logger = logging.getLogger(__name__)

_TORCH_DTYPES = {
    "float32": torch.float32,
    "float64": torch.float64,
}


def resolve_dtype(name: str) -> torch.dtype:
    """Map a real-number type name to its torch dtype."""
    try:
        return _TORCH_DTYPES[name]
    except KeyError:
        raise InvalidArgument(f"unsupported real type: {name!r}") from None


class Device:
    """A torch device plus the real type and execution stream used on it.

    On CUDA every engine operation is enqueued on a dedicated stream, so
    work submitted through one Device runs in submission order. Readback
    through ``to_host`` waits for that stream first.
    """

    def __init__(self, name: str = "cpu", dtype: str = "float64") -> None:
        try:
            self.torch_device = torch.device(name)
        except RuntimeError as exc:
            raise InvalidArgument(f"unknown device: {name!r}") from exc
        self.dtype = resolve_dtype(dtype)
        self._stream: torch.cuda.Stream | None = None
        if self.torch_device.type == "cuda":
            try:
                self._stream = torch.cuda.Stream(device=self.torch_device)
            except RuntimeError as exc:
                raise DeviceFailure(f"cannot create stream on {name}: {exc}") from exc
        logger.debug("device %s ready (dtype=%s)", self.torch_device, dtype)

    def __repr__(self) -> str:
        return f"Device({str(self.torch_device)!r}, dtype={self.dtype})"

    @contextlib.contextmanager
    def execution(self) -> Iterator[None]:
        """Enqueue the enclosed torch work on this device's stream."""
        if self._stream is None:
            yield
            return
        with torch.cuda.stream(self._stream):
            yield

    def synchronize(self) -> None:
        """Block until all work submitted on the stream has finished."""
        if self._stream is None:
            return
        try:
            self._stream.synchronize()
        except RuntimeError as exc:
            raise DeviceFailure(f"stream synchronization failed: {exc}") from exc

    def empty(
        self, shape: Sequence[int] | int, dtype: torch.dtype | None = None
    ) -> torch.Tensor:
        return torch.empty(
            shape, dtype=dtype or self.dtype, device=self.torch_device
        )

    def zeros(
        self, shape: Sequence[int] | int, dtype: torch.dtype | None = None
    ) -> torch.Tensor:
        return torch.zeros(
            shape, dtype=dtype or self.dtype, device=self.torch_device
        )

    def to_device(
        self, array: ArrayLike, dtype: torch.dtype | None = None
    ) -> torch.Tensor:
        """Copy a host array to a new device tensor."""
        host = np.ascontiguousarray(array)
        try:
            with self.execution():
                return torch.as_tensor(
                    host, dtype=dtype or self.dtype, device=self.torch_device
                ).clone()
        except RuntimeError as exc:
            raise DeviceFailure(f"host-to-device copy failed: {exc}") from exc

    def to_host(self, tensor: torch.Tensor) -> np.ndarray:
        """Wait for pending work, then copy a device tensor to host memory."""
        self.synchronize()
        try:
            return tensor.detach().cpu().numpy().copy()
        except RuntimeError as exc:
            raise DeviceFailure(f"device-to-host copy failed: {exc}") from exc
