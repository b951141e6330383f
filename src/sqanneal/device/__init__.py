"""Device memory, scratch buffers, batched math and random streams."""

from __future__ import annotations

from sqanneal.device.device import Device, resolve_dtype
from sqanneal.device.linalg import BatchedMath, product_shape
from sqanneal.device.rng import RandomBuffer, RandomStream
from sqanneal.device.scratch import Scratch, ScratchPool

__all__ = [
    "BatchedMath",
    "Device",
    "RandomBuffer",
    "RandomStream",
    "Scratch",
    "ScratchPool",
    "product_shape",
    "resolve_dtype",
]
