"""Buffered device random numbers.

Generating random values on the device has a fixed per-call cost, while a
sweep only consumes a handful of values per spin. RandomStream therefore
keeps pre-filled buffers and refills them in bulk when a request no longer
fits in what is left.
"""

from __future__ import annotations

import logging
import numbers
from collections.abc import Callable

import torch

from sqanneal.device.device import Device
from sqanneal.errors import InvalidArgument, NotSeeded

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1 << 16


class RandomBuffer:
    """A pre-generated batch of device random values with a read cursor.

    Slices handed out by ``take`` stay valid after a refill: a refill
    allocates a new tensor instead of overwriting the old one.
    """

    def __init__(
        self,
        name: str,
        capacity: int,
        generate: Callable[[int], torch.Tensor],
    ) -> None:
        self.name = name
        self.capacity = capacity
        self._generate = generate
        self._data: torch.Tensor | None = None
        self._cursor = 0
        self.n_refills = 0

    @property
    def remaining(self) -> int:
        if self._data is None:
            return 0
        return int(self._data.shape[0]) - self._cursor

    def reset(self) -> None:
        """Drop buffered values; the next take refills."""
        self._data = None
        self._cursor = 0

    def take(self, count: int) -> torch.Tensor:
        if count > self.remaining:
            size = max(count, self.capacity)
            logger.debug("refilling %s buffer with %d values", self.name, size)
            self._data = self._generate(size)
            self._cursor = 0
            self.n_refills += 1
        values = self._data[self._cursor:self._cursor + count]
        self._cursor += count
        return values


class RandomStream:
    """Seeded source of device-resident uniform floats and site positions.

    Acceptance draws and flip-position draws live in separate buffers, so
    the two purposes never consume each other's values.
    """

    def __init__(self, device: Device, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.device = device
        self._generator: torch.Generator | None = None
        self._position_bound: int | None = None
        self._floats = RandomBuffer("float", batch_size, self._generate_floats)
        self._positions = RandomBuffer("position", batch_size, self._generate_positions)
        self.set_batch_size(batch_size)

    @property
    def seeded(self) -> bool:
        return self._generator is not None

    @property
    def batch_size(self) -> int:
        return self._floats.capacity

    def seed(self, value: int) -> None:
        """Reset the generator; equal seeds give equal future sequences."""
        if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value < 0:
            raise InvalidArgument(f"seed must be an unsigned integer, got {value!r}")
        generator = torch.Generator(device=self.device.torch_device)
        generator.manual_seed(int(value))
        self._generator = generator
        self._floats.reset()
        self._positions.reset()
        self._position_bound = None

    def set_batch_size(self, batch_size: int) -> None:
        if batch_size < 1:
            raise InvalidArgument(f"batch size must be positive, got {batch_size}")
        self._floats.capacity = batch_size
        self._positions.capacity = batch_size

    def next_floats(self, count: int) -> torch.Tensor:
        """Uniform values in [0, 1) of the device's real type."""
        self._require_seed()
        return self._floats.take(count)

    def next_positions(self, count: int, upper_bound: int) -> torch.Tensor:
        """Integer positions uniform in [0, upper_bound)."""
        self._require_seed()
        if upper_bound < 1:
            raise InvalidArgument(f"upper bound must be positive, got {upper_bound}")
        if upper_bound != self._position_bound:
            # buffered positions were drawn for another range
            self._positions.reset()
            self._position_bound = upper_bound
        return self._positions.take(count)

    def _require_seed(self) -> None:
        if self._generator is None:
            raise NotSeeded("random stream used before seed() was called")

    def _generate_floats(self, size: int) -> torch.Tensor:
        with self.device.execution():
            return torch.rand(
                size,
                generator=self._generator,
                dtype=self.device.dtype,
                device=self.device.torch_device,
            )

    def _generate_positions(self, size: int) -> torch.Tensor:
        with self.device.execution():
            return torch.randint(
                0,
                self._position_bound,
                (size,),
                generator=self._generator,
                device=self.device.torch_device,
            )
