"""Tests for the buffered device random stream."""

from __future__ import annotations

import pytest
import torch

from sqanneal.device import Device, RandomBuffer, RandomStream
from sqanneal.errors import InvalidArgument, NotSeeded


@pytest.fixture
def device():
    return Device("cpu", "float64")


def seeded_stream(device, seed=42, batch_size=64):
    stream = RandomStream(device, batch_size=batch_size)
    stream.seed(seed)
    return stream


class TestSeeding:
    def test_unseeded_floats_raise(self, device):
        stream = RandomStream(device)
        assert not stream.seeded
        with pytest.raises(NotSeeded):
            stream.next_floats(4)

    def test_unseeded_positions_raise(self, device):
        with pytest.raises(NotSeeded):
            RandomStream(device).next_positions(4, 10)

    @pytest.mark.parametrize("bad", [-1, 1.5, "7", True])
    def test_bad_seed_rejected(self, device, bad):
        with pytest.raises(InvalidArgument):
            RandomStream(device).seed(bad)

    def test_same_seed_same_sequence(self, device):
        a = seeded_stream(device, seed=7)
        b = seeded_stream(device, seed=7)
        for count in (5, 40, 100):
            assert torch.equal(a.next_floats(count), b.next_floats(count))

    def test_different_seeds_differ(self, device):
        a = seeded_stream(device, seed=1)
        b = seeded_stream(device, seed=2)
        assert not torch.equal(a.next_floats(32), b.next_floats(32))

    def test_reseed_restarts_sequence(self, device):
        stream = seeded_stream(device, seed=3)
        first = stream.next_floats(10).clone()
        stream.next_floats(10)
        stream.seed(3)
        assert torch.equal(stream.next_floats(10), first)


class TestFloats:
    def test_range_and_dtype(self, device):
        values = seeded_stream(device).next_floats(1000)
        assert values.dtype == torch.float64
        assert values.shape == (1000,)
        assert torch.all(values >= 0.0)
        assert torch.all(values < 1.0)

    def test_float32_device(self):
        stream = seeded_stream(Device("cpu", "float32"))
        assert stream.next_floats(8).dtype == torch.float32

    def test_refills_in_bulk(self, device):
        stream = seeded_stream(device, batch_size=10)
        stream.next_floats(4)
        stream.next_floats(4)
        assert stream._floats.n_refills == 1
        stream.next_floats(4)
        assert stream._floats.n_refills == 2

    def test_request_larger_than_batch(self, device):
        stream = seeded_stream(device, batch_size=8)
        assert stream.next_floats(20).shape == (20,)

    def test_taken_slices_survive_refill(self, device):
        stream = seeded_stream(device, batch_size=8)
        first = stream.next_floats(6)
        saved = first.clone()
        stream.next_floats(6)
        assert torch.equal(first, saved)


class TestPositions:
    def test_range(self, device):
        positions = seeded_stream(device).next_positions(500, 7)
        assert positions.dtype == torch.int64
        assert int(positions.min()) >= 0
        assert int(positions.max()) < 7

    def test_bound_change_refills(self, device):
        stream = seeded_stream(device, batch_size=100)
        stream.next_positions(10, 3)
        positions = stream.next_positions(10, 50)
        assert stream._positions.n_refills == 2
        assert int(positions.max()) < 50

    def test_bad_bound(self, device):
        with pytest.raises(InvalidArgument):
            seeded_stream(device).next_positions(3, 0)

    def test_float_draws_do_not_consume_positions(self, device):
        """Positions and acceptance floats come from separate buffers."""
        a = seeded_stream(device, seed=11, batch_size=16)
        b = seeded_stream(device, seed=11, batch_size=16)
        a.next_positions(4, 10)
        b.next_positions(4, 10)
        a.next_floats(12)
        assert torch.equal(a.next_positions(4, 10), b.next_positions(4, 10))


class TestRandomBuffer:
    def test_generate_called_with_capacity(self):
        sizes = []

        def generate(size):
            sizes.append(size)
            return torch.arange(size, dtype=torch.float64)

        buf = RandomBuffer("test", 5, generate)
        assert buf.remaining == 0
        assert torch.equal(buf.take(3), torch.tensor([0.0, 1.0, 2.0], dtype=torch.float64))
        assert buf.remaining == 2
        buf.take(3)  # leftovers are discarded
        assert sizes == [5, 5]
        buf.reset()
        assert buf.remaining == 0

    def test_batch_size_validation(self, device):
        stream = RandomStream(device)
        with pytest.raises(InvalidArgument):
            stream.set_batch_size(0)
        stream.set_batch_size(12)
        assert stream.batch_size == 12
