"""Tests for the dense-graph decomposition and energy formulas."""

from __future__ import annotations

import itertools

import numpy as np
import pytest
import torch

from sqanneal.dense import DenseGraphFormulas, bits_to_spins, spins_to_bits, validate_problem
from sqanneal.device import BatchedMath, Device
from sqanneal.errors import DimensionMismatch, InvalidArgument
from sqanneal.types import OptimizeMethod


def random_symmetric(n, seed=0):
    rng = np.random.default_rng(seed)
    A = rng.standard_normal((n, n))
    return (A + A.T) / 2.0


def all_bit_vectors(n):
    return np.array(list(itertools.product((0, 1), repeat=n)), dtype=np.int8)


@pytest.fixture
def formulas():
    return DenseGraphFormulas(BatchedMath(Device("cpu", "float64")))


class TestValidateProblem:
    def test_accepts_symmetric(self):
        W = random_symmetric(4)
        np.testing.assert_array_equal(validate_problem(W), W)

    def test_rejects_non_square(self):
        with pytest.raises(DimensionMismatch):
            validate_problem(np.zeros((3, 4)))

    def test_rejects_vector(self):
        with pytest.raises(DimensionMismatch):
            validate_problem(np.zeros(3))

    def test_rejects_empty(self):
        with pytest.raises(DimensionMismatch):
            validate_problem(np.zeros((0, 0)))

    def test_rejects_asymmetric(self):
        W = random_symmetric(4)
        W[0, 1] += 1.0
        with pytest.raises(DimensionMismatch):
            validate_problem(W)

    def test_tolerates_rounding_asymmetry(self):
        W = random_symmetric(4)
        W[0, 1] += 1e-12
        validate_problem(W)

    def test_rejects_non_finite(self):
        W = np.eye(3)
        W[1, 1] = np.nan
        with pytest.raises(InvalidArgument):
            validate_problem(W)


class TestBitsAndSpins:
    def test_bits_to_spins(self):
        np.testing.assert_array_equal(bits_to_spins([0, 1, 1, 0]), [-1, 1, 1, -1])

    def test_spins_to_bits(self):
        np.testing.assert_array_equal(spins_to_bits([[-1, 1], [1, -1]]), [[0, 1], [1, 0]])

    def test_bits_must_be_binary(self):
        with pytest.raises(InvalidArgument):
            bits_to_spins([0, 2, 1])


class TestDecomposition:
    def test_shapes_and_zero_diagonal(self, formulas):
        model = formulas.calculate_hJc(random_symmetric(5))
        assert model.n_spins == 5
        assert model.h.shape == (5,)
        assert model.J.shape == (5, 5)
        assert model.c.dim() == 0
        assert torch.all(torch.diagonal(model.J) == 0.0)
        torch.testing.assert_close(model.J, model.J.t())

    def test_known_values(self, formulas):
        W = np.array([[2.0, 1.0], [1.0, -4.0]])
        model = formulas.calculate_hJc(W)
        np.testing.assert_allclose(model.h.numpy(), [1.5, -1.5])
        np.testing.assert_allclose(model.J.numpy(), [[0.0, 0.25], [0.25, 0.0]])
        # (sum(W) + tr(W)) / 4 = (0 - 2) / 4
        assert model.c.item() == pytest.approx(-0.5)

    def test_energy_equals_qubo_objective(self, formulas):
        """c + h.q + q^T J q equals x^T W x on every configuration."""
        n = 6
        W = random_symmetric(n, seed=3)
        x = all_bit_vectors(n)
        q = torch.from_numpy(bits_to_spins(x).astype(np.float64))
        model = formulas.calculate_hJc(W)
        E = formulas.calculate_E(model, q).numpy()
        expected = np.einsum("pi,ij,pj->p", x, W, x)
        np.testing.assert_allclose(E, expected, atol=1e-10)

    def test_maximize_is_exact_negation(self, formulas):
        W = random_symmetric(7, seed=5)
        lo = formulas.calculate_hJc(W, OptimizeMethod.MINIMIZE)
        hi = formulas.calculate_hJc(W, OptimizeMethod.MAXIMIZE)
        np.testing.assert_array_equal(hi.h.numpy(), -lo.h.numpy())
        np.testing.assert_array_equal(hi.J.numpy(), -lo.J.numpy())
        assert hi.c.item() == -lo.c.item()

    def test_input_not_modified(self, formulas):
        W = random_symmetric(4)
        before = W.copy()
        formulas.calculate_hJc(W, OptimizeMethod.MAXIMIZE)
        np.testing.assert_array_equal(W, before)

    def test_unknown_optimize_method(self, formulas):
        with pytest.raises(InvalidArgument):
            formulas.calculate_hJc(np.eye(2), "minimize")

    def test_energy_shape_mismatch(self, formulas):
        model = formulas.calculate_hJc(np.eye(3))
        with pytest.raises(DimensionMismatch):
            formulas.calculate_E(model, torch.ones(2, 4, dtype=torch.float64))

    def test_energy_into_out(self, formulas):
        model = formulas.calculate_hJc(random_symmetric(3))
        q = torch.ones(2, 3, dtype=torch.float64)
        out = torch.full((2,), float("nan"), dtype=torch.float64)
        E = formulas.calculate_E(model, q, out=out)
        assert E is out
        assert torch.all(torch.isfinite(out))
