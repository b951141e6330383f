"""Dense-graph problem formulas and annealing engine."""

from __future__ import annotations

from sqanneal.dense.annealer import AnnealingEngine
from sqanneal.dense.formulas import (
    DenseGraphFormulas,
    bits_to_spins,
    spins_to_bits,
    validate_problem,
)

__all__ = [
    "AnnealingEngine",
    "DenseGraphFormulas",
    "bits_to_spins",
    "spins_to_bits",
    "validate_problem",
]
