"""Readiness flags gating the annealer's operation sequence."""

from __future__ import annotations

from dataclasses import dataclass, fields

from sqanneal.errors import NotReady

_MESSAGES = {
    "seeded": "random seed not given; call seed() first",
    "problem_set": "problem not set; call set_problem() first",
    "trotters_set": "number of trotters not given; call set_num_trotters() first",
    "initialized": "annealer not initialized; call init_anneal() first",
    "spins_ready": "spins not set; call randomize_q() or set_x() first",
}


@dataclass
class AnnealerState:
    """Named readiness flags.

    Flags are set by the operation that establishes them and cleared only
    by invalidation: a new problem, a changed trotter count, or fin_anneal.
    """

    seeded: bool = False
    problem_set: bool = False
    trotters_set: bool = False
    initialized: bool = False
    spins_ready: bool = False

    def require(self, *flags: str) -> None:
        """Raise NotReady naming the first flag that is not set."""
        for flag in flags:
            if not getattr(self, flag):
                raise NotReady(flag, _MESSAGES[flag])

    def invalidate_replicas(self) -> None:
        self.initialized = False
        self.spins_ready = False

    def is_ready_to_init(self) -> bool:
        return self.seeded and self.problem_set and self.trotters_set

    def is_q_set_ready(self) -> bool:
        return self.problem_set and self.seeded and self.initialized

    def is_ready_to_anneal(self) -> bool:
        return self.is_q_set_ready() and self.spins_ready

    def as_dict(self) -> dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
