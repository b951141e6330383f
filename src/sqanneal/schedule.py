"""Caller-side cooling loop for an annealing engine.

The engine runs one sweep per call and leaves the schedule to its caller.
This module is that caller for the common case: interpolate (G, kT) over a
fixed number of steps, sweep once per step, and collect the final replicas.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

import numpy as np

from sqanneal.dense.annealer import AnnealingEngine
from sqanneal.errors import InvalidArgument
from sqanneal.types import AnnealResult, AnnealSchedule, OptimizeMethod

logger = logging.getLogger(__name__)


def schedule_steps(schedule: AnnealSchedule) -> Iterator[tuple[float, float]]:
    """Yield (G, kT) for every step of the schedule.

    'exponential' decays G geometrically, 'linear' interpolates it; kT is
    interpolated linearly in both cases.
    """
    if schedule.n_steps < 1:
        raise InvalidArgument("n_steps must be >= 1")
    if schedule.schedule_type not in ("exponential", "linear"):
        raise InvalidArgument(f"unknown schedule type: {schedule.schedule_type!r}")
    if schedule.schedule_type == "exponential" and (
        schedule.gamma_initial <= 0 or schedule.gamma_final <= 0
    ):
        raise InvalidArgument("exponential schedule needs positive G endpoints")

    for step in range(schedule.n_steps):
        frac = step / max(schedule.n_steps - 1, 1)
        if schedule.schedule_type == "exponential":
            G = schedule.gamma_initial * (
                schedule.gamma_final / schedule.gamma_initial
            ) ** frac
        else:
            G = schedule.gamma_initial + frac * (
                schedule.gamma_final - schedule.gamma_initial
            )
        kT = schedule.kt_initial + frac * (schedule.kt_final - schedule.kt_initial)
        yield G, kT


def replica_agreement(q: np.ndarray) -> float:
    """Fraction of sites on which every replica holds the same spin."""
    unanimous = np.all(q == q[0], axis=0)
    return float(np.mean(unanimous))


def run_anneal(
    engine: AnnealingEngine,
    schedule: AnnealSchedule | None = None,
    randomize: bool = True,
    log_interval: int = 0,
) -> AnnealResult:
    """Anneal an initialized engine through a schedule.

    With ``randomize`` the replicas start from random spins, otherwise from
    whatever was last set. ``log_interval`` > 0 logs and records the best
    energy every that many steps.
    """
    if schedule is None:
        schedule = AnnealSchedule()
    if randomize:
        engine.randomize_q()

    # energies are reported in the caller's frame, so "best" follows the direction
    maximize = engine.optimize_method is OptimizeMethod.MAXIMIZE
    pick = np.max if maximize else np.min
    trace: list[float] = []
    for step, (G, kT) in enumerate(schedule_steps(schedule), start=1):
        engine.anneal_one_step(G, kT)
        if log_interval > 0 and step % log_interval == 0:
            engine.calculate_E()
            best = float(pick(engine.get_E()))
            trace.append(best)
            logger.info("step %d/%d: G=%.4g kT=%.4g best E=%.6g",
                        step, schedule.n_steps, G, kT, best)

    engine.calculate_E()
    energies = engine.get_E()
    q = engine.get_q()
    x = engine.get_x()
    best = int(np.argmax(energies) if maximize else np.argmin(energies))
    logger.info("anneal finished after %d steps: best E=%.6g (replica %d)",
                schedule.n_steps, energies[best], best)

    return AnnealResult(
        final_q=q,
        final_x=x,
        energies=energies,
        best_x=x[best].copy(),
        best_energy=float(energies[best]),
        best_replica=best,
        n_steps=schedule.n_steps,
        replica_agreement=replica_agreement(q),
        energy_trace=trace,
    )
