"""Predictive maintenance estimates for machine twins.

The scheduler only depends on :class:`MaintenancePredictor`; the heuristic
below can be replaced by a trained model without touching the tick loop or
the production validator.
"""

from dataclasses import dataclass
from typing import Optional

from .config import PredictorConfig
from .models import Machine, MachineStatus, clamp
from .rng import DeterministicRandom

# (health lower bound, exclusive) -> failure probability sampling range (%)
FAILURE_BANDS = (
    (90.0, (0.0, 2.0)),
    (70.0, (2.0, 10.0)),
    (50.0, (10.0, 30.0)),
    (30.0, (30.0, 60.0)),
)
CRITICAL_BAND = (60.0, 95.0)


@dataclass(frozen=True)
class MaintenanceEstimate:
    remaining_useful_life: float  # hours
    failure_probability: float  # percent


class MaintenancePredictor:
    """Interface: turn a machine's current state into a maintenance estimate."""

    def predict(self, machine: Machine) -> MaintenanceEstimate:
        raise NotImplementedError


class HeuristicPredictor(MaintenancePredictor):
    """Deterministic stand-in for a remaining-useful-life model.

    RUL is linear in health score up to the configured horizon, with a
    penalty for machines running below the OEE threshold. Failure
    probability is sampled from a band chosen by health score, so it needs
    the shared random source. Machines in Error are always reported as
    failed.
    """

    def __init__(self, rng: DeterministicRandom, config: Optional[PredictorConfig] = None):
        self.rng = rng
        self.config = config or PredictorConfig()

    def predict(self, machine: Machine) -> MaintenanceEstimate:
        if machine.status == MachineStatus.ERROR:
            return MaintenanceEstimate(remaining_useful_life=0.0, failure_probability=100.0)

        health = clamp(machine.health_score, 0.0, 100.0)
        rul = (health / 100.0) * self.config.max_rul_hours
        if machine.oee < self.config.low_oee_threshold:
            rul *= self.config.low_oee_penalty

        low, high = self._band_for(health)
        pof = self.rng.next_float_range(low, high)

        return MaintenanceEstimate(
            remaining_useful_life=round(clamp(rul, 0.0, self.config.max_rul_hours), 1),
            failure_probability=round(clamp(pof, 0.0, 100.0), 1),
        )

    @staticmethod
    def _band_for(health: float):
        for lower_bound, band in FAILURE_BANDS:
            if health > lower_bound:
                return band
        return CRITICAL_BAND
