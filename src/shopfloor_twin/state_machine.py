"""Per-machine state machine evaluated once per tick.

``MachineStateMachine.advance`` takes a machine row and returns the next row
together with the events the transition produced. It never touches the
store; the scheduler persists the row and turns the events into quality
records and log lines.

Precedence for a Running machine:
1. Maintenance when health falls below the threshold
2. Error with a small fixed probability
3. Idle (cycle complete) with a small fixed probability

An Idle machine picks up a job with a small probability, but only when the
auto-start check authorizes it. Error and Maintenance never leave on their
own.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .config import TransitionRules
from .models import Machine, MachineStatus, clamp
from .predictor import MaintenancePredictor
from .rng import DeterministicRandom

AutoStartCheck = Callable[[Machine], bool]


@dataclass(frozen=True)
class StatusChanged:
    machine_id: str
    old_status: MachineStatus
    new_status: MachineStatus


@dataclass(frozen=True)
class FaultDetected:
    """Machine entered Error from another state."""

    machine_id: str
    machine_name: str
    health_score: float


@dataclass
class TransitionOutcome:
    previous: Machine
    machine: Machine
    events: List[object] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        prev, new = self.previous, self.machine
        return (
            prev.status != new.status
            or prev.health_score != new.health_score
            or prev.oee != new.oee
            or prev.predicted_rul != new.predicted_rul
            or prev.failure_probability != new.failure_probability
        )


class MachineStateMachine:
    """Applies the transition rules and the maintenance predictor."""

    def __init__(
        self,
        rng: DeterministicRandom,
        predictor: MaintenancePredictor,
        rules: Optional[TransitionRules] = None,
    ):
        self.rng = rng
        self.predictor = predictor
        self.rules = rules or TransitionRules()

    def advance(self, machine: Machine, auto_start: Optional[AutoStartCheck] = None) -> TransitionOutcome:
        """Compute one tick for ``machine``.

        Without an ``auto_start`` check an Idle machine stays Idle.
        """
        rules = self.rules
        status = machine.status
        health = machine.health_score
        oee = machine.oee

        if machine.status == MachineStatus.RUNNING:
            # Wear comes in intermittent events rather than constant decay
            if self.rng.chance(rules.wear_probability):
                health -= self.rng.next_float_range(*rules.wear_range)
            health = clamp(health, 0.0, 100.0)

            if health < rules.maintenance_health_threshold:
                status = MachineStatus.MAINTENANCE
            elif self.rng.chance(rules.fault_probability):
                status = MachineStatus.ERROR
            elif self.rng.chance(rules.cycle_complete_probability):
                status = MachineStatus.IDLE

            low, high = rules.oee_bounds
            oee = clamp(oee + self.rng.next_float_range(-rules.oee_step, rules.oee_step), low, high)

        elif machine.status == MachineStatus.IDLE:
            if self.rng.chance(rules.auto_start_probability):
                if auto_start is not None and auto_start(machine):
                    status = MachineStatus.RUNNING

        return self.outcome_for(machine, status, health, oee)

    def outcome_for(
        self, machine: Machine, status: MachineStatus, health: float, oee: float
    ) -> TransitionOutcome:
        """Build the outcome for a target state, running the predictor on it.

        Forced transitions from the admin hooks go through here too, so they
        raise the same events as organic ones.
        """
        candidate = dataclasses.replace(machine, status=status, health_score=health, oee=oee)
        estimate = self.predictor.predict(candidate)
        new_machine = dataclasses.replace(
            candidate,
            predicted_rul=estimate.remaining_useful_life,
            failure_probability=estimate.failure_probability,
        )

        events: List[object] = []
        if new_machine.status != machine.status:
            events.append(StatusChanged(machine.id, machine.status, new_machine.status))
            if new_machine.status == MachineStatus.ERROR:
                events.append(FaultDetected(machine.id, machine.name, new_machine.health_score))

        return TransitionOutcome(previous=machine, machine=new_machine, events=events)
