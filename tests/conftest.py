"""Shared fixtures for the digital twin tests."""

import pytest

from shopfloor_twin.config import Config, PlantConfig
from shopfloor_twin.models import FAIRecord, FAIStatus, Machine, MachineStatus, Operator
from shopfloor_twin.rng import DeterministicRandom
from shopfloor_twin.store import Store


class ScriptedRandom(DeterministicRandom):
    """Random source replaying a fixed list of floats, then 0.5 forever."""

    def __init__(self, values):
        super().__init__(0)
        self._values = list(values)

    def next_float(self) -> float:
        if self._values:
            return self._values.pop(0)
        return 0.5


@pytest.fixture
def config():
    return Config.default()


@pytest.fixture
def store(config):
    return Store.from_plant(config.plant)


@pytest.fixture
def small_plant():
    """Bare plant with one approved part and one operator; tests add machines."""
    plant = PlantConfig()
    plant.operators = [Operator("OP-3", "op3", competency_level=3)]
    plant.fai_records = [
        FAIRecord("FAI-OK", "PN-OK", status=FAIStatus.APPROVED, production_locked=False),
    ]
    return plant


def running_machine(machine_id="M1", health=90.0, oee=80.0, min_level=1, **kwargs):
    return Machine(
        id=machine_id,
        name=machine_id,
        status=kwargs.pop("status", MachineStatus.RUNNING),
        health_score=health,
        oee=oee,
        min_competency_level=min_level,
        **kwargs,
    )
