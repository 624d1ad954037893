"""Tests for the digital twin scheduler."""

import time

import pytest

from conftest import running_machine
from shopfloor_twin.channel import MACHINE_UPDATE, LiveChannel
from shopfloor_twin.config import Config, PlantConfig
from shopfloor_twin.interlock import InterlockGate, RejectionCode, StartRequest
from shopfloor_twin.models import (
    FAIRecord,
    FAIStatus,
    MachineStatus,
    Severity,
    Tool,
    ToolStatus,
    WorkOrder,
)
from shopfloor_twin.predictor import HeuristicPredictor
from shopfloor_twin.rng import DeterministicRandom
from shopfloor_twin.scheduler import DigitalTwinScheduler
from shopfloor_twin.store import MACHINES, Store, StoreError


class FlakyPredictor(HeuristicPredictor):
    """Predictor whose telemetry for one machine is broken."""

    def predict(self, machine):
        if machine.id == "BAD":
            raise RuntimeError("sensor offline")
        return super().predict(machine)


def make_scheduler(plant, config=None, **kwargs):
    config = config or Config()
    config.plant = plant
    return DigitalTwinScheduler(config, Store.from_plant(plant), **kwargs)


class TestTick:
    """Tests for DigitalTwinScheduler.tick."""

    def test_low_health_goes_to_maintenance(self, small_plant):
        small_plant.machines = [running_machine("M1", health=15.0)]
        channel = LiveChannel()
        sub = channel.subscribe()
        scheduler = make_scheduler(small_plant, channel=channel)

        report = scheduler.tick()

        machine = scheduler.store.get_machine("M1")
        assert machine.status == MachineStatus.MAINTENANCE
        assert report.changed == ["M1"]
        assert report.quality_records == []
        assert scheduler.store.list_quality_records() == []

        message = sub.get(timeout=1)
        assert message["type"] == MACHINE_UPDATE
        assert message["machines"][0]["status"] == "Maintenance"

    def test_fault_raises_exactly_one_ncr(self, small_plant):
        small_plant.machines = [running_machine("M1", health=90.0)]
        config = Config()
        config.rules.fault_probability = 1.0
        scheduler = make_scheduler(small_plant, config)

        first = scheduler.tick()
        second = scheduler.tick()

        assert scheduler.store.get_machine("M1").status == MachineStatus.ERROR
        records = scheduler.store.list_quality_records()
        assert len(records) == 1
        assert records[0].severity == Severity.MAJOR
        assert records[0].title == "Automated Fault: M1"
        assert records[0].machine_id == "M1"
        assert "Automatic detection." in records[0].description
        assert first.quality_records == [records[0].id]
        assert second.quality_records == []

    def test_error_machine_has_zero_rul(self, small_plant):
        small_plant.machines = [running_machine("M1", status=MachineStatus.ERROR)]
        scheduler = make_scheduler(small_plant)

        scheduler.tick()

        machine = scheduler.store.get_machine("M1")
        assert machine.predicted_rul == 0.0
        assert machine.failure_probability == 100.0

    def test_unchanged_rows_are_not_published(self, small_plant):
        small_plant.machines = [
            running_machine(
                "M1", status=MachineStatus.ERROR, predicted_rul=0.0, failure_probability=100.0
            )
        ]
        channel = LiveChannel()
        sub = channel.subscribe()
        scheduler = make_scheduler(small_plant, channel=channel)

        report = scheduler.tick()

        assert report.changed == []
        assert not report.published
        assert sub.drain() == []

    def test_failing_machine_is_skipped(self, small_plant):
        small_plant.machines = [
            running_machine("BAD", status=MachineStatus.IDLE),
            running_machine("M1", status=MachineStatus.IDLE),
        ]
        rng = DeterministicRandom(7)
        scheduler = make_scheduler(small_plant, rng=rng, predictor=FlakyPredictor(rng))

        report = scheduler.tick()

        assert report.failed == ["BAD"]
        assert "M1" in report.changed
        assert scheduler.store.get_machine("M1").predicted_rul > 0

    def test_snapshot_contains_every_machine(self, store, config):
        channel = LiveChannel()
        sub = channel.subscribe()
        scheduler = DigitalTwinScheduler(config, store, channel=channel)

        scheduler.tick()

        message = sub.get(timeout=1)
        assert [m["id"] for m in message["machines"]] == [m.id for m in store.list_machines()]
        assert len(message["machines"]) == 6

    def test_same_seed_same_history(self):
        def run():
            config = Config.default()
            scheduler = DigitalTwinScheduler(config, Store.from_plant(config.plant))
            for _ in range(50):
                scheduler.tick()
            records = [
                (r.id, r.title, r.description) for r in scheduler.store.list_quality_records()
            ]
            return scheduler.store.list_machines(), records

        assert run() == run()

    def test_tick_count(self, store, config):
        scheduler = DigitalTwinScheduler(config, store)
        scheduler.tick()
        scheduler.tick()
        assert scheduler.tick_count == 2


class TestAutoStart:
    """Interlocked auto-start of Idle machines."""

    @pytest.fixture
    def config(self):
        config = Config()
        config.rules.auto_start_probability = 1.0
        return config

    def test_approved_candidate_starts(self, small_plant, config):
        small_plant.machines = [running_machine("M1", status=MachineStatus.IDLE, min_level=3)]
        scheduler = make_scheduler(small_plant, config)

        scheduler.tick()

        assert scheduler.store.get_machine("M1").status == MachineStatus.RUNNING

    def test_locked_candidate_blocks_start(self, small_plant, config):
        small_plant.machines = [running_machine("M1", status=MachineStatus.IDLE)]
        small_plant.fai_records = [FAIRecord("FAI-X", "PN-X", status=FAIStatus.REJECTED)]
        scheduler = make_scheduler(small_plant, config)

        for _ in range(5):
            scheduler.tick()

        assert scheduler.store.get_machine("M1").status == MachineStatus.IDLE

    def test_competency_blocks_start(self, small_plant, config):
        small_plant.machines = [running_machine("M1", status=MachineStatus.IDLE, min_level=4)]
        scheduler = make_scheduler(small_plant, config)

        for _ in range(5):
            scheduler.tick()

        assert scheduler.store.get_machine("M1").status == MachineStatus.IDLE

    def test_worn_out_tool_blocks_start(self, small_plant, config):
        small_plant.tools = [Tool("T1", "T1", life_remaining=0.0, status=ToolStatus.EXPIRED)]
        small_plant.machines = [
            running_machine("M1", status=MachineStatus.IDLE, connected_tool_id="T1")
        ]
        scheduler = make_scheduler(small_plant, config)

        for _ in range(5):
            scheduler.tick()

        assert scheduler.store.get_machine("M1").status == MachineStatus.IDLE

    def test_tool_at_floor_allows_start(self, small_plant, config):
        small_plant.tools = [Tool("T1", "T1", life_remaining=5.0)]
        small_plant.machines = [
            running_machine("M1", status=MachineStatus.IDLE, connected_tool_id="T1")
        ]
        scheduler = make_scheduler(small_plant, config)

        scheduler.tick()

        assert scheduler.store.get_machine("M1").status == MachineStatus.RUNNING

    def test_expired_tool_hook_blocks_start(self, config):
        plant = Config.default().plant
        scheduler = make_scheduler(plant, config)
        scheduler.expire_tool("Drill-001")

        for _ in range(5):
            scheduler.tick()

        assert scheduler.store.get_machine("CNC-001").status == MachineStatus.IDLE

    def test_pending_work_order_candidate(self, small_plant, config):
        config.simulation.candidate_source = "work_order"
        small_plant.machines = [running_machine("M1", status=MachineStatus.IDLE)]
        small_plant.fai_records.append(FAIRecord("FAI-X", "PN-X", status=FAIStatus.PLANNED))
        small_plant.work_orders = [WorkOrder("WO-1", "PN-X", 1)]
        scheduler = make_scheduler(small_plant, config)

        scheduler.tick()

        assert scheduler.store.get_machine("M1").status == MachineStatus.IDLE

    def test_no_auto_start_without_chance(self, small_plant):
        config = Config()
        config.rules.auto_start_probability = 0.0
        small_plant.machines = [running_machine("M1", status=MachineStatus.IDLE)]
        scheduler = make_scheduler(small_plant, config)

        for _ in range(10):
            scheduler.tick()

        assert scheduler.store.get_machine("M1").status == MachineStatus.IDLE


class TestStoreFailure:
    """A fault whose writes fail leaves no NCR without its Error row."""

    @pytest.fixture
    def scheduler(self, small_plant):
        small_plant.machines = [running_machine("M1", health=90.0)]
        config = Config()
        config.rules.fault_probability = 1.0
        return make_scheduler(small_plant, config)

    def test_failed_row_write_raises_no_ncr(self, scheduler, monkeypatch):
        original = scheduler.store.update
        failures = []

        def update(table, key, **fields):
            if table == MACHINES and not failures:
                failures.append(key)
                raise StoreError("write failed")
            return original(table, key, **fields)

        monkeypatch.setattr(scheduler.store, "update", update)

        first = scheduler.tick()
        assert first.failed == ["M1"]
        assert scheduler.store.list_quality_records() == []
        assert scheduler.store.get_machine("M1").status == MachineStatus.RUNNING

        second = scheduler.tick()
        third = scheduler.tick()

        records = scheduler.store.list_quality_records()
        assert len(records) == 1
        assert second.quality_records == [records[0].id]
        assert third.quality_records == []
        assert scheduler.store.get_machine("M1").status == MachineStatus.ERROR

    def test_failed_ncr_write_restores_row(self, scheduler, monkeypatch):
        def add_quality_record(record):
            raise StoreError("write failed")

        monkeypatch.setattr(scheduler.store, "add_quality_record", add_quality_record)

        report = scheduler.tick()

        assert report.failed == ["M1"]
        machine = scheduler.store.get_machine("M1")
        assert machine.status == MachineStatus.RUNNING
        assert machine.health_score == 90.0

    def test_force_breakdown_propagates_store_error(self, store, config, monkeypatch):
        def add_quality_record(record):
            raise StoreError("write failed")

        scheduler = DigitalTwinScheduler(config, store)
        monkeypatch.setattr(store, "add_quality_record", add_quality_record)

        with pytest.raises(StoreError):
            scheduler.force_breakdown()

        assert store.get_machine("CNC-001").status == MachineStatus.IDLE


class TestAdminHooks:
    @pytest.fixture
    def scheduler(self, store, config):
        return DigitalTwinScheduler(config, store)

    def test_force_breakdown(self, scheduler):
        machine = scheduler.force_breakdown()

        assert machine.status == MachineStatus.ERROR
        assert machine.health_score == 20.0
        assert machine.predicted_rul == 0.0
        assert scheduler.store.get_machine("CNC-001").status == MachineStatus.ERROR

        records = scheduler.store.list_quality_records()
        assert len(records) == 1
        assert records[0].machine_id == "CNC-001"

    def test_force_breakdown_twice_raises_one_ncr(self, scheduler):
        scheduler.force_breakdown("CNC-002")
        scheduler.force_breakdown("CNC-002")

        assert len(scheduler.store.list_quality_records()) == 1

    def test_force_breakdown_unknown_machine(self, scheduler):
        assert scheduler.force_breakdown("NOPE") is None
        assert scheduler.store.list_quality_records() == []

    def test_expired_tool_trips_interlock(self, scheduler, store):
        assert scheduler.expire_tool()

        tool = store.get_tool("Drill-001")
        assert tool.life_remaining == 0.0
        assert tool.status == ToolStatus.EXPIRED

        result = InterlockGate(store).start_production(
            StartRequest("WO-2025-001", "USER-6", "CNC-001")
        )
        assert result.code == RejectionCode.TOOL_LIFE

    def test_expire_unknown_tool(self, scheduler):
        assert not scheduler.expire_tool("NOPE")

    def test_inject_quality_records(self, scheduler):
        records = scheduler.inject_quality_records()

        assert len(records) == 5
        assert len(scheduler.store.list_quality_records()) == 5
        for record in records:
            assert record.title == "Simulated Quality Spike"
            assert record.type == "Simulation"
            assert record.severity in (Severity.CRITICAL, Severity.MAJOR)
            assert record.description

    def test_injected_records_are_reproducible(self, config):
        def inject():
            scheduler = DigitalTwinScheduler(config, Store.from_plant(config.plant))
            return [(r.severity, r.description) for r in scheduler.inject_quality_records(3)]

        assert inject() == inject()

    def test_handle_command(self, scheduler, store):
        scheduler.handle_command("force-breakdown", {"machine_id": "CNC-003"})
        scheduler.handle_command("expire-tool", {})
        scheduler.handle_command("inject-ncr", {"count": 2})
        scheduler.handle_command("self-destruct", {})

        assert store.get_machine("CNC-003").status == MachineStatus.ERROR
        assert store.get_tool("Drill-001").life_remaining == 0.0
        assert len(store.list_quality_records()) == 3


class TestTickLoop:
    def test_start_and_stop(self, store):
        config = Config.default()
        config.simulation.tick_interval_ms = 10
        scheduler = DigitalTwinScheduler(config, store)

        scheduler.start()
        deadline = time.time() + 2
        while scheduler.tick_count < 3 and time.time() < deadline:
            time.sleep(0.01)
        scheduler.stop()

        assert scheduler.tick_count >= 3
        assert not scheduler.running

        count = scheduler.tick_count
        time.sleep(0.05)
        assert scheduler.tick_count == count
