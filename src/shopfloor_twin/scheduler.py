"""Digital-twin scheduler driving the machine state machines.

On every tick the scheduler:

- reads every machine row from the store
- advances each machine through the state machine (wear, random faults,
  cycle completion, interlocked auto-start) and the maintenance predictor
- persists rows that changed and raises an NCR for every fault entry
- publishes one full ``machine_update`` snapshot if anything changed

Ticks run on a single background thread and never overlap: the next tick is
scheduled only after the previous one has persisted and published. A
failure on one machine is logged and skipped; the rest of the tick goes on.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from faker import Faker

from .channel import LiveChannel, machine_update
from .config import Config
from .models import (
    Machine,
    MachineStatus,
    QualityRecord,
    Severity,
    ToolStatus,
    WorkOrderStatus,
)
from .predictor import HeuristicPredictor, MaintenancePredictor
from .rng import DeterministicRandom
from .state_machine import FaultDetected, MachineStateMachine, StatusChanged, TransitionOutcome
from .store import MACHINES, TOOLS, WORK_ORDERS, Store, StoreError
from .validator import ProductionValidator

logger = logging.getLogger(__name__)

DEFAULT_BREAKDOWN_MACHINE = "CNC-001"
DEFAULT_EXPIRED_TOOL = "Drill-001"
BREAKDOWN_HEALTH = 20.0


@dataclass
class TickReport:
    """Summary of one tick."""

    tick: int
    changed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    quality_records: List[str] = field(default_factory=list)
    published: bool = False


class DigitalTwinScheduler:
    """Periodic driver of the production digital twin."""

    def __init__(
        self,
        config: Config,
        store: Store,
        rng: Optional[DeterministicRandom] = None,
        predictor: Optional[MaintenancePredictor] = None,
        validator: Optional[ProductionValidator] = None,
        channel: Optional[LiveChannel] = None,
    ):
        self.config = config
        self.store = store
        self.rng = rng or DeterministicRandom(config.simulation.random_seed)
        self.predictor = predictor or HeuristicPredictor(self.rng, config.predictor)
        self.validator = validator or ProductionValidator(store)
        self.channel = channel or LiveChannel()
        self.state_machine = MachineStateMachine(self.rng, self.predictor, config.rules)

        self._faker = Faker()
        self._tick_count = 0
        self._tick_lock = threading.Lock()
        self._running = False
        self._stop_event = threading.Event()
        self._tick_thread: Optional[threading.Thread] = None

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the tick loop on a daemon thread."""
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self._tick_thread = threading.Thread(target=self._tick_loop, daemon=True)
        self._tick_thread.start()
        logger.info(
            f"Scheduler started: {len(self.store.list_machines())} machines, "
            f"tick every {self.config.simulation.tick_interval_ms}ms"
        )

    def stop(self) -> None:
        """Stop the tick loop after the current tick finishes."""
        self._running = False
        self._stop_event.set()
        if self._tick_thread:
            self._tick_thread.join(timeout=5)
        logger.info("Scheduler stopped")

    def _tick_loop(self) -> None:
        """Run ticks back to back, waiting one interval after each completes."""
        interval = self.config.simulation.tick_interval_ms / 1000.0

        while self._running:
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in tick loop: {e}")
            self._stop_event.wait(interval)

    def tick(self) -> TickReport:
        """Execute one simulation tick across all machines."""
        with self._tick_lock:
            self._tick_count += 1
            report = TickReport(tick=self._tick_count)

            for machine in self.store.list_machines():
                try:
                    outcome = self.state_machine.advance(machine, auto_start=self._can_auto_start)
                    record_id = self._apply(outcome)
                    if outcome.changed:
                        report.changed.append(machine.id)
                    if record_id:
                        report.quality_records.append(record_id)
                except Exception:
                    logger.exception(f"Error advancing machine {machine.id}, skipped this tick")
                    report.failed.append(machine.id)

            if report.changed:
                report.published = self._publish_snapshot()

            logger.debug(
                f"Tick {report.tick}: {len(report.changed)} changed, {len(report.failed)} failed"
            )
            return report

    # =========================================================================
    # Transition side effects
    # =========================================================================

    def _apply(self, outcome: TransitionOutcome) -> Optional[str]:
        """Persist a changed row; returns the id of an NCR raised for a fault.

        The row is written first. If the NCR for a fault cannot be written the
        previous row is restored and the error propagates, so the store never
        shows an Error row without its NCR.
        """
        if not outcome.changed:
            return None

        self._write_row(outcome.machine)

        record_id = None
        for event in outcome.events:
            if isinstance(event, FaultDetected):
                try:
                    record_id = self._raise_fault_record(event)
                except StoreError:
                    logger.exception(
                        f"Failed to raise NCR for {event.machine_id}, restoring machine row"
                    )
                    self._write_row(outcome.previous)
                    raise
            elif isinstance(event, StatusChanged):
                logger.info(
                    f"Machine {event.machine_id}: {event.old_status.value} -> {event.new_status.value}"
                )
        return record_id

    def _write_row(self, machine: Machine) -> None:
        self.store.update(
            MACHINES,
            machine.id,
            status=machine.status,
            health_score=machine.health_score,
            oee=machine.oee,
            predicted_rul=machine.predicted_rul,
            failure_probability=machine.failure_probability,
        )

    def _raise_fault_record(self, event: FaultDetected) -> str:
        record = QualityRecord(
            id=self.store.next_quality_record_id("NCR-AUTO"),
            title=f"Automated Fault: {event.machine_name or event.machine_id}",
            severity=Severity.MAJOR,
            type="Machine Error",
            description=f"Health fell to {event.health_score:.1f}%. Automatic detection.",
            machine_id=event.machine_id,
        )
        self.store.add_quality_record(record)
        logger.warning(f"Machine {event.machine_id} faulted, raised {record.id}")
        return record.id

    def _publish_snapshot(self) -> bool:
        try:
            self.channel.publish(machine_update(self.store.list_machines()))
            return True
        except Exception as e:
            logger.error(f"Failed to publish machine snapshot: {e}")
            return False

    # =========================================================================
    # Interlocked auto-start
    # =========================================================================

    def _candidate_part(self) -> Optional[str]:
        """Part number the machine would pick up next."""
        if self.config.simulation.candidate_source == "work_order":
            pending = [
                wo for wo in self.store.all(WORK_ORDERS)
                if wo.status == WorkOrderStatus.PENDING
            ]
            return pending[0].part_number if pending else None

        records = self.store.list_fai_records()
        if not records:
            return None
        return self.rng.pick(records).part_number

    def _can_auto_start(self, machine: Machine) -> bool:
        tool = self.store.get_tool(machine.connected_tool_id)
        if tool is not None and tool.life_remaining < self.config.interlock.tool_life_floor_pct:
            logger.debug(
                f"Auto-start of {machine.id} blocked: tool {tool.id} at {tool.life_remaining:g}%"
            )
            return False

        part_number = self._candidate_part()
        if part_number is not None:
            result = self.validator.check_fai(part_number)
            if not result.ok:
                logger.debug(f"Auto-start of {machine.id} blocked: {result.reason.value}")
                return False

        result = self.validator.check_competency(
            self.config.simulation.simulated_operator_level, machine
        )
        if not result.ok:
            logger.debug(f"Auto-start of {machine.id} blocked: {result.reason.value}")
        return result.ok

    # =========================================================================
    # Administrative simulation hooks
    # =========================================================================

    def force_breakdown(self, machine_id: str = DEFAULT_BREAKDOWN_MACHINE) -> Optional[Machine]:
        """Force a machine into Error through the regular transition path."""
        with self._tick_lock:
            machine = self.store.get_machine(machine_id)
            if machine is None:
                logger.warning(f"force_breakdown: unknown machine {machine_id}")
                return None

            outcome = self.state_machine.outcome_for(
                machine, MachineStatus.ERROR, BREAKDOWN_HEALTH, machine.oee
            )
            self._apply(outcome)
            if outcome.changed:
                self._publish_snapshot()
            logger.info(f"{machine_id} forced to breakdown (health {BREAKDOWN_HEALTH:.0f}%)")
            return outcome.machine

    def expire_tool(self, tool_id: str = DEFAULT_EXPIRED_TOOL) -> bool:
        if self.store.get_tool(tool_id) is None:
            logger.warning(f"expire_tool: unknown tool {tool_id}")
            return False
        self.store.update(TOOLS, tool_id, life_remaining=0.0, status=ToolStatus.EXPIRED)
        logger.info(f"Tool {tool_id} life set to 0%")
        return True

    def inject_quality_records(self, count: int = 5) -> List[QualityRecord]:
        """Append synthetic NCRs to simulate a quality spike."""
        records = []
        with self._tick_lock:
            for _ in range(count):
                severity = self.rng.pick([Severity.CRITICAL, Severity.MAJOR])
                self._faker.seed_instance(self.rng.next_int(0, 2 ** 31 - 1))
                record = QualityRecord(
                    id=self.store.next_quality_record_id("NCR-SIM"),
                    title="Simulated Quality Spike",
                    severity=severity,
                    type="Simulation",
                    description=self._faker.sentence(nb_words=8),
                )
                self.store.add_quality_record(record)
                records.append(record)
        logger.info(f"{count} NCRs injected")
        return records

    def handle_command(self, command: str, payload: Dict[str, Any]) -> None:
        """Dispatch an MQTT control command to the matching admin hook."""
        if command == "force-breakdown":
            self.force_breakdown(payload.get("machine_id", DEFAULT_BREAKDOWN_MACHINE))
        elif command == "expire-tool":
            self.expire_tool(payload.get("tool_id", DEFAULT_EXPIRED_TOOL))
        elif command == "inject-ncr":
            self.inject_quality_records(int(payload.get("count", 5)))
        else:
            logger.warning(f"Unknown command: {command}")
