"""Interlock gate in front of every "start production" request.

Resolves the work order, runs the cheap interlocks (FAI lock, tool life,
operator skill), then hands over to the production validator for the full
BOM/inventory pass. Only a fully authorized request mutates state.

Rejections are returned as :class:`StartResult` values. ``StoreError`` is
not a rejection: it propagates to the caller after any writes already made
for the request have been compensated.

The check and the writes are not one transaction. Two requests competing
for the same scarce stock can both pass validation before either consumes
it; rows are last-write-wins.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import InterlockConfig
from .models import Machine, MachineStatus, ProductionLogEntry, WorkOrderStatus
from .store import MACHINES, WORK_ORDERS, Store, StoreError
from .validator import BlockReason, ProductionValidator

logger = logging.getLogger(__name__)


class RejectionCode(Enum):
    FAI_LOCK = "FAI_LOCK"
    TOOL_LIFE = "TOOL_LIFE"
    SKILL_CHECK = "SKILL_CHECK"
    INVENTORY_SHORTAGE = "INVENTORY_SHORTAGE"
    NOT_FOUND = "NOT_FOUND"


REASON_TO_CODE = {
    BlockReason.FAI_LOCKED: RejectionCode.FAI_LOCK,
    BlockReason.COMPETENCY_INSUFFICIENT: RejectionCode.SKILL_CHECK,
    BlockReason.INVENTORY_SHORTAGE: RejectionCode.INVENTORY_SHORTAGE,
    BlockReason.MACHINE_NOT_FOUND: RejectionCode.NOT_FOUND,
    BlockReason.OPERATOR_NOT_FOUND: RejectionCode.NOT_FOUND,
}


@dataclass(frozen=True)
class StartRequest:
    work_order_id: str
    operator_id: str
    machine_id: Optional[str] = None


@dataclass(frozen=True)
class StartResult:
    work_order_id: str
    code: Optional[RejectionCode] = None
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return self.code is None

    def to_dict(self) -> Dict[str, Any]:
        if self.accepted:
            return {"message": self.detail, "id": self.work_order_id}
        return {"code": self.code.value, "detail": self.detail, "id": self.work_order_id}


class InterlockGate:
    """Request-time adapter between start requests and the validator."""

    def __init__(
        self,
        store: Store,
        validator: Optional[ProductionValidator] = None,
        config: Optional[InterlockConfig] = None,
    ):
        self.store = store
        self.validator = validator or ProductionValidator(store)
        self.config = config or InterlockConfig()

    def start_production(self, request: StartRequest) -> StartResult:
        wo_id = request.work_order_id

        wo = self.store.get_work_order(wo_id)
        if wo is None:
            return self._reject(wo_id, RejectionCode.NOT_FOUND, f"Work order {wo_id} not found.")
        # Only pending orders can start; there is no startable order by this id
        if wo.status != WorkOrderStatus.PENDING:
            return self._reject(
                wo_id,
                RejectionCode.NOT_FOUND,
                f"Work order {wo_id} is {wo.status.value}, only Pending orders can start.",
            )

        # 1. FAI interlock
        fai_check = self.validator.check_fai(wo.part_number)
        if not fai_check.ok:
            return self._reject(wo_id, RejectionCode.FAI_LOCK, fai_check.detail)

        # 2. Tool life interlock
        machine = None
        if request.machine_id:
            machine = self.store.get_machine(request.machine_id)
            if machine is None:
                return self._reject(
                    wo_id, RejectionCode.NOT_FOUND, f"Machine {request.machine_id} not found."
                )
            tool = self.store.get_tool(machine.connected_tool_id)
            if tool is not None and tool.life_remaining < self.config.tool_life_floor_pct:
                return self._reject(
                    wo_id,
                    RejectionCode.TOOL_LIFE,
                    f"Tool {tool.name or tool.id} has < {self.config.tool_life_floor_pct:g}% "
                    "life remaining. Replace tool.",
                )

        # 3. Operator competency interlock
        operator = self.store.get_operator(request.operator_id)
        if operator is None:
            return self._reject(
                wo_id, RejectionCode.NOT_FOUND, f"Operator {request.operator_id} not found."
            )
        required = machine.min_competency_level if machine else self.config.default_min_competency
        if operator.competency_level < required:
            return self._reject(
                wo_id,
                RejectionCode.SKILL_CHECK,
                f"Operator skill level {operator.competency_level} insufficient, "
                f"level {required} required.",
            )

        # 4. Full zero-error validation
        if machine is not None:
            result = self.validator.validate_start(
                machine.id, operator.id, wo.part_number, wo.quantity
            )
        else:
            result = self.validator.check_inventory(wo.part_number, wo.quantity)
        if not result.ok:
            return self._reject(wo_id, REASON_TO_CODE[result.reason], result.detail)

        self._commit_start(wo_id, machine, operator.id)
        logger.info(f"Work order {wo_id} started on {request.machine_id or 'no machine'} by {operator.id}")
        return StartResult(work_order_id=wo_id, detail="Work order started")

    def _commit_start(self, wo_id: str, machine: Optional[Machine], operator_id: str) -> None:
        """Machine, then log, then the work-order flip; compensate on failure."""
        machine_id = machine.id if machine else None
        previous_status = machine.status if machine else None
        machine_written = False
        log_written = False
        try:
            if machine_id is not None:
                self.store.update(MACHINES, machine_id, status=MachineStatus.RUNNING)
                machine_written = True
                self.store.append_log(
                    "START",
                    work_order_id=wo_id,
                    machine_id=machine_id,
                    operator_id=operator_id,
                    details="Operator started production run",
                )
                log_written = True
            self.store.update(
                WORK_ORDERS, wo_id, status=WorkOrderStatus.IN_PROGRESS, start_time=datetime.now()
            )
        except StoreError:
            logger.exception(f"Store failure while starting work order {wo_id}, compensating")
            self._compensate(wo_id, machine_id, previous_status, operator_id,
                             machine_written, log_written)
            raise

    def _compensate(self, wo_id, machine_id, previous_status, operator_id,
                    machine_written, log_written) -> None:
        try:
            if machine_written:
                self.store.update(MACHINES, machine_id, status=previous_status)
            if log_written:
                self.store.append_log(
                    "START_ABORTED",
                    work_order_id=wo_id,
                    machine_id=machine_id,
                    operator_id=operator_id,
                    details="Start rolled back after store failure",
                )
        except StoreError:
            logger.exception(f"Compensation failed for work order {wo_id}")

    def complete_work_order(self, work_order_id: str, operator_id: Optional[str] = None) -> StartResult:
        wo = self.store.get_work_order(work_order_id)
        if wo is None:
            return self._reject(
                work_order_id, RejectionCode.NOT_FOUND, f"Work order {work_order_id} not found."
            )

        started = [
            e for e in self.store.production_log()
            if e.work_order_id == work_order_id and e.action == "START"
        ]
        machine_id = started[-1].machine_id if started else None

        self.store.append_log(
            "STOP",
            work_order_id=work_order_id,
            machine_id=machine_id,
            operator_id=operator_id,
            details="Production run completed",
        )
        self.store.update(
            WORK_ORDERS, work_order_id, status=WorkOrderStatus.COMPLETED, end_time=datetime.now()
        )
        logger.info(f"Work order {work_order_id} completed")
        return StartResult(work_order_id=work_order_id, detail="Work order completed")

    def traceability(self, query: str) -> List[ProductionLogEntry]:
        """Log entries whose work order id or part number contains ``query``."""
        matches = []
        for entry in self.store.production_log():
            wo = self.store.get_work_order(entry.work_order_id)
            part_number = wo.part_number if wo else ""
            if query in (entry.work_order_id or "") or query in part_number:
                matches.append(entry)
        return sorted(matches, key=lambda e: (e.timestamp, e.id), reverse=True)

    @staticmethod
    def _reject(wo_id: str, code: RejectionCode, detail: str) -> StartResult:
        logger.warning(f"Interlock rejected work order {wo_id}: {code.value} - {detail}")
        return StartResult(work_order_id=wo_id, code=code, detail=detail)
