"""Zero-error production validator.

Single source of truth for "can this part be produced on this machine by
this operator now". Both the scheduler's simulated auto-start and the
interlock gate call into it. It only reads from the store, so it is safe
to call speculatively.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import Machine
from .store import Store

logger = logging.getLogger(__name__)


class BlockReason(Enum):
    FAI_LOCKED = "FaiLocked"
    COMPETENCY_INSUFFICIENT = "CompetencyInsufficient"
    INVENTORY_SHORTAGE = "InventoryShortage"
    MACHINE_NOT_FOUND = "MachineNotFound"
    OPERATOR_NOT_FOUND = "OperatorNotFound"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation pass: ``reason`` is None when authorized."""

    reason: Optional[BlockReason] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.reason is None

    @classmethod
    def blocked(cls, reason: BlockReason, detail: str) -> "ValidationResult":
        return cls(reason=reason, detail=detail)


AUTHORIZED = ValidationResult()


class ProductionValidator:
    """Checks FAI lock, operator competency and BOM stock, in that order."""

    def __init__(self, store: Store):
        self.store = store

    def validate_start(
        self, machine_id: str, operator_id: str, part_number: str, quantity: int
    ) -> ValidationResult:
        """Authorize or block a production start; fails fast on the first block."""
        result = self.check_fai(part_number)
        if not result.ok:
            return result

        machine = self.store.get_machine(machine_id)
        if machine is None:
            return ValidationResult.blocked(
                BlockReason.MACHINE_NOT_FOUND, f"Machine {machine_id} not found."
            )
        operator = self.store.get_operator(operator_id)
        if operator is None:
            return ValidationResult.blocked(
                BlockReason.OPERATOR_NOT_FOUND, f"Operator {operator_id} not found."
            )

        result = self.check_competency(operator.competency_level, machine)
        if not result.ok:
            return result

        return self.check_inventory(part_number, quantity)

    def check_fai(self, part_number: str) -> ValidationResult:
        fai = self.store.find_fai(part_number)
        if fai is not None and fai.blocks_production:
            return ValidationResult.blocked(
                BlockReason.FAI_LOCKED,
                f"Production locked for part {part_number}. FAI status: {fai.status.value}. "
                "Quality approval required for first article.",
            )
        return AUTHORIZED

    @staticmethod
    def check_competency(level: int, machine: Machine) -> ValidationResult:
        required = machine.min_competency_level or 0
        if (level or 0) < required:
            return ValidationResult.blocked(
                BlockReason.COMPETENCY_INSUFFICIENT,
                f"Operator competency ({level}) does not meet machine {machine.id} "
                f"requirement ({required}).",
            )
        return AUTHORIZED

    def check_inventory(self, part_number: str, quantity: int) -> ValidationResult:
        """Every BOM child must have ``per_unit * quantity`` on hand."""
        for edge in self.store.bom_children(part_number):
            required = edge.quantity_required * quantity
            item = self.store.get_inventory(edge.child_part_number)
            available = item.quantity if item is not None else 0
            if available < required:
                return ValidationResult.blocked(
                    BlockReason.INVENTORY_SHORTAGE,
                    f"Not enough stock for {edge.child_part_number}. "
                    f"Required: {required}, Available: {available}",
                )
        return AUTHORIZED
