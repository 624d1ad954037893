"""Shop-floor data model shared by the scheduler, validator and interlock gate.

Rows are plain dataclasses keyed by their identifier in the store. Status
values keep the spelling used by the quality platform's tables, so rows can
be serialized straight into the live ``machine_update`` stream.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


# =============================================================================
# Status enums
# =============================================================================


class MachineStatus(Enum):
    """Operational state of a machine digital twin."""

    IDLE = "Idle"
    RUNNING = "Running"
    ERROR = "Error"
    MAINTENANCE = "Maintenance"


class ToolStatus(Enum):
    READY = "Ready"
    IN_USE = "In Use"
    EXPIRED = "Expired"
    MAINTENANCE = "Maintenance"


class FAIStatus(Enum):
    """First article inspection lifecycle."""

    PLANNED = "Planned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class WorkOrderStatus(Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Severity(Enum):
    MINOR = "Minor"
    MAJOR = "Major"
    CRITICAL = "Critical"


class QualityRecordStatus(Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    CONTAINED = "Contained"
    CLOSED = "Closed"


class OperatorRole(Enum):
    OPERATOR = "operator"
    QUALITY = "quality"
    MANAGER = "manager"
    ADMIN = "admin"


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# =============================================================================
# Rows
# =============================================================================


@dataclass
class Machine:
    """Digital twin of one physical machine."""

    id: str
    name: str = ""
    status: MachineStatus = MachineStatus.IDLE
    health_score: float = 100.0
    oee: float = 0.0
    min_competency_level: int = 1
    connected_tool_id: Optional[str] = None
    predicted_rul: float = 0.0  # hours
    failure_probability: float = 0.0  # percent

    def __post_init__(self):
        self.health_score = clamp(self.health_score, 0.0, 100.0)
        self.failure_probability = clamp(self.failure_probability, 0.0, 100.0)

    def to_state_dict(self) -> Dict[str, Any]:
        """Row as published on the live channel."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "health_score": round(self.health_score, 2),
            "oee": round(self.oee, 2),
            "min_competency_level": self.min_competency_level,
            "connected_tool_id": self.connected_tool_id,
            "predicted_rul": self.predicted_rul,
            "failure_probability": self.failure_probability,
        }


@dataclass
class Tool:
    id: str
    name: str = ""
    life_remaining: float = 100.0  # percent
    status: ToolStatus = ToolStatus.READY

    def __post_init__(self):
        self.life_remaining = clamp(self.life_remaining, 0.0, 100.0)


@dataclass
class FAIRecord:
    """First article inspection for a part revision.

    ``production_locked`` stays set until the record is approved; only
    :meth:`approve` clears it.
    """

    id: str
    part_number: str
    revision: str = "A"
    description: str = ""
    status: FAIStatus = FAIStatus.PLANNED
    production_locked: bool = True
    inspector: str = ""

    def __post_init__(self):
        if self.status != FAIStatus.APPROVED:
            self.production_locked = True

    @property
    def blocks_production(self) -> bool:
        return self.production_locked and self.status != FAIStatus.APPROVED

    def approve(self, inspector: str = "") -> None:
        self.status = FAIStatus.APPROVED
        self.production_locked = False
        if inspector:
            self.inspector = inspector


@dataclass
class Operator:
    id: str
    username: str = ""
    role: OperatorRole = OperatorRole.OPERATOR
    competency_level: int = 1


@dataclass
class WorkOrder:
    id: str
    part_number: str
    quantity: int
    status: WorkOrderStatus = WorkOrderStatus.PENDING
    priority: str = "Normal"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


@dataclass
class BOMEdge:
    """One parent -> child component edge of a bill of materials."""

    parent_part_number: str
    child_part_number: str
    quantity_required: int = 1


@dataclass
class InventoryItem:
    part_number: str
    quantity: int = 0
    description: str = ""
    location: str = ""
    is_gfe: bool = False  # customer-owned (shadow) stock
    owner: Optional[str] = None


@dataclass
class QualityRecord:
    """Non-conformance report. Append-only from the twin's point of view."""

    id: str
    title: str
    severity: Severity
    type: str
    description: str = ""
    status: QualityRecordStatus = QualityRecordStatus.OPEN
    machine_id: Optional[str] = None
    work_order_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass
class ProductionLogEntry:
    """Append-only start/stop record used for traceability."""

    id: int
    action: str
    work_order_id: Optional[str] = None
    machine_id: Optional[str] = None
    operator_id: Optional[str] = None
    details: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data
