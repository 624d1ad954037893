"""Keyed row store used by the scheduler and the interlock gate.

Stands in for the platform's relational database: rows are read and written
one at a time, each operation is atomic on its own, and callers always get a
copy of the row rather than a live reference. There is no multi-row
transaction; a validation read followed by a write can interleave with
another caller's writes (last write wins per row).
"""

import dataclasses
import itertools
import logging
import threading
from typing import Any, Dict, List, Optional

from .models import (
    BOMEdge,
    FAIRecord,
    InventoryItem,
    Machine,
    Operator,
    ProductionLogEntry,
    QualityRecord,
    Tool,
    WorkOrder,
)

logger = logging.getLogger(__name__)

MACHINES = "machines"
TOOLS = "tools"
FAI_RECORDS = "fai_records"
OPERATORS = "operators"
WORK_ORDERS = "work_orders"
INVENTORY = "inventory"
QUALITY_RECORDS = "quality_records"

KEYED_TABLES = (MACHINES, TOOLS, FAI_RECORDS, OPERATORS, WORK_ORDERS, INVENTORY, QUALITY_RECORDS)


class StoreError(Exception):
    """Persistent store unavailable or a write failed."""


class Store:
    """In-process keyed store with per-operation locking."""

    def __init__(self):
        self._lock = threading.RLock()
        self._tables: Dict[str, Dict[str, Any]] = {name: {} for name in KEYED_TABLES}
        self._bom: List[BOMEdge] = []
        self._log: List[ProductionLogEntry] = []
        self._log_ids = itertools.count(1)
        self._ncr_ids = itertools.count(1)

    @classmethod
    def from_plant(cls, plant) -> "Store":
        """Create a store seeded with the rows of a ``PlantConfig``."""
        store = cls()
        for machine in plant.machines:
            store.put(MACHINES, machine.id, machine)
        for tool in plant.tools:
            store.put(TOOLS, tool.id, tool)
        for operator in plant.operators:
            store.put(OPERATORS, operator.id, operator)
        for item in plant.inventory:
            store.put(INVENTORY, item.part_number, item)
        for edge in plant.bom:
            store.add_bom_edge(edge)
        for wo in plant.work_orders:
            store.put(WORK_ORDERS, wo.id, wo)
        for fai in plant.fai_records:
            store.put(FAI_RECORDS, fai.id, fai)
        logger.info(
            f"Seeded store: {len(plant.machines)} machines, {len(plant.tools)} tools, "
            f"{len(plant.operators)} operators, {len(plant.work_orders)} work orders"
        )
        return store

    # -------------------------------------------------------------------------
    # Generic keyed access
    # -------------------------------------------------------------------------

    def _table(self, table: str) -> Dict[str, Any]:
        try:
            return self._tables[table]
        except KeyError:
            raise StoreError(f"Unknown table: {table}") from None

    def get(self, table: str, key: Optional[str]) -> Optional[Any]:
        if key is None:
            return None
        with self._lock:
            row = self._table(table).get(key)
            return dataclasses.replace(row) if row is not None else None

    def all(self, table: str) -> List[Any]:
        """All rows of a table ordered by key."""
        with self._lock:
            rows = self._table(table)
            return [dataclasses.replace(rows[k]) for k in sorted(rows)]

    def put(self, table: str, key: str, row: Any) -> None:
        with self._lock:
            self._table(table)[key] = dataclasses.replace(row)

    def update(self, table: str, key: str, **fields) -> Any:
        """Update fields of an existing row and return the new row."""
        with self._lock:
            rows = self._table(table)
            if key not in rows:
                raise StoreError(f"{table}/{key} does not exist")
            rows[key] = dataclasses.replace(rows[key], **fields)
            return dataclasses.replace(rows[key])

    # -------------------------------------------------------------------------
    # Typed shortcuts
    # -------------------------------------------------------------------------

    def get_machine(self, machine_id: Optional[str]) -> Optional[Machine]:
        return self.get(MACHINES, machine_id)

    def list_machines(self) -> List[Machine]:
        return self.all(MACHINES)

    def get_tool(self, tool_id: Optional[str]) -> Optional[Tool]:
        return self.get(TOOLS, tool_id)

    def get_operator(self, operator_id: Optional[str]) -> Optional[Operator]:
        return self.get(OPERATORS, operator_id)

    def get_work_order(self, work_order_id: Optional[str]) -> Optional[WorkOrder]:
        return self.get(WORK_ORDERS, work_order_id)

    def get_inventory(self, part_number: str) -> Optional[InventoryItem]:
        return self.get(INVENTORY, part_number)

    def find_fai(self, part_number: str) -> Optional[FAIRecord]:
        """FAI record for a part number (latest revision wins)."""
        with self._lock:
            matches = [
                fai for fai in self._tables[FAI_RECORDS].values()
                if fai.part_number == part_number
            ]
            if not matches:
                return None
            return dataclasses.replace(max(matches, key=lambda f: (f.revision, f.id)))

    def list_fai_records(self) -> List[FAIRecord]:
        return self.all(FAI_RECORDS)

    # -------------------------------------------------------------------------
    # BOM
    # -------------------------------------------------------------------------

    def add_bom_edge(self, edge: BOMEdge) -> None:
        with self._lock:
            self._bom.append(dataclasses.replace(edge))

    def bom_children(self, parent_part_number: str) -> List[BOMEdge]:
        with self._lock:
            return [
                dataclasses.replace(e) for e in self._bom
                if e.parent_part_number == parent_part_number
            ]

    # -------------------------------------------------------------------------
    # Append-only records
    # -------------------------------------------------------------------------

    def next_quality_record_id(self, prefix: str = "NCR-AUTO") -> str:
        with self._lock:
            return f"{prefix}-{next(self._ncr_ids):05d}"

    def add_quality_record(self, record: QualityRecord) -> QualityRecord:
        with self._lock:
            rows = self._tables[QUALITY_RECORDS]
            if record.id in rows:
                raise StoreError(f"Quality record {record.id} already exists")
            rows[record.id] = dataclasses.replace(record)
            return record

    def list_quality_records(self) -> List[QualityRecord]:
        return self.all(QUALITY_RECORDS)

    def append_log(
        self,
        action: str,
        work_order_id: Optional[str] = None,
        machine_id: Optional[str] = None,
        operator_id: Optional[str] = None,
        details: str = "",
    ) -> ProductionLogEntry:
        with self._lock:
            entry = ProductionLogEntry(
                id=next(self._log_ids),
                action=action,
                work_order_id=work_order_id,
                machine_id=machine_id,
                operator_id=operator_id,
                details=details,
            )
            self._log.append(entry)
            return dataclasses.replace(entry)

    def production_log(self) -> List[ProductionLogEntry]:
        with self._lock:
            return [dataclasses.replace(e) for e in self._log]
