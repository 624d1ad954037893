"""Tests for the keyed row store."""

import pytest

from shopfloor_twin.models import MachineStatus, QualityRecord, Severity
from shopfloor_twin.store import MACHINES, Store, StoreError


class TestStore:
    def test_rows_are_copies(self, store):
        machine = store.get_machine("CNC-001")
        machine.status = MachineStatus.ERROR

        assert store.get_machine("CNC-001").status == MachineStatus.IDLE

    def test_update_returns_new_row(self, store):
        row = store.update(MACHINES, "CNC-001", status=MachineStatus.RUNNING)

        assert row.status == MachineStatus.RUNNING
        assert store.get_machine("CNC-001").status == MachineStatus.RUNNING

    def test_update_missing_row(self, store):
        with pytest.raises(StoreError):
            store.update(MACHINES, "NOPE", status=MachineStatus.RUNNING)

    def test_unknown_table(self):
        with pytest.raises(StoreError):
            Store().all("nope")

    def test_missing_key_is_none(self, store):
        assert store.get_machine("NOPE") is None
        assert store.get_tool(None) is None

    def test_all_is_sorted_by_key(self, store):
        ids = [m.id for m in store.list_machines()]
        assert ids == sorted(ids)

    def test_quality_record_ids(self, store):
        first = store.next_quality_record_id("NCR-AUTO")
        second = store.next_quality_record_id("NCR-SIM")

        assert first == "NCR-AUTO-00001"
        assert second == "NCR-SIM-00002"

    def test_duplicate_quality_record(self, store):
        record = QualityRecord("NCR-1", "t", Severity.MAJOR, "Machine Error")
        store.add_quality_record(record)

        with pytest.raises(StoreError):
            store.add_quality_record(record)

    def test_production_log_is_append_only(self, store):
        store.append_log("START", work_order_id="WO-1")
        log = store.production_log()
        log.clear()

        entries = store.production_log()
        assert [e.action for e in entries] == ["START"]
        assert entries[0].id == 1
