"""Tests for the zero-error production validator."""

import pytest

from shopfloor_twin.models import BOMEdge, FAIRecord, FAIStatus, InventoryItem, Operator
from shopfloor_twin.store import INVENTORY, OPERATORS, Store
from shopfloor_twin.validator import BlockReason, ProductionValidator


def snapshot(store: Store):
    return (
        store.list_machines(),
        store.all("work_orders"),
        store.all(INVENTORY),
        store.list_quality_records(),
        store.production_log(),
    )


class TestValidateStart:
    """Tests for ProductionValidator.validate_start against the reference plant."""

    @pytest.fixture
    def validator(self, store):
        store.put(OPERATORS, "OP-L2", Operator("OP-L2", "novice", competency_level=2))
        return ProductionValidator(store)

    def test_authorized_start(self, validator):
        result = validator.validate_start("CNC-001", "USER-6", "PN-TANK-ARMOR-01", 10)

        assert result.ok
        assert result.reason is None

    def test_fai_lock_has_absolute_precedence(self, validator):
        # Expert operator, ample stock, but the part's FAI is rejected and locked
        result = validator.validate_start("CNC-001", "USER-6", "PN-UAV-LENS-MT", 1)

        assert result.reason == BlockReason.FAI_LOCKED
        assert "PN-UAV-LENS-MT" in result.detail

    def test_fai_lock_checked_before_missing_operator(self, validator):
        result = validator.validate_start("CNC-001", "NOBODY", "PN-UAV-LENS-MT", 1)
        assert result.reason == BlockReason.FAI_LOCKED

    def test_competency_level_2_on_level_3_machine(self, validator):
        result = validator.validate_start("CNC-001", "OP-L2", "PN-TANK-ARMOR-01", 10)

        assert result.reason == BlockReason.COMPETENCY_INSUFFICIENT
        assert "(2)" in result.detail and "(3)" in result.detail

    def test_competency_checked_before_inventory(self, validator):
        result = validator.validate_start("CNC-001", "OP-L2", "PN-TANK-ARMOR-01", 10_000)
        assert result.reason == BlockReason.COMPETENCY_INSUFFICIENT

    def test_inventory_shortage(self, validator):
        # 101 units need 202 titanium bars, 200 on hand
        result = validator.validate_start("CNC-001", "USER-6", "PN-TANK-ARMOR-01", 101)

        assert result.reason == BlockReason.INVENTORY_SHORTAGE
        assert "RAW-TI-6AL4V" in result.detail
        assert "Required: 202" in result.detail
        assert "Available: 200" in result.detail

    def test_exact_stock_is_sufficient(self, validator):
        assert validator.validate_start("CNC-001", "USER-6", "PN-TANK-ARMOR-01", 100).ok

    def test_missing_inventory_row_is_a_shortage(self, store, validator):
        store.add_bom_edge(BOMEdge("PN-TANK-ARMOR-01", "UNOBTAINIUM", 1))

        result = validator.validate_start("CNC-001", "USER-6", "PN-TANK-ARMOR-01", 1)

        assert result.reason == BlockReason.INVENTORY_SHORTAGE
        assert "Available: 0" in result.detail

    def test_part_without_fai_or_bom_is_allowed(self, validator):
        assert validator.validate_start("CNC-003", "USER-2", "PN-GENERIC-Bracket", 50).ok

    def test_missing_machine_is_blocked(self, validator):
        result = validator.validate_start("NOPE", "USER-6", "PN-TANK-ARMOR-01", 1)
        assert result.reason == BlockReason.MACHINE_NOT_FOUND

    def test_missing_operator_is_blocked(self, validator):
        result = validator.validate_start("CNC-001", "NOPE", "PN-TANK-ARMOR-01", 1)
        assert result.reason == BlockReason.OPERATOR_NOT_FOUND

    def test_approved_fai_unlocks_part(self, store, validator):
        fai = store.find_fai("PN-UAV-LENS-MT")
        fai.approve(inspector="QA")
        store.put("fai_records", fai.id, fai)

        assert validator.validate_start("CNC-001", "USER-6", "PN-UAV-LENS-MT", 1).ok

    def test_validation_never_mutates(self, store, validator):
        before = snapshot(store)

        validator.validate_start("CNC-001", "USER-6", "PN-TANK-ARMOR-01", 10)
        validator.validate_start("CNC-001", "OP-L2", "PN-TANK-ARMOR-01", 10)
        validator.validate_start("CNC-001", "USER-6", "PN-TANK-ARMOR-01", 10_000)
        validator.validate_start("CNC-001", "USER-6", "PN-UAV-LENS-MT", 1)

        assert snapshot(store) == before


class TestFAIRecordLock:
    def test_unapproved_record_is_always_locked(self):
        fai = FAIRecord("F", "PN", status=FAIStatus.COMPLETED, production_locked=False)
        assert fai.production_locked
        assert fai.blocks_production

    def test_approval_clears_lock(self):
        fai = FAIRecord("F", "PN", status=FAIStatus.IN_PROGRESS)
        fai.approve()
        assert not fai.production_locked
        assert not fai.blocks_production

    def test_latest_revision_wins(self):
        store = Store()
        store.put("fai_records", "F-A", FAIRecord("F-A", "PN", "A", status=FAIStatus.APPROVED,
                                                    production_locked=False))
        store.put("fai_records", "F-B", FAIRecord("F-B", "PN", "B", status=FAIStatus.PLANNED))

        assert store.find_fai("PN").revision == "B"
        assert ProductionValidator(store).check_fai("PN").reason == BlockReason.FAI_LOCKED


class TestInventoryDemand:
    def test_every_child_is_checked(self):
        store = Store()
        store.add_bom_edge(BOMEdge("P", "C1", 1))
        store.add_bom_edge(BOMEdge("P", "C2", 3))
        store.put(INVENTORY, "C1", InventoryItem("C1", 100))
        store.put(INVENTORY, "C2", InventoryItem("C2", 29))

        result = ProductionValidator(store).check_inventory("P", 10)

        assert result.reason == BlockReason.INVENTORY_SHORTAGE
        assert "C2" in result.detail

    def test_customer_owned_stock_counts(self):
        store = Store()
        store.add_bom_edge(BOMEdge("P", "GFE", 2))
        store.put(INVENTORY, "GFE", InventoryItem("GFE", 10, is_gfe=True, owner="Customer"))

        assert ProductionValidator(store).check_inventory("P", 5).ok
