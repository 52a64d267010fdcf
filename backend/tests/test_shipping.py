"""
Tests for the package lifecycle, warehouse intake and pre-alerts.
"""

import uuid

import pytest
from sqlalchemy import func, select

import shipping.intake as intake_module
from core.errors import Conflict, Forbidden, InvalidTransition, NotFound, ValidationError
from db.models import Invoice, InventoryItem, InventoryTransaction, OutboxMessage, Package
from notifications.outbox import TOPIC_PACKAGE_RECEIVED
from shipping.intake import PackageIntake, receive_package
from shipping.lifecycle import (
    OPERATIONAL_STATUSES,
    ROLE_TARGETS,
    Actor,
    check_permission,
    count_active_by_status,
    get_package,
    normalize_status,
    soft_delete,
    update_status,
)
from shipping.prealerts import admin_list, create_pre_alert, decide, delete_own, list_for_user

ADMIN = Actor(role="admin", name="ADMIN")
CLERK = Actor(role="warehouse", name="jane")


# ── Lifecycle ──────────────────────────────────────────────────────────


class TestNormalizeStatus:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("in_transit", "in_transit"),
            ("At Warehouse", "received"),
            ("Ready To Ship", "ready_to_ship"),
            ("delivered to airport", "shipped"),
            ("at_local_port", "in_transit"),
            ("1", "shipped"),
            ("4", "in_processing"),
        ],
    )
    def test_known_values(self, raw, expected):
        assert normalize_status(raw) == expected

    @pytest.mark.parametrize("raw", [None, "lost at sea", "9"])
    def test_unknown_values(self, raw):
        with pytest.raises(ValidationError):
            normalize_status(raw)


async def test_transition_appends_history(test_db, seeded_db, make_package):
    await make_package(seeded_db["alice"], "TRK-LC-1")

    package = await update_status(test_db, "TRK-LC-1", "shipped", CLERK, "Left on flight JM123")
    package = await update_status(test_db, "TRK-LC-1", "In Transit", CLERK)

    assert package.status == "in_transit"
    assert [h.status for h in package.history] == ["received", "shipped", "in_transit"]
    assert package.history[1].note == "Left on flight JM123"
    assert package.history[1].actor == "jane"
    assert package.history[2].note == "Status updated by warehouse"


def test_role_targets():
    assert "deleted" not in OPERATIONAL_STATUSES
    assert ROLE_TARGETS["warehouse"] == OPERATIONAL_STATUSES | {"deleted"}
    check_permission(CLERK, "ready_to_ship")
    check_permission(CLERK, "deleted")
    with pytest.raises(Forbidden, match="may not set package status 'received'"):
        check_permission(Actor(role="customer", name="CD1001"), "received")


async def test_customers_cannot_move_packages(test_db, seeded_db, make_package):
    await make_package(seeded_db["alice"], "TRK-LC-2")
    with pytest.raises(Forbidden):
        await update_status(test_db, "TRK-LC-2", "delivered", Actor(role="customer", name="CD1001"))


async def test_deleted_is_terminal(test_db, seeded_db, make_package):
    await make_package(seeded_db["alice"], "TRK-LC-3")
    package = await soft_delete(test_db, "TRK-LC-3", ADMIN)
    assert package.status == "deleted"
    assert package.history[-1].note == "Deleted by admin"

    with pytest.raises(InvalidTransition):
        await update_status(test_db, "TRK-LC-3", "received", ADMIN)

    # Still stored for audit, hidden from active lookups.
    assert (await get_package(test_db, "TRK-LC-3")).status == "deleted"
    with pytest.raises(NotFound):
        await get_package(test_db, "TRK-LC-3", include_deleted=False)


async def test_active_counts_exclude_deleted(test_db, seeded_db, make_package):
    alice, bob = seeded_db["alice"], seeded_db["bob"]
    await make_package(alice, "TRK-CNT-1")
    await make_package(alice, "TRK-CNT-2", status="shipped")
    await make_package(alice, "TRK-CNT-3", status="deleted")
    await make_package(bob, "TRK-CNT-4")

    assert await count_active_by_status(test_db) == {"received": 2, "shipped": 1}
    assert await count_active_by_status(test_db, alice.user_id) == {"received": 1, "shipped": 1}


# ── Intake ─────────────────────────────────────────────────────────────


def _intake(tracking_number: str, user_code: str = "CD1001", **fields) -> PackageIntake:
    fields.setdefault("weight", 2.0)
    fields.setdefault("length", 30)
    fields.setdefault("width", 20)
    fields.setdefault("height", 10)
    return PackageIntake(tracking_number=tracking_number, user_code=user_code, received_by="Jane", **fields)


async def _stock(db, category: str) -> float:
    result = await db.execute(select(InventoryItem.current_stock).where(InventoryItem.category == category))
    return result.scalar_one()


async def test_receive_new_package(test_db, seeded_db):
    result = await receive_package(test_db, _intake("TRK-IN-1", description="Shoes"), CLERK)

    assert result.created
    assert result.warnings == []
    package = result.package
    assert package.status == "received"
    assert package.user_id == seeded_db["alice"].user_id
    assert package.history[-1].note == "Received at Main Warehouse by Jane"

    assert result.pre_alert.status == "approved"
    assert result.pre_alert.package_id == package.package_id
    assert result.pre_alert.notes == "Auto-created on warehouse receipt"

    assert result.invoice.invoice_number == "INV-TRK-IN-1"
    assert result.invoice.total == 2100.0
    assert package.shipping_cost == 2100.0

    assert await _stock(test_db, "boxes") == 99
    assert await _stock(test_db, "tape") == 48
    assert await _stock(test_db, "labels") == 199
    assert await _stock(test_db, "bubble_wrap") == 3

    messages = (await test_db.execute(select(OutboxMessage))).scalars().all()
    assert len(messages) == 1
    assert messages[0].topic == TOPIC_PACKAGE_RECEIVED
    assert messages[0].payload["to"] == "alice@example.com"
    assert messages[0].payload["tracking_number"] == "TRK-IN-1"


async def test_receive_matches_submitted_pre_alert(test_db, seeded_db):
    await create_pre_alert(test_db, seeded_db["alice"], "TRK-IN-2", carrier="UPS")

    result = await receive_package(test_db, _intake("TRK-IN-2"), CLERK)
    assert result.pre_alert.status == "approved"
    assert result.pre_alert.decided_by == "jane"
    assert result.pre_alert.carrier == "UPS"
    assert result.pre_alert.matched_at is not None


async def test_rejected_pre_alert_is_linked_not_approved(test_db, seeded_db):
    pre_alert = await create_pre_alert(test_db, seeded_db["alice"], "TRK-IN-3")
    await decide(test_db, pre_alert.pre_alert_id, "reject", "ADMIN")

    result = await receive_package(test_db, _intake("TRK-IN-3"), CLERK)
    assert result.pre_alert.status == "rejected"
    assert result.pre_alert.package_id == result.package.package_id


async def test_receive_twice_updates_without_rebilling(test_db, seeded_db):
    await receive_package(test_db, _intake("TRK-IN-4"), CLERK)
    again = await receive_package(test_db, _intake("TRK-IN-4", weight=3.0), CLERK)

    assert not again.created
    assert again.invoice is None
    assert again.package.weight == 3.0
    assert len(again.package.history) == 2

    count = await test_db.execute(select(func.count()).select_from(Invoice).where(Invoice.invoice_number == "INV-TRK-IN-4"))
    assert count.scalar_one() == 1


async def test_unknown_customer_rolls_back(test_db, seeded_db):
    with pytest.raises(NotFound):
        await receive_package(test_db, _intake("TRK-IN-5", user_code="NOPE"), CLERK)
    with pytest.raises(NotFound):
        await receive_package(test_db, _intake("TRK-IN-5", user_code="ADMIN"), CLERK)

    count = await test_db.execute(select(func.count()).select_from(Package))
    assert count.scalar_one() == 0


async def test_deleted_package_cannot_be_received(test_db, seeded_db, make_package):
    await make_package(seeded_db["alice"], "TRK-IN-6", status="deleted")
    with pytest.raises(InvalidTransition):
        await receive_package(test_db, _intake("TRK-IN-6"), CLERK)


async def test_intake_requires_staff(test_db, seeded_db):
    with pytest.raises(Forbidden):
        await receive_package(test_db, _intake("TRK-IN-7"), Actor(role="customer", name="CD1001"))


async def test_intake_validates_fields(test_db, seeded_db):
    with pytest.raises(ValidationError) as exc_info:
        await receive_package(test_db, _intake(" ", weight=-1), CLERK)
    fields = {d["field"] for d in exc_info.value.details}
    assert fields == {"tracking_number", "weight"}


async def test_billing_failure_does_not_fail_intake(test_db, seeded_db, monkeypatch):
    async def _broken(db, package):
        raise ValidationError("tariff unavailable")

    monkeypatch.setattr(intake_module, "build_package_invoice", _broken)

    result = await receive_package(test_db, _intake("TRK-IN-8"), CLERK)
    assert result.warnings == ["invoice_not_created"]
    assert result.invoice is None
    assert result.package.status == "received"
    assert await _stock(test_db, "boxes") == 99

    movements = await test_db.execute(select(func.count()).select_from(InventoryTransaction))
    assert movements.scalar_one() == 3


# ── Pre-alerts ─────────────────────────────────────────────────────────


async def test_pre_alert_is_unique_per_tracking(test_db, seeded_db):
    await create_pre_alert(test_db, seeded_db["alice"], "TRK-PA-1")
    with pytest.raises(Conflict):
        await create_pre_alert(test_db, seeded_db["bob"], "TRK-PA-1")
    with pytest.raises(ValidationError):
        await create_pre_alert(test_db, seeded_db["bob"], "  ")


async def test_customer_withdraws_own_submitted_pre_alert(test_db, seeded_db):
    alice, bob = seeded_db["alice"], seeded_db["bob"]
    pre_alert = await create_pre_alert(test_db, alice, "TRK-PA-2")

    with pytest.raises(Forbidden):
        await delete_own(test_db, bob, pre_alert.pre_alert_id)
    await delete_own(test_db, alice, pre_alert.pre_alert_id)
    assert await list_for_user(test_db, alice) == []

    with pytest.raises(NotFound):
        await delete_own(test_db, alice, uuid.uuid4())


async def test_decided_pre_alert_is_final(test_db, seeded_db):
    alice = seeded_db["alice"]
    pre_alert = await create_pre_alert(test_db, alice, "TRK-PA-3")

    with pytest.raises(ValidationError):
        await decide(test_db, pre_alert.pre_alert_id, "maybe", "ADMIN")

    decided = await decide(test_db, pre_alert.pre_alert_id, "approve", "ADMIN")
    assert decided.status == "approved"
    assert decided.decided_by == "ADMIN"

    with pytest.raises(InvalidTransition):
        await decide(test_db, pre_alert.pre_alert_id, "reject", "ADMIN")
    with pytest.raises(InvalidTransition):
        await delete_own(test_db, alice, pre_alert.pre_alert_id)


async def test_admin_list_filters(test_db, seeded_db):
    await create_pre_alert(test_db, seeded_db["alice"], "TRK-PA-4", carrier="DHL")
    await create_pre_alert(test_db, seeded_db["bob"], "TRK-PA-5", carrier="FedEx")

    rows = await admin_list(test_db, q="cd1002")
    assert [(p.tracking_number, code) for p, code in rows] == [("TRK-PA-5", "CD1002")]
    assert len(await admin_list(test_db, status="submitted")) == 2
    assert await admin_list(test_db, status="approved") == []
