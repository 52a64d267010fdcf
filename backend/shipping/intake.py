"""
Warehouse Intake — receiving a physical package.

One transaction, committed or rolled back as a unit:
  1. customer lookup by mailbox code (user_code)
  2. upsert the package by tracking number, status 'received'
  3. history entry "Received at <warehouse> by <staff>"
  4. match the customer's pre-alert (approve + link) or create an approved one

Then, each in its own SAVEPOINT and never failing the intake:
  - auto-billing invoice (INV-<tracking>)
  - packing-material deduction from inventory
  - 'package received' email via the outbox
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billing.invoices import build_package_invoice
from core.errors import CargoDeskError, InvalidTransition, NotFound, ValidationError
from db.models import Invoice, Package, PreAlert, User, utcnow
from inventory.stock import ConsumptionReport, consume_for_package
from notifications.outbox import TOPIC_PACKAGE_RECEIVED, enqueue
from shipping.lifecycle import Actor, append_history, check_permission, get_package
from shipping.prealerts import find_by_tracking, match_package

logger = structlog.get_logger()

DEFAULT_WAREHOUSE = "Main Warehouse"


@dataclass
class PackageIntake:
    tracking_number: str
    user_code: str
    weight: float
    description: str | None = None
    shipper: str | None = None
    length: float | None = None
    width: float | None = None
    height: float | None = None
    dimension_unit: str = "cm"
    declared_value: float = 0.0
    service_mode: str = "air"
    origin_country: str | None = None
    destination_country: str | None = None
    is_fragile: bool = False
    is_hazardous: bool = False
    warehouse_location: str | None = None
    received_by: str | None = None


@dataclass
class IntakeResult:
    package: Package
    pre_alert: PreAlert | None
    created: bool
    invoice: Invoice | None = None
    materials: ConsumptionReport | None = None
    warnings: list[str] = field(default_factory=list)


def _validate(intake: PackageIntake) -> None:
    errors = []
    if not (intake.tracking_number or "").strip():
        errors.append({"field": "tracking_number", "message": "required"})
    if not (intake.user_code or "").strip():
        errors.append({"field": "user_code", "message": "required"})
    if intake.weight is None or intake.weight < 0:
        errors.append({"field": "weight", "message": "must be >= 0"})
    if (intake.declared_value or 0) < 0:
        errors.append({"field": "declared_value", "message": "must be >= 0"})
    if errors:
        raise ValidationError("Invalid package intake", details=errors)


async def _customer(db: AsyncSession, user_code: str) -> User:
    result = await db.execute(
        select(User).where(User.user_code == user_code.strip(), User.role == "customer", User.active.is_(True))
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound(f"Customer '{user_code}' not found")
    return user


def _apply_fields(package: Package, intake: PackageIntake, user: User) -> None:
    package.user_id = user.user_id
    package.weight = intake.weight
    package.description = intake.description
    package.shipper = intake.shipper
    package.length = intake.length
    package.width = intake.width
    package.height = intake.height
    package.dimension_unit = intake.dimension_unit or "cm"
    package.declared_value = intake.declared_value or 0.0
    package.service_mode = intake.service_mode or "air"
    package.origin_country = intake.origin_country
    package.destination_country = intake.destination_country
    package.is_fragile = bool(intake.is_fragile)
    package.is_hazardous = bool(intake.is_hazardous)
    package.warehouse_location = intake.warehouse_location or DEFAULT_WAREHOUSE


async def _best_effort(
    db: AsyncSession, step: str, action: Callable[[], Awaitable[Any]], **context
) -> tuple[bool, Any]:
    try:
        async with db.begin_nested():
            result = await action()
        await db.commit()
        return True, result
    except (CargoDeskError, SQLAlchemyError) as exc:
        await db.rollback()
        logger.error(f"intake.{step}_failed", error=str(exc), **context)
        return False, None


async def receive_package(db: AsyncSession, intake: PackageIntake, actor: Actor) -> IntakeResult:
    _validate(intake)
    check_permission(actor, "received")
    tracking_number = intake.tracking_number.strip()
    warehouse = intake.warehouse_location or DEFAULT_WAREHOUSE
    note = f"Received at {warehouse} by {intake.received_by}" if intake.received_by else f"Received at {warehouse}"

    try:
        user = await _customer(db, intake.user_code)
        result = await db.execute(
            select(Package).where(Package.tracking_number == tracking_number).options(selectinload(Package.history))
        )
        package = result.scalar_one_or_none()
        created = package is None
        if created:
            package = Package(tracking_number=tracking_number, history=[])
            db.add(package)
        elif package.status == "deleted":
            raise InvalidTransition("Package was deleted and cannot be received again")

        _apply_fields(package, intake, user)
        package.status = "received"
        package.received_at = package.received_at or utcnow()
        append_history(package, "received", note, actor)
        await db.flush()

        await match_package(db, package, actor.name)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    customer_email, customer_first_name = user.email, user.first_name
    logger.info(
        "intake.received",
        tracking_number=tracking_number,
        user_code=intake.user_code,
        created=created,
        warehouse=warehouse,
    )

    outcome = IntakeResult(package=package, pre_alert=None, created=created)

    async def _invoice():
        return await build_package_invoice(db, await get_package(db, tracking_number))

    async def _materials():
        return await consume_for_package(db, await get_package(db, tracking_number), actor.name)

    async def _email():
        pkg = await get_package(db, tracking_number)
        return enqueue(
            db,
            TOPIC_PACKAGE_RECEIVED,
            {
                "to": customer_email,
                "first_name": customer_first_name,
                "tracking_number": tracking_number,
                "description": pkg.description,
                "weight": pkg.weight,
                "warehouse": warehouse,
            },
        )

    ok, outcome.invoice = await _best_effort(db, "invoice", _invoice, tracking_number=tracking_number)
    if not ok:
        outcome.warnings.append("invoice_not_created")
    ok, outcome.materials = await _best_effort(db, "materials", _materials, tracking_number=tracking_number)
    if not ok:
        outcome.warnings.append("materials_not_deducted")
    if customer_email:
        await _best_effort(db, "email", _email, tracking_number=tracking_number)

    # A failed step rolls back and expires what the session holds; reload.
    outcome.package = await get_package(db, tracking_number)
    if outcome.invoice is not None:
        await db.refresh(outcome.invoice)
    outcome.pre_alert = await find_by_tracking(db, tracking_number)
    return outcome
