"""
Pre-alerts — customer notice of an incoming package.

  submitted ──approve──▶ approved   (also set by warehouse intake on match)
            └─reject───▶ rejected

One pre-alert per tracking number. Customers may withdraw (delete) their own
pre-alerts only while still submitted.
"""

import uuid
from datetime import date

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import Conflict, Forbidden, InvalidTransition, NotFound, ValidationError
from db.models import Package, PreAlert, User, utcnow

logger = structlog.get_logger()

DECISIONS = {"approve": "approved", "reject": "rejected"}
ADMIN_LIST_LIMIT = 500


async def find_by_tracking(db: AsyncSession, tracking_number: str) -> PreAlert | None:
    result = await db.execute(select(PreAlert).where(PreAlert.tracking_number == tracking_number.strip()))
    return result.scalar_one_or_none()


async def create_pre_alert(
    db: AsyncSession,
    user: User,
    tracking_number: str,
    carrier: str | None = None,
    origin: str | None = None,
    expected_date: date | None = None,
    notes: str | None = None,
) -> PreAlert:
    tracking_number = (tracking_number or "").strip()
    if not tracking_number:
        raise ValidationError("tracking_number is required", details=[{"field": "tracking_number", "message": "required"}])
    if await find_by_tracking(db, tracking_number) is not None:
        raise Conflict("A pre-alert for this tracking number already exists")

    pre_alert = PreAlert(
        tracking_number=tracking_number,
        user_id=user.user_id,
        carrier=carrier,
        origin=origin,
        expected_date=expected_date,
        notes=notes,
        status="submitted",
    )
    db.add(pre_alert)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise Conflict("A pre-alert for this tracking number already exists") from exc

    logger.info("prealerts.created", tracking_number=tracking_number, user_code=user.user_code)
    return pre_alert


async def list_for_user(db: AsyncSession, user: User) -> list[PreAlert]:
    result = await db.execute(
        select(PreAlert).where(PreAlert.user_id == user.user_id).order_by(PreAlert.created_at.desc())
    )
    return list(result.scalars().all())


async def delete_own(db: AsyncSession, user: User, pre_alert_id: uuid.UUID) -> None:
    pre_alert = await db.get(PreAlert, pre_alert_id)
    if pre_alert is None:
        raise NotFound("Pre-alert not found")
    if pre_alert.user_id != user.user_id:
        raise Forbidden("Pre-alert belongs to another customer")
    if pre_alert.status != "submitted":
        raise InvalidTransition(f"Pre-alert is already {pre_alert.status}")
    await db.delete(pre_alert)
    await db.commit()
    logger.info("prealerts.deleted", tracking_number=pre_alert.tracking_number, user_code=user.user_code)


async def admin_list(db: AsyncSession, status: str | None = None, q: str | None = None) -> list[tuple[PreAlert, str]]:
    """(pre_alert, user_code) pairs, newest first."""
    query = select(PreAlert, User.user_code).join(User, PreAlert.user_id == User.user_id)
    if status:
        query = query.where(PreAlert.status == status)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.where(
            or_(
                PreAlert.tracking_number.ilike(pattern),
                User.user_code.ilike(pattern),
                PreAlert.carrier.ilike(pattern),
                PreAlert.origin.ilike(pattern),
            )
        )
    result = await db.execute(query.order_by(PreAlert.created_at.desc()).limit(ADMIN_LIST_LIMIT))
    return [(row[0], row[1]) for row in result.all()]


async def decide(db: AsyncSession, pre_alert_id: uuid.UUID, action: str, decided_by: str) -> PreAlert:
    if action not in DECISIONS:
        raise ValidationError("action must be 'approve' or 'reject'", details=[{"field": "action", "message": "invalid"}])
    pre_alert = await db.get(PreAlert, pre_alert_id)
    if pre_alert is None:
        raise NotFound("Pre-alert not found")
    if pre_alert.status != "submitted":
        raise InvalidTransition(f"Pre-alert is already {pre_alert.status}")

    pre_alert.status = DECISIONS[action]
    pre_alert.decided_by = decided_by
    pre_alert.decided_at = utcnow()
    await db.commit()
    logger.info("prealerts.decided", tracking_number=pre_alert.tracking_number, status=pre_alert.status, by=decided_by)
    return pre_alert


async def match_package(db: AsyncSession, package: Package, decided_by: str) -> PreAlert:
    """Link a received package to its pre-alert, creating an approved one if none exists.

    Runs inside the intake transaction; does not commit.
    """
    pre_alert = await find_by_tracking(db, package.tracking_number)
    now = utcnow()
    if pre_alert is None:
        pre_alert = PreAlert(
            tracking_number=package.tracking_number,
            user_id=package.user_id,
            carrier=package.shipper,
            notes="Auto-created on warehouse receipt",
        )
        db.add(pre_alert)
    elif pre_alert.status == "rejected":
        # Rejection is final; the package is linked for audit only.
        logger.warning("prealerts.rejected_matched", tracking_number=package.tracking_number)

    if pre_alert.status != "rejected":
        pre_alert.status = "approved"
        pre_alert.decided_by = pre_alert.decided_by or decided_by
        pre_alert.decided_at = pre_alert.decided_at or now
    pre_alert.package_id = package.package_id
    pre_alert.matched_at = now
    await db.flush()
    return pre_alert
