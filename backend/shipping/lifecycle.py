"""
Package Lifecycle Manager — status transitions and history log.

Every transition:
  1. checks the actor's role may move a package to the target status
  2. writes the new status
  3. appends an immutable PackageHistory row {status, at, note, actor}

History is append-only; a status is never overwritten without a matching
history row. Soft delete is a transition to 'deleted'; deleted packages stay
in the table for audit but drop out of active counts. 'deleted' is terminal.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from db.models import PACKAGE_STATUSES, Package, PackageHistory, utcnow

logger = structlog.get_logger()

OPERATIONAL_STATUSES = frozenset(PACKAGE_STATUSES) - {"deleted"}

# role → statuses it may set
ROLE_TARGETS: dict[str, frozenset[str]] = {
    "admin": frozenset(PACKAGE_STATUSES),
    "warehouse": OPERATIONAL_STATUSES | {"deleted"},
}

# External / legacy labels seen on warehouse feeds and older records.
STATUS_ALIASES: dict[str, str] = {
    "at warehouse": "received",
    "received": "received",
    "in processing": "in_processing",
    "ready to ship": "ready_to_ship",
    "shipped": "shipped",
    "delivered to airport": "shipped",
    "in transit": "in_transit",
    "in transit to local port": "in_transit",
    "at local port": "in_transit",
    "at local sorting": "in_processing",
    "delivered": "delivered",
    "deleted": "deleted",
    "unknown": "unknown",
}

# Manifest status codes used by the warehouse partner feed.
MANIFEST_CODES: dict[str, str] = {
    "0": "received",
    "1": "shipped",
    "2": "in_transit",
    "3": "in_transit",
    "4": "in_processing",
}


@dataclass(frozen=True)
class Actor:
    """Who is driving a transition (taken from the session or API key)."""

    role: str
    name: str

    @classmethod
    def from_user(cls, user: dict) -> "Actor":
        return cls(role=user.get("role", ""), name=user.get("user_code") or user.get("sub") or "unknown")


def normalize_status(value: str | None) -> str:
    """Map enum values, legacy labels and manifest codes onto the status enum."""
    if value is None:
        raise ValidationError("status is required", details=[{"field": "status", "message": "required"}])
    raw = str(value).strip()
    if raw in PACKAGE_STATUSES:
        return raw
    if raw in MANIFEST_CODES:
        return MANIFEST_CODES[raw]
    alias = STATUS_ALIASES.get(raw.lower()) or STATUS_ALIASES.get(raw.lower().replace("_", " "))
    if alias:
        return alias
    raise ValidationError(
        f"Unknown package status '{value}'",
        details=[{"field": "status", "message": f"must be one of {', '.join(PACKAGE_STATUSES)}"}],
    )


def check_permission(actor: Actor, target: str) -> None:
    allowed = ROLE_TARGETS.get(actor.role)
    if not allowed or target not in allowed:
        raise Forbidden(f"Role '{actor.role or 'anonymous'}' may not set package status '{target}'")


def append_history(package: Package, status: str, note: str | None, actor: Actor | None = None) -> PackageHistory:
    entry = PackageHistory(status=status, at=utcnow(), note=note, actor=actor.name if actor else None)
    package.history.append(entry)
    return entry


async def get_package(db: AsyncSession, tracking_number: str, include_deleted: bool = True) -> Package:
    query = (
        select(Package)
        .where(Package.tracking_number == tracking_number.strip())
        .options(selectinload(Package.history))
    )
    result = await db.execute(query)
    package = result.scalar_one_or_none()
    if package is None or (not include_deleted and package.status == "deleted"):
        raise NotFound("Package not found")
    return package


async def transition(
    db: AsyncSession,
    package: Package,
    target: str,
    actor: Actor,
    note: str | None = None,
) -> Package:
    """Move a package to `target`. Caller owns the commit."""
    target = normalize_status(target)
    check_permission(actor, target)

    if package.status == "deleted":
        raise InvalidTransition("Deleted packages cannot change status")

    previous = package.status
    package.status = target
    package.updated_at = utcnow()
    append_history(package, target, note or f"Status updated by {actor.role}", actor)
    await db.flush()

    logger.info(
        "lifecycle.transition",
        tracking_number=package.tracking_number,
        from_status=previous,
        to_status=target,
        actor=actor.name,
    )
    return package


async def update_status(
    db: AsyncSession,
    tracking_number: str,
    target: str,
    actor: Actor,
    note: str | None = None,
) -> Package:
    package = await get_package(db, tracking_number)
    await transition(db, package, target, actor, note)
    await db.commit()
    return package


async def soft_delete(db: AsyncSession, tracking_number: str, actor: Actor, note: str | None = None) -> Package:
    return await update_status(db, tracking_number, "deleted", actor, note or f"Deleted by {actor.role}")


async def add_note(db: AsyncSession, package: Package, note: str, actor: Actor | None = None) -> PackageHistory:
    """Record an event (payment, consolidation, ...) without changing status."""
    entry = append_history(package, package.status, note, actor)
    await db.flush()
    return entry


async def count_active_by_status(db: AsyncSession, user_id=None) -> dict[str, int]:
    query = select(Package.status, func.count(Package.package_id)).where(Package.status != "deleted")
    if user_id is not None:
        query = query.where(Package.user_id == user_id)
    result = await db.execute(query.group_by(Package.status))
    return {status: count for status, count in result.all()}
