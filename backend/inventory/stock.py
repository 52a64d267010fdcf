"""
Packaging Consumables — stock levels and movements.

Every change to current_stock writes an InventoryTransaction with the stock
before and after. Consumption never takes stock below zero.

Materials per received package (dimensions in cm):
  boxes         1
  tape          ceil(2 × perimeter / 100) m, perimeter = 2 × (L + W)
  bubble_wrap   ceil(surface / 10 000) m, only if fragile or volume > 10 000 cm³
  labels        1
  filler_paper  ceil(volume / 50 000) kg, only if volume > 15 000 cm³
"""

import math
import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NotFound, ValidationError
from db.models import InventoryItem, InventoryTransaction, Package, utcnow

logger = structlog.get_logger()

DEFAULT_LOCATION = "Main Warehouse"
CATEGORIES = ("boxes", "tape", "bubble_wrap", "labels", "filler_paper", "other")


@dataclass
class ConsumptionReport:
    transactions: list[InventoryTransaction] = field(default_factory=list)
    low_stock: list[InventoryItem] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


def stock_status(item: InventoryItem) -> str:
    if item.current_stock <= 0:
        return "out_of_stock"
    if item.current_stock <= item.min_stock:
        return "low_stock"
    return "in_stock"


def materials_needed(
    length: float | None,
    width: float | None,
    height: float | None,
    is_fragile: bool = False,
) -> dict[str, int]:
    length, width, height = length or 0.0, width or 0.0, height or 0.0
    volume = length * width * height
    surface = 2 * (length * width + length * height + width * height)
    perimeter = 2 * (length + width)

    materials = {
        "boxes": 1,
        "tape": math.ceil(perimeter * 2 / 100),
        "labels": 1,
    }
    if is_fragile or volume > 10_000:
        materials["bubble_wrap"] = math.ceil(surface / 10_000)
    if volume > 15_000:
        materials["filler_paper"] = math.ceil(volume / 50_000)
    return materials


async def get_item(db: AsyncSession, item_id) -> InventoryItem:
    item = await db.get(InventoryItem, item_id if isinstance(item_id, uuid.UUID) else uuid.UUID(str(item_id)))
    if item is None:
        raise NotFound("Inventory item not found")
    return item


async def list_items(
    db: AsyncSession,
    category: str | None = None,
    location: str | None = None,
    low_stock_only: bool = False,
) -> list[InventoryItem]:
    query = select(InventoryItem).order_by(InventoryItem.category, InventoryItem.name)
    if category:
        query = query.where(InventoryItem.category == category)
    if location:
        query = query.where(InventoryItem.location == location)
    if low_stock_only:
        query = query.where(InventoryItem.current_stock <= InventoryItem.min_stock)
    result = await db.execute(query)
    return list(result.scalars().all())


async def create_item(db: AsyncSession, **fields) -> InventoryItem:
    if fields.get("category") not in CATEGORIES:
        raise ValidationError(
            "Unknown inventory category",
            details=[{"field": "category", "message": f"must be one of {', '.join(CATEGORIES)}"}],
        )
    if (fields.get("current_stock") or 0) < 0 or (fields.get("min_stock") or 0) < 0:
        raise ValidationError("Stock levels must be non-negative")
    max_stock = fields.get("max_stock")
    if max_stock is not None and max_stock < (fields.get("min_stock") or 0):
        raise ValidationError("max_stock must be at least min_stock")

    fields.setdefault("location", DEFAULT_LOCATION)
    item = InventoryItem(**fields)
    db.add(item)
    await db.flush()
    logger.info("inventory.item_created", item_id=str(item.item_id), category=item.category, stock=item.current_stock)
    return item


def _movement(
    item: InventoryItem,
    transaction_type: str,
    quantity: float,
    reason: str,
    actor: str | None,
    reference_type: str,
    reference_id: str | None = None,
) -> InventoryTransaction:
    previous = item.current_stock
    item.current_stock = max(0.0, previous + quantity)
    return InventoryTransaction(
        item_id=item.item_id,
        transaction_type=transaction_type,
        quantity=quantity,
        previous_stock=previous,
        new_stock=item.current_stock,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        actor=actor,
    )


async def restock(
    db: AsyncSession,
    item_id,
    quantity: float,
    reason: str | None = None,
    actor: str | None = None,
) -> InventoryTransaction:
    if quantity is None or quantity <= 0:
        raise ValidationError("Restock quantity must be positive", details=[{"field": "quantity", "message": "must be > 0"}])
    item = await get_item(db, item_id)
    tx = _movement(item, "restock", quantity, reason or "Manual restock", actor, "manual")
    item.last_restocked = utcnow()
    db.add(tx)
    await db.flush()
    logger.info("inventory.restocked", item_id=str(item.item_id), quantity=quantity, new_stock=item.current_stock)
    return tx


async def consume_for_package(db: AsyncSession, package: Package, actor: str | None = None) -> ConsumptionReport:
    """Deduct packing materials for one package. Missing items are skipped."""
    location = package.warehouse_location or DEFAULT_LOCATION
    report = ConsumptionReport()
    materials = materials_needed(package.length, package.width, package.height, package.is_fragile)

    for category, quantity in materials.items():
        if quantity <= 0:
            continue
        result = await db.execute(
            select(InventoryItem)
            .where(InventoryItem.category == category, InventoryItem.location == location)
            .limit(1)
        )
        item = result.scalar_one_or_none()
        if item is None:
            report.missing.append(category)
            continue

        tx = _movement(
            item,
            "consumption",
            -quantity,
            f"Used for package {package.tracking_number}",
            actor,
            "package",
            str(package.package_id),
        )
        db.add(tx)
        report.transactions.append(tx)
        if stock_status(item) != "in_stock":
            report.low_stock.append(item)

    await db.flush()
    if report.missing:
        logger.warning("inventory.items_missing", location=location, categories=report.missing)
    if report.low_stock:
        logger.warning(
            "inventory.low_stock",
            location=location,
            items=[{"name": i.name, "stock": i.current_stock, "min": i.min_stock} for i in report.low_stock],
        )
    return report


async def summary(db: AsyncSession) -> dict:
    items = await list_items(db)
    counts = {"in_stock": 0, "low_stock": 0, "out_of_stock": 0}
    value = 0.0
    for item in items:
        counts[stock_status(item)] += 1
        value += item.current_stock * (item.unit_cost or 0.0)
    return {"total_items": len(items), **counts, "stock_value": round(value, 2)}
