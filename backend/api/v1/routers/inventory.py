"""
Inventory Router — packaging consumables stock and movements (admin).
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import actor_from, get_db, require_roles
from db.models import InventoryTransaction
from inventory import stock

router = APIRouter(prefix="/api/admin/inventory", tags=["inventory"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class InventoryItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: str
    location: str | None = None
    unit: str = "unit"
    current_stock: float = Field(0.0, ge=0)
    min_stock: float = Field(0.0, ge=0)
    max_stock: float | None = Field(None, ge=0)
    unit_cost: float | None = Field(None, ge=0)
    supplier: str | None = None
    notes: str | None = None


class InventoryItemResponse(BaseModel):
    item_id: UUID
    name: str
    category: str
    location: str
    unit: str
    current_stock: float
    min_stock: float
    max_stock: float | None
    unit_cost: float | None
    supplier: str | None
    last_restocked: datetime | None
    status: str  # "in_stock", "low_stock", "out_of_stock"

    model_config = {"from_attributes": True}


class RestockRequest(BaseModel):
    quantity: float = Field(..., gt=0)
    reason: str | None = None


class TransactionResponse(BaseModel):
    transaction_id: UUID
    item_id: UUID
    transaction_type: str
    quantity: float
    previous_stock: float
    new_stock: float
    reason: str | None
    reference_type: str | None
    reference_id: str | None
    actor: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class InventorySummary(BaseModel):
    total_items: int
    in_stock: int
    low_stock: int
    out_of_stock: int
    stock_value: float


def _item_response(item) -> InventoryItemResponse:
    return InventoryItemResponse(
        item_id=item.item_id,
        name=item.name,
        category=item.category,
        location=item.location,
        unit=item.unit,
        current_stock=item.current_stock,
        min_stock=item.min_stock,
        max_stock=item.max_stock,
        unit_cost=item.unit_cost,
        supplier=item.supplier,
        last_restocked=item.last_restocked,
        status=stock.stock_status(item),
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[InventoryItemResponse])
async def list_inventory(
    category: str | None = None,
    location: str | None = None,
    low_stock: bool = False,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin", "warehouse")),
):
    items = await stock.list_items(db, category, location, low_stock)
    return [_item_response(item) for item in items]


@router.get("/summary", response_model=InventorySummary)
async def inventory_summary(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin", "warehouse")),
):
    return await stock.summary(db)


@router.post("/", response_model=InventoryItemResponse, status_code=201)
async def create_inventory_item(
    body: InventoryItemCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    fields = body.model_dump(exclude_none=True)
    item = await stock.create_item(db, **fields)
    await db.commit()
    return _item_response(item)


@router.post("/{item_id}/restock", response_model=TransactionResponse)
async def restock_item(
    item_id: UUID,
    body: RestockRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin", "warehouse")),
):
    tx = await stock.restock(db, item_id, body.quantity, body.reason, actor_from(user).name)
    await db.commit()
    return tx


@router.get("/transactions", response_model=list[TransactionResponse])
async def list_transactions(
    item_id: UUID | None = None,
    transaction_type: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_roles("admin")),
):
    query = select(InventoryTransaction)
    if item_id:
        query = query.where(InventoryTransaction.item_id == item_id)
    if transaction_type:
        query = query.where(InventoryTransaction.transaction_type == transaction_type)
    result = await db.execute(query.order_by(InventoryTransaction.created_at.desc()).limit(limit))
    return result.scalars().all()
