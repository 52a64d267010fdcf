"""
CargoDesk Database Models

Tables:
  Accounts
  1. users                   - Customers, admins and warehouse staff
  2. api_keys                - Hashed warehouse integration keys

  Packages
  3. packages                - Physical packages (status lifecycle)
  4. package_history         - Append-only status log
  5. pre_alerts              - Customer notices of incoming packages

  Billing
  6. invoices                - Customer invoices (balance + status)
  7. invoice_items           - Line items
  8. invoice_payments        - Payments applied to an invoice (idempotency guard)
  9. payments                - Standalone payment ledger for reporting
  10. pricing_rules          - Weight-banded lane pricing

  Warehouse
  11. inventory_items        - Packaging consumables
  12. inventory_transactions - Restock / consumption movements

  Platform
  13. audit_logs             - Who did what
  14. outbox_messages        - Side effects awaiting delivery (email, ...)
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns are stored as UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


PACKAGE_STATUSES = (
    "received",
    "in_processing",
    "ready_to_ship",
    "shipped",
    "in_transit",
    "delivered",
    "deleted",
    "unknown",
)
INVOICE_STATUSES = ("draft", "sent", "paid", "partially_paid", "overdue")
PAYMENT_METHODS = ("card", "paypal", "bank", "wallet", "cash")
PAYMENT_STATUSES = ("initiated", "authorized", "captured", "failed", "refunded")
PRE_ALERT_STATUSES = ("submitted", "approved", "rejected")


def _in(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{v}'" for v in values)


# ─── 1. Users ──────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    user_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_code = Column(String(32), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(50))
    role = Column(String(20), nullable=False, default="customer")
    password_hash = Column(String(255))
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (CheckConstraint("role IN ('customer', 'admin', 'warehouse')", name="ck_user_role"),)

    packages = relationship("Package", back_populates="user")

    @property
    def full_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.user_code


# ─── 2. API Keys ───────────────────────────────────────────────────────────


class ApiKey(Base):
    __tablename__ = "api_keys"

    key_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    key_hash = Column(String(64), nullable=False, unique=True)
    key_prefix = Column(String(16), nullable=False)
    permissions = Column(JSONType, nullable=False, default=list)  # ["packages:write", "customers:read", ...]
    active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("ix_api_keys_prefix", "key_prefix"),)


# ─── 3. Packages ───────────────────────────────────────────────────────────


class Package(Base):
    __tablename__ = "packages"

    package_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tracking_number = Column(String(100), nullable=False, unique=True)
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    description = Column(Text)
    shipper = Column(String(255))
    weight = Column(Float, nullable=False, default=0.0)  # kg
    length = Column(Float)
    width = Column(Float)
    height = Column(Float)
    dimension_unit = Column(String(10), nullable=False, default="cm")
    declared_value = Column(Float, nullable=False, default=0.0)
    service_mode = Column(String(10), nullable=False, default="air")
    origin_country = Column(String(2))
    destination_country = Column(String(2))
    is_fragile = Column(Boolean, nullable=False, default=False)
    is_hazardous = Column(Boolean, nullable=False, default=False)
    shipping_cost = Column(Float, nullable=False, default=0.0)
    consolidation_id = Column(String(50), nullable=True)
    warehouse_location = Column(String(100))
    status = Column(String(20), nullable=False, default="received")
    received_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_packages_user", "user_id"),
        Index("ix_packages_status", "status"),
        CheckConstraint(f"status IN ({_in(PACKAGE_STATUSES)})", name="ck_package_status"),
        CheckConstraint("service_mode IN ('air', 'ocean', 'local')", name="ck_package_service_mode"),
    )

    user = relationship("User", back_populates="packages")
    history = relationship(
        "PackageHistory",
        back_populates="package",
        order_by="PackageHistory.history_id",
        cascade="all, delete-orphan",
    )
    invoices = relationship("Invoice", back_populates="package")


# ─── 4. Package History ────────────────────────────────────────────────────


class PackageHistory(Base):
    """Append-only. Rows are never updated or deleted by application code."""

    __tablename__ = "package_history"

    history_id = Column(Integer, primary_key=True, autoincrement=True)
    package_id = Column(GUID(), ForeignKey("packages.package_id"), nullable=False)
    status = Column(String(20), nullable=False)
    at = Column(DateTime, nullable=False, default=utcnow)
    note = Column(Text)
    actor = Column(String(100))

    __table_args__ = (Index("ix_package_history_package", "package_id"),)

    package = relationship("Package", back_populates="history")


# ─── 5. Pre-Alerts ─────────────────────────────────────────────────────────


class PreAlert(Base):
    __tablename__ = "pre_alerts"

    pre_alert_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tracking_number = Column(String(100), nullable=False, unique=True)
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    carrier = Column(String(100))
    origin = Column(String(100))
    expected_date = Column(Date, nullable=True)
    notes = Column(Text)
    status = Column(String(20), nullable=False, default="submitted")
    package_id = Column(GUID(), ForeignKey("packages.package_id"), nullable=True)
    decided_by = Column(String(100))
    decided_at = Column(DateTime, nullable=True)
    matched_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_pre_alerts_user", "user_id"),
        CheckConstraint(f"status IN ({_in(PRE_ALERT_STATUSES)})", name="ck_pre_alert_status"),
    )


# ─── 6. Invoices ───────────────────────────────────────────────────────────


class Invoice(Base):
    __tablename__ = "invoices"

    invoice_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    invoice_number = Column(String(100), nullable=False, unique=True)
    invoice_type = Column(String(20), nullable=False, default="billing")
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=False)
    package_id = Column(GUID(), ForeignKey("packages.package_id"), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    subtotal = Column(Float, nullable=False, default=0.0)
    tax_total = Column(Float, nullable=False, default=0.0)
    discount_type = Column(String(20), nullable=True)  # percentage | fixed
    discount_value = Column(Float, nullable=True)
    discount_amount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)
    amount_paid = Column(Float, nullable=False, default=0.0)
    balance_due = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), nullable=False, default="draft")
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_invoices_user", "user_id"),
        Index("ix_invoices_package", "package_id"),
        CheckConstraint(f"status IN ({_in(INVOICE_STATUSES)})", name="ck_invoice_status"),
        CheckConstraint("balance_due >= 0", name="ck_invoice_balance_non_negative"),
    )

    package = relationship("Package", back_populates="invoices")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.item_id",
        cascade="all, delete-orphan",
    )
    payments = relationship(
        "InvoicePayment",
        back_populates="invoice",
        order_by="InvoicePayment.invoice_payment_id",
        cascade="all, delete-orphan",
    )


# ─── 7. Invoice Items ──────────────────────────────────────────────────────


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    item_id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(GUID(), ForeignKey("invoices.invoice_id"), nullable=False)
    description = Column(String(255), nullable=False)
    quantity = Column(Float, nullable=False, default=1.0)
    unit_price = Column(Float, nullable=False, default=0.0)
    tax_rate = Column(Float, nullable=False, default=0.0)  # percent
    amount = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)
    tracking_number = Column(String(100))

    invoice = relationship("Invoice", back_populates="items")


# ─── 8. Invoice Payments ───────────────────────────────────────────────────


class InvoicePayment(Base):
    __tablename__ = "invoice_payments"

    invoice_payment_id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(GUID(), ForeignKey("invoices.invoice_id"), nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    method = Column(String(20), nullable=False)
    reference = Column(String(255), nullable=False)
    paid_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("invoice_id", "reference", name="uq_invoice_payment_reference"),)

    invoice = relationship("Invoice", back_populates="payments")


# ─── 9. Payment Ledger ─────────────────────────────────────────────────────


class Payment(Base):
    __tablename__ = "payments"

    payment_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    payment_number = Column(String(50), nullable=False, unique=True)
    user_id = Column(GUID(), ForeignKey("users.user_id"), nullable=True)
    invoice_id = Column(GUID(), ForeignKey("invoices.invoice_id"), nullable=True)
    package_id = Column(GUID(), ForeignKey("packages.package_id"), nullable=True)
    tracking_number = Column(String(100))
    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    method = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="captured")
    gateway = Column(String(30), nullable=False, default="manual")
    gateway_ref = Column(String(255))
    reference = Column(String(255))
    meta = Column(JSONType, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_payments_user", "user_id"),
        Index("ix_payments_created", "created_at"),
        CheckConstraint(f"method IN ({_in(PAYMENT_METHODS)})", name="ck_payment_method"),
        CheckConstraint(f"status IN ({_in(PAYMENT_STATUSES)})", name="ck_payment_status"),
    )


# ─── 10. Pricing Rules ─────────────────────────────────────────────────────


class PricingRule(Base):
    __tablename__ = "pricing_rules"

    rule_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    origin = Column(String(100), nullable=False)
    destination = Column(String(100), nullable=False)
    weight_min = Column(Float, nullable=False, default=0.0)
    weight_max = Column(Float, nullable=False)
    base_rate = Column(Float, nullable=False, default=0.0)
    per_kg_rate = Column(Float, nullable=False, default=0.0)
    currency = Column(String(3), nullable=False, default="USD")
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (CheckConstraint("weight_max > weight_min", name="ck_pricing_rule_band"),)


# ─── 11. Inventory Items ───────────────────────────────────────────────────


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    item_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    category = Column(String(50), nullable=False)  # boxes, tape, bubble_wrap, labels, filler_paper, ...
    location = Column(String(100), nullable=False, default="Main Warehouse")
    unit = Column(String(20), nullable=False, default="unit")
    current_stock = Column(Float, nullable=False, default=0.0)
    min_stock = Column(Float, nullable=False, default=0.0)
    max_stock = Column(Float, nullable=True)
    unit_cost = Column(Float, nullable=True)
    supplier = Column(String(255))
    notes = Column(Text)
    last_restocked = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_inventory_category_location", "category", "location"),
        CheckConstraint("current_stock >= 0", name="ck_inventory_stock_non_negative"),
    )


# ─── 12. Inventory Transactions ────────────────────────────────────────────


class InventoryTransaction(Base):
    __tablename__ = "inventory_transactions"

    transaction_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    item_id = Column(GUID(), ForeignKey("inventory_items.item_id"), nullable=False)
    transaction_type = Column(String(20), nullable=False)  # restock, consumption
    quantity = Column(Float, nullable=False)  # negative for consumption
    previous_stock = Column(Float, nullable=False)
    new_stock = Column(Float, nullable=False)
    reason = Column(Text)
    reference_type = Column(String(20))  # package, manual
    reference_id = Column(String(100))
    actor = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("transaction_type IN ('restock', 'consumption')", name="ck_inventory_tx_type"),
    )


# ─── 13. Audit Logs ────────────────────────────────────────────────────────


class AuditLog(Base):
    __tablename__ = "audit_logs"

    audit_id = Column(Integer, primary_key=True, autoincrement=True)
    actor = Column(String(100), nullable=False)
    action = Column(String(100), nullable=False)
    entity = Column(String(50), nullable=False)
    entity_id = Column(String(100))
    details = Column(JSONType, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# ─── 14. Outbox ────────────────────────────────────────────────────────────


class OutboxMessage(Base):
    __tablename__ = "outbox_messages"

    message_id = Column(Integer, primary_key=True, autoincrement=True)
    topic = Column(String(100), nullable=False)
    payload = Column(JSONType, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    dispatched_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_outbox_status", "status"),
        CheckConstraint("status IN ('pending', 'sent', 'failed')", name="ck_outbox_status"),
    )
