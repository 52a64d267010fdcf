"""
Test Configuration — Fixtures for async DB, test client, and mock data.

Each test gets a fresh in-memory SQLite database. pysqlite's implicit
transaction handling is switched off and BEGIN is emitted by SQLAlchemy
so SAVEPOINTs (best-effort intake steps, bulk payments) behave as on
PostgreSQL.
"""

import json
import os
import uuid
from datetime import timedelta

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("SENDGRID_API_KEY", "")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401  (registers tables on Base.metadata)
from api.deps import get_current_user, get_db, get_paypal_client, get_rate_limiter
from api.main import app
from billing.invoices import create_invoice
from core.rate_limit import InMemoryRateLimiter
from db.models import InventoryItem, Package, PricingRule, User, utcnow
from db.session import Base
from payments.paypal import PayPalClient
from shipping.lifecycle import append_history

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_ID = "00000000-0000-0000-0000-0000000000a1"
WAREHOUSE_ID = "00000000-0000-0000-0000-0000000000b1"


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session = async_sessionmaker(test_engine, expire_on_commit=False)()
    yield session
    await session.close()


# ─── Auth ──────────────────────────────────────────────────────────────────


@pytest.fixture
def current_user():
    """Mutable session payload; tests switch roles with act_as()."""
    return {"sub": ADMIN_ID, "email": "admin@cargodesk.com", "role": "admin", "user_code": "ADMIN"}


def act_as(current_user: dict, user: User | None = None, role: str | None = None) -> dict:
    current_user.clear()
    if user is not None:
        current_user.update(
            {"sub": str(user.user_id), "email": user.email, "role": user.role, "user_code": user.user_code}
        )
    else:
        current_user.update({"sub": WAREHOUSE_ID, "email": f"{role}@cargodesk.com", "role": role, "user_code": role.upper()})
    return current_user


# ─── PayPal ────────────────────────────────────────────────────────────────


class FakePayPal:
    """Minimal Orders v2 API behind an httpx.MockTransport."""

    def __init__(self):
        self.orders: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.token_calls = 0
        self.fail_capture = False

    def add_order(self, order_id: str, amount: float, currency: str = "JMD", status: str = "COMPLETED") -> None:
        self.orders[order_id] = {"amount": amount, "currency": currency, "capture_status": status}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v1/oauth2/token":
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": "test-token", "expires_in": 3600})

        if path == "/v2/checkout/orders":
            body = json.loads(request.content)
            order_id = f"ORDER-{len(self.orders) + 1}"
            unit = body["purchase_units"][0]["amount"]
            self.add_order(order_id, float(unit["value"]), unit["currency_code"])
            return httpx.Response(
                201,
                json={
                    "id": order_id,
                    "status": "CREATED",
                    "links": [{"rel": "approve", "href": f"https://paypal.test/checkout?token={order_id}"}],
                },
            )

        if path.endswith("/capture"):
            order_id = path.split("/")[-2]
            order = self.orders.get(order_id)
            if order is None or self.fail_capture:
                return httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY"})
            return httpx.Response(
                201,
                json={
                    "id": order_id,
                    "status": order["capture_status"],
                    "payer": {"email_address": "payer@example.com"},
                    "purchase_units": [
                        {
                            "payments": {
                                "captures": [
                                    {
                                        "id": f"CAP-{order_id}",
                                        "status": order["capture_status"],
                                        "amount": {
                                            "currency_code": order["currency"],
                                            "value": f"{order['amount']:.2f}",
                                        },
                                    }
                                ]
                            }
                        }
                    ],
                },
            )
        return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})


@pytest.fixture
def fake_paypal():
    return FakePayPal()


@pytest.fixture
def paypal_client(fake_paypal):
    return PayPalClient("client-id", "client-secret", transport=httpx.MockTransport(fake_paypal.handler))


@pytest.fixture
def rate_limiter():
    return InMemoryRateLimiter(max_requests=200, window_seconds=60)


# ─── Client ────────────────────────────────────────────────────────────────


@pytest.fixture
async def client(test_db, current_user, rate_limiter, paypal_client):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: current_user
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_paypal_client] = lambda: paypal_client

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Seed data ─────────────────────────────────────────────────────────────


async def add_package(
    db,
    owner: User,
    tracking_number: str,
    weight: float = 2.0,
    status: str = "received",
    **fields,
) -> Package:
    package = Package(
        tracking_number=tracking_number,
        user_id=owner.user_id,
        weight=weight,
        status=status,
        received_at=utcnow(),
        history=[],
        **fields,
    )
    append_history(package, status, "Seeded")
    db.add(package)
    await db.flush()
    return package


async def add_invoice(db, package: Package, total: float, currency: str = "JMD", due_in_days: int = 30):
    invoice = await create_invoice(
        db,
        user_id=package.user_id,
        items=[{"description": f"Shipping charges for {package.tracking_number}", "unit_price": total}],
        currency=currency,
        due_date=utcnow().date() + timedelta(days=due_in_days),
        package_id=package.package_id,
        invoice_number=f"INV-{package.tracking_number}",
        invoice_type="package",
    )
    return invoice


@pytest.fixture
async def seeded_db(test_db):
    """Two customers, staff, a lane rule set and packing stock."""
    alice = User(
        user_id=uuid.uuid4(),
        user_code="CD1001",
        email="alice@example.com",
        first_name="Alice",
        last_name="Brown",
        role="customer",
    )
    bob = User(
        user_id=uuid.uuid4(),
        user_code="CD1002",
        email="bob@example.com",
        first_name="Bob",
        last_name="Grant",
        role="customer",
    )
    admin = User(user_id=uuid.UUID(ADMIN_ID), user_code="ADMIN", email="admin@cargodesk.com", role="admin")
    test_db.add_all([alice, bob, admin])

    # Same lane, two bands, inserted in order.
    test_db.add_all(
        [
            PricingRule(
                name="US→JM light",
                origin="US",
                destination="JM",
                weight_min=0,
                weight_max=5,
                base_rate=10,
                per_kg_rate=2,
                currency="USD",
                created_at=utcnow() - timedelta(minutes=2),
            ),
            PricingRule(
                name="US→JM heavy",
                origin="US",
                destination="JM",
                weight_min=5,
                weight_max=50,
                base_rate=20,
                per_kg_rate=1.5,
                currency="USD",
                created_at=utcnow() - timedelta(minutes=1),
            ),
        ]
    )

    for category, stock, minimum in (
        ("boxes", 100, 10),
        ("tape", 50, 5),
        ("labels", 200, 20),
        ("bubble_wrap", 3, 5),
        ("filler_paper", 40, 5),
    ):
        test_db.add(
            InventoryItem(
                name=category.replace("_", " ").title(),
                category=category,
                location="Main Warehouse",
                current_stock=stock,
                min_stock=minimum,
                unit_cost=1.0,
            )
        )

    await test_db.commit()
    return {"alice": alice, "bob": bob, "admin": admin}


@pytest.fixture
def login(current_user):
    """login(user) or login(role="warehouse") switches the session payload."""

    def _login(user: User | None = None, role: str | None = None) -> dict:
        return act_as(current_user, user, role)

    return _login


@pytest.fixture
def make_package(test_db):
    async def _make(owner: User, tracking_number: str, **fields) -> Package:
        package = await add_package(test_db, owner, tracking_number, **fields)
        await test_db.commit()
        return package

    return _make


@pytest.fixture
def make_invoice(test_db):
    async def _make(package: Package, total: float, **kwargs):
        invoice = await add_invoice(test_db, package, total, **kwargs)
        await test_db.commit()
        return invoice

    return _make
