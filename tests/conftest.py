import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

from typing import AsyncGenerator, Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.api.interviews.meetings import MeetingDetails, MeetingProvider, get_meeting_provider
from app.api.payments.gateway import GatewayOrder, RazorpayGateway, get_payment_gateway
from app.auth.security import create_access_token
from app.auth.services import create_user
from app.core.exceptions import UpstreamUnavailable
from app.db.session import Base, get_db
from app.main import app


class FakeGateway(RazorpayGateway):
    """Gateway with real signature checks and in-memory orders."""

    webhook_secret = "rzp_webhook_secret"

    def __init__(self) -> None:
        super().__init__(
            key_id="rzp_test_key",
            key_secret="rzp_test_secret",
            webhook_secret=self.webhook_secret,
        )
        self.orders = []
        self.unavailable = False

    async def create_order(self, amount_subunits, currency, receipt, notes=None) -> GatewayOrder:
        if self.unavailable:
            raise UpstreamUnavailable("Payment gateway is unavailable")
        order = GatewayOrder(
            order_id=f"order_test_{len(self.orders) + 1}",
            amount_subunits=amount_subunits,
            currency=currency,
        )
        self.orders.append(order)
        return order


class FakeMeetingProvider(MeetingProvider):
    def __init__(self) -> None:
        super().__init__(api_url=None)
        self.created = []
        self.unavailable = False

    async def create_meeting(self, summary, start_time, duration_minutes, attendee_email=None) -> MeetingDetails:
        if self.unavailable:
            raise UpstreamUnavailable("Meeting provider is unavailable")
        meeting = MeetingDetails(
            meet_link=f"https://meet.example.com/test-{len(self.created) + 1}",
            scheduled_at=start_time,
        )
        self.created.append(meeting)
        return meeting


@pytest.fixture()
async def db_engine(tmp_path):
    """A fresh SQLite file per test, so concurrent requests get separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def fake_meetings() -> FakeMeetingProvider:
    return FakeMeetingProvider()


@pytest.fixture()
async def client(session_factory, fake_gateway, fake_meetings) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app. Each request gets its own session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_meeting_provider] = lambda: fake_meetings
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _auth_headers(user) -> Dict[str, str]:
    token = create_access_token(user.id, user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
async def admin_headers(db_session: AsyncSession) -> Dict[str, str]:
    user = await create_user(db_session, "admin@example.com", "AdminPass123", "Admin User", role="ADMIN")
    return _auth_headers(user)


@pytest.fixture()
async def staff_headers(db_session: AsyncSession) -> Dict[str, str]:
    user = await create_user(db_session, "staff@example.com", "StaffPass123", "Staff User", role="STAFF")
    return _auth_headers(user)


class Workflow:
    """Shortcuts for driving a lead through the admissions API in tests."""

    def __init__(self, client: AsyncClient, headers: Dict[str, str], gateway: FakeGateway) -> None:
        self.client = client
        self.headers = headers
        self.gateway = gateway

    async def create_course(self, name: str = "Data Science", fee: str = "45000.00", **extra) -> dict:
        response = await self.client.post(
            "/create-course", json={"name": name, "fee": fee, **extra}, headers=self.headers
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    async def create_counsellor(self, name: str, email: str, max_capacity: int = 10) -> dict:
        response = await self.client.post(
            "/create-counsellor",
            json={"name": name, "email": email, "max_capacity": max_capacity},
            headers=self.headers,
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    async def create_lead(
        self,
        name: str = "Asha",
        email: str = "asha@x.com",
        phone: str = "9999999999",
        **extra,
    ) -> dict:
        response = await self.client.post(
            "/create-lead",
            json={"name": name, "email": email, "phone": phone, **extra},
            headers=self.headers,
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    async def initiate(self, student_id: int, payment_type: str = "REGISTRATION", course_id: Optional[int] = None, **extra):
        body = {"student_id": student_id, "payment_type": payment_type, **extra}
        if course_id is not None:
            body["course_id"] = course_id
        return await self.client.post("/initiate-payment", json=body, headers=self.headers)

    async def verify(self, order_id: str, payment_id: str = "pay_test_1", signature: Optional[str] = None):
        if signature is None:
            signature = self.gateway.payment_signature(order_id, payment_id)
        return await self.client.post(
            "/verify-payment",
            json={"order_id": order_id, "payment_id": payment_id, "razorpay_signature": signature},
            headers=self.headers,
        )

    async def pay(self, student_id: int, payment_type: str = "REGISTRATION", course_id: Optional[int] = None) -> dict:
        initiated = await self.initiate(student_id, payment_type, course_id)
        assert initiated.status_code == 200, initiated.text
        order_id = initiated.json()["data"]["order_id"]
        verified = await self.verify(order_id, payment_id=f"pay_{order_id}")
        assert verified.status_code == 200, verified.text
        return verified.json()["data"]

    async def decide(self, student_id: int, status: str, course_id: Optional[int] = None):
        body = {"student_id": student_id, "status": status}
        if course_id is not None:
            body["selected_course_id"] = course_id
        return await self.client.post("/application-action", json=body, headers=self.headers)

    async def get_lead(self, student_id: int) -> dict:
        response = await self.client.get(f"/leads/{student_id}", headers=self.headers)
        assert response.status_code == 200, response.text
        return response.json()["data"]

    async def get_course(self, course_id: int) -> dict:
        response = await self.client.get("/courses?active_only=false", headers=self.headers)
        return next(c for c in response.json()["data"] if c["id"] == course_id)


@pytest.fixture()
def workflow(client: AsyncClient, admin_headers: Dict[str, str], fake_gateway: FakeGateway) -> Workflow:
    return Workflow(client, admin_headers, fake_gateway)


