"""
Test configuration and fixtures
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator, Dict, List, Optional
from datetime import date, datetime, time, timedelta
from uuid import uuid4
import os
import pathlib

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

TEST_DB_PATH = pathlib.Path(__file__).parent / "test_waitlist.db"

# Set test environment before any app module reads settings
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-that-is-long-enough-too"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["WAITLIST_SWEEPS_ENABLED"] = "false"
os.environ["WAITLIST_SWEEP_DISTRIBUTED_LOCK"] = "false"

# Import all models BEFORE creating fixtures (critical for create_all to work)
from app.core.database import Base, engine, async_session  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.models.salon import Salon, Service, Staff  # noqa: E402
from app.models.time_slot import TimeSlot  # noqa: E402
from app.models.booking import Booking  # noqa: E402,F401
from app.models.waitlist import (  # noqa: E402
    WaitlistEntry,
    WaitlistNotification,
    WaitlistPriority,
    WaitlistStatus,
)
from app.services.loyalty_service import LoyaltyLookup  # noqa: E402
from app.services.notification_service import DeliveryResult, NotificationDispatcher  # noqa: E402
from app.services.priority import PriorityResolver  # noqa: E402
from app.services.waitlist_service import WaitlistService  # noqa: E402

NOW = datetime(2030, 3, 4, 9, 0)
TARGET_DATE = date(2030, 3, 5)


class FakeClock:
    """Controllable business clock"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher that records offers instead of delivering them"""

    def __init__(self):
        super().__init__(channels={})
        self.sent: List[Dict] = []

    async def send(self, customer_id, channel, payload):
        self.sent.append({"customer_id": customer_id, "channel": channel, "payload": payload})
        return DeliveryResult(success=True, channel=channel, message_id=f"msg-{len(self.sent)}")


class StaticLoyalty(LoyaltyLookup):
    """Loyalty lookup backed by a dict"""

    def __init__(self, tiers: Optional[Dict] = None):
        self.tiers = tiers or {}

    async def get_tier_name(self, customer_id):
        return self.tiers.get(customer_id)


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Fresh schema per test"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging and inspecting test data"""
    async with async_session() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def loyalty():
    return StaticLoyalty()


@pytest.fixture
def waitlist(clock, dispatcher, loyalty):
    """WaitlistService wired to test collaborators"""
    return WaitlistService(
        dispatcher=dispatcher,
        priority_resolver=PriorityResolver(loyalty),
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(waitlist):
    """Create test client with the waitlist service overridden"""
    from app.main import app
    from app.services.waitlist_service import get_waitlist_service

    app.dependency_overrides[get_waitlist_service] = lambda: waitlist

    try:
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


async def create_user(db_session, role: UserRole = UserRole.CUSTOMER, **kwargs) -> User:
    """Helper function to create a user"""
    user = User(
        email=f"{role.value}_{uuid4().hex[:8]}@example.com",
        first_name=kwargs.pop("first_name", "Test"),
        last_name=kwargs.pop("last_name", role.value.title()),
        phone=kwargs.pop("phone", "+919876543210"),
        role=role,
        is_active=True,
        **kwargs
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(data={"sub": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def owner(db_session):
    return await create_user(db_session, UserRole.OWNER)


@pytest_asyncio.fixture
async def customer(db_session):
    return await create_user(db_session)


@pytest_asyncio.fixture
async def other_customer(db_session):
    return await create_user(db_session, first_name="Other")


@pytest_asyncio.fixture
async def salon(db_session, owner):
    salon = Salon(name="Test Salon", owner_id=owner.id, is_active=True)
    db_session.add(salon)
    await db_session.commit()
    await db_session.refresh(salon)
    return salon


@pytest_asyncio.fixture
async def haircut(db_session, salon):
    service = Service(salon_id=salon.id, name="Haircut", price_in_paisa=50000, duration_minutes=45)
    db_session.add(service)
    await db_session.commit()
    await db_session.refresh(service)
    return service


@pytest_asyncio.fixture
async def stylist(db_session, salon):
    staff = Staff(salon_id=salon.id, name="Asha", is_active=True)
    db_session.add(staff)
    await db_session.commit()
    await db_session.refresh(staff)
    return staff


@pytest.fixture
def make_slot(db_session, salon):
    """Factory for time slots; defaults to a free 10:00 slot on the target date"""

    async def _make_slot(
        slot_date: date = TARGET_DATE,
        start: time = time(10, 0),
        minutes: int = 45,
        staff_id=None,
        is_booked: int = 0,
        is_blocked: int = 0,
        salon_id=None,
    ) -> TimeSlot:
        start_datetime = datetime.combine(slot_date, start)
        slot = TimeSlot(
            salon_id=salon_id or salon.id,
            staff_id=staff_id,
            start_datetime=start_datetime,
            end_datetime=start_datetime + timedelta(minutes=minutes),
            is_booked=is_booked,
            is_blocked=is_blocked,
        )
        db_session.add(slot)
        await db_session.commit()
        await db_session.refresh(slot)
        return slot

    return _make_slot


@pytest.fixture
def make_entry(db_session, salon, haircut):
    """Factory inserting waitlist entries directly, with explicit ordering fields"""

    async def _make_entry(
        user: User,
        requested_date: date = TARGET_DATE,
        window: tuple = (time(9, 0), time(12, 0)),
        priority: WaitlistPriority = WaitlistPriority.REGULAR,
        created_at: datetime = NOW,
        flexibility_days: int = 0,
        staff_id=None,
        status: WaitlistStatus = WaitlistStatus.WAITING,
        service_id=None,
    ) -> WaitlistEntry:
        entry = WaitlistEntry(
            user_id=user.id,
            salon_id=salon.id,
            service_id=service_id or haircut.id,
            staff_id=staff_id,
            requested_date=requested_date,
            time_window_start=window[0],
            time_window_end=window[1],
            flexibility_days=flexibility_days,
            priority=priority.value,
            status=status,
            expires_at=datetime.combine(requested_date, time.min) + timedelta(days=7),
            created_at=created_at,
        )
        db_session.add(entry)
        await db_session.commit()
        await db_session.refresh(entry)
        return entry

    return _make_entry


async def reload(db_session, model, obj_id):
    """Read the committed state of a row"""
    return await db_session.get(model, obj_id, populate_existing=True)


async def pending_notifications(db_session, entry_id) -> List[WaitlistNotification]:
    from sqlalchemy import select

    result = await db_session.execute(
        select(WaitlistNotification)
        .where(WaitlistNotification.waitlist_id == entry_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()
