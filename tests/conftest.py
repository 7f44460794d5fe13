import os
import sys
from typing import AsyncGenerator
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

# Ensure project root is on sys.path so `import services` works
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from database.base import Base
from database.models import (
    User,
    UserType,
    Student,
    Cart,
    Referral,
    ReferralStatus,
    ReferralProfile,
)
from services.paystack_service import PaystackService

WEBHOOK_SECRET = "sk_test_webhook_secret"

CART_ITEMS = [
    {"subject": "Mathematics", "grade": "JSS1", "term": "First Term", "price": 2500},
    {"subject": "English", "grade": "JSS1", "term": "First Term", "price": 2500},
]


@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path):
    """Fresh SQLite database file per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,  # Disable pooling for tests
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def gateway() -> PaystackService:
    """Paystack client with network calls replaced by mocks."""
    service = PaystackService(secret_key=WEBHOOK_SECRET, base_url="https://paystack.test")
    service.initialize = AsyncMock(return_value={
        "authorization_url": "https://checkout.paystack.test/abc",
        "access_code": "AC_abc",
    })
    service.verify = AsyncMock(return_value={
        "status": "success",
        "paid_at": "2026-10-01T10:00:00.000Z",
        "channel": "card",
    })
    return service


@pytest.fixture
def notifier():
    notifier = Mock()
    notifier.send = AsyncMock()
    return notifier


@pytest_asyncio.fixture
async def student_user(session_maker) -> User:
    """Paying student with a filled cart."""
    async with session_maker() as session:
        user = User(email="ada@example.com", full_name="Ada Obi", user_type=UserType.STUDENT.value)
        session.add(user)
        await session.flush()
        session.add(Student(user_id=user.id, full_name="Ada Obi", is_paid=False))
        session.add(Cart(user_id=user.id, items=CART_ITEMS, total_amount=5000))
        await session.commit()
        return user


@pytest_asyncio.fixture
async def referrer_user(session_maker) -> User:
    """Referrer with bank details and the default 10% rate."""
    async with session_maker() as session:
        user = User(email="tunde@example.com", full_name="Tunde Bello", user_type=UserType.REFERRAL.value)
        session.add(user)
        await session.flush()
        session.add(ReferralProfile(
            user_id=user.id,
            bank_name="GTBank",
            bank_code="058",
            account_number="0123456789",
            account_name="Tunde Bello",
        ))
        await session.commit()
        return user


@pytest_asyncio.fixture
async def referral(session_maker, referrer_user, student_user) -> Referral:
    """Pending e-mail referral from referrer_user to student_user."""
    async with session_maker() as session:
        referral = Referral(
            referrer_id=referrer_user.id,
            referred_email=student_user.email,
            status=ReferralStatus.PENDING.value,
        )
        session.add(referral)
        await session.commit()
        return referral
