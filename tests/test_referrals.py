"""Tests for referral attribution, settings, dashboards and expiry."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from core.dto import PaidPayment, UpdateReferralSettingsDTO
from core.exceptions import ConflictError, NotFoundError, ValidationError
from database.models import (
    Referral,
    ReferralProfile,
    ReferralStatus,
    ReferralTransaction,
    User,
    UserType,
)
from database.repositories import ReferralRepository, ReferralProfileRepository
from services.referral import ReferralService


def paid(user, payment_id=1, amount=5000, reference="PSK_ref_1") -> PaidPayment:
    return PaidPayment(
        id=payment_id,
        user_id=user.id,
        student_id=None,
        amount=amount,
        reference=reference,
        email=user.email,
        name=user.full_name,
        paid_at=datetime.now(timezone.utc),
    )


@pytest.mark.parametrize(
    "amount, rate, expected",
    [
        (5000, 0.10, 500),
        (1005, 0.10, 101),  # 100.5 rounds up
        (1004, 0.10, 100),
        (7999, Decimal("0.15"), 1200),  # 1199.85
        (5000, 0, 0),
    ],
)
def test_calculate_commission(amount, rate, expected):
    assert ReferralService.calculate_commission(amount, rate) == expected


@pytest.mark.asyncio
async def test_resolve_referral_by_email_backfills_user(db_session, student_user, referral):
    service = ReferralService(db_session)

    found = await service.resolve_referral(student_user.id, "ADA@example.com")
    await db_session.commit()

    assert found.id == referral.id
    stored = await ReferralRepository(db_session).get_by_referred_user_id(student_user.id)
    assert stored is not None
    assert stored.id == referral.id


@pytest.mark.asyncio
async def test_resolve_referral_prefers_user_id(db_session, session_maker, referrer_user, student_user):
    async with session_maker() as session:
        by_user = Referral(referrer_id=referrer_user.id, referred_email="old@example.com", referred_user_id=student_user.id)
        by_email = Referral(referrer_id=referrer_user.id, referred_email=student_user.email)
        session.add_all([by_user, by_email])
        await session.commit()

    found = await ReferralService(db_session).resolve_referral(student_user.id, student_user.email)
    assert found.id == by_user.id


@pytest.mark.asyncio
async def test_resolve_referral_none(db_session, student_user):
    assert await ReferralService(db_session).resolve_referral(student_user.id, student_user.email) is None


@pytest.mark.asyncio
async def test_attribute_commission_without_referral_is_noop(db_session, student_user):
    result = await ReferralService(db_session).attribute_commission(paid(student_user))

    assert result is None
    assert (await db_session.execute(select(func.count(ReferralProfile.id)))).scalar() == 0
    assert (await db_session.execute(select(func.count(ReferralTransaction.id)))).scalar() == 0


@pytest.mark.asyncio
async def test_attribute_commission_creates_profile_lazily(db_session, session_maker, student_user):
    async with session_maker() as session:
        newcomer = User(email="ngozi@example.com", user_type=UserType.REFERRAL.value)
        session.add(newcomer)
        await session.flush()
        session.add(Referral(referrer_id=newcomer.id, referred_email=student_user.email))
        await session.commit()

    result = await ReferralService(db_session).attribute_commission(paid(student_user, amount=2000))

    assert result["commission"] == 200
    profile = await ReferralProfileRepository(db_session).get_by_user_id(newcomer.id)
    assert profile.total_earnings == 200
    assert profile.pending_earnings == 200
    assert profile.commission_rate == Decimal("0.1")


@pytest.mark.asyncio
async def test_attribute_commission_uses_profile_rate(db_session, session_maker, referrer_user, student_user, referral):
    async with session_maker() as session:
        await ReferralProfileRepository(session).update_settings(referrer_user.id, commission_rate=0.25)
        await session.commit()

    result = await ReferralService(db_session).attribute_commission(paid(student_user, amount=4000))
    assert result["commission"] == 1000


@pytest.mark.asyncio
async def test_every_payment_of_referred_user_earns(db_session, referrer_user, student_user, referral):
    service = ReferralService(db_session)

    first = await service.attribute_commission(paid(student_user, payment_id=1, reference="PSK_a"))
    second = await service.attribute_commission(paid(student_user, payment_id=2, reference="PSK_b"))
    repeat = await service.attribute_commission(paid(student_user, payment_id=2, reference="PSK_b"))

    assert first["commission"] == 500
    assert second["commission"] == 500
    assert repeat is None
    profile = await ReferralProfileRepository(db_session).get_by_user_id(referrer_user.id)
    assert profile.total_earnings == 1000
    assert profile.pending_earnings == 1000
    count = (await db_session.execute(select(func.count(ReferralTransaction.id)))).scalar()
    assert count == 2

    db_session.expire_all()
    row = await db_session.get(Referral, referral.id)
    assert row.status == ReferralStatus.COMPLETED.value
    assert row.reward_amount == 1000


@pytest.mark.asyncio
async def test_expired_referral_still_earns_and_converts(db_session, session_maker, referrer_user, student_user, referral):
    async with session_maker() as session:
        row = await session.get(Referral, referral.id)
        row.status = ReferralStatus.EXPIRED.value
        await session.commit()

    result = await ReferralService(db_session).attribute_commission(paid(student_user))

    assert result["commission"] == 500
    count = (await db_session.execute(select(func.count(ReferralTransaction.id)))).scalar()
    assert count == 1
    db_session.expire_all()
    row = await db_session.get(Referral, referral.id)
    assert row.status == ReferralStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_create_referral(db_session, referrer_user):
    service = ReferralService(db_session)

    result = await service.create_referral(referrer_user.id, "  Chioma@Example.com ")

    assert result["referred_email"] == "chioma@example.com"
    assert result["status"] == "pending"
    with pytest.raises(ConflictError):
        await service.create_referral(referrer_user.id, "chioma@example.com")
    with pytest.raises(ValidationError):
        await service.create_referral(referrer_user.id, referrer_user.email)
    with pytest.raises(NotFoundError):
        await service.create_referral(99999, "someone@example.com")


@pytest.mark.asyncio
async def test_create_referral_binds_existing_user(db_session, referrer_user, student_user):
    result = await ReferralService(db_session).create_referral(referrer_user.id, student_user.email)
    assert result["referred_user_id"] == student_user.id


@pytest.mark.asyncio
async def test_update_settings(db_session, session_maker, student_user):
    service = ReferralService(db_session)

    settings = await service.update_settings(
        student_user.id,
        UpdateReferralSettingsDTO(bankName="Access Bank", accountNumber="0987654321", commissionRate=0.2),
    )

    assert settings["bank_name"] == "Access Bank"
    assert settings["account_number"] == "0987654321"
    assert settings["commission_rate"] == pytest.approx(0.2)
    assert settings["total_earnings"] == 0

    # Omitted fields stay unchanged
    settings = await service.update_settings(student_user.id, UpdateReferralSettingsDTO(accountName="Ada Obi"))
    assert settings["bank_name"] == "Access Bank"
    assert settings["account_name"] == "Ada Obi"


@pytest.mark.asyncio
async def test_dashboard(db_session, referrer_user, student_user, referral):
    service = ReferralService(db_session)
    await service.create_referral(referrer_user.id, "second@example.com")
    await service.attribute_commission(paid(student_user))

    dashboard = await service.get_dashboard(referrer_user.id)

    assert dashboard["stats"]["total"] == 2
    assert dashboard["stats"]["completed"] == 1
    assert dashboard["stats"]["pending"] == 1
    assert dashboard["stats"]["conversion_rate"] == 50.0
    assert dashboard["earnings"] == {"total": 500, "pending": 500, "paid_out": 0}
    assert len(dashboard["recent_transactions"]) == 1


@pytest.mark.asyncio
async def test_admin_overview_and_stats(db_session, referrer_user, student_user, referral):
    service = ReferralService(db_session)
    await service.attribute_commission(paid(student_user))

    overview = await service.get_admin_overview()
    assert len(overview["referrers"]) == 1
    row = overview["referrers"][0]
    assert row["email"] == referrer_user.email
    assert row["completed_referrals"] == 1
    assert row["pending_earnings"] == 500
    assert row["pending_transactions"] == 1
    assert row["bank_details"]["account_number"] == "0123456789"
    assert overview["totals"]["total_earnings"] == 500

    stats = await service.get_stats()
    assert stats["total_referrals"] == 1
    assert stats["completed_referrals"] == 1
    assert stats["total_rewards"] == 500
    assert stats["claimed_rewards"] == 0
    assert stats["top_referrers"][0]["email"] == referrer_user.email


@pytest.mark.asyncio
async def test_expire_stale_referrals(db_session, session_maker, referrer_user):
    old = datetime.now(timezone.utc) - timedelta(days=45)
    async with session_maker() as session:
        session.add_all([
            Referral(referrer_id=referrer_user.id, referred_email="stale@example.com", created_at=old),
            Referral(referrer_id=referrer_user.id, referred_email="fresh@example.com"),
            Referral(
                referrer_id=referrer_user.id,
                referred_email="done@example.com",
                status=ReferralStatus.COMPLETED.value,
                created_at=old,
            ),
        ])
        await session.commit()

    expired = await ReferralService(db_session).expire_stale_referrals(days=30)

    assert expired == 1
    async with session_maker() as session:
        rows = {
            r.referred_email: r.status
            for r in (await session.execute(select(Referral))).scalars()
        }
    assert rows == {
        "stale@example.com": "expired",
        "fresh@example.com": "pending",
        "done@example.com": "completed",
    }
