"""Referral repositories: invitations, referrer ledgers and commission events."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, List, Dict

from sqlalchemy import select, update, func, and_, case

from database.models import (
    Referral,
    ReferralStatus,
    ReferralProfile,
    ReferralTransaction,
    ReferralTransactionStatus,
)
from database.repositories.base import BaseRepository


class ReferralRepository(BaseRepository[Referral]):
    """Repository for Referral model operations."""

    model_class = Referral

    async def create(self, referrer_id: int, referred_email: str) -> Referral:
        """Create new referral record."""
        referral = Referral(
            referrer_id=referrer_id,
            referred_email=referred_email.strip().lower(),
            status=ReferralStatus.PENDING.value,
            reward_amount=0,
            reward_claimed=False,
        )
        self.session.add(referral)
        await self.session.flush()
        return referral

    async def get_by_referred_user_id(self, user_id: int) -> Optional[Referral]:
        """Get the referral bound to a registered user (oldest wins)."""
        result = await self.session.execute(
            select(Referral)
            .where(Referral.referred_user_id == user_id)
            .order_by(Referral.created_at, Referral.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_referred_email(self, email: str) -> Optional[Referral]:
        """Get the oldest referral sent to an e-mail address."""
        result = await self.session.execute(
            select(Referral)
            .where(Referral.referred_email == email.strip().lower())
            .order_by(Referral.created_at, Referral.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def bind_referred_user(self, referral_id: int, user_id: int) -> None:
        """Backfill the invitee's user id on an e-mail-only referral."""
        await self.session.execute(
            update(Referral)
            .where(Referral.id == referral_id, Referral.referred_user_id.is_(None))
            .values(referred_user_id=user_id)
            .execution_options(synchronize_session=False)
        )

    async def complete(self, referral_id: int) -> bool:
        """Convert a pending or expired referral to completed. False if already completed."""
        result = await self.session.execute(
            update(Referral)
            .where(
                Referral.id == referral_id,
                Referral.status.in_([ReferralStatus.PENDING.value, ReferralStatus.EXPIRED.value]),
            )
            .values(status=ReferralStatus.COMPLETED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def add_reward(self, referral_id: int, amount: int) -> None:
        """Add a commission to the running reward of a referral; it is unclaimed again."""
        await self.session.execute(
            update(Referral)
            .where(Referral.id == referral_id)
            .values(reward_amount=Referral.reward_amount + amount, reward_claimed=False)
            .execution_options(synchronize_session=False)
        )

    async def mark_rewards_claimed(self, referral_ids: list[int]) -> None:
        """Flag rewards of paid-out referrals as claimed."""
        if not referral_ids:
            return
        await self.session.execute(
            update(Referral)
            .where(Referral.id.in_(referral_ids))
            .values(reward_claimed=True)
            .execution_options(synchronize_session=False)
        )

    async def get_all_by_referrer(
        self,
        referrer_id: int,
        status: Optional[ReferralStatus] = None
    ) -> List[Referral]:
        """Get all referrals by referrer, optionally filtered by status."""
        query = select(Referral).where(Referral.referrer_id == referrer_id)

        if status:
            query = query.where(Referral.status == status.value)

        query = query.order_by(Referral.created_at.desc(), Referral.id.desc())

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def check_duplicate(self, referrer_id: int, referred_email: str) -> bool:
        """Check if referral already exists."""
        result = await self.session.execute(
            select(Referral.id).where(
                and_(
                    Referral.referrer_id == referrer_id,
                    Referral.referred_email == referred_email.strip().lower()
                )
            )
        )
        return result.first() is not None

    async def expire_old_referrals(self, days: int = 30) -> int:
        """Expire pending referrals older than N days."""
        cutoff_date = datetime.now(timezone.utc) - timedelta(days=days)
        result = await self.session.execute(
            update(Referral)
            .where(
                Referral.status == ReferralStatus.PENDING.value,
                Referral.created_at < cutoff_date,
            )
            .values(status=ReferralStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def get_statistics(self, referrer_id: Optional[int] = None) -> Dict[str, int]:
        """Referral counts by status, for one referrer or platform-wide."""
        query = select(Referral.status, func.count(Referral.id))
        if referrer_id is not None:
            query = query.where(Referral.referrer_id == referrer_id)
        result = await self.session.execute(query.group_by(Referral.status))

        stats = {status.value: 0 for status in ReferralStatus}
        for status, count in result:
            stats[status] = count
        stats['total'] = sum(stats.values())
        return stats

    async def get_referrer_summaries(self, limit: Optional[int] = None) -> List[Dict[str, int]]:
        """Per-referrer counts and rewards, most referrals first."""
        completed = func.sum(case((Referral.status == ReferralStatus.COMPLETED.value, 1), else_=0))
        query = (
            select(
                Referral.referrer_id,
                func.count(Referral.id).label('total'),
                completed.label('completed'),
                func.coalesce(func.sum(Referral.reward_amount), 0).label('rewards'),
            )
            .group_by(Referral.referrer_id)
            .order_by(func.count(Referral.id).desc(), Referral.referrer_id)
        )
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [
            {
                'referrer_id': row.referrer_id,
                'total_referrals': int(row.total),
                'completed_referrals': int(row.completed or 0),
                'total_rewards': int(row.rewards),
            }
            for row in result
        ]

    async def get_reward_totals(self) -> Dict[str, int]:
        """Sum of rewards earned and of rewards already claimed."""
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(Referral.reward_amount), 0),
                func.coalesce(
                    func.sum(case((Referral.reward_claimed.is_(True), Referral.reward_amount), else_=0)),
                    0
                ),
            )
        )
        total, claimed = result.one()
        return {'total_rewards': int(total), 'claimed_rewards': int(claimed)}


class ReferralProfileRepository(BaseRepository[ReferralProfile]):
    """Repository for the per-referrer earnings ledger."""

    model_class = ReferralProfile

    async def get_by_user_id(self, user_id: int) -> Optional[ReferralProfile]:
        """Get profile of a referrer."""
        result = await self.session.execute(
            select(ReferralProfile).where(ReferralProfile.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        user_id: int,
        commission_rate: float = 0.10
    ) -> ReferralProfile:
        """Return the referrer's profile, creating an empty one on first use."""
        stmt = self.upsert_statement().values(
            user_id=user_id,
            commission_rate=Decimal(str(commission_rate)),
            total_earnings=0,
            pending_earnings=0,
            paid_out_earnings=0,
        ).on_conflict_do_nothing(index_elements=["user_id"])
        await self.session.execute(stmt)
        result = await self.session.execute(
            select(ReferralProfile)
            .where(ReferralProfile.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def accrue(self, user_id: int, amount: int) -> None:
        """Add a commission to total and pending in one statement."""
        await self.session.execute(
            update(ReferralProfile)
            .where(ReferralProfile.user_id == user_id)
            .values(
                total_earnings=ReferralProfile.total_earnings + amount,
                pending_earnings=ReferralProfile.pending_earnings + amount,
            )
            .execution_options(synchronize_session=False)
        )

    async def settle(self, user_id: int, amount: int) -> None:
        """Move a paid-out amount from pending to paid; pending never goes below zero."""
        remaining = ReferralProfile.pending_earnings - amount
        await self.session.execute(
            update(ReferralProfile)
            .where(ReferralProfile.user_id == user_id)
            .values(
                pending_earnings=case((remaining < 0, 0), else_=remaining),
                paid_out_earnings=ReferralProfile.paid_out_earnings + amount,
            )
            .execution_options(synchronize_session=False)
        )

    async def update_settings(self, user_id: int, **fields) -> Optional[ReferralProfile]:
        """Update payout details; None values are ignored."""
        values = {key: value for key, value in fields.items() if value is not None}
        if 'commission_rate' in values:
            values['commission_rate'] = Decimal(str(values['commission_rate']))
        if values:
            await self.session.execute(
                update(ReferralProfile)
                .where(ReferralProfile.user_id == user_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        result = await self.session.execute(
            select(ReferralProfile)
            .where(ReferralProfile.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_user_ids(self, user_ids: list[int]) -> Dict[int, ReferralProfile]:
        """Profiles keyed by owner id."""
        if not user_ids:
            return {}
        result = await self.session.execute(
            select(ReferralProfile).where(ReferralProfile.user_id.in_(user_ids))
        )
        return {profile.user_id: profile for profile in result.scalars().all()}

    async def get_totals(self) -> Dict[str, int]:
        """Platform-wide ledger sums."""
        result = await self.session.execute(
            select(
                func.count(ReferralProfile.id),
                func.coalesce(func.sum(ReferralProfile.total_earnings), 0),
                func.coalesce(func.sum(ReferralProfile.pending_earnings), 0),
                func.coalesce(func.sum(ReferralProfile.paid_out_earnings), 0),
            )
        )
        referrers, total, pending, paid = result.one()
        return {
            'referrers': int(referrers),
            'total_earnings': int(total),
            'pending_earnings': int(pending),
            'paid_out_earnings': int(paid),
        }


class ReferralTransactionRepository(BaseRepository[ReferralTransaction]):
    """Repository for commission events."""

    model_class = ReferralTransaction

    async def create(
        self,
        referrer_id: int,
        user_id: int,
        amount_paid: int,
        commission_amount: int,
        referral_id: Optional[int] = None,
        student_id: Optional[int] = None,
        payment_id: Optional[int] = None,
    ) -> ReferralTransaction:
        """Record a pending commission."""
        transaction = ReferralTransaction(
            referrer_id=referrer_id,
            referral_id=referral_id,
            user_id=user_id,
            student_id=student_id,
            payment_id=payment_id,
            amount_paid=amount_paid,
            commission_amount=commission_amount,
            status=ReferralTransactionStatus.PENDING.value,
        )
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def exists_for_payment(self, payment_id: int) -> bool:
        """Check whether a commission was already recorded for a payment."""
        result = await self.session.execute(
            select(ReferralTransaction.id).where(ReferralTransaction.payment_id == payment_id)
        )
        return result.first() is not None

    async def get_pending_by_referrer(self, referrer_id: int) -> List[ReferralTransaction]:
        """Pending commissions of a referrer, oldest first."""
        result = await self.session.execute(
            select(ReferralTransaction)
            .where(
                ReferralTransaction.referrer_id == referrer_id,
                ReferralTransaction.status == ReferralTransactionStatus.PENDING.value,
            )
            .order_by(ReferralTransaction.created_at, ReferralTransaction.id)
        )
        return list(result.scalars().all())

    async def claim_for_batch(
        self,
        transaction_id: int,
        batch_id: str,
        paid_at: datetime,
        notes: Optional[str] = None,
    ) -> bool:
        """Mark one pending commission as paid. False if another batch took it."""
        result = await self.session.execute(
            update(ReferralTransaction)
            .where(
                ReferralTransaction.id == transaction_id,
                ReferralTransaction.status == ReferralTransactionStatus.PENDING.value,
            )
            .values(
                status=ReferralTransactionStatus.PAID.value,
                paid_at=paid_at,
                payout_batch_id=batch_id,
                notes=notes,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_by_referrer(
        self,
        referrer_id: int,
        status: Optional[ReferralTransactionStatus] = None,
        limit: Optional[int] = None,
    ) -> List[ReferralTransaction]:
        """Commission history, newest first."""
        query = select(ReferralTransaction).where(ReferralTransaction.referrer_id == referrer_id)
        if status:
            query = query.where(ReferralTransaction.status == status.value)
        query = query.order_by(ReferralTransaction.created_at.desc(), ReferralTransaction.id.desc())
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_pending_by_referrer(self) -> Dict[int, int]:
        """Number of pending commissions per referrer."""
        result = await self.session.execute(
            select(ReferralTransaction.referrer_id, func.count(ReferralTransaction.id))
            .where(ReferralTransaction.status == ReferralTransactionStatus.PENDING.value)
            .group_by(ReferralTransaction.referrer_id)
        )
        return {referrer_id: count for referrer_id, count in result}

