"""Referral service: attribution, commissions and referrer dashboards."""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from api.config import settings
from core.dto import PaidPayment, UpdateReferralSettingsDTO
from core.exceptions import ConflictError, NotFoundError, ValidationError
from database.models import (
    Referral,
    ReferralStatus,
    ReferralProfile,
    ReferralTransaction,
    UserType,
)
from database.repositories import (
    ReferralRepository,
    ReferralProfileRepository,
    ReferralTransactionRepository,
    UserRepository,
)
from services.notifications import Notifier, NotificationKind, notify_safely

logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def referral_to_dict(referral: Referral) -> Dict[str, Any]:
    return {
        'id': referral.id,
        'referrer_id': referral.referrer_id,
        'referred_email': referral.referred_email,
        'referred_user_id': referral.referred_user_id,
        'status': referral.status,
        'reward_amount': referral.reward_amount,
        'reward_claimed': referral.reward_claimed,
        'created_at': _iso(referral.created_at),
    }


def profile_to_dict(profile: ReferralProfile) -> Dict[str, Any]:
    return {
        'user_id': profile.user_id,
        'bank_name': profile.bank_name,
        'bank_code': profile.bank_code,
        'account_number': profile.account_number,
        'account_name': profile.account_name,
        'commission_rate': float(profile.commission_rate),
        'total_earnings': profile.total_earnings,
        'pending_earnings': profile.pending_earnings,
        'paid_out_earnings': profile.paid_out_earnings,
    }


def transaction_to_dict(tx: ReferralTransaction) -> Dict[str, Any]:
    return {
        'id': tx.id,
        'referral_id': tx.referral_id,
        'user_id': tx.user_id,
        'payment_id': tx.payment_id,
        'amount_paid': tx.amount_paid,
        'commission_amount': tx.commission_amount,
        'status': tx.status,
        'paid_at': _iso(tx.paid_at),
        'payout_batch_id': tx.payout_batch_id,
        'notes': tx.notes,
        'created_at': _iso(tx.created_at),
    }


class ReferralService:
    """Service for referral program operations."""

    EXPIRATION_DAYS = 30  # Days until pending referral expires

    def __init__(self, session: AsyncSession, notifier: Optional[Notifier] = None):
        self.session = session
        self.notifier = notifier
        self.referral_repo = ReferralRepository(session)
        self.profile_repo = ReferralProfileRepository(session)
        self.transaction_repo = ReferralTransactionRepository(session)
        self.user_repo = UserRepository(session)

    @staticmethod
    def calculate_commission(amount: int, rate) -> int:
        """Commission in whole currency units, halves rounded up."""
        value = Decimal(int(amount)) * Decimal(str(rate))
        return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    async def resolve_referral(self, user_id: int, email: Optional[str]) -> Optional[Referral]:
        """
        Find the referral that brought this user in.

        Looks up by user id first, then by invited e-mail; an e-mail match
        gets the user id backfilled so later lookups hit the first branch.
        """
        referral = await self.referral_repo.get_by_referred_user_id(user_id)
        if referral or not email:
            return referral

        referral = await self.referral_repo.get_by_referred_email(email)
        if referral and referral.referred_user_id is None:
            await self.referral_repo.bind_referred_user(referral.id, user_id)
            referral.referred_user_id = user_id
            logger.info(f"Bound referral {referral.id} to user {user_id} by e-mail", extra={"user_id": user_id})
        return referral

    async def attribute_commission(self, payment: PaidPayment) -> Optional[Dict[str, Any]]:
        """
        Credit the referrer of a paying user.

        Every successful payment of a referred user earns a commission,
        whatever the referral status. The first one converts the referral
        to completed. No-op when the payer was not referred or this payment
        already produced a commission. Any failure is logged and rolled
        back; the payment itself is never affected.

        Returns:
            Commission info, or None when nothing was credited
        """
        try:
            referral = await self.resolve_referral(payment.user_id, payment.email)
            if not referral or not referral.referrer_id:
                await self.session.commit()
                logger.info(f"No referral found for user {payment.user_id}", extra={"user_id": payment.user_id})
                return None

            if await self.transaction_repo.exists_for_payment(payment.id):
                await self.session.commit()
                logger.warning(f"Commission for payment {payment.reference} already recorded")
                return None

            referrer_id = referral.referrer_id
            referred_email = referral.referred_email
            profile = await self.profile_repo.get_or_create(referrer_id, settings.default_commission_rate)
            commission = self.calculate_commission(payment.amount, profile.commission_rate)

            await self.transaction_repo.create(
                referrer_id=referrer_id,
                referral_id=referral.id,
                user_id=payment.user_id,
                student_id=payment.student_id,
                payment_id=payment.id,
                amount_paid=payment.amount,
                commission_amount=commission,
            )
            await self.referral_repo.add_reward(referral.id, commission)
            if referral.status != ReferralStatus.COMPLETED.value:
                if await self.referral_repo.complete(referral.id):
                    logger.info(f"Referral {referral.id} converted", extra={"referrer_id": referrer_id})
            await self.profile_repo.accrue(referrer_id, commission)
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.error(
                f"Referral attribution failed for payment {payment.reference}: {e}",
                exc_info=True,
                extra={"user_id": payment.user_id, "reference": payment.reference},
            )
            return None

        logger.info(
            f"Commission {commission} credited to referrer {referrer_id} for {payment.reference}",
            extra={"referrer_id": referrer_id, "reference": payment.reference},
        )

        try:
            referrer = await self.user_repo.get_by_id(referrer_id)
            profile = await self.profile_repo.get_by_user_id(referrer_id)
            if referrer:
                await notify_safely(
                    self.notifier,
                    NotificationKind.COMMISSION_EARNED,
                    referrer.email,
                    {
                        'name': referrer.display_name,
                        'referred_email': referred_email,
                        'amount_paid': payment.amount,
                        'commission': commission,
                        'pending_earnings': profile.pending_earnings if profile else commission,
                    },
                )
        except Exception as e:
            logger.error(f"Failed to notify referrer {referrer_id}: {e}", extra={"referrer_id": referrer_id})

        return {
            'referrer_id': referrer_id,
            'referral_id': referral.id,
            'commission': commission,
        }

    async def create_referral(self, referrer_id: int, referred_email: str) -> Dict[str, Any]:
        """Record an invitation from a referrer to an e-mail address."""
        referrer = await self.user_repo.get_by_id(referrer_id)
        if not referrer:
            raise NotFoundError("Referrer not found")

        email = referred_email.strip().lower()
        if referrer.email == email:
            raise ValidationError("Cannot refer yourself")

        if await self.referral_repo.check_duplicate(referrer_id, email):
            raise ConflictError("Referral already exists")

        referral = await self.referral_repo.create(referrer_id, email)
        existing_user = await self.user_repo.get_by_email(email)
        if existing_user:
            referral.referred_user_id = existing_user.id
        await self.session.commit()

        logger.info(f"Created referral: {referrer_id} -> {email} (id={referral.id})", extra={"referrer_id": referrer_id})
        return referral_to_dict(referral)

    async def get_settings(self, user_id: int) -> Dict[str, Any]:
        profile = await self.profile_repo.get_or_create(user_id, settings.default_commission_rate)
        await self.session.commit()
        return profile_to_dict(profile)

    async def update_settings(self, user_id: int, data: UpdateReferralSettingsDTO) -> Dict[str, Any]:
        """Update payout details of a referrer, creating the profile if needed."""
        await self.profile_repo.get_or_create(user_id, settings.default_commission_rate)
        profile = await self.profile_repo.update_settings(
            user_id,
            bank_name=data.bank_name,
            bank_code=data.bank_code,
            account_number=data.account_number,
            account_name=data.account_name,
            commission_rate=data.commission_rate,
        )
        await self.session.commit()
        logger.info(f"Referral settings updated for user {user_id}", extra={"referrer_id": user_id})
        return profile_to_dict(profile)

    async def get_transactions(self, user_id: int, limit: int = 200) -> list[Dict[str, Any]]:
        transactions = await self.transaction_repo.list_by_referrer(user_id, limit=limit)
        return [transaction_to_dict(tx) for tx in transactions]

    async def get_dashboard(self, user_id: int) -> Dict[str, Any]:
        """Referrer's own numbers: referral counts, conversion and earnings."""
        stats = await self.referral_repo.get_statistics(user_id)
        profile = await self.profile_repo.get_or_create(user_id, settings.default_commission_rate)
        referrals = await self.referral_repo.get_all_by_referrer(user_id)
        transactions = await self.transaction_repo.list_by_referrer(user_id, limit=10)
        await self.session.commit()

        total = stats['total']
        conversion = round(stats[ReferralStatus.COMPLETED.value] / total * 100, 1) if total else 0.0
        return {
            'stats': {**stats, 'conversion_rate': conversion},
            'earnings': {
                'total': profile.total_earnings,
                'pending': profile.pending_earnings,
                'paid_out': profile.paid_out_earnings,
            },
            'profile': profile_to_dict(profile),
            'recent_referrals': [referral_to_dict(r) for r in referrals[:10]],
            'recent_transactions': [transaction_to_dict(tx) for tx in transactions],
        }

    async def get_stats(self) -> Dict[str, Any]:
        """Platform-wide referral statistics."""
        stats = await self.referral_repo.get_statistics()
        rewards = await self.referral_repo.get_reward_totals()
        top = await self.referral_repo.get_referrer_summaries(limit=10)
        users = {}
        for row in top:
            user = await self.user_repo.get_by_id(row['referrer_id'])
            users[row['referrer_id']] = user.email if user else None
        return {
            'total_referrals': stats['total'],
            'pending_referrals': stats[ReferralStatus.PENDING.value],
            'completed_referrals': stats[ReferralStatus.COMPLETED.value],
            'expired_referrals': stats[ReferralStatus.EXPIRED.value],
            **rewards,
            'top_referrers': [{**row, 'email': users[row['referrer_id']]} for row in top],
        }

    async def get_admin_overview(self) -> Dict[str, Any]:
        """All referrer accounts with earnings, bank details and pending work."""
        referrers = await self.user_repo.get_all_by_type(UserType.REFERRAL)
        profiles = await self.profile_repo.get_by_user_ids([u.id for u in referrers])
        summaries = {row['referrer_id']: row for row in await self.referral_repo.get_referrer_summaries()}
        pending_counts = await self.transaction_repo.count_pending_by_referrer()

        overview = []
        for user in referrers:
            profile = profiles.get(user.id)
            summary = summaries.get(user.id, {})
            total = summary.get('total_referrals', 0)
            completed = summary.get('completed_referrals', 0)
            overview.append({
                'user_id': user.id,
                'email': user.email,
                'full_name': user.full_name,
                'referral_code': user.referral_code,
                'total_referrals': total,
                'completed_referrals': completed,
                'conversion_rate': round(completed / total * 100, 1) if total else 0.0,
                'total_earnings': profile.total_earnings if profile else 0,
                'pending_earnings': profile.pending_earnings if profile else 0,
                'paid_out_earnings': profile.paid_out_earnings if profile else 0,
                'commission_rate': float(profile.commission_rate) if profile else settings.default_commission_rate,
                'bank_details': {
                    'bank_name': profile.bank_name,
                    'bank_code': profile.bank_code,
                    'account_number': profile.account_number,
                    'account_name': profile.account_name,
                } if profile and profile.has_bank_details else None,
                'pending_transactions': pending_counts.get(user.id, 0),
            })

        totals = await self.profile_repo.get_totals()
        return {'referrers': overview, 'totals': totals}

    async def expire_stale_referrals(self, days: Optional[int] = None) -> int:
        """Expire pending referrals that never converted."""
        days = days or settings.referral_expiration_days or self.EXPIRATION_DAYS
        count = await self.referral_repo.expire_old_referrals(days)
        await self.session.commit()
        if count:
            logger.info(f"Expired {count} referrals older than {days} days")
        return count
