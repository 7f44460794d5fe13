"""Payout service: settles a referrer's pending commissions in one batch."""
import asyncio
import logging
import secrets
import time
import weakref
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from api.config import settings
from core.exceptions import ReferralProfileNotFoundError, ValidationError
from database.repositories import (
    ReferralRepository,
    ReferralProfileRepository,
    ReferralTransactionRepository,
    UserRepository,
)
from services.notifications import Notifier, NotificationKind, notify_safely

logger = logging.getLogger(__name__)

# One payout at a time per referrer within this process, per event loop
_payout_locks: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()


def _payout_lock(referrer_id: int) -> asyncio.Lock:
    locks = _payout_locks.setdefault(asyncio.get_running_loop(), {})
    return locks.setdefault(referrer_id, asyncio.Lock())


class PayoutService:
    """Service for referral commission payouts."""

    def __init__(self, session: AsyncSession, notifier: Optional[Notifier] = None):
        self.session = session
        self.notifier = notifier
        self.referral_repo = ReferralRepository(session)
        self.profile_repo = ReferralProfileRepository(session)
        self.transaction_repo = ReferralTransactionRepository(session)
        self.user_repo = UserRepository(session)

    @staticmethod
    def make_batch_id(referrer_id: int, requested_by_admin: bool = False) -> str:
        prefix = "ADMIN_PAYOUT" if requested_by_admin else "PAYOUT"
        return f"{prefix}_{int(time.time() * 1000)}_{referrer_id}_{secrets.token_hex(3)}"

    async def process_payout(
        self,
        referrer_id: int,
        notes: Optional[str] = None,
        requested_by_admin: bool = False,
    ) -> Dict[str, Any]:
        """
        Pay out every pending commission of a referrer.

        Args:
            referrer_id: Referrer user ID
            notes: Free text stamped on each settled transaction
            requested_by_admin: Admin settlement instead of a self-service request

        Returns:
            Dict with batch_id, paid_count and amount (plus payee details for admins)

        Raises:
            ReferralProfileNotFoundError: admin payout for a user without profile
            ValidationError: no profile (self-service), no bank details,
                or nothing pending
        """
        async with _payout_lock(referrer_id):
            profile = await self.profile_repo.get_by_user_id(referrer_id)
            if not profile:
                if requested_by_admin:
                    raise ReferralProfileNotFoundError()
                raise ValidationError("Referral profile not found")

            if not profile.has_bank_details:
                raise ValidationError("Please add bank details before requesting payout")

            pending = await self.transaction_repo.get_pending_by_referrer(referrer_id)
            if not pending:
                raise ValidationError("No pending transactions to payout")

            batch_id = self.make_batch_id(referrer_id, requested_by_admin)
            paid_at = datetime.now(timezone.utc)
            total = 0
            paid_count = 0
            referral_ids = []
            for tx in pending:
                if await self.transaction_repo.claim_for_batch(tx.id, batch_id, paid_at, notes):
                    total += tx.commission_amount
                    paid_count += 1
                    if tx.referral_id:
                        referral_ids.append(tx.referral_id)

            if not paid_count:
                await self.session.rollback()
                raise ValidationError("No pending transactions to payout")

            if profile.pending_earnings < total:
                logger.warning(
                    f"Pending earnings {profile.pending_earnings} below batch total {total} "
                    f"for referrer {referrer_id}; flooring at zero",
                    extra={"referrer_id": referrer_id, "batch_id": batch_id},
                )

            bank_details = {
                'bank_name': profile.bank_name,
                'bank_code': profile.bank_code,
                'account_number': profile.account_number,
                'account_name': profile.account_name,
            }

            await self.profile_repo.settle(referrer_id, total)
            await self.referral_repo.mark_rewards_claimed(referral_ids)
            await self.session.commit()

        logger.info(
            f"Payout {batch_id}: {paid_count} transactions, {total} to referrer {referrer_id}",
            extra={"referrer_id": referrer_id, "batch_id": batch_id},
        )

        referrer = await self.user_repo.get_by_id(referrer_id)
        referrer_email = referrer.email if referrer else None
        payload = {
            'batch_id': batch_id,
            'amount': total,
            'count': paid_count,
            'referrer_id': referrer_id,
            'referrer_email': referrer_email,
            'name': referrer.display_name if referrer else None,
            **bank_details,
        }
        if requested_by_admin:
            await notify_safely(self.notifier, NotificationKind.PAYOUT_PROCESSED, referrer_email, payload)
        else:
            await notify_safely(self.notifier, NotificationKind.PAYOUT_REQUESTED, settings.admin_email, payload)

        result = {'batch_id': batch_id, 'paid_count': paid_count, 'amount': total}
        if requested_by_admin:
            result['referrer_email'] = referrer_email
            result['bank_details'] = bank_details
        return result
