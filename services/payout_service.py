"""
Payout Engine
Computes reward amounts from the rate table (with role multipliers) and credits them
through the ledger, followed by a best-effort referral kickback
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update

from config import Config
from models import Profile, ReferralStats, RewardAction, TransactionType, UserRole
from services.errors import NotFoundError, USER_NOT_FOUND
from services.ledger_service import LedgerService, to_money
from services.notification_outbox import NotificationEvent, NotificationOutboxService
from services.reward_rate_cache import RewardRateCache
from utils.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def role_multiplier(role: Optional[str]) -> Decimal:
    """Reward multiplier for the payee's role"""
    if role == UserRole.VALIDATOR.value:
        return Config.VALIDATOR_REWARD_MULTIPLIER
    if role == UserRole.AMBASSADOR.value:
        return Config.AMBASSADOR_REWARD_MULTIPLIER
    return Decimal("1")


class PayoutService:
    """Reward computation on top of the ledger"""

    def __init__(
        self,
        ledger: LedgerService,
        rate_cache: RewardRateCache,
        outbox: NotificationOutboxService,
    ):
        self.ledger = ledger
        self.rate_cache = rate_cache
        self.outbox = outbox

    def get_rate(self, uow: UnitOfWork, action: RewardAction) -> Decimal:
        return self.rate_cache.get_rate(uow.session, action.value)

    def credit_reward(
        self,
        uow: UnitOfWork,
        user_id: str,
        action: RewardAction,
        description: str,
        reference_id: Optional[str] = None,
    ) -> Decimal:
        """Credit base rate x role multiplier as an earning, then pay the referrer's kickback"""
        base = self.get_rate(uow, action)

        role = uow.session.scalar(select(Profile.role).where(Profile.id == user_id))
        if role is None:
            raise NotFoundError(USER_NOT_FOUND, reason="user_not_found")

        amount = to_money(base * role_multiplier(role))
        if amount <= 0:
            logger.warning(f"⚠️ REWARD_ZERO: {action.value} resolves to {amount} for {user_id} - nothing credited")
            return Decimal("0")

        self.ledger.credit(uow, user_id, amount, TransactionType.EARNING.value, description, reference_id)
        self.apply_referral_kickback(uow, user_id, amount, reference_id)
        return amount

    def credit_validator_reward(self, uow: UnitOfWork, validator_id: str, clip_id: str) -> Decimal:
        action = RewardAction.VALIDATION_CORRECT
        return self.credit_reward(uow, validator_id, action, f"Reward for {action.value}", clip_id)

    def credit_clip_approval_reward(self, uow: UnitOfWork, owner_id: str, clip_id: str) -> Decimal:
        return self.credit_reward(
            uow, owner_id, RewardAction.CLIP_APPROVED, f"Clip {clip_id[:8]}... approved", clip_id
        )

    def apply_referral_kickback(
        self,
        uow: UnitOfWork,
        payee_id: str,
        earned: Decimal,
        reference_id: Optional[str] = None,
    ) -> Optional[Decimal]:
        """
        Pay the payee's referrer a percentage of what was just earned.

        Runs inside a savepoint: any failure is logged and rolled back on its own so
        the primary payout always stands.
        """
        try:
            with uow.savepoint():
                referrer_id = uow.session.scalar(
                    select(Profile.referred_by_id).where(Profile.id == payee_id)
                )
                if not referrer_id or referrer_id == payee_id:
                    return None

                kickback = to_money(Decimal(str(earned)) * Config.REFERRAL_KICKBACK_RATE)
                if kickback <= 0:
                    return None

                self.ledger.credit(
                    uow,
                    referrer_id,
                    kickback,
                    TransactionType.BONUS.value,
                    f"Referral bonus from {payee_id[:8]}",
                    reference_id,
                )
                self._add_referral_earnings(uow, referrer_id, kickback)
                self.outbox.enqueue(uow, NotificationEvent.REFERRAL_BONUS_EARNED, {
                    "userId": referrer_id,
                    "referredUserId": payee_id,
                    "amount": str(kickback),
                })

                logger.info(f"🤝 REFERRAL_KICKBACK: {kickback} to {referrer_id} for {payee_id}")
                return kickback
        except Exception as e:
            logger.error(f"❌ REFERRAL_KICKBACK_FAILED: payee={payee_id} amount={earned}: {e}")
            return None

    @staticmethod
    def _add_referral_earnings(uow: UnitOfWork, referrer_id: str, amount: Decimal) -> None:
        result = uow.session.execute(
            update(ReferralStats)
            .where(ReferralStats.ambassador_id == referrer_id)
            .values(total_earnings=ReferralStats.total_earnings + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            uow.session.add(ReferralStats(ambassador_id=referrer_id, total_earnings=amount))
            uow.flush()
