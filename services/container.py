"""
Service wiring
Builds the settlement services once per process so the process-lifetime state (reward
rate cache, cooldown tracker, exchange rate cache) is shared by every request
"""

import logging
from dataclasses import dataclass
from typing import Optional

from services.admin_payout_service import AdminPayoutService
from services.consensus_service import ConsensusService
from services.exchange_rate_service import ExchangeRateService
from services.ledger_service import LedgerService
from services.notification_outbox import NotificationOutboxService
from services.payout_service import PayoutService
from services.paystack_service import PaystackService
from services.promotion_service import PromotionService
from services.remix_service import RemixService
from services.reward_rate_cache import RewardRateCache
from services.top_up_service import TopUpService
from services.validation_service import CooldownTracker, ValidationService
from services.validator_assignment_service import ValidatorAssignmentService
from services.withdrawal_service import WithdrawalService
from utils.encryption import AccountEncryption

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    ledger: LedgerService
    outbox: NotificationOutboxService
    rate_cache: RewardRateCache
    cooldown: CooldownTracker
    payout: PayoutService
    remix: RemixService
    consensus: ConsensusService
    validation: ValidationService
    paystack: PaystackService
    exchange_rates: ExchangeRateService
    withdrawals: WithdrawalService
    top_ups: TopUpService
    admin_payouts: AdminPayoutService
    promotion: PromotionService
    assignment: ValidatorAssignmentService


def build_services(
    rate_cache: Optional[RewardRateCache] = None,
    cooldown: Optional[CooldownTracker] = None,
    paystack: Optional[PaystackService] = None,
    exchange_rates: Optional[ExchangeRateService] = None,
    encryption: Optional[AccountEncryption] = None,
) -> ServiceContainer:
    """Construct the full service graph; any collaborator can be supplied"""
    ledger = LedgerService()
    outbox = NotificationOutboxService()
    rate_cache = rate_cache or RewardRateCache()
    cooldown = cooldown or CooldownTracker()
    paystack = paystack or PaystackService()
    exchange_rates = exchange_rates or ExchangeRateService()
    encryption = encryption or AccountEncryption()

    payout = PayoutService(ledger, rate_cache, outbox)
    remix = RemixService(ledger)
    consensus = ConsensusService(payout, remix, outbox)
    withdrawals = WithdrawalService(ledger, outbox, encryption)

    return ServiceContainer(
        ledger=ledger,
        outbox=outbox,
        rate_cache=rate_cache,
        cooldown=cooldown,
        payout=payout,
        remix=remix,
        consensus=consensus,
        validation=ValidationService(consensus, outbox, cooldown),
        paystack=paystack,
        exchange_rates=exchange_rates,
        withdrawals=withdrawals,
        top_ups=TopUpService(ledger, paystack, exchange_rates),
        admin_payouts=AdminPayoutService(withdrawals, paystack, exchange_rates, encryption),
        promotion=PromotionService(outbox),
        assignment=ValidatorAssignmentService(),
    )


# Global singleton instance
_services: Optional[ServiceContainer] = None


def get_services() -> ServiceContainer:
    """Get the shared service container, building it on first use"""
    global _services
    if _services is None:
        _services = build_services()
        logger.info("✅ Settlement services initialized")
    return _services


def set_services(container: Optional[ServiceContainer]) -> None:
    """Replace the shared container (None resets it)"""
    global _services
    _services = container
