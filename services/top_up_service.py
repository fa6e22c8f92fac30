"""Wallet top-ups: Paystack checkout initialization and idempotent crediting on charge.success"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Profile, Transaction, TransactionType
from services.errors import NotFoundError, ValidationError, USER_NOT_FOUND
from services.exchange_rate_service import ExchangeRateService
from services.ledger_service import LedgerService, to_money
from services.paystack_service import PaystackService
from utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


class TopUpService:
    def __init__(
        self,
        ledger: LedgerService,
        paystack: PaystackService,
        exchange_rates: ExchangeRateService,
    ):
        self.ledger = ledger
        self.paystack = paystack
        self.exchange_rates = exchange_rates

    async def initialize_top_up(
        self, user_id: str, amount_usd: Union[Decimal, float, str], email: str
    ) -> Dict[str, Any]:
        """Open a Paystack checkout for a USD amount charged in NGN"""
        amount_usd = to_money(amount_usd)
        if amount_usd <= 0:
            raise ValidationError("Top-up amount must be positive", reason="invalid_amount")

        rate = await self.exchange_rates.get_usd_to_ngn_rate()
        amount_kobo = await self.exchange_rates.usd_to_minor_units(amount_usd)

        checkout = await self.paystack.initialize_transaction(email, amount_kobo, {
            "user_id": user_id,
            "usd_amount": str(amount_usd),
            "exchange_rate": str(rate),
            "custom_fields": [
                {"display_name": "User ID", "variable_name": "user_id", "value": user_id},
            ],
        })
        logger.info(f"🧾 TOP_UP_INITIALIZED: ${amount_usd} ({amount_kobo} kobo) for {user_id}")
        return checkout

    def credit_top_up(
        self,
        session: Session,
        user_id: str,
        amount: Union[Decimal, float, str],
        reference: str,
        currency: Optional[str] = None,
    ) -> bool:
        """Credit a confirmed charge once; a reference already logged is a no-op"""
        with unit_of_work(session) as uow:
            # Serializes concurrent deliveries of the same charge for this user
            locked = uow.session.execute(
                select(Profile.id).where(Profile.id == user_id).with_for_update()
            ).scalar_one_or_none()
            if locked is None:
                raise NotFoundError(USER_NOT_FOUND, reason="user_not_found")

            already_credited = uow.session.scalar(
                select(Transaction.id).where(
                    Transaction.reference_id == reference,
                    Transaction.transaction_type == TransactionType.TOP_UP.value,
                )
            )
            if already_credited is not None:
                logger.warning(f"⚠️ DUPLICATE_TOP_UP: {reference} already credited - skipping")
                return False

            self.ledger.credit(
                uow,
                user_id,
                amount,
                TransactionType.TOP_UP.value,
                f"Top-up via {currency or 'NGN'}",
                reference,
            )

        logger.info(f"✅ TOP_UP_CREDITED: {amount} to {user_id} (ref: {reference})")
        return True
