"""
Admin Payout Processing
Pushes pending payout requests to Paystack as bank transfers, or rejects and refunds them
"""

import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models import PayoutRequest, PayoutStatus, utc_now
from services.errors import ExternalProviderError, NotFoundError, ValidationError
from services.exchange_rate_service import ExchangeRateService
from services.paystack_service import PaystackService
from services.withdrawal_service import WithdrawalService
from utils.encryption import AccountEncryption
from utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


class AdminPayoutService:
    """Operator-facing payout actions"""

    def __init__(
        self,
        withdrawals: WithdrawalService,
        paystack: PaystackService,
        exchange_rates: ExchangeRateService,
        encryption: AccountEncryption,
    ):
        self.withdrawals = withdrawals
        self.paystack = paystack
        self.exchange_rates = exchange_rates
        self.encryption = encryption

    def list_pending_requests(self, session: Session, limit: int = 20, offset: int = 0) -> List[PayoutRequest]:
        """Pending requests, newest first; account numbers stay encrypted"""
        return list(session.execute(
            select(PayoutRequest)
            .where(PayoutRequest.status == PayoutStatus.PENDING.value)
            .order_by(PayoutRequest.created_at.desc())
            .limit(limit)
            .offset(offset)
        ).scalars())

    async def process_payout_request(self, session: Session, request_id: str) -> Dict[str, Any]:
        """
        Transfer a payout request's amount to the user's bank via Paystack.

        The request is claimed (pending -> processing) and re-keyed to a PAYOUT- reference
        under a row lock before the provider is called, so a repeated call cannot start a
        second transfer. If the provider call fails the request is failed and its funds
        refunded before the error propagates.
        """
        request = session.get(PayoutRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFoundError("Payout request not found", reason="payout_request_not_found")

        usd_amount = Decimal(str(request.amount))
        amount_kobo = await self.exchange_rates.usd_to_minor_units(usd_amount)
        request, account_number, reference = self._claim_for_processing(session, request_id)

        try:
            logger.info(f"🏦 PAYOUT_RECIPIENT_CREATE: request {request.id} to {request.account_number_masked}")
            recipient_code = await self.paystack.create_recipient(
                account_number, request.bank_code, request.account_name
            )

            logger.info(f"💸 PAYOUT_TRANSFER_INITIATE: {reference} - {amount_kobo} kobo")
            transfer = await self.paystack.initiate_transfer(
                recipient_code, amount_kobo, reference, f"LinguaLink Payout - {request.account_name}"
            )
        except ExternalProviderError as e:
            logger.error(f"❌ PAYOUT_TRANSFER_FAILED: request {request.id} - {e}")
            self.withdrawals.fail_payout_request(session, reference, str(e))
            raise

        with unit_of_work(session) as uow:
            request.provider_transfer_code = transfer.get("transfer_code")
            uow.flush()

        logger.info(f"✅ PAYOUT_TRANSFER_INITIATED: {reference} - {transfer.get('transfer_code')}")
        return {
            "success": True,
            "payoutId": request.id,
            "reference": reference,
            "transferCode": transfer.get("transfer_code"),
            "status": transfer.get("status"),
            "amountNGN": Decimal(amount_kobo) / 100,
            "amountUSD": usd_amount,
            "message": "Transfer initiated. Status will be updated via webhook.",
        }

    def _claim_for_processing(self, session: Session, request_id: str) -> Tuple[PayoutRequest, str, str]:
        """Compare-and-set pending -> processing with the new provider reference"""
        with unit_of_work(session) as uow:
            request = uow.session.execute(
                select(PayoutRequest)
                .where(PayoutRequest.id == request_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if request is None:
                raise NotFoundError("Payout request not found", reason="payout_request_not_found")
            if request.status != PayoutStatus.PENDING.value:
                reason = (
                    "payout_already_processing" if request.status == PayoutStatus.PROCESSING.value
                    else "payout_already_final"
                )
                raise ValidationError(f"Payout is already {request.status}", reason=reason)

            account_number = self.encryption.decrypt(request.account_number)
            if not account_number:
                raise ValidationError("Failed to decrypt account number", reason="account_decrypt_failed")

            reference = f"PAYOUT-{request.id[:8]}-{int(time.time() * 1000)}"
            claimed = uow.session.execute(
                update(PayoutRequest)
                .where(PayoutRequest.id == request_id, PayoutRequest.status == PayoutStatus.PENDING.value)
                .values(
                    status=PayoutStatus.PROCESSING.value,
                    provider_reference=reference,
                    processed_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                raise ValidationError("Payout is already processing", reason="payout_already_processing")

            request = uow.session.execute(
                select(PayoutRequest)
                .where(PayoutRequest.id == request_id)
                .execution_options(populate_existing=True)
            ).scalar_one()

        logger.info(f"🔒 PAYOUT_CLAIMED: request {request_id} -> {reference}")
        return request, account_number, reference

    def reject_payout_request(self, session: Session, request_id: str, reason: str) -> Dict[str, Any]:
        request = self.withdrawals.refund_payout_request(session, request_id, reason)
        return {
            "success": True,
            "payoutId": request.id,
            "refundAmount": request.locked_amount if request.locked_amount is not None else request.amount,
            "reason": reason,
            "status": request.status,
        }
