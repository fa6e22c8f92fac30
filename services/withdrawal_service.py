"""
Withdrawal / Payout-Request Engine
==================================

Idempotent withdrawal requests with fund locking, and reconciliation of provider
callbacks keyed by transfer reference.

State machine:
    pending -> processing -> completed
                          -> failed
    pending/processing -> refunded (admin rejection)

Every transition that moves money goes through the ledger inside one unit of work
together with the status write, so balance and request state can never disagree.
"""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Config
from models import (
    PayoutRequest, PayoutStatus, Profile, TERMINAL_PAYOUT_STATUSES, TransactionType,
    Withdrawal, new_uuid, utc_now
)
from services.errors import (
    ConflictError, NotFoundError, ValidationError, USER_NOT_FOUND
)
from services.ledger_service import LedgerService, to_money
from services.notification_outbox import NotificationEvent, NotificationOutboxService
from utils.encryption import AccountEncryption
from utils.unit_of_work import UnitOfWork, unit_of_work

logger = logging.getLogger(__name__)

# Requests in these states no longer hold or consume funds
EXCLUDED_FROM_DAILY_LIMIT = (PayoutStatus.FAILED.value, PayoutStatus.REFUNDED.value)


@dataclass
class WithdrawalResult:
    """Outcome of a withdrawal request"""
    payout_request_id: str
    reference: str
    status: str
    already_existed: bool = False


class WithdrawalService:
    """Fund-locking withdrawal requests and their provider callbacks"""

    def __init__(
        self,
        ledger: LedgerService,
        outbox: NotificationOutboxService,
        encryption: AccountEncryption,
    ):
        self.ledger = ledger
        self.outbox = outbox
        self.encryption = encryption

    def request_withdrawal(
        self,
        session: Session,
        user_id: str,
        amount: Union[Decimal, float, str],
        bank_code: str,
        account_number: str,
        account_name: str,
        idempotency_key: str,
    ) -> WithdrawalResult:
        """
        Lock funds for a withdrawal and record the payout request.

        A repeated idempotency key returns the original request unchanged, including
        when the duplicate arrives concurrently and loses the insert race.
        """
        existing = self._find_by_idempotency_key(session, idempotency_key)
        if existing is not None:
            logger.info(f"🔁 WITHDRAWAL_IDEMPOTENT_REPLAY: key {idempotency_key} -> {existing.id}")
            return self._result(existing, already_existed=True)

        amount = to_money(amount)
        if amount < Config.WITHDRAWAL_MIN_AMOUNT:
            raise ValidationError(
                f"Minimum withdrawal is ${Config.WITHDRAWAL_MIN_AMOUNT}", reason="below_minimum"
            )

        try:
            with unit_of_work(session) as uow:
                # Held until commit: serializes this user's limit and balance checks
                profile = uow.session.execute(
                    select(Profile)
                    .where(Profile.id == user_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
                if profile is None:
                    raise NotFoundError(USER_NOT_FOUND, reason="user_not_found")

                withdrawn_today = self._withdrawn_in_last_24h(uow, user_id)
                if withdrawn_today + amount > Config.WITHDRAWAL_DAILY_LIMIT:
                    remaining = max(Config.WITHDRAWAL_DAILY_LIMIT - withdrawn_today, Decimal("0"))
                    raise ValidationError(
                        f"Daily withdrawal limit of ${Config.WITHDRAWAL_DAILY_LIMIT} exceeded. "
                        f"Remaining today: ${remaining:.2f}",
                        reason="daily_limit_exceeded",
                    )

                available = Decimal(str(profile.balance or 0))
                if available < amount:
                    raise ValidationError(
                        f"Insufficient balance. Available: ${available:.2f}", reason="insufficient_balance"
                    )

                request_id = new_uuid()
                reference = self._new_reference(uow, user_id)

                self.ledger.lock_funds(
                    uow, user_id, amount, "Funds locked for withdrawal request", request_id
                )
                request = PayoutRequest(
                    id=request_id,
                    user_id=user_id,
                    idempotency_key=idempotency_key,
                    amount=amount,
                    locked_amount=amount,
                    bank_code=bank_code,
                    account_number=self.encryption.encrypt(account_number),
                    account_number_masked=self.encryption.mask_account_number(account_number),
                    account_name=account_name,
                    status=PayoutStatus.PENDING.value,
                    provider_reference=reference,
                )
                uow.session.add(request)
                uow.flush()
        except IntegrityError:
            # A concurrent request with the same key committed first
            existing = self._find_by_idempotency_key(session, idempotency_key)
            if existing is None:
                raise ConflictError("Withdrawal request conflicted, please retry", reason="withdrawal_conflict")
            logger.warning(f"⚠️ WITHDRAWAL_KEY_RACE: key {idempotency_key} resolved to {existing.id}")
            return self._result(existing, already_existed=True)

        logger.info(
            f"🏧 WITHDRAWAL_REQUESTED: {reference} - ${amount} for {user_id} "
            f"to {request.account_number_masked}"
        )
        return self._result(request)

    def complete_payout_request(self, session: Session, reference: str) -> bool:
        """Provider confirmed the transfer: locked funds leave the system"""
        with unit_of_work(session) as uow:
            request = self._lock_by_reference(uow, reference)
            if request is None:
                return self._complete_legacy_withdrawal(uow, reference)

            if request.status in TERMINAL_PAYOUT_STATUSES:
                logger.info(f"ℹ️ PAYOUT_ALREADY_FINAL: {reference} is {request.status} - ignoring completion")
                return False

            locked = self._locked_amount(request)
            if locked > 0:
                self.ledger.release_locked_funds(uow, request.user_id, locked, request.id)

            now = utc_now()
            request.status = PayoutStatus.COMPLETED.value
            request.completed_at = now
            uow.flush()

            self.outbox.enqueue(uow, NotificationEvent.WITHDRAWAL_COMPLETED, {
                "userId": request.user_id,
                "payoutRequestId": request.id,
                "amount": str(request.amount),
                "reference": reference,
            })

        logger.info(f"✅ PAYOUT_COMPLETED: {reference} - ${locked}")
        return True

    def fail_payout_request(self, session: Session, reference: str, reason: str) -> bool:
        """Provider rejected or reversed the transfer: locked funds go back to available"""
        with unit_of_work(session) as uow:
            request = self._lock_by_reference(uow, reference)
            if request is None:
                return self._fail_legacy_withdrawal(uow, reference, reason)

            if request.status in TERMINAL_PAYOUT_STATUSES:
                logger.info(f"ℹ️ PAYOUT_ALREADY_FINAL: {reference} is {request.status} - ignoring failure")
                return False

            locked = self._refund(uow, request, f"Withdrawal refund - {reason}")
            request.status = PayoutStatus.FAILED.value
            request.failure_reason = reason
            uow.flush()

            self.outbox.enqueue(uow, NotificationEvent.WITHDRAWAL_FAILED, {
                "userId": request.user_id,
                "payoutRequestId": request.id,
                "amount": str(request.amount),
                "reason": reason,
            })

        logger.warning(f"⚠️ PAYOUT_FAILED_REFUNDED: {reference} - ${locked} - {reason}")
        return True

    def refund_payout_request(self, session: Session, request_id: str, reason: str) -> PayoutRequest:
        """Admin rejection of a request that has not reached a final state"""
        with unit_of_work(session) as uow:
            request = uow.session.execute(
                select(PayoutRequest)
                .where(PayoutRequest.id == request_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if request is None:
                raise NotFoundError("Payout request not found", reason="payout_request_not_found")

            if request.status in TERMINAL_PAYOUT_STATUSES:
                raise ValidationError(
                    f"Payout is already {request.status}", reason="payout_already_final"
                )

            locked = self._refund(uow, request, f"Payout refunded: {reason}")
            request.status = PayoutStatus.REFUNDED.value
            request.failure_reason = reason
            uow.flush()

            self.outbox.enqueue(uow, NotificationEvent.WITHDRAWAL_FAILED, {
                "userId": request.user_id,
                "payoutRequestId": request.id,
                "amount": str(request.amount),
                "reason": reason,
            })

        logger.warning(f"↩️ PAYOUT_REJECTED_REFUNDED: {request_id} - ${locked} - {reason}")
        return request

    def get_balance_summary(self, session: Session, user_id: str) -> Dict[str, Decimal]:
        row = session.execute(
            select(Profile.balance, Profile.pending_balance).where(Profile.id == user_id)
        ).first()
        if row is None:
            zero = Decimal("0")
            return {"availableBalance": zero, "pendingBalance": zero, "totalBalance": zero}

        available = to_money(row.balance or 0)
        pending = to_money(row.pending_balance or 0)
        return {
            "availableBalance": available,
            "pendingBalance": pending,
            "totalBalance": available + pending,
        }

    def get_payout_requests(self, session: Session, user_id: str, limit: int = 20) -> List[PayoutRequest]:
        return list(session.execute(
            select(PayoutRequest)
            .where(PayoutRequest.user_id == user_id)
            .order_by(PayoutRequest.created_at.desc())
            .limit(limit)
        ).scalars())

    # ------------------------------------------------------------------

    def _refund(self, uow: UnitOfWork, request: PayoutRequest, description: str) -> Decimal:
        locked = self._locked_amount(request)
        if locked > 0:
            self.ledger.refund_locked_funds(uow, request.user_id, locked, description, request.id)
        return locked

    @staticmethod
    def _locked_amount(request: PayoutRequest) -> Decimal:
        amount = request.locked_amount if request.locked_amount is not None else request.amount
        return to_money(amount or 0)

    @staticmethod
    def _find_by_idempotency_key(session: Session, idempotency_key: str) -> Optional[PayoutRequest]:
        return session.execute(
            select(PayoutRequest)
            .where(PayoutRequest.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def _lock_by_reference(uow: UnitOfWork, reference: str) -> Optional[PayoutRequest]:
        return uow.session.execute(
            select(PayoutRequest)
            .where(PayoutRequest.provider_reference == reference)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def _withdrawn_in_last_24h(uow: UnitOfWork, user_id: str) -> Decimal:
        since = utc_now() - timedelta(hours=24)

        requested = uow.session.scalar(
            select(func.coalesce(func.sum(PayoutRequest.amount), 0)).where(
                PayoutRequest.user_id == user_id,
                PayoutRequest.created_at >= since,
                PayoutRequest.status.not_in(EXCLUDED_FROM_DAILY_LIMIT),
            )
        )
        legacy = uow.session.scalar(
            select(func.coalesce(func.sum(Withdrawal.amount), 0)).where(
                Withdrawal.user_id == user_id,
                Withdrawal.created_at >= since,
                Withdrawal.status.not_in(EXCLUDED_FROM_DAILY_LIMIT),
            )
        )
        return to_money(requested or 0) + to_money(legacy or 0)

    @staticmethod
    def _new_reference(uow: UnitOfWork, user_id: str) -> str:
        """WD-{user}-{epoch ms}, bumped forward until unused"""
        millis = int(time.time() * 1000)
        while True:
            reference = f"WD-{user_id[:8]}-{millis}"
            taken = uow.session.scalar(
                select(PayoutRequest.id).where(PayoutRequest.provider_reference == reference)
            )
            if taken is None:
                return reference
            millis += 1

    @staticmethod
    def _result(request: PayoutRequest, already_existed: bool = False) -> WithdrawalResult:
        return WithdrawalResult(
            payout_request_id=request.id,
            reference=request.provider_reference or request.idempotency_key,
            status=request.status or PayoutStatus.PENDING.value,
            already_existed=already_existed,
        )

    # Legacy withdrawals table (debited at request time, no locked funds)

    @staticmethod
    def _lock_legacy(uow: UnitOfWork, reference: str) -> Optional[Withdrawal]:
        return uow.session.execute(
            select(Withdrawal)
            .where(Withdrawal.reference == reference)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _complete_legacy_withdrawal(self, uow: UnitOfWork, reference: str) -> bool:
        withdrawal = self._lock_legacy(uow, reference)
        if withdrawal is None:
            logger.warning(f"⚠️ PAYOUT_REFERENCE_UNKNOWN: {reference} - no payout request or withdrawal")
            return False
        if withdrawal.status in TERMINAL_PAYOUT_STATUSES:
            return False

        withdrawal.status = PayoutStatus.COMPLETED.value
        withdrawal.completed_at = utc_now()
        uow.flush()
        logger.info(f"✅ LEGACY_WITHDRAWAL_COMPLETED: {reference}")
        return True

    def _fail_legacy_withdrawal(self, uow: UnitOfWork, reference: str, reason: str) -> bool:
        withdrawal = self._lock_legacy(uow, reference)
        if withdrawal is None:
            logger.warning(f"⚠️ PAYOUT_REFERENCE_UNKNOWN: {reference} - no payout request or withdrawal")
            return False
        if withdrawal.status in TERMINAL_PAYOUT_STATUSES:
            return False

        withdrawal.status = PayoutStatus.FAILED.value
        withdrawal.failure_reason = reason
        uow.flush()

        self.ledger.credit(
            uow,
            withdrawal.user_id,
            withdrawal.amount,
            TransactionType.REFUND.value,
            f"Withdrawal refund - {reason}",
            withdrawal.id,
        )
        logger.warning(f"⚠️ LEGACY_WITHDRAWAL_FAILED_REFUNDED: {reference} - ${withdrawal.amount} - {reason}")
        return True
