"""
Ledger Service
Owns every balance mutation: each primitive is one atomic UPDATE expression plus
one append-only transaction log row, both inside the caller's unit of work
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Union

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from config import Config
from models import Profile, Transaction, TransactionType, utc_now
from services.errors import NotFoundError, ValidationError, USER_NOT_FOUND
from utils.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

# Credits of these types count towards lifetime earnings
EARNING_TYPES = (TransactionType.EARNING.value, TransactionType.BONUS.value)


def to_money(amount: Union[Decimal, int, float, str]) -> Decimal:
    """Normalize an amount to ledger precision"""
    return Decimal(str(amount)).quantize(Config.MONEY_PRECISION, rounding=ROUND_HALF_UP)


def _floored_at_zero(expression):
    return case((expression < 0, Decimal("0")), else_=expression)


class LedgerService:
    """Credit/debit primitives and fund-lock movements for withdrawals"""

    def credit(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: Union[Decimal, int, float, str],
        transaction_type: str,
        description: str,
        reference_id: Optional[str] = None,
    ) -> Transaction:
        """Add to a user's available balance and log a positive entry"""
        amount = self._positive(amount)

        values = {"balance": Profile.balance + amount, "updated_at": utc_now()}
        if transaction_type in EARNING_TYPES:
            values["total_earned"] = Profile.total_earned + amount

        self._apply(uow, user_id, values)
        entry = self._log(uow, user_id, amount, transaction_type, description, reference_id)

        logger.info(f"💰 LEDGER_CREDIT: {amount} to {user_id} [{transaction_type}] {description}")
        return entry

    def debit(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: Union[Decimal, int, float, str],
        transaction_type: str,
        description: str,
        reference_id: Optional[str] = None,
    ) -> Transaction:
        """Subtract from a user's available balance and log a negative entry"""
        amount = self._positive(amount)

        self._apply(uow, user_id, {"balance": Profile.balance - amount, "updated_at": utc_now()})
        entry = self._log(uow, user_id, -amount, transaction_type, description, reference_id)

        logger.info(f"💸 LEDGER_DEBIT: {amount} from {user_id} [{transaction_type}] {description}")
        return entry

    def lock_funds(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: Union[Decimal, int, float, str],
        description: str,
        reference_id: Optional[str] = None,
    ) -> Transaction:
        """Move funds from available to pending balance (withdrawal in flight)"""
        amount = self._positive(amount)

        self._apply(uow, user_id, {
            "balance": Profile.balance - amount,
            "pending_balance": Profile.pending_balance + amount,
            "updated_at": utc_now(),
        })
        entry = self._log(uow, user_id, -amount, TransactionType.FUND_LOCK.value, description, reference_id)

        logger.info(f"🔒 LEDGER_FUND_LOCK: {amount} for {user_id} (ref: {reference_id})")
        return entry

    def release_locked_funds(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: Union[Decimal, int, float, str],
        reference_id: Optional[str] = None,
    ) -> None:
        """Drop locked funds that have left the system - available balance is untouched"""
        amount = self._positive(amount)

        self._apply(uow, user_id, {
            "pending_balance": _floored_at_zero(Profile.pending_balance - amount),
            "updated_at": utc_now(),
        })

        logger.info(f"📤 LEDGER_FUNDS_RELEASED: {amount} for {user_id} (ref: {reference_id})")

    def refund_locked_funds(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: Union[Decimal, int, float, str],
        description: str,
        reference_id: Optional[str] = None,
    ) -> Transaction:
        """Return locked funds from pending to available balance and log the refund"""
        amount = self._positive(amount)

        self._apply(uow, user_id, {
            "balance": Profile.balance + amount,
            "pending_balance": _floored_at_zero(Profile.pending_balance - amount),
            "updated_at": utc_now(),
        })
        entry = self._log(uow, user_id, amount, TransactionType.REFUND.value, description, reference_id)

        logger.info(f"↩️ LEDGER_REFUND: {amount} to {user_id} (ref: {reference_id})")
        return entry

    def get_transaction_history(self, session: Session, user_id: str, limit: int = 20) -> List[Transaction]:
        return list(session.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
        ).scalars())

    @staticmethod
    def _positive(amount) -> Decimal:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError(f"Ledger amount must be positive, got {amount}", reason="invalid_amount")
        return amount

    @staticmethod
    def _apply(uow: UnitOfWork, user_id: str, values: dict) -> None:
        result = uow.session.execute(
            update(Profile)
            .where(Profile.id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(USER_NOT_FOUND, reason="user_not_found")

    @staticmethod
    def _log(
        uow: UnitOfWork,
        user_id: str,
        signed_amount: Decimal,
        transaction_type: str,
        description: str,
        reference_id: Optional[str],
    ) -> Transaction:
        entry = Transaction(
            user_id=user_id,
            amount=signed_amount,
            transaction_type=transaction_type,
            description=description,
            reference_id=reference_id,
        )
        uow.session.add(entry)
        uow.flush()
        return entry
