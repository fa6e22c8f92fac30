"""
Ledger primitive tests
Every balance mutation is one UPDATE plus one log row, and balances always equal the log
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from models import Profile, Transaction, TransactionType
from services.errors import NotFoundError, ValidationError
from services.ledger_service import LedgerService, to_money
from utils.unit_of_work import unit_of_work


@pytest.fixture
def ledger():
    return LedgerService()


class TestToMoney:
    """Amount normalization"""

    def test_quantizes_to_six_places_half_up(self):
        assert to_money("0.0000005") == Decimal("0.000001")
        assert to_money(0.1) == Decimal("0.100000")
        assert to_money(Decimal("3")) == Decimal("3.000000")


class TestCreditAndDebit:
    """credit/debit primitives"""

    def test_credit_raises_balance_and_logs_positive_entry(self, session, ledger, make_profile, fresh):
        user = make_profile(balance="1.00")

        with unit_of_work(session) as uow:
            ledger.credit(uow, user.id, Decimal("0.10"), TransactionType.EARNING.value, "Clip approved", "clip-1")

        profile = fresh(Profile, user.id)
        assert profile.balance == Decimal("1.10")
        assert profile.total_earned == Decimal("0.10")

        history = ledger.get_transaction_history(session, user.id)
        assert len(history) == 1
        assert history[0].amount == Decimal("0.10")
        assert history[0].transaction_type == "earning"
        assert history[0].reference_id == "clip-1"

    def test_non_earning_credit_leaves_total_earned(self, session, ledger, make_profile, fresh):
        user = make_profile()

        with unit_of_work(session) as uow:
            ledger.credit(uow, user.id, "25", TransactionType.TOP_UP.value, "Top-up via NGN", "ref-1")

        profile = fresh(Profile, user.id)
        assert profile.balance == Decimal("25")
        assert profile.total_earned == Decimal("0")

    def test_bonus_counts_as_earning(self, session, ledger, make_profile, fresh):
        user = make_profile()

        with unit_of_work(session) as uow:
            ledger.credit(uow, user.id, "0.005", TransactionType.BONUS.value, "Referral bonus from abc")

        assert fresh(Profile, user.id).total_earned == Decimal("0.005")

    def test_debit_logs_negative_amount(self, session, ledger, make_profile, fresh):
        user = make_profile(balance="10")

        with unit_of_work(session) as uow:
            entry = ledger.debit(uow, user.id, "4", TransactionType.PENALTY.value, "Penalty")

        assert entry.amount == Decimal("-4")
        assert fresh(Profile, user.id).balance == Decimal("6")

    def test_overdraw_violates_balance_constraint(self, session, ledger, make_profile, fresh):
        user = make_profile(balance="1")

        with pytest.raises(IntegrityError):
            with unit_of_work(session) as uow:
                ledger.debit(uow, user.id, "2", TransactionType.PENALTY.value, "Penalty")

        assert fresh(Profile, user.id).balance == Decimal("1")
        assert session.scalar(select(func.count(Transaction.id))) == 0

    @pytest.mark.parametrize("amount", ["0", "-1"])
    def test_non_positive_amount_rejected(self, session, ledger, make_profile, amount):
        user = make_profile()

        with pytest.raises(ValidationError):
            with unit_of_work(session) as uow:
                ledger.credit(uow, user.id, amount, TransactionType.EARNING.value, "nothing")

    def test_unknown_user_raises_and_logs_nothing(self, session, ledger, db_schema):
        with pytest.raises(NotFoundError) as exc_info:
            with unit_of_work(session) as uow:
                ledger.credit(uow, "ghost", "1", TransactionType.EARNING.value, "nothing")

        assert exc_info.value.reason == "user_not_found"
        assert session.scalar(select(func.count(Transaction.id))) == 0


class TestFundLocking:
    """Withdrawal fund movements"""

    def test_lock_moves_available_to_pending(self, session, ledger, make_profile, fresh):
        user = make_profile(balance="20")

        with unit_of_work(session) as uow:
            entry = ledger.lock_funds(uow, user.id, "5", "Funds locked for withdrawal request", "req-1")

        profile = fresh(Profile, user.id)
        assert profile.balance == Decimal("15")
        assert profile.pending_balance == Decimal("5")
        assert entry.transaction_type == "fund_lock"
        assert entry.amount == Decimal("-5")

    def test_release_drops_pending_without_logging(self, session, ledger, make_profile, fresh):
        user = make_profile(balance="0", pending_balance="5")

        with unit_of_work(session) as uow:
            ledger.release_locked_funds(uow, user.id, "5", "req-1")

        profile = fresh(Profile, user.id)
        assert profile.balance == Decimal("0")
        assert profile.pending_balance == Decimal("0")
        assert session.scalar(select(func.count(Transaction.id))) == 0

    def test_release_floors_pending_at_zero(self, session, ledger, make_profile, fresh):
        user = make_profile(pending_balance="2")

        with unit_of_work(session) as uow:
            ledger.release_locked_funds(uow, user.id, "5")

        assert fresh(Profile, user.id).pending_balance == Decimal("0")

    def test_refund_returns_pending_to_available(self, session, ledger, make_profile, fresh):
        user = make_profile(balance="1", pending_balance="5")

        with unit_of_work(session) as uow:
            entry = ledger.refund_locked_funds(uow, user.id, "5", "Withdrawal refund - Transfer failed", "req-1")

        profile = fresh(Profile, user.id)
        assert profile.balance == Decimal("6")
        assert profile.pending_balance == Decimal("0")
        assert entry.transaction_type == "refund"
        assert entry.amount == Decimal("5")


class TestBalanceMatchesLog:
    """Available balance equals the sum of logged amounts"""

    def test_mixed_operations_reconcile(self, session, ledger, make_profile, fresh):
        user = make_profile()

        with unit_of_work(session) as uow:
            ledger.credit(uow, user.id, "0.10", TransactionType.EARNING.value, "Clip approved")
            ledger.credit(uow, user.id, "0.014", TransactionType.EARNING.value, "Reward for validation_correct")
            ledger.credit(uow, user.id, "10", TransactionType.TOP_UP.value, "Top-up via NGN")
            ledger.debit(uow, user.id, "0.5", TransactionType.PENALTY.value, "Penalty")
            ledger.lock_funds(uow, user.id, "5", "Funds locked for withdrawal request")
            ledger.refund_locked_funds(uow, user.id, "5", "Withdrawal refund - Transfer reversed")

        logged = sum(entry.amount for entry in ledger.get_transaction_history(session, user.id, limit=100))
        profile = fresh(Profile, user.id)
        assert profile.balance == logged == Decimal("9.614")
        assert profile.pending_balance == Decimal("0")
