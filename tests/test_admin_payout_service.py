"""Admin payout processing against a mocked Paystack client"""

import re
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from models import PayoutRequest, Profile
from services.errors import ExternalProviderError, NotFoundError, ValidationError


@pytest.fixture
def paystack(services):
    services.admin_payouts.paystack.create_recipient = AsyncMock(return_value="RCP_test123")
    services.admin_payouts.paystack.initiate_transfer = AsyncMock(
        return_value={"transfer_code": "TRF_test456", "status": "pending"}
    )
    return services.admin_payouts.paystack


@pytest.fixture
def payout_request(session, services, make_profile):
    user = make_profile(balance="20")
    result = services.withdrawals.request_withdrawal(
        session, user.id, "10", "058", "0123456789", "Ada Obi", "admin-key"
    )
    return user, result


class TestProcessPayoutRequest:
    """Pushing requests to the provider"""

    @pytest.mark.asyncio
    async def test_initiates_transfer_in_kobo(self, session, services, paystack, payout_request, fresh):
        _, result = payout_request

        response = await services.admin_payouts.process_payout_request(session, result.payout_request_id)

        assert response["success"] is True
        assert response["transferCode"] == "TRF_test456"
        assert response["amountUSD"] == Decimal("10")
        assert response["amountNGN"] == Decimal("15000")
        assert re.fullmatch(rf"PAYOUT-{result.payout_request_id[:8]}-\d{{13}}", response["reference"])

        paystack.create_recipient.assert_awaited_once_with("0123456789", "058", "Ada Obi")
        args = paystack.initiate_transfer.await_args.args
        assert args[0] == "RCP_test123"
        assert args[1] == 1500000
        assert args[2] == response["reference"]
        assert args[3] == "LinguaLink Payout - Ada Obi"

        request = fresh(PayoutRequest, result.payout_request_id)
        assert request.status == "processing"
        assert request.provider_reference == response["reference"]
        assert request.provider_transfer_code == "TRF_test456"
        assert request.processed_at is not None

    @pytest.mark.asyncio
    async def test_webhook_reference_completes_processed_request(
        self, session, services, paystack, payout_request, fresh
    ):
        user, result = payout_request

        response = await services.admin_payouts.process_payout_request(session, result.payout_request_id)
        assert services.withdrawals.complete_payout_request(session, response["reference"])

        assert fresh(PayoutRequest, result.payout_request_id).status == "completed"
        assert fresh(Profile, user.id).pending_balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_provider_failure_fails_and_refunds(self, session, services, paystack, payout_request, fresh):
        user, result = payout_request
        paystack.initiate_transfer.side_effect = ExternalProviderError(
            "Paystack error: Insufficient balance", reason="provider_error"
        )

        with pytest.raises(ExternalProviderError):
            await services.admin_payouts.process_payout_request(session, result.payout_request_id)

        request = fresh(PayoutRequest, result.payout_request_id)
        assert request.status == "failed"
        assert request.failure_reason == "Paystack error: Insufficient balance"
        profile = fresh(Profile, user.id)
        assert profile.balance == Decimal("20")
        assert profile.pending_balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_final_request_not_processed(self, session, services, paystack, payout_request):
        _, result = payout_request
        services.withdrawals.complete_payout_request(session, result.reference)

        with pytest.raises(ValidationError):
            await services.admin_payouts.process_payout_request(session, result.payout_request_id)

        paystack.create_recipient.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processing_twice_sends_one_transfer(
        self, session, services, paystack, payout_request, fresh
    ):
        user, result = payout_request

        first = await services.admin_payouts.process_payout_request(session, result.payout_request_id)
        with pytest.raises(ValidationError) as exc_info:
            await services.admin_payouts.process_payout_request(session, result.payout_request_id)

        assert exc_info.value.reason == "payout_already_processing"
        assert paystack.initiate_transfer.await_count == 1
        assert fresh(PayoutRequest, result.payout_request_id).provider_reference == first["reference"]

        assert services.withdrawals.complete_payout_request(session, first["reference"])
        assert fresh(PayoutRequest, result.payout_request_id).status == "completed"
        assert fresh(Profile, user.id).pending_balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_request_claimed_before_provider_call(self, session, services, paystack, payout_request, fresh):
        _, result = payout_request
        seen = {}

        async def create_recipient(*args):
            request = fresh(PayoutRequest, result.payout_request_id)
            seen["status"] = request.status
            seen["reference"] = request.provider_reference
            return "RCP_test123"

        paystack.create_recipient.side_effect = create_recipient

        response = await services.admin_payouts.process_payout_request(session, result.payout_request_id)

        assert seen == {"status": "processing", "reference": response["reference"]}

    @pytest.mark.asyncio
    async def test_undecryptable_account_stays_pending(self, session, services, paystack, payout_request, fresh):
        _, result = payout_request
        request = session.get(PayoutRequest, result.payout_request_id)
        request.account_number = "not-a-fernet-token"
        session.commit()

        with pytest.raises(ValidationError):
            await services.admin_payouts.process_payout_request(session, result.payout_request_id)

        request = fresh(PayoutRequest, result.payout_request_id)
        assert request.status == "pending"
        assert request.provider_reference == result.reference
        paystack.create_recipient.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_request(self, session, services, paystack):
        with pytest.raises(NotFoundError):
            await services.admin_payouts.process_payout_request(session, "missing")

    @pytest.mark.asyncio
    async def test_undecryptable_account_number(self, session, services, paystack, payout_request):
        _, result = payout_request
        request = session.get(PayoutRequest, result.payout_request_id)
        request.account_number = "not-a-fernet-token"
        session.commit()

        with pytest.raises(ValidationError) as exc_info:
            await services.admin_payouts.process_payout_request(session, result.payout_request_id)

        assert exc_info.value.reason == "account_decrypt_failed"


class TestRejectAndList:
    def test_reject_refunds(self, session, services, payout_request, fresh):
        user, result = payout_request

        response = services.admin_payouts.reject_payout_request(session, result.payout_request_id, "Fraud check")

        assert response["status"] == "refunded"
        assert response["refundAmount"] == Decimal("10")
        assert fresh(Profile, user.id).balance == Decimal("20")

    def test_list_pending(self, session, services, payout_request):
        _, result = payout_request

        pending = services.admin_payouts.list_pending_requests(session)

        assert [r.id for r in pending] == [result.payout_request_id]
