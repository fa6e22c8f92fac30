"""
Paystack Service
NGN bank transfers for withdrawals, transaction initialization for top-ups and
signature verification for webhook callbacks
"""

import asyncio
import hashlib
import hmac
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from config import Config
from services.errors import ConfigurationError, ExternalProviderError

logger = logging.getLogger(__name__)


class PaystackService:
    """Thin async client over the Paystack REST API"""

    def __init__(self, secret_key: Optional[str] = None, base_url: Optional[str] = None):
        self.secret_key = secret_key if secret_key is not None else Config.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or Config.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout_seconds = Config.PAYSTACK_TIMEOUT_SECONDS

        if not self.secret_key:
            logger.warning("⚠️ Paystack secret key not configured - transfers unavailable")

    def is_available(self) -> bool:
        """Check if Paystack service is properly configured"""
        return bool(self.secret_key)

    async def _make_request(
        self, method: str, endpoint: str, data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Make an authenticated request; any non-success answer raises ExternalProviderError"""
        if not self.secret_key:
            raise ConfigurationError("PAYSTACK_SECRET_KEY is not configured", reason="provider_not_configured")

        url = f"{self.base_url}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method, url, headers=headers, json=data, timeout=timeout
                ) as response:
                    response_data = await response.json(content_type=None)
                    status_code = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            error_detail = str(e) or type(e).__name__
            logger.error(f"❌ PAYSTACK_NETWORK_ERROR: {method} {endpoint} - {error_detail}")
            raise ExternalProviderError(
                f"Paystack request failed: {error_detail}", reason="provider_unreachable"
            ) from e

        if status_code >= 400 or not (response_data or {}).get("status"):
            message = (response_data or {}).get("message") or f"HTTP {status_code}"
            logger.error(f"❌ PAYSTACK_API_ERROR: {method} {endpoint} - {status_code} {message}")
            raise ExternalProviderError(f"Paystack error: {message}", reason="provider_error")

        return response_data

    async def create_recipient(self, account_number: str, bank_code: str, name: str) -> str:
        """Register a NUBAN transfer recipient and return its recipient_code"""
        response = await self._make_request("POST", "/transferrecipient", {
            "type": "nuban",
            "name": name,
            "account_number": account_number,
            "bank_code": bank_code,
            "currency": "NGN",
        })
        recipient_code = (response.get("data") or {}).get("recipient_code")
        if not recipient_code:
            raise ExternalProviderError("Paystack returned no recipient code", reason="provider_error")

        logger.info(f"🏦 PAYSTACK_RECIPIENT_CREATED: {recipient_code} for bank {bank_code}")
        return recipient_code

    async def initiate_transfer(
        self, recipient_code: str, amount_minor_units: int, reference: str, reason: str
    ) -> Dict[str, Any]:
        """Start a balance-funded transfer; amount is in kobo"""
        response = await self._make_request("POST", "/transfer", {
            "source": "balance",
            "amount": int(amount_minor_units),
            "recipient": recipient_code,
            "reference": reference,
            "reason": reason,
        })
        data = response.get("data") or {}

        logger.info(
            f"💸 PAYSTACK_TRANSFER_INITIATED: {reference} - {amount_minor_units} kobo "
            f"(status: {data.get('status')})"
        )
        return {"transfer_code": data.get("transfer_code"), "status": data.get("status")}

    async def initialize_transaction(
        self, email: str, amount_minor_units: int, metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Create a checkout for a wallet top-up"""
        response = await self._make_request("POST", "/transaction/initialize", {
            "email": email,
            "amount": int(amount_minor_units),
            "callback_url": Config.PAYSTACK_CALLBACK_URL,
            "metadata": metadata or {},
        })
        data = response.get("data") or {}
        logger.info(f"🧾 PAYSTACK_TRANSACTION_INITIALIZED: {data.get('reference')}")
        return {
            "authorization_url": data.get("authorization_url"),
            "access_code": data.get("access_code"),
            "reference": data.get("reference"),
        }

    async def resolve_account(self, account_number: str, bank_code: str) -> Dict[str, Any]:
        response = await self._make_request(
            "GET", f"/bank/resolve?account_number={account_number}&bank_code={bank_code}"
        )
        data = response.get("data") or {}
        return {"account_name": data.get("account_name"), "account_number": data.get("account_number")}

    async def list_banks(self) -> List[Dict[str, Any]]:
        response = await self._make_request("GET", "/bank?country=nigeria&currency=NGN")
        banks = response.get("data") or []
        logger.info(f"✅ Got {len(banks)} banks from Paystack")
        return [{"code": bank.get("code"), "name": bank.get("name")} for bank in banks]

    @staticmethod
    def verify_signature(body: bytes, signature: Optional[str], secret_key: Optional[str] = None) -> bool:
        """HMAC-SHA512 of the raw body with the secret key, compared in constant time"""
        secret_key = secret_key if secret_key is not None else Config.PAYSTACK_SECRET_KEY
        if not secret_key or not signature:
            return False

        expected = hmac.new(secret_key.encode("utf-8"), body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)
