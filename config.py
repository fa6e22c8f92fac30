"""Configuration settings for the LinguaLink settlement engine"""

import os
import logging
from decimal import Decimal
from typing import Dict

logger = logging.getLogger(__name__)


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    # Database Configuration
    DATABASE_URL = os.getenv("DATABASE_URL")
    DATABASE_POOL_SIZE = int(os.getenv("DATABASE_POOL_SIZE", "7"))
    DATABASE_MAX_OVERFLOW = int(os.getenv("DATABASE_MAX_OVERFLOW", "15"))
    DATABASE_ECHO = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # Consensus Configuration
    CONSENSUS_THRESHOLD = int(os.getenv("CONSENSUS_THRESHOLD", "3"))
    VALIDATION_COOLDOWN_SECONDS = float(os.getenv("VALIDATION_COOLDOWN_SECONDS", "5"))
    COOLDOWN_TRACKER_MAX_ENTRIES = int(os.getenv("COOLDOWN_TRACKER_MAX_ENTRIES", "10000"))

    # Trust Score Configuration
    TRUST_SCORE_DEFAULT = 100
    TRUST_SCORE_MIN = 0
    TRUST_SCORE_MAX = 200
    TRUST_SCORE_INCREASE_CORRECT = int(os.getenv("TRUST_SCORE_INCREASE_CORRECT", "2"))
    TRUST_SCORE_DECREASE_WRONG = int(os.getenv("TRUST_SCORE_DECREASE_WRONG", "5"))

    # Validator tiers (trust score thresholds)
    TIER_SILVER_THRESHOLD = 120
    TIER_GOLD_THRESHOLD = 160

    # Reward Configuration
    REWARD_RATE_CACHE_TTL_SECONDS = float(os.getenv("REWARD_RATE_CACHE_TTL_SECONDS", "60"))

    # Seed values for reward_rates; runtime lookups only ever read the table
    DEFAULT_REWARD_RATES: Dict[str, Decimal] = {
        "validation_correct": Decimal("0.01"),
        "validation_incorrect": Decimal("0.005"),
        "clip_approved": Decimal("0.10"),
        "remix_royalty": Decimal("0.03"),
    }

    VALIDATOR_REWARD_MULTIPLIER = Decimal(os.getenv("VALIDATOR_REWARD_MULTIPLIER", "1.4"))
    AMBASSADOR_REWARD_MULTIPLIER = Decimal(os.getenv("AMBASSADOR_REWARD_MULTIPLIER", "1.5"))
    REFERRAL_KICKBACK_RATE = Decimal(os.getenv("REFERRAL_KICKBACK_RATE", "0.05"))
    REMIXER_SHARE = Decimal(os.getenv("REMIXER_SHARE", "0.7"))
    REMIX_CHAIN_MAX_DEPTH = 10

    # Ledger amounts are stored with 6 decimal places
    MONEY_PRECISION = Decimal("0.000001")

    # Withdrawal Configuration
    WITHDRAWAL_MIN_AMOUNT = Decimal(os.getenv("WITHDRAWAL_MIN_AMOUNT", "5.00"))
    WITHDRAWAL_DAILY_LIMIT = Decimal(os.getenv("WITHDRAWAL_DAILY_LIMIT", "1000.00"))

    # Exchange Rate Configuration
    USD_TO_NGN_RATE = os.getenv("USD_TO_NGN_RATE")
    DEFAULT_USD_TO_NGN_RATE = Decimal("1500")
    EXCHANGE_RATE_CACHE_TTL_SECONDS = int(os.getenv("EXCHANGE_RATE_CACHE_TTL_SECONDS", "3600"))
    EXCHANGE_RATE_API_KEY = os.getenv("EXCHANGE_RATE_API_KEY")
    EXCHANGE_RATE_TIMEOUT_SECONDS = 5

    # Paystack Configuration (NGN transfers and top-ups)
    PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY")
    PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
    PAYSTACK_CALLBACK_URL = os.getenv(
        "PAYSTACK_CALLBACK_URL", "https://lingualink-app.com/payment/callback"
    )
    PAYSTACK_TIMEOUT_SECONDS = int(os.getenv("PAYSTACK_TIMEOUT_SECONDS", "30"))

    # Encryption for stored bank account numbers
    ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY")
    ENCRYPTION_SALT = os.getenv("ENCRYPTION_SALT", "lingualink-account-numbers").encode("utf-8")

    # Validator promotion criteria
    VALIDATOR_MIN_VALIDATIONS = int(os.getenv("VALIDATOR_MIN_VALIDATIONS", "200"))
    VALIDATOR_MIN_ACCURACY = Decimal(os.getenv("VALIDATOR_MIN_ACCURACY", "90.0"))
    VALIDATOR_MIN_ACTIVE_DAYS = int(os.getenv("VALIDATOR_MIN_ACTIVE_DAYS", "10"))
    VALIDATOR_DEMOTION_ACCURACY = Decimal(os.getenv("VALIDATOR_DEMOTION_ACCURACY", "85.0"))
    VALIDATORS_PER_CLIP = 3

    @classmethod
    def log_configuration(cls) -> None:
        """Log the non-secret parts of the configuration at startup"""
        logger.info(
            f"🔧 CONFIG: environment={cls.ENVIRONMENT} "
            f"consensus_threshold={cls.CONSENSUS_THRESHOLD} "
            f"cooldown={cls.VALIDATION_COOLDOWN_SECONDS}s "
            f"withdrawal_min=${cls.WITHDRAWAL_MIN_AMOUNT} "
            f"withdrawal_daily_limit=${cls.WITHDRAWAL_DAILY_LIMIT}"
        )
        if not cls.PAYSTACK_SECRET_KEY:
            logger.warning("⚠️ PAYSTACK_SECRET_KEY not set - transfers and webhook verification disabled")
        if not cls.ENCRYPTION_KEY:
            logger.warning("⚠️ ENCRYPTION_KEY not set - account numbers cannot be stored")
