"""
Shared fixtures for the settlement engine test suite.

Every test runs against a fresh in-memory SQLite schema on the shared StaticPool
connection, with services built from real components (only provider HTTP is mocked).
"""

import os

# Environment must be in place before config/database are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-for-account-numbers"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_settlement_secret"
os.environ.pop("USD_TO_NGN_RATE", None)

import uuid
from decimal import Decimal
from typing import Optional

import pytest

from database import SessionLocal, engine
from models import Base, Profile, VoiceClip, ClipStatus, UserRole
from services.container import build_services, set_services
from services.exchange_rate_service import ExchangeRateService
from services.paystack_service import PaystackService
from services.reward_rate_cache import RewardRateCache, seed_default_rates
from services.validation_service import CooldownTracker


@pytest.fixture
def db_schema():
    """Create all tables for one test and drop them afterwards"""
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session(db_schema):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


@pytest.fixture
def seeded_rates(session):
    """Default reward rates: validation_correct 0.01, clip_approved 0.10"""
    seed_default_rates(session)
    session.commit()
    return session


@pytest.fixture
def services(db_schema):
    """Fully wired services with no cooldown and a fixed exchange rate"""
    exchange_rates = ExchangeRateService()
    # Pin the rate for the lifetime of the test
    exchange_rates._cached_rate = Decimal("1500")
    exchange_rates._cached_at = exchange_rates._clock()

    container = build_services(
        rate_cache=RewardRateCache(),
        cooldown=CooldownTracker(interval_seconds=0),
        paystack=PaystackService(secret_key="sk_test_settlement_secret"),
        exchange_rates=exchange_rates,
    )
    set_services(container)
    yield container
    set_services(None)


@pytest.fixture
def make_profile(session):
    """Factory for committed profiles"""

    def _make_profile(
        profile_id: Optional[str] = None,
        balance: str = "0",
        role: str = UserRole.USER.value,
        trust_score: int = 100,
        referred_by_id: Optional[str] = None,
        spoken_languages=None,
        **extra,
    ) -> Profile:
        profile = Profile(
            id=profile_id or f"user-{uuid.uuid4().hex[:12]}",
            username=extra.pop("username", None),
            balance=Decimal(balance),
            pending_balance=Decimal(extra.pop("pending_balance", "0")),
            total_earned=Decimal("0"),
            role=role,
            trust_score=trust_score,
            referred_by_id=referred_by_id,
            spoken_languages=spoken_languages,
            **extra,
        )
        session.add(profile)
        session.commit()
        return profile

    return _make_profile


@pytest.fixture
def make_clip(session):
    """Factory for committed voice clips"""

    def _make_clip(
        owner_id: str,
        language: str = "yoruba",
        dialect: Optional[str] = None,
        parent_clip_id: Optional[str] = None,
        status: str = ClipStatus.PENDING.value,
    ) -> VoiceClip:
        clip = VoiceClip(
            user_id=owner_id,
            phrase="Ẹ kú àárọ̀",
            language=language,
            dialect=dialect,
            parent_clip_id=parent_clip_id,
            root_clip_id=parent_clip_id,
            status=status,
        )
        session.add(clip)
        session.commit()
        return clip

    return _make_clip


@pytest.fixture
def fresh(session):
    """Re-read a row from the database, bypassing the identity map"""

    def _fresh(model, pk):
        session.expire_all()
        return session.get(model, pk)

    return _fresh
