"""Reward rate cache: TTL refresh, forced refresh on miss and missing-rate errors"""

from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy import update

from models import RewardRate
from services.errors import ConfigurationError
from services.reward_rate_cache import RewardRateCache, seed_default_rates


class TestRewardRateCache:
    """Read-through behaviour against the reward_rates table"""

    def test_returns_seeded_rates(self, seeded_rates):
        cache = RewardRateCache()

        assert cache.get_rate(seeded_rates, "validation_correct") == Decimal("0.01")
        assert cache.get_rate(seeded_rates, "clip_approved") == Decimal("0.10")

    def test_serves_cached_value_until_ttl_expires(self, seeded_rates):
        session = seeded_rates
        clock = Mock(return_value=1000.0)
        cache = RewardRateCache(ttl_seconds=60, clock=clock)
        assert cache.get_rate(session, "clip_approved") == Decimal("0.10")

        session.execute(
            update(RewardRate)
            .where(RewardRate.action_type == "clip_approved")
            .values(amount=Decimal("0.20"))
        )
        session.commit()
        session.expire_all()

        clock.return_value = 1059.0
        assert cache.get_rate(session, "clip_approved") == Decimal("0.10")

        clock.return_value = 1061.0
        assert cache.get_rate(session, "clip_approved") == Decimal("0.20")

    def test_miss_forces_refresh(self, seeded_rates):
        session = seeded_rates
        cache = RewardRateCache(ttl_seconds=3600)
        cache.get_rate(session, "clip_approved")

        session.add(RewardRate(action_type="streak_bonus", amount=Decimal("0.50"), is_active=True))
        session.commit()

        assert cache.get_rate(session, "streak_bonus") == Decimal("0.50")

    def test_missing_rate_is_configuration_error(self, seeded_rates):
        cache = RewardRateCache()

        with pytest.raises(ConfigurationError) as exc_info:
            cache.get_rate(seeded_rates, "unknown_action")

        assert exc_info.value.reason == "reward_rate_missing"
        assert exc_info.value.http_status == 500

    def test_inactive_rows_are_ignored(self, session):
        session.add(RewardRate(action_type="clip_approved", amount=Decimal("0.10"), is_active=False))
        session.commit()

        with pytest.raises(ConfigurationError):
            RewardRateCache().get_rate(session, "clip_approved")

    def test_invalidate_forces_reload(self, seeded_rates):
        session = seeded_rates
        cache = RewardRateCache(ttl_seconds=3600)
        cache.get_rate(session, "validation_correct")
        assert cache.is_fresh()

        cache.invalidate()
        assert not cache.is_fresh()


class TestSeedDefaultRates:
    """Seeding only fills gaps"""

    def test_seeding_is_idempotent(self, session):
        assert seed_default_rates(session) == 4
        session.commit()
        assert seed_default_rates(session) == 0
