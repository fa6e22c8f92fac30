"""
Reward Rate Cache
Read-through cache of active reward amounts per action type with a wall-clock TTL.
Constructed once per process and injected into the payout engine.
"""

import logging
import threading
import time
from decimal import Decimal
from typing import Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import Config
from models import RewardRate
from services.errors import ConfigurationError

logger = logging.getLogger(__name__)


class RewardRateCache:
    """Active reward rates, rebuilt wholesale on refresh"""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = Config.REWARD_RATE_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._rates: Dict[str, Decimal] = {}
        self._refreshed_at: Optional[float] = None
        self._lock = threading.Lock()

    def is_fresh(self) -> bool:
        if self._refreshed_at is None:
            return False
        return self._clock() - self._refreshed_at < self.ttl_seconds

    def refresh(self, session: Session) -> Dict[str, Decimal]:
        """Reload every active rate from the table and swap the cache in one step"""
        rows = session.execute(
            select(RewardRate).where(RewardRate.is_active.is_(True)).order_by(RewardRate.created_at, RewardRate.id)
        ).scalars().all()

        # Newest active row wins when several are active for one action
        rates = {row.action_type: Decimal(str(row.amount)) for row in rows}

        with self._lock:
            self._rates = rates
            self._refreshed_at = self._clock()

        logger.debug(f"🔄 REWARD_RATES_REFRESHED: {len(rates)} active rates")
        return dict(rates)

    def get_rate(self, session: Session, action_type: str) -> Decimal:
        """
        Return the active amount for an action type.

        A stale cache is refreshed first. A miss on a fresh cache forces one more
        synchronous refresh; a rate that is still missing is a configuration error.
        """
        if not self.is_fresh():
            self.refresh(session)

        with self._lock:
            rate = self._rates.get(action_type)
        if rate is not None:
            return rate

        logger.warning(f"⚠️ REWARD_RATE_MISS: {action_type} not cached - forcing refresh")
        rate = self.refresh(session).get(action_type)
        if rate is None:
            logger.critical(f"🚨 REWARD_RATE_MISSING: No active reward rate configured for '{action_type}'")
            raise ConfigurationError(
                f"No active reward rate configured for '{action_type}'", reason="reward_rate_missing"
            )
        return rate

    def invalidate(self) -> None:
        with self._lock:
            self._refreshed_at = None


def seed_default_rates(session: Session) -> int:
    """Insert an active row for every default action type that has none"""
    active = set(session.execute(
        select(RewardRate.action_type).where(RewardRate.is_active.is_(True))
    ).scalars())

    created = 0
    for action_type, amount in Config.DEFAULT_REWARD_RATES.items():
        if action_type in active:
            continue
        session.add(RewardRate(action_type=action_type, amount=amount, is_active=True))
        created += 1

    if created:
        session.flush()
        logger.info(f"🌱 REWARD_RATES_SEEDED: {created} default rates inserted")
    return created
