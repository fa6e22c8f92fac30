"""
Validator Assignment
Picks validators for a new clip by dialect, reputation and today's load, and writes
their validation queue entries
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import Config
from models import Profile, QueueStatus, UserRole, Validation, ValidationQueue, utc_now
from utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class ValidatorCandidate:
    validator_id: str
    accuracy: float
    trust: float
    today_load: int

    @property
    def score(self) -> float:
        # Favors accurate, trusted validators who are not already busy today
        return (self.accuracy * self.trust) / (self.today_load + 1)


def speaks_dialect(verified_dialects: Optional[List[str]], dialect: Optional[str]) -> bool:
    if not dialect:
        return False
    wanted = dialect.strip().lower()
    return any((d or "").strip().lower() == wanted for d in (verified_dialects or []))


class ValidatorAssignmentService:
    def __init__(self, validators_per_clip: Optional[int] = None):
        self.validators_per_clip = validators_per_clip or Config.VALIDATORS_PER_CLIP

    def assign_validators(
        self, session: Session, clip_id: str, dialect: Optional[str], clip_owner_id: str
    ) -> List[str]:
        """Queue the top-scoring validators for a clip; returns their ids"""
        pool = session.execute(
            select(Profile).where(Profile.role == UserRole.VALIDATOR.value, Profile.id != clip_owner_id)
        ).scalars().all()

        candidates = [p for p in pool if speaks_dialect(p.verified_dialects, dialect)]
        if len(candidates) < self.validators_per_clip:
            logger.warning(f"⚠️ ASSIGNMENT_FALLBACK: not enough validators for dialect {dialect} - using general pool")
            candidates = list(pool)

        if not candidates:
            logger.error(f"❌ NO_VALIDATORS_AVAILABLE: clip {clip_id} left unassigned")
            return []

        loads = self._today_loads(session, [p.id for p in candidates])
        scored = [
            ValidatorCandidate(
                validator_id=p.id,
                accuracy=float(p.accuracy_rating or 0),
                trust=float(p.trust_score or 0),
                today_load=loads.get(p.id, 0),
            )
            for p in candidates
        ]
        scored.sort(key=lambda c: c.score, reverse=True)
        selected = [c.validator_id for c in scored[:self.validators_per_clip]]

        with unit_of_work(session) as uow:
            already_queued = set(uow.session.execute(
                select(ValidationQueue.validator_id).where(ValidationQueue.voice_clip_id == clip_id)
            ).scalars())
            for validator_id in selected:
                if validator_id in already_queued:
                    continue
                uow.session.add(ValidationQueue(
                    voice_clip_id=clip_id,
                    validator_id=validator_id,
                    status=QueueStatus.PENDING.value,
                    priority=1,
                ))
            uow.flush()

        logger.info(f"📋 VALIDATORS_ASSIGNED: clip {clip_id} -> {', '.join(selected)}")
        return selected

    @staticmethod
    def _today_loads(session: Session, validator_ids: List[str]) -> Dict[str, int]:
        start_of_day = utc_now().replace(hour=0, minute=0, second=0, microsecond=0)
        rows = session.execute(
            select(Validation.validator_id, func.count(Validation.id))
            .where(Validation.validator_id.in_(validator_ids), Validation.created_at >= start_of_day)
            .group_by(Validation.validator_id)
        ).all()
        return {validator_id: int(count) for validator_id, count in rows}
