"""
Validation Submission Handler
Checks a validator's eligibility, records the vote with its progression counters and
hands the clip to the consensus engine
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Config
from models import ClipStatus, Profile, Validation, VoiceClip, utc_now
from services import errors
from services.consensus_service import ConsensusService
from services.errors import (
    ConflictError, ForbiddenError, NotFoundError, RateLimitedError, ValidationError
)
from services.notification_outbox import NotificationEvent, NotificationOutboxService
from utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


class CooldownTracker:
    """
    Best-effort per-validator cooldown timestamps.

    Lives for the lifetime of the process and is lost on restart; it deters
    submission bursts and is not part of any correctness guarantee. Entries older
    than the interval are evicted once the map grows past max_entries.
    """

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval_seconds = (
            Config.VALIDATION_COOLDOWN_SECONDS if interval_seconds is None else interval_seconds
        )
        self.max_entries = max_entries or Config.COOLDOWN_TRACKER_MAX_ENTRIES
        self._clock = clock
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def check(self, validator_id: str) -> None:
        with self._lock:
            last = self._last_seen.get(validator_id)
        if last is not None and self._clock() - last < self.interval_seconds:
            raise RateLimitedError(errors.RATE_LIMITED, reason="rate_limited")

    def record(self, validator_id: str) -> None:
        with self._lock:
            self._last_seen[validator_id] = self._clock()
            if len(self._last_seen) > self.max_entries:
                self._evict_expired()

    def prune(self) -> int:
        with self._lock:
            return self._evict_expired()

    def __len__(self) -> int:
        return len(self._last_seen)

    def _evict_expired(self) -> int:
        now = self._clock()
        expired = [k for k, ts in self._last_seen.items() if now - ts >= self.interval_seconds]
        for key in expired:
            del self._last_seen[key]
        return len(expired)


@dataclass
class ValidationResult:
    """Response for a vote submission"""
    success: bool
    validation_id: str
    message: str
    consensus_reached: bool


def languages_match(declared: Optional[List[str]], clip_language: str, clip_dialect: Optional[str] = None) -> bool:
    """
    Case-insensitive substring match between any declared language and the clip's
    language or dialect. Validators with no declared languages always match.
    """
    declared = [lang.strip().lower() for lang in (declared or []) if lang and lang.strip()]
    if not declared:
        return True

    tags = [t.strip().lower() for t in (clip_language, clip_dialect) if t and t.strip()]
    return any(lang in tag or tag in lang for lang in declared for tag in tags)


class ValidationService:
    """Entry point for validator votes"""

    def __init__(
        self,
        consensus: ConsensusService,
        outbox: NotificationOutboxService,
        cooldown: CooldownTracker,
    ):
        self.consensus = consensus
        self.outbox = outbox
        self.cooldown = cooldown

    def submit_validation(
        self,
        session: Session,
        validator_id: str,
        clip_id: str,
        is_approved: bool,
        feedback: Optional[str] = None,
    ) -> ValidationResult:
        self.cooldown.check(validator_id)

        try:
            with unit_of_work(session) as uow:
                clip = uow.session.get(VoiceClip, clip_id)
                if clip is None:
                    raise NotFoundError(errors.CLIP_NOT_FOUND, reason="clip_not_found")

                if clip.user_id == validator_id:
                    raise ForbiddenError(errors.CANNOT_VALIDATE_OWN_CLIP, reason="own_clip")

                existing = uow.session.scalar(
                    select(Validation.id).where(
                        Validation.voice_clip_id == clip_id, Validation.validator_id == validator_id
                    )
                )
                if existing is not None:
                    raise ConflictError(errors.ALREADY_VALIDATED, reason="already_validated")

                profile = uow.session.execute(
                    select(Profile)
                    .where(Profile.id == validator_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
                if profile is None:
                    raise NotFoundError(errors.USER_NOT_FOUND, reason="user_not_found")

                trust = Config.TRUST_SCORE_DEFAULT if profile.trust_score is None else profile.trust_score
                if trust <= Config.TRUST_SCORE_MIN:
                    raise ForbiddenError(errors.INSUFFICIENT_TRUST, reason="insufficient_trust")

                if not languages_match(profile.spoken_languages, clip.language, clip.dialect):
                    raise ValidationError(errors.LANGUAGE_MISMATCH, reason="language_mismatch")

                validation = Validation(
                    voice_clip_id=clip_id,
                    validator_id=validator_id,
                    is_approved=is_approved,
                    feedback=feedback,
                )
                uow.session.add(validation)
                uow.flush()

                self._update_progression(profile, utc_now())
                uow.session.execute(
                    update(VoiceClip)
                    .where(VoiceClip.id == clip_id)
                    .values(validations_count=VoiceClip.validations_count + 1)
                    .execution_options(synchronize_session=False)
                )
                self.outbox.enqueue(uow, NotificationEvent.VALIDATION_PROCESSED, {
                    "validatorId": validator_id,
                    "clipId": clip_id,
                    "validationId": validation.id,
                })
        except IntegrityError:
            # Concurrent duplicate lost the race on uq_validation_clip_validator
            logger.warning(f"⚠️ DUPLICATE_VALIDATION: {validator_id} on clip {clip_id}")
            raise ConflictError(errors.ALREADY_VALIDATED, reason="already_validated")

        self.cooldown.record(validator_id)

        result = self.consensus.check_consensus(session, clip_id)

        logger.info(f"✅ VALIDATION_RECORDED: {validation.id} by {validator_id} for clip {clip_id}")

        if result.consensus_reached:
            outcome = "Approved" if result.final_decision else "Rejected"
            message = f"Validation recorded! Consensus reached: {outcome}"
        else:
            message = "Validation recorded. Waiting for more validators."

        return ValidationResult(
            success=True,
            validation_id=validation.id,
            message=message,
            consensus_reached=result.consensus_reached,
        )

    @staticmethod
    def _update_progression(profile: Profile, now: datetime) -> None:
        """Daily counter resets at the start of the UTC day; active days count once per day"""
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

        if profile.last_validation_reset_at is None or profile.last_validation_reset_at < start_of_day:
            profile.daily_validations_count = 1
            profile.last_validation_reset_at = now
        else:
            profile.daily_validations_count = (profile.daily_validations_count or 0) + 1

        profile.total_validations_count = (profile.total_validations_count or 0) + 1

        if profile.last_active_date != now.date():
            profile.active_days_count = (profile.active_days_count or 0) + 1
            profile.last_active_date = now.date()

    def get_validation_queue(self, session: Session, validator_id: str, limit: int = 10) -> List[VoiceClip]:
        """Pending clips the validator neither owns nor voted on, least-validated first"""
        already_voted = (
            select(Validation.id)
            .where(and_(Validation.voice_clip_id == VoiceClip.id, Validation.validator_id == validator_id))
            .exists()
        )
        return list(session.execute(
            select(VoiceClip)
            .where(
                VoiceClip.status == ClipStatus.PENDING.value,
                VoiceClip.user_id != validator_id,
                ~already_voted,
            )
            .order_by(VoiceClip.validations_count, VoiceClip.created_at)
            .limit(limit)
        ).scalars())

    def get_validation_history(self, session: Session, validator_id: str, limit: int = 20) -> List[Validation]:
        return list(session.execute(
            select(Validation)
            .where(Validation.validator_id == validator_id)
            .order_by(Validation.created_at.desc())
            .limit(limit)
        ).scalars())

