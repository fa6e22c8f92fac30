"""
Consensus Engine
Decides whether a clip's votes have reached a majority and settles the outcome exactly
once: clip status, validator rewards, trust adjustments, owner/remix payouts and the
outbox rows describing it all commit or roll back together.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from config import Config
from models import (
    ClipStatus, Profile, RewardAction, Validation, ValidatorTier, VoiceClip, utc_now
)
from services.errors import NotFoundError, CLIP_NOT_FOUND
from services.notification_outbox import NotificationEvent, NotificationOutboxService
from services.payout_service import PayoutService
from services.remix_service import RemixService
from utils.unit_of_work import UnitOfWork, unit_of_work

logger = logging.getLogger(__name__)


def majority_threshold(consensus_threshold: int) -> int:
    """Votes needed on one side to settle: ceil(T/2) + 1"""
    return math.ceil(consensus_threshold / 2) + 1


@dataclass
class ConsensusResult:
    """Outcome of a consensus check"""
    consensus_reached: bool
    final_decision: Optional[bool] = None  # True = approved, False = rejected
    validators_to_pay: List[str] = field(default_factory=list)
    outliers_to_penalize: List[str] = field(default_factory=list)
    settled: bool = False  # False when another submission already settled the clip


class ConsensusService:
    """Quorum detection and single-transaction settlement"""

    def __init__(
        self,
        payout: PayoutService,
        remix: RemixService,
        outbox: NotificationOutboxService,
        consensus_threshold: Optional[int] = None,
    ):
        self.payout = payout
        self.remix = remix
        self.outbox = outbox
        self.consensus_threshold = consensus_threshold or Config.CONSENSUS_THRESHOLD

    def evaluate(self, votes: Iterable[Validation]) -> ConsensusResult:
        """Pure decision over a clip's votes"""
        votes = list(votes)
        if len(votes) < self.consensus_threshold:
            return ConsensusResult(consensus_reached=False)

        approvals = [v.validator_id for v in votes if v.is_approved]
        rejections = [v.validator_id for v in votes if not v.is_approved]
        majority = majority_threshold(self.consensus_threshold)

        if len(approvals) >= majority:
            return ConsensusResult(True, True, approvals, rejections)
        if len(rejections) >= majority:
            return ConsensusResult(True, False, rejections, approvals)
        return ConsensusResult(consensus_reached=False)

    def check_consensus(self, session: Session, clip_id: str) -> ConsensusResult:
        """Evaluate the clip's votes and settle if a majority exists"""
        votes = session.execute(
            select(Validation).where(Validation.voice_clip_id == clip_id).order_by(Validation.created_at)
        ).scalars().all()

        result = self.evaluate(votes)
        if not result.consensus_reached:
            approvals = sum(1 for v in votes if v.is_approved)
            # Split votes beyond the threshold stay pending until more validators weigh in
            logger.debug(
                f"Clip {clip_id}: no consensus yet ({len(votes)} votes, A:{approvals} R:{len(votes) - approvals})"
            )
            return result

        decision = "APPROVED" if result.final_decision else "REJECTED"
        logger.info(f"🗳️ CONSENSUS_REACHED: clip {clip_id} {decision}")

        try:
            result.settled = self._settle(session, clip_id, result)
        except Exception as e:
            logger.error(f"❌ CONSENSUS_SETTLEMENT_FAILED: clip {clip_id} rolled back: {e}")
            raise

        return result

    def _settle(self, session: Session, clip_id: str, result: ConsensusResult) -> bool:
        with unit_of_work(session) as uow:
            clip = uow.session.execute(
                select(VoiceClip)
                .where(VoiceClip.id == clip_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if clip is None:
                raise NotFoundError(CLIP_NOT_FOUND, reason="clip_not_found")

            if clip.status != ClipStatus.PENDING.value:
                logger.warning(f"⚠️ CONSENSUS_ALREADY_SETTLED: clip {clip_id} is {clip.status} - skipping")
                return False

            new_status = ClipStatus.APPROVED.value if result.final_decision else ClipStatus.REJECTED.value
            transition = uow.session.execute(
                update(VoiceClip)
                .where(VoiceClip.id == clip_id, VoiceClip.status == ClipStatus.PENDING.value)
                .values(status=new_status)
                .execution_options(synchronize_session=False)
            )
            if transition.rowcount == 0:
                logger.warning(f"⚠️ CONSENSUS_ALREADY_SETTLED: clip {clip_id} changed concurrently - skipping")
                return False

            for validator_id in result.validators_to_pay:
                self.payout.credit_validator_reward(uow, validator_id, clip_id)
                self._adjust_trust(uow, validator_id, Config.TRUST_SCORE_INCREASE_CORRECT, agreed=True)

            for validator_id in result.outliers_to_penalize:
                self._adjust_trust(uow, validator_id, -Config.TRUST_SCORE_DECREASE_WRONG, agreed=False)

            if result.final_decision:
                self._pay_owner(uow, clip)
            else:
                self.outbox.enqueue(uow, NotificationEvent.CLIP_REJECTED, {
                    "userId": clip.user_id,
                    "clipId": clip_id,
                })

        logger.info(
            f"✅ CONSENSUS_SETTLED: clip {clip_id} {new_status} - "
            f"{len(result.validators_to_pay)} rewarded, {len(result.outliers_to_penalize)} penalized"
        )
        return True

    def _pay_owner(self, uow: UnitOfWork, clip: VoiceClip) -> None:
        parent = uow.session.get(VoiceClip, clip.parent_clip_id) if clip.parent_clip_id else None

        if parent is not None:
            base_reward = self.payout.get_rate(uow, RewardAction.CLIP_APPROVED)
            split = self.remix.process_remix_royalty(uow, clip.id, clip.user_id, parent.user_id, base_reward)
            self.outbox.enqueue(uow, NotificationEvent.CLIP_APPROVED, {
                "userId": clip.user_id,
                "clipId": clip.id,
                "rewardAmount": str(split.remixer_amount),
            })
            self.outbox.enqueue(uow, NotificationEvent.ROYALTY_RECEIVED, {
                "userId": parent.user_id,
                "remixClipId": clip.id,
                "amount": str(split.original_amount),
            })
            return

        if clip.parent_clip_id:
            logger.warning(f"⚠️ REMIX_PARENT_MISSING: clip {clip.id} parent {clip.parent_clip_id} - paying owner in full")

        reward = self.payout.credit_clip_approval_reward(uow, clip.user_id, clip.id)
        self.outbox.enqueue(uow, NotificationEvent.CLIP_APPROVED, {
            "userId": clip.user_id,
            "clipId": clip.id,
            "rewardAmount": str(reward),
        })

    @staticmethod
    def _adjust_trust(uow: UnitOfWork, user_id: str, delta: int, agreed: bool) -> None:
        """Clamped trust change plus accuracy bookkeeping; tier follows the new trust score"""
        raw = func.coalesce(Profile.trust_score, Config.TRUST_SCORE_DEFAULT) + delta
        clamped = case(
            (raw > Config.TRUST_SCORE_MAX, Config.TRUST_SCORE_MAX),
            (raw < Config.TRUST_SCORE_MIN, Config.TRUST_SCORE_MIN),
            else_=raw,
        )
        uow.session.execute(
            update(Profile)
            .where(Profile.id == user_id)
            .values(
                trust_score=clamped,
                settled_validations_count=Profile.settled_validations_count + 1,
                correct_validations_count=Profile.correct_validations_count + (1 if agreed else 0),
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

        # SET expressions read pre-update values, so derived columns go in a second statement
        uow.session.execute(
            update(Profile)
            .where(Profile.id == user_id)
            .values(
                validator_tier=case(
                    (Profile.trust_score >= Config.TIER_GOLD_THRESHOLD, ValidatorTier.GOLD.value),
                    (Profile.trust_score >= Config.TIER_SILVER_THRESHOLD, ValidatorTier.SILVER.value),
                    else_=ValidatorTier.BRONZE.value,
                ),
                accuracy_rating=Profile.correct_validations_count * 100.0 / Profile.settled_validations_count,
            )
            .execution_options(synchronize_session=False)
        )
