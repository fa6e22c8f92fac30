"""
Validator Promotion
Daily sweep that promotes consistently accurate users to validators and demotes
validators whose accuracy has slipped
"""

import logging
from typing import List

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from config import Config
from models import Profile, UserRole, utc_now
from services.notification_outbox import NotificationEvent, NotificationOutboxService
from utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


class PromotionService:
    """Role transitions between user and validator"""

    def __init__(self, outbox: NotificationOutboxService):
        self.outbox = outbox

    def find_eligible_users(self, session: Session) -> List[str]:
        return list(session.execute(
            select(Profile.id).where(
                Profile.role == UserRole.USER.value,
                Profile.total_validations_count >= Config.VALIDATOR_MIN_VALIDATIONS,
                Profile.accuracy_rating >= Config.VALIDATOR_MIN_ACCURACY,
                Profile.active_days_count >= Config.VALIDATOR_MIN_ACTIVE_DAYS,
            )
        ).scalars())

    def check_and_promote_eligible_users(self, session: Session) -> int:
        """Promote every eligible user; returns how many were promoted"""
        eligible = self.find_eligible_users(session)
        if not eligible:
            logger.info("No new users eligible for validator promotion")
            return 0

        logger.info(f"🏅 PROMOTION_SWEEP: {len(eligible)} users eligible")
        promoted = 0
        for user_id in eligible:
            try:
                if self.promote_to_validator(session, user_id):
                    promoted += 1
            except Exception as e:
                logger.error(f"❌ PROMOTION_FAILED: {user_id}: {e}")
        return promoted

    def promote_to_validator(self, session: Session, user_id: str) -> bool:
        with unit_of_work(session) as uow:
            result = uow.session.execute(
                update(Profile)
                .where(Profile.id == user_id, Profile.role == UserRole.USER.value)
                .values(
                    role=UserRole.VALIDATOR.value,
                    promoted_to_validator_at=utc_now(),
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return False

            self.outbox.enqueue(uow, NotificationEvent.USER_PROMOTED, {
                "userId": user_id,
                "newRole": UserRole.VALIDATOR.value,
                "title": "Congratulations! You're now a Validator 🏅",
                "body": "You've unlocked higher rewards! You can now earn +40% bonus on validations.",
            })

        logger.info(f"🏅 USER_PROMOTED: {user_id} is now a validator")
        return True

    def check_and_demote_validators(self, session: Session) -> int:
        """Demote validators with enough volume whose accuracy fell below the threshold"""
        at_risk = list(session.execute(
            select(Profile.id).where(
                Profile.role == UserRole.VALIDATOR.value,
                Profile.total_validations_count >= Config.VALIDATOR_MIN_VALIDATIONS,
                Profile.accuracy_rating < Config.VALIDATOR_DEMOTION_ACCURACY,
            )
        ).scalars())

        demoted = 0
        for user_id in at_risk:
            try:
                if self.demote_to_user(session, user_id):
                    demoted += 1
            except Exception as e:
                logger.error(f"❌ DEMOTION_FAILED: {user_id}: {e}")
        return demoted

    def demote_to_user(self, session: Session, user_id: str) -> bool:
        with unit_of_work(session) as uow:
            result = uow.session.execute(
                update(Profile)
                .where(Profile.id == user_id, Profile.role == UserRole.VALIDATOR.value)
                .values(role=UserRole.USER.value, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return False

            self.outbox.enqueue(uow, NotificationEvent.USER_DEMOTED, {
                "userId": user_id,
                "items": {"accuracy": f"below {Config.VALIDATOR_DEMOTION_ACCURACY}%"},
                "title": "Validator Status Revoked ⚠️",
                "body": (
                    f"Your accuracy rating has dropped below {Config.VALIDATOR_DEMOTION_ACCURACY}%. "
                    "You have been reverted to User status."
                ),
            })

        logger.warning(f"⚠️ VALIDATOR_DEMOTED: {user_id} due to low accuracy")
        return True
