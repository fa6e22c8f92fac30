"""
Notification Outbox
Side-effect notifications are written as rows inside the owning transaction and only
become visible to the external delivery worker after commit. Nothing here delivers.
"""

import logging
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models import NotificationOutbox, OutboxStatus, utc_now
from utils.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class NotificationEvent(Enum):
    """Event types understood by the delivery worker"""
    CLIP_APPROVED = "clip.approved"
    CLIP_REJECTED = "clip.rejected"
    ROYALTY_RECEIVED = "royalty.received"
    REWARD_EARNED = "reward.earned"
    REFERRAL_BONUS_EARNED = "referral.bonus.earned"
    VALIDATION_PROCESSED = "validation.processed"
    USER_PROMOTED = "user.promoted"
    USER_DEMOTED = "user.demoted"
    WITHDRAWAL_COMPLETED = "withdrawal.completed"
    WITHDRAWAL_FAILED = "withdrawal.failed"


class NotificationOutboxService:
    """Write side used by the engines, drain side used by the delivery worker"""

    def enqueue(self, uow: UnitOfWork, event: NotificationEvent, payload: Dict[str, Any]) -> NotificationOutbox:
        row = NotificationOutbox(
            event_type=event.value,
            payload=payload,
            status=OutboxStatus.PENDING.value,
        )
        uow.session.add(row)
        uow.flush()
        logger.debug(f"📮 OUTBOX_ENQUEUED: {event.value} (id={row.id})")
        return row

    def claim_pending(self, session: Session, limit: int = 100) -> List[NotificationOutbox]:
        """Oldest pending rows; concurrent workers skip rows another worker holds"""
        return list(session.execute(
            select(NotificationOutbox)
            .where(NotificationOutbox.status == OutboxStatus.PENDING.value)
            .order_by(NotificationOutbox.created_at, NotificationOutbox.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        ).scalars())

    def mark_sent(self, session: Session, outbox_id: int) -> None:
        session.execute(
            update(NotificationOutbox)
            .where(NotificationOutbox.id == outbox_id)
            .values(
                status=OutboxStatus.SENT.value,
                attempts=NotificationOutbox.attempts + 1,
                processed_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

    def mark_failed(self, session: Session, outbox_id: int, error: str) -> None:
        session.execute(
            update(NotificationOutbox)
            .where(NotificationOutbox.id == outbox_id)
            .values(
                status=OutboxStatus.FAILED.value,
                attempts=NotificationOutbox.attempts + 1,
                last_error=error[:1000],
                processed_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        logger.warning(f"⚠️ OUTBOX_DELIVERY_FAILED: id={outbox_id} - {error}")
