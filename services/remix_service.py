"""
Remix/Royalty Resolver
Splits an approval reward between a derivative clip's creator and the parent clip's
owner, and walks remix chains for display
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from config import Config
from models import ClipStatus, TransactionType, VoiceClip
from services.errors import NotFoundError, ValidationError
from services.ledger_service import LedgerService, to_money
from utils.unit_of_work import UnitOfWork, unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class RemixSplit:
    """Amounts credited for one approved remix"""
    remixer_id: str
    original_owner_id: str
    remixer_amount: Decimal
    original_amount: Decimal


@dataclass
class RemixChainEntry:
    """One clip in a remix chain; depth 0 is the root"""
    clip_id: str
    user_id: str
    phrase: str
    depth: int


def split_reward(base_reward: Decimal, remixer_share: Optional[Decimal] = None) -> Tuple[Decimal, Decimal]:
    """Return (remixer_amount, original_amount); the two always sum to the base reward"""
    share = Config.REMIXER_SHARE if remixer_share is None else Decimal(str(remixer_share))
    if share < 0 or share > 1:
        raise ValidationError(f"Remixer share must be between 0 and 1, got {share}", reason="invalid_share")
    base = to_money(base_reward)
    remixer_amount = to_money(base * share)
    return remixer_amount, base - remixer_amount


class RemixService:
    """Royalty split and remix chain lookups"""

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger

    def process_remix_royalty(
        self,
        uow: UnitOfWork,
        remix_clip_id: str,
        remixer_id: str,
        original_owner_id: str,
        base_reward: Decimal,
        remixer_share: Optional[Decimal] = None,
    ) -> RemixSplit:
        share = Config.REMIXER_SHARE if remixer_share is None else Decimal(str(remixer_share))
        remixer_amount, original_amount = split_reward(base_reward, share)

        if remixer_amount > 0:
            self.ledger.credit(
                uow,
                remixer_id,
                remixer_amount,
                TransactionType.EARNING.value,
                f"Remix reward ({share * 100:.0f}%)",
                remix_clip_id,
            )
        if original_amount > 0:
            self.ledger.credit(
                uow,
                original_owner_id,
                original_amount,
                TransactionType.EARNING.value,
                "Royalty from remix",
                remix_clip_id,
            )

        logger.info(
            f"🎶 REMIX_ROYALTY: remix {remix_clip_id} - creator {remixer_amount}, original {original_amount}"
        )
        return RemixSplit(remixer_id, original_owner_id, remixer_amount, original_amount)

    def get_remix_chain(self, session: Session, clip_id: str) -> List[RemixChainEntry]:
        """Ancestors of a clip, root first, following at most REMIX_CHAIN_MAX_DEPTH parent hops"""
        walked = []
        seen = set()
        current_id: Optional[str] = clip_id
        hops = 0

        while current_id and current_id not in seen:
            clip = session.get(VoiceClip, current_id)
            if clip is None:
                break
            seen.add(current_id)
            walked.append(clip)

            if hops >= Config.REMIX_CHAIN_MAX_DEPTH:
                logger.warning(f"⚠️ REMIX_CHAIN_DEPTH_CAP: stopped after {hops} hops from {clip_id}")
                break
            current_id = clip.parent_clip_id
            hops += 1

        walked.reverse()
        return [
            RemixChainEntry(clip_id=c.id, user_id=c.user_id, phrase=c.phrase or "", depth=depth)
            for depth, c in enumerate(walked)
        ]

    def create_remix(
        self,
        session: Session,
        user_id: str,
        parent_clip_id: str,
        language: str,
        phrase: Optional[str] = None,
        dialect: Optional[str] = None,
        audio_url: Optional[str] = None,
    ) -> Dict[str, str]:
        """Register a derivative clip linked to its parent and the chain's root"""
        with unit_of_work(session) as uow:
            parent = uow.session.get(VoiceClip, parent_clip_id)
            if parent is None:
                raise NotFoundError("Parent clip not found", reason="parent_clip_not_found")
            if parent.user_id == user_id:
                raise ValidationError("You cannot remix your own clip", reason="self_remix")

            root_clip_id = parent.root_clip_id or parent.id
            clip = VoiceClip(
                user_id=user_id,
                phrase=phrase,
                language=language,
                dialect=dialect,
                audio_url=audio_url,
                parent_clip_id=parent.id,
                root_clip_id=root_clip_id,
                status=ClipStatus.PENDING.value,
            )
            uow.session.add(clip)
            uow.session.execute(
                update(VoiceClip)
                .where(VoiceClip.id == parent.id)
                .values(duets_count=VoiceClip.duets_count + 1)
                .execution_options(synchronize_session=False)
            )
            uow.flush()

        logger.info(f"🎤 REMIX_CREATED: {clip.id} by {user_id} from parent {parent_clip_id}")
        return {"clipId": clip.id, "parentOwnerId": parent.user_id, "rootClipId": root_clip_id}

    def get_remixes_of(self, session: Session, clip_id: str) -> List[VoiceClip]:
        return list(session.execute(
            select(VoiceClip).where(VoiceClip.parent_clip_id == clip_id).order_by(VoiceClip.created_at)
        ).scalars())

    def get_user_remix_stats(self, session: Session, user_id: str) -> Dict[str, int]:
        received = session.scalar(
            select(func.coalesce(func.sum(VoiceClip.duets_count), 0)).where(VoiceClip.user_id == user_id)
        )
        made = session.scalar(
            select(func.count(VoiceClip.id)).where(
                VoiceClip.user_id == user_id, VoiceClip.parent_clip_id.is_not(None)
            )
        )
        return {"totalRemixesReceived": int(received or 0), "remixesMade": int(made or 0)}
