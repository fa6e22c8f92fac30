"""
LinguaLink Settlement Engine - Database Schema
==============================================

Schema for the crowdsourced voice-clip validation economy:
- Voice clips, validator votes and the validation queue
- Profiles with available/locked balances, trust scores and progression counters
- Append-only transaction ledger and active reward rates
- Idempotent payout requests (plus the legacy withdrawals table)
- Notification outbox drained by the external delivery worker
"""

from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Date, Boolean, Text,
    ForeignKey, UniqueConstraint, Index, CheckConstraint, JSON
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import uuid


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def utc_now() -> datetime:
    """Naive UTC timestamp used for every created_at/updated_at column"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> str:
    return str(uuid.uuid4())


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class ClipStatus(Enum):
    """Voice clip lifecycle - pending transitions to a terminal state exactly once"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserRole(Enum):
    """Profile roles that drive reward multipliers"""
    USER = "user"
    VALIDATOR = "validator"
    AMBASSADOR = "ambassador"


class ValidatorTier(Enum):
    """Trust-score based validator tiers"""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"


class TransactionType(Enum):
    """Ledger transaction types"""
    EARNING = "earning"
    WITHDRAWAL = "withdrawal"
    BONUS = "bonus"
    PENALTY = "penalty"
    REFUND = "refund"
    TOP_UP = "top_up"
    FUND_LOCK = "fund_lock"
    FUND_UNLOCK = "fund_unlock"


class RewardAction(Enum):
    """Reward action types (must match reward_rates.action_type)"""
    VALIDATION_CORRECT = "validation_correct"
    VALIDATION_INCORRECT = "validation_incorrect"
    CLIP_APPROVED = "clip_approved"
    REMIX_ROYALTY = "remix_royalty"


class PayoutStatus(Enum):
    """Payout request lifecycle"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


TERMINAL_PAYOUT_STATUSES = (
    PayoutStatus.COMPLETED.value,
    PayoutStatus.FAILED.value,
    PayoutStatus.REFUNDED.value,
)


class OutboxStatus(Enum):
    """Notification outbox row status"""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class QueueStatus(Enum):
    """Validation queue assignment status"""
    PENDING = "pending"
    COMPLETED = "completed"


# ============================================================================
# PROFILES
# ============================================================================

class Profile(Base):
    """User profile with balances, reputation and validator progression"""
    __tablename__ = 'profiles'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Balances - balance is available, pending_balance is locked for in-flight withdrawals
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=Decimal("0"), nullable=False)
    pending_balance: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=Decimal("0"), nullable=False)
    total_earned: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=Decimal("0"), nullable=False)

    # Reputation
    trust_score: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    validator_tier: Mapped[str] = mapped_column(String(16), default=ValidatorTier.BRONZE.value, nullable=False)
    role: Mapped[str] = mapped_column(String(16), default=UserRole.USER.value, nullable=False)
    promoted_to_validator_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Referral linkage
    referred_by_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey('profiles.id'), nullable=True, index=True)

    # Languages used for validator eligibility and assignment
    spoken_languages: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    verified_dialects: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    # Progression counters
    daily_validations_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_validations_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_validation_reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    active_days_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_active_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Accuracy tracking (updated at settlement)
    settled_validations_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    correct_validations_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    accuracy_rating: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_profile_balance_positive'),
        CheckConstraint('pending_balance >= 0', name='ck_profile_pending_balance_positive'),
        CheckConstraint('trust_score >= 0 AND trust_score <= 200', name='ck_profile_trust_score_bounds'),
        Index('ix_profiles_role', 'role'),
    )

    def __repr__(self):
        return f"<Profile(id={self.id}, role={self.role}, balance={self.balance}, trust={self.trust_score})>"


class ReferralStats(Base):
    """Aggregate referral performance per ambassador"""
    __tablename__ = 'referral_stats'

    id = Column(Integer, primary_key=True, autoincrement=True)
    ambassador_id = Column(String(64), ForeignKey('profiles.id'), nullable=False, unique=True)
    total_referrals = Column(Integer, default=0, nullable=False)
    total_conversions = Column(Integer, default=0, nullable=False)
    total_earnings = Column(Numeric(18, 6), default=Decimal("0"), nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)


# ============================================================================
# CLIPS AND VOTES
# ============================================================================

class VoiceClip(Base):
    """User-submitted voice clip awaiting crowdsourced validation"""
    __tablename__ = 'voice_clips'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey('profiles.id'), nullable=False, index=True)
    phrase: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    language: Mapped[str] = mapped_column(String(32), nullable=False)
    dialect: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    audio_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=ClipStatus.PENDING.value, nullable=False)

    # Remix chain
    parent_clip_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey('voice_clips.id'), nullable=True, index=True)
    root_clip_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    validations_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duets_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index('ix_voice_clips_status', 'status'),
    )

    def __repr__(self):
        return f"<VoiceClip(id={self.id}, status={self.status}, votes={self.validations_count})>"


class Validation(Base):
    """A single validator vote - immutable, one per (clip, validator)"""
    __tablename__ = 'validations'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    voice_clip_id: Mapped[str] = mapped_column(String(36), ForeignKey('voice_clips.id'), nullable=False, index=True)
    validator_id: Mapped[str] = mapped_column(String(64), ForeignKey('profiles.id'), nullable=False, index=True)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint('voice_clip_id', 'validator_id', name='uq_validation_clip_validator'),
    )


class ValidationQueue(Base):
    """Validator assignments produced by the assignment service"""
    __tablename__ = 'validation_queue'

    id = Column(Integer, primary_key=True, autoincrement=True)
    voice_clip_id = Column(String(36), ForeignKey('voice_clips.id'), nullable=False, index=True)
    validator_id = Column(String(64), ForeignKey('profiles.id'), nullable=False, index=True)
    status = Column(String(16), default=QueueStatus.PENDING.value, nullable=False)
    priority = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint('voice_clip_id', 'validator_id', name='uq_validation_queue_clip_validator'),
    )


# ============================================================================
# LEDGER
# ============================================================================

class Transaction(Base):
    """Append-only ledger entry - the audit trail of every balance change"""
    __tablename__ = 'transactions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey('profiles.id'), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)  # Signed
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reference_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index('ix_transactions_user_created', 'user_id', 'created_at'),
        Index('ix_transactions_type', 'transaction_type'),
    )

    def __repr__(self):
        return f"<Transaction(user={self.user_id}, type={self.transaction_type}, amount={self.amount})>"


class RewardRate(Base):
    """Reward amount per action type; only active rows are used"""
    __tablename__ = 'reward_rates'

    id = Column(Integer, primary_key=True, autoincrement=True)
    action_type = Column(String(50), nullable=False)
    amount = Column(Numeric(18, 6), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index('ix_reward_rates_action_active', 'action_type', 'is_active'),
    )


# ============================================================================
# WITHDRAWALS
# ============================================================================

class PayoutRequest(Base):
    """Idempotent withdrawal request with locked funds"""
    __tablename__ = 'payout_requests'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey('profiles.id'), nullable=False, index=True)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    locked_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 6), nullable=True)

    # Destination - account number is stored encrypted, masked copy for display
    bank_code: Mapped[str] = mapped_column(String(16), nullable=False)
    account_number: Mapped[str] = mapped_column(Text, nullable=False)
    account_number_masked: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(String(16), default=PayoutStatus.PENDING.value, nullable=False)
    provider_transfer_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    provider_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_payout_request_amount_positive'),
        Index('ix_payout_requests_user_created', 'user_id', 'created_at'),
        Index('ix_payout_requests_status', 'status'),
    )

    def __repr__(self):
        return f"<PayoutRequest(id={self.id}, status={self.status}, amount={self.amount})>"


class Withdrawal(Base):
    """Legacy withdrawals (pre idempotency keys) - still counted and reconciled"""
    __tablename__ = 'withdrawals'

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(64), ForeignKey('profiles.id'), nullable=False, index=True)
    amount = Column(Numeric(18, 6), nullable=False)
    bank_code = Column(String(16), nullable=False)
    account_number = Column(Text, nullable=False)
    account_name = Column(String(255), nullable=False)
    status = Column(String(16), default=PayoutStatus.PENDING.value, nullable=False)
    reference = Column(String(100), unique=True, nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    completed_at = Column(DateTime, nullable=True)


# ============================================================================
# NOTIFICATION OUTBOX
# ============================================================================

class NotificationOutbox(Base):
    """Outbox pattern - rows become deliverable only once the owning transaction commits"""
    __tablename__ = 'notification_outbox'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String(16), default=OutboxStatus.PENDING.value, nullable=False)

    # Error handling
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utc_now, nullable=False)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_notification_outbox_status', 'status'),
        Index('ix_notification_outbox_event_type', 'event_type'),
        Index('ix_notification_outbox_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<NotificationOutbox(event_type={self.event_type}, status={self.status})>"
