"""
Validation submission tests
Eligibility checks, progression counters, cooldown and the hand-off to consensus
"""

from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import func, select

from models import NotificationOutbox, Profile, Validation, VoiceClip, utc_now
from services.errors import (
    ConflictError, ForbiddenError, NotFoundError, RateLimitedError, ValidationError
)
from services.validation_service import CooldownTracker, languages_match


class TestLanguagesMatch:
    def test_no_declared_languages_always_match(self):
        assert languages_match(None, "yoruba")
        assert languages_match([], "igbo")

    def test_case_insensitive_substring(self):
        assert languages_match(["Yoruba"], "yoruba")
        assert languages_match(["yoruba"], "Yoruba (Ekiti)")
        assert languages_match(["hausa"], "nigerian", "Hausa-Kano")

    def test_mismatch(self):
        assert not languages_match(["igbo"], "yoruba", "oyo")


class TestCooldownTracker:
    """Per-validator submission spacing"""

    def test_blocks_inside_interval(self):
        clock = Mock(return_value=100.0)
        tracker = CooldownTracker(interval_seconds=5, clock=clock)
        tracker.record("validator-1")

        clock.return_value = 104.0
        with pytest.raises(RateLimitedError) as exc_info:
            tracker.check("validator-1")
        assert exc_info.value.http_status == 429

        clock.return_value = 105.0
        tracker.check("validator-1")

    def test_other_validators_unaffected(self):
        tracker = CooldownTracker(interval_seconds=60)
        tracker.record("validator-1")
        tracker.check("validator-2")

    def test_expired_entries_evicted_past_capacity(self):
        clock = Mock(return_value=0.0)
        tracker = CooldownTracker(interval_seconds=5, max_entries=2, clock=clock)
        tracker.record("a")
        tracker.record("b")

        clock.return_value = 10.0
        tracker.record("c")

        assert len(tracker) == 1
        assert tracker.prune() == 0


class TestSubmitValidation:
    """Happy path and counters"""

    def test_records_vote_and_counters(self, session, seeded_rates, services, make_profile, make_clip, fresh):
        owner = make_profile()
        validator = make_profile(spoken_languages=["yoruba"])
        clip = make_clip(owner.id)

        result = services.validation.submit_validation(session, validator.id, clip.id, True, feedback="clear")

        assert result.success
        assert not result.consensus_reached
        assert result.message == "Validation recorded. Waiting for more validators."

        vote = session.get(Validation, result.validation_id)
        assert vote.is_approved is True
        assert vote.feedback == "clear"

        profile = fresh(Profile, validator.id)
        assert profile.daily_validations_count == 1
        assert profile.total_validations_count == 1
        assert profile.active_days_count == 1
        assert profile.last_active_date == utc_now().date()
        assert fresh(VoiceClip, clip.id).validations_count == 1

        events = session.execute(select(NotificationOutbox.event_type)).scalars().all()
        assert events == ["validation.processed"]

    def test_third_agreeing_vote_reports_consensus(
        self, session, seeded_rates, services, make_profile, make_clip, fresh
    ):
        owner = make_profile()
        clip = make_clip(owner.id)
        voters = [make_profile() for _ in range(3)]

        results = [services.validation.submit_validation(session, v.id, clip.id, False) for v in voters]

        assert [r.consensus_reached for r in results] == [False, False, True]
        assert results[-1].message == "Validation recorded! Consensus reached: Rejected"
        assert fresh(VoiceClip, clip.id).status == "rejected"

    def test_daily_counter_resets_on_new_day(self, session, seeded_rates, services, make_profile, make_clip, fresh):
        owner = make_profile()
        yesterday = utc_now() - timedelta(days=1)
        validator = make_profile(
            daily_validations_count=40,
            total_validations_count=40,
            active_days_count=3,
            last_validation_reset_at=yesterday,
            last_active_date=yesterday.date(),
        )
        clip = make_clip(owner.id)

        services.validation.submit_validation(session, validator.id, clip.id, True)

        profile = fresh(Profile, validator.id)
        assert profile.daily_validations_count == 1
        assert profile.total_validations_count == 41
        assert profile.active_days_count == 4

    def test_same_day_counts_accumulate(self, session, seeded_rates, services, make_profile, make_clip, fresh):
        owner = make_profile()
        validator = make_profile()
        first = make_clip(owner.id)
        second = make_clip(owner.id)

        services.validation.submit_validation(session, validator.id, first.id, True)
        services.validation.submit_validation(session, validator.id, second.id, True)

        profile = fresh(Profile, validator.id)
        assert profile.daily_validations_count == 2
        assert profile.active_days_count == 1


class TestSubmissionPreconditions:
    """Every rejection leaves no trace"""

    def _assert_nothing_written(self, session):
        assert session.scalar(select(func.count(Validation.id))) == 0
        assert session.scalar(select(func.count(NotificationOutbox.id))) == 0

    def test_unknown_clip(self, session, services, make_profile):
        validator = make_profile()

        with pytest.raises(NotFoundError) as exc_info:
            services.validation.submit_validation(session, validator.id, "missing", True)

        assert exc_info.value.http_status == 404
        self._assert_nothing_written(session)

    def test_own_clip(self, session, services, make_profile, make_clip):
        owner = make_profile()
        clip = make_clip(owner.id)

        with pytest.raises(ForbiddenError) as exc_info:
            services.validation.submit_validation(session, owner.id, clip.id, True)

        assert exc_info.value.reason == "own_clip"
        self._assert_nothing_written(session)

    def test_duplicate_vote(self, session, seeded_rates, services, make_profile, make_clip, fresh):
        owner = make_profile()
        validator = make_profile()
        clip = make_clip(owner.id)
        services.validation.submit_validation(session, validator.id, clip.id, True)

        with pytest.raises(ConflictError) as exc_info:
            services.validation.submit_validation(session, validator.id, clip.id, False)

        assert exc_info.value.http_status == 409
        assert fresh(Profile, validator.id).total_validations_count == 1

    def test_concurrent_duplicate_maps_to_conflict(self, session, seeded_rates, services, make_profile, make_clip):
        owner = make_profile()
        validator = make_profile()
        clip = make_clip(owner.id)
        services.validation.submit_validation(session, validator.id, clip.id, True)

        # The pre-check misses; the unique constraint catches the second insert
        with patch.object(session, "scalar", return_value=None):
            with pytest.raises(ConflictError):
                services.validation.submit_validation(session, validator.id, clip.id, True)

        assert session.scalar(select(func.count(Validation.id))) == 1

    def test_zero_trust(self, session, services, make_profile, make_clip):
        owner = make_profile()
        validator = make_profile(trust_score=0)
        clip = make_clip(owner.id)

        with pytest.raises(ForbiddenError) as exc_info:
            services.validation.submit_validation(session, validator.id, clip.id, True)

        assert exc_info.value.reason == "insufficient_trust"
        self._assert_nothing_written(session)

    def test_language_mismatch(self, session, services, make_profile, make_clip):
        owner = make_profile()
        validator = make_profile(spoken_languages=["igbo"])
        clip = make_clip(owner.id, language="yoruba")

        with pytest.raises(ValidationError) as exc_info:
            services.validation.submit_validation(session, validator.id, clip.id, True)

        assert exc_info.value.reason == "language_mismatch"
        self._assert_nothing_written(session)

    def test_unknown_validator(self, session, services, make_profile, make_clip):
        owner = make_profile()
        clip = make_clip(owner.id)

        with pytest.raises(NotFoundError):
            services.validation.submit_validation(session, "ghost", clip.id, True)

        self._assert_nothing_written(session)

    def test_cooldown_checked_before_anything_else(self, session, services, make_profile):
        validator = make_profile()
        services.validation.cooldown = CooldownTracker(interval_seconds=60)
        services.validation.cooldown.record(validator.id)

        # Even a missing clip reports the cooldown first
        with pytest.raises(RateLimitedError):
            services.validation.submit_validation(session, validator.id, "missing", True)

    def test_rejected_submission_does_not_start_cooldown(self, session, services, make_profile, make_clip):
        owner = make_profile()
        clip = make_clip(owner.id)
        services.validation.cooldown = CooldownTracker(interval_seconds=60)

        with pytest.raises(ForbiddenError):
            services.validation.submit_validation(session, owner.id, clip.id, True)

        assert len(services.validation.cooldown) == 0


class TestQueueAndHistory:
    def test_queue_excludes_own_and_voted_clips(self, session, seeded_rates, services, make_profile, make_clip):
        owner = make_profile()
        validator = make_profile()
        own_clip = make_clip(validator.id)
        voted = make_clip(owner.id)
        open_clip = make_clip(owner.id)
        make_clip(owner.id, status="approved")
        services.validation.submit_validation(session, validator.id, voted.id, True)

        queue = services.validation.get_validation_queue(session, validator.id)

        assert [c.id for c in queue] == [open_clip.id]
        assert own_clip.id not in [c.id for c in queue]

    def test_history_lists_votes(self, session, seeded_rates, services, make_profile, make_clip):
        owner = make_profile()
        validator = make_profile()
        first = make_clip(owner.id)
        second = make_clip(owner.id)
        services.validation.submit_validation(session, validator.id, first.id, True)
        services.validation.submit_validation(session, validator.id, second.id, False)

        history = services.validation.get_validation_history(session, validator.id)

        assert {v.voice_clip_id for v in history} == {first.id, second.id}
