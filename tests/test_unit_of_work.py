"""Unit of work scoping: commit, rollback, nesting and savepoints"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from models import Profile, RewardRate
from utils.unit_of_work import unit_of_work


class TestUnitOfWork:
    """Transaction boundaries for money-moving calls"""

    def test_commits_on_success(self, session, fresh):
        with unit_of_work(session) as uow:
            uow.session.add(Profile(id="uow-user", balance=Decimal("1")))

        assert fresh(Profile, "uow-user") is not None

    def test_rolls_back_on_error(self, session):
        with pytest.raises(RuntimeError):
            with unit_of_work(session) as uow:
                uow.session.add(Profile(id="uow-user"))
                uow.flush()
                raise RuntimeError("boom")

        assert session.scalar(select(func.count(Profile.id))) == 0

    def test_nested_scope_defers_commit_to_outermost(self, session):
        with pytest.raises(RuntimeError):
            with unit_of_work(session) as outer:
                with unit_of_work(session) as inner:
                    assert inner.depth == 2
                    inner.session.add(Profile(id="nested-user"))
                    inner.flush()
                assert outer.depth == 1
                raise RuntimeError("outer failure after nested success")

        assert session.scalar(select(func.count(Profile.id))) == 0
        assert getattr(session, "_unit_of_work_depth") == 0

    def test_savepoint_failure_keeps_outer_writes(self, session):
        with unit_of_work(session) as uow:
            uow.session.add(RewardRate(action_type="clip_approved", amount=Decimal("0.10")))
            uow.flush()

            with pytest.raises(ValueError):
                with uow.savepoint():
                    uow.session.add(RewardRate(action_type="remix_royalty", amount=Decimal("0.03")))
                    uow.flush()
                    raise ValueError("nested failure")

        session.expire_all()
        actions = session.execute(select(RewardRate.action_type)).scalars().all()
        assert actions == ["clip_approved"]

    def test_opens_and_closes_its_own_session(self, db_schema):
        with unit_of_work() as uow:
            uow.session.add(Profile(id="standalone-user"))

        with unit_of_work() as uow:
            assert uow.session.get(Profile, "standalone-user") is not None
