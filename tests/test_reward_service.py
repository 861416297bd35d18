"""
tests/test_reward_service.py — Reward Flow Integration Tests
=============================================================
Service-level tests for the trigger flows in reward_service: multiplier
stacking, clamped debits, the legacy global scope, the XP → level-up →
badge chain, notification order, and best-effort progression.

Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from classquest.config import EngineConfig
from classquest.database.models import (
    Badge,
    Classroom,
    ClassroomBalance,
    ClassroomStats,
    ClassroomXP,
    EarnedBadge,
    Group,
    GroupMember,
    Notification,
    Transaction,
    User,
)
from classquest.engine.reward import StatBoost
from classquest.services import reward_service
from classquest.services.ledger_service import list_transactions

STUDENT = 1
TEACHER = 99
CLASSROOM = 10


@pytest.fixture
def engine(db_engine):
    """Re-use the shared conftest db_engine (SQLite, StaticPool)."""
    return db_engine


def _seed(
    engine,
    *,
    xp_settings: dict | None = None,
    xp: int | None = None,
    stats: dict | None = None,
    badges: list[dict] = (),
    users: tuple[int, ...] = (STUDENT,),
) -> None:
    """Insert a classroom, its students and optional state, then commit."""
    with Session(engine) as session:
        session.add(User(id=TEACHER, display_name="Teacher", role="teacher"))
        for user_id in users:
            session.add(User(id=user_id, display_name=f"Student {user_id}"))
        session.add(Classroom(
            id=CLASSROOM, name="Physics", teacher_id=TEACHER, xp_settings=xp_settings
        ))
        session.flush()
        if xp is not None:
            session.add(ClassroomXP(user_id=STUDENT, classroom_id=CLASSROOM, xp=xp, level=1))
        if stats is not None:
            session.add(ClassroomStats(user_id=STUDENT, classroom_id=CLASSROOM, **stats))
        for spec in badges:
            session.add(Badge(classroom_id=CLASSROOM, **spec))
        session.commit()


def _add_group(engine, group_id: int, multiplier: float, members: dict[int, str]) -> None:
    with Session(engine) as session:
        session.add(Group(
            id=group_id, classroom_id=CLASSROOM, name=f"G{group_id}",
            group_multiplier=multiplier,
        ))
        for user_id, status in members.items():
            session.add(GroupMember(group_id=group_id, user_id=user_id, status=status))
        session.commit()


def _stats(engine, user_id: int = STUDENT) -> ClassroomStats:
    with Session(engine) as session:
        return session.get(ClassroomStats, (user_id, CLASSROOM))


def _xp(engine, user_id: int = STUDENT) -> ClassroomXP | None:
    with Session(engine) as session:
        return session.get(ClassroomXP, (user_id, CLASSROOM))


def _notification_types(engine, user_id: int = STUDENT) -> list[str]:
    with Session(engine) as session:
        return list(session.scalars(
            select(Notification.type)
            .where(Notification.user_id == user_id)
            .order_by(Notification.id)
        ).all())


ROOKIE = {"name": "Rookie", "level_required": 2, "reward_shield": 2}
VETERAN = {"name": "Veteran", "level_required": 3}


# ---------------------------------------------------------------------------
# Bits
# ---------------------------------------------------------------------------
class TestAwardBits:
    def test_simple_credit(self, engine):
        _seed(engine)
        outcome = reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=50,
            assigned_by=TEACHER,
        )
        assert outcome.final_amount == 50
        assert outcome.balance == 50
        assert _stats(engine).balance == 50

        with Session(engine) as session:
            projection = session.get(ClassroomBalance, (STUDENT, CLASSROOM))
            assert projection.balance == 50
            rows = list_transactions(session, STUDENT, CLASSROOM)
        assert len(rows) == 1
        assert rows[0].type == "manual_adjustment"
        assert rows[0].assigned_by == TEACHER
        assert rows[0].calculation["final_amount"] == 50

    def test_multipliers_stack_additively(self, engine):
        _seed(engine, stats={"multiplier": 1.5})
        _add_group(engine, 1, 2.0, {STUDENT: "approved"})
        _add_group(engine, 2, 3.0, {STUDENT: "pending"})

        outcome = reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=100,
        )
        assert outcome.calculation.total_multiplier == 2.5
        assert outcome.final_amount == 250
        with Session(engine) as session:
            row = list_transactions(session, STUDENT)[0]
        assert row.amount == 250
        assert row.calculation["base_amount"] == 100
        assert row.calculation["group_multiplier"] == 2.0

    def test_flags_disable_multipliers(self, engine):
        _seed(engine, stats={"multiplier": 3.0})
        outcome = reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=10,
            apply_personal=False, apply_group=False,
        )
        assert outcome.final_amount == 10

    def test_debit_is_unmultiplied_and_clamped(self, engine):
        _seed(engine, stats={"balance": 30, "multiplier": 2.0})
        outcome = reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=-50,
        )
        assert outcome.final_amount == -50
        assert outcome.balance == 0
        assert _stats(engine).balance == 0
        assert _xp(engine) is None
        with Session(engine) as session:
            assert list_transactions(session, STUDENT)[0].amount == -50
            note = session.scalar(select(Notification))
        assert note.type == "wallet_transaction"
        assert note.message == "You were debited 50 ₿."

    def test_zero_amount_writes_no_ledger_row(self, engine):
        _seed(engine)
        reward_service.award_bits(engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=0)
        with Session(engine) as session:
            assert list_transactions(session, STUDENT) == []

    def test_credit_earns_xp(self, engine):
        _seed(engine)
        reward_service.award_bits(engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=50)
        entry = _xp(engine)
        assert entry.xp == 50
        assert entry.level == 1

    def test_unknown_user_raises(self, engine):
        _seed(engine)
        with pytest.raises(ValueError, match="User not found"):
            reward_service.award_bits(engine, user_id=404, classroom_id=CLASSROOM, amount=5)

    def test_sink_receives_notifications_after_commit(self, engine):
        _seed(engine)
        sink = MagicMock()
        outcome = reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=50, sink=sink,
        )
        delivered = [c.args[0].type for c in sink.call_args_list]
        assert delivered == ["wallet_transaction", "stats_adjusted"]
        assert [n.type for n in outcome.notifications] == delivered


class TestLegacyScope:
    def test_no_classroom_uses_global_fields(self, engine):
        _seed(engine)
        with Session(engine) as session:
            user = session.get(User, STUDENT)
            user.balance = 10
            user.multiplier = 2.0
            session.commit()

        outcome = reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=None, amount=10, apply_group=False,
        )
        assert outcome.final_amount == 20
        with Session(engine) as session:
            assert session.get(User, STUDENT).balance == 30
            assert session.scalar(select(ClassroomStats)) is None
            assert session.scalar(select(ClassroomXP)) is None
            row = list_transactions(session, STUDENT)[0]
        assert row.classroom_id is None

    def test_classroom_row_ignores_global_multiplier(self, engine):
        _seed(engine)
        with Session(engine) as session:
            session.get(User, STUDENT).multiplier = 5.0
            session.commit()
        outcome = reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=10,
        )
        assert outcome.final_amount == 10


class TestRewardFeedback:
    def test_feedback_reward_type(self, engine):
        _seed(engine, stats={"multiplier": 2.0})
        outcome = reward_service.reward_feedback(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=10, apply_personal=True,
        )
        assert outcome.final_amount == 20
        with Session(engine) as session:
            row = list_transactions(session, STUDENT)[0]
        assert row.type == "feedback_reward"
        assert row.description == "Feedback reward"

    def test_non_positive_rejected(self, engine):
        _seed(engine)
        with pytest.raises(ValueError):
            reward_service.reward_feedback(
                engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=0,
            )


class TestGroupAdjustment:
    def test_uses_adjusting_groups_own_multiplier(self, engine):
        _seed(engine, users=(1, 2, 3))
        _add_group(engine, 1, 2.0, {1: "approved", 2: "approved", 3: "pending"})
        _add_group(engine, 2, 1.5, {1: "approved"})

        outcomes = reward_service.adjust_group_balance(engine, group_id=1, amount=10)

        assert [o.user_id for o in outcomes] == [1, 2]
        # Member 1 is in two groups (stacked 2.5) but the adjustment uses 2.0.
        assert [o.final_amount for o in outcomes] == [20, 20]
        with Session(engine) as session:
            types = set(session.scalars(select(Transaction.type)).all())
            assert session.get(ClassroomStats, (3, CLASSROOM)) is None
        assert types == {"group_adjustment"}

    def test_each_member_gets_own_notifications(self, engine):
        _seed(engine, users=(1, 2))
        _add_group(engine, 1, 1.0, {1: "approved", 2: "approved"})
        outcomes = reward_service.adjust_group_balance(engine, group_id=1, amount=5)
        for outcome in outcomes:
            assert {n.user_id for n in outcome.notifications} == {outcome.user_id}
            assert outcome.notifications[0].type == "wallet_transaction"

    def test_unknown_group(self, engine):
        _seed(engine)
        with pytest.raises(ValueError, match="Group not found"):
            reward_service.adjust_group_balance(engine, group_id=42, amount=5)


# ---------------------------------------------------------------------------
# Progression chain
# ---------------------------------------------------------------------------
class TestBadgeUnlocks:
    def test_level_two_unlocks_badge_with_shields(self, engine):
        _seed(engine, xp=90, badges=[ROOKIE, VETERAN])
        sink = MagicMock()
        outcome = reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=10,
            apply_personal=False, apply_group=False, sink=sink,
        )

        assert outcome.leveled_up
        assert [b.name for b in outcome.badges_earned] == ["Rookie"]
        stats = _stats(engine)
        assert stats.shield_count == 2
        assert stats.shield_active
        # 100 + stat XP 10 + unlock XP 25
        assert _xp(engine).xp == 135
        assert _xp(engine).level == 2
        assert [c.args[0].type for c in sink.call_args_list] == [
            "wallet_transaction", "badge_earned", "level_up", "stats_adjusted",
        ]

    def test_badge_never_granted_twice(self, engine):
        _seed(engine, xp=90, badges=[ROOKIE])
        for _ in range(3):
            reward_service.grant_xp(
                engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=10,
            )
        with Session(engine) as session:
            earned = session.scalars(select(EarnedBadge)).all()
        assert len(earned) == 1
        assert _notification_types(engine).count("badge_earned") == 1
        assert _stats(engine).shield_count == 2

    def test_badge_bits_use_badge_flags(self, engine):
        _seed(engine, xp=90, stats={"multiplier": 2.0}, badges=[{
            "name": "Bonus", "level_required": 2, "reward_bits": 30,
            "apply_personal_multiplier": True,
        }])
        reward_service.grant_xp(engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=10)
        with Session(engine) as session:
            row = list_transactions(session, STUDENT)[0]
            message = session.scalar(
                select(Notification.message).where(Notification.type == "badge_earned")
            )
        assert row.type == "badge_reward"
        assert row.amount == 60
        assert row.description == "Badge reward: Bonus"
        assert message == '🏅 You earned the "Bonus" badge! Rewards: 60 ₿ (2.00x)'
        assert _stats(engine).balance == 60

    def test_badge_reward_credit_has_no_wallet_notification(self, engine):
        _seed(engine, xp=90, badges=[{"name": "B", "level_required": 2, "reward_bits": 5}])
        reward_service.grant_xp(engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=10)
        assert "wallet_transaction" not in _notification_types(engine)

    def test_single_pass_defers_chained_badges(self, engine):
        _seed(engine, xp=90, xp_settings={"badge_unlock_rate": 200}, badges=[ROOKIE, VETERAN])
        outcome = reward_service.grant_xp(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=10,
        )
        # 100 → Rookie (+10 stat, +200 unlock) → 310, level 3, not re-scanned
        assert [b.name for b in outcome.badges_earned] == ["Rookie"]
        assert outcome.progression.level == 3

        later = reward_service.grant_xp(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=1,
        )
        assert [b.name for b in later.badges_earned] == ["Veteran"]

    def test_chain_passes_reach_fixed_point(self, engine):
        _seed(engine, xp=90, xp_settings={"badge_unlock_rate": 200}, badges=[ROOKIE, VETERAN])
        outcome = reward_service.grant_xp(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=10,
            config=EngineConfig(badge_chain_passes=3),
        )
        assert [b.name for b in outcome.badges_earned] == ["Rookie", "Veteran"]
        assert _xp(engine).xp == 510
        assert _xp(engine).level == 4
        assert _notification_types(engine).count("level_up") == 1


class TestLevelUpRewards:
    SETTINGS = {
        "level_up_rewards": {
            "enabled": True,
            "bits_per_level": 10,
            "scale_bits_by_level": True,
            "shield_at_levels": "2",
        },
    }

    def test_span_rewards_and_single_notification(self, engine):
        _seed(engine, xp_settings=self.SETTINGS)
        outcome = reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=250,
            apply_personal=False, apply_group=False,
        )
        assert outcome.progression.old_level == 1
        assert outcome.progression.level == 3
        assert outcome.balance == 300
        assert _stats(engine).shield_count == 1

        with Session(engine) as session:
            rows = list_transactions(session, STUDENT)
            level_msgs = session.scalars(
                select(Notification.message).where(Notification.type == "level_up")
            ).all()
        assert [(r.type, r.amount) for r in rows] == [
            ("manual_adjustment", 250), ("level_up_reward", 50),
        ]
        assert rows[1].description == "Level-up reward (Level 3)"
        assert level_msgs == ["🎉 You've reached Level 3! Rewards: 50 ₿, +1 Shield"]
        assert _notification_types(engine) == [
            "wallet_transaction", "level_up", "stats_adjusted",
        ]

    def test_circular_economy_xp(self, engine):
        settings = {"level_up_rewards": {**self.SETTINGS["level_up_rewards"],
                                         "count_bits_toward_xp": True}}
        _seed(engine, xp_settings=settings)
        reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=250,
            apply_personal=False, apply_group=False,
        )
        assert _xp(engine).xp == 300

    def test_disabled_by_default(self, engine):
        _seed(engine)
        reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=250,
            apply_personal=False, apply_group=False,
        )
        with Session(engine) as session:
            assert len(list_transactions(session, STUDENT)) == 1


class TestBestEffortProgression:
    def test_badge_failure_keeps_balance(self, engine, monkeypatch, caplog):
        _seed(engine, badges=[ROOKIE])
        monkeypatch.setattr(
            reward_service, "evaluate_badges", MagicMock(side_effect=RuntimeError("boom"))
        )
        with caplog.at_level(logging.ERROR, logger="classquest.services.reward_service"):
            outcome = reward_service.award_bits(
                engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=100,
            )

        assert outcome.progression_failed
        assert outcome.progression is None
        assert "Progression failed" in caplog.text
        assert _stats(engine).balance == 100
        assert _xp(engine) is None
        assert _notification_types(engine) == ["wallet_transaction"]


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------
class TestApplyStatBoost:
    def test_item_boost_with_timed_discount(self, engine):
        _seed(engine)
        outcome = reward_service.apply_stat_boost(
            engine, user_id=STUDENT, classroom_id=CLASSROOM,
            boost=StatBoost(luck=1.0, discount=10),
            discount_duration=timedelta(days=1),
            effects_text="Lucky Coupon",
        )
        stats = _stats(engine)
        assert stats.luck == 2.0
        assert stats.discount == 10
        assert stats.timed_discount == 10
        assert stats.discount_expires_at is not None
        assert _xp(engine).xp == 20
        assert len(outcome.notifications) == 1
        note = outcome.notifications[0]
        assert note.type == "stats_adjusted"
        assert note.message.startswith("Your stats were updated via bazaar item: ")
        assert note.message.endswith("Effects: Lucky Coupon.")
        assert [c["field"] for c in note.changes] == ["luck", "discount", "xp"]

    def test_negative_edit_clamps(self, engine):
        _seed(engine, stats={"luck": 1.0, "discount": 5})
        reward_service.apply_stat_boost(
            engine, user_id=STUDENT, classroom_id=CLASSROOM,
            boost=StatBoost(luck=-3.0, discount=-10), context="teacher adjustment",
        )
        stats = _stats(engine)
        assert stats.luck == 0.0
        assert stats.discount == 0
        assert _xp(engine) is None

    def test_discount_capped_at_hundred(self, engine):
        _seed(engine, stats={"discount": 95})
        reward_service.apply_stat_boost(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, boost=StatBoost(discount=20),
        )
        assert _stats(engine).discount == 100

    def test_expired_discount_cleared_on_read(self, engine):
        _seed(engine, stats={
            "discount": 20, "timed_discount": 20,
            "discount_expires_at": datetime.now(UTC) - timedelta(hours=1),
        })
        summary = reward_service.get_student_summary(
            engine, user_id=STUDENT, classroom_id=CLASSROOM,
        )
        assert summary.discount == 0
        stats = _stats(engine)
        assert stats.discount == 0
        assert stats.discount_expires_at is None

    def test_active_discount_kept(self, engine):
        _seed(engine, stats={
            "discount": 20, "timed_discount": 20,
            "discount_expires_at": datetime.now(UTC) + timedelta(hours=1),
        })
        summary = reward_service.get_student_summary(
            engine, user_id=STUDENT, classroom_id=CLASSROOM,
        )
        assert summary.discount == 20

    def test_expiry_keeps_permanent_discount(self, engine):
        _seed(engine, stats={"discount": 30})
        reward_service.apply_stat_boost(
            engine, user_id=STUDENT, classroom_id=CLASSROOM,
            boost=StatBoost(discount=10), discount_duration=timedelta(hours=1),
        )
        with Session(engine) as session:
            row = session.get(ClassroomStats, (STUDENT, CLASSROOM))
            assert (row.discount, row.timed_discount) == (40, 10)
            row.discount_expires_at = datetime.now(UTC) - timedelta(minutes=1)
            session.commit()

        summary = reward_service.get_student_summary(
            engine, user_id=STUDENT, classroom_id=CLASSROOM,
        )
        assert summary.discount == 30
        stats = _stats(engine)
        assert stats.discount == 30
        assert stats.timed_discount == 0

    def test_cut_shrinks_timed_part(self, engine):
        _seed(engine, stats={
            "discount": 30, "timed_discount": 10,
            "discount_expires_at": datetime.now(UTC) + timedelta(hours=1),
        })
        reward_service.apply_stat_boost(
            engine, user_id=STUDENT, classroom_id=CLASSROOM,
            boost=StatBoost(discount=-25), context="teacher adjustment",
        )
        stats = _stats(engine)
        assert (stats.discount, stats.timed_discount) == (5, 5)

    def test_expiry_appears_in_change_log(self, engine):
        _seed(engine, stats={
            "discount": 40, "timed_discount": 10,
            "discount_expires_at": datetime.now(UTC) - timedelta(hours=1),
        })
        outcome = reward_service.award_bits(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=10,
        )
        note = outcome.notifications[-1]
        assert note.type == "stats_adjusted"
        assert {"field": "discount", "from": 40, "to": 30} in note.changes
        assert _stats(engine).discount == 30

    def test_summary_does_not_create_stats_row(self, engine):
        _seed(engine)
        summary = reward_service.get_student_summary(
            engine, user_id=STUDENT, classroom_id=CLASSROOM,
        )
        assert (summary.balance, summary.multiplier, summary.discount) == (0, 1.0, 0)
        assert summary.level == 1
        assert _stats(engine) is None


# ---------------------------------------------------------------------------
# XP
# ---------------------------------------------------------------------------
class TestGrantXP:
    def test_order_of_awards_does_not_matter(self, engine):
        _seed(engine, users=(STUDENT, 2))
        for amount in (5, 3):
            reward_service.grant_xp(engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=amount)
        for amount in (3, 5):
            reward_service.grant_xp(engine, user_id=2, classroom_id=CLASSROOM, amount=amount)
        assert _xp(engine, STUDENT).xp == _xp(engine, 2).xp == 8

    def test_disabled_classroom_grants_nothing(self, engine):
        _seed(engine, xp_settings={"enabled": False})
        outcome = reward_service.grant_xp(
            engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=50,
        )
        assert outcome.progression is None
        assert _xp(engine) is None

    def test_level_always_derived_from_xp(self, engine):
        _seed(engine, xp_settings={"leveling_formula": "linear"})
        reward_service.grant_xp(engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=250)
        assert _xp(engine).level == 3

    def test_summary_progress(self, engine):
        _seed(engine)
        reward_service.grant_xp(engine, user_id=STUDENT, classroom_id=CLASSROOM, amount=175)
        summary = reward_service.get_student_summary(
            engine, user_id=STUDENT, classroom_id=CLASSROOM,
        )
        assert summary.level == 2
        assert summary.progress.progress == 50

    def test_summary_level_follows_current_formula(self, engine):
        _seed(engine, xp=350, xp_settings={"levelingFormula": "linear"})
        summary = reward_service.get_student_summary(
            engine, user_id=STUDENT, classroom_id=CLASSROOM,
        )
        assert summary.xp == 350
        assert summary.level == 4
