"""Tests for the carbon credit ledger.

Proves:
- balance == total_earned - total_spent after every posting.
- Overspending is refused and stages nothing.
- A mission reward is credited at most once, by the ledger check and by the
  database index.
"""

import datetime

import pytest
from sqlalchemy.exc import IntegrityError

import ledger
from exceptions import InsufficientBalance, InvalidTransition, NotFound, RequestValidationError
from extensions import db
from models import CarbonCredit, CarbonCreditTransaction, TransactionStatus, TransactionType


def _assert_balanced(user_id) -> None:
    credit = ledger.find_balance(user_id)
    assert credit.balance == credit.total_earned - credit.total_spent
    assert credit.balance >= 0


class TestBalanceEntity:

    def test_new_balance_starts_at_zero(self) -> None:
        credit = CarbonCredit(user_id="u1")
        assert (credit.balance, credit.total_earned, credit.total_spent) == (0, 0, 0)

    def test_earn_spend_refund(self) -> None:
        credit = CarbonCredit(user_id="u1")
        credit.earn(100)
        credit.spend(30)
        credit.refund(10)
        assert (credit.balance, credit.total_earned, credit.total_spent) == (80, 100, 20)

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True])
    def test_amount_must_be_positive_integer(self, amount) -> None:
        with pytest.raises(RequestValidationError):
            CarbonCredit(user_id="u1").earn(amount)

    def test_cannot_overspend(self) -> None:
        credit = CarbonCredit(user_id="u1")
        credit.earn(10)
        assert not credit.can_spend(11)
        with pytest.raises(InsufficientBalance):
            credit.spend(11)
        assert credit.balance == 10

    def test_cannot_refund_more_than_spent(self) -> None:
        credit = CarbonCredit(user_id="u1")
        credit.earn(10)
        credit.spend(5)
        with pytest.raises(RequestValidationError):
            credit.refund(6)


class TestTransactionEntity:

    def test_only_pending_can_finish(self) -> None:
        tx = CarbonCreditTransaction(user_id="u1", type=TransactionType.EARNED, amount=5,
                                     description="x", source_type=ledger.MISSION_SOURCE)
        assert tx.status == TransactionStatus.PENDING
        tx.complete()
        assert tx.status == TransactionStatus.COMPLETED
        for finish in (tx.complete, tx.fail, tx.cancel):
            with pytest.raises(InvalidTransition):
                finish()


class TestPostTransaction:

    def test_earn_creates_balance_and_completed_entry(self, app) -> None:
        tx = ledger.post_transaction("u1", TransactionType.EARNED, 50, "Mission completed", ledger.MISSION_SOURCE, "m1")
        db.session.commit()

        assert tx.status == TransactionStatus.COMPLETED
        assert ledger.find_balance("u1").balance == 50
        _assert_balanced("u1")

    def test_spend_without_account(self, app) -> None:
        with pytest.raises(InsufficientBalance):
            ledger.post_transaction("u1", TransactionType.SPENT, 10, "Redeem", ledger.REWARD_SOURCE)

    def test_refund_without_account(self, app) -> None:
        with pytest.raises(NotFound):
            ledger.post_transaction("u1", TransactionType.REFUNDED, 10, "Refund", ledger.REWARD_SOURCE)

    def test_overspend_stages_nothing(self, app) -> None:
        ledger.post_transaction("u1", TransactionType.EARNED, 20, "Mission completed", ledger.MISSION_SOURCE, "m1")
        db.session.commit()

        with pytest.raises(InsufficientBalance):
            ledger.post_transaction("u1", TransactionType.SPENT, 21, "Redeem", ledger.REWARD_SOURCE, "r1")
        db.session.rollback()

        assert ledger.find_balance("u1").balance == 20
        assert db.session.query(CarbonCreditTransaction).count() == 1
        _assert_balanced("u1")

    def test_balance_identity_over_a_sequence(self, app) -> None:
        postings = [
            (TransactionType.EARNED, 100, "m1"),
            (TransactionType.SPENT, 40, "r1"),
            (TransactionType.EARNED, 15, "m2"),
            (TransactionType.REFUNDED, 10, "r1"),
            (TransactionType.SPENT, 85, "r2"),
        ]
        for tx_type, amount, source_id in postings:
            source = ledger.MISSION_SOURCE if tx_type == TransactionType.EARNED else ledger.REWARD_SOURCE
            ledger.post_transaction("u1", tx_type, amount, "posting", source, source_id)
            db.session.commit()
            _assert_balanced("u1")
        assert ledger.find_balance("u1").balance == 0


class TestMissionReward:

    def test_credited_once(self, make_mission) -> None:
        mission = make_mission(credit_reward=75)
        tx = ledger.credit_mission_reward("u1", mission)
        db.session.commit()
        assert tx.amount == 75
        assert tx.source_id == mission.id

        with pytest.raises(InvalidTransition):
            ledger.credit_mission_reward("u1", mission)

    def test_database_refuses_duplicate_earned_row(self, make_mission) -> None:
        mission = make_mission()
        ledger.credit_mission_reward("u1", mission)
        db.session.commit()

        db.session.add(CarbonCreditTransaction(
            user_id="u1", type=TransactionType.EARNED, amount=1, description="dup",
            source_type=ledger.MISSION_SOURCE, source_id=mission.id, status=TransactionStatus.COMPLETED,
        ))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_zero_reward_posts_nothing(self, make_mission) -> None:
        mission = make_mission(credit_reward=0)
        assert ledger.credit_mission_reward("u1", mission) is None
        assert ledger.find_balance("u1") is None


class TestHistoryAndStatistics:

    def test_history_pagination_newest_first(self, app) -> None:
        base = datetime.datetime(2026, 3, 1, 12, 0)
        for day in range(25):
            tx = ledger.post_transaction("u1", TransactionType.EARNED, 1, f"day {day}", ledger.MISSION_SOURCE, f"m{day}")
            tx.created_at = base + datetime.timedelta(days=day)
        db.session.commit()

        first = ledger.transaction_history("u1")
        assert first["total"] == 25
        assert len(first["transactions"]) == 20
        assert first["hasNext"] is True
        assert first["transactions"][0].description == "day 24"

        second = ledger.transaction_history("u1", offset=20)
        assert len(second["transactions"]) == 5
        assert second["hasNext"] is False

        assert ledger.transaction_history("u1", transaction_type="SPENT")["total"] == 0

    def test_statistics(self, app) -> None:
        now = datetime.datetime(2026, 3, 20, 3, 0)
        entries = [
            (TransactionType.EARNED, 60, ledger.MISSION_SOURCE, "m1", now - datetime.timedelta(days=2)),
            (TransactionType.EARNED, 30, ledger.MISSION_SOURCE, "m2", now - datetime.timedelta(days=25)),
            (TransactionType.EARNED, 10, "BONUS", "b1", now - datetime.timedelta(days=40)),
            (TransactionType.SPENT, 20, ledger.REWARD_SOURCE, "r1", now - datetime.timedelta(days=1)),
        ]
        for tx_type, amount, source, source_id, created in entries:
            tx = ledger.post_transaction("u1", tx_type, amount, "posting", source, source_id)
            tx.created_at = created
        db.session.commit()

        stats = ledger.statistics("u1", now=now)
        assert stats["currentBalance"] == 80
        assert stats["totalEarned"] == 100
        assert stats["totalSpent"] == 20
        assert stats["thisMonthEarned"] == 60
        assert stats["thisMonthSpent"] == 20
        assert stats["averageDailyEarnings"] == 3  # 90 / 30
        assert stats["topEarningSource"] == ledger.MISSION_SOURCE

    def test_statistics_for_unknown_user(self, app) -> None:
        stats = ledger.statistics("nobody")
        assert stats["currentBalance"] == 0
        assert stats["averageDailyEarnings"] == 0
        assert stats["topEarningSource"] == ledger.MISSION_SOURCE
