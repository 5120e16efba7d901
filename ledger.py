"""
Carbon credit ledger: per-user balance aggregates plus an append-only list of
transactions.

A posting always stages the balance mutation and its completed transaction row
in the same session, without committing. The caller's commit is the atomic
boundary, so a balance can never move without its transaction (or vice versa).
"""

import datetime
import logging
import math
from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from exceptions import ConcurrencyConflict, InsufficientBalance, InvalidTransition, NotFound
from extensions import db
from models import CarbonCredit, CarbonCreditTransaction, TransactionStatus, TransactionType
from timezone_utils import local_start_of_month, utcnow

logger = logging.getLogger(__name__)

MISSION_SOURCE = "MISSION"
REWARD_SOURCE = "REWARD"
DEFAULT_PAGE_SIZE = 20


def find_balance(user_id):
    return db.session.scalars(select(CarbonCredit).where(CarbonCredit.user_id == user_id)).first()


def get_or_create_balance(user_id):
    credit = find_balance(user_id)
    if credit is None:
        now = utcnow()
        credit = CarbonCredit(user_id=user_id, created_at=now, updated_at=now)
        db.session.add(credit)
    return credit


def save_balance(credit):
    db.session.add(credit)
    try:
        db.session.flush()
    except StaleDataError as e:
        db.session.rollback()
        raise ConcurrencyConflict(
            "Carbon credit balance was modified by another request",
            details={"userId": credit.user_id},
        ) from e
    return credit


def append_transaction(transaction):
    db.session.add(transaction)
    return transaction


def post_transaction(user_id, transaction_type, amount, description, source_type, source_id=None):
    """
    Stage one completed ledger entry together with its balance mutation.
    Debits against a missing or too-small balance raise InsufficientBalance
    and stage nothing.
    """
    transaction_type = TransactionType(transaction_type)
    if transaction_type == TransactionType.EARNED:
        credit = get_or_create_balance(user_id)
    else:
        credit = find_balance(user_id)
        if credit is None:
            if transaction_type == TransactionType.SPENT:
                raise InsufficientBalance("Carbon credit account has no balance")
            raise NotFound(f"Carbon credit account for {user_id} not found")

    transaction = CarbonCreditTransaction(
        user_id=user_id,
        type=transaction_type,
        amount=amount,
        description=description,
        source_type=source_type,
        source_id=source_id,
    )
    if transaction_type == TransactionType.EARNED:
        credit.earn(amount)
    elif transaction_type == TransactionType.SPENT:
        credit.spend(amount)
    else:
        credit.refund(amount)
    transaction.complete()

    save_balance(credit)
    append_transaction(transaction)
    logger.info(f"Posted {transaction_type.value} {amount} for {user_id} ({source_type}:{source_id}); balance {credit.balance}")
    return transaction


def has_earned_for_source(user_id, source_type, source_id):
    return db.session.scalars(
        select(CarbonCreditTransaction.id).where(
            CarbonCreditTransaction.user_id == user_id,
            CarbonCreditTransaction.type == TransactionType.EARNED,
            CarbonCreditTransaction.source_type == source_type,
            CarbonCreditTransaction.source_id == source_id,
        )
    ).first() is not None


def credit_mission_reward(user_id, mission):
    """Stage the EARNED posting for a fully completed mission. Refuses a second posting."""
    if has_earned_for_source(user_id, MISSION_SOURCE, mission.id):
        raise InvalidTransition(
            "Mission reward already credited",
            details={"missionId": mission.id, "userId": user_id},
        )
    if mission.credit_reward <= 0:
        logger.info(f"Mission {mission.id} carries no credit reward; nothing posted for {user_id}")
        return None
    return post_transaction(
        user_id,
        TransactionType.EARNED,
        mission.credit_reward,
        f"Mission completed: {mission.title}",
        MISSION_SOURCE,
        mission.id,
    )


def transaction_history(user_id, transaction_type=None, limit=DEFAULT_PAGE_SIZE, offset=0):
    conditions = [CarbonCreditTransaction.user_id == user_id]
    if transaction_type:
        conditions.append(CarbonCreditTransaction.type == TransactionType(transaction_type))

    total = db.session.scalar(select(func.count()).select_from(CarbonCreditTransaction).where(*conditions))
    transactions = list(db.session.scalars(
        select(CarbonCreditTransaction)
        .where(*conditions)
        .order_by(CarbonCreditTransaction.created_at.desc(), CarbonCreditTransaction.id)
        .limit(limit)
        .offset(offset)
    ))
    return {
        "transactions": transactions,
        "total": total,
        "hasNext": offset + limit < total,
    }


def statistics(user_id, now=None):
    """
    Monthly and 30-day figures for the user's ledger. A user without a ledger
    row yet simply has zero everywhere.
    """
    now = now or utcnow()
    credit = find_balance(user_id)
    transactions = list(db.session.scalars(
        select(CarbonCreditTransaction).where(
            CarbonCreditTransaction.user_id == user_id,
            CarbonCreditTransaction.status == TransactionStatus.COMPLETED,
        )
    ))

    month_start = local_start_of_month(now)
    thirty_days_ago = now - datetime.timedelta(days=30)

    this_month_earned = sum(
        t.amount for t in transactions
        if t.type == TransactionType.EARNED and t.created_at >= month_start
    )
    this_month_spent = sum(
        t.amount for t in transactions
        if t.type == TransactionType.SPENT and t.created_at >= month_start
    )
    earned_last_30_days = sum(
        t.amount for t in transactions
        if t.type == TransactionType.EARNED and t.created_at >= thirty_days_ago
    )

    by_source = defaultdict(int)
    for t in transactions:
        if t.type == TransactionType.EARNED:
            by_source[t.source_type] += t.amount
    top_source = max(by_source, key=by_source.get) if by_source else MISSION_SOURCE

    return {
        "currentBalance": credit.balance if credit else 0,
        "totalEarned": credit.total_earned if credit else 0,
        "totalSpent": credit.total_spent if credit else 0,
        "thisMonthEarned": this_month_earned,
        "thisMonthSpent": this_month_spent,
        "averageDailyEarnings": math.floor(earned_last_30_days / 30 + 0.5),
        "topEarningSource": top_source,
    }
