"""
Completion coordinator.

The only module that moves a UserMission into COMPLETED and the only caller
that touches both the progress tracker and the ledger in one unit of work.

A submission is handled in two database transactions: the SUBMITTED state is
committed before the judges are called, so no row lock is held across network
I/O, and the verdict is applied in a second, version-checked transaction that
covers the UserMission row, the balance row and the ledger entry together.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

import catalog
import dependencies
import ledger
import mission_state
import progress_tracker
from exceptions import ConcurrencyConflict, InvalidTransition
from extensions import db
from mission_state import UserMissionStatus
from models import CarbonCreditTransaction, UserMission
from verification import Verdict


@dataclass
class CompletionResult:
    user_mission: UserMission
    verdict: Optional[Verdict] = None
    is_auto_verified: bool = False
    credit_transaction: Optional[CarbonCreditTransaction] = None

    @property
    def is_fully_completed(self):
        return self.user_mission.status == UserMissionStatus.COMPLETED

    @property
    def remaining_submissions(self):
        return self.user_mission.remaining_submissions

    @property
    def points(self):
        return self.credit_transaction.amount if self.credit_transaction is not None else 0

    def to_dict(self):
        data = self.user_mission.to_dict()
        data.update({
            "isAutoVerified": self.is_auto_verified,
            "isFullyCompleted": self.is_fully_completed,
            "remainingSubmissions": self.remaining_submissions,
            "progressPercentage": progress_tracker.progress_percentage(self.user_mission),
            "points": self.points,
            "verification": self.verdict.model_dump(by_alias=True) if self.verdict is not None else None,
        })
        if self.verdict is not None and not self.is_auto_verified:
            data["verificationNote"] = "Pending verification"
        return data


def _commit(user_mission_id):
    try:
        db.session.commit()
    except (StaleDataError, IntegrityError) as e:
        db.session.rollback()
        raise ConcurrencyConflict(
            "User mission was modified by another request; reload and retry",
            details={"userMissionId": user_mission_id},
        ) from e


def _judge_request(mission, image_urls, note):
    # Plain values only: the judges run after the commit, outside any transaction.
    return (
        mission.title,
        mission.description,
        list(mission.verification_criteria or []),
        list(image_urls),
        note,
    )


def _decided_meanwhile(user_mission, expected_version):
    """
    Compare the reloaded row with the version committed before the judge call.
    A round already decided by a reviewer returns True; any other write in
    between is a conflict.
    """
    if user_mission.version == expected_version:
        return False
    if user_mission.status != UserMissionStatus.SUBMITTED:
        logging.info(
            f"User mission {user_mission.id} was decided ({user_mission.status.value}) "
            f"while its evidence was being verified; discarding the automatic verdict"
        )
        return True
    db.session.rollback()
    raise ConcurrencyConflict(
        "User mission changed while its evidence was being verified",
        details={"userMissionId": user_mission.id},
    )


def _apply_decision(user_mission, mission, approved, note):
    """
    Record a decided verdict and, on the final approved round, credit the
    reward. Everything is committed together or rolled back together.
    """
    transaction = None
    try:
        progress_tracker.record_verification(user_mission, approved, note)
        if approved:
            progress_tracker.advance_after_approval(user_mission, mission.required_submissions)
        progress_tracker.save(user_mission)

        if user_mission.status == UserMissionStatus.COMPLETED:
            transaction = ledger.credit_mission_reward(user_mission.user_id, mission)
        _commit(user_mission.id)
    except Exception:
        db.session.rollback()
        raise

    if user_mission.status == UserMissionStatus.COMPLETED:
        logging.info(
            f"User {user_mission.user_id} completed mission {mission.id}; "
            f"credited {transaction.amount if transaction else 0}"
        )
    elif approved:
        logging.info(
            f"Round approved for user mission {user_mission.id}: "
            f"{user_mission.current_progress}/{user_mission.target_progress}"
        )
    else:
        logging.info(f"Submission rejected for user mission {user_mission.id}: {user_mission.verification_note}")
    return transaction


def submit_and_verify(user_mission_id, image_urls, note=None, user_id=None, orchestrator=None):
    """
    Accept one round of evidence, have it judged and apply the verdict.
    When no judge can decide, the mission stays SUBMITTED for manual review
    and the result reports is_auto_verified=False.
    """
    orchestrator = orchestrator or dependencies.get_verification_orchestrator()

    user_mission = progress_tracker.load(user_mission_id, user_id=user_id)
    mission = catalog.find_mission(user_mission.mission_id)

    if not mission_state.can_submit(user_mission.status):
        if user_mission.status == UserMissionStatus.SUBMITTED:
            raise ConcurrencyConflict(
                "A submission for this mission is already awaiting verification",
                details={"userMissionId": user_mission_id},
            )
        raise InvalidTransition(
            f"A mission in {user_mission.status.value} cannot accept new evidence",
            details={"userMissionId": user_mission_id, "status": user_mission.status.value},
        )

    try:
        if user_mission.status == UserMissionStatus.ASSIGNED:
            progress_tracker.start_progress(user_mission)
        progress_tracker.submit_evidence(user_mission, image_urls, note)
        progress_tracker.save(user_mission)
        submitted_version = user_mission.version
        judge_request = _judge_request(mission, image_urls, note)
        _commit(user_mission_id)
    except Exception:
        db.session.rollback()
        raise

    verdict = orchestrator.verify(*judge_request)
    if not verdict.is_decided:
        logging.warning(f"User mission {user_mission_id} left for manual review: automatic verification unavailable")
        return CompletionResult(user_mission, verdict, is_auto_verified=False)

    user_mission = progress_tracker.load(user_mission_id)
    if _decided_meanwhile(user_mission, submitted_version):
        return CompletionResult(user_mission)
    transaction = _apply_decision(user_mission, mission, verdict.is_valid, verdict.reasoning)
    return CompletionResult(user_mission, verdict, is_auto_verified=True, credit_transaction=transaction)


def review_submission(user_mission_id, approved, note=None):
    """Manual review of a SUBMITTED mission; credits exactly as an automatic approval would."""
    user_mission = progress_tracker.load(user_mission_id)
    mission = catalog.find_mission(user_mission.mission_id)
    transaction = _apply_decision(user_mission, mission, approved, note)
    return CompletionResult(user_mission, credit_transaction=transaction)


def reverify_submission(user_mission_id, orchestrator=None):
    """
    Retry automatic verification for a submission that no judge could decide.
    Returns None when the mission is no longer waiting for a verdict.
    """
    orchestrator = orchestrator or dependencies.get_verification_orchestrator()

    user_mission = progress_tracker.load(user_mission_id)
    if user_mission.status != UserMissionStatus.SUBMITTED:
        logging.info(f"User mission {user_mission_id} is {user_mission.status.value}; nothing to re-verify")
        return None
    mission = catalog.find_mission(user_mission.mission_id)
    submitted_version = user_mission.version
    judge_request = _judge_request(mission, user_mission.submission_image_urls, user_mission.submission_note)
    # Release the read transaction before the judges are called.
    db.session.commit()

    verdict = orchestrator.verify(*judge_request)
    if not verdict.is_decided:
        return CompletionResult(user_mission, verdict, is_auto_verified=False)

    user_mission = progress_tracker.load(user_mission_id)
    if _decided_meanwhile(user_mission, submitted_version):
        return CompletionResult(user_mission)
    transaction = _apply_decision(user_mission, mission, verdict.is_valid, verdict.reasoning)
    return CompletionResult(user_mission, verdict, is_auto_verified=True, credit_transaction=transaction)
