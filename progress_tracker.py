"""
Progress tracker: owns UserMission rows and drives them through the pure
state machine in mission_state.py.

Nothing here commits. Callers (the completion coordinator or a blueprint)
decide where the unit of work ends; `save` only flushes so that a lost update
surfaces as ConcurrencyConflict as early as possible.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

import catalog
import mission_state
from exceptions import AlreadyCompleted, ConcurrencyConflict, NotFound, RequestValidationError
from extensions import db
from mission_state import MissionProgress, UserMissionStatus
from models import UserMission
from timezone_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_NOTE = "Mission verification failed"


def _find_pair(user_id, mission_id):
    return db.session.scalars(
        select(UserMission).where(UserMission.user_id == user_id, UserMission.mission_id == mission_id)
    ).first()


def _existing_or_completed(existing):
    if existing.status == UserMissionStatus.COMPLETED:
        raise AlreadyCompleted(
            "Mission already completed by this user",
            details={"userMissionId": existing.id},
        )
    return existing


def assign(user_id, mission_id, now=None):
    """
    Idempotent assignment. Returns the live UserMission for the pair, creating
    it in ASSIGNED with target_progress copied from the mission when absent.
    """
    mission = catalog.find_mission(mission_id)

    existing = _find_pair(user_id, mission_id)
    if existing is not None:
        return _existing_or_completed(existing)

    if not mission.is_active:
        raise NotFound(f"Mission {mission_id} not found or inactive")

    now = now or utcnow()
    initial = MissionProgress.assigned(mission.required_submissions)
    user_mission = UserMission(
        user_id=user_id,
        mission_id=mission.id,
        submission_image_urls=[],
        assigned_at=now,
    )
    user_mission.apply_progress(initial)
    try:
        # A lost race undoes only this insert; the caller's earlier writes stay staged.
        with db.session.begin_nested():
            db.session.add(user_mission)
    except IntegrityError:
        # Another request assigned the same pair first; theirs wins.
        logger.info(f"Concurrent assignment of mission {mission_id} to {user_id}; returning existing row")
        existing = _find_pair(user_id, mission_id)
        if existing is None:
            raise ConcurrencyConflict("Mission assignment raced with another writer")
        return _existing_or_completed(existing)

    logger.info(f"Assigned mission {mission_id} to user {user_id} (target {initial.target_progress})")
    return user_mission


def load(user_mission_id, user_id=None):
    """Load a UserMission; a row owned by someone else is reported as missing."""
    user_mission = db.session.get(UserMission, user_mission_id, populate_existing=True)
    if user_mission is None or (user_id is not None and user_mission.user_id != user_id):
        raise NotFound(f"User mission {user_mission_id} not found")
    return user_mission


def save(user_mission):
    db.session.add(user_mission)
    try:
        db.session.flush()
    except StaleDataError as e:
        db.session.rollback()
        raise ConcurrencyConflict(
            "User mission was modified by another request; reload and retry",
            details={"userMissionId": user_mission.id},
        ) from e
    return user_mission


def start_progress(user_mission):
    user_mission.apply_progress(mission_state.start(user_mission.progress))
    return user_mission


def submit_evidence(user_mission, image_urls, note=None, now=None):
    if not image_urls or not all(isinstance(url, str) and url.strip() for url in image_urls):
        raise RequestValidationError("At least one image is required for submission")
    user_mission.apply_progress(mission_state.submit(user_mission.progress, now or utcnow()))
    # only the latest round's evidence is kept
    user_mission.submission_image_urls = list(image_urls)
    user_mission.submission_note = note
    return user_mission


def record_verification(user_mission, approved, note=None, now=None):
    user_mission.apply_progress(
        mission_state.record_verification(user_mission.progress, approved, now or utcnow())
    )
    user_mission.verification_note = note if (approved or note) else DEFAULT_REJECTION_NOTE
    return user_mission


def advance_after_approval(user_mission, required_submissions, now=None):
    if required_submissions != user_mission.target_progress:
        # The catalog changed after assignment; the target fixed at assignment wins.
        logger.warning(
            f"Mission {user_mission.mission_id} now requires {required_submissions} submission(s); "
            f"user mission {user_mission.id} keeps its target of {user_mission.target_progress}"
        )
    user_mission.apply_progress(mission_state.advance(user_mission.progress, now or utcnow()))
    return user_mission


def list_user_missions(user_id, status=None):
    query = select(UserMission).where(UserMission.user_id == user_id)
    if status:
        query = query.where(UserMission.status == UserMissionStatus(status))
    return list(db.session.scalars(query.order_by(UserMission.assigned_at.desc())))


def list_pending_verifications(submitted_before=None):
    query = select(UserMission).where(UserMission.status == UserMissionStatus.SUBMITTED)
    if submitted_before is not None:
        query = query.where(UserMission.submitted_at < submitted_before)
    return list(db.session.scalars(query.order_by(UserMission.submitted_at)))


def progress_percentage(user_mission):
    return user_mission.current_progress / user_mission.target_progress * 100
