"""
Mission catalog: read-only reference data for the workflow, plus the
administrative actions that create missions and the daily mission draw.
"""

import logging
import random

from sqlalchemy import select

from exceptions import NotFound, RequestValidationError
from extensions import db
from models import DifficultyLevel, Mission, MissionStatus, MissionType, UserMission
from timezone_utils import local_start_of_day, utcnow

DEFAULT_DAILY_MISSION_COUNT = 5


def find_mission(mission_id):
    mission = db.session.get(Mission, mission_id)
    if mission is None:
        raise NotFound(f"Mission {mission_id} not found")
    return mission


def list_missions(mission_type=None, difficulty=None, include_inactive=False):
    query = select(Mission).order_by(Mission.created_at.desc())
    if not include_inactive:
        query = query.where(Mission.status == MissionStatus.ACTIVE)
    if mission_type:
        query = query.where(Mission.type == MissionType(mission_type))
    if difficulty:
        query = query.where(Mission.difficulty == DifficultyLevel(difficulty))
    return list(db.session.scalars(query))


def create_mission(title, description, mission_type, difficulty, co2_reduction_amount,
                   credit_reward, required_submissions=1, image_url=None,
                   instructions=None, verification_criteria=None):
    if required_submissions < 1:
        raise RequestValidationError("requiredSubmissions must be at least 1")
    if credit_reward < 0 or co2_reduction_amount < 0:
        raise RequestValidationError("creditReward and co2ReductionAmount must not be negative")

    now = utcnow()
    mission = Mission(
        title=title,
        description=description,
        type=MissionType(mission_type),
        difficulty=DifficultyLevel(difficulty),
        co2_reduction_amount=co2_reduction_amount,
        credit_reward=credit_reward,
        required_submissions=required_submissions,
        image_url=image_url,
        instructions=list(instructions or []),
        verification_criteria=list(verification_criteria or []),
        status=MissionStatus.ACTIVE,
        created_at=now,
        updated_at=now,
    )
    db.session.add(mission)
    db.session.flush()
    logging.info(f"Created mission {mission.id} '{title}' ({required_submissions} submission(s), {credit_reward} credits)")
    return mission


def set_mission_status(mission_id, status):
    mission = find_mission(mission_id)
    mission.status = MissionStatus(status)
    db.session.flush()
    return mission


def daily_missions(user_id, now=None, count=DEFAULT_DAILY_MISSION_COUNT):
    """
    Returns (user_missions, is_new_assignment). Missions already assigned to the
    user today are returned as-is; otherwise a fresh random draw of active
    missions the user has never been assigned is handed out.
    """
    # Imported here because progress_tracker depends on this module.
    import progress_tracker

    now = now or utcnow()
    day_start = local_start_of_day(now)
    todays = list(db.session.scalars(
        select(UserMission)
        .where(UserMission.user_id == user_id, UserMission.assigned_at >= day_start)
        .order_by(UserMission.assigned_at)
    ))
    if todays:
        return todays, False

    already_assigned = select(UserMission.mission_id).where(UserMission.user_id == user_id)
    candidates = list(db.session.scalars(
        select(Mission).where(
            Mission.status == MissionStatus.ACTIVE,
            Mission.id.not_in(already_assigned),
        ).order_by(Mission.id)
    ))
    if not candidates:
        raise NotFound("No active missions available")

    # Same user and local day, same draw.
    rng = random.Random(f"{user_id}:{day_start.isoformat()}")
    picked = rng.sample(candidates, min(count, len(candidates)))
    assigned = [progress_tracker.assign(user_id, mission.id, now=now) for mission in picked]
    logging.info(f"Assigned {len(assigned)} daily mission(s) to user {user_id}")
    return assigned, True
