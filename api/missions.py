import logging
from flask import Blueprint, request, jsonify

import catalog
import completion
import dependencies
import progress_tracker
from extensions import db, limiter
from .auth import token_required, admin_required
from .pydantic_models import (
    AssignMissionRequest, CreateMissionRequest, MissionListQuery, MissionStatusUpdate,
    SubmitMissionRequest, UserMissionsQuery, VerifyMissionRequest,
)

missions_bp = Blueprint('missions_bp', __name__)

# --- Catalog ---
@missions_bp.route('', methods=['GET'], strict_slashes=False)
@token_required
def list_missions(user_id):
    query = MissionListQuery.model_validate(request.args.to_dict())
    missions = catalog.list_missions(mission_type=query.type, difficulty=query.difficulty)
    return jsonify({"missions": [m.to_dict() for m in missions]}), 200

@missions_bp.route('/<mission_id>', methods=['GET'])
@token_required
def get_mission(user_id, mission_id):
    return jsonify(catalog.find_mission(mission_id).to_dict()), 200

@missions_bp.route('', methods=['POST'], strict_slashes=False)
@admin_required
def create_mission(user_id):
    req_data = CreateMissionRequest.model_validate(request.get_json())
    mission = catalog.create_mission(
        title=req_data.title,
        description=req_data.description,
        mission_type=req_data.type,
        difficulty=req_data.difficulty,
        co2_reduction_amount=req_data.co2ReductionAmount,
        credit_reward=req_data.creditReward,
        required_submissions=req_data.requiredSubmissions,
        image_url=req_data.imageUrl,
        instructions=req_data.instructions,
        verification_criteria=req_data.verificationCriteria,
    )
    db.session.commit()
    logging.info(f"Admin {user_id} created mission {mission.id}")
    return jsonify(mission.to_dict()), 201

@missions_bp.route('/<mission_id>/status', methods=['PATCH'])
@admin_required
def update_mission_status(user_id, mission_id):
    req_data = MissionStatusUpdate.model_validate(request.get_json())
    mission = catalog.set_mission_status(mission_id, req_data.status)
    db.session.commit()
    logging.info(f"Admin {user_id} set mission {mission_id} to {mission.status.value}")
    return jsonify(mission.to_dict()), 200

# --- User missions ---
@missions_bp.route('/assign', methods=['POST'])
@token_required
def assign_mission(user_id):
    req_data = AssignMissionRequest.model_validate(request.get_json())
    user_mission = progress_tracker.assign(user_id, req_data.missionId)
    db.session.commit()
    return jsonify(user_mission.to_dict(include_mission=True)), 201

@missions_bp.route('/user/daily-missions', methods=['GET'])
@token_required
def get_daily_missions(user_id):
    user_missions, is_new = catalog.daily_missions(user_id, count=dependencies.DAILY_MISSION_COUNT)
    db.session.commit()
    return jsonify({
        "missions": [um.to_dict(include_mission=True) for um in user_missions],
        "isNewAssignment": is_new,
    }), 200

@missions_bp.route('/user/missions', methods=['GET'])
@token_required
def get_user_missions(user_id):
    query = UserMissionsQuery.model_validate(request.args.to_dict())
    user_missions = progress_tracker.list_user_missions(user_id, status=query.status)
    return jsonify({"missions": [um.to_dict(include_mission=True) for um in user_missions]}), 200

@missions_bp.route('/user-missions/<user_mission_id>/submit', methods=['PATCH'])
@token_required
@limiter.limit("30 per hour")
def submit_mission(user_id, user_mission_id):
    req_data = SubmitMissionRequest.model_validate(request.get_json())
    result = completion.submit_and_verify(
        user_mission_id, req_data.imageUrls, req_data.note, user_id=user_id
    )
    return jsonify(result.to_dict()), 200

# --- Manual review ---
@missions_bp.route('/user-missions/<user_mission_id>/verify', methods=['PATCH'])
@admin_required
def verify_mission(user_id, user_mission_id):
    req_data = VerifyMissionRequest.model_validate(request.get_json())
    result = completion.review_submission(
        user_mission_id, req_data.decision == "approved", req_data.verificationNote
    )
    logging.info(f"Admin {user_id} {req_data.decision} user mission {user_mission_id}")
    return jsonify(result.to_dict()), 200

@missions_bp.route('/pending-verifications', methods=['GET'])
@admin_required
def get_pending_verifications(user_id):
    pending = progress_tracker.list_pending_verifications()
    return jsonify({"missions": [um.to_dict(include_mission=True) for um in pending]}), 200
