from flask import Blueprint, request, jsonify

import ledger
from extensions import limiter
from .auth import token_required
from .pydantic_models import TransactionHistoryQuery

credits_bp = Blueprint('credits_bp', __name__)

@credits_bp.route('/balance', methods=['GET'])
@token_required
@limiter.exempt
def get_balance(user_id):
    credit = ledger.find_balance(user_id)
    if credit is None:
        # No ledger row until the first posting.
        return jsonify({"userId": user_id, "balance": 0, "totalEarned": 0, "totalSpent": 0, "updatedAt": None}), 200
    return jsonify(credit.to_dict()), 200

@credits_bp.route('/transactions', methods=['GET'])
@token_required
def get_transactions(user_id):
    query = TransactionHistoryQuery.model_validate(request.args.to_dict())
    page = ledger.transaction_history(user_id, transaction_type=query.type, limit=query.limit, offset=query.offset)
    return jsonify({
        "transactions": [t.to_dict() for t in page["transactions"]],
        "total": page["total"],
        "hasNext": page["hasNext"],
    }), 200

@credits_bp.route('/statistics', methods=['GET'])
@token_required
def get_statistics(user_id):
    return jsonify(ledger.statistics(user_id)), 200
