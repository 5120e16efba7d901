"""
Standardized error responses for the mission API.
Every error leaves the service as {"error_code", "message", "details"?} with the
HTTP status the error code belongs to.
"""

import logging
from flask import jsonify
from typing import Any, Optional

# Standard error codes for consistent API responses
ERROR_CODES = {
    # Authentication (401/403)
    "TOKEN_MISSING": "Authentication token is missing",
    "TOKEN_INVALID": "Authentication token is invalid or expired",
    "FORBIDDEN": "Administrator privileges are required",

    # Request shape (400)
    "INVALID_REQUEST": "Invalid request body or parameters",
    "VALIDATION_ERROR": "Request validation failed",

    # Lookups (404)
    "NOT_FOUND": "Resource not found",

    # Mission workflow and ledger (400/409/429)
    "INVALID_TRANSITION": "Operation is not allowed in the mission's current state",
    "ALREADY_COMPLETED": "Mission already completed",
    "INSUFFICIENT_BALANCE": "Insufficient carbon credits",
    "CONFLICT": "The resource was modified concurrently; reload and retry",
    "RATE_LIMITED": "Too many requests",

    # System errors (5xx)
    "SERVER_ERROR": "Internal server error",
    "EXTERNAL_SERVICE_ERROR": "External service unavailable",
}


def create_error_response(
    error_code: str,
    message: Optional[str] = None,
    details: Optional[Any] = None,
    status_code: int = 500
) -> tuple:
    """
    Build the JSON error body and status pair returned by handlers and decorators.

    Args:
        error_code: One of the ERROR_CODES keys; unknown codes degrade to SERVER_ERROR
        message: Overrides the code's default message
        details: Extra structured context (validation errors, ids)
        status_code: HTTP status code
    """
    if error_code not in ERROR_CODES:
        logging.warning(f"Unknown error code used: {error_code}")
        error_code = "SERVER_ERROR"

    body = {"error_code": error_code, "message": message or ERROR_CODES[error_code]}
    if details:
        body["details"] = details

    # 4xx at INFO, 5xx at ERROR
    log = logging.error if status_code >= 500 else logging.info
    log(f"API Error [{error_code}]: {body['message']} - Status: {status_code}")

    return jsonify(body), status_code


def workflow_error_response(e) -> tuple:
    """Render a MissionWorkflowError with the code and status it carries."""
    return create_error_response(e.error_code, e.message, e.details, status_code=e.status_code)
