import logging
from functools import wraps

import jwt
from flask import request

from dependencies import get_jwt_secret_keys
from .error_utils import create_error_response

ADMIN_ROLE = "admin"


def decode_token(token):
    """Try every configured secret (current first, then previous) so tokens survive a key rotation."""
    last_error = None
    for secret in get_jwt_secret_keys():
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            raise
        except jwt.InvalidTokenError as e:
            last_error = e
    raise last_error or jwt.InvalidTokenError("No JWT secret configured")


def _authenticate():
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith('Bearer '):
        return None, create_error_response("TOKEN_MISSING", status_code=401)
    token = auth_header.split(' ')[1]
    try:
        claims = decode_token(token)
    except (jwt.ExpiredSignatureError, jwt.InvalidTokenError) as e:
        logging.info(f"Rejected bearer token: {e}")
        return None, create_error_response("TOKEN_INVALID", status_code=401)
    if not claims.get('sub'):
        return None, create_error_response("TOKEN_INVALID", status_code=401)
    return claims, None


def token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        claims, error = _authenticate()
        if error:
            return error
        kwargs['user_id'] = claims['sub']
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        claims, error = _authenticate()
        if error:
            return error
        if claims.get('role') != ADMIN_ROLE:
            return create_error_response("FORBIDDEN", status_code=403)
        kwargs['user_id'] = claims['sub']
        return f(*args, **kwargs)
    return decorated
