import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Header
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from config import Config
from database import USERS, get_db, parse_object_id
from errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

TOKEN_SALT = "carrental-auth"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(Config.SECRET_KEY, salt=TOKEN_SALT)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def issue_token(user_id) -> str:
    return _serializer().dumps({"id": str(user_id)})


def read_token(token: str, max_age: Optional[int] = None) -> str:
    """Return the user id a token was issued for."""
    try:
        payload = _serializer().loads(token, max_age=max_age or Config.TOKEN_MAX_AGE)
    except SignatureExpired:
        raise Unauthorized("Token expired. Please log in again.")
    except BadSignature:
        raise Unauthorized("Invalid token. Please log in again.")
    if not isinstance(payload, dict) or not payload.get("id"):
        raise Unauthorized()
    return payload["id"]


def extract_token(authorization: Optional[str]) -> Optional[str]:
    """Accept both a raw token and a ``Bearer <token>`` header value."""
    if not authorization:
        return None
    value = authorization.strip()
    if value.lower().startswith("bearer "):
        value = value[7:].strip()
    return value or None


def get_current_user(authorization: Optional[str] = Header(None), db=Depends(get_db)) -> Dict[str, Any]:
    token = extract_token(authorization)
    if not token:
        raise Unauthorized()
    user_oid = parse_object_id(read_token(token))
    if user_oid is None:
        raise Unauthorized()
    user = db[USERS].find_one({"_id": user_oid}, {"password": 0})
    if not user:
        raise Unauthorized("User not found")
    if not user.get("is_active", True):
        raise Unauthorized("Account is deactivated")
    return user


def require_owner(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "owner":
        logger.info(f"Owner-only access denied for user {user['_id']}")
        raise Forbidden("Only owners can access this resource")
    return user
