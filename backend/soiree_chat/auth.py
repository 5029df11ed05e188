import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config, constants
from .errors import AuthError, InvalidInputError
from .models import normalize_email

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class Principal:
    __slots__ = ("user_id", "is_admin")

    def __init__(self, user_id: str, is_admin: bool = False):
        self.user_id = user_id
        self.is_admin = is_admin

    def __repr__(self) -> str:
        return f"Principal({self.user_id!r}, is_admin={self.is_admin})"


def create_token(email: str, is_admin: bool = False, ttl: timedelta = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": email.strip().lower(),
        "admin": bool(is_admin),
        "iat": now,
        "exp": now + (ttl if ttl is not None else timedelta(hours=config.JWT_TTL_HOURS)),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def decode_token(token: str) -> Principal:
    if not token or not isinstance(token, str):
        raise AuthError(constants.ERR_NOT_AUTHENTICATED)
    try:
        data: Dict[str, Any] = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise AuthError(constants.ERR_EXPIRED_TOKEN)
    except jwt.InvalidTokenError as exc:
        logger.debug("rejected token: %s", exc)
        raise AuthError(constants.ERR_INVALID_TOKEN)
    try:
        email = normalize_email(data.get("sub"))
    except InvalidInputError:
        raise AuthError(constants.ERR_INVALID_TOKEN)
    return Principal(email, bool(data.get("admin", False)))


def auth_required(creds: HTTPAuthorizationCredentials = Depends(security)) -> Principal:
    if creds is None or creds.scheme.lower() != "bearer":
        raise AuthError(constants.ERR_NOT_AUTHENTICATED)
    return decode_token(creds.credentials)
