import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import jwt  # PyJWT
from argon2 import PasswordHasher as Argon2Hasher
from argon2.exceptions import InvalidHashError, VerificationError
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.hash import bcrypt as bcrypt_hasher
from pymongo.database import Database

from config import Settings, get_settings
from database import USERS, get_db
from errors import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

# Missing or non-Bearer headers come through as None so the gate can answer 401 itself.
security = HTTPBearer(auto_error=False)
argon2_hasher = Argon2Hasher()

PUBLIC_USER_FIELDS = {"password_hash": 0, "algo": 0}


# -------------------------------------------------------------------
# Passwords
# -------------------------------------------------------------------
def hash_password(password: str) -> Tuple[str, str]:
    return argon2_hasher.hash(password), "argon2"


def verify_password(password: str, pwd_hash: Optional[str], algo: str = "argon2") -> bool:
    if not pwd_hash:
        return False
    if algo == "bcrypt":
        try:
            return bcrypt_hasher.verify(password, pwd_hash)
        except ValueError:
            return False
    try:
        return argon2_hasher.verify(pwd_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def needs_rehash(pwd_hash: str, algo: str) -> bool:
    return algo != "argon2" or argon2_hasher.check_needs_rehash(pwd_hash)


# -------------------------------------------------------------------
# Tokens
# -------------------------------------------------------------------
def create_jwt(payload: dict, settings: Settings, minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=settings.jwt_expire_min if minutes is None else minutes)
    to_encode = {**payload, "iat": int(now.timestamp()), "exp": int(exp.timestamp())}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def issue_token(user: Dict[str, Any], settings: Settings) -> str:
    return create_jwt({"sub": str(user["_id"])}, settings)


def decode_jwt(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Token is not valid")


# -------------------------------------------------------------------
# Auth gate
# -------------------------------------------------------------------
def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("No token, authorization denied")

    data = decode_jwt(credentials.credentials, settings)
    if not data.get("sub"):
        raise AuthenticationError("Token is not valid")
    try:
        user_id = ObjectId(data["sub"])
    except (InvalidId, TypeError):
        raise AuthenticationError("Token is not valid")

    user = db[USERS].find_one({"_id": user_id}, PUBLIC_USER_FIELDS)
    if not user:
        logger.debug("Token subject %s has no user record", user_id)
        raise AuthenticationError("Token is not valid")
    if not user.get("is_active", True):
        raise AuthorizationError("Account is deactivated")
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise AuthorizationError("Access denied. Admin role required.")
    return user


def is_admin(user: Dict[str, Any]) -> bool:
    return user.get("role") == "admin"


def ensure_owner_or_admin(owner_id: Any, user: Dict[str, Any], message: str = "Access denied") -> None:
    if str(owner_id) != str(user["_id"]) and not is_admin(user):
        raise AuthorizationError(message)
