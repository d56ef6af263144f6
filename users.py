import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import ConfigDict, EmailStr, Field
from pymongo import ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.database import Database

from config import Settings, get_settings
from database import COMMENTS, POSTS, USERS, cascade_session, create_document, get_db, now, oid, paginate
from errors import AuthenticationError, AuthorizationError, ConflictError, NotFoundError
from schemas import CamelModel, Role, User, UserOut, user_out
from security import (
    PUBLIC_USER_FIELDS,
    ensure_owner_or_admin,
    get_current_user,
    hash_password,
    issue_token,
    needs_rehash,
    require_admin,
    verify_password,
)

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["auth"])
router = APIRouter(prefix="/users", tags=["users"])


# -------------------------------------------------------------------
# Models
# -------------------------------------------------------------------
class RegisterIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$")
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    first_name: str = Field("", max_length=50)
    last_name: str = Field("", max_length=50)


class LoginIn(CamelModel):
    email: EmailStr
    password: str


class ProfileIn(CamelModel):
    """Profile fields a user may edit. Unknown fields are rejected."""
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    bio: Optional[str] = Field(None, max_length=500)
    avatar: Optional[str] = Field(None, max_length=500)


class RoleIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    role: Role


class StatusIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    is_active: bool


class AuthOut(CamelModel):
    message: str
    token: str
    user: UserOut


class MeOut(CamelModel):
    user: UserOut


class UserEnvelope(CamelModel):
    message: str
    user: UserOut


class UserPage(CamelModel):
    users: List[UserOut]
    total_pages: int
    current_page: int
    total: int


class PostSummary(CamelModel):
    id: str
    title: str
    slug: str
    excerpt: str = ""
    published_at: Optional[datetime] = None
    views: int = 0
    likes: List[str] = []


class UserProfileOut(UserOut):
    posts: List[PostSummary] = []


class MessageOut(CamelModel):
    message: str


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def load_user(db: Database, user_id: str) -> Dict[str, Any]:
    user = db[USERS].find_one({"_id": oid(user_id, "User")}, PUBLIC_USER_FIELDS)
    if not user:
        raise NotFoundError("User not found")
    return user


def _set_user_fields(db: Database, user_id: ObjectId, fields: Dict[str, Any]) -> Dict[str, Any]:
    user = db[USERS].find_one_and_update(
        {"_id": user_id},
        {"$set": {**fields, "updated_at": now()}},
        projection=PUBLIC_USER_FIELDS,
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise NotFoundError("User not found")
    return user


def _not_self(target: ObjectId, current: Dict[str, Any], message: str) -> None:
    if target == current["_id"]:
        raise AuthorizationError(message)


def delete_user_cascade(db: Database, user_id: ObjectId, session: Optional[ClientSession] = None) -> Dict[str, int]:
    post_ids = [p["_id"] for p in db[POSTS].find({"author": user_id}, {"_id": 1}, session=session)]
    authored = [c["_id"] for c in db[COMMENTS].find({"author": user_id}, {"_id": 1}, session=session)]
    comments = db[COMMENTS].delete_many(
        {"$or": [{"post": {"$in": post_ids}}, {"author": user_id}]}, session=session
    ).deleted_count
    if authored:
        db[POSTS].update_many({"comments": {"$in": authored}}, {"$pullAll": {"comments": authored}}, session=session)
    db[POSTS].update_many({"likes": user_id}, {"$pull": {"likes": user_id}}, session=session)
    posts = db[POSTS].delete_many({"author": user_id}, session=session).deleted_count
    db[USERS].delete_one({"_id": user_id}, session=session)
    return {"posts": posts, "comments": comments}


# -------------------------------------------------------------------
# Auth endpoints
# -------------------------------------------------------------------
@auth_router.post("/register", response_model=AuthOut, status_code=201)
def register(data: RegisterIn, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    email = data.email.lower()
    existing = db[USERS].find_one({"$or": [{"username": data.username}, {"email": email}]}, {"username": 1})
    if existing:
        field = "Username" if existing.get("username") == data.username else "Email"
        raise ConflictError(f"{field} already registered")

    pwd_hash, algo = hash_password(data.password)
    user = User(
        username=data.username,
        email=email,
        password_hash=pwd_hash,
        algo=algo,
        first_name=data.first_name,
        last_name=data.last_name,
    )
    doc = create_document(db, USERS, user.model_dump())
    logger.info("Registered user %s", data.username)
    return AuthOut(message="User registered successfully", token=issue_token(doc, settings), user=user_out(doc))


@auth_router.post("/login", response_model=AuthOut)
def login(data: LoginIn, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = db[USERS].find_one({"email": data.email.lower()})
    if not user or not verify_password(data.password, user.get("password_hash"), user.get("algo", "argon2")):
        raise AuthenticationError("Invalid credentials")
    if not user.get("is_active", True):
        raise AuthorizationError("Account is deactivated")

    if needs_rehash(user["password_hash"], user.get("algo", "argon2")):
        pwd_hash, algo = hash_password(data.password)
        db[USERS].update_one({"_id": user["_id"]}, {"$set": {"password_hash": pwd_hash, "algo": algo}})
    return AuthOut(message="Login successful", token=issue_token(user, settings), user=user_out(user))


@auth_router.get("/me", response_model=MeOut)
def me(user: Dict[str, Any] = Depends(get_current_user)):
    return MeOut(user=user_out(user))


@auth_router.put("/profile", response_model=UserEnvelope)
def update_profile(
    data: ProfileIn,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    updated = _set_user_fields(db, user["_id"], data.model_dump(exclude_unset=True, exclude_none=True))
    return UserEnvelope(message="Profile updated successfully", user=user_out(updated))


# -------------------------------------------------------------------
# User directory
# -------------------------------------------------------------------
@router.get("", response_model=UserPage)
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    admin: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {field: {"$regex": pattern, "$options": "i"}}
            for field in ("username", "first_name", "last_name", "email")
        ]
    docs, total, total_pages = paginate(
        db, USERS, query, page, limit, sort=[("created_at", -1), ("_id", -1)], projection=PUBLIC_USER_FIELDS
    )
    return UserPage(users=[user_out(d) for d in docs], total_pages=total_pages, current_page=page, total=total)


@router.get("/{user_id}", response_model=UserProfileOut)
def get_user(user_id: str, db: Database = Depends(get_db)):
    user = load_user(db, user_id)
    posts = db[POSTS].find(
        {"author": user["_id"], "status": "published"},
        {"title": 1, "slug": 1, "excerpt": 1, "published_at": 1, "views": 1, "likes": 1},
    ).sort([("published_at", -1), ("_id", -1)]).limit(10)
    summaries = [
        PostSummary(
            id=str(p["_id"]),
            title=p["title"],
            slug=p["slug"],
            excerpt=p.get("excerpt", ""),
            published_at=p.get("published_at"),
            views=p.get("views", 0),
            likes=[str(u) for u in p.get("likes", [])],
        )
        for p in posts
    ]
    return UserProfileOut(**user_out(user).model_dump(), posts=summaries)


@router.put("/{user_id}", response_model=UserEnvelope)
def update_user(
    user_id: str,
    data: ProfileIn,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    target = oid(user_id, "User")
    ensure_owner_or_admin(target, user, "Not authorized to update this profile")
    updated = _set_user_fields(db, target, data.model_dump(exclude_unset=True, exclude_none=True))
    return UserEnvelope(message="Profile updated successfully", user=user_out(updated))


@router.delete("/{user_id}", response_model=MessageOut)
def delete_user(
    user_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    target = load_user(db, user_id)
    _not_self(target["_id"], admin, "Cannot delete your own account")
    with cascade_session(db, settings.mongo_transactions) as session:
        removed = delete_user_cascade(db, target["_id"], session)
    logger.info(
        "User %s deleted by %s (%d posts, %d comments)",
        target["username"], admin["username"], removed["posts"], removed["comments"],
    )
    return MessageOut(message="User deleted successfully")


@router.put("/{user_id}/role", response_model=UserEnvelope)
def update_role(
    user_id: str,
    data: RoleIn,
    admin: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    target = oid(user_id, "User")
    _not_self(target, admin, "Cannot change your own role")
    updated = _set_user_fields(db, target, {"role": data.role})
    logger.info("User %s role set to %s by %s", updated["username"], data.role, admin["username"])
    return UserEnvelope(message="User role updated successfully", user=user_out(updated))


@router.put("/{user_id}/status", response_model=UserEnvelope)
def update_status(
    user_id: str,
    data: StatusIn,
    admin: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
):
    target = oid(user_id, "User")
    _not_self(target, admin, "Cannot change your own status")
    updated = _set_user_fields(db, target, {"is_active": data.is_active})
    state = "activated" if data.is_active else "deactivated"
    logger.info("User %s %s by %s", updated["username"], state, admin["username"])
    return UserEnvelope(message=f"User {state} successfully", user=user_out(updated))
