import logging
import re
from typing import Any, Dict, Iterable, List, Literal, Optional, Set

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import ConfigDict, Field, field_validator
from pymongo import ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.database import Database

from config import Settings, get_settings
from database import COMMENTS, POSTS, USERS, cascade_session, create_document, get_db, now, oid, paginate
from errors import NotFoundError
from schemas import (
    CamelModel,
    Comment,
    CommentOut,
    Post,
    PostDetailOut,
    PostOut,
    PostPage,
    PostStatus,
    author_out,
)
from security import ensure_owner_or_admin, get_current_user, is_admin
from slugs import unique_slug

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/posts", tags=["posts"])

AUTHOR_FIELDS = {"username": 1, "first_name": 1, "last_name": 1, "avatar": 1, "bio": 1}


# -------------------------------------------------------------------
# Models
# -------------------------------------------------------------------
def normalize_tags(tags: Optional[Iterable[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    out: List[str] = []
    for tag in tags:
        tag = tag.strip().lower()
        if tag and tag not in out:
            out.append(tag)
    return out


def _required_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class PostCreateIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., max_length=200)
    content: str
    excerpt: Optional[str] = Field("", max_length=500)
    tags: List[str] = []
    category: str
    featured_image: Optional[str] = ""
    status: PostStatus = "draft"

    @field_validator("title", "content", "category")
    @classmethod
    def strip_required(cls, value):
        return _required_text(value)

    @field_validator("excerpt", "featured_image")
    @classmethod
    def blank_if_null(cls, value):
        return value or ""

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value):
        return normalize_tags(value)


class PostUpdateIn(CamelModel):
    """Every field a post author may change. Anything else is rejected."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, max_length=200)
    content: Optional[str] = None
    excerpt: Optional[str] = Field(None, max_length=500)
    tags: Optional[List[str]] = None
    category: Optional[str] = None
    featured_image: Optional[str] = None
    status: Optional[PostStatus] = None

    @field_validator("title", "content", "category")
    @classmethod
    def strip_required(cls, value):
        return _required_text(value)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value):
        return normalize_tags(value)


class CommentIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    content: str = Field(..., min_length=1, max_length=2000)

    @field_validator("content")
    @classmethod
    def strip_content(cls, value):
        return _required_text(value)


class PostEnvelope(CamelModel):
    message: str
    post: PostOut


class LikeOut(CamelModel):
    message: str
    action: Literal["liked", "unliked"]
    liked: bool
    likes: int


class CommentEnvelope(CamelModel):
    message: str
    comment: CommentOut


class CommentList(CamelModel):
    comments: List[CommentOut]


class MessageOut(CamelModel):
    message: str


# -------------------------------------------------------------------
# Post store
# -------------------------------------------------------------------
def apply_save_hooks(db: Database, doc: Dict[str, Any], modified: Set[str], settings: Settings) -> None:
    """
    Run the pre-save rules on ``doc`` in place.

    ``modified`` names the fields whose value changed in this save; for a new
    post it names every field that was set.
    """
    if not doc.get("slug") or "title" in modified:
        doc["slug"] = unique_slug(db, doc["title"], doc.get("_id"), settings.slug_max_attempts)
    if "status" in modified and doc.get("status") == "published" and not doc.get("published_at"):
        doc["published_at"] = now()
    doc["updated_at"] = now()


def insert_post(db: Database, data: Dict[str, Any], author_id: ObjectId, settings: Settings) -> Dict[str, Any]:
    doc = Post(**data, author=author_id).model_dump()
    doc["_id"] = ObjectId()
    apply_save_hooks(db, doc, set(data), settings)
    return create_document(db, POSTS, doc)


def update_post(db: Database, doc: Dict[str, Any], changes: Dict[str, Any], settings: Settings) -> Dict[str, Any]:
    modified = {key for key, value in changes.items() if doc.get(key) != value}
    doc.update(changes)
    apply_save_hooks(db, doc, modified, settings)
    fields = modified | {"slug", "published_at", "updated_at"}
    db[POSTS].update_one({"_id": doc["_id"]}, {"$set": {key: doc[key] for key in fields}})
    return doc


def delete_post_cascade(db: Database, post_id: ObjectId, session: Optional[ClientSession] = None) -> int:
    removed = db[COMMENTS].delete_many({"post": post_id}, session=session).deleted_count
    db[POSTS].delete_one({"_id": post_id}, session=session)
    return removed


def load_post(db: Database, post_id: str) -> Dict[str, Any]:
    post = db[POSTS].find_one({"_id": oid(post_id, "Post")})
    if not post:
        raise NotFoundError("Post not found")
    return post


# -------------------------------------------------------------------
# Rendering
# -------------------------------------------------------------------
def _authors(db: Database, ids: Iterable[ObjectId]) -> Dict[ObjectId, Dict[str, Any]]:
    ids = list(set(ids))
    if not ids:
        return {}
    return {u["_id"]: u for u in db[USERS].find({"_id": {"$in": ids}}, AUTHOR_FIELDS)}


def post_out(doc: Dict[str, Any], author: Optional[Dict[str, Any]] = None, with_bio: bool = False) -> PostOut:
    return PostOut(
        id=str(doc["_id"]),
        title=doc["title"],
        content=doc["content"],
        excerpt=doc.get("excerpt", ""),
        slug=doc["slug"],
        author=author_out(author, with_bio=with_bio),
        tags=doc.get("tags", []),
        category=doc["category"],
        featured_image=doc.get("featured_image", ""),
        status=doc["status"],
        published_at=doc.get("published_at"),
        views=doc.get("views", 0),
        likes=[str(u) for u in doc.get("likes", [])],
        comments=[str(c) for c in doc.get("comments", [])],
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def posts_out(db: Database, docs: List[Dict[str, Any]]) -> List[PostOut]:
    authors = _authors(db, (d["author"] for d in docs))
    return [post_out(d, authors.get(d["author"])) for d in docs]


def comments_out(db: Database, post_id: ObjectId) -> List[CommentOut]:
    docs = list(db[COMMENTS].find({"post": post_id}).sort([("created_at", 1), ("_id", 1)]))
    authors = _authors(db, (c["author"] for c in docs))
    return [comment_out(c, authors.get(c["author"])) for c in docs]


def comment_out(doc: Dict[str, Any], author: Optional[Dict[str, Any]]) -> CommentOut:
    return CommentOut(
        id=str(doc["_id"]),
        post=str(doc["post"]),
        author=author_out(author),
        content=doc["content"],
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


# -------------------------------------------------------------------
# Routes
# -------------------------------------------------------------------
@router.get("", response_model=PostPage)
def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    tag: Optional[str] = None,
    search: Optional[str] = None,
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {"status": "published"}
    if category:
        query["category"] = category
    if tag:
        query["tags"] = tag.strip().lower()
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"content": {"$regex": pattern, "$options": "i"}},
        ]
    docs, total, total_pages = paginate(
        db, POSTS, query, page, limit, sort=[("published_at", -1), ("_id", -1)]
    )
    return PostPage(posts=posts_out(db, docs), total_pages=total_pages, current_page=page, total=total)


@router.post("", response_model=PostEnvelope, status_code=201)
def create_post(
    data: PostCreateIn,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    doc = insert_post(db, data.model_dump(), user["_id"], settings)
    logger.info("Post %s (%s) created by %s", doc["_id"], doc["slug"], user["username"])
    return PostEnvelope(message="Post created successfully", post=post_out(doc, user))


@router.get("/user/posts", response_model=PostPage)
def my_posts(
    status: Optional[PostStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {"author": user["_id"]}
    if status:
        query["status"] = status
    docs, total, total_pages = paginate(
        db, POSTS, query, page, limit, sort=[("created_at", -1), ("_id", -1)]
    )
    posts = [post_out(d, user) for d in docs]
    return PostPage(posts=posts, total_pages=total_pages, current_page=page, total=total)


@router.get("/by-id/{post_id}", response_model=PostOut)
def get_post_by_id(
    post_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = load_post(db, post_id)
    ensure_owner_or_admin(post["author"], user)
    author = db[USERS].find_one({"_id": post["author"]}, AUTHOR_FIELDS)
    return post_out(post, author, with_bio=True)


@router.get("/{slug}", response_model=PostDetailOut)
def get_post(slug: str, db: Database = Depends(get_db)):
    post = db[POSTS].find_one_and_update(
        {"slug": slug, "status": "published"},
        {"$inc": {"views": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not post:
        raise NotFoundError("Post not found")
    author = db[USERS].find_one({"_id": post["author"]}, AUTHOR_FIELDS)
    out = post_out(post, author, with_bio=True)
    return PostDetailOut(**out.model_dump(exclude={"comments"}), comments=comments_out(db, post["_id"]))


@router.put("/{post_id}", response_model=PostEnvelope)
def edit_post(
    post_id: str,
    data: PostUpdateIn,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    post = load_post(db, post_id)
    ensure_owner_or_admin(post["author"], user, "Not authorized to update this post")
    post = update_post(db, post, data.model_dump(exclude_unset=True, exclude_none=True), settings)
    logger.info("Post %s updated by %s", post["_id"], user["username"])
    author = db[USERS].find_one({"_id": post["author"]}, AUTHOR_FIELDS)
    return PostEnvelope(message="Post updated successfully", post=post_out(post, author))


@router.delete("/{post_id}", response_model=MessageOut)
def delete_post(
    post_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    post = load_post(db, post_id)
    ensure_owner_or_admin(post["author"], user, "Not authorized to delete this post")
    with cascade_session(db, settings.mongo_transactions) as session:
        removed = delete_post_cascade(db, post["_id"], session)
    logger.info("Post %s deleted by %s with %d comments", post["_id"], user["username"], removed)
    return MessageOut(message="Post deleted successfully")


@router.post("/{post_id}/like", response_model=LikeOut)
def toggle_like(
    post_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = load_post(db, post_id)
    if user["_id"] in post.get("likes", []):
        update, action = {"$pull": {"likes": user["_id"]}}, "unliked"
    else:
        update, action = {"$addToSet": {"likes": user["_id"]}}, "liked"
    post = db[POSTS].find_one_and_update(
        {"_id": post["_id"]}, update, projection={"likes": 1}, return_document=ReturnDocument.AFTER
    )
    if not post:
        raise NotFoundError("Post not found")
    return LikeOut(
        message=f"Post {action}",
        action=action,
        liked=action == "liked",
        likes=len(post.get("likes", [])),
    )


# -------------------------------------------------------------------
# Comments
# -------------------------------------------------------------------
def _visible_post(db: Database, post_id: str, user: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    post = load_post(db, post_id)
    if post["status"] != "published":
        if user is None or (post["author"] != user["_id"] and not is_admin(user)):
            raise NotFoundError("Post not found")
    return post


@router.get("/{post_id}/comments", response_model=CommentList)
def list_comments(post_id: str, db: Database = Depends(get_db)):
    post = _visible_post(db, post_id)
    return CommentList(comments=comments_out(db, post["_id"]))


@router.post("/{post_id}/comments", response_model=CommentEnvelope, status_code=201)
def add_comment(
    post_id: str,
    data: CommentIn,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = _visible_post(db, post_id, user)
    doc = create_document(db, COMMENTS, Comment(post=post["_id"], author=user["_id"], content=data.content).model_dump())
    db[POSTS].update_one({"_id": post["_id"]}, {"$push": {"comments": doc["_id"]}})
    return CommentEnvelope(message="Comment added successfully", comment=comment_out(doc, user))


@router.delete("/{post_id}/comments/{comment_id}", response_model=MessageOut)
def delete_comment(
    post_id: str,
    comment_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = load_post(db, post_id)
    comment = db[COMMENTS].find_one({"_id": oid(comment_id, "Comment"), "post": post["_id"]})
    if not comment:
        raise NotFoundError("Comment not found")
    if comment["author"] != user["_id"]:
        ensure_owner_or_admin(post["author"], user, "Not authorized to delete this comment")
    db[COMMENTS].delete_one({"_id": comment["_id"]})
    db[POSTS].update_one({"_id": post["_id"]}, {"$pull": {"comments": comment["_id"]}})
    return MessageOut(message="Comment deleted successfully")
