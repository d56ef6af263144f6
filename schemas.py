"""
Database Schemas for the Blog API

Each document model maps to a MongoDB collection using the lowercase
class name as the collection name. Documents are stored snake_case; the
API shapes further down are rendered camelCase.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Role = Literal["user", "admin"]
PostStatus = Literal["draft", "published", "archived"]


class User(BaseModel):
    """
    Collection: "user"
    """
    username: str = Field(..., description="Unique handle")
    email: EmailStr = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="Password hash (argon2/bcrypt)")
    algo: str = Field("argon2", description="Hash algorithm of password_hash")
    first_name: str = ""
    last_name: str = ""
    bio: str = ""
    avatar: str = Field("", description="Avatar image URL")
    role: Role = "user"
    is_active: bool = True


class Post(BaseModel):
    """
    Collection: "post"

    ``slug`` and ``published_at`` are filled in by the save hooks in posts.py.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    title: str = Field(..., max_length=200)
    content: str
    excerpt: str = Field("", max_length=500)
    slug: Optional[str] = None
    author: ObjectId
    tags: List[str] = []
    category: str
    featured_image: str = ""
    status: PostStatus = "draft"
    published_at: Optional[datetime] = None
    views: int = 0
    likes: List[ObjectId] = []
    comments: List[ObjectId] = []


class Comment(BaseModel):
    """
    Collection: "comment"
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    post: ObjectId
    author: ObjectId
    content: str = Field(..., min_length=1, max_length=2000)


# -------------------------------------------------------------------
# API shapes
# -------------------------------------------------------------------
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserOut(CamelModel):
    id: str
    username: str
    email: str
    first_name: str = ""
    last_name: str = ""
    bio: str = ""
    avatar: str = ""
    role: Role = "user"
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthorOut(CamelModel):
    id: str
    username: str
    first_name: str = ""
    last_name: str = ""
    avatar: str = ""
    bio: Optional[str] = None


class CommentOut(CamelModel):
    id: str
    post: str
    author: Optional[AuthorOut] = None
    content: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PostOut(CamelModel):
    id: str
    title: str
    content: str
    excerpt: str = ""
    slug: str
    author: Optional[AuthorOut] = None
    tags: List[str] = []
    category: str
    featured_image: str = ""
    status: PostStatus
    published_at: Optional[datetime] = None
    views: int = 0
    likes: List[str] = []
    comments: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PostDetailOut(PostOut):
    comments: List[CommentOut] = []


class PostPage(CamelModel):
    posts: List[PostOut]
    total_pages: int
    current_page: int
    total: int


def user_out(doc: Dict[str, Any]) -> UserOut:
    return UserOut(
        id=str(doc["_id"]),
        username=doc["username"],
        email=doc["email"],
        first_name=doc.get("first_name", ""),
        last_name=doc.get("last_name", ""),
        bio=doc.get("bio", ""),
        avatar=doc.get("avatar", ""),
        role=doc.get("role", "user"),
        is_active=doc.get("is_active", True),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def author_out(doc: Optional[Dict[str, Any]], with_bio: bool = False) -> Optional[AuthorOut]:
    if not doc:
        return None
    return AuthorOut(
        id=str(doc["_id"]),
        username=doc["username"],
        first_name=doc.get("first_name", ""),
        last_name=doc.get("last_name", ""),
        avatar=doc.get("avatar", ""),
        bio=doc.get("bio", "") if with_bio else None,
    )
