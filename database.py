"""
MongoDB access for the blog API.

The connected database handle lives on ``app.state.db`` and reaches the
route handlers through the ``get_db`` dependency, so tests can swap in an
in-memory database with ``app.dependency_overrides``.
"""
import logging
import math
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.client_session import ClientSession
from pymongo.database import Database

from config import Settings
from errors import NotFoundError, ServerError

logger = logging.getLogger(__name__)

USERS = "user"
POSTS = "post"
COMMENTS = "comment"


def connect(settings: Settings) -> Database:
    """Open the client and fail fast if the server cannot be reached."""
    client: MongoClient = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000)
    client.admin.command("ping")
    db = client[settings.database_name]
    logger.info("Connected to MongoDB database %r", settings.database_name)
    return db


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("username", ASCENDING)], unique=True)
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[POSTS].create_index([("slug", ASCENDING)], unique=True)
    db[POSTS].create_index([("status", ASCENDING), ("published_at", DESCENDING)])
    db[POSTS].create_index([("author", ASCENDING)])
    db[COMMENTS].create_index([("post", ASCENDING)])


def get_optional_db(request: Request) -> Optional[Database]:
    return getattr(request.app.state, "db", None)


def get_db(request: Request) -> Database:
    db = get_optional_db(request)
    if db is None:
        raise ServerError("Database not available")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: str, entity: str = "Resource") -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFoundError(f"{entity} not found")


def create_document(db: Database, collection: str, data: Dict[str, Any],
                    session: Optional[ClientSession] = None) -> Dict[str, Any]:
    doc = {**data}
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc.setdefault("updated_at", stamp)
    result = db[collection].insert_one(doc, session=session)
    doc["_id"] = result.inserted_id
    return doc


def paginate(db: Database, collection: str, query: Dict[str, Any], page: int, limit: int,
             sort: List[Tuple[str, int]], projection: Optional[Dict[str, int]] = None
             ) -> Tuple[List[Dict[str, Any]], int, int]:
    """Return ``(docs, total, total_pages)`` for one page of ``query``."""
    total = db[collection].count_documents(query)
    cursor = db[collection].find(query, projection).sort(sort).skip((page - 1) * limit).limit(limit)
    return list(cursor), total, math.ceil(total / limit)


@contextmanager
def cascade_session(db: Database, enabled: bool) -> Iterator[Optional[ClientSession]]:
    """
    Yield a session for a multi-step delete.

    With transactions enabled every step joins one transaction that is
    aborted if any step raises. Otherwise the steps run independently and
    ``None`` is yielded, which pymongo treats as "no session".
    """
    if not enabled:
        yield None
        return
    with db.client.start_session() as session:
        with session.start_transaction():
            yield session
