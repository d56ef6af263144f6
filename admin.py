import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pymongo.database import Database

from database import COMMENTS, POSTS, USERS, get_db
from schemas import CamelModel
from security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

COLLECTIONS = (USERS, POSTS, COMMENTS)


class Stats(CamelModel):
    users: int
    posts: int
    comments: int
    total: int


class StatsOut(CamelModel):
    success: bool = True
    stats: Stats


class ClearedOut(CamelModel):
    success: bool = True
    message: str
    cleared_collections: List[str]


def collection_stats(db: Database) -> Stats:
    users = db[USERS].count_documents({})
    posts = db[POSTS].count_documents({})
    comments = db[COMMENTS].count_documents({})
    return Stats(users=users, posts=posts, comments=comments, total=users + posts + comments)


def clear_collections(db: Database) -> List[str]:
    for name in COLLECTIONS:
        deleted = db[name].delete_many({}).deleted_count
        logger.warning("Cleared %d documents from %r", deleted, name)
    return list(COLLECTIONS)


@router.get("/stats", response_model=StatsOut)
def stats(admin: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    return StatsOut(stats=collection_stats(db))


@router.delete("/clear-database", response_model=ClearedOut)
def clear_database(admin: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    logger.warning("Database clear requested by %s", admin["username"])
    cleared = clear_collections(db)
    return ClearedOut(message="Database cleared successfully", cleared_collections=cleared)
