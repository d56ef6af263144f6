import logging
import re
import secrets
from typing import Optional

from bson import ObjectId
from pymongo.database import Database

from database import POSTS

logger = logging.getLogger(__name__)

FALLBACK_SLUG = "untitled-post"

_DISALLOWED = re.compile(r"[^a-z0-9 -]")
_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")


def slugify(title: str) -> str:
    s = _DISALLOWED.sub("", (title or "").lower())
    s = _WHITESPACE.sub("-", s)
    s = _HYPHENS.sub("-", s).strip("-")
    return s or FALLBACK_SLUG


def _is_available(db: Database, slug: str, own_id: Optional[ObjectId]) -> bool:
    existing = db[POSTS].find_one({"slug": slug}, {"_id": 1})
    return existing is None or (own_id is not None and existing["_id"] == own_id)


def unique_slug(db: Database, title: str, own_id: Optional[ObjectId] = None,
                max_attempts: int = 100) -> str:
    """
    Return a slug for ``title`` that no other post holds.

    Tries the base slug, then ``-1``, ``-2`` ... up to ``max_attempts``
    numbered candidates. Past that, short random suffixes are tried until
    one is free. A post may keep a slug it already owns (``own_id``).
    """
    base = slugify(title)
    candidate = base
    counter = 1
    while not _is_available(db, candidate, own_id):
        if counter > max_attempts:
            logger.warning("Slug %r exhausted %d numbered candidates", base, max_attempts)
            candidate = f"{base}-{secrets.token_hex(3)}"
            while not _is_available(db, candidate, own_id):
                candidate = f"{base}-{secrets.token_hex(3)}"
            break
        candidate = f"{base}-{counter}"
        counter += 1
    logger.debug("Resolved slug %r for title %r", candidate, title)
    return candidate
