"""
Python client for the Blog API.

Keeps the bearer token and a snapshot of the signed-in user in a small JSON
session file, sends the token on every request, and signs the user out as
soon as the server answers 401.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests

logger = logging.getLogger(__name__)

DEFAULT_SESSION_FILE = Path.home() / ".blog_session.json"


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[list] = None):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class SessionExpired(ApiError):
    """Raised on 401; the stored session has already been cleared."""


class SessionStore:
    """Token and user snapshot persisted between runs."""

    def __init__(self, path: Union[str, Path] = DEFAULT_SESSION_FILE):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable session file %s", self.path)
            return {}

    def save(self, token: str, user: Dict[str, Any]) -> None:
        self.path.write_text(json.dumps({"token": token, "user": user}), encoding="utf-8")

    def update_user(self, user: Dict[str, Any]) -> None:
        data = self.load()
        if data.get("token"):
            self.save(data["token"], {**data.get("user", {}), **user})

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    @property
    def token(self) -> Optional[str]:
        return self.load().get("token")

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self.load().get("user")


class BlogClient:
    """
    Wrapper around every endpoint of the API.

    ``session`` defaults to a ``requests.Session``; anything with the same
    ``request(method, url, json=, params=, headers=)`` signature works.
    """

    def __init__(self, base_url: str, store: Optional[SessionStore] = None, session=None):
        self.base_url = base_url.rstrip("/")
        self.store = store or SessionStore()
        self.session = session or requests.Session()

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------
    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = {"Accept": "application/json"}
        token = self.store.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if kwargs.get("params"):
            kwargs["params"] = {k: v for k, v in kwargs["params"].items() if v is not None}

        response = self.session.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code == 401:
            self.store.clear()
            raise SessionExpired(401, body.get("message", "Unauthorized"))
        if response.status_code >= 400:
            raise ApiError(response.status_code, body.get("message", f"HTTP {response.status_code}"),
                           body.get("errors"))
        return body

    @property
    def current_user(self) -> Optional[Dict[str, Any]]:
        return self.store.user

    @property
    def is_authenticated(self) -> bool:
        return bool(self.store.token)

    # -------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------
    def register(self, username: str, email: str, password: str, **profile) -> Dict[str, Any]:
        data = self._request("POST", "/auth/register",
                             json={"username": username, "email": email, "password": password, **profile})
        self.store.save(data["token"], data["user"])
        return data["user"]

    def login(self, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.store.save(data["token"], data["user"])
        return data["user"]

    def logout(self) -> None:
        self.store.clear()

    def restore(self) -> Optional[Dict[str, Any]]:
        """Re-validate a stored session against ``/auth/me``."""
        if not self.store.token:
            return None
        try:
            user = self._request("GET", "/auth/me")["user"]
        except SessionExpired:
            return None
        self.store.update_user(user)
        return user

    def update_profile(self, **fields) -> Dict[str, Any]:
        user = self._request("PUT", "/auth/profile", json=fields)["user"]
        self.store.update_user(user)
        return user

    # -------------------------------------------------------------------
    # Posts
    # -------------------------------------------------------------------
    def get_posts(self, page: int = 1, limit: int = 10, category: Optional[str] = None,
                  tag: Optional[str] = None, search: Optional[str] = None) -> Dict[str, Any]:
        params = {"page": page, "limit": limit, "category": category, "tag": tag, "search": search}
        return self._request("GET", "/posts", params=params)

    def get_post(self, slug: str) -> Dict[str, Any]:
        return self._request("GET", f"/posts/{slug}")

    def get_post_by_id(self, post_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/posts/by-id/{post_id}")

    def create_post(self, **post) -> Dict[str, Any]:
        return self._request("POST", "/posts", json=post)["post"]

    def update_post(self, post_id: str, **changes) -> Dict[str, Any]:
        return self._request("PUT", f"/posts/{post_id}", json=changes)["post"]

    def delete_post(self, post_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/posts/{post_id}")

    def like_post(self, post_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/posts/{post_id}/like")

    def get_user_posts(self, status: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        return self._request("GET", "/posts/user/posts", params={"status": status, "page": page, "limit": limit})

    def list_comments(self, post_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/posts/{post_id}/comments")["comments"]

    def add_comment(self, post_id: str, content: str) -> Dict[str, Any]:
        return self._request("POST", f"/posts/{post_id}/comments", json={"content": content})["comment"]

    def delete_comment(self, post_id: str, comment_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/posts/{post_id}/comments/{comment_id}")

    def is_liked_by(self, post: Dict[str, Any], user: Optional[Dict[str, Any]] = None) -> bool:
        user = user or self.current_user
        if not user:
            return False
        return str(user["id"]) in {str(like) for like in post.get("likes", [])}

    # -------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------
    def get_users(self, page: int = 1, limit: int = 10, search: Optional[str] = None) -> Dict[str, Any]:
        return self._request("GET", "/users", params={"page": page, "limit": limit, "search": search})

    def get_user(self, user_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/users/{user_id}")

    def update_user(self, user_id: str, **fields) -> Dict[str, Any]:
        user = self._request("PUT", f"/users/{user_id}", json=fields)["user"]
        if self.current_user and self.current_user.get("id") == user["id"]:
            self.store.update_user(user)
        return user

    def delete_user(self, user_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/users/{user_id}")

    def update_user_role(self, user_id: str, role: str) -> Dict[str, Any]:
        return self._request("PUT", f"/users/{user_id}/role", json={"role": role})["user"]

    def update_user_status(self, user_id: str, is_active: bool) -> Dict[str, Any]:
        return self._request("PUT", f"/users/{user_id}/status", json={"isActive": is_active})["user"]

    # -------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------
    def get_stats(self) -> Dict[str, int]:
        return self._request("GET", "/admin/stats")["stats"]

    def clear_database(self) -> List[str]:
        return self._request("DELETE", "/admin/clear-database")["clearedCollections"]
