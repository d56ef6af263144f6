import json

import pytest

from client import ApiError, BlogClient, SessionExpired, SessionStore


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "session.json")


@pytest.fixture
def blog(client, store):
    return BlogClient("", store=store, session=client)


def test_register_persists_session(blog, store):
    user = blog.register("writer", "writer@example.com", "password123", firstName="Wri")
    assert blog.is_authenticated
    saved = json.loads(store.path.read_text())
    assert saved["token"]
    assert saved["user"]["id"] == user["id"]
    assert blog.restore()["username"] == "writer"


def test_login_and_publish_flow(blog, author):
    blog.login("alice@example.com", "secret123")
    post = blog.create_post(title="From the client", content="Hi", category="Notes", status="published")
    assert post["slug"] == "from-the-client"

    listing = blog.get_posts(category="Notes")
    assert listing["total"] == 1

    assert blog.like_post(post["id"])["action"] == "liked"
    assert blog.is_liked_by(blog.get_post(post["slug"]))
    blog.like_post(post["id"])
    assert not blog.is_liked_by(blog.get_post(post["slug"]))


def test_profile_update_refreshes_snapshot(blog, store, author):
    blog.login("alice@example.com", "secret123")
    blog.update_profile(bio="Hello")
    assert store.user["bio"] == "Hello"


def test_unauthorized_clears_session(blog, store):
    store.save("not-a-real-token", {"id": "x", "username": "ghost"})
    with pytest.raises(SessionExpired):
        blog.get_user_posts()
    assert not store.path.exists()
    assert blog.current_user is None


def test_error_message_is_surfaced(blog, author, other, create_post):
    post = create_post(other[1])
    blog.login("alice@example.com", "secret123")
    with pytest.raises(ApiError) as excinfo:
        blog.delete_post(post["id"])
    assert excinfo.value.status_code == 403
    assert excinfo.value.message == "Not authorized to delete this post"


def test_validation_errors_carry_fields(blog):
    with pytest.raises(ApiError) as excinfo:
        blog.register("x", "bad", "1")
    assert excinfo.value.status_code == 422
    assert {e["field"] for e in excinfo.value.errors} >= {"username"}


def test_is_liked_by_compares_ids_as_strings(blog):
    post = {"likes": ["65f000000000000000000001"]}
    assert blog.is_liked_by(post, {"id": "65f000000000000000000001"})
    assert not blog.is_liked_by(post, {"id": "65f000000000000000000002"})
    assert not blog.is_liked_by(post)


def test_comment_wrappers(blog, author, other, create_post):
    post = create_post(other[1], status="published")
    blog.login("alice@example.com", "secret123")
    comment = blog.add_comment(post["id"], "First!")
    assert [c["content"] for c in blog.list_comments(post["id"])] == ["First!"]
    blog.delete_comment(post["id"], comment["id"])
    assert blog.list_comments(post["id"]) == []


def test_admin_wrappers(blog, author, admin, create_post):
    create_post(author[1])
    blog.login("root@example.com", "secret123")
    assert blog.get_stats() == {"users": 2, "posts": 1, "comments": 0, "total": 3}
    assert blog.clear_database() == ["user", "post", "comment"]
