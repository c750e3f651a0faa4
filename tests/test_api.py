"""
REST API tests: subscriptions and updates for the authenticated user.
"""

import uuid
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from notifyhub.core.auth import create_jwt
from notifyhub.core.database import get_session
from notifyhub.main import create_app
from notifyhub.services import subscriptions as subscription_service
from notifyhub.services import updates as update_service

from domain import Post


@pytest.fixture
async def client(session, registry):
    registry.freeze()
    app = create_app(registry=registry)

    async def _get_session():
        yield session

    app.dependency_overrides[get_session] = _get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def user(make_user):
    return await make_user("Reader")


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_jwt(user.id)}"}


@pytest.fixture
async def post(session, make_user):
    author = await make_user("Author")
    post = Post(user_id=author.id, title="Hello")
    session.add(post)
    await session.flush()
    return post


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class TestAuth:
    async def test_missing_token(self, client):
        response = await client.get("/api/v1/subscriptions/")
        assert response.status_code == 401

    async def test_garbage_token(self, client):
        response = await client.get(
            "/api/v1/subscriptions/", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    async def test_expired_token(self, client, user):
        token = create_jwt(user.id, expires_delta=timedelta(seconds=-1))
        response = await client.get(
            "/api/v1/subscriptions/", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    async def test_unknown_user(self, client):
        token = create_jwt(uuid.uuid4())
        response = await client.get(
            "/api/v1/subscriptions/", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

class TestSubscriptionEndpoints:
    async def test_subscribe_and_list(self, client, auth_headers, user, post):
        response = await client.post(
            "/api/v1/subscriptions/",
            json={"resource_type": "Post", "resource_id": str(post.id)},
            headers=auth_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["user_id"] == str(user.id)
        assert data["resource_id"] == str(post.id)

        response = await client.get("/api/v1/subscriptions/", headers=auth_headers)
        assert response.status_code == 200
        assert [s["resource_id"] for s in response.json()] == [str(post.id)]

    async def test_subscribe_twice(self, client, auth_headers, post):
        body = {"resource_type": "Post", "resource_id": str(post.id)}
        first = await client.post("/api/v1/subscriptions/", json=body, headers=auth_headers)
        second = await client.post("/api/v1/subscriptions/", json=body, headers=auth_headers)
        assert first.status_code == second.status_code == 201
        response = await client.get("/api/v1/subscriptions/", headers=auth_headers)
        assert len(response.json()) == 1

    async def test_unknown_resource_type(self, client, auth_headers):
        response = await client.post(
            "/api/v1/subscriptions/",
            json={"resource_type": "Comment", "resource_id": str(uuid.uuid4())},
            headers=auth_headers,
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Unknown resource type"

    async def test_missing_resource(self, client, auth_headers):
        response = await client.post(
            "/api/v1/subscriptions/",
            json={"resource_type": "Post", "resource_id": str(uuid.uuid4())},
            headers=auth_headers,
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Resource not found"

    async def test_invalid_body(self, client, auth_headers):
        response = await client.post(
            "/api/v1/subscriptions/",
            json={"resource_type": "", "resource_id": "nope"},
            headers=auth_headers,
        )
        assert response.status_code == 422

    async def test_unsubscribe(self, client, auth_headers, session, user, post):
        await subscription_service.subscribe_to(session, user.id, post)

        response = await client.delete(f"/api/v1/subscriptions/Post/{post.id}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"ok": True}

        response = await client.delete(f"/api/v1/subscriptions/Post/{post.id}", headers=auth_headers)
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------

class TestUpdateEndpoints:
    async def _seed(self, session, user, post, n=2):
        created = []
        for _ in range(n):
            created.append(
                await update_service.create_update(
                    session, subscriber_id=user.id, resource=post, notifier=post, notification="create"
                )
            )
        return created

    async def test_list_updates(self, client, auth_headers, session, user, post):
        await self._seed(session, user, post)
        response = await client.get("/api/v1/updates/", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert len(data) == 2
        assert all(item["viewed"] is False for item in data)

    async def test_only_own_updates(self, client, auth_headers, session, make_user, post):
        stranger = await make_user()
        await self._seed(session, stranger, post)
        response = await client.get("/api/v1/updates/", headers=auth_headers)
        assert response.json() == []

    async def test_mark_viewed(self, client, auth_headers, session, user, post):
        first, second = await self._seed(session, user, post)

        response = await client.post(
            "/api/v1/updates/viewed", json={"update_ids": [str(first.id)]}, headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json() == {"marked": 1}

        response = await client.get("/api/v1/updates/?unviewed=true", headers=auth_headers)
        assert [item["id"] for item in response.json()] == [str(second.id)]

    async def test_mark_all_viewed(self, client, auth_headers, session, user, post):
        await self._seed(session, user, post, n=3)
        response = await client.post("/api/v1/updates/viewed", json={}, headers=auth_headers)
        assert response.json() == {"marked": 3}

    async def test_resource_filter_needs_both_fields(self, client, auth_headers):
        response = await client.post(
            "/api/v1/updates/viewed", json={"resource_type": "Post"}, headers=auth_headers
        )
        assert response.status_code == 422

    async def test_limit_bounds(self, client, auth_headers):
        response = await client.get("/api/v1/updates/?limit=0", headers=auth_headers)
        assert response.status_code == 422
