"""Tests for bearer token verification and the auth dependencies.

Tests cover:
- Claim parsing (role, region alias, agency claim)
- Token extraction from header and cookie
- Expired, tampered and unsigned tokens
- Role-restricted dependencies
"""

import time
from typing import Annotated

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr

from etds.api.middleware.auth import (
    Identity,
    IdentityMiddleware,
    identity_from_claims,
    require_identity,
    require_roles,
)
from etds.core.config import AuthSettings
from etds.db.models.base import Agency, UserRole
from tests.factories import TEST_JWT_SECRET, issue_token


def build_app(secret: str = TEST_JWT_SECRET) -> FastAPI:
    app = FastAPI()
    app.add_middleware(IdentityMiddleware, settings=AuthSettings(jwt_secret=SecretStr(secret)))

    @app.get("/whoami")
    async def whoami(identity: Annotated[Identity, Depends(require_identity)]) -> dict:
        return {
            "user_id": identity.user_id,
            "role": identity.role.value,
            "region": identity.region,
            "agency": identity.agency.value if identity.agency else None,
        }

    @app.get("/admin-only")
    async def admin_only(
        identity: Annotated[Identity, Depends(require_roles(UserRole.ADMIN))],
    ) -> dict:
        return {"user_id": identity.user_id}

    return app


@pytest.fixture
async def client():
    transport = ASGITransport(app=build_app())
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def with_expiry(claims: dict, lifetime: int = 3600) -> dict:
    return {"exp": int(time.time()) + lifetime, **claims}


def bearer(claims: dict) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(with_expiry(claims))}"}


class TestIdentityFromClaims:
    """Tests for identity_from_claims."""

    def test_full_claims(self):
        identity = identity_from_claims(
            {
                "id": "u-1",
                "email": "agent@example.pk",
                "name": "Agent",
                "role": "agency",
                "state": "Punjab",
                "agency": "special_branch_punjab",
            }
        )

        assert identity.user_id == "u-1"
        assert identity.role == UserRole.AGENCY
        assert identity.region == "Punjab"
        assert identity.agency == Agency.SPECIAL_BRANCH_PUNJAB

    def test_region_alias_and_sub(self):
        identity = identity_from_claims({"sub": "u-2", "role": "MINISTRY", "region": "Sindh"})

        assert identity.user_id == "u-2"
        assert identity.region == "Sindh"
        assert identity.agency is None

    @pytest.mark.parametrize(
        "claims",
        [
            {"role": "MINISTRY"},
            {"id": "u-1", "role": "SUPERUSER"},
            {"id": "u-1", "role": "AGENCY", "agency": "UNKNOWN_AGENCY"},
        ],
    )
    def test_unusable_claims(self, claims):
        assert identity_from_claims(claims) is None

    def test_to_actor(self):
        identity = Identity(
            user_id="u-1", role=UserRole.AGENCY, region="Sindh", agency=Agency.INTELLIGENCE_BUREAU
        )

        actor = identity.to_actor()

        assert actor.user_id == "u-1"
        assert actor.role == UserRole.AGENCY
        assert actor.region == "Sindh"
        assert actor.agency == Agency.INTELLIGENCE_BUREAU


class TestIdentityMiddleware:
    """Tests for token verification on requests."""

    @pytest.mark.asyncio
    async def test_missing_token_is_unauthorized(self, client):
        response = await client.get("/whoami")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_valid_bearer_token(self, client):
        response = await client.get(
            "/whoami",
            headers=bearer({"id": "sb-1", "role": "AGENCY", "state": "Sindh"}),
        )

        assert response.status_code == 200
        assert response.json() == {
            "user_id": "sb-1",
            "role": "AGENCY",
            "region": "Sindh",
            "agency": None,
        }

    @pytest.mark.asyncio
    async def test_token_from_cookie(self, client):
        token = issue_token(with_expiry({"id": "m-1", "role": "MINISTRY"}))

        response = await client.get("/whoami", headers={"Cookie": f"auth-token={token}"})

        assert response.status_code == 200
        assert response.json()["user_id"] == "m-1"

    @pytest.mark.asyncio
    async def test_expired_token_rejected(self, client):
        claims = {"id": "m-1", "role": "MINISTRY", "exp": int(time.time()) - 3600}

        response = await client.get("/whoami", headers=bearer(claims))

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_token_without_expiry_rejected(self, client):
        token = issue_token({"id": "m-1", "role": "MINISTRY"})

        response = await client.get("/whoami", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_signature_rejected(self, client):
        token = issue_token(
            with_expiry({"id": "m-1", "role": "MINISTRY"}), secret="another-secret-entirely"
        )

        response = await client.get("/whoami", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token_rejected(self, client):
        response = await client.get("/whoami", headers={"Authorization": "Bearer not.a.jwt"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_no_secret_means_anonymous(self):
        transport = ASGITransport(app=build_app(secret=""))
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            response = await c.get("/whoami", headers=bearer({"id": "m-1", "role": "MINISTRY"}))

        assert response.status_code == 401


class TestRequireRoles:
    """Tests for role-restricted dependencies."""

    @pytest.mark.asyncio
    async def test_role_allowed(self, client):
        response = await client.get("/admin-only", headers=bearer({"id": "a-1", "role": "ADMIN"}))

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_role_denied(self, client):
        response = await client.get(
            "/admin-only", headers=bearer({"id": "m-1", "role": "MINISTRY"})
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "Role required: ADMIN"
