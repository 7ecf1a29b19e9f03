from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.dependencies.auth import AuthenticationError, TokenIdentityProvider, get_identity_provider
from app.dependencies.tickets import get_ticket_service
from app.main import create_app
from app.tickets.models import Principal, Role

SECRET = "test-secret"


def _token(claims: dict, *, secret: str = SECRET) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


def test_authenticate_reads_user_id_and_role():
    provider = TokenIdentityProvider(SECRET)

    principal = provider.authenticate(_token({"userId": "u-1", "role": "AGENT"}))

    assert principal == Principal(id="u-1", role=Role.AGENT)


def test_authenticate_falls_back_to_subject_claim():
    provider = TokenIdentityProvider(SECRET)

    principal = provider.authenticate(_token({"sub": "u-2", "role": "customer"}))

    assert principal == Principal(id="u-2", role=Role.CUSTOMER)


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "not-a-jwt",
        _token({"userId": "u-1", "role": "AGENT"}, secret="other-secret"),
        _token({"role": "AGENT"}),
        _token({"userId": "u-1", "role": "ADMIN"}),
        _token({"userId": "u-1", "role": "AGENT", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)}),
    ],
)
def test_authenticate_rejects_bad_tokens(token):
    with pytest.raises(AuthenticationError):
        TokenIdentityProvider(SECRET).authenticate(token)


@pytest.fixture
def auth_client():
    app = create_app()
    service = AsyncMock()
    service.list_tickets = AsyncMock(return_value=[])

    async def override_service():
        return service

    app.dependency_overrides[get_ticket_service] = override_service
    app.dependency_overrides[get_identity_provider] = lambda: TokenIdentityProvider(SECRET)
    try:
        yield TestClient(app), service
    finally:
        app.dependency_overrides.clear()


def test_missing_token_is_unauthorized(auth_client):
    client, _ = auth_client

    response = client.get("/api/tickets")

    assert response.status_code == 401
    assert response.json()["detail"] == "Access denied. No token provided."


def test_invalid_token_is_unauthorized(auth_client):
    client, _ = auth_client

    response = client.get("/api/tickets", headers={"Authorization": "Bearer garbage"})

    assert response.status_code == 401


def test_valid_token_reaches_the_engine(auth_client):
    client, service = auth_client
    token = _token({"userId": "agent-9", "role": "AGENT"})

    response = client.get("/api/tickets", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    service.list_tickets.assert_awaited_with(Principal(id="agent-9", role=Role.AGENT))
