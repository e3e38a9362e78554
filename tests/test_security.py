"""Tests for access tokens and the bearer dependency."""

from datetime import timedelta

import jwt
import pytest
from httpx import AsyncClient

from bankrecon.config import settings
from bankrecon.security import create_access_token, decode_access_token


def test_create_and_decode_access_token() -> None:
    token = create_access_token({"sub": "owner-1", "name": "Ops User"})

    payload = decode_access_token(token)

    assert payload["sub"] == "owner-1"
    assert payload["name"] == "Ops User"
    assert "exp" in payload


def test_expired_token_is_rejected() -> None:
    token = create_access_token({"sub": "owner-1"}, expires_delta=timedelta(seconds=-5))

    assert decode_access_token(token) is None


def test_token_signed_with_other_key_is_rejected() -> None:
    token = jwt.encode({"sub": "owner-1"}, "some-other-secret", algorithm=settings.jwt_algorithm)

    assert decode_access_token(token) is None


@pytest.mark.asyncio
async def test_token_without_subject_is_unauthorized(public_client: AsyncClient) -> None:
    token = create_access_token({"name": "Nobody"})

    response = await public_client.get(
        "/companies/company-1/bank-imports",
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Token missing subject"


@pytest.mark.asyncio
async def test_actor_name_is_optional(public_client: AsyncClient) -> None:
    token = create_access_token({"sub": "owner-2"})

    response = await public_client.get(
        "/companies/company-1/bank-imports",
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 200
    assert response.json() == {"items": [], "total": 0}
