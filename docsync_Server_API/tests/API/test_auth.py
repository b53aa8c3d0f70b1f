# test_auth.py
# Description: Request user resolution in single-user (API key) and multi-user (JWT) modes.
#
# Imports
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException, status
from fastapi.testclient import TestClient
#
# Local Imports
from docsync_Server_API.app.main import app
from docsync_Server_API.app.api.v1.API_Deps.Sync_DB_Deps import get_sync_db
from docsync_Server_API.app.core.AuthNZ.User_DB_Handling import get_request_user
from docsync_Server_API.app.core.config import settings
from docsync_Server_API.app.core.Security.Security import decode_access_token
#
########################################################################################################################
#
# Functions:

SECRET = "test-secret-key-for-docsync-tests-0123456789"


def make_token(claims, secret=SECRET, expires_in=timedelta(minutes=5)):
    payload = {**claims, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def single_user_mode(monkeypatch):
    monkeypatch.setitem(settings, "SINGLE_USER_MODE", True)
    monkeypatch.setitem(settings, "SINGLE_USER_API_KEY", "test-api-key")
    monkeypatch.setitem(settings, "SINGLE_USER_FIXED_ID", 1)
    monkeypatch.setitem(settings, "SINGLE_USER_EMAIL", "alice@example.com")


@pytest.fixture
def multi_user_mode(monkeypatch):
    monkeypatch.setitem(settings, "SINGLE_USER_MODE", False)
    monkeypatch.setitem(settings, "JWT_SECRET_KEY", SECRET)
    monkeypatch.setitem(settings, "JWT_ALGORITHM", "HS256")


class TestSingleUserMode:
    @pytest.mark.asyncio
    async def test_valid_api_key(self, single_user_mode, api_db):
        user = await get_request_user(api_key="test-api-key", token=None, db=api_db)
        assert (user.id, user.email) == (1, "alice@example.com")
        assert api_db.get_user_by_id(1)["email"] == "alice@example.com"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("api_key", [None, "wrong-key"])
    async def test_missing_or_wrong_key(self, single_user_mode, api_db, api_key):
        with pytest.raises(HTTPException) as exc_info:
            await get_request_user(api_key=api_key, token=None, db=api_db)
        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED


class TestMultiUserMode:
    @pytest.mark.asyncio
    async def test_token_with_email_registers_user(self, multi_user_mode, api_db):
        token = make_token({"sub": "42", "email": "Dave@Example.com"})
        user = await get_request_user(api_key=None, token=token, db=api_db)
        assert (user.id, user.email) == (42, "dave@example.com")
        assert api_db.get_user_by_email("dave@example.com")["id"] == 42

    @pytest.mark.asyncio
    async def test_token_without_email_for_known_user(self, multi_user_mode, api_db):
        user = await get_request_user(api_key=None, token=make_token({"sub": "2"}), db=api_db)
        assert user.email == "bob@example.com"

    @pytest.mark.asyncio
    async def test_token_without_email_for_unknown_user(self, multi_user_mode, api_db):
        with pytest.raises(HTTPException) as exc_info:
            await get_request_user(api_key=None, token=make_token({"sub": "99"}), db=api_db)
        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_email_taken_by_another_user(self, multi_user_mode, api_db):
        token = make_token({"sub": "42", "email": "bob@example.com"})
        with pytest.raises(HTTPException) as exc_info:
            await get_request_user(api_key=None, token=token, db=api_db)
        assert exc_info.value.status_code == status.HTTP_409_CONFLICT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [
        None,
        "not.a.jwt",
        make_token({"sub": "1"}, secret="some-other-secret-key-0123456789abcdef"),
        make_token({"sub": "1"}, expires_in=timedelta(minutes=-5)),
        make_token({"email": "alice@example.com"}),
        make_token({"sub": "alice"}),
    ])
    async def test_rejected_tokens(self, multi_user_mode, api_db, token):
        with pytest.raises(HTTPException) as exc_info:
            await get_request_user(api_key=None, token=token, db=api_db)
        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED


def test_decode_access_token_overrides():
    token = make_token({"sub": "7", "email": "x@example.com"}, secret="override-secret-0123456789abcdefghij")
    data = decode_access_token(token, secret_key="override-secret-0123456789abcdefghij", algorithm="HS256")
    assert (data.user_id, data.email) == (7, "x@example.com")
    assert decode_access_token(token, secret_key=SECRET, algorithm="HS256") is None


def test_http_requests_need_credentials(single_user_mode, api_db):
    app.dependency_overrides[get_sync_db] = lambda: api_db
    try:
        with TestClient(app) as test_client:
            missing = test_client.get("/api/v1/sync/status")
            accepted = test_client.get("/api/v1/sync/status", headers={"X-API-KEY": "test-api-key"})
    finally:
        app.dependency_overrides.clear()
    assert missing.status_code == status.HTTP_401_UNAUTHORIZED
    assert accepted.status_code == status.HTTP_200_OK

#
# End of test_auth.py
########################################################################################################################
