"""Tests for the backend client's transport, retry and session handling.

This module specifically tests:
- Exponential backoff retry for reads with tenacity
- No retry for mutations
- Transient vs permanent error classification
- Auth headers, session state, storage and realtime wiring
"""

from unittest.mock import MagicMock, patch

import httpx
import pytest
from tenacity import wait_none

from socialsync.backend import AsyncBackendClient
from socialsync.errors import BackendError, NotAuthenticatedError, TransientBackendError


def make_client(**kwargs) -> AsyncBackendClient:
    return AsyncBackendClient(
        url="https://project.example.co",
        anon_key="test-anon-key-0123456789abcdef",
        retry_wait=wait_none(),
        **kwargs,
    )


def mock_transport(responses):
    """HTTP client mock returning/raising ``responses`` in order, recording calls."""
    calls = []

    async def request(method, url, **kwargs):
        calls.append({"method": method, "url": url, **kwargs})
        outcome = responses[min(len(calls), len(responses)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    mock_client = MagicMock()
    mock_client.request = request
    return mock_client, calls


# =============================================================================
# Retry Logic Tests
# =============================================================================


@pytest.mark.asyncio
async def test_read_retried_on_network_timeout():
    """Reads retry through timeouts and return the eventual rows."""
    client = make_client()
    mock_client, calls = mock_transport(
        [
            httpx.TimeoutException("Connection timeout"),
            httpx.TimeoutException("Connection timeout"),
            httpx.Response(200, json=[{"id": "p1"}]),
        ]
    )

    with patch.object(client, "_ensure_client", return_value=mock_client):
        result = await client.execute(client.table("posts").select("*"))

    assert result.data == [{"id": "p1"}]
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_read_retried_on_server_error_and_rate_limit():
    client = make_client()
    mock_client, calls = mock_transport(
        [
            httpx.Response(503),
            httpx.Response(429),
            httpx.Response(200, json=[]),
        ]
    )

    with patch.object(client, "_ensure_client", return_value=mock_client):
        result = await client.execute(client.table("posts").select("*"))

    assert result.data == []
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_attempts():
    client = make_client(retry_attempts=3)
    mock_client, calls = mock_transport([httpx.NetworkError("Connection refused")])

    with patch.object(client, "_ensure_client", return_value=mock_client):
        with pytest.raises(TransientBackendError):
            await client.execute(client.table("posts").select("*"))

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_mutations_are_not_retried():
    """Inserts are sent once even on transient failure."""
    client = make_client()
    mock_client, calls = mock_transport([httpx.Response(503), httpx.Response(201, json=[{"id": "x"}])])

    with patch.object(client, "_ensure_client", return_value=mock_client):
        with pytest.raises(TransientBackendError):
            await client.execute(client.table("post_likes").insert({"post_id": "p1", "user_id": "u1"}))

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_no_retry_on_permanent_errors():
    """HTTP 4xx (other than 429) raise BackendError with the parsed body."""
    client = make_client()
    mock_client, calls = mock_transport(
        [
            httpx.Response(
                409,
                json={
                    "code": "23505",
                    "message": "duplicate key value violates unique constraint",
                    "details": "Key (username)=(ada) already exists.",
                    "hint": None,
                },
            )
        ]
    )

    with patch.object(client, "_ensure_client", return_value=mock_client):
        with pytest.raises(BackendError) as exc_info:
            await client.execute(client.table("profiles").select("*"))

    assert len(calls) == 1
    error = exc_info.value
    assert error.status == 409
    assert error.code == "23505"
    assert "HTTP 409" in str(error)
    assert "duplicate key" in str(error)


# =============================================================================
# Request Rendering Tests
# =============================================================================


@pytest.mark.asyncio
async def test_execute_sends_rendered_query_and_parses_count():
    client = make_client()
    mock_client, calls = mock_transport(
        [httpx.Response(200, json=[{"id": "p1"}], headers={"Content-Range": "0-0/7"})]
    )
    query = client.table("posts").select("*", count="exact").eq("user_id", "u1").limit(1)

    with patch.object(client, "_ensure_client", return_value=mock_client):
        result = await client.execute(query)

    assert result.count == 7
    call = calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://project.example.co/rest/v1/posts"
    assert ("user_id", "eq.u1") in call["params"]
    assert call["headers"]["Prefer"] == "count=exact"
    assert call["headers"]["apikey"] == "test-anon-key-0123456789abcdef"
    assert call["headers"]["Authorization"] == "Bearer test-anon-key-0123456789abcdef"


@pytest.mark.asyncio
async def test_head_count_has_no_body():
    client = make_client()
    mock_client, _ = mock_transport([httpx.Response(200, headers={"Content-Range": "*/12"})])
    query = client.table("follows").select("id", count="exact", head=True).eq("following_id", "u1")

    with patch.object(client, "_ensure_client", return_value=mock_client):
        result = await client.execute(query)

    assert result.data == []
    assert result.count == 12


@pytest.mark.asyncio
async def test_empty_in_list_skips_request():
    client = make_client()
    mock_client, calls = mock_transport([httpx.Response(500)])

    with patch.object(client, "_ensure_client", return_value=mock_client):
        result = await client.execute(client.table("profiles").select("*").in_("user_id", []))

    assert result.data == []
    assert calls == []


@pytest.mark.asyncio
async def test_single_mismatch_raises():
    client = make_client()
    mock_client, _ = mock_transport([httpx.Response(200, json=[])])

    with patch.object(client, "_ensure_client", return_value=mock_client):
        with pytest.raises(BackendError) as exc_info:
            await client.execute(client.table("posts").select("*").eq("id", "nope").single())

    assert exc_info.value.code == "PGRST116"


# =============================================================================
# Session Tests
# =============================================================================


@pytest.mark.asyncio
async def test_sign_in_stores_session_and_uses_token():
    client = make_client()
    mock_client, calls = mock_transport(
        [
            httpx.Response(
                200,
                json={
                    "access_token": "user-jwt",
                    "refresh_token": "refresh",
                    "token_type": "bearer",
                    "expires_in": 3600,
                    "user": {"id": "user-1", "email": "ada@example.com"},
                },
            ),
            httpx.Response(200, json=[]),
        ]
    )

    with patch.object(client, "_ensure_client", return_value=mock_client):
        session = await client.sign_in_with_password("ada@example.com", "secret")
        await client.execute(client.table("posts").select("*"))

    assert session.access_token == "user-jwt"
    assert client.current_user_id == "user-1"
    assert client.require_user() == "user-1"
    assert calls[0]["url"] == "https://project.example.co/auth/v1/token"
    assert calls[0]["params"] == {"grant_type": "password"}
    assert calls[1]["headers"]["Authorization"] == "Bearer user-jwt"


@pytest.mark.asyncio
async def test_bad_credentials_raise_backend_error():
    client = make_client()
    mock_client, _ = mock_transport(
        [httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})]
    )

    with patch.object(client, "_ensure_client", return_value=mock_client):
        with pytest.raises(BackendError, match="Invalid login credentials"):
            await client.sign_in_with_password("ada@example.com", "wrong")

    assert client.session is None


@pytest.mark.asyncio
async def test_access_token_user_resolved_by_get_user():
    client = make_client(access_token="preissued-token")
    mock_client, calls = mock_transport([httpx.Response(200, json={"id": "user-9", "email": "x@example.com"})])

    assert client.current_user_id is None

    with patch.object(client, "_ensure_client", return_value=mock_client):
        user = await client.get_user()

    assert user.id == "user-9"
    assert client.current_user_id == "user-9"
    assert calls[0]["headers"]["Authorization"] == "Bearer preissued-token"


def test_require_user_without_session():
    client = make_client()

    with pytest.raises(NotAuthenticatedError, match="Not authenticated"):
        client.require_user()


# =============================================================================
# Storage / Realtime Tests
# =============================================================================


@pytest.mark.asyncio
async def test_upload_sends_upsert_and_cache_headers():
    client = make_client()
    mock_client, calls = mock_transport([httpx.Response(200, json={"Key": "avatars/u1/1.png"})])

    with patch.object(client, "_ensure_client", return_value=mock_client):
        key = await client.upload("avatars", "u1/1.png", b"png-bytes", "image/png")

    assert key == "avatars/u1/1.png"
    call = calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://project.example.co/storage/v1/object/avatars/u1/1.png"
    assert call["content"] == b"png-bytes"
    assert call["headers"]["x-upsert"] == "true"
    assert call["headers"]["Cache-Control"] == "max-age=3600"
    assert call["headers"]["Content-Type"] == "image/png"


def test_public_url():
    client = make_client()

    assert (
        client.public_url("post-images", "u1/17.jpg")
        == "https://project.example.co/storage/v1/object/public/post-images/u1/17.jpg"
    )


def test_realtime_client_shares_credentials():
    client = make_client(access_token="preissued-token")

    realtime = client.realtime()

    assert realtime is client.realtime()
    assert realtime.url == "wss://project.example.co/realtime/v1/websocket"
    assert realtime.token == "preissued-token"
    assert "apikey=test-anon-key-0123456789abcdef" in realtime.endpoint


# =============================================================================
# Sign-up / Sign-out Tests
# =============================================================================


@pytest.mark.asyncio
async def test_sign_up_awaiting_confirmation():
    client = make_client()
    mock_client, calls = mock_transport([httpx.Response(200, json={"id": "user-9", "email": "new@example.com"})])

    with patch.object(client, "_ensure_client", return_value=mock_client):
        session = await client.sign_up("new@example.com", "secret", username="newbie")

    assert session is None
    assert client.session is None
    assert calls[0]["url"] == "https://project.example.co/auth/v1/signup"
    assert calls[0]["json"]["data"] == {"username": "newbie"}


@pytest.mark.asyncio
async def test_sign_up_then_sign_out():
    client = make_client()
    mock_client, calls = mock_transport(
        [
            httpx.Response(
                200,
                json={"access_token": "fresh-jwt", "expires_in": 3600, "user": {"id": "user-9"}},
            ),
            httpx.Response(204),
        ]
    )

    with patch.object(client, "_ensure_client", return_value=mock_client):
        session = await client.sign_up("new@example.com", "secret")
        assert client.current_user_id == "user-9"

        await client.sign_out()

    assert session.access_token == "fresh-jwt"
    assert client.session is None
    assert calls[1]["url"] == "https://project.example.co/auth/v1/logout"
    assert calls[1]["headers"]["Authorization"] == "Bearer fresh-jwt"


@pytest.mark.asyncio
async def test_sign_out_without_session_is_noop():
    client = make_client()
    mock_client, calls = mock_transport([httpx.Response(204)])

    with patch.object(client, "_ensure_client", return_value=mock_client):
        await client.sign_out()

    assert calls == []
