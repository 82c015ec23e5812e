"""Async client for the hosted backend.

This module provides an async HTTP client covering the backend surfaces the
views rely on:
- Table API (select/insert/update/upsert/delete described by ``TableQuery``)
- Auth sessions (password sign-in, sign-up, current user, sign-out)
- Object storage (upload, public URL)
- A shared realtime client bound to the same credentials

Reads are retried with exponential backoff on transient failures; mutations
are sent once. Every request is counted in Prometheus and wrapped in an
OpenTelemetry span.

Example:
    >>> from socialsync.backend import AsyncBackendClient
    >>>
    >>> async with AsyncBackendClient() as backend:
    ...     await backend.sign_in_with_password("ada@example.com", "secret")
    ...     query = backend.table("posts").select("*").order("created_at", ascending=False).limit(10)
    ...     result = await backend.execute(query)
    ...     print(f"Fetched {len(result.data)} posts")
"""

import asyncio
import logging
import time
from typing import Any
from urllib.parse import quote

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from socialsync.config import settings
from socialsync.errors import BackendError, NotAuthenticatedError, TransientBackendError
from socialsync.logging import logger, operation_context, user_id_var
from socialsync.metrics import backend_request_duration_seconds, backend_requests_total, errors_total
from socialsync.models import AuthUser, Session
from socialsync.query import QueryResult, TableQuery, parse_content_range
from socialsync.realtime import RealtimeClient
from socialsync.telemetry import (
    add_span_attributes,
    get_tracer,
    record_exception_in_span,
    sync_logging_context_to_span,
)

tracer = get_tracer(__name__)


def _safe_json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


class AsyncBackendClient:
    """Async HTTP client for the hosted backend.

    Features:
    - Connection pooling and keepalive
    - Concurrency cap shared by all requests
    - Retry with exponential backoff for reads
    - Structured errors parsed from the backend's JSON error bodies

    Args:
        url: Backend project URL (defaults to settings.backend_url)
        anon_key: Public API key (defaults to settings.backend_anon_key)
        access_token: Pre-issued user token (defaults to settings.access_token)
        max_concurrency: Max concurrent requests
        pool_limits: Custom httpx connection pool limits
        timeout: Custom httpx timeout configuration
        retry_attempts: Attempts for retryable reads
        retry_wait: tenacity wait strategy between attempts

    Example:
        >>> async with AsyncBackendClient() as backend:
        ...     user = await backend.get_user()
        ...     print(f"Signed in as {user.email}")
    """

    def __init__(
        self,
        url: str | None = None,
        anon_key: str | None = None,
        access_token: str | None = None,
        max_concurrency: int | None = None,
        pool_limits: httpx.Limits | None = None,
        timeout: httpx.Timeout | None = None,
        retry_attempts: int = 5,
        retry_wait: Any = None,
    ) -> None:
        self._url = (url or settings.backend_url).rstrip("/")
        self._anon_key = anon_key or settings.backend_anon_key
        self._max_concurrency = max_concurrency or settings.max_concurrency
        self._sem = asyncio.Semaphore(self._max_concurrency)
        self._retry_attempts = retry_attempts
        self._retry_wait = retry_wait or (
            wait_exponential(multiplier=0.5, min=0.5, max=8) + wait_random(0, 0.5)
        )

        token = access_token or settings.access_token
        self._session: Session | None = Session(access_token=token) if token else None

        self._limits = pool_limits or httpx.Limits(
            max_connections=50,
            max_keepalive_connections=10,
            keepalive_expiry=30.0,
        )
        self._timeout = timeout or httpx.Timeout(
            timeout=settings.request_timeout,
            connect=10.0,
        )

        self._client: httpx.AsyncClient | None = None
        self._realtime: RealtimeClient | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Lazy initialization of HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=self._limits,
                timeout=self._timeout,
                follow_redirects=True,
                headers={"apikey": self._anon_key},
            )
        return self._client

    async def __aenter__(self) -> "AsyncBackendClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close realtime and HTTP connections."""
        if self._realtime is not None:
            await self._realtime.close()
            self._realtime = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # URLs and session state
    # -------------------------------------------------------------------------

    @property
    def rest_url(self) -> str:
        return f"{self._url}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self._url}/auth/v1"

    @property
    def storage_url(self) -> str:
        return f"{self._url}/storage/v1"

    @property
    def session(self) -> Session | None:
        """Current auth session, if any."""
        return self._session

    @property
    def current_user_id(self) -> str | None:
        """ID of the signed-in viewer, or None when anonymous/unknown."""
        if self._session and self._session.user:
            return self._session.user.id
        return None

    def require_user(self) -> str:
        """Get the viewer's ID or raise.

        Raises:
            NotAuthenticatedError: If no user is signed in
        """
        user_id = self.current_user_id
        if not user_id:
            raise NotAuthenticatedError()
        return user_id

    def set_session(self, session: Session | None) -> None:
        """Replace the auth session (None signs out locally)."""
        self._session = session
        if session and session.user:
            user_id_var.set(session.user.id)
        if self._realtime is not None:
            self._realtime.set_token(session.access_token if session else None)

    def _auth_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        token = self._session.access_token if self._session else self._anon_key
        headers = {"apikey": self._anon_key, "Authorization": f"Bearer {token}"}
        if extra:
            headers.update(extra)
        return headers

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: Any = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Perform one raw HTTP request with error classification.

        Raises:
            TransientBackendError: For retryable failures
            BackendError: For permanent failures (4xx other than 429)
        """
        client = await self._ensure_client()

        try:
            resp = await client.request(
                method,
                url,
                params=params,
                json=json,
                content=content,
                headers=self._auth_headers(headers),
            )
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise TransientBackendError(f"Network/timeout error: {exc}") from exc

        if resp.status_code == 429 or 500 <= resp.status_code < 600:
            raise TransientBackendError(f"HTTP {resp.status_code}")

        if resp.status_code >= 400:
            body = _safe_json(resp)
            error = BackendError.from_response(resp.status_code, body)
            logger.error(f"Backend rejected {method} {url}: {error}")
            raise error

        return resp

    async def _request(
        self,
        method: str,
        url: str,
        *,
        retryable: bool,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send under the concurrency cap, retrying transient failures if allowed."""
        if not retryable:
            async with self._sem:
                return await self._send(method, url, **kwargs)

        # Create logging bridge for tenacity
        logging_logger = logging.getLogger(__name__)

        @retry(
            reraise=True,
            stop=stop_after_attempt(self._retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(TransientBackendError),
            before_sleep=before_sleep_log(logging_logger, logging.WARNING),
        )
        async def _runner() -> httpx.Response:
            async with self._sem:
                return await self._send(method, url, **kwargs)

        return await _runner()

    async def _instrumented(
        self,
        operation: str,
        target: str,
        method: str,
        url: str,
        *,
        retryable: bool,
        **kwargs: Any,
    ) -> httpx.Response:
        """Run a request inside a span, recording metrics either way."""
        with operation_context(f"backend.{operation}"), tracer.start_as_current_span(
            f"backend.{operation}"
        ) as span:
            add_span_attributes(span, {"backend.target": target, "http.method": method})
            sync_logging_context_to_span(span)
            start_time = time.perf_counter()
            try:
                resp = await self._request(method, url, retryable=retryable, **kwargs)
            except Exception as exc:
                backend_requests_total.labels(
                    operation=operation, table=target, status="error"
                ).inc()
                errors_total.labels(error_type=type(exc).__name__, component="backend").inc()
                record_exception_in_span(span, exc)
                raise
            finally:
                backend_request_duration_seconds.labels(
                    operation=operation, table=target
                ).observe(time.perf_counter() - start_time)

            backend_requests_total.labels(
                operation=operation, table=target, status="success"
            ).inc()
            add_span_attributes(span, {"http.status_code": resp.status_code})
            return resp

    # -------------------------------------------------------------------------
    # Table API
    # -------------------------------------------------------------------------

    def table(self, name: str) -> TableQuery:
        """Start a request against ``name``."""
        return TableQuery(name)

    async def execute(self, query: TableQuery) -> QueryResult:
        """Run a table request.

        Args:
            query: Request description

        Returns:
            Returned rows and, when requested, the exact total count

        Raises:
            BackendError: For permanent failures or cardinality mismatches
            TransientBackendError: When retries are exhausted
        """
        if query.is_read and query.matches_nothing:
            return QueryResult(data=[], count=0 if query.count_mode else None)

        resp = await self._instrumented(
            query.action,
            query.table,
            query.method,
            f"{self.rest_url}/{query.table}",
            retryable=query.is_read,
            params=query.to_params(),
            json=query.body(),
            headers=query.to_headers(),
        )

        rows: Any = []
        if not query.head and resp.content:
            rows = _safe_json(resp)
            if rows is None:
                raise BackendError(f"Invalid JSON from {query.describe()}", status=resp.status_code)
        if isinstance(rows, dict):
            rows = [rows]

        rows = query.check_cardinality(rows)
        count = parse_content_range(resp.headers.get("Content-Range")) if query.count_mode else None

        logger.debug(f"{query.describe()} -> {len(rows)} rows" + (f" (count={count})" if count is not None else ""))
        return QueryResult(data=rows, count=count)

    # -------------------------------------------------------------------------
    # Auth API
    # -------------------------------------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """Sign in and keep the returned session for subsequent requests."""
        resp = await self._instrumented(
            "auth",
            "token",
            "POST",
            f"{self.auth_url}/token",
            retryable=False,
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = Session.model_validate(resp.json())
        self.set_session(session)
        logger.info(f"Signed in as {email}")
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        username: str | None = None,
        name: str | None = None,
    ) -> Session | None:
        """Register an account; profile fields travel as user metadata.

        Returns:
            The new session, or None when the backend requires email confirmation
        """
        metadata = {k: v for k, v in {"username": username, "name": name}.items() if v}
        resp = await self._instrumented(
            "auth",
            "signup",
            "POST",
            f"{self.auth_url}/signup",
            retryable=False,
            json={"email": email, "password": password, "data": metadata},
        )
        body = resp.json()
        if not body.get("access_token"):
            logger.info(f"Sign-up for {email} awaiting confirmation")
            return None
        session = Session.model_validate(body)
        self.set_session(session)
        return session

    async def get_user(self) -> AuthUser:
        """Fetch the signed-in user and attach it to the session.

        Raises:
            NotAuthenticatedError: If there is no session token
        """
        if self._session is None:
            raise NotAuthenticatedError()
        resp = await self._instrumented(
            "auth", "user", "GET", f"{self.auth_url}/user", retryable=True
        )
        user = AuthUser.model_validate(resp.json())
        self.set_session(self._session.model_copy(update={"user": user}))
        return user

    async def sign_out(self) -> None:
        """Revoke the session remotely and forget it locally."""
        if self._session is None:
            return
        try:
            await self._instrumented(
                "auth", "logout", "POST", f"{self.auth_url}/logout", retryable=False
            )
        finally:
            self.set_session(None)
            user_id_var.set(None)

    # -------------------------------------------------------------------------
    # Storage API
    # -------------------------------------------------------------------------

    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        content_type: str,
        upsert: bool = True,
        cache_control: str = "3600",
    ) -> str:
        """Upload an object.

        Returns:
            The object key reported by storage
        """
        resp = await self._instrumented(
            "upload",
            bucket,
            "POST",
            f"{self.storage_url}/object/{bucket}/{quote(path)}",
            retryable=False,
            content=content,
            headers={
                "Content-Type": content_type,
                "Cache-Control": f"max-age={cache_control}",
                "x-upsert": "true" if upsert else "false",
            },
        )
        body = _safe_json(resp) or {}
        return body.get("Key", f"{bucket}/{path}")

    def public_url(self, bucket: str, path: str) -> str:
        """Public URL of an object in a public bucket (no request made)."""
        return f"{self.storage_url}/object/public/{bucket}/{quote(path)}"

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    def realtime(self) -> RealtimeClient:
        """Shared realtime client using this client's key and session token."""
        if self._realtime is None:
            ws_base = self._url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
            self._realtime = RealtimeClient(
                url=f"{ws_base}/realtime/v1/websocket",
                api_key=self._anon_key,
                token=self._session.access_token if self._session else None,
            )
        return self._realtime


__all__ = ["AsyncBackendClient"]
