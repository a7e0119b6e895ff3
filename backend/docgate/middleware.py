"""
HTTP middleware: shared-secret gate, rate limiting, body size limit and
request logging.
"""

import hmac
import logging
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, FrozenSet, Iterable, Optional

from fastapi import HTTPException
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("docgate.http")

PUBLIC_PATHS = frozenset({"/health"})


def _client_ip(request: Request, trusted_proxies: FrozenSet[str] = frozenset()) -> str:
    """Socket peer address; X-Forwarded-For is honoured only from a trusted proxy."""
    peer = request.client.host if request.client else "unknown"
    if peer in trusted_proxies:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip() or peer
    return peer


def _matches(expected: Optional[str], given: Optional[str]) -> bool:
    if expected is None:
        return given is None or given == ""
    if given is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), given.encode("utf-8"))


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Reject requests whose x-api-key / x-api-secret headers do not match."""

    def __init__(self, app, api_key: Optional[str], api_secret: Optional[str],
                 public_paths: Iterable[str] = PUBLIC_PATHS,
                 trusted_proxies: Iterable[str] = ()):
        super().__init__(app)
        self._trusted = frozenset(trusted_proxies)
        self._api_key = api_key
        self._api_secret = api_secret
        self._public = frozenset(public_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self._public or request.method == "OPTIONS":
            return await call_next(request)
        if _matches(self._api_key, request.headers.get("x-api-key")) and \
                _matches(self._api_secret, request.headers.get("x-api-secret")):
            return await call_next(request)
        logger.warning("Forbidden %s %s from %s", request.method, request.url.path, _client_ip(request, self._trusted))
        return JSONResponse(status_code=403, content={"message": "Forbidden: Invalid API Key or Secret"})


class InMemoryRateLimitStore:
    """Sliding-window attempt log per identifier. Single-instance only."""

    def __init__(self) -> None:
        self._storage: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_sweep: Optional[float] = None

    def __len__(self) -> int:
        return len(self._storage)

    def record_attempt(self, identifier: str, window_seconds: float, now: Optional[float] = None) -> int:
        """Record an attempt and return the number of attempts in the window, this one included."""
        now = time.monotonic() if now is None else now
        entries = self._storage[identifier]
        cutoff = now - window_seconds
        while entries and entries[0] <= cutoff:
            entries.popleft()
        entries.append(now)
        if self._last_sweep is None or now - self._last_sweep >= window_seconds:
            self.cleanup(window_seconds, now)
        return len(entries)

    def cleanup(self, window_seconds: float, now: Optional[float] = None) -> int:
        """Drop identifiers with no attempts left in the window. Returns how many were dropped."""
        now = time.monotonic() if now is None else now
        cutoff = now - window_seconds
        stale = []
        for identifier, entries in self._storage.items():
            while entries and entries[0] <= cutoff:
                entries.popleft()
            if not entries:
                stale.append(identifier)
        for identifier in stale:
            del self._storage[identifier]
        self._last_sweep = now
        return len(stale)

    def retry_after(self, identifier: str, window_seconds: float, now: Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        entries = self._storage.get(identifier)
        if not entries:
            return 0
        return max(1, int(entries[0] + window_seconds - now + 0.999))


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, max_requests: int, window_ms: int, message: str,
                 store: Optional[InMemoryRateLimitStore] = None,
                 trusted_proxies: Iterable[str] = ()):
        super().__init__(app)
        self._trusted = frozenset(trusted_proxies)
        self._max = max_requests
        self._window = window_ms / 1000.0
        self._message = message
        self._store = store or InMemoryRateLimitStore()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._max <= 0:
            return await call_next(request)
        ident = _client_ip(request, self._trusted)
        count = self._store.record_attempt(ident, self._window)
        if count > self._max:
            retry = self._store.retry_after(ident, self._window)
            logger.warning("Rate limit exceeded for %s (%d requests)", ident, count)
            return JSONResponse(
                status_code=429,
                content={"message": self._message},
                headers={"Retry-After": str(retry)},
            )
        return await call_next(request)


class BodyTooLarge(HTTPException):
    def __init__(self, max_bytes: int) -> None:
        super().__init__(status_code=413, detail=f"Request body exceeds {max_bytes} bytes")


def body_too_large_response(exc: BodyTooLarge) -> JSONResponse:
    return JSONResponse(status_code=413, content={"success": False, "message": exc.detail})


class BodySizeLimitMiddleware:
    """Reject bodies over ``max_bytes``, by Content-Length or by counting streamed chunks."""

    def __init__(self, app: ASGIApp, max_bytes: int) -> None:
        self.app = app
        self._max = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self._max <= 0:
            await self.app(scope, receive, send)
            return
        length = Headers(scope=scope).get("content-length")
        if length and length.isdigit() and int(length) > self._max:
            await body_too_large_response(BodyTooLarge(self._max))(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self._max:
                    raise BodyTooLarge(self._max)
            return message

        await self.app(scope, limited_receive, send)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration. Headers are not logged."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"{request.method} {request.url.path} "
            f"status={response.status_code} "
            f"duration={duration_ms:.1f}ms"
        )
        return response
