"""Health, version and rate-limiting endpoints and middleware."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Callable

from .context import AppConfig, Context, Handler, Middleware

ANONYMOUS_IDENTIFIER = "00000000-0000-0000-0000-000000000000"


def livez(ctx: Context) -> None:
    """Report that the API server is up."""
    ctx.string(HTTPStatus.OK, "OK")


def version(version: str) -> Handler:
    """A handler answering with the application version."""

    def handler(ctx: Context) -> None:
        ctx.string(HTTPStatus.OK, version)

    return handler


@dataclass
class StatusSessions:
    """The database and queue connections the server shares across requests."""

    sqs: Any
    db: Any
    app_config: AppConfig | None = None
    metrics: Any = None

    @staticmethod
    def _healthy(service: Any) -> bool:
        try:
            service.status()
        except Exception:
            return False
        return True

    def readyz(self, ctx: Context) -> None:
        """Report whether the database and the queue are healthy."""
        ready = {"database": self._healthy(self.db), "sqs": self._healthy(self.sqs)}
        status = HTTPStatus.OK if all(ready.values()) else HTTPStatus.INTERNAL_SERVER_ERROR
        ctx.json(status, ready)


@dataclass
class _Bucket:
    tokens: float
    updated: float
    last_seen: float


class RateLimiter:
    """Token buckets per identifier; idle identifiers are forgotten after a while."""

    def __init__(
        self,
        rate: float = 2.0,
        burst: int = 120,
        expires_in: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rate = rate
        self.burst = burst
        self.expires_in = expires_in
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._last_cleanup = clock()
        self._lock = threading.Lock()

    def _cleanup(self, now: float) -> None:
        self._buckets = {
            ident: bucket
            for ident, bucket in self._buckets.items()
            if now - bucket.last_seen <= self.expires_in
        }
        self._last_cleanup = now

    def __len__(self) -> int:
        return len(self._buckets)

    def allow(self, identifier: str) -> bool:
        """Take one token for ``identifier``; False when none is left."""
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(identifier)
            if bucket is None:
                bucket = _Bucket(float(self.burst), now, now)
                self._buckets[identifier] = bucket
            bucket.last_seen = now
            if now - self._last_cleanup > self.expires_in:
                self._cleanup(now)
            bucket.tokens = min(
                float(self.burst), bucket.tokens + (now - bucket.updated) * self.rate
            )
            bucket.updated = now
            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True
            return False


def rate_limiter(app_config: AppConfig) -> Middleware:
    """Middleware limiting requests per identity when enabled in the config."""
    store = RateLimiter()

    def middleware(next_handler: Handler) -> Handler:
        def handler(ctx: Context) -> None:
            if not app_config.api_rate_limiter_enabled:
                next_handler(ctx)
                return
            oid = ctx.get("oid")
            identifier = oid if isinstance(oid, str) else ANONYMOUS_IDENTIFIER
            if not store.allow(identifier):
                ctx.json(HTTPStatus.TOO_MANY_REQUESTS, None)
                return
            next_handler(ctx)

        return handler

    return middleware