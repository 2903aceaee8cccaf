"""Response caching for GET requests."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from http import HTTPStatus
from typing import Any, Callable, Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .context import AppConfig, Context, Handler, Middleware

logger = logging.getLogger(__name__)

_FNV64_OFFSET = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_MASK64 = (1 << 64) - 1
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass
class CachedResponse:
    """A cached response body and its headers."""

    value: bytes = b""
    header: dict[str, list[str]] = field(default_factory=dict)

    def to_string(self) -> str:
        return json.dumps(
            {
                "value": base64.b64encode(self.value).decode("ascii"),
                "header": self.header,
            },
            sort_keys=True,
            separators=(",", ":"),
        )


def string_to_response(data: str) -> CachedResponse:
    """Decode a stored response; undecodable data gives an empty response."""
    try:
        raw = json.loads(data)
        value = base64.b64decode(raw["value"], validate=True)
        header = {str(k): [str(v) for v in values] for k, values in raw["header"].items()}
    except (ValueError, TypeError, KeyError, AttributeError, binascii.Error):
        return CachedResponse()
    return CachedResponse(value, header)


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_key(url: str) -> str:
    """FNV-1a 64-bit hash of the URL, in base 36."""
    value = _FNV64_OFFSET
    for byte in url.encode():
        value = ((value ^ byte) * _FNV64_PRIME) & _MASK64
    return _base36(value)


def sort_url_params(url: str) -> str:
    """Return the URL with query keys and each key's values sorted."""
    parts = urlsplit(url)
    grouped: dict[str, list[str]] = {}
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        grouped.setdefault(key, []).append(value)
    query = urlencode([(key, value) for key in sorted(grouped) for value in sorted(grouped[key])])
    return urlunsplit(parts._replace(query=query))


@dataclass
class _Entry:
    value: str
    expires_at: float | None
    tags: frozenset[str]


class MemoryCache:
    """An in-process key/value store with expiry and tag invalidation."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        """Stored value, or None when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at is not None and self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(
        self,
        key: str,
        value: str,
        ttl: float | timedelta = 0.0,
        tags: Iterable[str] = (),
    ) -> None:
        """Store a value; a ttl of zero or less never expires."""
        seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
        expires_at = self._clock() + seconds if seconds > 0 else None
        with self._lock:
            self._entries[key] = _Entry(value, expires_at, frozenset(tags))

    def invalidate(self, tags: Iterable[str]) -> int:
        """Remove every entry carrying any of ``tags``; return how many went."""
        wanted = frozenset(tags)
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if entry.tags & wanted]
            for key in doomed:
                del self._entries[key]
        return len(doomed)


def http_cache(store: Any, app_config: AppConfig, tags: Iterable[str]) -> Middleware:
    """Middleware serving GET responses from ``store`` and caching successful ones."""
    tag_list = tuple(tags)

    def middleware(next_handler: Handler) -> Handler:
        def handler(ctx: Context) -> None:
            if ctx.request.method != "GET":
                next_handler(ctx)
                return

            ctx.request.url = sort_url_params(ctx.request.url)
            key = generate_key(ctx.request.url)

            try:
                cached = store.get(key)
            except Exception as exc:  # a failing cache backend must not fail the request
                logger.warning("Error getting key from cache: %s", exc)
                cached = None

            if cached:
                response = string_to_response(cached)
                for name, values in response.header.items():
                    ctx.response.headers[name] = ",".join(values)
                ctx.response.status = HTTPStatus.OK
                ctx.response.body = response.value
                ctx.response.committed = True
                return

            next_handler(ctx)

            if ctx.response.status < HTTPStatus.BAD_REQUEST:
                entry = CachedResponse(
                    ctx.response.body,
                    {name: [value] for name, value in ctx.response.headers.items()},
                )
                try:
                    store.set(key, entry.to_string(), app_config.api_cache_ttl, tag_list)
                except Exception as exc:  # a failing cache backend must not fail the request
                    logger.error("Error setting cache key: %s", exc)

        return handler

    return middleware