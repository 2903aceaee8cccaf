"""A small request/response layer: configuration, contexts and a router."""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from functools import reduce
from http import HTTPStatus
from typing import Any, Callable, Iterable
from urllib.parse import parse_qs, urlsplit, urlunsplit

from .errors import HTTPError

logger = logging.getLogger(__name__)

Handler = Callable[["Context"], None]
Middleware = Callable[[Handler], Handler]

_HTML_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)
_CORS_METHODS = ("GET", "HEAD")
_CORS_HEADERS = ("Origin", "Content-Type", "Accept", "Authorization")
_REQUEST_ID_HEADER = "X-Request-Id"


def _canonical_header(name: str) -> str:
    return "-".join(part.capitalize() for part in name.split("-"))


@dataclass
class AppConfig:
    """Settings the API server reads."""

    oidc_client_id: str = ""
    oidc_issuer_url: str = ""
    api_authorized_group_id: str = ""
    api_rate_limiter_enabled: bool = False
    api_cache_ttl: float = 0.0


@dataclass
class Request:
    """An incoming HTTP request; header names are canonicalised."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {_canonical_header(k): v for k, v in self.headers.items()}


@dataclass
class Response:
    """The response being built for a request."""

    status: int = HTTPStatus.OK
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    committed: bool = False


def _json_default(obj: Any) -> Any:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _encode_json(payload: Any) -> str:
    text = json.dumps(
        payload, default=_json_default, separators=(",", ":"), ensure_ascii=False
    )
    for char, escaped in _HTML_ESCAPES:
        text = text.replace(char, escaped)
    return text


@dataclass
class Context:
    """Per-request state handed to handlers and middleware."""

    request: Request
    response: Response = field(default_factory=Response)
    params: dict[str, str] = field(default_factory=dict)
    _store: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def _write(self, status: int, content_type: str, body: bytes) -> None:
        self.response.headers["Content-Type"] = content_type
        self.response.status = status
        self.response.body = body
        self.response.committed = True

    def _path(self) -> str:
        return urlsplit(self.request.url).path or "/"

    def json(self, status: int, payload: Any) -> None:
        """Write ``payload`` as a JSON response."""
        self._write(status, "application/json", (_encode_json(payload) + "\n").encode())

    def string(self, status: int, text: str) -> None:
        """Write a plain-text response."""
        self._write(status, "text/plain; charset=UTF-8", text.encode())

    def param(self, name: str) -> str:
        """Path parameter, or an empty string."""
        return self.params.get(name, "")

    def query_params(self) -> dict[str, list[str]]:
        """All query parameters with every value they were given."""
        query = urlsplit(self.request.url).query
        return {k: list(v) for k, v in parse_qs(query, keep_blank_values=True).items()}

    def query_param(self, name: str) -> str:
        """First value of a query parameter, or an empty string."""
        values = self.query_params().get(name)
        return values[0] if values else ""

    def get(self, key: str) -> Any:
        return self._store.get(key)

    def set(self, key: str, value: Any) -> None:
        self._store[key] = value

    def bind_json(self) -> Any:
        """Decode the request body as JSON; an empty body gives an empty dict."""
        if not self.request.body:
            return {}
        try:
            return json.loads(self.request.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise HTTPError(HTTPStatus.BAD_REQUEST, f"Syntax error: {exc}") from exc


def _chain(middleware: Iterable[Middleware], handler: Handler) -> Handler:
    return reduce(lambda inner, mw: mw(inner), reversed(tuple(middleware)), handler)


def _split(path: str) -> tuple[str, ...]:
    if not path.startswith("/"):
        path = "/" + path
    return tuple(path.split("/")[1:])


def _match(pattern: tuple[str, ...], segments: tuple[str, ...]) -> dict[str, str] | None:
    if len(pattern) != len(segments):
        return None
    params: dict[str, str] = {}
    for expected, actual in zip(pattern, segments):
        if expected.startswith(":"):
            if not actual:
                return None
            params[expected[1:]] = actual
        elif expected != actual:
            return None
    return params


@dataclass
class _Route:
    method: str
    segments: tuple[str, ...]
    handler: Handler


class RouteGroup:
    """Routes sharing a path prefix and middleware."""

    def __init__(self, router: Router, prefix: str, middleware: Iterable[Middleware] = ()) -> None:
        self._router = router
        self._prefix = prefix
        self._middleware = tuple(middleware)

    def add_route(self, method: str, path: str, handler: Handler, *args: Middleware) -> None:
        """Register a handler; ``args`` are route middleware, run inside the group's."""
        self._router.add_route(method, self._prefix + path, handler, *self._middleware, *args)

    def group(self, prefix: str, *args: Middleware) -> RouteGroup:
        return RouteGroup(self._router, self._prefix + prefix, (*self._middleware, *args))


class Router:
    """Dispatches requests to handlers by method and path."""

    def __init__(self) -> None:
        self._middleware: list[Middleware] = []
        self._routes: list[_Route] = []

    def use(self, middleware: Middleware) -> None:
        """Add middleware that runs for every request, before routing."""
        self._middleware.append(middleware)

    def add_route(self, method: str, path: str, handler: Handler, *args: Middleware) -> None:
        self._routes.append(_Route(method.upper(), _split(path), _chain(args, handler)))

    def group(self, prefix: str, *args: Middleware) -> RouteGroup:
        return RouteGroup(self, prefix, args)

    def handle(self, request: Request) -> Response:
        """Run a request through middleware and its route, returning the response."""
        ctx = Context(request)
        try:
            _chain(self._middleware, self._dispatch)(ctx)
        except HTTPError as exc:
            self._render_error(ctx, exc.code, exc.message)
        except Exception:
            logger.exception("Unhandled error for %s %s", request.method, request.url)
            self._render_error(
                ctx, HTTPStatus.INTERNAL_SERVER_ERROR, HTTPStatus.INTERNAL_SERVER_ERROR.phrase
            )
        return ctx.response

    @staticmethod
    def _render_error(ctx: Context, code: int, message: Any) -> None:
        if ctx.response.committed:
            logger.error("Error after response was written: %s", message)
            return
        ctx.json(code, {"message": message})

    def _dispatch(self, ctx: Context) -> None:
        segments = _split(ctx._path())
        path_matched = False
        for route in self._routes:
            params = _match(route.segments, segments)
            if params is None:
                continue
            path_matched = True
            if route.method == ctx.request.method:
                ctx.params = params
                route.handler(ctx)
                return
        raise HTTPError(HTTPStatus.METHOD_NOT_ALLOWED if path_matched else HTTPStatus.NOT_FOUND)


def _remove_trailing_slash(next_handler: Handler) -> Handler:
    def handler(ctx: Context) -> None:
        parts = urlsplit(ctx.request.url)
        if len(parts.path) > 1 and parts.path.endswith("/"):
            ctx.request.url = urlunsplit(parts._replace(path=parts.path[:-1]))
        next_handler(ctx)

    return handler


def _log_requests(next_handler: Handler) -> Handler:
    def handler(ctx: Context) -> None:
        start = time.perf_counter()
        try:
            next_handler(ctx)
        finally:
            elapsed = (time.perf_counter() - start) * 1000
            logger.info(
                "%s %s %d %.3fms",
                ctx.request.method,
                ctx.request.url,
                ctx.response.status,
                elapsed,
            )

    return handler


def _cors(next_handler: Handler) -> Handler:
    def handler(ctx: Context) -> None:
        request, response = ctx.request, ctx.response
        origin = request.headers.get("Origin", "")
        if request.method != "OPTIONS":
            response.headers["Vary"] = "Origin"
            if origin:
                response.headers["Access-Control-Allow-Origin"] = "*"
            next_handler(ctx)
            return
        response.headers["Vary"] = (
            "Origin, Access-Control-Request-Method, Access-Control-Request-Headers"
        )
        if origin:
            response.headers["Access-Control-Allow-Origin"] = "*"
            response.headers["Access-Control-Allow-Methods"] = ",".join(_CORS_METHODS)
            response.headers["Access-Control-Allow-Headers"] = ",".join(_CORS_HEADERS)
        response.status = HTTPStatus.NO_CONTENT
        response.body = b""
        response.committed = True

    return handler


def _request_id(next_handler: Handler) -> Handler:
    def handler(ctx: Context) -> None:
        rid = ctx.request.headers.get(_REQUEST_ID_HEADER) or str(uuid.uuid4())
        ctx.response.headers[_REQUEST_ID_HEADER] = rid
        next_handler(ctx)

    return handler


def new_router() -> Router:
    """A router with trailing-slash removal, logging, CORS and request IDs."""
    router = Router()
    router.use(_remove_trailing_slash)
    router.use(_log_requests)
    router.use(_cors)
    router.use(_request_id)
    return router