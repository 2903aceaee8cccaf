import json

import pytest

from clusterregistry.context import AppConfig, Context, Request
from clusterregistry.web import (
    RateLimiter,
    StatusSessions,
    livez,
    rate_limiter,
    version,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class Service:
    def __init__(self, healthy=True):
        self.healthy = healthy

    def status(self):
        if not self.healthy:
            raise ConnectionError("down")


def _ctx(method="GET", url="/", body=b""):
    return Context(Request(method, url, body=body))


def test_livez_returns_ok():
    ctx = _ctx("POST", "/", b"Hello, World!")
    livez(ctx)
    assert ctx.response.status == 200
    assert ctx.response.body == b"OK"


def test_version_handler():
    ctx = _ctx()
    version("1.2.3")(ctx)
    assert ctx.response.status == 200
    assert ctx.response.body == b"1.2.3"


@pytest.mark.parametrize(
    "db_ok, sqs_ok, expected_status",
    [(True, True, 200), (False, True, 500), (True, False, 500), (False, False, 500)],
)
def test_readyz(db_ok, sqs_ok, expected_status):
    sessions = StatusSessions(sqs=Service(sqs_ok), db=Service(db_ok))
    ctx = _ctx()
    sessions.readyz(ctx)
    assert ctx.response.status == expected_status
    assert json.loads(ctx.response.body) == {"database": db_ok, "sqs": sqs_ok}


def test_rate_limiter_burst_then_deny():
    limiter = RateLimiter(clock=FakeClock())
    results = [limiter.allow("user") for _ in range(121)]
    assert results[:120] == [True] * 120
    assert results[120] is False


def test_rate_limiter_refills_at_rate():
    clock = FakeClock()
    limiter = RateLimiter(rate=2.0, burst=2, clock=clock)
    assert limiter.allow("a") and limiter.allow("a")
    assert not limiter.allow("a")
    clock.now = 0.5
    assert limiter.allow("a")
    assert not limiter.allow("a")


def test_rate_limiter_identifiers_are_independent():
    limiter = RateLimiter(burst=1, clock=FakeClock())
    assert limiter.allow("a")
    assert not limiter.allow("a")
    assert limiter.allow("b")


def test_rate_limiter_forgets_idle_identifiers():
    clock = FakeClock()
    limiter = RateLimiter(expires_in=60.0, clock=clock)
    limiter.allow("old")
    clock.now = 120.0
    limiter.allow("new")
    assert len(limiter) == 1


def _run(handler, count, oid=None):
    contexts = []
    for _ in range(count):
        ctx = _ctx()
        if oid is not None:
            ctx.set("oid", oid)
        handler(ctx)
        contexts.append(ctx)
    return contexts


def test_rate_limiter_middleware_disabled_passes_through():
    middleware = rate_limiter(AppConfig(api_rate_limiter_enabled=False))
    handler = middleware(lambda c: c.string(200, "ok"))
    statuses = [ctx.response.status for ctx in _run(handler, 200)]
    assert statuses == [200] * 200


def test_rate_limiter_middleware_denies_with_429():
    middleware = rate_limiter(AppConfig(api_rate_limiter_enabled=True))
    handler = middleware(lambda c: c.string(200, "ok"))
    contexts = _run(handler, 200, oid="user-1")
    statuses = [ctx.response.status for ctx in contexts]
    assert statuses[:120] == [200] * 120
    denied = [ctx for ctx in contexts if ctx.response.status == 429]
    assert denied
    assert denied[0].response.body == b"null\n"


def test_rate_limiter_middleware_anonymous_share_bucket():
    handler = rate_limiter(AppConfig(api_rate_limiter_enabled=True))(
        lambda c: c.string(200, "ok")
    )
    statuses = [ctx.response.status for ctx in _run(handler, 200)]
    assert statuses[:120] == [200] * 120
    assert 429 in statuses[120:]