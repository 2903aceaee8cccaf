"""Bearer-token authentication and group authorisation middleware."""

from __future__ import annotations

import json
import logging
import time
from http import HTTPStatus
from typing import Any, Iterable, Protocol

import jwt

from .context import AppConfig, Context, Handler, Middleware
from .errors import new_error

logger = logging.getLogger(__name__)

EGRESS_TARGET = "azure_ad"
TOKEN_LOOKUP = "Authorization"
AUTH_SCHEME = "Bearer"
SPN_PREFIX = "spn:"


class Metrics(Protocol):
    """What the authenticator reports about calls to the identity provider."""

    def record_egress_request_cnt(self, target: str) -> None: ...

    def record_egress_request_dur(self, target: str, elapsed: float) -> None: ...


class VerificationError(Exception):
    """Raised when a token fails signature, issuer, audience or expiry checks."""


class TokenVerifier:
    """Checks signed ID tokens for one issuer and one client ID."""

    def __init__(
        self,
        issuer: str,
        client_id: str,
        public_key: Any,
        algorithms: Iterable[str] = ("RS256",),
    ) -> None:
        self.issuer = issuer
        self.client_id = client_id
        self._public_key = public_key
        self._algorithms = list(algorithms)

    def verify(self, raw_token: str) -> dict[str, Any]:
        """Return the token's claims, or raise VerificationError."""
        try:
            claims = jwt.decode(
                raw_token,
                self._public_key,
                algorithms=self._algorithms,
                issuer=self.issuer,
                options={"verify_aud": False, "require": ["exp"]},
            )
        except jwt.PyJWTError as exc:
            raise VerificationError(f"oidc: {exc}") from exc

        audience = claims.get("aud")
        audiences = [audience] if isinstance(audience, str) else list(audience or [])
        if self.client_id not in audiences:
            raise VerificationError(
                f'oidc: expected audience "{self.client_id}" got {json.dumps(audiences)}'
            )
        return claims


def extract_token(authorization: str) -> str:
    """Return the token following the ``Bearer`` scheme."""
    size = len(AUTH_SCHEME)
    if len(authorization) > size + 1 and authorization[:size] == AUTH_SCHEME:
        return authorization[size + 1 :]
    raise ValueError("missing or malformed jwt")


def _identity(claims: dict[str, Any]) -> tuple[str, list[str] | None]:
    oid = claims.get("oid", "")
    if not isinstance(oid, str):
        raise VerificationError("claim oid must be a string")
    groups = claims.get("groups")
    if groups is not None and not (
        isinstance(groups, list) and all(isinstance(g, str) for g in groups)
    ):
        raise VerificationError("claim groups must be a list of strings")
    return oid, groups


class Authenticator:
    """Verifies tokens with or without the ``spn:`` audience prefix."""

    def __init__(
        self,
        verifier: TokenVerifier,
        spn_verifier: TokenVerifier,
        metrics: Metrics | None = None,
    ) -> None:
        self.verifier = verifier
        self.spn_verifier = spn_verifier
        self.metrics = metrics

    def _verify(self, raw_token: str) -> dict[str, Any]:
        try:
            return self.verifier.verify(raw_token)
        except VerificationError as exc:
            if SPN_PREFIX not in str(exc):
                raise
        return self.spn_verifier.verify(raw_token)

    def verify_token(self) -> Middleware:
        """Middleware that rejects requests without a valid bearer token."""

        def middleware(next_handler: Handler) -> Handler:
            def handler(ctx: Context) -> None:
                authorization = ctx.request.headers.get(TOKEN_LOOKUP, "")
                try:
                    raw_token = extract_token(authorization)
                except ValueError as exc:
                    ctx.json(HTTPStatus.BAD_REQUEST, new_error(exc))
                    return

                start = time.perf_counter()
                try:
                    claims: dict[str, Any] | None = self._verify(raw_token)
                    failure: VerificationError | None = None
                except VerificationError as exc:
                    claims, failure = None, exc
                elapsed = time.perf_counter() - start

                if self.metrics is not None:
                    self.metrics.record_egress_request_cnt(EGRESS_TARGET)
                    self.metrics.record_egress_request_dur(EGRESS_TARGET, elapsed)

                if failure is not None or claims is None:
                    ctx.json(HTTPStatus.FORBIDDEN, new_error(failure or VerificationError()))
                    return

                try:
                    oid, groups = _identity(claims)
                except VerificationError as exc:
                    ctx.json(HTTPStatus.FORBIDDEN, new_error(exc))
                    return

                ctx.set("oid", oid)
                ctx.set("groups", groups)
                logger.info("Identity logged in: %s", oid)
                next_handler(ctx)

            return handler

        return middleware

    def verify_group_access(self, group: str) -> Middleware:
        """Middleware that only lets members of ``group`` through."""

        def middleware(next_handler: Handler) -> Handler:
            def handler(ctx: Context) -> None:
                oid = ctx.get("oid") or ""
                groups = ctx.get("groups") or []
                if group not in groups:
                    ctx.json(
                        HTTPStatus.FORBIDDEN,
                        new_error(
                            PermissionError(
                                f"identity {oid} is not authorized to perform this request"
                            )
                        ),
                    )
                    return
                next_handler(ctx)

            return handler

        return middleware


def new_authenticator(
    app_config: AppConfig, public_key: Any, metrics: Metrics | None = None
) -> Authenticator:
    """Build an authenticator for the configured issuer and client ID."""
    verifier = TokenVerifier(app_config.oidc_issuer_url, app_config.oidc_client_id, public_key)
    spn_verifier = TokenVerifier(
        app_config.oidc_issuer_url, SPN_PREFIX + app_config.oidc_client_id, public_key
    )
    return Authenticator(verifier, spn_verifier, metrics)