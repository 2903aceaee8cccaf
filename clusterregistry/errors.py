"""Error payloads returned by the API server."""

from __future__ import annotations

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any


class HTTPError(Exception):
    """An error carrying an HTTP status code and a message meant for the client."""

    def __init__(self, code: int, message: Any = None) -> None:
        if message is None:
            try:
                message = HTTPStatus(code).phrase
            except ValueError:
                message = ""
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"code={self.code}, message={self.message}"


@dataclass
class ErrorBody:
    """The JSON error envelope: ``{"errors": {...}}``."""

    errors: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"errors": dict(self.errors)}


def new_error(err: BaseException) -> ErrorBody:
    """Wrap an exception into an error body."""
    if isinstance(err, HTTPError):
        return ErrorBody({"body": err.message})
    return ErrorBody({"body": str(err)})


def not_found() -> ErrorBody:
    """Error body for a resource that does not exist."""
    return ErrorBody({"body": "resource not found"})