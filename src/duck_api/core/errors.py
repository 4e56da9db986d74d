"""
Error types for duck-api.

Request-time errors (``ApiError`` and its ``ValidationError`` subclass) carry
an HTTP status code and are turned into the response envelope by the
boundary exception handlers. ``ConfigurationError`` is raised while
synthesizing endpoints at startup and is never handled per request.
"""

from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pydantic import ValidationError as PydanticValidationError


def status_phrase(code: int) -> str:
    """Return the standard reason phrase for an HTTP status code."""
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return "unknown error"


class DuckApiError(Exception):
    """Base exception for all duck-api errors."""


class ConfigurationError(DuckApiError):
    """
    Raised when an entity, method, gateway or CRUD definition is malformed.

    Examples:
    - Entity without a model
    - Route tree keyed like an array
    - Unknown dependency kind requested from the resolver
    """

    def __init__(self, message: str, file: str | None = None):
        self.message = message
        self.file = file
        super().__init__(f"{file}: {message}" if file else message)


class ApiError(DuckApiError):
    """An error answered to the client with the given status code."""

    def __init__(self, code: int = 400, message: str | None = None):
        self.code = code
        self.message = message or status_phrase(code)
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Render the error envelope."""
        return {"code": self.code, "error": {"message": self.message}}


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation failure."""

    message: str
    field: str

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "field": self.field}


class ValidationError(ApiError):
    """Input did not match the schema declared for an endpoint."""

    def __init__(
        self,
        message: str = "Data is not valid",
        errors: list[FieldError] | None = None,
        code: int = 400,
    ):
        super().__init__(code, message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(
        cls, exc: PydanticValidationError, message: str = "Data is not valid"
    ) -> ValidationError:
        """Build from a pydantic ``ValidationError``, keeping one entry per failing field."""
        errors = [
            FieldError(
                message=err["msg"],
                field=".".join(str(part) for part in err["loc"]),
            )
            for err in exc.errors()
        ]
        return cls(message, errors)

    def to_dict(self) -> dict[str, Any]:
        envelope = super().to_dict()
        if self.errors:
            envelope["error"]["errors"] = [error.to_dict() for error in self.errors]
        return envelope
