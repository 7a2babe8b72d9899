"""Typed failures raised by the identity core.

None of these are retried internally. Callers decide on recovery:
prompt for other input, reload and re-apply an edit, or treat the
failure as a programming error.
"""

from typing import Any, Optional


class CodeHubError(Exception):
    """Base class for all identity core errors."""


class UniquenessViolation(CodeHubError):
    """Raised when a write would duplicate a unique login name or email."""

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value
        super().__init__(f"{field} '{value}' is already in use")


class ConcurrentModificationError(CodeHubError):
    """Raised when a commit finds the stored version moved since load."""

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ):
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        detail = f"{entity} {entity_id} was modified concurrently"
        if expected_version is not None:
            detail += f" (expected version {expected_version}, found {actual_version})"
        super().__init__(detail)


class ValidationError(CodeHubError):
    """Raised before any persistence attempt when input is malformed.

    errors is a list of {"field": ..., "message": ...} dicts.
    """

    def __init__(self, errors: list[dict]):
        self.errors = errors
        message = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        super().__init__(message or "invalid input")

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        return cls(
            [
                {
                    "field": ".".join(str(p) for p in err["loc"]) or "__root__",
                    "message": err["msg"],
                }
                for err in exc.errors()
            ]
        )


class IdentityNotBoundError(CodeHubError):
    """Raised when code asks for the current user and nobody is bound.

    This is a programming error in the caller: it should have gated on
    authentication before reaching code that needs an identity.
    """


class UserNotFoundError(CodeHubError):
    """Raised when a user is not found."""


class RootAccountError(CodeHubError):
    """Raised when an operation would reassign or remove the root account."""


class AuthenticationError(CodeHubError):
    """Raised when a login name/password pair does not check out."""


class ProjectNotFoundError(CodeHubError):
    """Raised when a project is not found."""
