"""Request-scoped security context.

Code that needs "the current user" is handed a SecurityContext rather
than reaching for a global. Binding a subject also binds user_id into
structlog's contextvars so it shows up on every log line of the unit
of work.
"""

from typing import Optional

import structlog

from codehub.auth.jwt import subject_from_token
from codehub.auth.principal import Subject, act_as
from codehub.errors import IdentityNotBoundError


class SecurityContext:
    """Who the current unit of work runs as."""

    def __init__(self, subject: Optional[Subject] = None):
        self._subject = None
        if subject is not None:
            self.bind(subject)

    @classmethod
    def from_token(cls, token: str) -> "SecurityContext":
        """Context for the subject an access token was issued to.

        Raises TokenError if the token does not verify.
        """
        return cls(subject_from_token(token))

    @classmethod
    def acting_as(cls, user) -> "SecurityContext":
        return cls(act_as(user))

    @property
    def subject(self) -> Optional[Subject]:
        return self._subject

    @property
    def is_bound(self) -> bool:
        return self._subject is not None

    @property
    def is_authenticated(self) -> bool:
        return self._subject is not None and self._subject.authenticated

    def bind(self, subject: Subject) -> None:
        self._subject = subject
        structlog.contextvars.bind_contextvars(user_id=subject.user_id)

    def clear(self) -> None:
        self._subject = None
        structlog.contextvars.unbind_contextvars("user_id")

    def current_subject(self) -> Subject:
        if self._subject is None:
            raise IdentityNotBoundError("No subject is bound to this context")
        return self._subject

    def current_user_id(self) -> int:
        return self.current_subject().user_id

    def __repr__(self) -> str:
        if self._subject is None:
            return "<SecurityContext unbound>"
        return f"<SecurityContext user_id={self._subject.user_id}>"
