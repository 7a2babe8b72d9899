"""Principals and subjects.

A principal collection carries exactly one value, the user's id, under
an empty realm name. A subject is a principal collection plus whether
it was established by checking credentials.

act_as() builds a subject for any user without checking credentials.
Background jobs, automation and impersonation run that way. Nobody
(None, or a user that was never saved) maps to ANONYMOUS_ID, which no
real account can have: database ids start at 1 and 1 is root.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, Optional, Union

from codehub.db.models import ROOT_ID

if TYPE_CHECKING:
    from codehub.db.models import User

ANONYMOUS_ID = 0


@dataclass(frozen=True)
class PrincipalCollection:
    primary: int
    realm: str = ""

    def __iter__(self) -> Iterator[int]:
        yield self.primary

    def __len__(self) -> int:
        return 1


@dataclass(frozen=True)
class Subject:
    principals: PrincipalCollection
    authenticated: bool = False

    @property
    def user_id(self) -> int:
        return self.principals.primary

    @property
    def is_anonymous(self) -> bool:
        return self.user_id == ANONYMOUS_ID

    @property
    def is_root(self) -> bool:
        return self.user_id == ROOT_ID


def as_principal(user_id: Optional[int]) -> PrincipalCollection:
    return PrincipalCollection(ANONYMOUS_ID if user_id is None else user_id)


def principals_of(user: "User") -> PrincipalCollection:
    return as_principal(user.id)


def credentials_of(user: "User") -> str:
    """The stored secret, for the credential collaborator to check against."""
    return user.password


def act_as(user: Union["User", int, None]) -> Subject:
    """A subject for user (a User, a user id, or None for anonymous)."""
    if isinstance(user, bool):
        raise TypeError("act_as() takes a User, a user id or None, not a bool")
    if user is None or isinstance(user, int):
        return Subject(as_principal(user))
    return Subject(principals_of(user))
