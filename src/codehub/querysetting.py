"""Saved queries and query watches.

Issue, build, pull request, commit and code comment search each let a
user save named queries and watch queries for new matches. They all
store that state through the same capability shape, QuerySetting, so
the User model never needs to know each feature's query type.

Each setting carries two independent watch maps:

- user_query_watches: keyed by the name of one of the user's own queries
- shared_query_watches: keyed by the name of a query curated elsewhere
  (project or global saved queries)

A key mapped to True means watching, False means explicitly unwatched,
and a missing key defers to the default watch policy. Keys are not tied
to the query list: replacing queries leaves old watch entries in place
so a rename does not lose watch state. Pruning is up to the caller, see
stale_watch_names().
"""

from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from codehub.db.models import Project, User


# ─── Named queries ──────────────────────────────────────


class NamedQuery(BaseModel):
    """A saved query: a display name plus the query text to run."""

    name: str = Field(..., min_length=1, max_length=255)
    query: Optional[str] = None

    model_config = {"frozen": True}


class NamedIssueQuery(NamedQuery):
    pass


class NamedBuildQuery(NamedQuery):
    pass


class NamedPullRequestQuery(NamedQuery):
    pass


class NamedCommitQuery(NamedQuery):
    pass


class NamedCodeCommentQuery(NamedQuery):
    pass


Q = TypeVar("Q", bound=NamedQuery)


def load_queries(raw: Optional[Iterable[Any]], query_class: type[Q]) -> list[Q]:
    """Stored JSON rows → query objects, in stored order."""
    return [query_class.model_validate(item) for item in (raw or [])]


def dump_queries(queries: Iterable[Any], query_class: type[Q]) -> list[dict]:
    """Query objects (or plain dicts) → JSON rows, in the given order."""
    rows = []
    for query in queries:
        if not isinstance(query, query_class):
            query = query_class.model_validate(
                query.model_dump() if isinstance(query, NamedQuery) else query
            )
        rows.append(query.model_dump())
    return rows


# ─── Watch state ────────────────────────────────────────


class WatchStatus(str, Enum):
    WATCH = "watch"
    IGNORE = "ignore"
    DEFAULT = "default"


def watch_status(watches: Mapping[str, bool], name: str) -> WatchStatus:
    """Resolve the watch state of a query name in one watch map."""
    if name not in watches:
        return WatchStatus.DEFAULT
    return WatchStatus.WATCH if watches[name] else WatchStatus.IGNORE


# ─── Capability ─────────────────────────────────────────


@runtime_checkable
class QuerySetting(Protocol[Q]):
    """What a feature needs to persist a user's saved queries and watches."""

    query_class: ClassVar[type[NamedQuery]]

    @property
    def user(self) -> "User": ...

    @property
    def project(self) -> Optional["Project"]: ...

    def list_user_queries(self) -> list[Q]: ...

    def replace_user_queries(self, queries: Iterable[Q]) -> None: ...

    @property
    def user_query_watches(self) -> dict[str, bool]: ...

    @property
    def shared_query_watches(self) -> dict[str, bool]: ...


def stale_watch_names(setting: QuerySetting) -> list[str]:
    """Watched user query names that no longer name a saved query."""
    names = {query.name for query in setting.list_user_queries()}
    return [name for name in setting.user_query_watches if name not in names]


class UserIssueQuerySetting:
    """Account-wide issue queries, stored inline on the user row.

    Writes go through the user's own columns, so saving queries or
    changing a watch bumps the user's version like any other edit.
    """

    query_class = NamedIssueQuery

    def __init__(self, user: "User"):
        self._user = user

    @property
    def user(self) -> "User":
        return self._user

    @property
    def project(self) -> None:
        return None

    def list_user_queries(self) -> list[NamedIssueQuery]:
        return load_queries(self._user.user_issue_queries, self.query_class)

    def replace_user_queries(self, queries: Iterable[NamedIssueQuery]) -> None:
        self._user.user_issue_queries = dump_queries(queries, self.query_class)

    @property
    def user_query_watches(self) -> dict[str, bool]:
        return self._user.user_issue_query_watches

    @property
    def shared_query_watches(self) -> dict[str, bool]:
        return self._user.issue_query_watches

    def __repr__(self) -> str:
        return f"<UserIssueQuerySetting user={self._user.name!r}>"
