"""SQLAlchemy ORM models — single source of truth for the database schema.

Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table.

Key concepts:
- Integer ids assigned by the database; id 1 is the root user
- JSON (not JSONB) for saved queries and watch maps so key order survives
  a round trip through PostgreSQL
- Everything a user owns is removed with the user: ORM cascade for loaded
  rows, ON DELETE CASCADE for the rest
- users.version is an optimistic lock (version_id_col): every UPDATE is
  issued as ... WHERE version = <loaded version>
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import ClassVar, Iterable, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.ext.mutable import MutableDict, MutableList
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    declared_attr,
    mapped_column,
    relationship,
)

from codehub.matchscore import match_score
from codehub.querysetting import (
    NamedBuildQuery,
    NamedCodeCommentQuery,
    NamedCommitQuery,
    NamedIssueQuery,
    NamedPullRequestQuery,
    NamedQuery,
    UserIssueQuerySetting,
    dump_queries,
    load_queries,
)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def json_list():
    return MutableList.as_mutable(JSON)


def json_dict():
    return MutableDict.as_mutable(JSON)


ROOT_ID = 1


# ══════════════════════════════════════════════════════════════
# Projects, groups, authorizations
# ══════════════════════════════════════════════════════════════


class Project(Base):
    """A hosted repository with its issues and pull requests."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # [{"branches": "main release/*", "user_names": ["alice", "bob"]}, ...]
    protection_rules: Mapped[list] = mapped_column(
        json_list(), nullable=False, default=list
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("protection_rules", [])
        super().__init__(**kwargs)

    # Protection rules reference users by login name, not id. Renaming or
    # deleting a user must rewrite them in the same unit of work that bumps
    # users.version, see UserService.update_user / delete_user.

    def user_names_in_rules(self) -> set[str]:
        return {
            name
            for rule in self.protection_rules
            for name in rule.get("user_names", [])
        }

    def on_rename_user(self, old_name: str, new_name: str) -> bool:
        """Point rules at the new login name. Returns True if anything changed."""
        changed = False
        for rule in self.protection_rules:
            names = rule.get("user_names", [])
            if old_name in names:
                rule["user_names"] = [new_name if n == old_name else n for n in names]
                changed = True
        if changed:
            self.protection_rules.changed()
        return changed

    def on_delete_user(self, name: str) -> bool:
        """Drop a deleted user from every rule. Returns True if anything changed."""
        changed = False
        for rule in self.protection_rules:
            names = rule.get("user_names", [])
            if name in names:
                rule["user_names"] = [n for n in names if n != name]
                changed = True
        if changed:
            self.protection_rules.changed()
        return changed


class Group(Base):
    """A named set of users that can be granted project roles together."""

    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    memberships: Mapped[list["Membership"]] = relationship(
        back_populates="group", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Group {self.name!r}>"


class Membership(Base):
    """Links a user to a group."""

    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "group_id", name="uq_memberships"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True
    )

    user: Mapped["User"] = relationship(back_populates="memberships")
    group: Mapped["Group"] = relationship(back_populates="memberships", lazy="selectin")


class UserAuthorization(Base):
    """A project role granted directly to a user."""

    __tablename__ = "user_authorizations"
    __table_args__ = (
        UniqueConstraint("user_id", "project_id", name="uq_user_authorizations"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="developer"
    )  # reader, developer, maintainer, owner

    user: Mapped["User"] = relationship(back_populates="project_authorizations")
    project: Mapped["Project"] = relationship()


# ══════════════════════════════════════════════════════════════
# Issues and pull requests (the parts users hold references into)
# ══════════════════════════════════════════════════════════════


class Issue(Base):
    __tablename__ = "issues"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)

    project: Mapped["Project"] = relationship()


class IssueWatch(Base):
    """A user's explicit watch (or ignore) of a single issue."""

    __tablename__ = "issue_watches"
    __table_args__ = (
        UniqueConstraint("issue_id", "user_id", name="uq_issue_watches"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issue_id: Mapped[int] = mapped_column(
        ForeignKey("issues.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    watching: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    user: Mapped["User"] = relationship(back_populates="issue_watches")
    issue: Mapped["Issue"] = relationship()


class PullRequest(Base):
    __tablename__ = "pull_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    target_branch: Mapped[str] = mapped_column(
        String(255), nullable=False, default="main"
    )

    project: Mapped["Project"] = relationship()


class PullRequestReview(Base):
    """A review requested of a user on a pull request."""

    __tablename__ = "pull_request_reviews"
    __table_args__ = (
        UniqueConstraint("request_id", "user_id", name="uq_pull_request_reviews"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("pull_requests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    result: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True
    )  # approved, requested_changes (null = pending)

    user: Mapped["User"] = relationship(back_populates="reviews")
    request: Mapped["PullRequest"] = relationship()


class PullRequestWatch(Base):
    """A user's explicit watch (or ignore) of a single pull request."""

    __tablename__ = "pull_request_watches"
    __table_args__ = (
        UniqueConstraint("request_id", "user_id", name="uq_pull_request_watches"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("pull_requests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    watching: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    user: Mapped["User"] = relationship(back_populates="pull_request_watches")
    request: Mapped["PullRequest"] = relationship()


# ══════════════════════════════════════════════════════════════
# Per-project saved query settings
# ══════════════════════════════════════════════════════════════


class ProjectQuerySettingMixin:
    """A user's saved queries and watches for one feature in one project.

    One concrete table per feature. Each implements QuerySetting over its
    own columns; the feature's query type is query_class.
    """

    query_class: ClassVar[type[NamedQuery]]
    __user_collection__: ClassVar[str]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_queries: Mapped[list] = mapped_column(
        json_list(), nullable=False, default=list
    )
    user_query_watches: Mapped[dict] = mapped_column(
        json_dict(), nullable=False, default=dict
    )
    shared_query_watches: Mapped[dict] = mapped_column(
        json_dict(), nullable=False, default=dict
    )

    @declared_attr.directive
    def __table_args__(cls):
        return (
            UniqueConstraint(
                "user_id", "project_id", name=f"uq_{cls.__tablename__}_user_project"
            ),
        )

    @declared_attr
    def user(cls) -> Mapped["User"]:
        return relationship("User", back_populates=cls.__user_collection__)

    @declared_attr
    def project(cls) -> Mapped["Project"]:
        return relationship("Project")

    def __init__(self, **kwargs):
        kwargs.setdefault("user_queries", [])
        kwargs.setdefault("user_query_watches", {})
        kwargs.setdefault("shared_query_watches", {})
        super().__init__(**kwargs)

    def list_user_queries(self) -> list:
        return load_queries(self.user_queries, self.query_class)

    def replace_user_queries(self, queries: Iterable) -> None:
        self.user_queries = dump_queries(queries, self.query_class)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} user_id={self.user_id} "
            f"project_id={self.project_id}>"
        )


class IssueQuerySetting(ProjectQuerySettingMixin, Base):
    __tablename__ = "issue_query_settings"
    __user_collection__ = "issue_query_settings"
    query_class = NamedIssueQuery


class BuildQuerySetting(ProjectQuerySettingMixin, Base):
    __tablename__ = "build_query_settings"
    __user_collection__ = "build_query_settings"
    query_class = NamedBuildQuery


class PullRequestQuerySetting(ProjectQuerySettingMixin, Base):
    __tablename__ = "pull_request_query_settings"
    __user_collection__ = "pull_request_query_settings"
    query_class = NamedPullRequestQuery


class CommitQuerySetting(ProjectQuerySettingMixin, Base):
    __tablename__ = "commit_query_settings"
    __user_collection__ = "commit_query_settings"
    query_class = NamedCommitQuery


class CodeCommentQuerySetting(ProjectQuerySettingMixin, Base):
    __tablename__ = "code_comment_query_settings"
    __user_collection__ = "code_comment_query_settings"
    query_class = NamedCodeCommentQuery


# ══════════════════════════════════════════════════════════════
# Audit log
# ══════════════════════════════════════════════════════════════


class Event(Base):
    """Immutable event log of account changes.

    stream_id examples: "user:42", "group:7"
    type examples: "user.created", "user.renamed", "query_watch.changed"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_stream", "stream_id", "id"),
        Index("idx_events_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    meta: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )  # actor_id
    # Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Users
# ══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class PersonIdent:
    """Name/email pair used as git author and committer."""

    name: str
    email: str

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


def _owned(**kwargs):
    return relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        **kwargs,
    )


class User(Base):
    """A platform account.

    Users log in, own saved queries, watch issues and pull requests, and
    get reviews requested of them. id 1 is the root account.

    Ordering is by display name, then id, so sorted() gives the order
    shown in user pickers.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_full_name", "full_name"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String(1024), nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Unique ignoring case, see uq_users_email_lower below
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    # Account-wide issue queries (project ones live in issue_query_settings)
    user_issue_queries: Mapped[list] = mapped_column(
        json_list(), nullable=False, default=list
    )
    user_issue_query_watches: Mapped[dict] = mapped_column(
        json_dict(), nullable=False, default=dict
    )
    issue_query_watches: Mapped[dict] = mapped_column(
        json_dict(), nullable=False, default=dict
    )

    __mapper_args__ = {"version_id_col": version}

    # Removed together with the user
    project_authorizations: Mapped[list["UserAuthorization"]] = _owned()
    memberships: Mapped[list["Membership"]] = _owned(
        order_by="Membership.id", lazy="selectin"
    )
    reviews: Mapped[list["PullRequestReview"]] = _owned()
    pull_request_watches: Mapped[list["PullRequestWatch"]] = _owned()
    issue_watches: Mapped[list["IssueWatch"]] = _owned()
    issue_query_settings: Mapped[list["IssueQuerySetting"]] = _owned()
    build_query_settings: Mapped[list["BuildQuerySetting"]] = _owned()
    pull_request_query_settings: Mapped[list["PullRequestQuerySetting"]] = _owned()
    commit_query_settings: Mapped[list["CommitQuerySetting"]] = _owned()
    code_comment_query_settings: Mapped[list["CodeCommentQuerySetting"]] = _owned()

    # Per-instance caches, never persisted
    _groups = None
    _issue_query_setting = None

    def __init__(self, **kwargs):
        kwargs.setdefault("user_issue_queries", [])
        kwargs.setdefault("user_issue_query_watches", {})
        kwargs.setdefault("issue_query_watches", {})
        kwargs.setdefault("memberships", [])
        super().__init__(**kwargs)

    # ─── Identity ─────────────────────────────────────────

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        return self.name

    @property
    def is_root(self) -> bool:
        return self.id == ROOT_ID

    def as_person(self) -> PersonIdent:
        return PersonIdent(self.name, self.email)

    def match_score(self, term: Optional[str]) -> float:
        """Best fuzzy score of term against the login name or the full name."""
        return max(match_score(self.name, term), match_score(self.full_name, term))

    # ─── Ordering ─────────────────────────────────────────

    def sort_key(self) -> tuple[str, int]:
        return (self.display_name, self.id if self.id is not None else -1)

    def compare_to(self, other: "User") -> int:
        mine, theirs = self.sort_key(), other.sort_key()
        return (mine > theirs) - (mine < theirs)

    def __lt__(self, other):
        if not isinstance(other, User):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __le__(self, other):
        if not isinstance(other, User):
            return NotImplemented
        return self.sort_key() <= other.sort_key()

    def __gt__(self, other):
        if not isinstance(other, User):
            return NotImplemented
        return self.sort_key() > other.sort_key()

    def __ge__(self, other):
        if not isinstance(other, User):
            return NotImplemented
        return self.sort_key() >= other.sort_key()

    # ─── Saved queries ────────────────────────────────────

    @property
    def issue_query_setting(self) -> UserIssueQuerySetting:
        if self._issue_query_setting is None:
            self._issue_query_setting = UserIssueQuerySetting(self)
        return self._issue_query_setting

    # ─── Groups ───────────────────────────────────────────

    @property
    def groups(self) -> list["Group"]:
        """Groups of this user, in membership order.

        Computed once and cached on the instance. Changing memberships in
        place does not refresh it; call discard_group_cache() after doing
        so, or use replace_memberships().
        """
        if self._groups is None:
            self._groups = [membership.group for membership in self.memberships]
        return self._groups

    def discard_group_cache(self) -> None:
        self._groups = None

    def replace_memberships(self, memberships: Iterable["Membership"]) -> None:
        self.memberships = list(memberships)
        self.discard_group_cache()

    def __repr__(self) -> str:
        return f"<User {self.name!r}>"


Index("uq_users_email_lower", func.lower(User.email), unique=True)
