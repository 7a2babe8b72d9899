"""Query setting service — saving queries and toggling query watches.

A feature asks for its setting (account-wide issue queries live on the
user row, everything else is per project and per feature), changes it,
and commits through here. Watch changes take True (watch), False
(explicitly unwatched) or None (forget the preference, fall back to the
default policy).

Settings stored on the user row are covered by the user's version
check, so a concurrent edit of the same account fails with
ConcurrentModificationError. Per-project rows are last writer wins.
"""

from typing import Iterable, Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codehub.db.models import (
    BuildQuerySetting,
    CodeCommentQuerySetting,
    CommitQuerySetting,
    IssueQuerySetting,
    Project,
    ProjectQuerySettingMixin,
    PullRequestQuerySetting,
    User,
)
from codehub.errors import CodeHubError, ProjectNotFoundError
from codehub.events.store import EventStore
from codehub.events.types import QUERY_SETTING_SAVED, QUERY_WATCH_CHANGED
from codehub.querysetting import (
    NamedQuery,
    QuerySetting,
    UserIssueQuerySetting,
    stale_watch_names,
)
from codehub.services.unit_of_work import committing

logger = structlog.get_logger()

QUERY_SETTING_MODELS: dict[str, type[ProjectQuerySettingMixin]] = {
    "issue": IssueQuerySetting,
    "build": BuildQuerySetting,
    "pull_request": PullRequestQuerySetting,
    "commit": CommitQuerySetting,
    "code_comment": CodeCommentQuerySetting,
}


class UnknownQueryKindError(CodeHubError):
    """Raised for a feature name with no query setting table."""


class QuerySettingService:
    """Saved queries and query watches for all search features."""

    def __init__(self, db: AsyncSession, events: Optional[EventStore] = None):
        self.db = db
        self.events = events or EventStore(db)

    # ─── Lookup ───────────────────────────────────────────

    def issue_setting_of(self, user: User) -> UserIssueQuerySetting:
        return user.issue_query_setting

    async def get_setting(
        self, user: User, kind: str, project: Union[Project, int]
    ) -> ProjectQuerySettingMixin:
        """The user's setting for one feature in one project, created on first use."""
        model = QUERY_SETTING_MODELS.get(kind)
        if model is None:
            raise UnknownQueryKindError(
                f"Unknown query kind {kind!r}, expected one of "
                f"{', '.join(QUERY_SETTING_MODELS)}"
            )
        project_id = project if isinstance(project, int) else project.id

        result = await self.db.execute(
            select(model).where(model.user_id == user.id, model.project_id == project_id)
        )
        setting = result.scalars().first()
        if setting is not None:
            return setting

        if await self.db.get(Project, project_id) is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        setting = model(user=user, project_id=project_id)
        async with committing(self.db):
            self.db.add(setting)
        return setting

    # ─── Changes ──────────────────────────────────────────

    async def save_user_queries(
        self, setting: QuerySetting, queries: Iterable[NamedQuery]
    ) -> None:
        """Replace the saved query list, keeping the given order exactly.

        Watch entries for queries that disappear are kept; see
        prune_stale_watches().
        """
        queries = list(queries)
        async with self._committing(setting):
            setting.replace_user_queries(queries)
            await self.events.append(
                stream_id=self._stream(setting),
                event_type=QUERY_SETTING_SAVED,
                data={
                    "setting": type(setting).__name__,
                    "queries": [query.name for query in queries],
                },
            )
        logger.info(
            "query_setting.saved",
            setting=type(setting).__name__,
            count=len(queries),
        )

    async def set_user_watch(
        self, setting: QuerySetting, name: str, watching: Optional[bool]
    ) -> None:
        await self._set_watch(setting, setting.user_query_watches, name, watching, "user")

    async def set_shared_watch(
        self, setting: QuerySetting, name: str, watching: Optional[bool]
    ) -> None:
        await self._set_watch(
            setting, setting.shared_query_watches, name, watching, "shared"
        )

    async def prune_stale_watches(self, setting: QuerySetting) -> list[str]:
        """Drop user query watches whose query no longer exists."""
        stale = stale_watch_names(setting)
        if not stale:
            return []
        async with self._committing(setting):
            for name in stale:
                del setting.user_query_watches[name]
        logger.info("query_watch.pruned", names=stale)
        return stale

    # ─── Helpers ──────────────────────────────────────────

    async def _set_watch(
        self,
        setting: QuerySetting,
        watches: dict[str, bool],
        name: str,
        watching: Optional[bool],
        scope: str,
    ) -> None:
        async with self._committing(setting):
            if watching is None:
                watches.pop(name, None)
            else:
                watches[name] = watching
            await self.events.append(
                stream_id=self._stream(setting),
                event_type=QUERY_WATCH_CHANGED,
                data={"scope": scope, "query": name, "watching": watching},
            )

    def _committing(self, setting: QuerySetting):
        user_id = setting.user.id if isinstance(setting, UserIssueQuerySetting) else None
        return committing(self.db, user_id)

    def _stream(self, setting: QuerySetting) -> str:
        if isinstance(setting, UserIssueQuerySetting):
            return f"user:{setting.user.id}"
        return f"user:{setting.user_id}"
