"""Saved queries and query watches.

Tests cover:
1. Account-wide issue queries stored on the user row
2. Per-project settings for every search feature
3. Independence of the user and shared watch maps
4. Stale watch detection and pruning
"""

import pytest

from codehub.db.models import (
    BuildQuerySetting,
    CodeCommentQuerySetting,
    Project,
    User,
)
from codehub.errors import CodeHubError, ProjectNotFoundError
from codehub.querysetting import (
    NamedBuildQuery,
    NamedIssueQuery,
    QuerySetting,
    WatchStatus,
    dump_queries,
    load_queries,
    stale_watch_names,
    watch_status,
)
from codehub.services.query_setting_service import (
    QuerySettingService,
    UnknownQueryKindError,
)
from codehub.services.user_service import UserService


def issue_queries(*names):
    return [NamedIssueQuery(name=name, query=f'"State" is "{name}"') for name in names]


# ═══════════════════════════════════════════════════════════
# Pure helpers
# ═══════════════════════════════════════════════════════════


def test_watch_status():
    watches = {"mine": True, "muted": False}
    assert watch_status(watches, "mine") == WatchStatus.WATCH
    assert watch_status(watches, "muted") == WatchStatus.IGNORE
    assert watch_status(watches, "other") == WatchStatus.DEFAULT


def test_dump_and_load_keep_order_and_duplicates():
    rows = dump_queries(issue_queries("b", "a", "b"), NamedIssueQuery)
    assert [row["name"] for row in rows] == ["b", "a", "b"]
    assert [q.name for q in load_queries(rows, NamedIssueQuery)] == ["b", "a", "b"]


def test_dump_accepts_plain_dicts():
    rows = dump_queries([{"name": "green", "query": "successful"}], NamedBuildQuery)
    assert rows == [{"name": "green", "query": "successful"}]


def test_settings_implement_query_setting():
    user = User(name="alice", email="alice@example.com", password="x")
    assert isinstance(user.issue_query_setting, QuerySetting)
    assert isinstance(BuildQuerySetting(user=user, project_id=1), QuerySetting)


def test_inline_issue_setting_reads_user_columns():
    user = User(name="alice", email="alice@example.com", password="x")
    setting = user.issue_query_setting
    setting.replace_user_queries(issue_queries("open", "mine"))
    setting.user_query_watches["open"] = True
    setting.shared_query_watches["All open"] = False

    assert [row["name"] for row in user.user_issue_queries] == ["open", "mine"]
    assert user.user_issue_query_watches == {"open": True}
    assert user.issue_query_watches == {"All open": False}


def test_stale_watch_names():
    user = User(name="alice", email="alice@example.com", password="x")
    setting = user.issue_query_setting
    setting.replace_user_queries(issue_queries("open"))
    setting.user_query_watches.update({"open": True, "renamed away": True})
    assert stale_watch_names(setting) == ["renamed away"]


# ═══════════════════════════════════════════════════════════
# Account-wide issue queries
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_saved_issue_queries_survive_reload(db_session, session_factory, alice):
    service = QuerySettingService(db_session)
    await service.save_user_queries(
        service.issue_setting_of(alice), issue_queries("zeta", "alpha", "zeta")
    )
    assert alice.version == 2

    async with session_factory() as fresh:
        stored = await UserService(fresh).get_user(alice.id)
        names = [q.name for q in stored.issue_query_setting.list_user_queries()]
        assert names == ["zeta", "alpha", "zeta"]


@pytest.mark.asyncio
async def test_replacing_queries_keeps_watches(db_session, alice):
    service = QuerySettingService(db_session)
    setting = service.issue_setting_of(alice)
    await service.save_user_queries(setting, issue_queries("old"))
    await service.set_user_watch(setting, "old", True)

    await service.save_user_queries(setting, issue_queries("new"))
    assert setting.user_query_watches == {"old": True}
    assert stale_watch_names(setting) == ["old"]


@pytest.mark.asyncio
async def test_user_and_shared_watches_are_independent(db_session, session_factory, alice):
    service = QuerySettingService(db_session)
    setting = service.issue_setting_of(alice)
    await service.set_user_watch(setting, "Open bugs", True)
    await service.set_shared_watch(setting, "Open bugs", False)

    async with session_factory() as fresh:
        stored = (await UserService(fresh).get_user(alice.id)).issue_query_setting
        assert watch_status(stored.user_query_watches, "Open bugs") == WatchStatus.WATCH
        assert (
            watch_status(stored.shared_query_watches, "Open bugs") == WatchStatus.IGNORE
        )


@pytest.mark.asyncio
async def test_clearing_a_watch_falls_back_to_default(db_session, alice):
    service = QuerySettingService(db_session)
    setting = service.issue_setting_of(alice)
    await service.set_shared_watch(setting, "Everything", True)
    await service.set_shared_watch(setting, "Everything", None)
    assert watch_status(setting.shared_query_watches, "Everything") == WatchStatus.DEFAULT


@pytest.mark.asyncio
async def test_prune_stale_watches(db_session, alice):
    service = QuerySettingService(db_session)
    setting = service.issue_setting_of(alice)
    await service.save_user_queries(setting, issue_queries("keep"))
    await service.set_user_watch(setting, "keep", True)
    await service.set_user_watch(setting, "gone", False)

    assert await service.prune_stale_watches(setting) == ["gone"]
    assert setting.user_query_watches == {"keep": True}
    assert await service.prune_stale_watches(setting) == []


@pytest.mark.asyncio
async def test_watch_changes_are_recorded(db_session, alice):
    service = QuerySettingService(db_session)
    await service.set_user_watch(service.issue_setting_of(alice), "open", True)
    events = await service.events.read_stream(f"user:{alice.id}")
    assert events[-1].type == "query_watch.changed"
    assert events[-1].data == {"scope": "user", "query": "open", "watching": True}


# ═══════════════════════════════════════════════════════════
# Per-project settings
# ═══════════════════════════════════════════════════════════


@pytest.fixture()
def project():
    return Project(name="web")


@pytest.mark.asyncio
async def test_project_setting_created_once(db_session, alice, project):
    db_session.add(project)
    await db_session.commit()
    service = QuerySettingService(db_session)

    setting = await service.get_setting(alice, "build", project)
    assert isinstance(setting, BuildQuerySetting)
    assert setting.project_id == project.id
    assert await service.get_setting(alice, "build", project.id) is setting
    assert await service.get_setting(alice, "code_comment", project) is not setting


@pytest.mark.asyncio
async def test_project_setting_round_trip(db_session, session_factory, alice, project):
    db_session.add(project)
    await db_session.commit()
    service = QuerySettingService(db_session)

    setting = await service.get_setting(alice, "build", project)
    await service.save_user_queries(
        setting,
        [
            NamedBuildQuery(name="failed", query='"Status" is "Failed"'),
            NamedBuildQuery(name="mine", query="submitted by me"),
        ],
    )
    await service.set_user_watch(setting, "failed", True)
    await service.set_shared_watch(setting, "Release builds", False)

    async with session_factory() as fresh:
        stored = await QuerySettingService(fresh).get_setting(alice, "build", project.id)
        assert [q.name for q in stored.list_user_queries()] == ["failed", "mine"]
        assert all(isinstance(q, NamedBuildQuery) for q in stored.list_user_queries())
        assert stored.user_query_watches == {"failed": True}
        assert stored.shared_query_watches == {"Release builds": False}


@pytest.mark.asyncio
async def test_project_settings_do_not_touch_user_version(db_session, alice, project):
    db_session.add(project)
    await db_session.commit()
    service = QuerySettingService(db_session)

    setting = await service.get_setting(alice, "code_comment", project)
    assert isinstance(setting, CodeCommentQuerySetting)
    await service.set_user_watch(setting, "unresolved", True)
    assert alice.version == 1


@pytest.mark.asyncio
async def test_unknown_kind(db_session, alice):
    with pytest.raises(UnknownQueryKindError):
        await QuerySettingService(db_session).get_setting(alice, "wiki", 1)


@pytest.mark.asyncio
async def test_setting_for_missing_project(db_session, alice):
    """A missing project is reported and leaves the session usable."""
    alice_id = alice.id
    with pytest.raises(ProjectNotFoundError):
        await QuerySettingService(db_session).get_setting(alice, "build", 999)
    assert (await UserService(db_session).get_user(alice_id)).name == "alice"


def test_query_setting_errors_are_codehub_errors():
    assert issubclass(UnknownQueryKindError, CodeHubError)
    assert issubclass(ProjectNotFoundError, CodeHubError)
