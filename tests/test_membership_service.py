"""Group membership: adding, removing, and the groups cache."""

import pytest
from sqlalchemy import func, select

from codehub.db.models import Membership
from codehub.errors import CodeHubError
from codehub.services.membership_service import GroupNotFoundError, MembershipService
from codehub.services.user_service import UserService


@pytest.mark.asyncio
async def test_create_and_get_group(db_session):
    service = MembershipService(db_session)
    devs = await service.create_group("devs", "Developers")
    assert (await service.get_group("devs")) is devs
    with pytest.raises(GroupNotFoundError):
        await service.get_group("nobody")


@pytest.mark.asyncio
async def test_add_membership_refreshes_groups(db_session, alice):
    service = MembershipService(db_session)
    devs = await service.create_group("devs")
    ops = await service.create_group("ops")

    await service.add_membership(alice, devs)
    assert alice.groups == [devs]

    await service.add_membership(alice, ops)
    assert alice.groups == [devs, ops]


@pytest.mark.asyncio
async def test_add_existing_member_is_noop(db_session, alice):
    service = MembershipService(db_session)
    devs = await service.create_group("devs")
    first = await service.add_membership(alice, devs)
    assert await service.add_membership(alice, devs) is first
    count = await db_session.scalar(select(func.count()).select_from(Membership))
    assert count == 1


@pytest.mark.asyncio
async def test_remove_membership(db_session, alice):
    service = MembershipService(db_session)
    devs = await service.create_group("devs")
    ops = await service.create_group("ops")
    await service.add_membership(alice, devs)
    await service.add_membership(alice, ops)

    assert await service.remove_membership(alice, devs)
    assert alice.groups == [ops]
    assert not await service.remove_membership(alice, devs)
    count = await db_session.scalar(select(func.count()).select_from(Membership))
    assert count == 1


@pytest.mark.asyncio
async def test_membership_does_not_bump_user_version(db_session, alice):
    service = MembershipService(db_session)
    await service.add_membership(alice, await service.create_group("devs"))
    assert alice.version == 1


@pytest.mark.asyncio
async def test_groups_loaded_with_user(db_session, session_factory, alice):
    service = MembershipService(db_session)
    await service.add_membership(alice, await service.create_group("devs"))
    await service.add_membership(alice, await service.create_group("ops"))

    async with session_factory() as fresh:
        user = await UserService(fresh).get_user(alice.id, with_groups=True)
        assert [group.name for group in user.groups] == ["devs", "ops"]


@pytest.mark.asyncio
async def test_membership_events(db_session, alice):
    service = MembershipService(db_session)
    devs = await service.create_group("devs")
    await service.add_membership(alice, devs)
    await service.remove_membership(alice, devs)
    events = await service.events.read_stream(f"user:{alice.id}")
    assert [event.type for event in events][-2:] == [
        "membership.added",
        "membership.removed",
    ]


@pytest.mark.asyncio
async def test_groups_readable_on_plain_lookup(db_session, session_factory, alice):
    """Users loaded without asking for groups still resolve them."""
    service = MembershipService(db_session)
    await service.add_membership(alice, await service.create_group("devs"))

    async with session_factory() as fresh:
        users = UserService(fresh)
        user = await users.get_user(alice.id)
        assert [group.name for group in user.groups] == ["devs"]
        listed = {u.name: u for u in await users.list_users()}
        assert listed["admin"].groups == []


@pytest.mark.asyncio
async def test_new_user_has_no_groups(alice):
    assert alice.groups == []


def test_group_not_found_is_a_codehub_error():
    assert issubclass(GroupNotFoundError, CodeHubError)
