"""Membership service — groups and who is in them.

User.groups is cached on the user instance the first time it is read
and is not refreshed when memberships change underneath it. This
service is the code that changes memberships, so it discards the cache
of the user it touched, right after the change.
"""

from typing import Optional

import structlog
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from codehub.db.models import Group, Membership, User
from codehub.errors import CodeHubError
from codehub.events.store import EventStore
from codehub.events.types import GROUP_CREATED, MEMBERSHIP_ADDED, MEMBERSHIP_REMOVED
from codehub.services.unit_of_work import committing

logger = structlog.get_logger()


class GroupNotFoundError(CodeHubError):
    """Raised when a group is not found."""


class MembershipService:
    """Groups and memberships."""

    def __init__(self, db: AsyncSession, events: Optional[EventStore] = None):
        self.db = db
        self.events = events or EventStore(db)

    async def create_group(self, name: str, description: Optional[str] = None) -> Group:
        group = Group(name=name, description=description)
        async with committing(self.db):
            self.db.add(group)
            await self.db.flush()
            await self.events.append(
                stream_id=f"group:{group.id}",
                event_type=GROUP_CREATED,
                data={"name": name},
            )
        return group

    async def get_group(self, name: str) -> Group:
        result = await self.db.execute(select(Group).where(Group.name == name))
        group = result.scalars().first()
        if not group:
            raise GroupNotFoundError(f"Group {name!r} not found")
        return group

    async def add_membership(self, user: User, group: Group) -> Membership:
        """Put user in group. Adding an existing member is a no-op."""
        await self._load_memberships(user)
        for membership in user.memberships:
            if membership.group_id == group.id:
                return membership

        membership = Membership(group=group)
        user_id = user.id
        async with committing(self.db, user_id):
            user.memberships.append(membership)
            await self.db.flush()
            await self.events.append(
                stream_id=f"user:{user_id}",
                event_type=MEMBERSHIP_ADDED,
                data={"group": group.name},
            )
        user.discard_group_cache()
        logger.info("membership.added", user_id=user_id, group=group.name)
        return membership

    async def remove_membership(self, user: User, group: Group) -> bool:
        """Take user out of group. Returns False if they were not in it."""
        await self._load_memberships(user)
        membership = next(
            (m for m in user.memberships if m.group_id == group.id), None
        )
        if membership is None:
            return False

        user_id = user.id
        async with committing(self.db, user_id):
            user.memberships.remove(membership)
            await self.events.append(
                stream_id=f"user:{user_id}",
                event_type=MEMBERSHIP_REMOVED,
                data={"group": group.name},
            )
        user.discard_group_cache()
        logger.info("membership.removed", user_id=user_id, group=group.name)
        return True

    async def _load_memberships(self, user: User) -> None:
        if "memberships" in inspect(user).unloaded:
            await self.db.refresh(user, attribute_names=["memberships"])
