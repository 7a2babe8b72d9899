"""User service — account lifecycle, lookup and login.

Every mutation follows the same unit of work: load, validate, then
change, append an event and commit inside committing(), which rolls
back and raises typed errors when a flush hits a stale version or a
unique constraint.

Root (id 1) is provisioned by ensure_root() before anybody else and can
never be deleted. Ordinary accounts cannot be created until root exists,
so no other account can ever take id 1.
"""

from typing import Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from codehub.auth.password import hash_password, needs_upgrade, verify_password
from codehub.auth.principal import Subject, credentials_of, principals_of
from codehub.db.models import ROOT_ID, Membership, Project, User
from codehub.errors import (
    AuthenticationError,
    ConcurrentModificationError,
    RootAccountError,
    UniquenessViolation,
    UserNotFoundError,
    ValidationError,
)
from codehub.events.store import EventStore
from codehub.events.types import (
    USER_CREATED,
    USER_DELETED,
    USER_PASSWORD_CHANGED,
    USER_RENAMED,
    USER_UPDATED,
)
from codehub.schemas.user import UserCreate, UserUpdate
from codehub.services.unit_of_work import committing

logger = structlog.get_logger()


class UserService:
    """Business logic for user accounts."""

    def __init__(self, db: AsyncSession, events: Optional[EventStore] = None):
        self.db = db
        self.events = events or EventStore(db)

    # ─── Lookup ───────────────────────────────────────────

    async def get_user(self, user_id: int, *, with_groups: bool = False) -> User:
        query = select(User).where(User.id == user_id)
        if with_groups:
            query = query.options(
                selectinload(User.memberships).selectinload(Membership.group)
            )
        result = await self.db.execute(query)
        user = result.scalars().first()
        if not user:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    async def find_by_name(self, name: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.name == name))
        return result.scalars().first()

    async def find_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalars().first()

    async def find_by_login(self, login: str) -> Optional[User]:
        """Find by login name, falling back to email."""
        result = await self.db.execute(
            select(User).where(
                or_(User.name == login, func.lower(User.email) == login.lower())
            )
        )
        users = list(result.scalars().all())
        for user in users:
            if user.name == login:
                return user
        return users[0] if users else None

    async def list_users(self) -> list[User]:
        """All users in display order."""
        result = await self.db.execute(select(User))
        return sorted(result.scalars().all())

    async def search_users(self, term: Optional[str], limit: int = 20) -> list[User]:
        """Users matching term, best match first.

        Equal scores fall back to display order, so two users matching a
        term equally well always come out in the same order.
        """
        scored = [
            (user.match_score(term), user) for user in await self.list_users()
        ]
        scored = [(score, user) for score, user in scored if score > 0]
        scored.sort(key=lambda pair: (-pair[0], pair[1].sort_key()))
        return [user for _, user in scored[:limit]]

    # ─── Create ───────────────────────────────────────────

    async def ensure_root(self, data: Union[UserCreate, dict]) -> User:
        """Create the root account, or return it if it already exists.

        Root takes the first id the database hands out, so this only
        works on an empty users table.
        """
        root = await self.db.get(User, ROOT_ID)
        if root:
            return root

        count = await self.db.scalar(select(func.count()).select_from(User))
        if count:
            raise RootAccountError(
                "Root account must be created before any other account"
            )

        body = self._validate(UserCreate, data)
        user = User(
            name=body.name,
            full_name=body.full_name,
            email=body.email,
            password=hash_password(body.password),
        )
        async with committing(self.db, user.id):
            self.db.add(user)
            await self.db.flush()
            if user.id != ROOT_ID:
                raise RootAccountError(
                    f"Root account would get id {user.id}; the id sequence "
                    "has already been used"
                )
            await self.events.append(
                stream_id=f"user:{user.id}",
                event_type=USER_CREATED,
                data={"name": user.name, "root": True},
            )
        logger.info("user.root_created", user_id=user.id, name=user.name)
        return user

    async def create_user(
        self,
        data: Union[UserCreate, dict],
        *,
        actor_id: Optional[int] = None,
    ) -> User:
        """Register or provision an account.

        Raises ValidationError for malformed input, UniquenessViolation
        for a taken login name or email, RootAccountError if root has not
        been set up yet.
        """
        body = self._validate(UserCreate, data)

        if not await self.db.get(User, ROOT_ID):
            raise RootAccountError("Root account has not been set up yet")

        await self._check_unique(name=body.name, email=body.email)

        user = User(
            name=body.name,
            full_name=body.full_name,
            email=body.email,
            password=hash_password(body.password),
        )
        async with committing(self.db, user.id):
            self.db.add(user)
            await self.db.flush()
            await self.events.append(
                stream_id=f"user:{user.id}",
                event_type=USER_CREATED,
                data={"name": user.name},
                actor_id=actor_id,
            )
        logger.info("user.created", user_id=user.id, name=user.name)
        return user

    # ─── Update ───────────────────────────────────────────

    async def update_user(
        self,
        user_id: int,
        data: Union[UserUpdate, dict],
        *,
        expected_version: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> User:
        """Apply a partial edit.

        expected_version is the version the caller read before editing. A
        mismatch fails immediately; a change that lands between our load
        and our commit fails at commit. Either way the caller gets
        ConcurrentModificationError and nothing is written.
        """
        body = self._validate(UserUpdate, data)
        changes = body.model_dump(exclude_unset=True)
        for field in ("name", "email", "password"):
            if field in changes and not changes[field]:
                raise ValidationError([{"field": field, "message": "must not be empty"}])

        user = await self.get_user(user_id)
        self._check_version(user, expected_version)

        new_name = changes.get("name")
        new_email = changes.get("email")
        if new_name == user.name:
            new_name = None
        if new_email == user.email:
            new_email = None
        # A change of letter case only can not collide with anyone else
        taken_email = new_email
        if new_email and new_email.lower() == user.email.lower():
            taken_email = None
        await self._check_unique(name=new_name, email=taken_email, exclude_id=user.id)

        async with committing(self.db, user.id):
            if new_name:
                old_name = user.name
                user.name = new_name
                await self._on_rename(old_name, new_name)
                await self.events.append(
                    stream_id=f"user:{user.id}",
                    event_type=USER_RENAMED,
                    data={"from": old_name, "to": new_name},
                    actor_id=actor_id,
                )
            if new_email:
                user.email = new_email
            if "full_name" in changes:
                user.full_name = changes["full_name"]
            if "password" in changes:
                user.password = hash_password(changes["password"])
                await self.events.append(
                    stream_id=f"user:{user.id}",
                    event_type=USER_PASSWORD_CHANGED,
                    data={},
                    actor_id=actor_id,
                )
            await self.events.append(
                stream_id=f"user:{user.id}",
                event_type=USER_UPDATED,
                data={"fields": sorted(k for k in changes if k != "password")},
                actor_id=actor_id,
            )
        logger.info(
            "user.updated", user_id=user.id, version=user.version, fields=sorted(changes)
        )
        return user

    async def rename_user(
        self,
        user_id: int,
        new_name: str,
        *,
        expected_version: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> User:
        return await self.update_user(
            user_id,
            {"name": new_name},
            expected_version=expected_version,
            actor_id=actor_id,
        )

    async def save(self, user: User) -> User:
        """Commit in-memory changes to a loaded user, e.g. watch map edits."""
        async with committing(self.db, user.id):
            pass
        return user

    # ─── Delete ───────────────────────────────────────────

    async def delete_user(
        self,
        user_id: int,
        *,
        expected_version: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> None:
        """Delete an account and everything it owns.

        Authorizations, memberships, review requests, issue and pull
        request watches and all saved query settings go with it, in the
        same transaction as the user row.
        """
        if user_id == ROOT_ID:
            raise RootAccountError("Root account can not be deleted")

        user = await self.get_user(user_id)
        self._check_version(user, expected_version)

        name = user.name
        async with committing(self.db, user.id):
            await self._on_delete(name)
            await self.events.append(
                stream_id=f"user:{user_id}",
                event_type=USER_DELETED,
                data={"name": name},
                actor_id=actor_id,
            )
            await self.db.delete(user)
        logger.info("user.deleted", user_id=user_id, name=name)

    # ─── Login ────────────────────────────────────────────

    async def authenticate(self, login: str, password: str) -> Subject:
        """Check a login name (or email) and password.

        Returns an authenticated subject. Hashes made with an outdated
        cost are replaced on success.
        """
        user = await self.find_by_login(login)
        if not user or not verify_password(password, credentials_of(user)):
            logger.info("auth.failed", login=login)
            raise AuthenticationError("Invalid login name or password")

        if needs_upgrade(credentials_of(user)):
            async with committing(self.db, user.id):
                user.password = hash_password(password)
            logger.info("auth.password_rehashed", user_id=user.id)

        return Subject(principals=principals_of(user), authenticated=True)

    # ─── Helpers ──────────────────────────────────────────
    def _validate(self, schema, data):
        if isinstance(data, schema):
            return data
        try:
            return schema.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e)

    def _check_version(self, user: User, expected_version: Optional[int]) -> None:
        if expected_version is not None and user.version != expected_version:
            logger.warning(
                "user.version_conflict",
                user_id=user.id,
                expected=expected_version,
                actual=user.version,
            )
            raise ConcurrentModificationError(
                "User", user.id, expected_version, user.version
            )

    async def _check_unique(
        self,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        exclude_id: Optional[int] = None,
    ) -> None:
        if name:
            other = await self.find_by_name(name)
            if other and other.id != exclude_id:
                raise UniquenessViolation("name", name)
        if email:
            other = await self.find_by_email(email)
            if other and other.id != exclude_id:
                raise UniquenessViolation("email", email)

    async def _on_rename(self, old_name: str, new_name: str) -> None:
        for project in await self._projects():
            if project.on_rename_user(old_name, new_name):
                logger.info(
                    "project.protection_rules_updated",
                    project=project.name,
                    renamed_from=old_name,
                    renamed_to=new_name,
                )

    async def _on_delete(self, name: str) -> None:
        for project in await self._projects():
            if project.on_delete_user(name):
                logger.info(
                    "project.protection_rules_updated",
                    project=project.name,
                    removed=name,
                )

    async def _projects(self) -> list[Project]:
        result = await self.db.execute(select(Project).order_by(Project.id))
        return list(result.scalars().all())

