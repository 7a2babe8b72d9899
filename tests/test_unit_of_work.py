"""Commit-or-rollback wrapper: which database failures become which errors.

Tests cover:
1. Unique constraint hits become UniquenessViolation naming the column
2. Email uniqueness holds in the database regardless of case
3. Other integrity failures propagate unchanged
4. The session stays usable after any of them
"""

import pytest
from sqlalchemy.exc import IntegrityError

from codehub.db.models import Membership, User
from codehub.errors import UniquenessViolation
from codehub.services.membership_service import MembershipService
from codehub.services.unit_of_work import committing


@pytest.mark.asyncio
async def test_racing_email_differing_only_in_case(db_session, users, alice):
    """Bypasses the service check, as a concurrent create would."""
    alice_id = alice.id
    with pytest.raises(UniquenessViolation) as info:
        async with committing(db_session):
            db_session.add(User(name="alice2", email="ALICE@example.com", password="x"))
    assert info.value.field == "email"
    assert (await users.get_user(alice_id)).email == "alice@example.com"


@pytest.mark.asyncio
async def test_racing_login_name(db_session, users, alice):
    alice_id = alice.id
    with pytest.raises(UniquenessViolation) as info:
        async with committing(db_session):
            db_session.add(User(name="alice", email="other@example.com", password="x"))
    assert info.value.field == "name"
    assert (await users.get_user(alice_id)).name == "alice"


@pytest.mark.asyncio
async def test_duplicate_membership_names_its_constraint(db_session, users, alice):
    service = MembershipService(db_session)
    devs = await service.create_group("devs")
    await service.add_membership(alice, devs)
    alice_id, devs_id = alice.id, devs.id

    with pytest.raises(UniquenessViolation) as info:
        async with committing(db_session):
            db_session.add(Membership(user_id=alice_id, group_id=devs_id))
    assert "memberships" in info.value.field
    assert info.value.field not in ("name", "email")


@pytest.mark.asyncio
async def test_dangling_reference_is_not_a_uniqueness_violation(db_session, users, alice):
    alice_id = alice.id
    with pytest.raises(IntegrityError):
        async with committing(db_session):
            db_session.add(Membership(user_id=alice_id, group_id=999))

    # rolled back, so the session takes new work
    user = await users.update_user(alice_id, {"full_name": "Alice"})
    assert user.version == 2
