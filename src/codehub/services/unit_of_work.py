"""Commit-or-rollback wrapper shared by the services.

Every flush inside the block can fail on the users.version check or on
a constraint. Either way the session is rolled back so it stays usable.
Version conflicts and unique constraint hits are re-raised as the typed
errors callers handle: ConcurrentModificationError and
UniquenessViolation. Any other IntegrityError (a dangling foreign key,
a missing required value) is a caller bug and propagates unchanged.
No retries happen here.
"""

import re
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from codehub.errors import ConcurrentModificationError, UniquenessViolation

logger = structlog.get_logger()

# PostgreSQL: duplicate key value violates unique constraint "users_name_key"
# SQLite: UNIQUE constraint failed: users.name
#         UNIQUE constraint failed: index 'uq_users_email_lower'
_CONSTRAINT = re.compile(r'unique constraint "([^"]+)"|unique constraint failed: (.+)')

UNIQUE_VIOLATION = "23505"


@asynccontextmanager
async def committing(db: AsyncSession, user_id: Optional[int] = None):
    """Commit what the block changed, or roll it all back.

    user_id names the versioned user row the block writes, for errors
    and logs. Read it before entering: rollback expires instances.
    """
    try:
        yield
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        logger.warning("user.version_conflict", user_id=user_id)
        raise ConcurrentModificationError("User", user_id) from e
    except IntegrityError as e:
        await db.rollback()
        if not is_unique_violation(e):
            logger.error("db.integrity_error", user_id=user_id, error=str(e.orig))
            raise
        raise uniqueness_violation(e) from e
    except Exception:
        await db.rollback()
        raise


def is_unique_violation(error: IntegrityError) -> bool:
    if getattr(error.orig, "sqlstate", None) == UNIQUE_VIOLATION:
        return True
    return _CONSTRAINT.search(str(error.orig).lower()) is not None


def uniqueness_violation(error: IntegrityError) -> UniquenessViolation:
    """Which unique column or constraint a racing write hit."""
    message = str(error.orig).lower()
    if "email" in message:
        return UniquenessViolation("email", None)
    if "users.name" in message or "users_name" in message:
        return UniquenessViolation("name", None)
    match = _CONSTRAINT.search(message)
    if match:
        return UniquenessViolation((match.group(1) or match.group(2)).strip(), None)
    return UniquenessViolation("unknown", None)
