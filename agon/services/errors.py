"""
Error types raised by the game scheduling services.

Caller-facing errors derive from ValueError so API layers can map them to
4xx responses; internal faults derive from RuntimeError.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession


class NotFoundError(ValueError):
    """Raised when a referenced entity does not exist."""


class TemplateNotFoundError(NotFoundError):
    """Raised when a game template id does not match any record."""


class SeriesNotFoundError(NotFoundError):
    """Raised when a recurring series id does not match any record."""


class GameNotFoundError(NotFoundError):
    """Raised when a game instance id does not match any record."""


class NoOccurrencesError(NotFoundError):
    """Raised when a new series produced no game inside its first window."""


class InvalidExpressionError(ValueError):
    """Raised when a cron expression cannot be parsed."""


class InvalidTemplateError(ValueError):
    """Raised when a game template fails structural validation."""


class InvalidStatusTransitionError(ValueError):
    """Raised when a game status change is not an allowed transition."""


class ConstraintViolationError(ValueError):
    """Raised when a write conflicts with a uniqueness or integrity constraint."""


class TeamMappingMissingError(RuntimeError):
    """Raised when an invitation template points at a team outside its template."""


class StoreUnavailableError(RuntimeError):
    """Raised on transient storage failures. Safe to retry the whole call."""


@asynccontextmanager
async def storage_errors(session: AsyncSession, action: str) -> AsyncIterator[None]:
    """
    Roll back and translate storage errors raised inside the block.

    IntegrityError becomes ConstraintViolationError; OperationalError and
    InterfaceError become StoreUnavailableError. The session is rolled back
    before either is raised.

    Usage:
        async with storage_errors(session, f"Failed to update game {game_id}"):
            ...
            await session.commit()
    """
    try:
        yield
    except IntegrityError as e:
        await session.rollback()
        raise ConstraintViolationError(f"{action}: {e.orig}") from e
    except (OperationalError, InterfaceError) as e:
        await session.rollback()
        raise StoreUnavailableError(f"Storage unavailable: {e.orig}") from e
