"""
Instance builder: turns a game template into a concrete game.

One call builds one game inside one transaction: the game row, a copy of
every template team, and one invitation per reachable user. Group targets
are expanded into per-member invitations using the group's membership at
build time. A user reachable through several targets ends up with a single
invitation whose team and origin group come from the last target processed.

Nothing is left behind on failure: the session is rolled back before the
error propagates.
"""

from datetime import date, datetime
from typing import Dict, Optional
import logging

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession

from agon.database.models import (
    GameInstance,
    GameTeam,
    GameInvitation,
    GroupGameInvitation,
    GameStatus,
    InvitationStatus,
    InviteTargetKind,
)
from agon.services import group_service, template_service
from agon.services.errors import (
    TemplateNotFoundError,
    TeamMappingMissingError,
    ConstraintViolationError,
    StoreUnavailableError,
)
from agon.utils.datetime_utils import utcnow, ensure_utc
from agon.utils.ids import generate_id

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(session: AsyncSession, table):
    """
    Build an INSERT that supports ON CONFLICT for the session's database.

    Args:
        session: Database session
        table: ORM class or Table

    Returns:
        Dialect-specific Insert construct
    """
    dialect_name = session.get_bind().dialect.name
    insert_fn = _DIALECT_INSERTS.get(dialect_name)
    if insert_fn is None:
        raise RuntimeError(f"Upserts are not supported on {dialect_name!r}")
    return insert_fn(table)


async def upsert_invitation(
    session: AsyncSession,
    game_id: str,
    user_id: str,
    team_id: str,
    group_id: Optional[str],
    invited_at: datetime,
) -> None:
    """
    Insert a pending invitation, or move an existing one to a new team.

    On conflict the team and origin group are overwritten; status and
    response time are left alone.
    """
    stmt = dialect_insert(session, GameInvitation).values(
        game_id=game_id,
        user_id=user_id,
        team_id=team_id,
        group_id=group_id,
        status=InvitationStatus.PENDING.value,
        invited_at=invited_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["game_id", "user_id"],
        set_=dict(team_id=stmt.excluded.team_id, group_id=stmt.excluded.group_id),
    )
    await session.execute(stmt)


async def mark_group_invited(
    session: AsyncSession, game_id: str, group_id: str, invited_at: datetime
) -> None:
    """Record that a group was invited to a game (no-op if already recorded)."""
    stmt = dialect_insert(session, GroupGameInvitation).values(
        game_id=game_id, group_id=group_id, invited_at=invited_at
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=["game_id", "group_id"])
    await session.execute(stmt)


async def build_instance(
    session: AsyncSession,
    template_id: str,
    scheduled_time: datetime,
    series_id: Optional[str] = None,
    occurrence_date: Optional[date] = None,
) -> Optional[GameInstance]:
    """
    Build and commit one game instance from a template.

    Args:
        session: Database session. Must not hold uncommitted work the caller
            wants to keep: the session is committed on success and rolled
            back on failure.
        template_id: Template to instantiate
        scheduled_time: When the game starts (naive values are treated as UTC)
        series_id: Recurring series the game belongs to, if any
        occurrence_date: Series occurrence date; the idempotency key together
            with series_id

    Returns:
        The committed GameInstance, or None if another caller already created
        the game for this (series_id, occurrence_date)

    Raises:
        TemplateNotFoundError: If the template does not exist
        TeamMappingMissingError: If an invitation template references a team
            that does not belong to the template
        ConstraintViolationError: On any other integrity conflict
        StoreUnavailableError: On transient storage failures
    """
    try:
        game = await _build(session, template_id, scheduled_time, series_id, occurrence_date)
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if series_id is not None and _is_occurrence_conflict(e):
            logger.warning(
                f"Game for series {series_id} on {occurrence_date} was created concurrently, skipping"
            )
            return None
        raise ConstraintViolationError(f"Failed to build game from template {template_id}: {e.orig}") from e
    except (OperationalError, InterfaceError) as e:
        await session.rollback()
        logger.error(f"Storage unavailable while building game from template {template_id}: {e}")
        raise StoreUnavailableError(f"Storage unavailable: {e.orig}") from e
    except TeamMappingMissingError:
        await session.rollback()
        logger.error(f"Template {template_id} is inconsistent, game not built", exc_info=True)
        raise
    except Exception:
        await session.rollback()
        raise

    return game


def _is_occurrence_conflict(error: IntegrityError) -> bool:
    """Whether an IntegrityError came from the (series, occurrence date) uniqueness rule."""
    message = str(error.orig).lower()
    return (
        "uq_games_series_occurrence" in message
        or "games.recurring_game_id, games.occurrence_date" in message
    )


async def _build(
    session: AsyncSession,
    template_id: str,
    scheduled_time: datetime,
    series_id: Optional[str],
    occurrence_date: Optional[date],
) -> GameInstance:
    template = await template_service.get_template(session, template_id)
    if template is None:
        raise TemplateNotFoundError(f"Game template {template_id} not found")

    now = utcnow()

    # Step 1: the game itself. Flushed on its own so a duplicate occurrence
    # fails here before any team or invitation is written.
    game = GameInstance(
        id=generate_id(),
        template_id=template_id,
        recurring_game_id=series_id,
        scheduled_time=ensure_utc(scheduled_time),
        occurrence_date=occurrence_date,
        status=GameStatus.SCHEDULED.value,
        created_at=now,
    )
    session.add(game)
    await session.flush()

    # Step 2: copy teams, remembering template team id -> game team id
    team_id_mapping: Dict[str, str] = {}
    for template_team in await template_service.get_template_teams(session, template_id):
        game_team = GameTeam(
            id=generate_id(),
            game_id=game.id,
            template_team_id=template_team.id,
            name=template_team.name,
            color=template_team.color,
            position=template_team.position,
            created_at=now,
        )
        session.add(game_team)
        team_id_mapping[template_team.id] = game_team.id
    await session.flush()

    # Steps 3-4: expand invitation targets in stable order
    invited_users = set()
    expanded_groups = set()
    for invitation in await template_service.get_template_invitations(session, template_id):
        game_team_id = team_id_mapping.get(invitation.team_id)
        if game_team_id is None:
            raise TeamMappingMissingError(
                f"Invitation template {invitation.id} references team {invitation.team_id} "
                f"which is not part of template {template_id}"
            )

        target = invitation.target
        if target.kind == InviteTargetKind.USER:
            await upsert_invitation(session, game.id, target.ref_id, game_team_id, None, now)
            invited_users.add(target.ref_id)
            continue

        if target.ref_id not in expanded_groups:
            await mark_group_invited(session, game.id, target.ref_id, now)
            expanded_groups.add(target.ref_id)
        members = await group_service.members_of(session, target.ref_id)
        for user_id in sorted(members):
            await upsert_invitation(session, game.id, user_id, game_team_id, target.ref_id, now)
            invited_users.add(user_id)

    logger.info(
        f"Built game {game.id} from template {template_id} at {game.scheduled_time.isoformat()}: "
        f"{len(team_id_mapping)} team(s), {len(invited_users)} invitation(s), "
        f"{len(expanded_groups)} group(s)"
    )
    return game


async def get_game_instance(session: AsyncSession, game_id: str) -> Optional[GameInstance]:
    """Get a game instance row by ID."""
    result = await session.execute(select(GameInstance).where(GameInstance.id == game_id))
    return result.scalar_one_or_none()
