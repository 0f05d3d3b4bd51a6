"""
Game service layer: creating games and reading them back.

A game is always built from a template. One-off games build their template
and a single instance; recurring games build a template, a series and the
first batch of instances, and return the earliest one.
"""

from datetime import date, datetime
from typing import Callable, Dict, List, Optional
import logging

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from agon.database.models import (
    GameInstance,
    GameTemplate,
    GameTeam,
    GameInvitation,
    GroupGameInvitation,
    RecurringSeries,
    GameStatus,
)
from agon.models.schemas import CreateGameRequest, GameTemplateCreate, OneOffSchedule
from agon.services import (
    instance_builder,
    invitation_service,
    recurrence_service,
    template_service,
)
from agon.services.errors import (
    GameNotFoundError,
    InvalidStatusTransitionError,
    NoOccurrencesError,
    storage_errors,
)
from agon.services.schedule_service import validate_cron_expression
from agon.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# Allowed game status changes; anything else is rejected
STATUS_TRANSITIONS = {
    GameStatus.SCHEDULED: {GameStatus.IN_PROGRESS, GameStatus.CANCELLED},
    GameStatus.IN_PROGRESS: {GameStatus.COMPLETED, GameStatus.CANCELLED},
    GameStatus.COMPLETED: set(),
    GameStatus.CANCELLED: set(),
}


async def _commit_template(
    session: AsyncSession, spec: GameTemplateCreate, created_by_user_id: str
) -> str:
    """Create and commit a template, returning its id."""
    async with storage_errors(session, "Failed to create game template"):
        template = await template_service.create_template(session, spec, created_by_user_id)
        template_id = template.id
        await session.commit()
    return template_id


async def create_one_off(
    session: AsyncSession,
    spec: GameTemplateCreate,
    scheduled_time: datetime,
    created_by_user_id: str,
) -> Dict:
    """
    Create a single game at a fixed time.

    Args:
        session: Database session
        spec: Template spec (teams and invitation targets)
        scheduled_time: When the game starts
        created_by_user_id: Owner of the game

    Returns:
        Game dict

    Raises:
        InvalidTemplateError: If the spec fails structural validation
        ConstraintViolationError: If a referenced user or group does not exist
        StoreUnavailableError: On transient storage failures
    """
    logger.info(f"Creating one-off game {spec.title!r} for user {created_by_user_id}")

    template_id = await _commit_template(session, spec, created_by_user_id)

    game = await instance_builder.build_instance(session, template_id, scheduled_time)
    return await get_game(session, game.id)


async def create_recurring(
    session: AsyncSession,
    spec: GameTemplateCreate,
    cron_schedule: str,
    start_date: date,
    created_by_user_id: str,
    end_date: Optional[date] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Dict:
    """
    Create a recurring game series and materialize its first batch.

    Args:
        session: Database session
        spec: Template spec (teams and invitation targets)
        cron_schedule: Cron expression for the series
        start_date: Series start date
        created_by_user_id: Owner of the series
        end_date: Optional series end date
        clock: Returns the current UTC time

    Returns:
        Dict of the earliest materialized game

    Raises:
        InvalidExpressionError: If the cron expression is malformed
        NoOccurrencesError: If nothing falls inside the first window; the
            series is kept and will be extended by later materialization
        StoreUnavailableError: On transient storage failures
    """
    logger.info(f"Creating recurring game {spec.title!r} ({cron_schedule!r}) for user {created_by_user_id}")

    # Reject a bad expression before anything is written
    validate_cron_expression(cron_schedule)

    template_id = await _commit_template(session, spec, created_by_user_id)

    series = await recurrence_service.create_series(
        session, template_id, cron_schedule, start_date, end_date
    )
    series_id = series.id

    await recurrence_service.materialize(session, series_id, clock=clock)

    first_game_id = await recurrence_service.get_first_generated_game_id(session, series_id)
    if first_game_id is None:
        raise NoOccurrencesError(
            f"Series {series_id} has no occurrence inside the current window"
        )
    return await get_game(session, first_game_id)


async def create_game(
    session: AsyncSession,
    request: CreateGameRequest,
    created_by_user_id: str,
    clock: Callable[[], datetime] = utcnow,
) -> Dict:
    """Create a one-off or recurring game depending on the request schedule."""
    schedule = request.schedule
    if isinstance(schedule, OneOffSchedule):
        return await create_one_off(session, request, schedule.scheduled_time, created_by_user_id)
    return await create_recurring(
        session,
        request,
        schedule.cron_schedule,
        schedule.start_date,
        created_by_user_id,
        end_date=schedule.end_date,
        clock=clock,
    )


def _game_select():
    return (
        select(GameInstance, GameTemplate, RecurringSeries)
        .join(GameTemplate, GameTemplate.id == GameInstance.template_id)
        .outerjoin(RecurringSeries, RecurringSeries.id == GameInstance.recurring_game_id)
        .execution_options(populate_existing=True)
    )


def _game_to_dict(
    game: GameInstance, template: GameTemplate, series: Optional[RecurringSeries]
) -> Dict:
    """Convert a game row and its template/series to dict."""
    if series is not None:
        schedule = {
            "type": "recurring",
            "cron_schedule": series.cron_schedule,
            "start_date": series.start_date.isoformat() if series.start_date else None,
            "end_date": series.end_date.isoformat() if series.end_date else None,
            "occurrence_date": game.occurrence_date.isoformat() if game.occurrence_date else None,
        }
    else:
        schedule = {
            "type": "one_off",
            "scheduled_time": game.scheduled_time.isoformat() if game.scheduled_time else None,
        }

    return {
        "id": game.id,
        "template_id": game.template_id,
        "recurring_game_id": game.recurring_game_id,
        "title": template.title,
        "game_type": template.game_type,
        "location": {
            "latitude": template.location_latitude,
            "longitude": template.location_longitude,
            "name": template.location_name,
        },
        "duration_minutes": template.duration_minutes,
        "created_by_user_id": template.created_by_user_id,
        "scheduled_time": game.scheduled_time.isoformat() if game.scheduled_time else None,
        "occurrence_date": game.occurrence_date.isoformat() if game.occurrence_date else None,
        "status": game.status,
        "schedule": schedule,
        "created_at": game.created_at.isoformat() if game.created_at else None,
    }


async def get_game(session: AsyncSession, game_id: str) -> Optional[Dict]:
    """Get a game by ID."""
    result = await session.execute(_game_select().where(GameInstance.id == game_id))
    row = result.first()
    if not row:
        return None
    return _game_to_dict(*row)


async def list_game_teams(session: AsyncSession, game_id: str) -> List[Dict]:
    """Get the teams of a game ordered by position."""
    result = await session.execute(
        select(GameTeam)
        .where(GameTeam.game_id == game_id)
        .order_by(GameTeam.position)
    )
    return [
        {
            "id": team.id,
            "game_id": team.game_id,
            "name": team.name,
            "color": team.color,
            "position": team.position,
            "created_at": team.created_at.isoformat() if team.created_at else None,
        }
        for team in result.scalars().all()
    ]


async def get_game_with_invitations(session: AsyncSession, game_id: str) -> Optional[Dict]:
    """
    Get a game with its teams (and their members) and all invitations.

    Args:
        session: Database session
        game_id: Game ID

    Returns:
        Dict with "game", "teams" and "invitations" keys, or None
    """
    game = await get_game(session, game_id)
    if game is None:
        return None

    invitations = await invitation_service.list_game_invitations(session, game_id)
    teams = await list_game_teams(session, game_id)
    for team in teams:
        team["members"] = [
            invitation["user"] for invitation in invitations if invitation["team_id"] == team["id"]
        ]

    return {"game": game, "teams": teams, "invitations": invitations}


async def list_user_games(session: AsyncSession, user_id: str) -> List[Dict]:
    """
    Get games a user created or is invited to, latest first.

    Args:
        session: Database session
        user_id: User ID

    Returns:
        List of game dicts
    """
    invited_game_ids = select(GameInvitation.game_id).where(GameInvitation.user_id == user_id)
    result = await session.execute(
        _game_select()
        .where(
            or_(
                GameTemplate.created_by_user_id == user_id,
                GameInstance.id.in_(invited_game_ids),
            )
        )
        .order_by(GameInstance.scheduled_time.desc(), GameInstance.id)
    )
    return [_game_to_dict(*row) for row in result.all()]


async def list_group_games(session: AsyncSession, group_id: str) -> List[Dict]:
    """Get games a group was invited to, latest first."""
    invited_game_ids = select(GroupGameInvitation.game_id).where(
        GroupGameInvitation.group_id == group_id
    )
    result = await session.execute(
        _game_select()
        .where(GameInstance.id.in_(invited_game_ids))
        .order_by(GameInstance.scheduled_time.desc(), GameInstance.id)
    )
    return [_game_to_dict(*row) for row in result.all()]


async def update_game_status(session: AsyncSession, game_id: str, status: GameStatus) -> Dict:
    """
    Move a game to a new status.

    Allowed: scheduled -> in_progress -> completed, and scheduled or
    in_progress -> cancelled.

    Raises:
        GameNotFoundError: If the game does not exist
        InvalidStatusTransitionError: If the change is not allowed
        StoreUnavailableError: On transient storage failures
    """
    new_status = GameStatus(status)
    game = await instance_builder.get_game_instance(session, game_id)
    if game is None:
        raise GameNotFoundError(f"Game {game_id} not found")

    current = GameStatus(game.status)
    if new_status not in STATUS_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(
            f"Cannot change game {game_id} from {current.value} to {new_status.value}"
        )

    async with storage_errors(session, f"Failed to update game {game_id}"):
        game.status = new_status.value
        await session.commit()
    logger.info(f"Game {game_id} status changed from {current.value} to {new_status.value}")

    return await get_game(session, game_id)
