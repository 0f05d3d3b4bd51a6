"""
Game template store.

Templates hold the game metadata, its teams and the invitation targets for
each team. They are written once and never updated; every game instance is
built from one.
"""

from typing import Dict, List, Optional
import logging

from sqlalchemy import select, case
from sqlalchemy.ext.asyncio import AsyncSession

from agon.database.models import (
    GameTemplate,
    TeamTemplate,
    InvitationTemplate,
)
from agon.models.schemas import GameTemplateCreate
from agon.services.errors import InvalidTemplateError, storage_errors
from agon.utils.datetime_utils import utcnow
from agon.utils.ids import generate_id

logger = logging.getLogger(__name__)


def _validate_template(spec: GameTemplateCreate) -> None:
    """Structural checks on a template spec."""
    if not spec.title or not spec.title.strip():
        raise InvalidTemplateError("Game title cannot be empty")
    if spec.duration_minutes < 0:
        raise InvalidTemplateError("Game duration cannot be negative")
    for index, team in enumerate(spec.teams, start=1):
        if not team.name or not team.name.strip():
            raise InvalidTemplateError(f"Team {index} must have a name")
        for user_id in team.invited_user_ids:
            if not user_id:
                raise InvalidTemplateError(f"Team {team.name!r} has an empty user id")
        for group_id in team.invited_group_ids:
            if not group_id:
                raise InvalidTemplateError(f"Team {team.name!r} has an empty group id")


async def create_template(
    session: AsyncSession,
    spec: GameTemplateCreate,
    created_by_user_id: str,
) -> GameTemplate:
    """
    Create a game template with its teams and invitation targets.

    Teams get positions 1..n in input order. Each invited user and each
    invited group becomes one invitation template on that team. The caller
    owns the transaction: rows are flushed, not committed.

    Args:
        session: Database session
        spec: Validated template spec
        created_by_user_id: Owner of the template

    Returns:
        The new GameTemplate

    Raises:
        InvalidTemplateError: If the spec fails structural validation
        ConstraintViolationError: If a referenced user or group does not exist
        StoreUnavailableError: On transient storage failures
    """
    _validate_template(spec)

    now = utcnow()
    template = GameTemplate(
        id=generate_id(),
        title=spec.title.strip(),
        game_type=spec.game_type.value,
        location_latitude=spec.location.latitude,
        location_longitude=spec.location.longitude,
        location_name=spec.location.name,
        duration_minutes=spec.duration_minutes,
        created_by_user_id=created_by_user_id,
        created_at=now,
        updated_at=now,
    )
    session.add(template)

    invitation_count = 0
    for position, team_spec in enumerate(spec.teams, start=1):
        team = TeamTemplate(
            id=generate_id(),
            template_id=template.id,
            name=team_spec.name,
            color=team_spec.color,
            position=position,
            created_at=now,
        )
        session.add(team)

        # dict.fromkeys drops repeats while keeping input order
        for user_id in dict.fromkeys(team_spec.invited_user_ids):
            session.add(InvitationTemplate(
                id=generate_id(),
                template_id=template.id,
                team_id=team.id,
                user_id=user_id,
                created_at=now,
            ))
            invitation_count += 1

        for group_id in dict.fromkeys(team_spec.invited_group_ids):
            session.add(InvitationTemplate(
                id=generate_id(),
                template_id=template.id,
                team_id=team.id,
                group_id=group_id,
                created_at=now,
            ))
            invitation_count += 1

    async with storage_errors(session, f"Failed to create template {spec.title!r}"):
        await session.flush()

    logger.info(
        f"Created game template {template.id} ({template.title!r}) with "
        f"{len(spec.teams)} team(s) and {invitation_count} invitation target(s)"
    )
    return template


async def get_template(session: AsyncSession, template_id: str) -> Optional[GameTemplate]:
    """Get a game template by ID."""
    result = await session.execute(
        select(GameTemplate).where(GameTemplate.id == template_id)
    )
    return result.scalar_one_or_none()


async def get_template_teams(session: AsyncSession, template_id: str) -> List[TeamTemplate]:
    """Get the teams of a template ordered by position."""
    result = await session.execute(
        select(TeamTemplate)
        .where(TeamTemplate.template_id == template_id)
        .order_by(TeamTemplate.position, TeamTemplate.id)
    )
    return list(result.scalars().all())


async def get_template_invitations(
    session: AsyncSession, template_id: str
) -> List[InvitationTemplate]:
    """
    Get the invitation templates of a template in processing order.

    Order is stable: by team position, then direct users before groups,
    then by the invited user/group id. Later rows win when two rows reach
    the same user, so this order decides team assignment.

    Args:
        session: Database session
        template_id: Template ID

    Returns:
        List of InvitationTemplate rows
    """
    # Outer join so that rows pointing at a team outside this template still
    # come back (last) and get reported by the instance builder.
    result = await session.execute(
        select(InvitationTemplate)
        .outerjoin(
            TeamTemplate,
            (TeamTemplate.id == InvitationTemplate.team_id)
            & (TeamTemplate.template_id == InvitationTemplate.template_id),
        )
        .where(InvitationTemplate.template_id == template_id)
        .order_by(
            case((TeamTemplate.position.is_(None), 1), else_=0),
            TeamTemplate.position,
            case((InvitationTemplate.user_id.is_not(None), 0), else_=1),
            InvitationTemplate.user_id,
            InvitationTemplate.group_id,
        )
    )
    return list(result.scalars().all())


def template_to_dict(template: GameTemplate) -> Dict:
    """Convert GameTemplate model to dict."""
    return {
        "id": template.id,
        "title": template.title,
        "game_type": template.game_type,
        "location": {
            "latitude": template.location_latitude,
            "longitude": template.location_longitude,
            "name": template.location_name,
        },
        "duration_minutes": template.duration_minutes,
        "created_by_user_id": template.created_by_user_id,
        "created_at": template.created_at.isoformat() if template.created_at else None,
        "updated_at": template.updated_at.isoformat() if template.updated_at else None,
    }
