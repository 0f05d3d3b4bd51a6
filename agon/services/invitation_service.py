"""
Game invitation responses and ad-hoc invitations.

Responses are blind writes: the latest response for a (game, user) pair
wins, and responding to an invitation that does not exist is a no-op.
"""

from typing import Dict, List, Optional, Sequence
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agon.database.models import (
    GameInstance,
    GameInvitation,
    GameTeam,
    InvitationStatus,
    User,
)
from agon.services.errors import GameNotFoundError, storage_errors
from agon.services.instance_builder import dialect_insert, mark_group_invited
from agon.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


async def respond(
    session: AsyncSession,
    game_id: str,
    user_id: str,
    decision: InvitationStatus,
) -> None:
    """
    Record a user's accept/decline for a game.

    Overwrites any earlier response without checking the current status.

    Args:
        session: Database session
        game_id: Game ID
        user_id: Responding user
        decision: InvitationStatus.ACCEPTED or InvitationStatus.DECLINED

    Raises:
        ValueError: If decision is not accepted or declined
        StoreUnavailableError: On transient storage failures
    """
    decision = InvitationStatus(decision)
    if decision == InvitationStatus.PENDING:
        raise ValueError("Response must be accepted or declined")

    logger.info(f"User {user_id} responding {decision.value} to game {game_id}")

    async with storage_errors(session, f"Failed to record response for game {game_id}"):
        result = await session.execute(
            update(GameInvitation)
            .where(GameInvitation.game_id == game_id, GameInvitation.user_id == user_id)
            .values(status=decision.value, responded_at=utcnow())
        )
        await session.commit()

    if result.rowcount == 0:
        logger.debug(f"No invitation for user {user_id} on game {game_id}, response ignored")


async def add_game_invitations(
    session: AsyncSession,
    game_id: str,
    user_ids: Sequence[str],
    team_id: str,
) -> int:
    """
    Invite more users to an existing game on one of its teams.

    Users who already hold an invitation keep it unchanged, including any
    response they already gave.

    Args:
        session: Database session
        game_id: Game ID
        user_ids: Users to invite
        team_id: Game team to place them on

    Returns:
        Number of invitations created

    Raises:
        GameNotFoundError: If the game does not exist
        ValueError: If the team does not belong to the game
        StoreUnavailableError: On transient storage failures
    """
    logger.info(f"Adding invitations for game {game_id} to users {list(user_ids)}")

    created = 0
    async with storage_errors(session, f"Failed to add invitations to game {game_id}"):
        game = await session.get(GameInstance, game_id)
        if game is None:
            raise GameNotFoundError(f"Game {game_id} not found")

        team_result = await session.execute(
            select(GameTeam.id).where(GameTeam.id == team_id, GameTeam.game_id == game_id)
        )
        if team_result.scalar_one_or_none() is None:
            raise ValueError(f"Team {team_id} is not part of game {game_id}")

        now = utcnow()
        for user_id in dict.fromkeys(user_ids):
            stmt = dialect_insert(session, GameInvitation).values(
                game_id=game_id,
                user_id=user_id,
                team_id=team_id,
                group_id=None,
                status=InvitationStatus.PENDING.value,
                invited_at=now,
            )
            stmt = stmt.on_conflict_do_nothing(index_elements=["game_id", "user_id"])
            result = await session.execute(stmt)
            created += result.rowcount or 0
        await session.commit()

    return created


async def add_group_game_invitation(session: AsyncSession, game_id: str, group_id: str) -> None:
    """
    Record that a group was invited to an existing game.

    Raises:
        GameNotFoundError: If the game does not exist
        ConstraintViolationError: If the group does not exist
    """
    logger.info(f"Adding group {group_id} invitation to game {game_id}")

    game = await session.get(GameInstance, game_id)
    if game is None:
        raise GameNotFoundError(f"Game {game_id} not found")

    async with storage_errors(session, f"Failed to invite group {group_id} to game {game_id}"):
        await mark_group_invited(session, game_id, group_id, utcnow())
        await session.commit()


async def list_game_invitations(session: AsyncSession, game_id: str) -> List[Dict]:
    """
    Get all invitations of a game with the invited user's details.

    Args:
        session: Database session
        game_id: Game ID

    Returns:
        List of invitation dicts ordered by invite time, then user id
    """
    result = await session.execute(
        select(GameInvitation, User)
        .join(User, User.id == GameInvitation.user_id)
        .where(GameInvitation.game_id == game_id)
        .order_by(GameInvitation.invited_at, GameInvitation.user_id)
        .execution_options(populate_existing=True)
    )
    return [
        {
            **invitation_to_dict(invitation),
            "user": {
                "id": user.id,
                "username": user.username,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "email": user.email,
            },
        }
        for invitation, user in result.all()
    ]


async def get_invitation(session: AsyncSession, game_id: str, user_id: str) -> Optional[Dict]:
    """Get one user's invitation to a game."""
    invitation = await session.get(
        GameInvitation, (game_id, user_id), populate_existing=True
    )
    if invitation is None:
        return None
    return invitation_to_dict(invitation)


def invitation_to_dict(invitation: GameInvitation) -> Dict:
    """Convert GameInvitation model to dict."""
    return {
        "game_id": invitation.game_id,
        "user_id": invitation.user_id,
        "team_id": invitation.team_id,
        "group_id": invitation.group_id,
        "status": invitation.status,
        "invited_at": invitation.invited_at.isoformat() if invitation.invited_at else None,
        "responded_at": invitation.responded_at.isoformat() if invitation.responded_at else None,
    }
