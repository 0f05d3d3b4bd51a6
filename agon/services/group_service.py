"""
Group lookups used when expanding group invitations.

Membership is read at the moment a game is materialized; later membership
changes do not touch games that already exist.
"""

from typing import Set
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agon.database.models import GroupMember

logger = logging.getLogger(__name__)


async def members_of(session: AsyncSession, group_id: str) -> Set[str]:
    """
    Get the user ids currently in a group.

    Args:
        session: Database session
        group_id: Group ID

    Returns:
        Set of member user IDs (empty for an unknown group)
    """
    result = await session.execute(
        select(GroupMember.user_id).where(GroupMember.group_id == group_id)
    )
    return set(result.scalars().all())

