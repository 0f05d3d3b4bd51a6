"""
Test data helpers shared by the service tests.
"""

from datetime import datetime

import pytz

from agon.database.models import User, Group, GroupMember
from agon.models.schemas import GameTemplateCreate, CreateGameTeamRequest, LocationInput


async def create_user(db_session, user_id, first_name=None):
    """Helper: create and commit a user row."""
    name = first_name or user_id.capitalize()
    db_session.add(User(
        id=user_id,
        username=user_id,
        first_name=name,
        last_name="Tester",
        email=f"{user_id}@example.com",
    ))
    await db_session.commit()
    return user_id


async def create_group(db_session, group_id, owner_id, member_ids):
    """Helper: create and commit a group with the given members."""
    db_session.add(Group(id=group_id, name=f"Group {group_id}", created_by_user_id=owner_id))
    for user_id in member_ids:
        db_session.add(GroupMember(group_id=group_id, user_id=user_id))
    await db_session.commit()
    return group_id


def make_spec(teams=None, title="Sunday Kickabout", duration_minutes=60):
    """Build a template spec; ``teams`` is a list of (name, user_ids, group_ids)."""
    return GameTemplateCreate(
        title=title,
        game_type="football_5_a_side",
        location=LocationInput(latitude=51.5074, longitude=-0.1278, name="Hackney Marshes"),
        duration_minutes=duration_minutes,
        teams=[
            CreateGameTeamRequest(
                name=name,
                invited_user_ids=list(user_ids),
                invited_group_ids=list(group_ids),
            )
            for name, user_ids, group_ids in (teams or [])
        ],
    )


def utc(year, month, day, hour=0, minute=0):
    """Aware UTC datetime."""
    return pytz.UTC.localize(datetime(year, month, day, hour, minute))


def fixed_clock(year, month, day, hour=0, minute=0):
    """Clock returning a constant UTC instant."""
    now = utc(year, month, day, hour, minute)
    return lambda: now
