"""
Tests for game creation and game read accessors.
"""

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from agon.database.models import GameInstance, GameStatus, GameTemplate, InvitationStatus, RecurringSeries
from agon.models.schemas import CreateGameRequest
from agon.services import game_service, invitation_service
from agon.services.errors import (
    GameNotFoundError,
    InvalidExpressionError,
    InvalidStatusTransitionError,
    NoOccurrencesError,
    StoreUnavailableError,
)
from agon.tests.helpers import create_group, fixed_clock, make_spec, utc


def _request(schedule, teams=None):
    spec = make_spec(teams=teams or [("Bibs", ["alice"], []), ("Skins", ["bob"], [])])
    return CreateGameRequest(**spec.model_dump(), schedule=schedule)


async def _count(db_session, model):
    result = await db_session.execute(select(func.count()).select_from(model))
    return result.scalar()


# ──────────────────────────────────────────────────────────────
# Creation
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_one_off_game(db_session, users):
    game = await game_service.create_one_off(
        db_session, make_spec(teams=[("Bibs", ["alice", "bob"], [])]), utc(2024, 2, 3, 10), "owner"
    )

    assert game["title"] == "Sunday Kickabout"
    assert game["status"] == "scheduled"
    assert game["recurring_game_id"] is None
    assert game["schedule"]["type"] == "one_off"
    assert game["created_by_user_id"] == "owner"
    assert await _count(db_session, GameInstance) == 1


@pytest.mark.asyncio
async def test_create_recurring_returns_first_game(db_session, users, monday_morning):
    game = await game_service.create_recurring(
        db_session,
        make_spec(teams=[("Bibs", ["alice"], [])]),
        "0 18 * * 1",
        date(2024, 1, 1),
        "owner",
        clock=monday_morning,
    )

    assert game["occurrence_date"] == "2024-01-08"
    assert game["schedule"] == {
        "type": "recurring",
        "cron_schedule": "0 18 * * 1",
        "start_date": "2024-01-01",
        "end_date": None,
        "occurrence_date": "2024-01-08",
    }
    assert await _count(db_session, GameInstance) == 4


@pytest.mark.asyncio
async def test_create_recurring_rejects_bad_expression_before_writing(db_session, users, monday_morning):
    with pytest.raises(InvalidExpressionError):
        await game_service.create_recurring(
            db_session, make_spec(), "whenever", date(2024, 1, 1), "owner", clock=monday_morning
        )

    assert await _count(db_session, GameTemplate) == 0
    assert await _count(db_session, RecurringSeries) == 0


@pytest.mark.asyncio
async def test_create_recurring_with_empty_first_window(db_session, users, monday_morning):
    """A series starting after the look-ahead horizon keeps its series row."""
    with pytest.raises(NoOccurrencesError):
        await game_service.create_recurring(
            db_session, make_spec(), "0 18 * * 1", date(2024, 6, 1), "owner", clock=monday_morning
        )

    assert await _count(db_session, RecurringSeries) == 1
    assert await _count(db_session, GameInstance) == 0


@pytest.mark.asyncio
async def test_create_game_dispatches_on_schedule_type(db_session, users, monday_morning):
    one_off = await game_service.create_game(
        db_session,
        _request({"type": "one_off", "scheduled_time": "2024-02-03T10:00:00Z"}),
        "owner",
    )
    recurring = await game_service.create_game(
        db_session,
        _request({"type": "recurring", "cron_schedule": "0 18 * * 1", "start_date": "2024-01-01"}),
        "owner",
        clock=monday_morning,
    )

    assert one_off["schedule"]["type"] == "one_off"
    assert recurring["schedule"]["type"] == "recurring"


def test_create_game_request_validation():
    with pytest.raises(ValidationError):
        _request({"type": "weekly"})
    with pytest.raises(ValidationError):
        _request({
            "type": "recurring",
            "cron_schedule": "0 18 * * 1",
            "start_date": "2024-02-01",
            "end_date": "2024-01-01",
        })
    with pytest.raises(ValidationError):
        CreateGameRequest(
            title="x",
            location={"latitude": 100, "longitude": 0},
            duration_minutes=60,
            schedule={"type": "one_off", "scheduled_time": "2024-02-03T10:00:00Z"},
        )


@pytest.mark.asyncio
async def test_create_one_off_storage_failure_leaves_nothing_behind(db_session, users):
    failure = OperationalError("COMMIT", {}, Exception("connection reset"))
    with patch.object(db_session, "commit", AsyncMock(side_effect=failure)):
        with pytest.raises(StoreUnavailableError):
            await game_service.create_one_off(db_session, make_spec(), utc(2024, 2, 3, 10), "owner")

    assert await _count(db_session, GameTemplate) == 0
    assert await _count(db_session, GameInstance) == 0


@pytest.mark.asyncio
async def test_create_recurring_storage_failure(db_session, users, monday_morning):
    failure = OperationalError("COMMIT", {}, Exception("connection reset"))
    with patch.object(db_session, "commit", AsyncMock(side_effect=failure)):
        with pytest.raises(StoreUnavailableError):
            await game_service.create_recurring(
                db_session, make_spec(), "0 18 * * 1", date(2024, 1, 1), "owner", clock=monday_morning
            )

    assert await _count(db_session, GameTemplate) == 0
    assert await _count(db_session, RecurringSeries) == 0

# ──────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_game_with_invitations(db_session, users):
    await create_group(db_session, "grp1", "owner", ["carol", "dave"])
    game = await game_service.create_one_off(
        db_session,
        make_spec(teams=[("Bibs", ["alice"], []), ("Skins", ["bob"], ["grp1"])]),
        utc(2024, 2, 3, 10),
        "owner",
    )

    details = await game_service.get_game_with_invitations(db_session, game["id"])

    assert details["game"]["id"] == game["id"]
    assert [t["name"] for t in details["teams"]] == ["Bibs", "Skins"]
    assert [m["id"] for m in details["teams"][0]["members"]] == ["alice"]
    assert sorted(m["id"] for m in details["teams"][1]["members"]) == ["bob", "carol", "dave"]
    assert len(details["invitations"]) == 4


@pytest.mark.asyncio
async def test_get_game_missing(db_session):
    assert await game_service.get_game(db_session, "missing") is None
    assert await game_service.get_game_with_invitations(db_session, "missing") is None


@pytest.mark.asyncio
async def test_list_user_games_created_or_invited(db_session, users):
    early = await game_service.create_one_off(
        db_session, make_spec(teams=[("Bibs", ["alice"], [])]), utc(2024, 2, 3, 10), "owner"
    )
    late = await game_service.create_one_off(
        db_session, make_spec(teams=[("Bibs", ["bob"], [])]), utc(2024, 2, 10, 10), "owner"
    )

    assert [g["id"] for g in await game_service.list_user_games(db_session, "owner")] == [
        late["id"], early["id"],
    ]
    assert [g["id"] for g in await game_service.list_user_games(db_session, "alice")] == [early["id"]]
    assert await game_service.list_user_games(db_session, "carol") == []


@pytest.mark.asyncio
async def test_list_group_games(db_session, users):
    await create_group(db_session, "grp1", "owner", ["carol"])
    game = await game_service.create_one_off(
        db_session, make_spec(teams=[("Bibs", [], ["grp1"])]), utc(2024, 2, 3, 10), "owner"
    )
    await game_service.create_one_off(db_session, make_spec(), utc(2024, 2, 4, 10), "owner")

    assert [g["id"] for g in await game_service.list_group_games(db_session, "grp1")] == [game["id"]]


# ──────────────────────────────────────────────────────────────
# Status
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_game_status_lifecycle(db_session, users):
    game = await game_service.create_one_off(db_session, make_spec(), utc(2024, 2, 3, 10), "owner")

    started = await game_service.update_game_status(db_session, game["id"], GameStatus.IN_PROGRESS)
    assert started["status"] == "in_progress"

    finished = await game_service.update_game_status(db_session, game["id"], "completed")
    assert finished["status"] == "completed"

    with pytest.raises(InvalidStatusTransitionError):
        await game_service.update_game_status(db_session, game["id"], GameStatus.CANCELLED)


@pytest.mark.asyncio
async def test_cannot_skip_to_completed(db_session, users):
    game = await game_service.create_one_off(db_session, make_spec(), utc(2024, 2, 3, 10), "owner")

    with pytest.raises(InvalidStatusTransitionError):
        await game_service.update_game_status(db_session, game["id"], GameStatus.COMPLETED)


@pytest.mark.asyncio
async def test_update_status_unknown_game(db_session):
    with pytest.raises(GameNotFoundError):
        await game_service.update_game_status(db_session, "missing", GameStatus.CANCELLED)


@pytest.mark.asyncio
async def test_update_status_storage_failure_keeps_old_status(db_session, users):
    game = await game_service.create_one_off(db_session, make_spec(), utc(2024, 2, 3, 10), "owner")

    failure = OperationalError("COMMIT", {}, Exception("connection reset"))
    with patch.object(db_session, "commit", AsyncMock(side_effect=failure)):
        with pytest.raises(StoreUnavailableError):
            await game_service.update_game_status(db_session, game["id"], GameStatus.CANCELLED)

    assert (await game_service.get_game(db_session, game["id"]))["status"] == "scheduled"


@pytest.mark.asyncio
async def test_recurring_games_share_template_but_not_responses(db_session, users):
    await game_service.create_recurring(
        db_session,
        make_spec(teams=[("Bibs", ["alice"], [])]),
        "0 18 * * 1",
        date(2024, 1, 1),
        "owner",
        clock=fixed_clock(2024, 1, 1, 9),
    )
    games = await game_service.list_user_games(db_session, "alice")
    first, second = games[-1]["id"], games[-2]["id"]

    await invitation_service.respond(db_session, first, "alice", InvitationStatus.DECLINED)

    assert (await invitation_service.get_invitation(db_session, first, "alice"))["status"] == "declined"
    assert (await invitation_service.get_invitation(db_session, second, "alice"))["status"] == "pending"
