"""
Pydantic models for game creation and invitation requests.
"""

from datetime import date, datetime
from typing import Optional, List, Literal, Union
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from agon.database.models import GameType, InvitationStatus


class LocationInput(BaseModel):
    """Where a game is played."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    name: Optional[str] = None


class CreateGameTeamRequest(BaseModel):
    """A team and the users/groups invited to it.

    Only direct user ids and group ids are accepted as invitation targets.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    color: Optional[str] = None
    invited_user_ids: List[str] = Field(default_factory=list)
    invited_group_ids: List[str] = Field(default_factory=list)


class OneOffSchedule(BaseModel):
    """A single game at a fixed instant."""

    type: Literal["one_off"] = "one_off"
    scheduled_time: datetime


class RecurringSchedule(BaseModel):
    """A series of games following a cron expression."""

    type: Literal["recurring"] = "recurring"
    cron_schedule: str = Field(min_length=1)
    start_date: date
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_date_range(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class GameTemplateCreate(BaseModel):
    """Everything needed to build a game template."""

    title: str = Field(min_length=1)
    game_type: GameType = GameType.OTHER
    location: LocationInput
    duration_minutes: int = Field(ge=0)
    teams: List[CreateGameTeamRequest] = Field(default_factory=list)


class CreateGameRequest(GameTemplateCreate):
    """Request to create a one-off or recurring game."""

    schedule: Union[OneOffSchedule, RecurringSchedule] = Field(discriminator="type")


class RespondToInvitationRequest(BaseModel):
    """Accept or decline a game invitation."""

    response: InvitationStatus

    @field_validator("response")
    @classmethod
    def check_is_decision(cls, value: InvitationStatus) -> InvitationStatus:
        if value == InvitationStatus.PENDING:
            raise ValueError("response must be accepted or declined")
        return value
