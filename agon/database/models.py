"""
SQLAlchemy ORM models for the Agon game scheduling system.
"""

from typing import NamedTuple
import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from agon.database.db import Base
from agon.utils.ids import generate_id


class GameStatus(str, enum.Enum):
    """Game instance lifecycle status."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InvitationStatus(str, enum.Enum):
    """Game invitation response status."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class GameType(str, enum.Enum):
    """Sport played in a game."""

    FOOTBALL_5_A_SIDE = "football_5_a_side"
    FOOTBALL_11_A_SIDE = "football_11_a_side"
    BASKETBALL = "basketball"
    TENNIS = "tennis"
    BADMINTON = "badminton"
    CRICKET = "cricket"
    RUGBY = "rugby"
    HOCKEY = "hockey"
    OTHER = "other"


class InviteTargetKind(str, enum.Enum):
    """Who an invitation template points at."""

    USER = "user"
    GROUP = "group"


class InviteTarget(NamedTuple):
    """Resolved target of an invitation template: exactly one user or one group."""

    kind: InviteTargetKind
    ref_id: str


def _enum_check(column: str, enum_cls: type, name: str) -> CheckConstraint:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"{column} IN ({values})", name=name)


class User(Base):
    """User accounts. Managed by the identity provider; referenced here only."""

    __tablename__ = "users"

    id = Column(String, primary_key=True)
    username = Column(String, nullable=False, unique=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    group_memberships = relationship("GroupMember", back_populates="user")


class Group(Base):
    """Named groups of users that can be invited to games as a whole."""

    __tablename__ = "groups"

    id = Column(String(12), primary_key=True, default=generate_id)
    name = Column(String, nullable=False)
    created_by_user_id = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    members = relationship("GroupMember", back_populates="group", cascade="all, delete-orphan")
    creator = relationship("User", foreign_keys=[created_by_user_id])


class GroupMember(Base):
    """Join table for group membership."""

    __tablename__ = "group_members"

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    group_id = Column(String(12), ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True)

    # Relationships
    user = relationship("User", back_populates="group_memberships")
    group = relationship("Group", back_populates="members")

    __table_args__ = (
        Index("idx_group_members_group", "group_id"),
    )


class GameTemplate(Base):
    """Reusable game blueprint: metadata, teams and invitation targets.

    Immutable once created. One template backs either a single one-off game
    or one recurring series.
    """

    __tablename__ = "game_templates"

    id = Column(String(12), primary_key=True, default=generate_id)
    title = Column(String, nullable=False)
    game_type = Column(String(30), nullable=False)
    location_latitude = Column(Float, nullable=False)
    location_longitude = Column(Float, nullable=False)
    location_name = Column(String, nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    created_by_user_id = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    teams = relationship(
        "TeamTemplate",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TeamTemplate.position",
    )
    invitations = relationship(
        "InvitationTemplate", back_populates="template", cascade="all, delete-orphan"
    )
    series = relationship("RecurringSeries", back_populates="template", uselist=False)
    creator = relationship("User", foreign_keys=[created_by_user_id])

    __table_args__ = (
        _enum_check("game_type", GameType, "ck_game_templates_game_type"),
        CheckConstraint("duration_minutes >= 0", name="ck_game_templates_duration"),
        Index("idx_game_templates_created_by", "created_by_user_id"),
    )


class TeamTemplate(Base):
    """Team definition belonging to a game template."""

    __tablename__ = "game_template_teams"

    id = Column(String(12), primary_key=True, default=generate_id)
    template_id = Column(
        String(12), ForeignKey("game_templates.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String, nullable=False)
    color = Column(String, nullable=True)
    position = Column(Integer, nullable=False)  # 1-based, input order
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    template = relationship("GameTemplate", back_populates="teams")

    __table_args__ = (
        Index("idx_game_template_teams_template_id", "template_id"),
    )


class InvitationTemplate(Base):
    """Invitation target for a template team: a single user or a whole group."""

    __tablename__ = "game_template_invitations"

    id = Column(String(12), primary_key=True, default=generate_id)
    template_id = Column(
        String(12), ForeignKey("game_templates.id", ondelete="CASCADE"), nullable=False
    )
    team_id = Column(
        String(12), ForeignKey("game_template_teams.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    group_id = Column(String(12), ForeignKey("groups.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    template = relationship("GameTemplate", back_populates="invitations")
    team = relationship("TeamTemplate")

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (group_id IS NULL)",
            name="ck_game_template_invitations_target",
        ),
        UniqueConstraint("template_id", "user_id", "group_id", name="uq_game_template_invitations"),
        Index("idx_game_template_invitations_template_id", "template_id"),
    )

    @property
    def target(self) -> InviteTarget:
        """The invitation target as a tagged value."""
        if self.user_id is not None:
            return InviteTarget(InviteTargetKind.USER, self.user_id)
        return InviteTarget(InviteTargetKind.GROUP, self.group_id)


class RecurringSeries(Base):
    """Recurrence rule attached to a template, with its materialization cursor."""

    __tablename__ = "recurring_games"

    id = Column(String(12), primary_key=True, default=generate_id)
    template_id = Column(
        String(12), ForeignKey("game_templates.id"), nullable=False, unique=True
    )
    cron_schedule = Column(Text, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    last_generated_date = Column(Date, nullable=True)  # NULL means nothing generated yet
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    template = relationship("GameTemplate", back_populates="series")
    games = relationship("GameInstance", back_populates="series")

    __table_args__ = (
        Index("idx_recurring_games_active", "is_active"),
    )


class GameInstance(Base):
    """A concrete, scheduled game materialized from a template."""

    __tablename__ = "games"

    id = Column(String(12), primary_key=True, default=generate_id)
    template_id = Column(String(12), ForeignKey("game_templates.id"), nullable=False)
    recurring_game_id = Column(String(12), ForeignKey("recurring_games.id"), nullable=True)
    scheduled_time = Column(DateTime(timezone=True), nullable=False)  # UTC
    occurrence_date = Column(Date, nullable=True)  # Set for recurring games only
    status = Column(String(20), nullable=False, default=GameStatus.SCHEDULED.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    template = relationship("GameTemplate")
    series = relationship("RecurringSeries", back_populates="games")
    teams = relationship(
        "GameTeam", back_populates="game", cascade="all, delete-orphan", order_by="GameTeam.position"
    )
    invitations = relationship(
        "GameInvitation", back_populates="game", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_game_id", "occurrence_date", name="uq_games_series_occurrence"
        ),
        _enum_check("status", GameStatus, "ck_games_status"),
        Index("idx_games_template_id", "template_id"),
        Index("idx_games_scheduled_time", "scheduled_time"),
    )


class GameTeam(Base):
    """Team of a game instance, copied from a template team."""

    __tablename__ = "game_teams"

    id = Column(String(12), primary_key=True, default=generate_id)
    game_id = Column(String(12), ForeignKey("games.id", ondelete="CASCADE"), nullable=False)
    template_team_id = Column(String(12), ForeignKey("game_template_teams.id"), nullable=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=True)
    position = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    game = relationship("GameInstance", back_populates="teams")

    __table_args__ = (
        Index("idx_game_teams_game_id", "game_id"),
        Index("idx_game_teams_position", "game_id", "position"),
    )


class GameInvitation(Base):
    """A single user's invitation to a game instance. One row per (game, user)."""

    __tablename__ = "game_invitations"

    game_id = Column(String(12), ForeignKey("games.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    team_id = Column(String(12), ForeignKey("game_teams.id", ondelete="CASCADE"), nullable=False)
    group_id = Column(
        String(12), ForeignKey("groups.id", ondelete="SET NULL"), nullable=True
    )  # NULL when the user was invited directly
    status = Column(String(20), nullable=False, default=InvitationStatus.PENDING.value)
    invited_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    game = relationship("GameInstance", back_populates="invitations")
    user = relationship("User")
    team = relationship("GameTeam")

    __table_args__ = (
        _enum_check("status", InvitationStatus, "ck_game_invitations_status"),
        Index("idx_game_invitations_user_id", "user_id"),
        Index("idx_game_invitations_team_id", "team_id"),
    )


class GroupGameInvitation(Base):
    """Marker that a group as a whole was invited to a game instance."""

    __tablename__ = "group_game_invitations"

    game_id = Column(String(12), ForeignKey("games.id", ondelete="CASCADE"), primary_key=True)
    group_id = Column(
        String(12), ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True
    )
    invited_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_group_game_invitations_group_id", "group_id"),
    )
