from datetime import datetime, date
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel, Relationship


class Role(str, Enum):
    ADULT = "ADULT"
    KID = "KID"


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"  # day_of_week: 0=Sun .. 6=Sat


class CompletionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ExchangeStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Family(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    created_at: datetime = Field(default_factory=datetime.now)

    users: list["User"] = Relationship(back_populates="family")


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    username: str = Field(index=True, unique=True)
    email: str
    name: Optional[str] = None
    role: Role = Field(default=Role.KID)
    hashed_password: str
    is_active: bool = True
    is_hidden: bool = False
    avatar_url: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    family: Family = Relationship(back_populates="users")


class Chore(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    title: str
    description: Optional[str] = None
    points: int = Field(default=1)
    active: bool = True
    created_at: datetime = Field(default_factory=datetime.now)

    schedules: list["ChoreSchedule"] = Relationship(back_populates="chore")
    assignments: list["ChoreAssignment"] = Relationship(back_populates="chore")


class ChoreSchedule(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    chore_id: int = Field(foreign_key="chore.id", index=True)
    frequency: Frequency = Field(default=Frequency.DAILY)
    day_of_week: Optional[int] = None
    time_of_day: Optional[str] = None

    chore: Chore = Relationship(back_populates="schedules")


class ChoreAssignment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    chore_id: int = Field(foreign_key="chore.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    chore: Chore = Relationship(back_populates="assignments")


class ChoreInstance(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    chore_id: int = Field(foreign_key="chore.id", index=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    due_date: date = Field(index=True)
    created_at: datetime = Field(default_factory=datetime.now)


class ChoreCompletion(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    chore_instance_id: int = Field(foreign_key="choreinstance.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    status: CompletionStatus = Field(default=CompletionStatus.PENDING)
    points_earned: int = 0
    completed_at: datetime = Field(default_factory=datetime.now)
    approved_at: Optional[datetime] = None
    approved_by_id: Optional[int] = Field(default=None, foreign_key="user.id")
    rejection_reason: Optional[str] = None


class Award(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    name: str
    icon: Optional[str] = None
    threshold_points: int = 0
    created_at: datetime = Field(default_factory=datetime.now)


class UserAward(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "award_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    award_id: int = Field(foreign_key="award.id")
    completion_id: Optional[int] = Field(default=None, foreign_key="chorecompletion.id")
    awarded_at: datetime = Field(default_factory=datetime.now)


class StarWeek(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "week_start"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    week_start: date
    earned: int = 0
    computed_at: datetime = Field(default_factory=datetime.now)


class StarExchange(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    stars: int
    note: Optional[str] = None
    status: ExchangeStatus = Field(default=ExchangeStatus.PENDING)
    requested_at: datetime = Field(default_factory=datetime.now)
    reviewed_at: Optional[datetime] = None
    reviewed_by_id: Optional[int] = Field(default=None, foreign_key="user.id")


__all__ = [
    "Family",
    "User",
    "Chore",
    "ChoreSchedule",
    "ChoreAssignment",
    "ChoreInstance",
    "ChoreCompletion",
    "Award",
    "UserAward",
    "StarWeek",
    "StarExchange",
    "Role",
    "Frequency",
    "CompletionStatus",
    "ExchangeStatus",
]
