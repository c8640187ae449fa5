from typing import Optional

from pydantic import BaseModel, Field

from .models import Frequency, Role


class RegisterRequest(BaseModel):
    family_name: str
    username: str
    email: str
    name: Optional[str] = None
    password: str


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class MemberCreate(BaseModel):
    username: str = ""
    email: str = ""
    name: Optional[str] = None
    role: Optional[str] = None
    password: str = ""


class MemberUpdate(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = None
    is_hidden: Optional[bool] = None
    password: Optional[str] = None


class ChoreInput(BaseModel):
    title: str = ""
    description: Optional[str] = None
    points: int = 1
    active: bool = True
    frequency: Frequency = Frequency.DAILY
    day_of_week: Optional[int] = None
    assigned_kid_ids: list[int] = Field(default_factory=list)


class CompleteRequest(BaseModel):
    chore_id: Optional[int] = None
    instance_id: Optional[int] = None


class UndoRequest(BaseModel):
    completion_id: Optional[int] = None


class ApprovalDecision(BaseModel):
    completion_id: Optional[int] = None
    action: str = ""
    rejection_reason: Optional[str] = None


class AwardInput(BaseModel):
    name: str = Field(min_length=1)
    icon: Optional[str] = None
    threshold_points: int = Field(ge=0)


class ExchangeRequest(BaseModel):
    stars: int = 0
    note: Optional[str] = None


class ExchangeDecision(BaseModel):
    action: str = ""
