import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, time, timedelta
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlmodel import Session, select
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from .auth import (
    MIN_PASSWORD_LENGTH,
    authenticate,
    hash_password,
    login_user,
    logout_user,
    normalize_username,
    require_adult,
    require_kid,
    require_user,
)
from .db import get_session, init_db
from .leaderboard import (
    award_payload,
    family_stats,
    get_family_awards,
    get_visible_kids,
    kid_payload,
    leaderboard,
)
from .models import (
    Award,
    Chore,
    ChoreAssignment,
    ChoreCompletion,
    ChoreInstance,
    ChoreSchedule,
    CompletionStatus,
    ExchangeStatus,
    Family,
    Frequency,
    Role,
    StarExchange,
    StarWeek,
    User,
    UserAward,
)
from .schemas import (
    ApprovalDecision,
    AwardInput,
    ChoreInput,
    CompleteRequest,
    ExchangeDecision,
    ExchangeRequest,
    LoginRequest,
    MemberCreate,
    MemberUpdate,
    RegisterRequest,
    UndoRequest,
)
from .scoring import is_due_on
from .stars import recompute_star_weeks_for_kid, star_balance, total_stars_earned
from .week import start_of_week_monday

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

MAX_REJECTION_REASON = 500
DECISIONS = ("APPROVE", "REJECT")


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="Chorechart", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=os.getenv("SESSION_SECRET", "dev-secret"),
    session_cookie=os.getenv("SESSION_COOKIE", "chorechart_session"),
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError):
    logger.debug("rejected request body: %s", exc.errors())
    return JSONResponse({"error": "Invalid input"}, status_code=400)


def get_now() -> datetime:
    return datetime.now()


def bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=400, detail=detail)


def member_payload(user: User) -> dict:
    return {
        "id": user.id,
        "family_id": user.family_id,
        "username": user.username,
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "is_active": user.is_active,
        "is_hidden": user.is_hidden,
        "avatar_url": user.avatar_url,
        "created_at": user.created_at,
    }


def username_taken(session: Session, username: str, exclude_id: Optional[int] = None) -> bool:
    existing = session.exec(select(User).where(User.username == username)).first()
    return bool(existing and existing.id != exclude_id)


def check_password(password: str):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise bad_request(f"Password must be at least {MIN_PASSWORD_LENGTH} chars")


def get_member(session: Session, family_id: int, member_id: int) -> User:
    member = session.exec(
        select(User).where(User.id == member_id, User.family_id == family_id)
    ).first()
    if not member:
        raise HTTPException(status_code=404, detail="Not found")
    return member


def get_chore(session: Session, family_id: int, chore_id: int) -> Chore:
    chore = session.exec(
        select(Chore).where(Chore.id == chore_id, Chore.family_id == family_id)
    ).first()
    if not chore:
        raise HTTPException(status_code=404, detail="Not found")
    return chore


def get_award(session: Session, family_id: int, award_id: int) -> Award:
    award = session.exec(
        select(Award).where(Award.id == award_id, Award.family_id == family_id)
    ).first()
    if not award:
        raise HTTPException(status_code=404, detail="Not found")
    return award


def get_exchange(session: Session, family_id: int, exchange_id: int) -> StarExchange:
    exchange = session.exec(
        select(StarExchange)
        .join(User, User.id == StarExchange.user_id)
        .where(StarExchange.id == exchange_id, User.family_id == family_id)
    ).first()
    if not exchange:
        raise HTTPException(status_code=404, detail="Not found")
    return exchange


def validate_chore_input(session: Session, family_id: int, body: ChoreInput) -> dict:
    title = (body.title or "").strip()
    if not title:
        raise bad_request("Title required")
    if body.points < 0:
        raise bad_request("Invalid points")
    day_of_week = body.day_of_week if body.frequency == Frequency.WEEKLY else None
    if body.frequency == Frequency.WEEKLY and (day_of_week is None or not 0 <= day_of_week <= 6):
        raise bad_request("Invalid day_of_week (0=Sun..6=Sat)")
    kid_ids = list(dict.fromkeys(body.assigned_kid_ids))
    if kid_ids:
        count = session.exec(
            select(func.count(User.id)).where(
                User.id.in_(kid_ids), User.family_id == family_id, User.role == Role.KID
            )
        ).one()
        if count != len(kid_ids):
            raise bad_request("Invalid kid assignment")
    return {
        "title": title,
        "description": body.description or None,
        "points": body.points,
        "active": body.active,
        "frequency": body.frequency,
        "day_of_week": day_of_week,
        "kid_ids": kid_ids,
    }


def replace_schedule_and_assignments(session: Session, chore_id: int, values: dict):
    for schedule in session.exec(
        select(ChoreSchedule).where(ChoreSchedule.chore_id == chore_id)
    ).all():
        session.delete(schedule)
    for assignment in session.exec(
        select(ChoreAssignment).where(ChoreAssignment.chore_id == chore_id)
    ).all():
        session.delete(assignment)
    session.add(
        ChoreSchedule(
            chore_id=chore_id,
            frequency=values["frequency"],
            day_of_week=values["day_of_week"],
        )
    )
    for kid_id in values["kid_ids"]:
        session.add(ChoreAssignment(chore_id=chore_id, user_id=kid_id))


def schedule_payload(schedule: Optional[ChoreSchedule]) -> dict:
    if not schedule:
        return {"frequency": Frequency.DAILY.value, "day_of_week": None}
    return {"frequency": schedule.frequency.value, "day_of_week": schedule.day_of_week}


def get_schedules_by_chore(session: Session, chore_ids) -> dict[int, list[ChoreSchedule]]:
    schedules: dict[int, list[ChoreSchedule]] = {chore_id: [] for chore_id in chore_ids}
    if not schedules:
        return schedules
    for schedule in session.exec(
        select(ChoreSchedule)
        .where(ChoreSchedule.chore_id.in_(list(schedules)))
        .order_by(ChoreSchedule.id)
    ).all():
        schedules[schedule.chore_id].append(schedule)
    return schedules


def assigned_chores_subquery(user_id: int):
    return select(ChoreAssignment.chore_id).where(ChoreAssignment.user_id == user_id)


def latest_completion(session: Session, instance_id: int, user_id: int) -> Optional[ChoreCompletion]:
    return session.exec(
        select(ChoreCompletion)
        .where(
            ChoreCompletion.chore_instance_id == instance_id,
            ChoreCompletion.user_id == user_id,
        )
        .order_by(ChoreCompletion.completed_at.desc(), ChoreCompletion.id.desc())
    ).first()


def lifetime_approved_points(session: Session, user_id: int) -> int:
    total = session.exec(
        select(func.coalesce(func.sum(ChoreCompletion.points_earned), 0)).where(
            ChoreCompletion.user_id == user_id,
            ChoreCompletion.status == CompletionStatus.APPROVED,
        )
    ).one()
    return int(total or 0)


def grant_awards(session: Session, user_id: int, family_id: int, completion_id: int) -> list[Award]:
    total_points = lifetime_approved_points(session, user_id)
    have = set(
        session.exec(select(UserAward.award_id).where(UserAward.user_id == user_id)).all()
    )
    to_grant = [
        award
        for award in get_family_awards(session, family_id)
        if award.threshold_points <= total_points and award.id not in have
    ]
    for award in to_grant:
        session.add(UserAward(user_id=user_id, award_id=award.id, completion_id=completion_id))
    if to_grant:
        session.commit()
        logger.info(
            "granted awards %s to user %s at %s points",
            [award.name for award in to_grant],
            user_id,
            total_points,
        )
    return to_grant


def exchange_payload(exchange: StarExchange) -> dict:
    return {
        "id": exchange.id,
        "stars": exchange.stars,
        "note": exchange.note,
        "status": exchange.status.value,
        "requested_at": exchange.requested_at,
        "reviewed_at": exchange.reviewed_at,
    }


# Accounts


@app.post("/api/register")
def register(
    request: Request,
    body: RegisterRequest,
    session: Session = Depends(get_session),
):
    family_name = body.family_name.strip()
    username = normalize_username(body.username)
    email = body.email.strip().lower()
    if not family_name:
        raise bad_request("Family name required")
    if not username:
        raise bad_request("Username required")
    if not email:
        raise bad_request("Email required")
    check_password(body.password)
    if username_taken(session, username):
        raise bad_request("Username already taken")
    family = Family(name=family_name)
    session.add(family)
    session.commit()
    session.refresh(family)
    user = User(
        family_id=family.id,
        username=username,
        email=email,
        name=(body.name or "").strip() or None,
        role=Role.ADULT,
        hashed_password=hash_password(body.password),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    login_user(request, user)
    logger.info("registered family %s with adult %s", family.id, user.username)
    return {"ok": True, "me": member_payload(user)}


@app.post("/api/auth/login")
def login(
    request: Request,
    body: LoginRequest,
    session: Session = Depends(get_session),
):
    user = authenticate(session, body.username, body.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    login_user(request, user)
    return {"ok": True, "me": member_payload(user)}


@app.post("/api/auth/logout")
def logout(request: Request):
    logout_user(request)
    return {"ok": True}


@app.get("/api/me")
def me(user: User = Depends(require_user)):
    return {"me": member_payload(user)}


@app.get("/api/admin/family-members")
def list_family_members(
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    members = session.exec(
        select(User)
        .where(User.family_id == user.family_id)
        .order_by(User.role, User.name, User.username)
    ).all()
    return {"members": [member_payload(member) for member in members]}


@app.post("/api/admin/family-members")
def create_family_member(
    body: MemberCreate,
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    username = normalize_username(body.username)
    email = body.email.strip().lower()
    if not username:
        raise bad_request("Username required")
    if not email:
        raise bad_request("Email required")
    check_password(body.password)
    if username_taken(session, username):
        raise bad_request("Username already taken")
    member = User(
        family_id=user.family_id,
        username=username,
        email=email,
        name=(body.name or "").strip() or None,
        role=Role.ADULT if body.role == Role.ADULT.value else Role.KID,
        hashed_password=hash_password(body.password),
    )
    session.add(member)
    session.commit()
    session.refresh(member)
    logger.info("family %s added %s member %s", user.family_id, member.role.value, member.username)
    return {"ok": True, "id": member.id}


@app.put("/api/admin/family-members/{member_id}")
def update_family_member(
    member_id: int,
    body: MemberUpdate,
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    member = get_member(session, user.family_id, member_id)
    if body.username is not None:
        username = normalize_username(body.username)
        if not username:
            raise bad_request("Username required")
        if username_taken(session, username, exclude_id=member.id):
            raise bad_request("Username already taken")
        member.username = username
    if body.email is not None:
        member.email = body.email.strip().lower()
    if body.name is not None:
        member.name = body.name.strip() or None
    if body.role is not None:
        member.role = body.role
    if body.is_active is not None:
        member.is_active = body.is_active
    if body.is_hidden is not None:
        member.is_hidden = body.is_hidden
    if body.password:
        check_password(body.password)
        member.hashed_password = hash_password(body.password)
    session.add(member)
    session.commit()
    return {"ok": True}


@app.get("/api/admin/meta")
def admin_meta(
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    kids = get_visible_kids(session, user.family_id, active_only=True)
    return {"kids": [kid_payload(kid) for kid in kids]}


# Chores


@app.get("/api/admin/chores")
def list_chores(
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    chores = session.exec(
        select(Chore)
        .where(Chore.family_id == user.family_id)
        .order_by(Chore.active.desc(), Chore.title)
    ).all()
    chore_ids = [chore.id for chore in chores]
    schedules = get_schedules_by_chore(session, chore_ids)
    kids_by_chore: dict[int, list[int]] = {chore_id: [] for chore_id in chore_ids}
    if chore_ids:
        rows = session.exec(
            select(ChoreAssignment.chore_id, ChoreAssignment.user_id)
            .join(User, User.id == ChoreAssignment.user_id)
            .where(ChoreAssignment.chore_id.in_(chore_ids), User.role == Role.KID)
            .order_by(ChoreAssignment.id)
        ).all()
        for chore_id, user_id in rows:
            kids_by_chore[chore_id].append(user_id)
    return {
        "chores": [
            {
                "id": chore.id,
                "title": chore.title,
                "description": chore.description,
                "points": chore.points,
                "active": chore.active,
                "assigned_kid_ids": kids_by_chore[chore.id],
                "schedule": schedule_payload(
                    schedules[chore.id][0] if schedules[chore.id] else None
                ),
            }
            for chore in chores
        ]
    }


@app.post("/api/admin/chores")
def create_chore(
    body: ChoreInput,
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    values = validate_chore_input(session, user.family_id, body)
    chore = Chore(
        family_id=user.family_id,
        title=values["title"],
        description=values["description"],
        points=values["points"],
        active=values["active"],
    )
    session.add(chore)
    session.commit()
    session.refresh(chore)
    replace_schedule_and_assignments(session, chore.id, values)
    session.commit()
    logger.info("family %s created chore %s (%s)", user.family_id, chore.id, chore.title)
    return {"ok": True, "id": chore.id}


@app.put("/api/admin/chores/{chore_id}")
def update_chore(
    chore_id: int,
    body: ChoreInput,
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    chore = get_chore(session, user.family_id, chore_id)
    values = validate_chore_input(session, user.family_id, body)
    chore.title = values["title"]
    chore.description = values["description"]
    chore.points = values["points"]
    chore.active = values["active"]
    session.add(chore)
    replace_schedule_and_assignments(session, chore.id, values)
    session.commit()
    logger.info("family %s updated chore %s", user.family_id, chore.id)
    return {"ok": True}


@app.delete("/api/admin/chores/{chore_id}")
def delete_chore(
    chore_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    chore = get_chore(session, user.family_id, chore_id)
    instance_ids = session.exec(
        select(ChoreInstance.id).where(ChoreInstance.chore_id == chore.id)
    ).all()
    if instance_ids:
        completions = session.exec(
            select(ChoreCompletion).where(ChoreCompletion.chore_instance_id.in_(instance_ids))
        ).all()
        completion_ids = [completion.id for completion in completions]
        if completion_ids:
            for user_award in session.exec(
                select(UserAward).where(UserAward.completion_id.in_(completion_ids))
            ).all():
                user_award.completion_id = None
                session.add(user_award)
        for completion in completions:
            session.delete(completion)
        for instance in session.exec(
            select(ChoreInstance).where(ChoreInstance.id.in_(instance_ids))
        ).all():
            session.delete(instance)
    for model in (ChoreAssignment, ChoreSchedule):
        for row in session.exec(select(model).where(model.chore_id == chore.id)).all():
            session.delete(row)
    session.flush()
    session.delete(chore)
    session.commit()
    logger.info("family %s deleted chore %s", user.family_id, chore_id)
    return {"ok": True}


@app.get("/api/my-chores")
def my_chores(
    session: Session = Depends(get_session),
    user: User = Depends(require_user),
    now: datetime = Depends(get_now),
):
    today = now.date()
    chores = session.exec(
        select(Chore)
        .where(
            Chore.family_id == user.family_id,
            Chore.active == True,  # noqa: E712
            Chore.id.in_(assigned_chores_subquery(user.id)),
        )
        .order_by(Chore.title)
    ).all()
    instances_by_chore: dict[int, ChoreInstance] = {}
    if chores:
        for instance in session.exec(
            select(ChoreInstance)
            .where(
                ChoreInstance.family_id == user.family_id,
                ChoreInstance.chore_id.in_([chore.id for chore in chores]),
                ChoreInstance.due_date == today,
            )
            .order_by(ChoreInstance.id)
        ).all():
            instances_by_chore[instance.chore_id] = instance
    rows = []
    for chore in chores:
        instance = instances_by_chore.get(chore.id)
        completion = latest_completion(session, instance.id, user.id) if instance else None
        rows.append(
            {
                "chore_id": chore.id,
                "title": chore.title,
                "description": chore.description,
                "points": chore.points,
                "today_instance_id": instance.id if instance else None,
                "today_due_date": instance.due_date if instance else None,
                "today_status": completion.status.value if completion else "NOT_DONE",
                "today_completion_id": completion.id if completion else None,
            }
        )
    all_done = (
        user.role == Role.KID
        and bool(rows)
        and all(row["today_status"] in ("PENDING", "APPROVED") for row in rows)
    )
    return {"me": member_payload(user), "chores": rows, "all_done": all_done}


@app.post("/api/chores/complete")
def complete_chore(
    body: CompleteRequest,
    session: Session = Depends(get_session),
    user: User = Depends(require_user),
    now: datetime = Depends(get_now),
):
    if not body.chore_id:
        raise bad_request("Missing chore_id")
    chore = session.exec(
        select(Chore).where(
            Chore.id == body.chore_id,
            Chore.family_id == user.family_id,
            Chore.active == True,  # noqa: E712
            Chore.id.in_(assigned_chores_subquery(user.id)),
        )
    ).first()
    if not chore:
        raise HTTPException(status_code=404, detail="Not found")

    today = now.date()
    instance = None
    if body.instance_id:
        instance = session.exec(
            select(ChoreInstance).where(
                ChoreInstance.id == body.instance_id,
                ChoreInstance.chore_id == chore.id,
                ChoreInstance.family_id == user.family_id,
                ChoreInstance.due_date == today,
            )
        ).first()
    if not instance:
        instance = session.exec(
            select(ChoreInstance).where(
                ChoreInstance.chore_id == chore.id,
                ChoreInstance.family_id == user.family_id,
                ChoreInstance.due_date == today,
            )
        ).first()
    if not instance:
        instance = ChoreInstance(chore_id=chore.id, family_id=user.family_id, due_date=today)
        session.add(instance)
        session.commit()
        session.refresh(instance)

    # a rejected completion may be resubmitted; anything else stands
    existing = latest_completion(session, instance.id, user.id)
    if existing and existing.status != CompletionStatus.REJECTED:
        return {"ok": True, "completion_id": existing.id, "status": existing.status.value}

    is_kid = user.role == Role.KID
    completion = ChoreCompletion(
        chore_instance_id=instance.id,
        user_id=user.id,
        status=CompletionStatus.PENDING if is_kid else CompletionStatus.APPROVED,
        points_earned=chore.points,
        completed_at=now,
        approved_at=None if is_kid else now,
        approved_by_id=None if is_kid else user.id,
    )
    session.add(completion)
    session.commit()
    session.refresh(completion)
    return {"ok": True, "completion_id": completion.id, "status": completion.status.value}


@app.post("/api/chores/undo")
def undo_completion(
    body: UndoRequest,
    session: Session = Depends(get_session),
    user: User = Depends(require_kid("Only kids can undo completion")),
):
    if not body.completion_id:
        raise bad_request("Missing completion_id")
    completion = session.exec(
        select(ChoreCompletion)
        .join(ChoreInstance, ChoreInstance.id == ChoreCompletion.chore_instance_id)
        .where(
            ChoreCompletion.id == body.completion_id,
            ChoreCompletion.user_id == user.id,
            ChoreInstance.family_id == user.family_id,
        )
    ).first()
    if not completion:
        raise HTTPException(status_code=404, detail="Completion not found")
    if completion.status == CompletionStatus.APPROVED:
        raise bad_request("Cannot undo after parent approval")
    if completion.status != CompletionStatus.PENDING:
        raise bad_request("Only pending completions can be undone")
    session.delete(completion)
    session.commit()
    return {"ok": True, "status": "NOT_DONE"}


@app.post("/api/instances/generate-today")
def generate_today_instances(
    session: Session = Depends(get_session),
    user: User = Depends(require_user),
    now: datetime = Depends(get_now),
):
    today = now.date()
    chores = session.exec(
        select(Chore).where(
            Chore.family_id == user.family_id,
            Chore.active == True,  # noqa: E712
        )
    ).all()
    schedules = get_schedules_by_chore(session, [chore.id for chore in chores])
    created = 0
    for chore in chores:
        if not schedules[chore.id] or not is_due_on(schedules[chore.id], today):
            continue
        exists = session.exec(
            select(ChoreInstance).where(
                ChoreInstance.chore_id == chore.id,
                ChoreInstance.family_id == user.family_id,
                ChoreInstance.due_date == today,
            )
        ).first()
        if not exists:
            session.add(ChoreInstance(chore_id=chore.id, family_id=user.family_id, due_date=today))
            created += 1
    if created:
        session.commit()
    return {"ok": True, "created": created}


# Approvals


@app.get("/api/admin/approvals")
def pending_approvals(
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    rows = session.exec(
        select(ChoreCompletion, ChoreInstance, Chore, User)
        .join(ChoreInstance, ChoreInstance.id == ChoreCompletion.chore_instance_id)
        .join(Chore, Chore.id == ChoreInstance.chore_id)
        .join(User, User.id == ChoreCompletion.user_id)
        .where(
            ChoreCompletion.status == CompletionStatus.PENDING,
            ChoreInstance.family_id == user.family_id,
        )
        .order_by(ChoreCompletion.completed_at.desc())
        .limit(200)
    ).all()
    return {
        "pending": [
            {
                "id": completion.id,
                "completed_at": completion.completed_at,
                "points_earned": completion.points_earned,
                "kid": {"id": kid.id, "name": kid.name, "email": kid.email},
                "chore": {"id": chore.id, "title": chore.title, "points": chore.points},
                "due_date": instance.due_date,
            }
            for completion, instance, chore, kid in rows
        ]
    }


@app.post("/api/admin/approvals")
def decide_approval(
    body: ApprovalDecision,
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
    now: datetime = Depends(get_now),
):
    reason = (body.rejection_reason or "").strip()
    if not body.completion_id:
        raise bad_request("Missing completion_id")
    if body.action not in DECISIONS:
        raise bad_request("Invalid action")
    if body.action == "REJECT" and not reason:
        raise bad_request("Rejection reason is required")
    if len(reason) > MAX_REJECTION_REASON:
        raise bad_request("Rejection reason is too long")

    completion = session.exec(
        select(ChoreCompletion)
        .join(ChoreInstance, ChoreInstance.id == ChoreCompletion.chore_instance_id)
        .where(
            ChoreCompletion.id == body.completion_id,
            ChoreCompletion.status == CompletionStatus.PENDING,
            ChoreInstance.family_id == user.family_id,
        )
    ).first()
    if not completion:
        raise HTTPException(status_code=404, detail="Not found")
    kid = session.get(User, completion.user_id)

    if body.action == "REJECT":
        completion.status = CompletionStatus.REJECTED
        completion.approved_at = None
        completion.approved_by_id = None
        completion.rejection_reason = reason
        session.add(completion)
        session.commit()
        logger.info("user %s rejected completion %s", user.id, completion.id)
        return {"ok": True, "status": CompletionStatus.REJECTED.value}

    completion.status = CompletionStatus.APPROVED
    completion.approved_at = now
    completion.approved_by_id = user.id
    completion.rejection_reason = None
    session.add(completion)
    session.commit()
    logger.info("user %s approved completion %s", user.id, completion.id)
    granted = []
    if kid and kid.role == Role.KID:
        granted = grant_awards(session, kid.id, user.family_id, completion.id)
    return {
        "ok": True,
        "status": CompletionStatus.APPROVED.value,
        "awards_granted": [award_payload(award) for award in granted],
    }


# Awards


@app.get("/api/awards")
def list_awards(
    session: Session = Depends(get_session),
    user: User = Depends(require_user),
):
    awards = get_family_awards(session, user.family_id)
    granted = session.exec(
        select(UserAward.award_id).where(UserAward.user_id == user.id)
    ).all()
    return {
        "awards": [award_payload(award) for award in awards],
        "granted_award_ids": sorted(granted),
    }


@app.post("/api/awards")
def create_award(
    body: AwardInput,
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    name = body.name.strip()
    if not name:
        raise bad_request("Invalid input")
    award = Award(
        family_id=user.family_id,
        name=name,
        icon=body.icon,
        threshold_points=body.threshold_points,
    )
    session.add(award)
    session.commit()
    session.refresh(award)
    return {"award": award_payload(award)}


@app.put("/api/awards/{award_id}")
def update_award(
    award_id: int,
    body: AwardInput,
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    award = get_award(session, user.family_id, award_id)
    name = body.name.strip()
    if not name:
        raise bad_request("Invalid input")
    award.name = name
    award.icon = body.icon
    award.threshold_points = body.threshold_points
    session.add(award)
    session.commit()
    session.refresh(award)
    return {"award": award_payload(award)}


@app.delete("/api/awards/{award_id}")
def delete_award(
    award_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    award = get_award(session, user.family_id, award_id)
    for user_award in session.exec(
        select(UserAward).where(UserAward.award_id == award.id)
    ).all():
        session.delete(user_award)
    session.flush()
    session.delete(award)
    session.commit()
    return {"ok": True}


# Scoring views


@app.get("/api/leaderboard")
def get_leaderboard(
    session: Session = Depends(get_session),
    user: User = Depends(require_user),
    now: datetime = Depends(get_now),
):
    return leaderboard(session, user.family_id, now)


@app.get("/api/admin/family-stats")
def get_family_stats(
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
    now: datetime = Depends(get_now),
):
    return family_stats(session, user.family_id, now)


@app.get("/api/stars")
def get_stars(
    session: Session = Depends(get_session),
    user: User = Depends(require_user),
    now: datetime = Depends(get_now),
):
    progress = None
    if user.role == Role.KID:
        progress = recompute_star_weeks_for_kid(session, user.id, user.family_id, now).as_dict()
    weeks = session.exec(
        select(StarWeek)
        .where(StarWeek.user_id == user.id)
        .order_by(StarWeek.week_start.desc())
        .limit(12)
    ).all()
    requests = session.exec(
        select(StarExchange)
        .where(StarExchange.user_id == user.id)
        .order_by(StarExchange.requested_at.desc(), StarExchange.id.desc())
        .limit(10)
    ).all()
    return {
        "me": member_payload(user),
        "weeks": [
            {"week_start": week.week_start, "earned": week.earned, "computed_at": week.computed_at}
            for week in weeks
        ],
        "balance": star_balance(session, user.id),
        "progress": progress,
        "requests": [exchange_payload(exchange) for exchange in requests],
    }


@app.post("/api/stars")
def request_star_exchange(
    body: ExchangeRequest,
    session: Session = Depends(get_session),
    user: User = Depends(require_kid("Only kids can request exchanges")),
    now: datetime = Depends(get_now),
):
    if body.stars <= 0:
        raise bad_request("Choose at least 1 star.")
    if body.stars > star_balance(session, user.id):
        raise bad_request("You do not have enough stars for that request.")
    exchange = StarExchange(
        user_id=user.id,
        stars=body.stars,
        note=(body.note or "").strip() or None,
        requested_at=now,
    )
    session.add(exchange)
    session.commit()
    session.refresh(exchange)
    return {"ok": True, "id": exchange.id}


@app.get("/api/admin/stars/exchanges")
def list_star_exchanges(
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    rows = session.exec(
        select(StarExchange, User)
        .join(User, User.id == StarExchange.user_id)
        .where(User.family_id == user.family_id)
        .order_by(StarExchange.requested_at.desc(), StarExchange.id.desc())
        .limit(50)
    ).all()
    reviewer_ids = {exchange.reviewed_by_id for exchange, _ in rows if exchange.reviewed_by_id}
    reviewers = {}
    if reviewer_ids:
        reviewers = {
            reviewer.id: reviewer
            for reviewer in session.exec(select(User).where(User.id.in_(reviewer_ids))).all()
        }
    exchanges = []
    for exchange, kid in rows:
        payload = exchange_payload(exchange)
        payload["user"] = {
            "id": kid.id,
            "name": kid.name,
            "username": kid.username,
            "role": kid.role.value,
        }
        reviewer = reviewers.get(exchange.reviewed_by_id)
        payload["reviewed_by"] = (
            {"id": reviewer.id, "name": reviewer.name, "username": reviewer.username}
            if reviewer
            else None
        )
        exchanges.append(payload)
    return {"exchanges": exchanges}


@app.post("/api/admin/stars/exchanges/{exchange_id}")
def decide_star_exchange(
    exchange_id: int,
    body: ExchangeDecision,
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
    now: datetime = Depends(get_now),
):
    if body.action not in DECISIONS:
        raise bad_request("Invalid action")
    exchange = get_exchange(session, user.family_id, exchange_id)
    if exchange.status != ExchangeStatus.PENDING:
        raise bad_request("Not pending")
    if body.action == "APPROVE":
        if exchange.stars > star_balance(session, exchange.user_id):
            raise bad_request("Not enough stars to approve this request")
        exchange.status = ExchangeStatus.APPROVED
    else:
        exchange.status = ExchangeStatus.REJECTED
    exchange.reviewed_at = now
    exchange.reviewed_by_id = user.id
    session.add(exchange)
    session.commit()
    logger.info(
        "user %s marked star exchange %s as %s", user.id, exchange.id, exchange.status.value
    )
    return {"ok": True, "status": exchange.status.value}


@app.get("/api/kid-summary")
def kid_summary(
    session: Session = Depends(get_session),
    user: User = Depends(require_kid("Kid view only")),
    now: datetime = Depends(get_now),
):
    week_start = start_of_week_monday(now)
    week_end = week_start + timedelta(days=7)
    weekly_points = session.exec(
        select(func.coalesce(func.sum(ChoreCompletion.points_earned), 0)).where(
            ChoreCompletion.user_id == user.id,
            ChoreCompletion.status == CompletionStatus.APPROVED,
            ChoreCompletion.completed_at >= datetime.combine(week_start, time.min),
            ChoreCompletion.completed_at < datetime.combine(week_end, time.min),
        )
    ).one()
    return {
        "weekly_points": int(weekly_points or 0),
        "total_stars_earned": total_stars_earned(session, user.id),
        "avatar_url": user.avatar_url,
        "week_start": week_start,
    }


@app.get("/api/config/overview")
def config_overview(
    session: Session = Depends(get_session),
    user: User = Depends(require_adult),
):
    users = session.exec(
        select(User).where(User.family_id == user.family_id).order_by(User.created_at, User.id)
    ).all()
    members = {member.id: member for member in users}
    chores = session.exec(
        select(Chore).where(Chore.family_id == user.family_id).order_by(Chore.created_at, Chore.id)
    ).all()
    chore_ids = [chore.id for chore in chores]
    schedules = get_schedules_by_chore(session, chore_ids)
    assignments: dict[int, list[int]] = {chore_id: [] for chore_id in chore_ids}
    if chore_ids:
        for assignment in session.exec(
            select(ChoreAssignment)
            .where(ChoreAssignment.chore_id.in_(chore_ids))
            .order_by(ChoreAssignment.id)
        ).all():
            assignments[assignment.chore_id].append(assignment.user_id)
    return {
        "users": [member_payload(member) for member in users],
        "awards": [award_payload(award) for award in get_family_awards(session, user.family_id)],
        "chores": [
            {
                "id": chore.id,
                "title": chore.title,
                "description": chore.description,
                "points": chore.points,
                "active": chore.active,
                "schedules": [schedule_payload(schedule) for schedule in schedules[chore.id]],
                "assignments": [
                    kid_payload(members[user_id])
                    for user_id in assignments[chore.id]
                    if user_id in members
                ],
            }
            for chore in chores
        ],
    }


@app.get("/health")
def health():
    return {"status": "ok"}
