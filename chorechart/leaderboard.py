import os
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from .models import (
    Award,
    Chore,
    ChoreAssignment,
    ChoreCompletion,
    ChoreInstance,
    ChoreSchedule,
    CompletionStatus,
    ExchangeStatus,
    Role,
    StarExchange,
    User,
)
from .scoring import (
    HYBRID_WEIGHTS,
    RANKING_POLICY,
    compute_hybrid_score,
    compute_streak,
    expected_due_for_week,
    percent,
    ranking_key,
    round_half_up,
)
from .stars import StarSnapshot, recompute_star_weeks_for_kid
from .week import day_key, start_of_week_monday

STREAK_LOOKBACK_DAYS = int(os.getenv("LEADERBOARD_STREAK_LOOKBACK_DAYS", "180"))


def kid_payload(user: User) -> dict:
    return {"id": user.id, "name": user.name, "username": user.username, "email": user.email}


def award_payload(award: Award) -> dict:
    return {
        "id": award.id,
        "name": award.name,
        "icon": award.icon,
        "threshold_points": award.threshold_points,
    }


def get_family_awards(session: Session, family_id: int) -> list[Award]:
    return session.exec(
        select(Award).where(Award.family_id == family_id).order_by(Award.threshold_points, Award.id)
    ).all()


def get_visible_kids(session: Session, family_id: int, active_only: bool = False) -> list[User]:
    statement = select(User).where(
        User.family_id == family_id,
        User.role == Role.KID,
        User.is_hidden == False,  # noqa: E712
    )
    if active_only:
        statement = statement.where(User.is_active == True)  # noqa: E712
    return session.exec(statement.order_by(User.name, User.username, User.email)).all()


def week_meta(week_start: date) -> dict:
    return {
        "week_start": week_start.isoformat(),
        "week_end": (week_start + timedelta(days=7)).isoformat(),
        "weights": dict(HYBRID_WEIGHTS),
    }


def _expected_due_by_kid(
    session: Session, family_id: int, kid_ids: list[int], week_start: date
) -> tuple[dict[int, int], dict[int, set[date]]]:
    expected = {kid_id: 0 for kid_id in kid_ids}
    due_days: dict[int, set[date]] = {kid_id: set() for kid_id in kid_ids}
    assignments = session.exec(
        select(ChoreAssignment)
        .join(Chore, Chore.id == ChoreAssignment.chore_id)
        .where(
            ChoreAssignment.user_id.in_(kid_ids),
            Chore.family_id == family_id,
            Chore.active == True,  # noqa: E712
        )
    ).all()
    chore_ids = {assignment.chore_id for assignment in assignments}
    schedules_by_chore: dict[int, list[ChoreSchedule]] = defaultdict(list)
    if chore_ids:
        for schedule in session.exec(
            select(ChoreSchedule).where(ChoreSchedule.chore_id.in_(chore_ids))
        ).all():
            schedules_by_chore[schedule.chore_id].append(schedule)
    for assignment in assignments:
        count, days = expected_due_for_week(schedules_by_chore[assignment.chore_id], week_start)
        expected[assignment.user_id] += count
        due_days[assignment.user_id].update(days)
    return expected, due_days


def _lifetime_points(session: Session, family_id: int, kid_ids: list[int]) -> dict[int, int]:
    rows = session.exec(
        select(ChoreCompletion.user_id, func.coalesce(func.sum(ChoreCompletion.points_earned), 0))
        .join(ChoreInstance, ChoreInstance.id == ChoreCompletion.chore_instance_id)
        .where(
            ChoreCompletion.user_id.in_(kid_ids),
            ChoreCompletion.status == CompletionStatus.APPROVED,
            ChoreInstance.family_id == family_id,
        )
        .group_by(ChoreCompletion.user_id)
    ).all()
    return {user_id: int(total) for user_id, total in rows}


def build_scoreboard(
    session: Session,
    family_id: int,
    now: Optional[datetime] = None,
    active_only: bool = False,
) -> tuple[list[dict], list[Award]]:
    now = now or datetime.now()
    today = day_key(now)
    week_start = start_of_week_monday(today)
    week_end = week_start + timedelta(days=7)
    kids = get_visible_kids(session, family_id, active_only=active_only)
    awards = get_family_awards(session, family_id)
    if not kids:
        return [], awards
    kid_ids = [kid.id for kid in kids]

    expected_by_kid, possible_days_by_kid = _expected_due_by_kid(
        session, family_id, kid_ids, week_start
    )
    lifetime_by_kid = _lifetime_points(session, family_id, kid_ids)

    since = now - timedelta(days=STREAK_LOOKBACK_DAYS)
    recent = session.exec(
        select(ChoreCompletion, ChoreInstance.due_date)
        .join(ChoreInstance, ChoreInstance.id == ChoreCompletion.chore_instance_id)
        .where(
            ChoreCompletion.user_id.in_(kid_ids),
            ChoreCompletion.status == CompletionStatus.APPROVED,
            ChoreCompletion.completed_at >= since,
            ChoreInstance.family_id == family_id,
        )
    ).all()

    activity_days: dict[int, set[date]] = defaultdict(set)
    latest_this_week: dict[tuple[int, int], tuple[ChoreCompletion, date]] = {}
    for completion, due_date in recent:
        activity_days[completion.user_id].add(day_key(completion.completed_at))
        if due_date < week_start or due_date >= week_end:
            continue
        key = (completion.user_id, completion.chore_instance_id)
        existing = latest_this_week.get(key)
        if existing is None or existing[0].completed_at < completion.completed_at:
            latest_this_week[key] = (completion, due_date)

    approved_by_kid: dict[int, int] = defaultdict(int)
    weekly_points_by_kid: dict[int, int] = defaultdict(int)
    active_days_by_kid: dict[int, set[date]] = defaultdict(set)
    for completion, due_date in latest_this_week.values():
        approved_by_kid[completion.user_id] += 1
        weekly_points_by_kid[completion.user_id] += completion.points_earned or 0
        active_days_by_kid[completion.user_id].add(due_date)

    rows = []
    for kid in kids:
        points = lifetime_by_kid.get(kid.id, 0)
        streak = compute_streak(activity_days[kid.id], today)
        hybrid = compute_hybrid_score(
            expected_due=expected_by_kid[kid.id],
            approved_count=approved_by_kid[kid.id],
            possible_active_days=len(possible_days_by_kid[kid.id]),
            active_days=len(active_days_by_kid[kid.id]),
            streak_days=streak,
        )
        earned = [award for award in awards if award.threshold_points <= points]
        next_award = next((award for award in awards if award.threshold_points > points), None)
        rows.append(
            {
                "kid": kid_payload(kid),
                "score": hybrid.score,
                "score_pct": hybrid.score_pct,
                "completion_rate": hybrid.completion_rate,
                "consistency_rate": hybrid.consistency_rate,
                "streak_factor": hybrid.streak_factor,
                "expected_due": expected_by_kid[kid.id],
                "approved_count": approved_by_kid[kid.id],
                "possible_active_days": len(possible_days_by_kid[kid.id]),
                "active_days": len(active_days_by_kid[kid.id]),
                "weekly_points": weekly_points_by_kid[kid.id],
                "points": points,
                "streak": streak,
                "awards_earned": [award_payload(award) for award in earned],
                "next_award": award_payload(next_award) if next_award else None,
            }
        )
    rows.sort(key=ranking_key)
    return rows, awards


def leaderboard(session: Session, family_id: int, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    rows, awards = build_scoreboard(session, family_id, now)
    meta = week_meta(start_of_week_monday(now))
    meta["ranking_policy"] = RANKING_POLICY
    return {
        "rows": rows,
        "awards": [award_payload(award) for award in awards],
        "meta": meta,
    }


def _spent_by_kid(session: Session, kid_ids: list[int]) -> dict[int, int]:
    rows = session.exec(
        select(StarExchange.user_id, func.coalesce(func.sum(StarExchange.stars), 0))
        .where(
            StarExchange.user_id.in_(kid_ids),
            StarExchange.status == ExchangeStatus.APPROVED,
        )
        .group_by(StarExchange.user_id)
    ).all()
    return {user_id: int(total) for user_id, total in rows}


def empty_totals() -> dict:
    return {
        "participants": 0,
        "weekly_coins": 0,
        "lifetime_coins": 0,
        "stars_earned": 0,
        "stars_balance": 0,
        "approved_this_week": 0,
        "expected_this_week": 0,
        "overall_completion_pct": 0,
        "overall_consistency_pct": 0,
        "avg_score_pct": 0,
        "avg_next_star_pct": 0,
    }


def family_stats(session: Session, family_id: int, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    meta = week_meta(start_of_week_monday(now))
    board, awards = build_scoreboard(session, family_id, now, active_only=True)
    if not board:
        return {"rows": [], "totals": empty_totals(), "meta": meta}

    kid_ids = [row["kid"]["id"] for row in board]
    spent_by_kid = _spent_by_kid(session, kid_ids)
    stars_by_kid: dict[int, StarSnapshot] = {
        kid_id: recompute_star_weeks_for_kid(session, kid_id, family_id, now) for kid_id in kid_ids
    }

    rows = []
    for rank, entry in enumerate(board, start=1):
        kid_id = entry["kid"]["id"]
        star = stars_by_kid[kid_id]
        spent = spent_by_kid.get(kid_id, 0)
        rows.append(
            {
                "rank": rank,
                "kid": entry["kid"],
                "score": entry["score"],
                "score_pct": entry["score_pct"],
                "completion_pct": percent(entry["completion_rate"]),
                "consistency_pct": percent(entry["consistency_rate"]),
                "streak_days": entry["streak"],
                "approved_this_week": entry["approved_count"],
                "expected_this_week": entry["expected_due"],
                "possible_active_days": entry["possible_active_days"],
                "active_days": entry["active_days"],
                "weekly_coins": entry["weekly_points"],
                "lifetime_coins": entry["points"],
                "stars_earned": star.total_stars,
                "stars_spent": spent,
                "star_balance": max(0, star.total_stars - spent),
                "carryover_pct": percent(star.carryover_progress),
                "current_week_pct": percent(star.current_week_progress),
                "next_star_pct": percent(star.progress_toward_next_star),
                "awards_unlocked": len(entry["awards_earned"]),
                "next_award": entry["next_award"],
            }
        )

    participants = len(rows)
    expected = sum(row["expected_this_week"] for row in rows)
    approved = sum(row["approved_this_week"] for row in rows)
    possible_days = sum(row["possible_active_days"] for row in rows)
    active_days = sum(row["active_days"] for row in rows)
    totals = {
        "participants": participants,
        "weekly_coins": sum(row["weekly_coins"] for row in rows),
        "lifetime_coins": sum(row["lifetime_coins"] for row in rows),
        "stars_earned": sum(row["stars_earned"] for row in rows),
        "stars_balance": sum(row["star_balance"] for row in rows),
        "approved_this_week": approved,
        "expected_this_week": expected,
        "overall_completion_pct": percent(approved / expected) if expected else 0,
        "overall_consistency_pct": percent(active_days / possible_days) if possible_days else 0,
        "avg_score_pct": round_half_up(sum(row["score_pct"] for row in rows) / participants),
        "avg_next_star_pct": round_half_up(sum(row["next_star_pct"] for row in rows) / participants),
    }
    return {"rows": rows, "totals": totals, "meta": meta}
