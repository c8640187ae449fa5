import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from .models import (
    Chore,
    ChoreAssignment,
    ChoreCompletion,
    ChoreInstance,
    CompletionStatus,
    ExchangeStatus,
    StarExchange,
    StarWeek,
)
from .scoring import (
    PREVIEW_PROGRESS_CAP,
    compute_hybrid_score,
    compute_streak,
    distribute_stars_from_weekly_scores,
)
from .week import day_key, start_of_week_monday, week_starts_between

logger = logging.getLogger(__name__)


@dataclass
class StarSnapshot:
    total_stars: int = 0
    carryover_progress: float = 0.0
    current_week_progress: float = 0.0
    progress_toward_next_star: float = 0.0

    def as_dict(self) -> dict:
        return {
            "total_stars": self.total_stars,
            "carryover_progress": self.carryover_progress,
            "current_week_progress": self.current_week_progress,
            "progress_toward_next_star": self.progress_toward_next_star,
        }


def total_stars_earned(session: Session, user_id: int) -> int:
    total = session.exec(
        select(func.coalesce(func.sum(StarWeek.earned), 0)).where(StarWeek.user_id == user_id)
    ).one()
    return int(total or 0)


def stars_spent(session: Session, user_id: int) -> int:
    total = session.exec(
        select(func.coalesce(func.sum(StarExchange.stars), 0)).where(
            StarExchange.user_id == user_id,
            StarExchange.status == ExchangeStatus.APPROVED,
        )
    ).one()
    return int(total or 0)


def star_balance(session: Session, user_id: int) -> int:
    return max(0, total_stars_earned(session, user_id) - stars_spent(session, user_id))


def assigned_chore_ids(session: Session, user_id: int, family_id: int) -> list[int]:
    rows = session.exec(
        select(ChoreAssignment.chore_id)
        .join(Chore, Chore.id == ChoreAssignment.chore_id)
        .where(ChoreAssignment.user_id == user_id, Chore.family_id == family_id)
    ).all()
    return sorted(set(rows))


def _instances_between(
    session: Session, family_id: int, chore_ids: list[int], start: date, end: date
) -> list[ChoreInstance]:
    return session.exec(
        select(ChoreInstance).where(
            ChoreInstance.family_id == family_id,
            ChoreInstance.chore_id.in_(chore_ids),
            ChoreInstance.due_date >= start,
            ChoreInstance.due_date < end,
        )
    ).all()


def latest_approved_by_instance(
    session: Session, user_id: int, instance_ids: Iterable[int]
) -> dict[int, ChoreCompletion]:
    instance_ids = list(instance_ids)
    if not instance_ids:
        return {}
    completions = session.exec(
        select(ChoreCompletion)
        .where(
            ChoreCompletion.user_id == user_id,
            ChoreCompletion.status == CompletionStatus.APPROVED,
            ChoreCompletion.chore_instance_id.in_(instance_ids),
        )
        .order_by(ChoreCompletion.completed_at)
    ).all()
    latest: dict[int, ChoreCompletion] = {}
    for completion in completions:
        existing = latest.get(completion.chore_instance_id)
        if existing is None or existing.completed_at < completion.completed_at:
            latest[completion.chore_instance_id] = completion
    return latest


def _store_star_weeks(
    session: Session, user_id: int, week_starts: list[date], earned_per_week: list[int], now: datetime
) -> list[tuple[date, int]]:
    existing = {
        row.week_start: row
        for row in session.exec(
            select(StarWeek).where(
                StarWeek.user_id == user_id, StarWeek.week_start.in_(week_starts)
            )
        ).all()
    }
    newly_awarded: list[tuple[date, int]] = []
    for week_start, earned in zip(week_starts, earned_per_week):
        row = existing.get(week_start)
        previous = row.earned if row else 0
        if earned > previous:
            newly_awarded.append((week_start, earned - previous))
        if row is None:
            row = StarWeek(user_id=user_id, week_start=week_start, earned=earned, computed_at=now)
        else:
            row.earned = earned
            row.computed_at = now
        session.add(row)
    session.commit()
    return newly_awarded


def recompute_star_weeks_for_kid(
    session: Session,
    user_id: int,
    family_id: int,
    now: Optional[datetime] = None,
) -> StarSnapshot:
    now = now or datetime.now()
    today = day_key(now)
    current_week_start = start_of_week_monday(today)
    current_week_end = current_week_start + timedelta(days=7)

    chore_ids = assigned_chore_ids(session, user_id, family_id)
    if not chore_ids:
        return StarSnapshot(total_stars=total_stars_earned(session, user_id))

    first_due = session.exec(
        select(ChoreInstance.due_date)
        .where(
            ChoreInstance.family_id == family_id,
            ChoreInstance.chore_id.in_(chore_ids),
            ChoreInstance.due_date < current_week_start,
        )
        .order_by(ChoreInstance.due_date)
        .limit(1)
    ).first()
    start_week = start_of_week_monday(first_due) if first_due else current_week_start
    week_starts = week_starts_between(start_week, current_week_start) if first_due else []

    closed_instances = _instances_between(
        session, family_id, chore_ids, start_week, current_week_start
    )
    instance_by_id = {inst.id: inst for inst in closed_instances}
    expected_by_week: Counter = Counter()
    possible_days_by_week: dict[date, set[date]] = defaultdict(set)
    for inst in closed_instances:
        week_key = start_of_week_monday(inst.due_date)
        expected_by_week[week_key] += 1
        possible_days_by_week[week_key].add(inst.due_date)

    approved_by_week: Counter = Counter()
    active_days_by_week: dict[date, set[date]] = defaultdict(set)
    activity_days: set[date] = set()
    for instance_id, completion in latest_approved_by_instance(
        session, user_id, instance_by_id
    ).items():
        inst = instance_by_id[instance_id]
        week_key = start_of_week_monday(inst.due_date)
        approved_by_week[week_key] += 1
        active_days_by_week[week_key].add(inst.due_date)
        activity_days.add(day_key(completion.completed_at))

    sorted_activity = sorted(activity_days)
    active_to_date: set[date] = set()
    cursor = 0
    weekly_scores: list[float] = []
    for week_start in week_starts:
        week_end_day = week_start + timedelta(days=6)
        while cursor < len(sorted_activity) and sorted_activity[cursor] <= week_end_day:
            active_to_date.add(sorted_activity[cursor])
            cursor += 1
        hybrid = compute_hybrid_score(
            expected_due=expected_by_week[week_start],
            approved_count=approved_by_week[week_start],
            possible_active_days=len(possible_days_by_week[week_start]),
            active_days=len(active_days_by_week[week_start]),
            streak_days=compute_streak(active_to_date, week_end_day),
        )
        weekly_scores.append(hybrid.score)

    distribution = distribute_stars_from_weekly_scores(weekly_scores)
    if week_starts:
        newly_awarded = _store_star_weeks(
            session, user_id, week_starts, distribution.earned_per_week, now
        )
        if newly_awarded:
            gained = sum(count for _, count in newly_awarded)
            latest_week = max(week for week, _ in newly_awarded)
            logger.info(
                "user %s earned %s new star(s), latest in week of %s",
                user_id,
                gained,
                latest_week.isoformat(),
            )

    current_instances = _instances_between(
        session, family_id, chore_ids, current_week_start, current_week_end
    )
    current_by_id = {inst.id: inst for inst in current_instances}
    latest_current = latest_approved_by_instance(session, user_id, current_by_id)

    streak_days = session.exec(
        select(ChoreCompletion.completed_at)
        .join(ChoreInstance, ChoreInstance.id == ChoreCompletion.chore_instance_id)
        .where(
            ChoreCompletion.user_id == user_id,
            ChoreCompletion.status == CompletionStatus.APPROVED,
            ChoreCompletion.completed_at >= datetime.combine(start_week, time.min),
            ChoreCompletion.completed_at < datetime.combine(current_week_end, time.min),
            ChoreInstance.family_id == family_id,
            ChoreInstance.chore_id.in_(chore_ids),
        )
    ).all()
    current = compute_hybrid_score(
        expected_due=len(current_instances),
        approved_count=len(latest_current),
        possible_active_days=len({inst.due_date for inst in current_instances}),
        active_days=len({current_by_id[instance_id].due_date for instance_id in latest_current}),
        streak_days=compute_streak({day_key(moment) for moment in streak_days}, today),
    )

    carryover = distribution.progress_remainder
    return StarSnapshot(
        total_stars=(
            distribution.total_stars if week_starts else total_stars_earned(session, user_id)
        ),
        carryover_progress=carryover,
        current_week_progress=current.score,
        progress_toward_next_star=min(PREVIEW_PROGRESS_CAP, round(carryover + current.score, 6)),
    )
