import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from .models import Frequency
from .week import week_days

HYBRID_WEIGHTS = {
    "completion_rate": 0.7,
    "consistency_rate": 0.2,
    "streak_factor": 0.1,
}

STREAK_TARGET_DAYS = 7
PREVIEW_PROGRESS_CAP = 0.99
RANKING_POLICY = "RANK_BY_NORMALIZED_SCORE_ONLY"


@dataclass
class HybridScore:
    completion_rate: float
    consistency_rate: float
    streak_factor: float
    score: float
    score_pct: int


@dataclass
class StarDistribution:
    earned_per_week: list[int] = field(default_factory=list)
    total_stars: int = 0
    progress_remainder: float = 0.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percent(rate: float) -> int:
    return round_half_up(rate * 100)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def compute_hybrid_score(
    expected_due: int,
    approved_count: int,
    possible_active_days: int,
    active_days: int,
    streak_days: int,
) -> HybridScore:
    expected_due = max(0, expected_due)
    approved_count = max(0, approved_count)
    possible_active_days = max(0, possible_active_days)
    active_days = max(0, active_days)
    streak_days = max(0, streak_days)

    completion_rate = min(1.0, approved_count / expected_due) if expected_due > 0 else 0.0
    consistency_rate = (
        min(1.0, active_days / possible_active_days) if possible_active_days > 0 else 0.0
    )
    streak_factor = min(1.0, streak_days / STREAK_TARGET_DAYS)

    raw = (
        HYBRID_WEIGHTS["completion_rate"] * completion_rate
        + HYBRID_WEIGHTS["consistency_rate"] * consistency_rate
        + HYBRID_WEIGHTS["streak_factor"] * streak_factor
    )
    score = _clamp(round(raw, 6))
    return HybridScore(
        completion_rate=completion_rate,
        consistency_rate=consistency_rate,
        streak_factor=streak_factor,
        score=score,
        score_pct=percent(score),
    )


def compute_streak(days: Iterable[date], today: date) -> int:
    active = set(days)
    if not active:
        return 0
    yesterday = today - timedelta(days=1)
    if today in active:
        end: Optional[date] = today
    elif yesterday in active:
        end = yesterday
    else:
        return 0

    streak = 0
    while end in active:
        streak += 1
        end = end - timedelta(days=1)
    return streak


def distribute_stars_from_weekly_scores(scores: Sequence[float]) -> StarDistribution:
    # partial progress carries into the next week
    distribution = StarDistribution()
    progress = 0.0
    for raw in scores:
        score = _clamp(raw) if raw is not None and math.isfinite(raw) else 0.0
        progress += score
        cumulative = math.floor(progress + 1e-9)
        distribution.earned_per_week.append(max(0, cumulative - distribution.total_stars))
        distribution.total_stars = cumulative
    distribution.progress_remainder = round(progress - distribution.total_stars, 6)
    return distribution


def expected_due_for_week(schedules, week_start: date) -> tuple[int, set[date]]:
    # a chore without any schedule counts as daily
    if not schedules:
        schedules = [(Frequency.DAILY, None)]
    count = 0
    due_days: set[date] = set()
    for schedule in schedules:
        if isinstance(schedule, tuple):
            frequency, day_of_week = schedule
        else:
            frequency, day_of_week = schedule.frequency, schedule.day_of_week
        if frequency == Frequency.DAILY:
            count += 7
            due_days.update(week_days(week_start))
            continue
        if (
            frequency == Frequency.WEEKLY
            and isinstance(day_of_week, int)
            and 0 <= day_of_week <= 6
        ):
            count += 1
            # day_of_week counts from Sunday, week_start is a Monday
            due_days.add(week_start + timedelta(days=(day_of_week + 6) % 7))
    return count, due_days


def is_due_on(schedules, day: date) -> bool:
    _, due_days = expected_due_for_week(schedules, day - timedelta(days=day.weekday()))
    return day in due_days


def ranking_key(row: dict):
    kid = row["kid"]
    return (
        -row["score"],
        -row["completion_rate"],
        -row["consistency_rate"],
        -row["streak"],
        (kid.get("name") or kid.get("email") or "").lower(),
    )
