from datetime import date, datetime

import pytest

from chorechart.models import Frequency
from chorechart.scoring import (
    compute_hybrid_score,
    compute_streak,
    distribute_stars_from_weekly_scores,
    expected_due_for_week,
    is_due_on,
    percent,
    ranking_key,
)
from chorechart.week import (
    add_days,
    day_key,
    start_of_week_monday,
    week_days,
    week_starts_between,
)


def test_day_key_drops_time():
    assert day_key(datetime(2026, 2, 18, 22, 31)) == date(2026, 2, 18)
    assert day_key(date(2026, 2, 18)) == date(2026, 2, 18)


def test_week_starts_on_monday():
    # 2026-02-18 is a Wednesday, 2026-02-22 a Sunday
    assert start_of_week_monday(date(2026, 2, 18)) == date(2026, 2, 16)
    assert start_of_week_monday(datetime(2026, 2, 22, 23, 59)) == date(2026, 2, 16)
    assert start_of_week_monday(date(2026, 2, 16)) == date(2026, 2, 16)
    assert add_days(date(2026, 2, 16), 7) == date(2026, 2, 23)
    days = week_days(date(2026, 2, 16))
    assert days[0] == date(2026, 2, 16)
    assert days[-1] == date(2026, 2, 22)


def test_week_starts_between_excludes_end():
    assert week_starts_between(date(2026, 2, 4), date(2026, 2, 16)) == [
        date(2026, 2, 2),
        date(2026, 2, 9),
    ]
    assert week_starts_between(date(2026, 2, 16), date(2026, 2, 16)) == []


def test_streak_is_zero_without_recent_activity():
    today = date(2026, 2, 18)
    assert compute_streak([date(2026, 2, 10), date(2026, 2, 11)], today) == 0
    assert compute_streak([], today) == 0


def test_streak_ending_today():
    today = date(2026, 2, 18)
    days = [date(2026, 2, 16), date(2026, 2, 17), date(2026, 2, 18)]
    assert compute_streak(days, today) == 3


def test_streak_ending_yesterday_when_today_is_empty():
    today = date(2026, 2, 18)
    days = [date(2026, 2, 15), date(2026, 2, 16), date(2026, 2, 17)]
    assert compute_streak(days, today) == 3


def test_streak_stops_at_gap():
    today = date(2026, 2, 18)
    days = [date(2026, 2, 14), date(2026, 2, 16), date(2026, 2, 17), date(2026, 2, 18)]
    assert compute_streak(days, today) == 3


def test_hybrid_score_weights():
    out = compute_hybrid_score(
        expected_due=10,
        approved_count=8,
        possible_active_days=5,
        active_days=4,
        streak_days=4,
    )
    assert out.completion_rate == pytest.approx(0.8)
    assert out.consistency_rate == pytest.approx(0.8)
    assert out.streak_factor == pytest.approx(4 / 7)
    assert out.score == pytest.approx(0.777142, abs=1e-5)
    assert out.score_pct == 78


def test_hybrid_score_clamps_rates():
    out = compute_hybrid_score(
        expected_due=2,
        approved_count=5,
        possible_active_days=3,
        active_days=9,
        streak_days=12,
    )
    assert out.completion_rate == 1
    assert out.consistency_rate == 1
    assert out.streak_factor == 1
    assert out.score == 1
    assert out.score_pct == 100


def test_hybrid_score_with_nothing_due():
    out = compute_hybrid_score(0, 0, 0, 0, 0)
    assert out.score == 0
    assert out.score_pct == 0


def test_percent_rounds_half_up():
    assert percent(0.125) == 13
    assert percent(0.5) == 50
    assert percent(0.994) == 99


def test_stars_carry_partial_progress():
    out = distribute_stars_from_weekly_scores([0.4, 0.3, 0.5])
    assert out.earned_per_week == [0, 0, 1]
    assert out.total_stars == 1
    assert out.progress_remainder == pytest.approx(0.2)


def test_stars_in_consecutive_high_weeks():
    out = distribute_stars_from_weekly_scores([0.95, 0.95, 0.95])
    assert out.earned_per_week == [0, 1, 1]
    assert out.total_stars == 2
    assert out.progress_remainder == pytest.approx(0.85)


def test_stars_clamp_invalid_scores():
    out = distribute_stars_from_weekly_scores([2, -1, float("nan"), 0.25])
    assert out.earned_per_week == [1, 0, 0, 0]
    assert out.total_stars == 1
    assert out.progress_remainder == pytest.approx(0.25)


def test_expected_due_daily_and_weekly():
    monday = date(2026, 2, 16)
    count, days = expected_due_for_week([(Frequency.DAILY, None)], monday)
    assert count == 7
    assert len(days) == 7

    # 0 is Sunday, the last day of a Monday-based week
    count, days = expected_due_for_week([(Frequency.WEEKLY, 0)], monday)
    assert count == 1
    assert days == {date(2026, 2, 22)}

    count, days = expected_due_for_week([(Frequency.WEEKLY, 3)], monday)
    assert days == {date(2026, 2, 18)}


def test_expected_due_ignores_bad_weekday_and_defaults_to_daily():
    monday = date(2026, 2, 16)
    assert expected_due_for_week([(Frequency.WEEKLY, 9)], monday) == (0, set())
    assert expected_due_for_week([], monday)[0] == 7


def test_is_due_on_weekly_day():
    assert is_due_on([(Frequency.WEEKLY, 3)], date(2026, 2, 18))
    assert not is_due_on([(Frequency.WEEKLY, 3)], date(2026, 2, 19))


def test_ranking_ignores_points_and_breaks_ties_by_name():
    rows = [
        {"kid": {"name": "Zed"}, "score": 0.5, "completion_rate": 0.5,
         "consistency_rate": 0.5, "streak": 1, "points": 999},
        {"kid": {"name": "amy"}, "score": 0.5, "completion_rate": 0.5,
         "consistency_rate": 0.5, "streak": 1, "points": 0},
        {"kid": {"name": "Bob"}, "score": 0.9, "completion_rate": 0.9,
         "consistency_rate": 0.9, "streak": 0, "points": 1},
    ]
    ordered = [row["kid"]["name"] for row in sorted(rows, key=ranking_key)]
    assert ordered == ["Bob", "amy", "Zed"]
