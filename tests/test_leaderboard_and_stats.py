from datetime import date, datetime, time

import pytest
from sqlmodel import Session

from chorechart.models import ChoreCompletion, ChoreInstance, CompletionStatus

from conftest import add_member, create_chore, login, register_family


def approved_on(session: Session, chore_id: int, family_id: int, kid_id: int, day: date, points=2):
    instance = ChoreInstance(chore_id=chore_id, family_id=family_id, due_date=day)
    session.add(instance)
    session.commit()
    session.refresh(instance)
    moment = datetime.combine(day, time(9, 0))
    session.add(
        ChoreCompletion(
            chore_instance_id=instance.id,
            user_id=kid_id,
            status=CompletionStatus.APPROVED,
            points_earned=points,
            completed_at=moment,
            approved_at=moment,
        )
    )
    session.commit()
    return instance


@pytest.fixture
def family(client, session: Session):
    parent = register_family(client)
    amy = add_member(client, "amy", name="Amy")
    ben = add_member(client, "ben", name="Ben")
    hidden = add_member(client, "ghost", name="Ghost")
    client.put(f"/api/admin/family-members/{hidden}", json={"is_hidden": True})
    chore_id = create_chore(client, "Dishes", [amy, ben, hidden], points=2)

    family_id = parent["family_id"]
    # a big but old week for Ben, outside the streak window
    old = approved_on(session, chore_id, family_id, ben, date(2024, 6, 1), points=100)
    # Amy works Monday to Wednesday of the current week; each day has one shared instance
    for day in (date(2025, 1, 13), date(2025, 1, 14), date(2025, 1, 15)):
        approved_on(session, chore_id, family_id, amy, day)
    return {"amy": amy, "ben": ben, "hidden": hidden, "chore_id": chore_id, "old": old}


def test_leaderboard_ranks_by_normalized_score(client, family):
    data = client.get("/api/leaderboard").json()
    assert data["meta"]["week_start"] == "2025-01-13"
    assert data["meta"]["week_end"] == "2025-01-20"
    assert data["meta"]["ranking_policy"] == "RANK_BY_NORMALIZED_SCORE_ONLY"
    assert data["meta"]["weights"] == {
        "completion_rate": 0.7,
        "consistency_rate": 0.2,
        "streak_factor": 0.1,
    }

    rows = data["rows"]
    assert [row["kid"]["name"] for row in rows] == ["Amy", "Ben"]
    amy, ben = rows
    assert amy["expected_due"] == 7
    assert amy["approved_count"] == 3
    assert amy["active_days"] == 3
    assert amy["streak"] == 3
    assert amy["score"] == pytest.approx(0.428571)
    assert amy["score_pct"] == 43
    assert amy["weekly_points"] == 6

    # lifetime coins do not affect rank
    assert ben["points"] == 100
    assert ben["score"] == 0
    assert ben["streak"] == 0


def test_leaderboard_awards_progress(client, family):
    client.post("/api/awards", json={"name": "Bronze", "threshold_points": 5})
    client.post("/api/awards", json={"name": "Gold", "threshold_points": 50})
    rows = client.get("/api/leaderboard").json()["rows"]
    amy, ben = rows
    assert [a["name"] for a in amy["awards_earned"]] == ["Bronze"]
    assert amy["next_award"]["name"] == "Gold"
    assert [a["name"] for a in ben["awards_earned"]] == ["Bronze", "Gold"]
    assert ben["next_award"] is None


def test_family_stats(client, family):
    data = client.get("/api/admin/family-stats").json()
    amy, ben = data["rows"]
    assert amy["rank"] == 1
    assert amy["completion_pct"] == 43
    assert amy["current_week_pct"] == 94
    assert amy["carryover_pct"] == 0
    assert amy["next_star_pct"] == 94
    assert ben["rank"] == 2
    assert ben["stars_earned"] == 0
    assert ben["carryover_pct"] == 91
    assert ben["next_star_pct"] == 91

    totals = data["totals"]
    assert totals["participants"] == 2
    assert totals["approved_this_week"] == 3
    assert totals["expected_this_week"] == 14
    assert totals["overall_completion_pct"] == 21
    assert totals["avg_score_pct"] == 22
    assert totals["avg_next_star_pct"] == 93
    assert totals["lifetime_coins"] == 106


def test_family_stats_skips_inactive_kids(client):
    register_family(client)
    kid = add_member(client, "kid")
    client.put(f"/api/admin/family-members/{kid}", json={"is_active": False})
    data = client.get("/api/admin/family-stats").json()
    assert data["rows"] == []
    assert data["totals"]["participants"] == 0


def test_family_stats_is_adult_only(client, family):
    login(client, "amy", "kid1234")
    assert client.get("/api/admin/family-stats").status_code == 403
    assert client.get("/api/leaderboard").status_code == 200


def test_kid_summary(client, family):
    resp = client.get("/api/kid-summary")
    assert resp.status_code == 403
    assert resp.json()["error"] == "Kid view only"

    login(client, "amy", "kid1234")
    summary = client.get("/api/kid-summary").json()
    assert summary["weekly_points"] == 6
    assert summary["week_start"] == "2025-01-13"
