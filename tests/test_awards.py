from sqlmodel import Session, select

from chorechart.models import Award, UserAward

from conftest import add_member, create_chore, login, register_family


def create_award(client, name, threshold_points, icon=None):
    resp = client.post(
        "/api/awards",
        json={"name": name, "icon": icon, "threshold_points": threshold_points},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["award"]


def complete_and_approve(client, chore_id):
    login(client, "kid", "kid1234")
    completion_id = client.post("/api/chores/complete", json={"chore_id": chore_id}).json()[
        "completion_id"
    ]
    login(client, "parent", "parent1234")
    resp = client.post(
        "/api/admin/approvals", json={"completion_id": completion_id, "action": "APPROVE"}
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_award_is_granted_only_once(client, session: Session):
    register_family(client)
    kid_id = add_member(client, "kid")
    dishes = create_chore(client, "Dishes", [kid_id], points=5)
    laundry = create_chore(client, "Laundry", [kid_id], points=5)
    bronze = create_award(client, "Bronze", 5)

    first = complete_and_approve(client, dishes)
    assert [a["id"] for a in first["awards_granted"]] == [bronze["id"]]

    second = complete_and_approve(client, laundry)
    assert second["awards_granted"] == []

    rows = session.exec(select(UserAward)).all()
    assert len(rows) == 1
    assert rows[0].user_id == kid_id

    login(client, "kid", "kid1234")
    data = client.get("/api/awards").json()
    assert [a["name"] for a in data["awards"]] == ["Bronze"]
    assert data["granted_award_ids"] == [bronze["id"]]


def test_awards_listed_by_threshold(client):
    register_family(client)
    create_award(client, "Gold", 30, icon="g")
    create_award(client, "Bronze", 5, icon="b")
    data = client.get("/api/awards").json()
    assert [a["threshold_points"] for a in data["awards"]] == [5, 30]
    assert data["granted_award_ids"] == []


def test_update_and_delete_award(client, session: Session):
    register_family(client)
    kid_id = add_member(client, "kid")
    chore_id = create_chore(client, "Dishes", [kid_id], points=5)
    bronze = create_award(client, "Bronze", 5)
    complete_and_approve(client, chore_id)

    resp = client.put(
        f"/api/awards/{bronze['id']}",
        json={"name": " Copper ", "icon": "c", "threshold_points": 3},
    )
    assert resp.status_code == 200
    assert resp.json()["award"] == {
        "id": bronze["id"],
        "name": "Copper",
        "icon": "c",
        "threshold_points": 3,
    }

    resp = client.delete(f"/api/awards/{bronze['id']}")
    assert resp.json() == {"ok": True}
    session.expire_all()
    assert session.exec(select(Award)).all() == []
    assert session.exec(select(UserAward)).all() == []


def test_award_validation(client):
    register_family(client)
    resp = client.post("/api/awards", json={"name": "Bronze", "threshold_points": -1})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid input"}

    resp = client.post("/api/awards", json={"name": "", "threshold_points": 1})
    assert resp.status_code == 400

    resp = client.post("/api/awards", json={"name": "   ", "threshold_points": 1})
    assert resp.status_code == 400


def test_awards_are_adult_managed_and_family_scoped(client):
    register_family(client, username="alpha")
    add_member(client, "kid")
    bronze = create_award(client, "Bronze", 5)

    login(client, "kid", "kid1234")
    resp = client.post("/api/awards", json={"name": "Mine", "threshold_points": 0})
    assert resp.status_code == 403

    client.post("/api/auth/logout")
    register_family(client, username="beta", family_name="Beta")
    resp = client.put(
        f"/api/awards/{bronze['id']}", json={"name": "Stolen", "threshold_points": 1}
    )
    assert resp.status_code == 404
    assert client.delete(f"/api/awards/{bronze['id']}").status_code == 404
    assert client.get("/api/awards").json()["awards"] == []
