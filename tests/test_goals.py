from datetime import date

from pocket_pilot.finance.goals import completion_fields, goal_details, newly_reached, public_view


def test_goal_details_progress_and_monthly_requirement():
    goal = goal_details(
        {"target_amount": 1000.0, "current_amount": 400.0, "target_date": "2025-12-31", "is_completed": False},
        date(2025, 6, 15),
    )

    assert goal["percentage"] == 40.0
    assert goal["remaining"] == 600.0
    assert goal["monthly_required"] == 100.0
    assert goal["is_overdue"] is False


def test_goal_details_overdue_and_capped_percentage():
    overdue = goal_details(
        {"target_amount": 100.0, "current_amount": 10.0, "target_date": "2025-01-01", "is_completed": False},
        date(2025, 6, 15),
    )
    complete = goal_details({"target_amount": 100.0, "current_amount": 150.0, "is_completed": True}, date(2025, 6, 15))

    assert overdue["is_overdue"] is True
    assert overdue["monthly_required"] is None
    assert complete["percentage"] == 100
    assert complete["remaining"] == 0


def test_completion_fields_stamp_only_first_completion():
    first = completion_fields(100, 100, False, None, "2025-06-01")
    again = completion_fields(120, 100, True, "2025-06-01", "2025-07-01")
    undone = completion_fields(50, 100, True, "2025-06-01", "2025-07-01")

    assert first == {"is_completed": True, "completed_at": "2025-06-01"}
    assert again == {"is_completed": True, "completed_at": "2025-06-01"}
    assert undone == {"is_completed": False, "completed_at": None}


def test_public_view_hides_private_fields():
    view = public_view(
        {"id": 3, "user_id": 9, "name": "Trip", "target_amount": 200.0, "current_amount": 50.0, "category": "vacation",
         "target_date": None, "share_token": "abc", "is_completed": 0},
        date(2025, 6, 15),
    )

    assert view == {
        "name": "Trip",
        "target_amount": 200.0,
        "current_amount": 50.0,
        "target_date": None,
        "category": "vacation",
        "percentage": 25.0,
        "remaining": 150.0,
        "is_completed": False,
    }


def create_goal(client, **overrides):
    payload = {"name": "Emergency fund", "target_amount": 1000, "category": "emergency"}
    payload.update(overrides)
    response = client.post("/api/goals", json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def contribute(client, goal_id, amount):
    return client.post("/api/goals/contributions", json={"goal_id": goal_id, "amount": amount, "date": str(date.today())})


def test_goal_crud(auth_client):
    goal = create_goal(auth_client, current_amount=250)
    assert goal["percentage"] == 25.0
    assert goal["is_completed"] is False
    assert goal["is_shared"] is False

    response = auth_client.put(f"/api/goals/{goal['id']}", json={"name": "Rainy day", "target_amount": 250})
    body = response.get_json()
    assert body["name"] == "Rainy day"
    assert body["is_completed"] is True
    assert body["completed_at"] == str(date.today())

    assert auth_client.get("/api/goals").get_json()[0]["id"] == goal["id"]
    assert auth_client.delete(f"/api/goals/{goal['id']}").get_json() == {"success": True}
    assert auth_client.get(f"/api/goals/{goal['id']}").status_code == 404


def test_goal_update_ignores_null_target(auth_client):
    goal = create_goal(auth_client, current_amount=250, target_date="2030-01-01")

    response = auth_client.put(
        f"/api/goals/{goal['id']}", json={"target_amount": None, "name": None, "is_shared": None, "target_date": None}
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["target_amount"] == 1000
    assert body["name"] == "Emergency fund"
    assert body["is_shared"] is False
    assert body["target_date"] is None
    assert body["percentage"] == 25.0


def test_goal_validation(auth_client):
    assert auth_client.post("/api/goals", json={"name": "x", "target_amount": 0}).status_code == 400
    assert auth_client.post("/api/goals", json={"name": "x", "target_amount": 10, "category": "yacht"}).status_code == 400
    response = auth_client.post("/api/goals", json={"name": "x", "target_amount": 10, "auto_contribute_day": 31})
    assert response.status_code == 400


def test_goal_list_puts_incomplete_first(auth_client):
    done = create_goal(auth_client, name="Done", target_amount=10, current_amount=10)
    open_goal = create_goal(auth_client, name="Open")

    ids = [goal["id"] for goal in auth_client.get("/api/goals").get_json()]

    assert ids == [open_goal["id"], done["id"]]


def test_contributions_update_goal_and_complete_it(auth_client):
    goal = create_goal(auth_client, target_amount=500)

    response = contribute(auth_client, goal["id"], 200)
    assert response.status_code == 201
    assert response.get_json()["contribution"]["goal_name"] == "Emergency fund"
    assert response.get_json()["goal"]["current_amount"] == 200

    response = contribute(auth_client, goal["id"], 300)
    updated = response.get_json()["goal"]
    assert updated["current_amount"] == 500
    assert updated["is_completed"] is True
    assert updated["completed_at"] == str(date.today())

    contributions = auth_client.get(f"/api/goals/contributions?goal_id={goal['id']}").get_json()
    assert sorted(c["amount"] for c in contributions) == [200, 300]
    assert all(c["goal_name"] == "Emergency fund" for c in contributions)


def test_deleting_contribution_reverses_balance(auth_client):
    goal = create_goal(auth_client, target_amount=100)
    contribution = contribute(auth_client, goal["id"], 100).get_json()["contribution"]

    response = auth_client.delete(f"/api/goals/contributions/{contribution['id']}")
    body = response.get_json()

    assert body["success"] is True
    assert body["goal"]["current_amount"] == 0
    assert body["goal"]["is_completed"] is False
    assert body["goal"]["completed_at"] is None
    assert auth_client.get("/api/goals/contributions").get_json() == []


def test_contribution_to_unknown_goal(auth_client):
    response = contribute(auth_client, 999, 10)

    assert response.status_code == 404
    assert response.get_json()["error"] == "Goal not found"


def test_sharing_a_goal(auth_client):
    goal = create_goal(auth_client, current_amount=100)

    shared = auth_client.put(f"/api/goals/{goal['id']}", json={"is_shared": True}).get_json()
    token = shared["share_token"]
    assert shared["is_shared"] is True
    assert len(token) == 32

    # the token survives toggling
    auth_client.put(f"/api/goals/{goal['id']}", json={"is_shared": False})
    again = auth_client.put(f"/api/goals/{goal['id']}", json={"is_shared": True}).get_json()
    assert again["share_token"] == token

    auth_client.post("/api/auth/logout")
    response = auth_client.get(f"/api/goals/share/{token}")
    body = response.get_json()
    assert response.status_code == 200
    assert body["name"] == "Emergency fund"
    assert body["percentage"] == 10.0
    assert "user_id" not in body and "share_token" not in body


def test_unshared_goal_is_not_public(auth_client):
    goal = create_goal(auth_client)
    token = auth_client.put(f"/api/goals/{goal['id']}", json={"is_shared": True}).get_json()["share_token"]
    auth_client.put(f"/api/goals/{goal['id']}", json={"is_shared": False})

    response = auth_client.get(f"/api/goals/share/{token}")

    assert response.status_code == 404
    assert response.get_json()["error"] == "Shared goal not found"


def test_newly_reached_ignores_stamped_milestones():
    milestones = [
        {"id": 1, "target_percentage": 25, "reached_at": "2025-01-01"},
        {"id": 2, "target_percentage": 50, "reached_at": None},
        {"id": 3, "target_percentage": 75, "reached_at": None},
    ]

    assert newly_reached(milestones, 500, 1000) == [2]
    assert newly_reached(milestones, 499.99, 1000) == []


def test_milestones_track_goal_progress(auth_client):
    goal = create_goal(auth_client, current_amount=300)
    url = f"/api/goals/{goal['id']}/milestones"

    quarter = auth_client.post(url, json={"name": "First quarter", "target_percentage": 25})
    assert quarter.status_code == 201
    assert quarter.get_json()["is_reached"] is True
    assert quarter.get_json()["reached_at"] == str(date.today())

    half = auth_client.post(url, json={"name": "Halfway", "target_percentage": 50}).get_json()
    assert half["target_amount"] == 500
    assert half["is_reached"] is False
    assert half["reached_at"] is None

    contribute(auth_client, goal["id"], 200)
    milestones = auth_client.get(url).get_json()
    assert [m["name"] for m in milestones] == ["First quarter", "Halfway"]
    assert milestones[1]["is_reached"] is True
    assert milestones[1]["reached_at"] == str(date.today())
    assert milestones[1]["celebration_shown"] is False


def test_milestone_update_and_delete(auth_client):
    goal = create_goal(auth_client)
    url = f"/api/goals/{goal['id']}/milestones"
    milestone = auth_client.post(url, json={"name": "Halfway", "target_percentage": 50}).get_json()

    updated = auth_client.put(url, json={"milestone_id": milestone["id"], "celebration_shown": True, "name": None})
    assert updated.get_json()["celebration_shown"] is True
    assert updated.get_json()["name"] == "Halfway"

    assert auth_client.post(url, json={"name": "Too far", "target_percentage": 150}).status_code == 400
    assert auth_client.put(url, json={"milestone_id": 999, "name": "x"}).status_code == 404

    missing = auth_client.delete(url)
    assert missing.status_code == 400
    assert missing.get_json()["error"] == "milestone_id is required"
    assert auth_client.delete(f"{url}?milestone_id=999").get_json()["error"] == "Milestone not found"

    assert auth_client.delete(f"{url}?milestone_id={milestone['id']}").get_json() == {"success": True}
    assert auth_client.get(url).get_json() == []
    assert auth_client.get("/api/goals/999/milestones").status_code == 404
