from datetime import date

import pytest

from conftest import add_transaction
from pocket_pilot.finance.learning import describe_rule, parse_instruction, rule_matches
from pocket_pilot.finance.summary import budget_bucket, comparison_trend, health_score


@pytest.mark.parametrize(
    "instruction, rule_type, pattern, action, priority",
    [
        (
            "When I buy from Costco, categorize as Groceries",
            "categorization",
            "Costco",
            {"category_name": "Groceries"},
            7,
        ),
        ("AMZN Mktp is Amazon", "merchant", "AMZN Mktp", {"normalized_name": "Amazon"}, 8),
        ("Alert me when I spend over $500", "amount_threshold", "expense", {"threshold": 500.0, "alert": True}, 5),
        ("Ignore transactions from PayPal", "custom", "PayPal", {"ignore": True}, 4),
    ],
)
def test_parse_instruction(instruction, rule_type, pattern, action, priority):
    assert parse_instruction(instruction) == {
        "rule_type": rule_type,
        "pattern": pattern,
        "action": action,
        "priority": priority,
    }


def test_parse_instruction_gives_up_on_nonsense():
    assert parse_instruction("hello there") is None


def test_describe_and_match_rules():
    rule = parse_instruction("When I buy from Costco, categorize as Groceries")
    threshold = parse_instruction("Alert me when I spend over $500")

    assert describe_rule(rule) == 'categorize "Costco" transactions as "Groceries"'
    assert describe_rule(threshold) == "alert you when spending exceeds $500"
    assert rule_matches(rule, "COSTCO WHOLESALE #123")
    assert not rule_matches(rule, "Walmart")
    assert rule_matches(threshold, "anything", -600)
    assert not rule_matches(threshold, "anything", -20)
    assert not rule_matches(threshold, "anything")


def test_health_score_components():
    assert health_score(4, 1, 20, 4, 0, 60) == 84
    assert health_score(1, 0, 100, 1, 0, 100) == 100
    assert health_score(1, 1, -200, 1, 1, 0) == 0


def test_budget_bucket_and_trend():
    assert [budget_bucket(p) for p in (50, 80, 100)] == ["on_track", "warning", "exceeded"]
    assert [comparison_trend(c) for c in (6, 5, -6)] == ["up", "stable", "down"]


def test_memory_upsert_and_filters(auth_client):
    first = auth_client.post(
        "/api/ai-memory", json={"memory_type": "preference", "key": "tone", "value": {"style": "brief"}}
    )
    assert first.status_code == 200
    assert first.get_json()["memory"]["value"] == {"style": "brief"}
    assert first.get_json()["memory"]["importance"] == 5

    second = auth_client.post(
        "/api/ai-memory",
        json={"memory_type": "preference", "key": "tone", "value": ["friendly"], "importance": 9},
    ).get_json()["memory"]
    assert second["id"] == first.get_json()["memory"]["id"]

    auth_client.post("/api/ai-memory", json={"memory_type": "context", "key": "city", "value": "Toronto"})

    memories = auth_client.get("/api/ai-memory").get_json()["memories"]
    assert [(m["key"], m["value"]) for m in memories] == [("tone", ["friendly"]), ("city", "Toronto")]
    assert [m["key"] for m in auth_client.get("/api/ai-memory?type=context").get_json()["memories"]] == ["city"]
    assert auth_client.get("/api/ai-memory?key=tone").get_json()["memories"][0]["importance"] == 9


def test_expired_memories_are_hidden(auth_client):
    auth_client.post(
        "/api/ai-memory",
        json={"memory_type": "context", "key": "trip", "value": "Paris", "expires_at": "2020-01-01T00:00:00Z"},
    )

    assert auth_client.get("/api/ai-memory").get_json()["memories"] == []


def test_memory_validation(auth_client):
    response = auth_client.post("/api/ai-memory", json={"memory_type": "gossip", "key": "x", "value": 1})
    assert response.status_code == 400
    response = auth_client.post("/api/ai-memory", json={"memory_type": "custom", "key": "x", "value": 1, "importance": 11})
    assert response.status_code == 400


def test_delete_memory(auth_client):
    memory = auth_client.post(
        "/api/ai-memory", json={"memory_type": "custom", "key": "a", "value": 1}
    ).get_json()["memory"]
    auth_client.post("/api/ai-memory", json={"memory_type": "custom", "key": "b", "value": 2})

    missing = auth_client.delete("/api/ai-memory?type=custom")
    assert missing.status_code == 400
    assert missing.get_json()["error"] == "Either id or type+key is required"

    assert auth_client.delete(f"/api/ai-memory?id={memory['id']}").get_json() == {"success": True}
    assert auth_client.delete("/api/ai-memory?type=custom&key=b").get_json() == {"success": True}
    assert auth_client.get("/api/ai-memory").get_json()["memories"] == []


def test_memories_are_private(auth_client):
    auth_client.post("/api/ai-memory", json={"memory_type": "custom", "key": "secret", "value": 1})
    auth_client.post("/api/auth/logout")
    auth_client.post("/api/auth/register", json={"username": "user2", "password": "password"})

    assert auth_client.get("/api/ai-memory").get_json()["memories"] == []


def test_teach_creates_rule(auth_client):
    response = auth_client.post(
        "/api/ai-learning?action=teach", json={"instruction": "When I buy from Costco, categorize as Groceries"}
    )
    body = response.get_json()

    assert response.status_code == 200
    assert body["message"] == 'Got it! I\'ll categorize "Costco" transactions as "Groceries"'
    assert body["rule"]["rule_type"] == "categorization"
    assert body["rule"]["action"] == {"category_name": "Groceries"}
    assert body["rule"]["is_active"] is True
    assert body["rule"]["match_count"] == 0


def test_teach_rejects_unparseable_instruction(auth_client):
    response = auth_client.post("/api/ai-learning?action=teach", json={"instruction": "do the thing"})
    body = response.get_json()

    assert response.status_code == 400
    assert body["error"] == "Could not understand instruction"
    assert "Costco" in body["hint"]


def test_apply_rules_counts_matches(auth_client):
    auth_client.post("/api/ai-learning?action=teach", json={"instruction": "When I buy from Costco, categorize as Groceries"})
    auth_client.post("/api/ai-learning?action=teach", json={"instruction": "Alert me when I spend over $100"})
    auth_client.post("/api/ai-learning?action=teach", json={"instruction": "Ignore transactions from PayPal"})

    response = auth_client.post("/api/ai-learning?action=apply", json={"description": "Costco Wholesale", "amount": -150})
    matches = response.get_json()["matches"]

    assert [m["rule_type"] for m in matches] == ["categorization", "amount_threshold"]
    assert matches[0]["description"] == 'categorize "Costco" transactions as "Groceries"'

    rules = auth_client.get("/api/ai-learning").get_json()["rules"]
    assert {rule["pattern"]: rule["match_count"] for rule in rules} == {"Costco": 1, "expense": 1, "PayPal": 0}
    assert all(rule["last_matched_at"] for rule in rules if rule["pattern"] != "PayPal")


def test_learning_rule_crud(auth_client):
    created = auth_client.post(
        "/api/ai-learning",
        json={"rule_type": "merchant", "pattern": "SQ *BEAN", "action": {"normalized_name": "Bean Cafe"}},
    ).get_json()["rule"]
    assert created["priority"] == 5

    response = auth_client.put("/api/ai-learning", json={"id": created["id"], "priority": 9, "is_active": False})
    updated = response.get_json()["rule"]
    assert updated["priority"] == 9
    assert updated["is_active"] is False
    assert updated["action"] == {"normalized_name": "Bean Cafe"}

    assert auth_client.get("/api/ai-learning?active=true").get_json()["rules"] == []
    assert len(auth_client.get("/api/ai-learning?type=merchant").get_json()["rules"]) == 1
    assert auth_client.put("/api/ai-learning", json={"id": 999, "priority": 1}).status_code == 404

    assert auth_client.delete("/api/ai-learning").status_code == 400
    assert auth_client.delete(f"/api/ai-learning?id={created['id']}").get_json() == {"success": True}
    assert auth_client.get("/api/ai-learning").get_json()["rules"] == []


def test_summary_type_is_validated(auth_client):
    response = auth_client.post("/api/ai-summary?type=daily")

    assert response.status_code == 400
    assert response.get_json()["error"] == "Invalid summary type. Use 'weekly' or 'monthly'"


def test_monthly_summary_is_generated_once(auth_client):
    today = date.today()
    add_transaction(auth_client, 1000, "income", when=today, description="Payroll", category="Income")
    add_transaction(auth_client, 40, when=today, description="Groceries", category="Food & Dining")

    first = auth_client.post("/api/ai-summary?type=monthly").get_json()
    summary = first["summary"]

    assert first["cached"] is False
    assert summary["summary_type"] == "monthly"
    assert summary["period_start"] == today.replace(day=1).isoformat()
    assert summary["content"]["spending"]["total"] == 40
    assert summary["content"]["income"]["total"] == 1000
    assert summary["content"]["savings"]["rate"] == 96.0
    assert summary["health_score"] == 50
    assert summary["highlights"] == ["Excellent savings rate of 96%! You're building wealth effectively."]
    assert summary["recommendations"] == []
    assert summary["is_read"] is False

    second = auth_client.post("/api/ai-summary?type=monthly").get_json()
    assert second["cached"] is True
    assert second["summary"]["id"] == summary["id"]


def test_weekly_summary_and_mark_read(auth_client):
    summary = auth_client.post("/api/ai-summary?type=weekly").get_json()["summary"]
    assert "savings" not in summary["content"]

    listed = auth_client.get("/api/ai-summary?type=weekly").get_json()["summaries"]
    assert [s["id"] for s in listed] == [summary["id"]]

    read = auth_client.patch(f"/api/ai-summary/{summary['id']}").get_json()["summary"]
    assert read["is_read"] is True
    assert auth_client.patch("/api/ai-summary/999").status_code == 404
