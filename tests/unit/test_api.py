"""Unit tests for the HTTP API.

The application lifespan runs for real; the engine it creates is then
swapped for one driven by the test clock.
"""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from reminder_engine.main import app
from reminder_engine.models.reminder import Priority


def parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.fixture
def client(engine):
    with TestClient(app) as test_client:
        app.state.engine = engine
        yield test_client


@pytest.fixture
def reminder_json(make_reminder):
    def _make(**kwargs) -> dict:
        return make_reminder(**kwargs).model_dump(mode="json")

    return _make


def feedback_json(reminder: dict, **overrides) -> dict:
    body = {
        "reminder_id": reminder["id"],
        "user_id": reminder["user_id"],
        "feedback_type": "timing",
        "rating": 5,
        "was_helpful": True,
        "feedback_time": reminder["trigger_time"],
    }
    body.update(overrides)
    return body


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert "timestamp" in data

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-Id": "req-42"})
        assert response.headers["X-Correlation-Id"] == "req-42"

    def test_correlation_id_is_generated(self, client):
        response = client.get("/health")
        assert response.headers["X-Correlation-Id"]

    def test_engine_not_running(self):
        app.state.engine = None
        response = TestClient(app).get("/users/user-1/strategy")
        assert response.status_code == 503


class TestReminderEndpoints:
    def test_optimize(self, client, reminder_json):
        response = client.post("/reminders/optimize", json=reminder_json())

        assert response.status_code == 200
        data = response.json()
        assert parse_time(data["optimized_time"]) == datetime(2026, 3, 4, 13, tzinfo=timezone.utc)
        assert data["deferral_decision"]["should_defer"] is True

    def test_optimize_rejects_unknown_priority(self, client, reminder_json):
        body = reminder_json()
        body["priority"] = 9

        response = client.post("/reminders/optimize", json=body)

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Validation error"
        assert "priority" in data["detail"]
        assert data["correlation_id"] == response.headers["X-Correlation-Id"]

    def test_batch(self, client, reminder_json, user_id):
        reminders = [reminder_json(priority=Priority.HIGH) for _ in range(3)]
        response = client.post(
            "/reminders/batch", json={"user_id": user_id, "reminders": reminders}
        )

        assert response.status_code == 200
        batches = response.json()
        # busy at work: one reminder at a time
        assert len(batches) == 3
        assert all(b["id"].startswith("batch_") for b in batches)

    def test_batch_for_wrong_user(self, client, reminder_json):
        response = client.post(
            "/reminders/batch", json={"user_id": "someone-else", "reminders": [reminder_json()]}
        )
        assert response.status_code == 400


class TestFeedbackEndpoints:
    def test_reminder_feedback(self, client, reminder_json, user_id):
        reminder = reminder_json()
        response = client.post(
            f"/users/{user_id}/feedback/reminder",
            json={"reminder": reminder, "feedback": feedback_json(reminder)},
        )

        assert response.status_code == 200
        assert response.json()["feedback_type"] == "timing"

        history = client.get(f"/users/{user_id}/adaptation-history").json()
        assert len(history) == 1
        patterns = client.get(f"/users/{user_id}/patterns").json()
        assert len(patterns) == 1
        stats = client.get(f"/users/{user_id}/learning-stats").json()
        assert stats["total_sessions"] == 1
        preferences = client.get(f"/users/{user_id}/adaptation-strategy").json()
        assert 10 in preferences["preferred_times"]

    def test_reminder_feedback_for_wrong_user(self, client, reminder_json):
        reminder = reminder_json()
        response = client.post(
            "/users/someone-else/feedback/reminder",
            json={"reminder": reminder, "feedback": feedback_json(reminder)},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    def test_rating_out_of_range(self, client, reminder_json, user_id):
        reminder = reminder_json()
        response = client.post(
            f"/users/{user_id}/feedback/reminder",
            json={"reminder": reminder, "feedback": feedback_json(reminder, rating=7)},
        )
        assert response.status_code == 400
        assert "rating" in response.json()["detail"]

    def test_context_feedback(self, client, make_context, clock, user_id):
        response = client.post(
            f"/users/{user_id}/feedback/context",
            json={
                "user_id": user_id,
                "context_time": clock().isoformat(),
                "actual_context": make_context().model_dump(mode="json"),
                "accuracy": 0.4,
                "corrections": [
                    {
                        "field": "activity",
                        "predicted_value": "working",
                        "actual_value": "relaxing",
                        "importance": 0.9,
                    }
                ],
            },
        )
        assert response.status_code == 202
        assert response.json() == {"status": "accepted", "corrections": 1}


class TestContextEndpoints:
    def test_get_default_context(self, client, user_id):
        response = client.get(f"/users/{user_id}/context")
        assert response.status_code == 200
        assert response.json()["current_activity"] == "unknown"

    def test_refresh_analyzes(self, client, user_id):
        response = client.get(f"/users/{user_id}/context", params={"refresh": True})
        data = response.json()
        assert data["current_activity"] == "working"
        assert data["availability"] == "busy"

    def test_put_context(self, client, user_id):
        response = client.put(
            f"/users/{user_id}/context", json={"availability": "do_not_disturb"}
        )
        assert response.status_code == 200
        assert response.json()["interruptibility"] == 0

    def test_put_invalid_context(self, client, user_id):
        response = client.put(f"/users/{user_id}/context", json={"availability": "asleep"})
        assert response.status_code == 400


class TestStrategyEndpoints:
    def test_get_default_strategy(self, client, user_id):
        data = client.get(f"/users/{user_id}/strategy").json()
        assert data["user_id"] == user_id
        assert data["batching_preferences"]["max_batch_size"] == 3

    def test_patch_strategy(self, client, user_id):
        response = client.patch(
            f"/users/{user_id}/strategy",
            json={"batching_preferences": {"max_batch_size": 4}},
        )
        assert response.status_code == 200
        data = client.get(f"/users/{user_id}/strategy").json()
        assert data["batching_preferences"]["max_batch_size"] == 4
        assert data["batching_preferences"]["prioritize_by_type"] is True

    def test_patch_invalid_strategy(self, client, user_id):
        response = client.patch(f"/users/{user_id}/strategy", json={"confidence": 3})
        assert response.status_code == 400

    def test_behavior_analysis(self, client, user_id):
        response = client.get(f"/users/{user_id}/behavior-analysis")
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == user_id
        assert data["adaptation_count"] == 0
