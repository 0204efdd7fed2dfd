from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from fakesupabase import FakeSupabase
from sciencelab.common.deps import CurrentUser, get_current_user
from sciencelab.features.progression import endpoints as progression_endpoints
from sciencelab.features.progression import repository as repo_module
from sciencelab.features.progression.repository import ProgressionRepository
from sciencelab.features.progression.service import ProgressionService
from sciencelab.main import app

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

client = TestClient(app)


def seed():
    return {
        "profiles": [
            {"id": "user-1", "full_name": "Thandi M", "email": "t@example.com", "role": "student", "xp_points": 450, "level": 1},
            {"id": "user-2", "full_name": "Sipho K", "email": "s@example.com", "role": "student", "xp_points": 0, "level": 1},
        ],
        "experiments": [
            {"id": "exp-ohm", "name": "Ohm's Law Laboratory", "subject": "Physics", "xp_reward": 150, "is_active": True},
            {"id": "exp-tit", "name": "Acid-Base Titration", "subject": "Chemistry", "xp_reward": 100, "is_active": True},
            {"id": "exp-old", "name": "Retired Pendulum", "subject": "Physics", "xp_reward": 80, "is_active": False},
        ],
        "experiment_runs": [
            {"id": "run-1", "user_id": "user-1", "experiment_id": "exp-ohm", "status": "completed", "score": 70,
             "xp_earned": 105, "started_at": "2025-03-09T08:00:00Z", "completed_at": "2025-03-09T08:30:00Z"},
            {"id": "run-2", "user_id": "user-1", "experiment_id": "exp-ohm", "status": "in_progress", "score": None,
             "xp_earned": 0, "started_at": "2025-03-10T11:00:00Z"},
        ],
        "badges": [
            {"id": 1, "name": "First Steps", "tier": "bronze", "xp_requirement": 0, "criteria": {"experiments_completed": 1}},
            {"id": 2, "name": "Rising Star", "tier": "silver", "xp_requirement": 500, "criteria": {"xp_threshold": 500}},
            {"id": 3, "name": "Ohm's Law Master", "tier": "gold", "xp_requirement": 800,
             "criteria": {"experiment_type": "ohms law", "accuracy_threshold": 90}},
        ],
        "user_badges": [],
    }


@pytest.fixture
def db(monkeypatch):
    fake = FakeSupabase(seed())

    async def fake_get_supabase():
        return fake

    monkeypatch.setattr(repo_module, "get_supabase", fake_get_supabase)
    service = ProgressionService(repo=ProgressionRepository(), clock=lambda: NOW)
    monkeypatch.setattr(progression_endpoints, "progression_service", service)

    async def override_get_current_user():
        return CurrentUser(id="user-1", email="t@example.com", role="student")

    app.dependency_overrides[get_current_user] = override_get_current_user
    yield fake
    app.dependency_overrides.clear()


def test_level_endpoint(db):
    response = client.get("/progression/me/level")
    assert response.status_code == 200
    body = response.json()
    assert body["level"] == 1
    assert body["xp_to_next_level"] == 50


def test_streak_endpoint(db):
    response = client.get("/progression/me/streak")
    assert response.status_code == 200
    assert response.json() == {"streak": 1, "today": "2025-03-10"}


def test_badge_check_is_idempotent(db):
    first = client.post("/progression/me/badges/check")
    assert first.status_code == 200
    assert [b["name"] for b in first.json()["new_badges"]] == ["First Steps"]

    again = client.post("/progression/me/badges/check")
    assert again.json() == {"new_badges": []}
    assert len(db.tables["user_badges"]) == 1


def test_badge_check_swallows_store_outage(db):
    db.fail_on.add("badges")
    response = client.post("/progression/me/badges/check")
    assert response.status_code == 200
    assert response.json() == {"new_badges": []}


def test_complete_attempt_flow(db):
    response = client.post("/progression/attempts/run-2/complete", json={"score": 96})
    assert response.status_code == 200
    body = response.json()
    assert body["xp_earned"] == 144
    assert body["xp_points"] == 594
    assert body["level"] == 2
    assert body["leveled_up"] is True
    assert sorted(b["name"] for b in body["new_badges"]) == ["First Steps", "Ohm's Law Master", "Rising Star"]
    assert body["attempt"]["status"] == "completed"

    profile = next(p for p in db.tables["profiles"] if p["id"] == "user-1")
    assert (profile["xp_points"], profile["level"]) == (594, 2)


def test_complete_attempt_errors(db):
    assert client.post("/progression/attempts/missing/complete", json={"score": 50}).status_code == 404

    done = client.post("/progression/attempts/run-1/complete", json={"score": 50})
    assert done.status_code == 409
    assert done.json()["detail"]["error_code"] == "attempt_not_in_progress"

    assert client.post("/progression/attempts/run-2/complete", json={"score": 101}).status_code == 422

    db.tables["experiment_runs"][1]["user_id"] = "user-2"
    mismatch = client.post("/progression/attempts/run-2/complete", json={"score": 50})
    assert mismatch.status_code == 403


def test_summary_endpoint(db):
    response = client.get("/progression/me")
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == "user-1"
    assert body["level"]["level"] == 1
    assert body["stats"]["completed_experiments"] == 1
    assert [b["name"] for b in body["newly_earned"]] == ["First Steps"]
    progress = {b["badge"]["name"]: b for b in body["badges"]}
    assert progress["First Steps"]["earned"] is True
    assert progress["Rising Star"]["progress"] == 90.0


def test_summary_store_outage_is_503(db):
    db.fail_on.add("profiles")
    response = client.get("/progression/me")
    assert response.status_code == 503
    assert response.json()["detail"]["error_code"] == "E_STORE_UNAVAILABLE"


def test_experiment_catalog_lists_active_only(db):
    response = client.get("/progression/experiments")
    assert response.status_code == 200
    assert [e["id"] for e in response.json()] == ["exp-tit", "exp-ohm"]


def test_start_then_complete_an_experiment(db):
    started = client.post("/progression/experiments/exp-tit/attempts")
    assert started.status_code == 201
    run = started.json()
    assert run["status"] == "in_progress"
    assert run["user_id"] == "user-1"
    assert run["experiment_name"] == "Acid-Base Titration"

    done = client.post(f"/progression/attempts/{run['id']}/complete", json={"score": 90})
    assert done.status_code == 200
    assert done.json()["xp_earned"] == 90

    again = client.post(f"/progression/attempts/{run['id']}/complete", json={"score": 100})
    assert again.status_code == 409


@pytest.mark.parametrize("experiment_id", ["exp-old", "missing"])
def test_start_unknown_experiment_is_404(db, experiment_id):
    response = client.post(f"/progression/experiments/{experiment_id}/attempts")
    assert response.status_code == 404
    assert response.json()["detail"]["error_code"] == "experiment_not_found"


def test_badge_check_survives_malformed_catalog_rows(db):
    db.tables["badges"].append({"id": 9, "name": "Legacy", "tier": None, "xp_requirement": None,
                                "criteria": {"experiments_completed": "NaN"}})
    response = client.post("/progression/me/badges/check")
    assert response.status_code == 200
    assert [b["name"] for b in response.json()["new_badges"]] == ["First Steps"]


def test_requires_authentication():
    app.dependency_overrides.clear()
    assert client.get("/progression/me/level").status_code in (401, 403)


def test_healthz():
    body = client.get("/healthz").json()
    assert body["status"] == "ok"
    assert "progression" in body["tags"]
