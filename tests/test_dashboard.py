import pytest
from fastapi.testclient import TestClient

from fakesupabase import FakeSupabase
from sciencelab.common.deps import CurrentUser, get_current_user
from sciencelab.features.dashboard import endpoints as dashboard_endpoints
from sciencelab.features.dashboard.repository import DashboardRepository
from sciencelab.features.dashboard.service import DashboardService, rank_profiles
from sciencelab.features.progression import repository as repo_module
from sciencelab.features.progression.schemas import UserProfile
from sciencelab.main import app

pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def anyio_backend():
    return "asyncio"


client = TestClient(app)

TABLES = {
    "profiles": [
        {"id": "s1", "full_name": "Amahle", "email": "a@example.com", "role": "student", "xp_points": 900, "level": 2},
        {"id": "s2", "full_name": "Bongani", "email": "b@example.com", "role": "student", "xp_points": 900, "level": 2},
        {"id": "s3", "full_name": "Chloe", "email": "c@example.com", "role": "student", "xp_points": 300, "level": 1},
        {"id": "t1", "full_name": "Mr Naidoo", "email": "t@example.com", "role": "teacher", "xp_points": 5000, "level": 11},
    ],
    "experiments": [
        {"id": "exp-ohm", "name": "Ohm's Law Laboratory", "subject": "Physics", "is_active": True},
        {"id": "exp-tit", "name": "Acid-Base Titration", "subject": "Chemistry", "is_active": True},
        {"id": "exp-old", "name": "Retired Pendulum", "subject": "Physics", "is_active": False},
    ],
    "experiment_runs": [
        {"id": "r1", "user_id": "s1", "experiment_id": "exp-ohm", "status": "completed", "score": 80, "xp_earned": 120,
         "started_at": "2025-03-08T09:00:00Z", "completed_at": "2025-03-08T09:40:00Z"},
        {"id": "r2", "user_id": "s1", "experiment_id": "exp-ohm", "status": "in_progress", "score": None, "xp_earned": 0,
         "started_at": "2025-03-10T09:00:00Z"},
        {"id": "r3", "user_id": "s2", "experiment_id": "exp-tit", "status": "completed", "score": 100, "xp_earned": 150,
         "started_at": "2025-03-09T09:00:00Z", "completed_at": "2025-03-09T09:30:00Z"},
        {"id": "r4", "user_id": "s3", "experiment_id": "exp-tit", "status": "abandoned", "score": None, "xp_earned": 0,
         "started_at": "2025-03-07T09:00:00Z"},
    ],
    "user_badges": [
        {"user_id": "s1", "badge_id": 1, "earned_at": "2025-03-08T09:41:00Z"},
        {"user_id": "s1", "badge_id": 3, "earned_at": "2025-03-08T09:41:00Z"},
    ],
}


@pytest.fixture
def db(monkeypatch):
    fake = FakeSupabase(TABLES)

    async def fake_get_supabase():
        return fake

    monkeypatch.setattr(repo_module, "get_supabase", fake_get_supabase)
    return fake


@pytest.fixture
def service(db):
    return DashboardService(repo=DashboardRepository())


def as_user(user_id, role):
    async def override():
        return CurrentUser(id=user_id, email=f"{user_id}@example.com", role=role)

    app.dependency_overrides[get_current_user] = override


@pytest.fixture
def api(service, monkeypatch):
    monkeypatch.setattr(dashboard_endpoints, "dashboard_service", service)
    yield client
    app.dependency_overrides.clear()


def test_rank_profiles_shares_rank_on_ties():
    profiles = [
        UserProfile(id="c", xp_points=300),
        UserProfile(id="a", xp_points=900),
        UserProfile(id="b", xp_points=900),
        UserProfile(id="d", xp_points=0),
    ]
    entries = rank_profiles(profiles)
    assert [(e.user_id, e.rank) for e in entries] == [("a", 1), ("b", 1), ("c", 3), ("d", 4)]
    assert [e.level for e in entries] == [2, 2, 1, 1]


async def test_leaderboard_lists_students_only(service):
    entries = await service.leaderboard()
    assert {e.user_id for e in entries} == {"s1", "s2", "s3"}
    assert [e.rank for e in entries] == [1, 1, 3]


async def test_user_rank_counts_students_above(service):
    assert (await service.user_rank("s3")).rank == 3
    assert (await service.user_rank("s2")).rank == 1
    with pytest.raises(ValueError):
        await service.user_rank("ghost")


async def test_teacher_overview(service):
    overview = await service.teacher_overview()
    assert overview.total_students == 3
    assert overview.total_experiments == 4
    assert overview.average_completion_rate == 50
    assert overview.total_xp == 270


async def test_experiment_stats_cover_active_experiments(service):
    stats = {s.id: s for s in await service.experiment_stats()}
    assert set(stats) == {"exp-ohm", "exp-tit"}
    assert (stats["exp-ohm"].total_attempts, stats["exp-ohm"].completed_attempts) == (2, 1)
    assert stats["exp-ohm"].average_score == 80
    assert stats["exp-tit"].average_score == 100
    assert stats["exp-tit"].completion_rate == 50


async def test_student_detail(service):
    detail = await service.student_detail("s1")
    assert detail.level == 2
    assert detail.badges_earned == 2
    assert detail.stats.total_experiments == 2
    assert detail.stats.completed_experiments == 1
    assert [a.id for a in detail.recent_activity] == ["r2", "r1"]
    assert detail.recent_activity[1].experiment_name == "Ohm's Law Laboratory"


def test_leaderboard_endpoint(api):
    as_user("s3", "student")
    response = api.get("/dashboard/leaderboard", params={"limit": 2})
    assert response.status_code == 200
    assert [row["rank"] for row in response.json()] == [1, 1]

    mine = api.get("/dashboard/leaderboard/me")
    assert mine.status_code == 200
    assert mine.json()["rank"] == 3


def test_leaderboard_limit_is_bounded(api):
    as_user("s3", "student")
    assert api.get("/dashboard/leaderboard", params={"limit": 0}).status_code == 422
    assert api.get("/dashboard/leaderboard", params={"limit": 101}).status_code == 422


def test_teacher_panel_requires_staff(api):
    as_user("s1", "student")
    for path in ("/dashboard/overview", "/dashboard/experiments", "/dashboard/students/s2"):
        assert api.get(path).status_code == 403


def test_teacher_panel_for_teacher(api):
    as_user("t1", "teacher")
    assert api.get("/dashboard/overview").json()["total_students"] == 3
    assert len(api.get("/dashboard/experiments").json()) == 2
    assert api.get("/dashboard/students/s1").json()["badges_earned"] == 2

    missing = api.get("/dashboard/students/ghost")
    assert missing.status_code == 404
    assert missing.json()["detail"]["error_code"] == "profile_not_found"


def test_store_outage_maps_to_503(api, db):
    as_user("t1", "teacher")
    db.fail_on.add("profiles")
    response = api.get("/dashboard/overview")
    assert response.status_code == 503
    assert response.json()["detail"]["error_code"] == "E_STORE_UNAVAILABLE"
