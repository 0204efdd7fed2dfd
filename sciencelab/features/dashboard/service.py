from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

from sciencelab.common.utils import safe_float
from sciencelab.features.progression import engine
from sciencelab.features.progression.schemas import AttemptStatus, ExperimentAttempt, UserProfile
from .repository import dashboard_repository
from .schema import (
    ExperimentStats,
    LeaderboardEntry,
    OverviewStats,
    StudentDetail,
    UserRankResponse,
)

logger = logging.getLogger("dashboard.service")

LEADERBOARD_LIMIT = 100
RECENT_ACTIVITY_LIMIT = 10
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def rank_profiles(profiles: Sequence[UserProfile]) -> List[LeaderboardEntry]:
    """Rank by xp descending; ties share a rank and the next distinct xp skips ahead (1, 1, 3)."""
    ordered = sorted(profiles, key=lambda p: p.xp_points, reverse=True)
    entries: List[LeaderboardEntry] = []
    rank = 0
    previous_xp = None
    for index, profile in enumerate(ordered):
        if profile.xp_points != previous_xp:
            rank = index + 1
            previous_xp = profile.xp_points
        entries.append(
            LeaderboardEntry(
                rank=rank,
                user_id=profile.id,
                full_name=profile.full_name,
                xp_points=profile.xp_points,
                level=engine.compute_level(profile.xp_points),
            )
        )
    return entries


def _percent(part: int, whole: int) -> int:
    return int(round(part / whole * 100)) if whole else 0


def _completed(runs: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [r for r in runs if r.get("status") == AttemptStatus.COMPLETED.value]


def _average_score(runs: Sequence[Dict[str, Any]]) -> int:
    if not runs:
        return 0
    return int(round(sum(safe_float(r.get("score")) or 0.0 for r in runs) / len(runs)))


def _activity_time(attempt: ExperimentAttempt) -> datetime:
    moment = attempt.completed_at or attempt.started_at or _EPOCH
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


class DashboardService:
    def __init__(self, repo=None):
        self.repo = repo or dashboard_repository

    async def leaderboard(self, limit: int = LEADERBOARD_LIMIT) -> List[LeaderboardEntry]:
        students = await self.repo.list_students(limit=limit)
        return rank_profiles(students)

    async def user_rank(self, user_id: str) -> UserRankResponse:
        profile = await self.repo.get_profile(user_id)
        if profile is None:
            raise ValueError("profile_not_found")
        above = await self.repo.count_students_above(profile.xp_points)
        return UserRankResponse(
            user_id=profile.id,
            rank=above + 1,
            xp_points=profile.xp_points,
            level=engine.compute_level(profile.xp_points),
        )

    async def teacher_overview(self) -> OverviewStats:
        students = await self.repo.list_students()
        if not students:
            return OverviewStats(total_students=0, total_experiments=0, average_completion_rate=0, total_xp=0)
        runs = await self.repo.list_runs(user_ids=[s.id for s in students])
        total_xp = sum(int(safe_float(r.get("xp_earned")) or 0) for r in runs)
        logger.debug("teacher_overview students=%d runs=%d", len(students), len(runs))
        return OverviewStats(
            total_students=len(students),
            total_experiments=len(runs),
            average_completion_rate=_percent(len(_completed(runs)), len(runs)),
            total_xp=total_xp,
        )

    async def experiment_stats(self) -> List[ExperimentStats]:
        experiments = await self.repo.list_active_experiments()
        stats: List[ExperimentStats] = []
        for experiment in experiments:
            runs = await self.repo.list_runs(experiment_id=experiment.id)
            completed = _completed(runs)
            stats.append(
                ExperimentStats(
                    id=experiment.id,
                    name=experiment.name,
                    subject=experiment.subject,
                    total_attempts=len(runs),
                    completed_attempts=len(completed),
                    average_score=_average_score(completed),
                    completion_rate=_percent(len(completed), len(runs)),
                )
            )
        return stats

    async def student_detail(self, student_id: str) -> StudentDetail:
        profile = await self.repo.get_profile(student_id)
        if profile is None:
            raise ValueError("profile_not_found")
        attempts = await self.repo.get_attempts(student_id)
        recent = sorted(attempts, key=_activity_time, reverse=True)[:RECENT_ACTIVITY_LIMIT]
        return StudentDetail(
            user_id=profile.id,
            full_name=profile.full_name,
            email=profile.email,
            xp_points=profile.xp_points,
            level=engine.compute_level(profile.xp_points),
            stats=engine.attempt_stats(attempts),
            badges_earned=await self.repo.count_badges(student_id),
            recent_activity=recent,
        )


dashboard_service = DashboardService()

__all__ = ["dashboard_service", "DashboardService", "rank_profiles"]
