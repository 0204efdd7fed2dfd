from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from sciencelab.features.progression.repository import ProgressionRepository, response_rows
from sciencelab.features.progression.schemas import UserProfile


_PROFILE_COLUMNS = "id, full_name, email, role, xp_points, level"


class DashboardRepository(ProgressionRepository):
    """Class-wide reads for the teacher panel and leaderboard."""

    async def list_students(self, limit: Optional[int] = None) -> List[UserProfile]:
        def build(c):
            query = (
                c.table("profiles")
                .select(_PROFILE_COLUMNS)
                .eq("role", "student")
                .order("xp_points", desc=True)
            )
            return query.limit(limit) if limit else query

        rows = await self._read(build, op="profiles.students")
        return [UserProfile.model_validate(row) for row in rows]

    async def count_students_above(self, xp_points: int) -> int:
        resp = await self._query(
            lambda c: c.table("profiles")
            .select("id", count="exact")
            .eq("role", "student")
            .gt("xp_points", xp_points),
            op="profiles.rank_count",
        )
        count = getattr(resp, "count", None)
        return count if count is not None else len(response_rows(resp))

    async def list_runs(
        self,
        experiment_id: Optional[str] = None,
        user_ids: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        def build(c):
            query = c.table("experiment_runs").select("user_id, experiment_id, status, score, xp_earned")
            if experiment_id is not None:
                query = query.eq("experiment_id", experiment_id)
            if user_ids is not None:
                query = query.in_("user_id", list(user_ids))
            return query

        return await self._read(build, op="experiment_runs.class")

    async def count_badges(self, user_id: str) -> int:
        return len(await self.get_earned_badge_ids(user_id))


dashboard_repository = DashboardRepository()

__all__ = ["dashboard_repository", "DashboardRepository"]
