from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from sciencelab.common.utils import current_timestamp, format_timestamp
from sciencelab.core.config import get_settings
from sciencelab.db.supabase import get_supabase
from .schemas import BadgeDefinition, EarnedBadge, Experiment, ExperimentAttempt, UserProfile

logger = logging.getLogger("progression.repository")

_ATTEMPT_COLUMNS = (
    "id, user_id, experiment_id, status, score, xp_earned, started_at, completed_at, "
    "experiments (name, subject)"
)
_EXPERIMENT_COLUMNS = "id, name, subject, description, difficulty, xp_reward, duration_minutes"
_UNIQUE_VIOLATION = "23505"


class ProgressionStoreError(RuntimeError):
    """A read against the backing store failed; callers treat the snapshot as unavailable."""


class InsertOutcome(str, Enum):
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    ERROR = "error"


def _is_unique_violation(exc: BaseException) -> bool:
    code = getattr(exc, "code", None)
    if code == _UNIQUE_VIOLATION:
        return True
    message = str(getattr(exc, "message", None) or exc).lower()
    return _UNIQUE_VIOLATION in message or "duplicate key" in message


def response_rows(resp: Any) -> List[Dict[str, Any]]:
    data = getattr(resp, "data", None)
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    return []


def _badge_or_none(row: Dict[str, Any]) -> Optional[BadgeDefinition]:
    try:
        return BadgeDefinition.model_validate(row)
    except ValidationError as exc:
        logger.warning("badge_row_skipped badge_id=%s error=%s", row.get("id"), exc.errors(include_url=False))
        return None


class ProgressionRepository:
    """Supabase access for attempts, the badge catalog, badge grants and profiles.

    Reads raise ``ProgressionStoreError`` on failure so the service can abort a
    whole evaluation; badge inserts report an ``InsertOutcome`` instead.
    """

    async def _client(self):
        return await get_supabase()

    async def _exec(self, awaitable, op: str) -> Any:
        timeout = get_settings().supabase_query_timeout
        t0 = time.perf_counter()
        try:
            resp = await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ProgressionStoreError(f"Supabase {op} timed out after {timeout}s") from exc
        ms = int((time.perf_counter() - t0) * 1000)
        if ms > 50:
            logger.info("supabase_%s_ms=%d", op, ms)
        return resp

    async def _query(self, build, op: str) -> Any:
        try:
            client = await self._client()
            return await self._exec(build(client).execute(), op=op)
        except ProgressionStoreError:
            logger.warning("supabase_%s_failed error=timeout", op)
            raise
        except Exception as exc:
            logger.warning("supabase_%s_failed error=%s", op, exc)
            raise ProgressionStoreError(f"Supabase {op} failed: {exc}") from exc

    async def _read(self, build, op: str) -> List[Dict[str, Any]]:
        return response_rows(await self._query(build, op))

    # --- Experiments ------------------------------------------------------

    async def list_active_experiments(self) -> List[Experiment]:
        rows = await self._read(
            lambda c: c.table("experiments")
            .select(_EXPERIMENT_COLUMNS)
            .eq("is_active", True)
            .order("subject")
            .order("name"),
            op="experiments.active",
        )
        return [Experiment.model_validate(row) for row in rows]

    async def get_experiment(self, experiment_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._read(
            lambda c: c.table("experiments").select(_EXPERIMENT_COLUMNS + ", is_active").eq("id", experiment_id).limit(1),
            op="experiments.single",
        )
        return rows[0] if rows else None

    # --- Attempts ---------------------------------------------------------

    async def get_attempts(self, user_id: str) -> List[ExperimentAttempt]:
        rows = await self._read(
            lambda c: c.table("experiment_runs").select(_ATTEMPT_COLUMNS).eq("user_id", user_id),
            op="experiment_runs.by_user",
        )
        return [ExperimentAttempt.from_row(row) for row in rows]

    async def get_attempt(self, attempt_id: str) -> Optional[ExperimentAttempt]:
        rows = await self._read(
            lambda c: c.table("experiment_runs").select(_ATTEMPT_COLUMNS).eq("id", attempt_id).limit(1),
            op="experiment_runs.single",
        )
        return ExperimentAttempt.from_row(rows[0]) if rows else None

    async def start_attempt(
        self,
        user_id: str,
        experiment_id: str,
        started_at: Optional[datetime] = None,
    ) -> ExperimentAttempt:
        payload = {
            "user_id": user_id,
            "experiment_id": experiment_id,
            "status": "in_progress",
            "started_at": format_timestamp(started_at or current_timestamp()),
        }
        rows = await self._read(
            lambda c: c.table("experiment_runs").insert(payload),
            op="experiment_runs.start",
        )
        if not rows:
            raise ProgressionStoreError("Supabase experiment_runs.start returned no row")
        attempt = await self.get_attempt(str(rows[0]["id"]))
        return attempt or ExperimentAttempt.from_row(rows[0])

    async def mark_attempt_completed(
        self,
        attempt_id: str,
        score: float,
        xp_earned: int,
        completed_at: Optional[datetime] = None,
    ) -> Optional[ExperimentAttempt]:
        """Complete an in-progress run; ``None`` when it was no longer in progress."""
        payload = {
            "status": "completed",
            "score": score,
            "accuracy": score,
            "xp_earned": xp_earned,
            "completed_at": format_timestamp(completed_at or current_timestamp()),
        }
        rows = await self._read(
            lambda c: c.table("experiment_runs")
            .update(payload)
            .eq("id", attempt_id)
            .eq("status", "in_progress"),
            op="experiment_runs.complete",
        )
        if not rows:
            return None
        return await self.get_attempt(attempt_id)

    # --- Badges -----------------------------------------------------------

    async def get_badge_definitions(self) -> List[BadgeDefinition]:
        rows = await self._read(
            lambda c: c.table("badges").select("*").order("xp_requirement"),
            op="badges.list",
        )
        definitions: List[BadgeDefinition] = []
        for row in rows:
            definition = _badge_or_none(row)
            if definition is not None:
                definitions.append(definition)
        return definitions

    async def get_earned_badge_ids(self, user_id: str) -> Set[str]:
        rows = await self._read(
            lambda c: c.table("user_badges").select("badge_id").eq("user_id", user_id),
            op="user_badges.ids",
        )
        return {str(row["badge_id"]) for row in rows if row.get("badge_id") is not None}

    async def list_earned_badges(self, user_id: str) -> List[EarnedBadge]:
        rows = await self._read(
            lambda c: c.table("user_badges")
            .select("user_id, badge_id, earned_at, badges (*)")
            .eq("user_id", user_id)
            .order("earned_at", desc=True),
            op="user_badges.list",
        )
        earned: List[EarnedBadge] = []
        for row in rows:
            badge_row = row.get("badges") or row.get("badge")
            earned.append(
                EarnedBadge(
                    user_id=str(row.get("user_id") or user_id),
                    badge_id=str(row.get("badge_id")),
                    earned_at=row.get("earned_at"),
                    badge=_badge_or_none(badge_row) if isinstance(badge_row, dict) else None,
                )
            )
        return earned

    async def insert_earned_badge(self, user_id: str, badge_id: str, earned_at: datetime) -> InsertOutcome:
        payload = {"user_id": user_id, "badge_id": badge_id, "earned_at": format_timestamp(earned_at)}
        try:
            client = await self._client()
            resp = await self._exec(client.table("user_badges").insert(payload).execute(), op="user_badges.insert")
        except Exception as exc:
            if _is_unique_violation(exc):
                logger.debug("user_badges_duplicate user_id=%s badge_id=%s", user_id, badge_id)
                return InsertOutcome.DUPLICATE
            logger.warning("supabase_user_badges.insert_failed user_id=%s badge_id=%s error=%s", user_id, badge_id, exc)
            return InsertOutcome.ERROR
        if not response_rows(resp):
            logger.warning("supabase_user_badges.insert_empty user_id=%s badge_id=%s", user_id, badge_id)
            return InsertOutcome.ERROR
        return InsertOutcome.SUCCESS

    # --- Profiles ---------------------------------------------------------

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        rows = await self._read(
            lambda c: c.table("profiles").select("id, full_name, email, role, xp_points, level").eq("id", user_id).limit(1),
            op="profiles.single",
        )
        return UserProfile.model_validate(rows[0]) if rows else None

    async def set_profile(self, user_id: str, xp_points: int, level: int) -> None:
        await self._read(
            lambda c: c.table("profiles").update({"xp_points": xp_points, "level": level}).eq("id", user_id),
            op="profiles.progress_update",
        )


progression_repository = ProgressionRepository()

__all__ = [
    "progression_repository",
    "ProgressionRepository",
    "ProgressionStoreError",
    "InsertOutcome",
    "response_rows",
]
