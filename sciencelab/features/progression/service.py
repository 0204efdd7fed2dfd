from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sciencelab.common.utils import current_timestamp
from sciencelab.core.config import get_settings
from . import engine
from .repository import InsertOutcome, ProgressionStoreError, progression_repository
from .schemas import (
    AttemptStatus,
    BadgeDefinition,
    BadgeProgress,
    CompletionResult,
    Experiment,
    ExperimentAttempt,
    LevelInfo,
    ProgressSummary,
    StreakResponse,
)

logger = logging.getLogger("progression.service")

DEFAULT_XP_REWARD = 100


def _app_timezone() -> ZoneInfo:
    name = get_settings().app_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("invalid_app_timezone name=%s fallback=UTC", name)
        return ZoneInfo("UTC")


class ProgressionService:
    """Glue between the pure progression engine and the Supabase store."""

    def __init__(self, repo=None, clock: Optional[Callable[[], datetime]] = None):
        self.repo = repo or progression_repository
        self.clock = clock or current_timestamp
        self.log = logger

    def _today(self) -> date:
        return self.clock().astimezone(_app_timezone()).date()

    # ------------------------------------------------------------------
    # Badge evaluation
    # ------------------------------------------------------------------

    async def evaluate_badges(
        self,
        user_id: str,
        current_xp: Optional[int] = None,
        just_completed: Optional[ExperimentAttempt] = None,
    ) -> List[BadgeDefinition]:
        """Grant every badge the user newly qualifies for and return them.

        Never raises: a failed read aborts the round with ``[]``; a failed
        grant is logged and skipped; a duplicate grant is a silent no-op.
        """
        try:
            if current_xp is None:
                profile = await self.repo.get_profile(user_id)
                current_xp = profile.xp_points if profile else 0
            definitions = await self.repo.get_badge_definitions()
            earned_ids = await self.repo.get_earned_badge_ids(user_id)
            attempts = await self.repo.get_attempts(user_id)
        except ProgressionStoreError as exc:
            self.log.warning("badge_evaluation_aborted user_id=%s error=%s", user_id, exc)
            return []
        except Exception:
            self.log.exception("badge_snapshot_failed user_id=%s", user_id)
            return []

        try:
            eligible = engine.evaluate_badges(
                user_id,
                current_xp,
                definitions,
                earned_ids,
                attempts,
                just_completed=just_completed,
            )
        except Exception:
            self.log.exception("badge_evaluation_failed user_id=%s", user_id)
            return []

        awarded: List[BadgeDefinition] = []
        for definition in eligible:
            outcome = await self.repo.insert_earned_badge(user_id, definition.id, self.clock())
            if outcome is InsertOutcome.SUCCESS:
                self.log.info("badge_awarded user_id=%s badge_id=%s name=%s", user_id, definition.id, definition.name)
                awarded.append(definition)
            elif outcome is InsertOutcome.DUPLICATE:
                self.log.debug("badge_already_granted user_id=%s badge_id=%s", user_id, definition.id)
            else:
                self.log.warning("badge_grant_skipped user_id=%s badge_id=%s", user_id, definition.id)
        return awarded

    # ------------------------------------------------------------------
    # Experiment runs
    # ------------------------------------------------------------------

    async def list_experiments(self) -> List[Experiment]:
        return await self.repo.list_active_experiments()

    async def start_attempt(self, user_id: str, experiment_id: str) -> ExperimentAttempt:
        experiment = await self.repo.get_experiment(experiment_id)
        if experiment is None or experiment.get("is_active") is False:
            raise ValueError("experiment_not_found")
        attempt = await self.repo.start_attempt(user_id, experiment_id, self.clock())
        self.log.info("attempt_started user_id=%s experiment_id=%s attempt_id=%s", user_id, experiment_id, attempt.id)
        return attempt

    async def complete_attempt(self, user_id: str, attempt_id: str, score: float) -> CompletionResult:
        attempt = await self.repo.get_attempt(attempt_id)
        if attempt is None:
            raise ValueError("attempt_not_found")
        if attempt.user_id != str(user_id):
            raise ValueError("attempt_user_mismatch")
        if attempt.status != AttemptStatus.IN_PROGRESS.value:
            raise ValueError("attempt_not_in_progress")

        xp_reward = DEFAULT_XP_REWARD
        if attempt.experiment_id:
            experiment = await self.repo.get_experiment(attempt.experiment_id)
            if experiment and experiment.get("xp_reward") is not None:
                xp_reward = int(experiment["xp_reward"])
        final_score = round(max(0.0, min(100.0, score)))
        xp_earned = engine.xp_for_score(final_score, xp_reward)

        completed = await self.repo.mark_attempt_completed(attempt_id, final_score, xp_earned, self.clock())
        if completed is None:
            # another request completed the run between the read and the update
            raise ValueError("attempt_not_in_progress")

        profile = await self.repo.get_profile(user_id)
        old_xp = profile.xp_points if profile else 0
        new_xp = max(0, old_xp) + xp_earned
        old_level = engine.compute_level(old_xp)
        new_level = engine.compute_level(new_xp)
        await self.repo.set_profile(user_id, new_xp, new_level)
        self.log.info(
            "attempt_completed user_id=%s attempt_id=%s score=%s xp_earned=%s xp=%s level=%s",
            user_id,
            attempt_id,
            final_score,
            xp_earned,
            new_xp,
            new_level,
        )

        new_badges = await self.evaluate_badges(user_id, current_xp=new_xp, just_completed=completed)
        return CompletionResult(
            attempt=completed,
            xp_earned=xp_earned,
            xp_points=new_xp,
            level=new_level,
            leveled_up=new_level > old_level,
            new_badges=new_badges,
        )

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def get_level(self, user_id: str) -> LevelInfo:
        profile = await self.repo.get_profile(user_id)
        return engine.level_info(profile.xp_points if profile else 0)

    async def get_streak(self, user_id: str) -> StreakResponse:
        attempts = await self.repo.get_attempts(user_id)
        today = self._today()
        return StreakResponse(streak=engine.compute_streak(attempts, today, _app_timezone()), today=today)

    async def get_summary(self, user_id: str) -> ProgressSummary:
        profile = await self.repo.get_profile(user_id)
        xp = profile.xp_points if profile else 0
        newly_earned = await self.evaluate_badges(user_id, current_xp=xp)

        attempts = await self.repo.get_attempts(user_id)
        definitions = await self.repo.get_badge_definitions()
        earned = await self.repo.list_earned_badges(user_id)
        earned_at = {e.badge_id: e.earned_at for e in earned}

        badges = [
            BadgeProgress(
                badge=definition,
                earned=definition.id in earned_at,
                earned_at=earned_at.get(definition.id),
                progress=engine.badge_progress(definition, attempts, xp, earned=definition.id in earned_at),
            )
            for definition in definitions
        ]
        return ProgressSummary(
            user_id=str(user_id),
            level=engine.level_info(xp),
            streak=engine.compute_streak(attempts, self._today(), _app_timezone()),
            stats=engine.attempt_stats(attempts),
            earned_badges=earned,
            badges=badges,
            newly_earned=newly_earned,
        )


progression_service = ProgressionService()

__all__ = ["progression_service", "ProgressionService", "DEFAULT_XP_REWARD"]
