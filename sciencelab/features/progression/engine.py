"""Pure progression rules: levels, streaks and badge eligibility.

Nothing in here performs I/O. The service layer fetches snapshots from
Supabase, hands them to these functions and persists whatever they decide.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, List, Optional, Sequence, Set

from .criteria import (
    AccuracyThreshold,
    CountBySubject,
    CountByType,
    CountOverall,
    CriterionBlock,
    SubjectMastery,
    TypeCompletion,
    XpThreshold,
)
from .schemas import AttemptStats, BadgeDefinition, ExperimentAttempt, LevelInfo

logger = logging.getLogger("progression.engine")

LEVEL_XP_UNIT = 500

_QUOTES_RE = re.compile("['‘’\"]")
_WHITESPACE_RE = re.compile(r"\s+")


# --- Levels -------------------------------------------------------------

def compute_level(xp_points: int) -> int:
    """``floor(xp / 500) + 1``; negative xp is clamped to level 1."""
    return max(0, int(xp_points)) // LEVEL_XP_UNIT + 1


def level_info(xp_points: int) -> LevelInfo:
    xp = max(0, int(xp_points))
    level = compute_level(xp)
    next_level_xp = level * LEVEL_XP_UNIT
    into_level = xp - (level - 1) * LEVEL_XP_UNIT
    return LevelInfo(
        level=level,
        xp_points=xp,
        next_level_xp=next_level_xp,
        xp_to_next_level=next_level_xp - xp,
        level_progress=round(into_level / LEVEL_XP_UNIT * 100, 2),
    )


def xp_for_score(score: float, xp_reward: int) -> int:
    """XP granted for a finished run: the experiment's reward scaled by score."""
    clamped = max(0.0, min(100.0, float(score)))
    return int(round(clamped / 100 * max(0, xp_reward)))


# --- Streaks ------------------------------------------------------------

def _local_date(moment: datetime, tz: Optional[tzinfo]) -> date:
    if tz is not None and moment.tzinfo is not None:
        moment = moment.astimezone(tz)
    return moment.date()


def completion_dates(attempts: Iterable[ExperimentAttempt], tz: Optional[tzinfo] = None) -> Set[date]:
    return {
        _local_date(a.completed_at, tz)
        for a in attempts
        if a.is_completed and a.completed_at is not None
    }


def compute_streak(
    attempts: Iterable[ExperimentAttempt],
    today: date,
    tz: Optional[tzinfo] = None,
) -> int:
    """Consecutive days with a completed run, ending today or yesterday.

    ``today`` is a local calendar date; completion timestamps are converted
    into ``tz`` before being reduced to dates.
    """
    days = completion_dates(attempts, tz)
    if not days:
        return 0

    cursor = today
    if cursor not in days:
        cursor = today - timedelta(days=1)
        if cursor not in days:
            return 0

    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


# --- Attempt statistics -------------------------------------------------

def _score(attempt: ExperimentAttempt) -> float:
    return attempt.score or 0.0


def attempt_stats(attempts: Sequence[ExperimentAttempt]) -> AttemptStats:
    completed = [a for a in attempts if a.is_completed]
    average = sum(_score(a) for a in completed) / len(completed) if completed else 0.0
    return AttemptStats(
        total_experiments=len(attempts),
        completed_experiments=len(completed),
        average_score=int(round(average)),
    )


# --- Matching -----------------------------------------------------------

def normalize_experiment_name(name: Optional[str]) -> str:
    """Lowercase, drop quotes/apostrophes, collapse whitespace.

    "Ohm's Law", "OHM'S   LAW" and "ohms law" all normalise to "ohms law".
    """
    text = _QUOTES_RE.sub("", (name or "").lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def matches_experiment_type(attempt: ExperimentAttempt, experiment_type: str) -> bool:
    return normalize_experiment_name(experiment_type) in normalize_experiment_name(attempt.experiment_name)


def _same_subject(attempt: ExperimentAttempt, subject: str) -> bool:
    return (attempt.subject or "").lower() == subject.lower()


def _of_type(attempts: Iterable[ExperimentAttempt], experiment_type: Optional[str]) -> List[ExperimentAttempt]:
    if not experiment_type:
        return list(attempts)
    return [a for a in attempts if matches_experiment_type(a, experiment_type)]


def _max_score(attempts: Sequence[ExperimentAttempt]) -> float:
    return max((_score(a) for a in attempts), default=0.0)


# --- Criterion evaluation ----------------------------------------------

def block_satisfied(
    block: CriterionBlock,
    attempts: Sequence[ExperimentAttempt],
    current_xp: int,
) -> bool:
    completed = [a for a in attempts if a.is_completed]

    if isinstance(block, CountByType):
        runs = _of_type(completed, block.experiment_type)
        if block.min_accuracy is not None:
            runs = [a for a in runs if _score(a) >= block.min_accuracy]
        return len(runs) >= block.experiments_completed

    if isinstance(block, CountBySubject):
        return sum(1 for a in completed if _same_subject(a, block.subject)) >= block.experiments_completed

    if isinstance(block, CountOverall):
        return len(completed) >= block.experiments_completed

    if isinstance(block, TypeCompletion):
        # Any completed run in the history counts, not only the one that triggered the check
        return any(matches_experiment_type(a, block.experiment_type) for a in completed)

    if isinstance(block, AccuracyThreshold):
        return _max_score(_of_type(completed, block.experiment_type)) >= block.accuracy_threshold

    if isinstance(block, XpThreshold):
        return current_xp >= block.xp_threshold

    if isinstance(block, SubjectMastery):
        subject_runs = [a for a in attempts if _same_subject(a, block.subject)]
        if not subject_runs:
            return False
        if not all(a.is_completed for a in subject_runs):
            return False
        return all(_score(a) >= block.min_accuracy for a in subject_runs)

    return False


def is_badge_satisfied(
    definition: BadgeDefinition,
    attempts: Sequence[ExperimentAttempt],
    current_xp: int,
) -> bool:
    """A badge holds when any one of its criterion blocks holds."""
    return any(block_satisfied(block, attempts, current_xp) for block in definition.blocks)


def evaluate_badges(
    user_id: str,
    current_xp: int,
    definitions: Sequence[BadgeDefinition],
    already_earned_ids: Iterable[str],
    attempts: Sequence[ExperimentAttempt],
    just_completed: Optional[ExperimentAttempt] = None,
) -> List[BadgeDefinition]:
    """Return the definitions the user newly qualifies for.

    Already-earned ids are skipped outright. ``just_completed`` is only used
    to enrich the debug log of each check.
    """
    earned = {str(badge_id) for badge_id in already_earned_ids}
    eligible: List[BadgeDefinition] = []
    for definition in definitions:
        if definition.id in earned:
            continue
        satisfied = is_badge_satisfied(definition, attempts, current_xp)
        if just_completed is not None:
            logger.debug(
                "badge_check user_id=%s badge=%s criteria=%s experiment=%s subject=%s score=%s met=%s",
                user_id,
                definition.name,
                definition.criteria,
                just_completed.experiment_name,
                just_completed.subject,
                just_completed.score,
                satisfied,
            )
        if satisfied:
            eligible.append(definition)
    return eligible


# --- Progress toward a badge -------------------------------------------

def _ratio(value: float, target: float) -> float:
    if target <= 0:
        return 100.0
    return max(0.0, min(100.0, value / target * 100))


def _block_progress(block: CriterionBlock, attempts: Sequence[ExperimentAttempt], current_xp: int) -> float:
    completed = [a for a in attempts if a.is_completed]

    if isinstance(block, CountByType):
        runs = _of_type(completed, block.experiment_type)
        if block.min_accuracy is not None:
            runs = [a for a in runs if _score(a) >= block.min_accuracy]
        return _ratio(len(runs), block.experiments_completed)
    if isinstance(block, CountBySubject):
        return _ratio(sum(1 for a in completed if _same_subject(a, block.subject)), block.experiments_completed)
    if isinstance(block, CountOverall):
        return _ratio(len(completed), block.experiments_completed)
    if isinstance(block, TypeCompletion):
        return 100.0 if block_satisfied(block, attempts, current_xp) else 0.0
    if isinstance(block, AccuracyThreshold):
        return _ratio(_max_score(_of_type(completed, block.experiment_type)), block.accuracy_threshold)
    if isinstance(block, XpThreshold):
        return _ratio(current_xp, block.xp_threshold)
    if isinstance(block, SubjectMastery):
        subject_runs = [a for a in attempts if _same_subject(a, block.subject)]
        qualifying = [a for a in subject_runs if a.is_completed and _score(a) >= block.min_accuracy]
        return _ratio(len(qualifying), len(subject_runs)) if subject_runs else 0.0
    return 0.0


def badge_progress(
    definition: BadgeDefinition,
    attempts: Sequence[ExperimentAttempt],
    current_xp: int,
    earned: bool = False,
) -> float:
    """Percent (0-100) toward a badge; the most advanced block wins."""
    if earned:
        return 100.0
    if not definition.blocks:
        return 0.0
    return round(max(_block_progress(b, attempts, current_xp) for b in definition.blocks), 2)


__all__ = [
    "LEVEL_XP_UNIT",
    "attempt_stats",
    "badge_progress",
    "block_satisfied",
    "completion_dates",
    "compute_level",
    "compute_streak",
    "evaluate_badges",
    "is_badge_satisfied",
    "level_info",
    "matches_experiment_type",
    "normalize_experiment_name",
    "xp_for_score",
]
