from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, PrivateAttr, field_validator

from sciencelab.common.utils import parse_datetime, safe_float, safe_json_loads
from .criteria import CriterionBlock, parse_criteria


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class BadgeTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


# Records read from the store

class ExperimentAttempt(BaseModel):
    """One user's run of one experiment (row of ``experiment_runs``)."""

    id: str
    user_id: str
    experiment_id: Optional[str] = None
    experiment_name: str = ""
    subject: str = ""
    status: str = AttemptStatus.IN_PROGRESS.value
    score: Optional[float] = None
    xp_earned: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == AttemptStatus.COMPLETED.value

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ExperimentAttempt":
        experiment = row.get("experiments") or row.get("experiment") or {}
        if isinstance(experiment, list):
            experiment = experiment[0] if experiment else {}
        return cls(
            id=str(row.get("id")),
            user_id=str(row.get("user_id")),
            experiment_id=str(row["experiment_id"]) if row.get("experiment_id") else None,
            experiment_name=experiment.get("name") or row.get("experiment_name") or "",
            subject=experiment.get("subject") or row.get("subject") or "",
            status=row.get("status") or AttemptStatus.IN_PROGRESS.value,
            score=safe_float(row.get("score")),
            xp_earned=int(safe_float(row.get("xp_earned")) or 0),
            started_at=parse_datetime(row.get("started_at") or row.get("created_at")),
            completed_at=parse_datetime(row.get("completed_at")),
        )


class BadgeDefinition(BaseModel):
    """A named achievement and its eligibility rule (row of ``badges``)."""

    id: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    tier: str = BadgeTier.BRONZE.value
    xp_requirement: int = 0
    criteria: Dict[str, Any] = Field(default_factory=dict)

    _blocks: Tuple[CriterionBlock, ...] = PrivateAttr(default=())

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("tier", mode="before")
    @classmethod
    def _default_tier(cls, value: Any) -> str:
        return value or BadgeTier.BRONZE.value

    @field_validator("xp_requirement", mode="before")
    @classmethod
    def _coerce_xp_requirement(cls, value: Any) -> int:
        number = safe_float(value)
        return int(number) if number is not None else 0

    @field_validator("criteria", mode="before")
    @classmethod
    def _coerce_criteria(cls, value: Any) -> Dict[str, Any]:
        if isinstance(value, str):
            value = safe_json_loads(value, default={})
        return value if isinstance(value, dict) else {}

    def model_post_init(self, __context: Any) -> None:
        self._blocks = parse_criteria(self.criteria)

    @property
    def blocks(self) -> Tuple[CriterionBlock, ...]:
        return self._blocks


class Experiment(BaseModel):
    """Catalog entry a student can start a run of (row of ``experiments``)."""

    id: str
    name: str
    subject: str = ""
    description: Optional[str] = None
    difficulty: Optional[str] = None
    xp_reward: int = 100
    duration_minutes: Optional[int] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)


class EarnedBadge(BaseModel):
    user_id: str
    badge_id: str
    earned_at: Optional[datetime] = None
    badge: Optional[BadgeDefinition] = None


class UserProfile(BaseModel):
    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: str = "student"
    xp_points: int = 0
    level: int = 1

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("xp_points", "level", mode="before")
    @classmethod
    def _coerce_int(cls, value: Any) -> int:
        number = safe_float(value)
        return int(number) if number is not None else 0


# Derived progress

class LevelInfo(BaseModel):
    level: int
    xp_points: int
    next_level_xp: int
    xp_to_next_level: int
    level_progress: float


class AttemptStats(BaseModel):
    total_experiments: int = 0
    completed_experiments: int = 0
    average_score: int = 0


class BadgeProgress(BaseModel):
    badge: BadgeDefinition
    earned: bool
    earned_at: Optional[datetime] = None
    progress: float


class StreakResponse(BaseModel):
    streak: int
    today: date


class ProgressSummary(BaseModel):
    user_id: str
    level: LevelInfo
    streak: int
    stats: AttemptStats
    earned_badges: List[EarnedBadge] = []
    badges: List[BadgeProgress] = []
    newly_earned: List[BadgeDefinition] = []


# Requests / responses

class BadgeCheckResponse(BaseModel):
    new_badges: List[BadgeDefinition]


class CompleteAttemptRequest(BaseModel):
    score: float = Field(..., ge=0, le=100)


class CompletionResult(BaseModel):
    attempt: ExperimentAttempt
    xp_earned: int
    xp_points: int
    level: int
    leveled_up: bool
    new_badges: List[BadgeDefinition] = []
