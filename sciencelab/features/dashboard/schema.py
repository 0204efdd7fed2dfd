from pydantic import BaseModel
from typing import List, Optional

from sciencelab.features.progression.schemas import AttemptStats, ExperimentAttempt


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    full_name: Optional[str] = None
    xp_points: int
    level: int


class UserRankResponse(BaseModel):
    user_id: str
    rank: int
    xp_points: int
    level: int


class OverviewStats(BaseModel):
    total_students: int
    total_experiments: int
    average_completion_rate: int
    total_xp: int


class ExperimentStats(BaseModel):
    id: str
    name: str
    subject: Optional[str] = None
    total_attempts: int
    completed_attempts: int
    average_score: int
    completion_rate: int


class StudentDetail(BaseModel):
    user_id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    xp_points: int
    level: int
    stats: AttemptStats
    badges_earned: int
    recent_activity: List[ExperimentAttempt] = []
