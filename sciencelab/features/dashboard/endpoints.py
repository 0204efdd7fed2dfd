from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sciencelab.common.deps import get_current_user, require_staff, CurrentUser
from sciencelab.features.progression.repository import ProgressionStoreError
from .schema import ExperimentStats, LeaderboardEntry, OverviewStats, StudentDetail, UserRankResponse
from .service import dashboard_service, LEADERBOARD_LIMIT


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def _err(status: int, code: str, message: str):
    return HTTPException(status_code=status, detail={"error_code": code, "message": message})


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    limit: int = Query(LEADERBOARD_LIMIT, ge=1, le=LEADERBOARD_LIMIT),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await dashboard_service.leaderboard(limit=limit)
    except ProgressionStoreError as e:
        raise _err(503, "E_STORE_UNAVAILABLE", str(e))


#rank of the caller even when outside the top entries
@router.get("/leaderboard/me", response_model=UserRankResponse)
async def get_my_rank(current_user: CurrentUser = Depends(get_current_user)):
    try:
        return await dashboard_service.user_rank(current_user.id)
    except ProgressionStoreError as e:
        raise _err(503, "E_STORE_UNAVAILABLE", str(e))
    except ValueError as e:
        raise _err(404, str(e), "Profile not found")


#Teacher panel
@router.get("/overview", response_model=OverviewStats)
async def get_overview(current_user: CurrentUser = Depends(require_staff())):
    try:
        return await dashboard_service.teacher_overview()
    except ProgressionStoreError as e:
        raise _err(503, "E_STORE_UNAVAILABLE", str(e))


@router.get("/experiments", response_model=List[ExperimentStats])
async def get_experiment_stats(current_user: CurrentUser = Depends(require_staff())):
    try:
        return await dashboard_service.experiment_stats()
    except ProgressionStoreError as e:
        raise _err(503, "E_STORE_UNAVAILABLE", str(e))


@router.get("/students/{student_id}", response_model=StudentDetail)
async def get_student_detail(student_id: str, current_user: CurrentUser = Depends(require_staff())):
    try:
        return await dashboard_service.student_detail(student_id)
    except ProgressionStoreError as e:
        raise _err(503, "E_STORE_UNAVAILABLE", str(e))
    except ValueError as e:
        raise _err(404, str(e), "Student not found")
