#Progression feature - levels, streaks, badges and experiment completion
from typing import List

from fastapi import APIRouter, HTTPException, Depends
from sciencelab.common.deps import get_current_user, CurrentUser
from .schemas import (
    BadgeCheckResponse,
    CompleteAttemptRequest,
    CompletionResult,
    Experiment,
    ExperimentAttempt,
    LevelInfo,
    ProgressSummary,
    StreakResponse,
)
from .repository import ProgressionStoreError
from .service import progression_service

router = APIRouter(prefix="/progression", tags=["progression"])

_NOT_FOUND = {"attempt_not_found", "experiment_not_found"}
_FORBIDDEN = {"attempt_user_mismatch"}


def _err(status: int, code: str, message: str):
    return HTTPException(status_code=status, detail={"error_code": code, "message": message})


def _store_unavailable(exc: ProgressionStoreError) -> HTTPException:
    return _err(503, "E_STORE_UNAVAILABLE", str(exc))


#profile page: level, streak, stats and every badge with progress
@router.get("/me", response_model=ProgressSummary)
async def get_my_progress(current_user: CurrentUser = Depends(get_current_user)):
    try:
        return await progression_service.get_summary(current_user.id)
    except ProgressionStoreError as e:
        raise _store_unavailable(e)


@router.get("/me/level", response_model=LevelInfo)
async def get_my_level(current_user: CurrentUser = Depends(get_current_user)):
    try:
        return await progression_service.get_level(current_user.id)
    except ProgressionStoreError as e:
        raise _store_unavailable(e)


@router.get("/me/streak", response_model=StreakResponse)
async def get_my_streak(current_user: CurrentUser = Depends(get_current_user)):
    try:
        return await progression_service.get_streak(current_user.id)
    except ProgressionStoreError as e:
        raise _store_unavailable(e)


#opportunistic trigger; always answers with a (possibly empty) list
@router.post("/me/badges/check", response_model=BadgeCheckResponse)
async def check_my_badges(current_user: CurrentUser = Depends(get_current_user)):
    badges = await progression_service.evaluate_badges(current_user.id)
    return BadgeCheckResponse(new_badges=badges)


#experiment catalog (active only), ordered by subject then name
@router.get("/experiments", response_model=List[Experiment])
async def list_experiments(current_user: CurrentUser = Depends(get_current_user)):
    try:
        return await progression_service.list_experiments()
    except ProgressionStoreError as e:
        raise _store_unavailable(e)


@router.post("/experiments/{experiment_id}/attempts", response_model=ExperimentAttempt, status_code=201)
async def start_attempt(experiment_id: str, current_user: CurrentUser = Depends(get_current_user)):
    """
    Open an in-progress run of an experiment for the caller.
    """
    try:
        return await progression_service.start_attempt(current_user.id, experiment_id)
    except ProgressionStoreError as e:
        raise _store_unavailable(e)
    except ValueError as e:
        raise _err(404, str(e), "Experiment not found")


@router.post("/attempts/{attempt_id}/complete", response_model=CompletionResult)
async def complete_attempt(
    attempt_id: str,
    req: CompleteAttemptRequest,
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Mark an in-progress run completed, award XP, persist the level and grant badges.
    """
    try:
        return await progression_service.complete_attempt(current_user.id, attempt_id, req.score)
    except ProgressionStoreError as e:
        raise _store_unavailable(e)
    except ValueError as e:
        code = str(e)
        if code in _NOT_FOUND:
            raise _err(404, code, "Experiment attempt not found")
        if code in _FORBIDDEN:
            raise _err(403, code, "Attempt belongs to another user")
        raise _err(409, code, "Attempt is not in progress")
