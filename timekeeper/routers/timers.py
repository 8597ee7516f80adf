from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from timekeeper.exceptions import TimerError, get_http_exception
from timekeeper.models.time_logs import TimeLog
from timekeeper.schemas.timer import (ActiveTimers, CurrentTimer, DeletedTimer, RecentEntries, StartTimer,
                                      TeamActivity, TimerHistory, TimerStats, UpdateTimer)
from timekeeper.utils.app_utils import get_current_identity, get_timer_service
from timekeeper.utils.timer_service import Identity, TimerService

router = APIRouter()


@router.get("/active", response_model=ActiveTimers)
async def get_active_timers(
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """
    Lists the caller's running timers together with the total time they have been running.\n
    Returns:
        dict:
            - timers (list): running time logs (normally at most one)
            - total_active_time (int): seconds elapsed across those timers, computed now
    """
    try:
        return await service.active_timers(identity)
    except TimerError as e:
        raise get_http_exception(e)


@router.get("/current", response_model=CurrentTimer)
async def get_current_timer(
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """
    Returns the caller's running timer, or null, with the seconds elapsed so far.
    The elapsed value is computed on every request and never stored.
    """
    try:
        return await service.current(identity)
    except TimerError as e:
        raise get_http_exception(e)


@router.post("/", response_model=TimeLog, status_code=status.HTTP_201_CREATED)
async def start_timer(
    timer: StartTimer,
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """
    Starts a new timer for the caller.
    Any timer the caller already has running in the organization is stopped first,
    so the caller never ends up with two running timers.
    Args:
        timer (StartTimer): optional task_id, description, category and timezone.
                            Omitted fields fall back to the configured defaults.
    Returns:
        TimeLog: the new running time log
    Raises:
        HTTPException:
            - 422 if the payload fails schema validation
            - 401 if the caller's identity is missing
            - 500 if the timer could not be stored
    """
    try:
        return await service.start(identity, timer)
    except TimerError as e:
        raise get_http_exception(e)


@router.get("/stats", response_model=TimerStats)
async def get_timer_stats(
    timezone: Optional[str] = Query(None, description="IANA timezone used for day and week boundaries"),
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """
    Totals of completed timers for today, yesterday, this week and last week,
    with the trend of today against yesterday and this week against last week.
    """
    try:
        return await service.stats(identity, timezone)
    except TimerError as e:
        raise get_http_exception(e)


@router.get("/recent", response_model=RecentEntries)
async def get_recent_entries(
    limit: Optional[int] = Query(None, description="Maximum number of entries"),
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """Most recent time logs of the caller, running one included, newest first."""
    try:
        return await service.recent_entries(identity, limit)
    except TimerError as e:
        raise get_http_exception(e)


@router.get("/history", response_model=TimerHistory)
async def get_timer_history(
    page: int = Query(1, description="Page number, starting at 1"),
    limit: int = Query(50, description="Entries per page"),
    task_id: Optional[str] = Query(None, description="Only entries for this task"),
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """Completed timers of the caller, newest first, paginated."""
    try:
        return await service.history(identity, page, limit, task_id)
    except TimerError as e:
        raise get_http_exception(e)


@router.get("/team", response_model=TeamActivity)
async def get_team_activity(
    start_date: Optional[datetime] = Query(None, description="Only timers started at or after this instant"),
    end_date: Optional[datetime] = Query(None, description="Only timers started at or before this instant"),
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """
    Manager view of the caller's organization.
    Time logs are grouped per user; each summary carries the user's running timer
    (if any), the total seconds and count of completed entries, and the most recent
    completed entries.
    Args:
        start_date (datetime, optional): lower bound on timer start
        end_date (datetime, optional): upper bound on timer start
    Returns:
        dict:
            - team_activity (list): one summary per user
            - total_logs (int): number of time logs considered
    """
    try:
        return await service.team_activity(identity, start_date, end_date)
    except TimerError as e:
        raise get_http_exception(e)


@router.put("/{timer_id}", response_model=TimeLog)
async def update_timer(
    timer_id: str,
    changes: UpdateTimer,
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """
    Updates description, task_id or category of one of the caller's timers.
    Start, end and duration can never be changed.
    Raises:
        HTTPException:
            - 422 if the payload fails schema validation
            - 404 if the timer does not exist or is not the caller's
    """
    try:
        return await service.update(identity, timer_id, changes)
    except TimerError as e:
        raise get_http_exception(e)


@router.post("/{timer_id}/stop", response_model=TimeLog)
async def stop_timer(
    timer_id: str,
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """
    Stops one of the caller's running timers and freezes its duration.
    Raises:
        HTTPException:
            - 404 if the timer does not exist or is not the caller's
            - 409 if the timer is already stopped
    """
    try:
        return await service.stop(identity, timer_id)
    except TimerError as e:
        raise get_http_exception(e)


@router.post("/{timer_id}/restart", response_model=TimeLog, status_code=status.HTTP_201_CREATED)
async def restart_timer(
    timer_id: str,
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """
    Starts a new timer with the task, description and category of an earlier one.
    The earlier time log is left as it is.
    """
    try:
        return await service.restart(identity, timer_id)
    except TimerError as e:
        raise get_http_exception(e)


@router.delete("/{timer_id}", response_model=DeletedTimer)
async def delete_timer(
    timer_id: str,
    identity: Identity = Depends(get_current_identity),
    service: TimerService = Depends(get_timer_service),
):
    """Permanently removes one of the caller's time logs and returns what was removed."""
    try:
        return await service.delete(identity, timer_id)
    except TimerError as e:
        raise get_http_exception(e)
