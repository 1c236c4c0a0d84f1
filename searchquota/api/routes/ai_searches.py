"""
AI job search endpoints.

Creation is gated by the monthly ai_job_searches quota and the hourly rate
limiter, and the quota is only recorded once the search exists. The
remaining endpoints drive the search's lifecycle; refused transitions answer
409 rather than failing silently.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from searchquota.core.exceptions import IllegalTransitionError
from searchquota.core.quota_guard import QuotaTicket, require_quota
from searchquota.core.rate_limit import rate_limit_by_usage
from searchquota.db.session import get_db
from searchquota.schemas.ai_search import (
    AiSearchCreate,
    AiSearchResponse,
    FatalErrorRequest,
    ProgressReportRequest,
    ProgressReportResponse,
)
from searchquota.schemas.usage import QuotaExceededResponse
from searchquota.services.search_lifecycle import SearchLifecycle, delete_search

logger = logging.getLogger(__name__)

router = APIRouter(tags=["AI Job Search"])


def get_lifecycle(search_id: int, db: Session = Depends(get_db)) -> SearchLifecycle:
    lifecycle = SearchLifecycle.load(db, search_id)
    if lifecycle is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "search_not_found", "search_id": search_id}
        )
    return lifecycle


def illegal_transition(lifecycle: SearchLifecycle, event: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "error": "illegal_transition",
            "event": event,
            "status": lifecycle.search.status,
            "message": message,
        }
    )


@router.post(
    "/accounts/{account_id}/ai-searches",
    response_model=AiSearchResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"model": QuotaExceededResponse}},
    dependencies=[Depends(rate_limit_by_usage("ai_job_searches"))],
)
def create_ai_search(
    payload: AiSearchCreate,
    ticket: QuotaTicket = Depends(require_quota("ai_job_searches")),
    db: Session = Depends(get_db)
):
    """
    Start a background AI job search.

    The monthly quota is checked before the search is created and recorded
    after; a tracking failure is logged but does not fail the request.
    """
    lifecycle = SearchLifecycle.create(db, ticket.account, payload.name, daily_limit=payload.daily_limit)

    tracked = ticket.commit({"search_id": lifecycle.search.id, "name": payload.name})
    if not tracked.tracked:
        logger.warning(
            f"AI search created but usage not recorded: search_id={lifecycle.search.id}, "
            f"account_id={ticket.account.id}, error={tracked.error}"
        )

    return lifecycle.snapshot()


@router.get("/ai-searches/{search_id}", response_model=AiSearchResponse)
def get_ai_search(lifecycle: SearchLifecycle = Depends(get_lifecycle)):
    return lifecycle.snapshot()


def _apply_event(lifecycle: SearchLifecycle, event: str) -> dict:
    try:
        lifecycle.apply(event)
    except IllegalTransitionError as e:
        raise illegal_transition(lifecycle, event, str(e))
    return lifecycle.snapshot()


@router.post("/ai-searches/{search_id}/pause", response_model=AiSearchResponse)
def pause_ai_search(lifecycle: SearchLifecycle = Depends(get_lifecycle)):
    return _apply_event(lifecycle, "pause")


@router.post("/ai-searches/{search_id}/resume", response_model=AiSearchResponse)
def resume_ai_search(lifecycle: SearchLifecycle = Depends(get_lifecycle)):
    return _apply_event(lifecycle, "resume")


@router.post("/ai-searches/{search_id}/cancel", response_model=AiSearchResponse)
def cancel_ai_search(lifecycle: SearchLifecycle = Depends(get_lifecycle)):
    return _apply_event(lifecycle, "cancel")


@router.post("/ai-searches/{search_id}/progress", response_model=ProgressReportResponse)
def report_progress(
    payload: ProgressReportRequest,
    lifecycle: SearchLifecycle = Depends(get_lifecycle)
):
    """
    Worker progress report: keep what the daily and weekly limits allow.

    Jobs cut by either limit are dropped and the response says which limit
    cut them.
    """
    outcome = lifecycle.progress_report(payload.found)
    if not outcome.applied:
        raise illegal_transition(
            lifecycle, "progress", f"Cannot report progress for a search that is {outcome.status}"
        )

    return {
        "applied": outcome.applied,
        "status": outcome.status,
        "found": outcome.found,
        "requested": outcome.requested,
        "kept": outcome.kept,
        "dropped": outcome.dropped,
        "truncated_by": outcome.truncated_by,
        "daily_limit_reached": outcome.daily_limit_reached,
        "weekly_limit_reached": outcome.weekly_limit_reached,
        "search": lifecycle.snapshot(),
    }


@router.post("/ai-searches/{search_id}/fail", response_model=AiSearchResponse)
def fail_ai_search(
    payload: FatalErrorRequest,
    lifecycle: SearchLifecycle = Depends(get_lifecycle)
):
    if not lifecycle.fatal_error(payload.error):
        raise illegal_transition(
            lifecycle, "fail", f"Cannot fail a search that is {lifecycle.search.status}"
        )
    return lifecycle.snapshot()


@router.delete("/ai-searches/{search_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_ai_search(search_id: int, db: Session = Depends(get_db)):
    """Delete a search; jobs it already kept still count against the week."""
    if not delete_search(db, search_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "search_not_found", "search_id": search_id}
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
