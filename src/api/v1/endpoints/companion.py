"""Companion question-answering endpoints."""

import math
from typing import Annotated

from fastapi import APIRouter, Depends, status

from src.core.database import DbSession
from src.core.exceptions import (
    AppError,
    QuotaExhaustedError,
    RateLimitError,
    ServiceUnavailableError,
)
from src.models.domain.companion import AskRequest, AskResponse
from src.services.companion_service import CompanionError, CompanionService

router = APIRouter()


def get_companion_service(session: DbSession) -> CompanionService:
    """Get companion service instance."""
    return CompanionService(session)


CompanionSvc = Annotated[CompanionService, Depends(get_companion_service)]


def to_app_error(error: CompanionError) -> AppError:
    """Map a pipeline failure onto an HTTP problem response."""
    if error.quota_exhausted:
        return QuotaExhaustedError(detail=error.reason)
    retry_after = math.ceil(error.retry_after) if error.retry_after else None
    if error.rate_limited:
        return RateLimitError(detail=error.reason, retry_after=retry_after)
    if error.is_retryable:
        return ServiceUnavailableError(detail=error.reason, retry_after=retry_after)
    return AppError(
        title="Bad Gateway",
        detail=error.reason,
        status_code=status.HTTP_502_BAD_GATEWAY,
    )


@router.post("/ask", response_model=AskResponse)
async def ask(request: AskRequest, service: CompanionSvc) -> AskResponse:
    """Ask a spoiler-free question about what the viewer has watched so far.

    Answers draw only on subtitles up to the viewer's position. If the
    position is past the indexed subtitles it is clamped, and the response
    reports coverage_complete=false with the adjusted cursor.

    Usage metering happens upstream; remaining_free_questions and
    coins_consumed are echoed back unchanged.
    """
    try:
        result = await service.ask(
            unit=request.to_media_unit(),
            cursor_seconds=request.resolved_cursor_seconds(),
            question=request.question,
            title=request.title,
            history=request.history,
        )
    except CompanionError as e:
        raise to_app_error(e) from e

    return AskResponse(
        answer=result.answer,
        remaining_free_questions=request.remaining_free_questions,
        coins_consumed=request.coins_consumed,
        evidence_count=result.evidence_count,
        max_available_seconds=result.max_available_seconds,
        coverage_complete=result.coverage_complete,
        adjusted_cursor_seconds=result.adjusted_cursor_seconds,
    )
