"""Application errors rendered as RFC 7807 Problem Details."""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base application error with RFC 7807 Problem Details support."""

    def __init__(
        self,
        title: str,
        detail: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.title = title
        self.detail = detail
        self.status_code = status_code
        self.error_type = error_type or f"about:blank#{status_code}"
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    def to_problem_detail(self) -> dict[str, Any]:
        """Convert to RFC 7807 Problem Details format."""
        problem = {
            "type": self.error_type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        if self.instance:
            problem["instance"] = self.instance
        problem.update(self.extra)
        return problem


class NotFoundError(AppError):
    """Resource not found error."""

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        detail: str | None = None,
    ) -> None:
        if detail is None:
            detail = f"{resource} not found"
            if resource_id:
                detail = f"{resource} with id '{resource_id}' not found"
        super().__init__(
            title="Not Found",
            detail=detail,
            status_code=status.HTTP_404_NOT_FOUND,
            error_type="about:blank#not-found",
        )


class ValidationError(AppError):
    """Validation error."""

    def __init__(
        self,
        detail: str,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(
            title="Validation Error",
            detail=detail,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_type="about:blank#validation-error",
            extra={"errors": errors or []},
        )


class RateLimitError(AppError):
    """An upstream backend is throttling us; the caller may retry later."""

    def __init__(
        self,
        detail: str = "Rate limit exceeded. Please try again in a moment.",
        retry_after: int | None = None,
    ) -> None:
        extra = {}
        if retry_after:
            extra["retry_after"] = retry_after
        super().__init__(
            title="Too Many Requests",
            detail=detail,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_type="about:blank#rate-limit",
            extra=extra,
        )


class QuotaExhaustedError(AppError):
    """The language-model account has no credit left. Not retryable for now."""

    def __init__(
        self,
        detail: str = "AI credits depleted. Please add credits to continue.",
    ) -> None:
        super().__init__(
            title="Payment Required",
            detail=detail,
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            error_type="about:blank#quota-exhausted",
        )


class ServiceUnavailableError(AppError):
    """A required backend failed; the request can be retried."""

    def __init__(
        self,
        detail: str,
        retry_after: int | None = None,
    ) -> None:
        extra = {}
        if retry_after:
            extra["retry_after"] = retry_after
        super().__init__(
            title="Service Unavailable",
            detail=detail,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_type="about:blank#service-unavailable",
            extra=extra,
        )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:  # noqa: ARG001
    """Handle AppError exceptions."""
    headers = None
    retry_after = exc.extra.get("retry_after")
    if retry_after:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem_detail(),
        media_type="application/problem+json",
        headers=headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # noqa: ARG001
    """Handle unexpected exceptions."""
    error = AppError(
        title="Internal Server Error",
        detail="An unexpected error occurred",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_problem_detail(),
        media_type="application/problem+json",
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with the FastAPI application."""
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
