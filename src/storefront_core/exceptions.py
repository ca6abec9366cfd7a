from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog

from storefront_core.error_codes import ERROR_CODES

logger = structlog.get_logger(__name__)


# ───────────────────────── Base & Domain Exceptions ─────────────────────────
class DomainError(Exception):
    """Base class for domain-level errors. Services raise these, never raw backend errors."""
    code: str = "domain_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    message: str
    details: Optional[Dict[str, Any]]

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message or self.__class__.__name__)
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.message = message or self.__class__.__name__
        self.details = details


class NotFoundError(DomainError):
    # generic; set a specific code via constructor if needed (e.g., "slug_not_found")
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class TenantNotFoundError(NotFoundError):
    code = "tenant_not_found"


class ConflictError(DomainError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class LockNotAcquiredError(ConflictError):
    code = "lock_not_acquired"


class ValidationError(DomainError):
    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class TenantSuspendedError(DomainError):
    code = "tenant_suspended"
    status_code = status.HTTP_403_FORBIDDEN


class PlanLimitExceededError(DomainError):
    code = "plan_limit_exceeded"
    status_code = status.HTTP_403_FORBIDDEN


class RateLimitedError(DomainError):
    code = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class StoreUnavailableError(DomainError):
    """Cache or relational backend unreachable. Reads degrade, writes fail."""
    code = "store_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class InternalServerError(DomainError):
    code = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


# ───────────────────────────── Helpers ──────────────────────────────────────

def _problem(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]],
    correlation_id: Optional[str],
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"code": code, "message": message}
    if details:
        body["details"] = details
    if correlation_id:
        body["correlation_id"] = correlation_id
    return body


def _extract_correlation_id(req: Request) -> Optional[str]:
    return getattr(getattr(req, "state", None), "request_id", None)


def _http_for(code: str) -> int:
    return int(ERROR_CODES.get(code, {}).get("http", status.HTTP_500_INTERNAL_SERVER_ERROR))


def _msg_for(code: str) -> str:
    return str(ERROR_CODES.get(code, {}).get("message", code))


# ─────────────────────────── Registration ───────────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def handle_domain_error(req: Request, exc: DomainError):
        if isinstance(exc, NotFoundError):
            logger.debug("Resource not found", code=exc.code, path=req.url.path)
        elif exc.status_code >= 500:
            logger.error("Request failed", code=exc.code, error=exc.message, path=req.url.path)
        return JSONResponse(
            status_code=exc.status_code,
            content=_problem(exc.code, exc.message, exc.details, _extract_correlation_id(req)),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(req: Request, exc: RequestValidationError):
        code = "validation_error"
        return JSONResponse(
            status_code=_http_for(code),
            content=_problem(code, _msg_for(code), {"errors": exc.errors()}, _extract_correlation_id(req)),
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(req: Request, exc: Exception):
        code = "internal_error"
        logger.error("Unhandled error", error_type=exc.__class__.__name__, path=req.url.path, exc_info=exc)
        return JSONResponse(
            status_code=_http_for(code),
            content=_problem(code, _msg_for(code), {"type": exc.__class__.__name__}, _extract_correlation_id(req)),
        )
