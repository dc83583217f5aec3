# core/errors.py
"""
Application error taxonomy.

Services raise these; the handler registered in main.py renders them as
{ code, message, details? } with the matching HTTP status.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthorizationError(AppError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class UsageLimitExceeded(ConflictError):
    code = "PLAN_LIMIT_EXCEEDED"


class PaymentRequiredError(AppError):
    """Subscription still PENDING; details carry a checkout url."""

    status_code = 402
    code = "PAYMENT_REQUIRED"


class SubscriptionInactiveError(AppError):
    status_code = 403
    code = "SUBSCRIPTION_INACTIVE"


class ExternalServiceError(AppError):
    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"


class InvalidSignatureError(AppError):
    status_code = 400
    code = "INVALID_SIGNATURE"


class ConsistencyError(AppError):
    """Stored state does not match what a request or provider event expects."""

    status_code = 409
    code = "INCONSISTENT_STATE"


class IllegalTransitionError(ConsistencyError):
    code = "ILLEGAL_TRANSITION"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("❌ %s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
