"""
CargoDesk Error Taxonomy

Domain exceptions raised by services and rendered by the API layer as
``{"error": <message>, "details"?: ...}`` with the matching HTTP status.
"""

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core import envelope
from core.config import get_settings

logger = structlog.get_logger()


class CargoDeskError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, details: Any = None, headers: dict[str, str] | None = None):
        self.message = message or self.default_message
        self.details = details
        self.headers = headers
        super().__init__(self.message)


class Unauthorized(CargoDeskError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(CargoDeskError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(CargoDeskError):
    status_code = 404
    default_message = "Not found"


class NoMatchingRule(NotFound):
    default_message = "No pricing rule matches this shipment"


class ValidationError(CargoDeskError):
    status_code = 400
    default_message = "Invalid input"


class InvalidTransition(ValidationError):
    status_code = 409
    default_message = "Invalid status transition"


class Conflict(CargoDeskError):
    status_code = 409
    default_message = "Conflict"


class AmountExceedsBalance(CargoDeskError):
    status_code = 400
    default_message = "Payment amount exceeds balance"


class CurrencyMismatch(CargoDeskError):
    status_code = 400
    default_message = "Payment currency does not match invoice currency"


class GatewayError(CargoDeskError):
    status_code = 502
    default_message = "Payment gateway error"


class RateLimitExceeded(CargoDeskError):
    status_code = 429
    default_message = "Rate limit exceeded"


def _body(exc: CargoDeskError) -> dict[str, Any]:
    body: dict[str, Any] = {"error": exc.message}
    if exc.details is not None:
        body["details"] = exc.details
    return body


def _respond(req: Request, status_code: int, content: dict[str, Any], headers: dict[str, str] | None = None):
    """Warehouse integration clients get the envelope; everyone else the plain body."""
    if req.url.path.startswith(envelope.WAREHOUSE_API_PREFIX):
        content = envelope.failure(content["error"], status_code, content.get("details"))
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CargoDeskError)
    async def _domain_exc(req: Request, exc: CargoDeskError):
        if exc.status_code >= 500:
            logger.warning("api.domain_error", path=req.url.path, error=exc.message, status=exc.status_code)
        return _respond(req, exc.status_code, _body(exc), exc.headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        # Malformed JSON bodies land here too (type "json_invalid").
        details = []
        for err in exc.errors():
            loc = [str(part) for part in err.get("loc", ()) if part != "body"]
            details.append({"field": ".".join(loc) or "body", "message": err.get("msg", "invalid")})
        return _respond(req, 400, {"error": "Invalid input", "details": details})

    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        logger.error("api.unhandled_error", path=req.url.path, method=req.method, error=str(exc), exc_info=True)
        content: dict[str, Any] = {"error": "Internal server error"}
        if get_settings().debug:
            content["details"] = f"{type(exc).__name__}: {exc}"
        return _respond(req, 500, content)
