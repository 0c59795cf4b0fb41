from typing import Any, Dict, Optional
import json
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from kubernetes.client.rest import ApiException
from starlette.exceptions import HTTPException as StarletteHTTPException
from urllib3.exceptions import HTTPError as Urllib3HTTPError


logger = logging.getLogger(__name__)


class OperatorError(Exception):
    """Base class for errors raised while reconciling GroupPermissions."""

    retryable = False

    def __init__(self, message: str, *, code: str = "OPERATOR_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ConfigurationError(OperatorError):
    """The GroupPermission itself is invalid; only a spec change fixes it."""

    def __init__(self, message: str, *, cluster_role_name: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)
        self.cluster_role_name = cluster_role_name


class TransientError(OperatorError):
    """Network failures, timeouts and server-side errors."""

    retryable = True

    def __init__(self, message: str, *, code: str = "TRANSIENT_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code=code, details=details)


class ConflictError(TransientError):
    """Stale resourceVersion on write; the whole pass must be re-run."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="CONFLICT", details=details)


class NotFoundError(OperatorError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="NOT_FOUND", details=details)


class AlreadyExistsError(OperatorError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="ALREADY_EXISTS", details=details)


class PartialApplyError(OperatorError):
    """Some bindings of a pass failed while others were applied."""

    retryable = True

    def __init__(self, message: str, *, failed_roles: Optional[list[str]] = None) -> None:
        super().__init__(message, code="PARTIAL_APPLY", details={"failed_roles": failed_roles or []})
        self.failed_roles = failed_roles or []


def _api_reason(exc: ApiException) -> Optional[str]:
    if not exc.body:
        return None
    try:
        body = json.loads(exc.body)
    except (TypeError, ValueError):
        return None
    if isinstance(body, dict):
        return body.get("reason")
    return None


def from_api_exception(exc: ApiException, what: str) -> OperatorError:
    """Translate a Kubernetes ApiException into the operator error hierarchy."""
    status = exc.status or 0
    reason = _api_reason(exc)
    details = {"status": status, "reason": reason or exc.reason}
    message = f"{what}: {status} {reason or exc.reason}"

    if status == 404:
        return NotFoundError(message, details=details)
    if status == 409:
        if reason == "AlreadyExists":
            return AlreadyExistsError(message, details=details)
        return ConflictError(message, details=details)
    if status == 422 or status == 400:
        return ConfigurationError(message, details=details)
    if status == 0 or status == 429 or status >= 500:
        return TransientError(message, details=details)
    # 401/403 and anything unexpected: surface it, but keep retrying with backoff
    return TransientError(message, code="API_ERROR", details=details)


def translate_client_error(exc: Exception, what: str) -> OperatorError:
    if isinstance(exc, OperatorError):
        return exc
    if isinstance(exc, ApiException):
        return from_api_exception(exc, what)
    if isinstance(exc, (Urllib3HTTPError, TimeoutError, ConnectionError)):
        return TransientError(f"{what}: {exc}", details={"error_type": type(exc).__name__})
    raise exc


def _build_error_payload(
    *,
    message: str,
    status_code: int,
    code: str = "OPERATOR_ERROR",
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    rid = request_id or str(uuid.uuid4())
    payload: Dict[str, Any] = {
        "success": False,
        "error": {
            "message": message,
            "code": code,
            **({"details": details} if details else {}),
        },
        "request_id": rid,
        "status_code": status_code,
    }
    return payload


_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (ConfigurationError, 422),
    (ConflictError, 409),
    (TransientError, 503),
)


def register_exception_handlers(app: FastAPI) -> None:
    """Register uniform JSON error responses for the health/metrics API."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        req_id = str(uuid.uuid4())
        message = exc.detail if isinstance(exc.detail, str) else "request failed"
        payload = _build_error_payload(message=message, status_code=exc.status_code, code="HTTP_ERROR", request_id=req_id)
        logger.warning("HTTPException: status=%s path=%s request_id=%s", exc.status_code, request.url.path, req_id)
        return JSONResponse(status_code=exc.status_code, content=payload, headers={"X-Request-ID": req_id})

    @app.exception_handler(OperatorError)
    async def operator_exception_handler(request: Request, exc: OperatorError):  # type: ignore[override]
        req_id = str(uuid.uuid4())
        status_code = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
        payload = _build_error_payload(
            message=exc.message,
            status_code=status_code,
            code=exc.code,
            details=exc.details,
            request_id=req_id,
        )
        logger.warning(
            "OperatorError: status=%s code=%s path=%s request_id=%s",
            status_code,
            exc.code,
            request.url.path,
            req_id,
        )
        return JSONResponse(status_code=status_code, content=payload, headers={"X-Request-ID": req_id})
