import logging
import time
import uuid

from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from tenant_billing.config import settings
from tenant_billing.metrics import REQUEST_COUNT, REQUEST_ERRORS, REQUEST_LATENCY

logger = logging.getLogger(__name__)


def _extract_bearer_token(request: Request) -> str | None:
    auth = request.headers.get("authorization")
    if not auth:
        return None
    parts = auth.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def _claims_from_jwt(token: str | None) -> dict:
    if not token or not settings.jwt_secret:
        return {}
    try:
        return jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        return {}


def _request_path(request: Request) -> str:
    route = request.scope.get("route")
    if route and hasattr(route, "path"):
        return route.path
    return request.url.path


def _record(request: Request, status_code: int, duration_ms: float) -> str:
    path = _request_path(request)
    REQUEST_COUNT.labels(request.method, path, str(status_code)).inc()
    REQUEST_LATENCY.labels(request.method, path, str(status_code)).observe(
        duration_ms / 1000.0
    )
    if status_code >= 500:
        REQUEST_ERRORS.labels(request.method, path, str(status_code)).inc()
    return path


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        claims = _claims_from_jwt(_extract_bearer_token(request))
        actor_id = claims.get("sub")
        tenant_id = claims.get("tenant_id")
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.monotonic() - start) * 1000.0
            path = _record(request, 500, duration_ms)
            logger.exception(
                "request_failed",
                extra={
                    "request_id": request_id,
                    "actor_id": actor_id,
                    "tenant_id": tenant_id,
                    "path": path,
                    "method": request.method,
                    "status": 500,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            raise
        duration_ms = (time.monotonic() - start) * 1000.0
        path = _record(request, response.status_code, duration_ms)
        logger.info(
            "request_completed",
            extra={
                "request_id": request_id,
                "actor_id": actor_id,
                "tenant_id": tenant_id,
                "path": path,
                "method": request.method,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        response.headers["x-request-id"] = request_id
        return response
