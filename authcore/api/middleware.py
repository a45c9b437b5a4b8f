"""Request middleware. Rate limiting runs before authentication and routing."""
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from authcore.api.client import get_client_ip
from authcore.config import settings
from authcore.services.container import get_auth_services
from authcore.services.errors import RateLimitExceeded
from authcore.services.rate_limiter import EndpointClass, bucket_key, classify

logger = logging.getLogger(__name__)

UNLIMITED_PATHS = {"/", "/health"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not settings.RATE_LIMIT_ENABLED or path in UNLIMITED_PATHS:
            return await call_next(request)

        endpoint_class = classify(path)
        limit = (
            settings.RATE_LIMIT_AUTH_PER_MINUTE
            if endpoint_class == EndpointClass.AUTH
            else settings.RATE_LIMIT_PER_MINUTE
        )
        client_ip = get_client_ip(request)
        decision = get_auth_services().rate_limiter.allow(bucket_key(client_ip, endpoint_class), limit)

        if not decision.permitted:
            logger.warning("Rate limit exceeded for ip=%s on %s", client_ip, path)
            exc = RateLimitExceeded(limit)
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.message, **exc.extra()},
                headers=exc.headers(),
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-Id"] = request_id
            return response
        finally:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logger.info(
                "method=%s path=%s status=%s latency_ms=%s request_id=%s",
                request.method,
                request.url.path,
                status_code,
                latency_ms,
                request_id,
            )


def add_middlewares(app: FastAPI) -> None:
    # Starlette runs the last added middleware first.
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
