import time
from datetime import datetime, timezone

import structlog
from fastapi import Request, Response
from sqlalchemy import update
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from statuspage.core.database import ApiKey, async_session
from statuspage.core.exceptions import AuthenticationError
from statuspage.services.auth import AuthService, is_well_formed

logger = structlog.get_logger()

# Paths that skip authentication
PUBLIC_PATHS = {"/health", "/", "/docs", "/openapi.json", "/redoc"}

# Public status page reads (display status, uptime bars)
PUBLIC_PREFIXES = ("/api/public/",)


class AuthMiddleware(BaseHTTPMiddleware):
    """Validates the Bearer API key on every request except public paths."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES):
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            error = AuthenticationError("Missing or malformed Authorization header.")
            return JSONResponse(status_code=error.status, content=error.to_dict())

        token = auth_header.removeprefix("Bearer ").strip()
        if not is_well_formed(token):
            error = AuthenticationError("Unrecognized API key format.")
            return JSONResponse(status_code=error.status, content=error.to_dict())

        key_row = await AuthService(session_factory=async_session).find_active_key(token)
        if key_row is None:
            error = AuthenticationError("Invalid or revoked API key.")
            return JSONResponse(status_code=error.status, content=error.to_dict())

        request.state.api_key_id = key_row.id
        request.state.api_key_prefix = key_row.key_prefix
        request.state.api_key_scope = key_row.scope

        async with async_session() as session:
            await session.execute(
                update(ApiKey).where(ApiKey.id == key_row.id).values(last_used_at=datetime.now(timezone.utc))
            )
            await session.commit()

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request as structured JSON."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = round((time.perf_counter() - start) * 1000, 1)

        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            latency_ms=latency_ms,
            user_key_prefix=getattr(request.state, "api_key_prefix", None),
        )
        return response
