"""Audit every request to a health-data route.

Sits behind the authentication layer, which is expected to put the
authenticated user id on ``request.state.user_id`` (or on
``request.state.auth.user_id``).  Requests to health-data paths are refused
while the auditor has the user rate-limited or pending verification;
otherwise the access is recorded and the request proceeds.  Audit failures
never block a request.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.audit.auditor import AccessAuditor, hash_identifier
from src.config import Settings, get_settings
from src.models.audit import AccessEvent

logger = logging.getLogger("cadence.middleware.health_access")


def _json_error(detail: str, status_code: int, headers: dict[str, str] | None = None) -> Response:
    return Response(
        content=f'{{"detail":"{detail}"}}',
        status_code=status_code,
        media_type="application/json",
        headers=headers,
    )


class HealthDataAccessMiddleware(BaseHTTPMiddleware):
    """Gate and audit access to health-data routes."""

    def __init__(
        self,
        app: Any,
        auditor: AccessAuditor,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(app)
        s = settings or get_settings()
        self._auditor = auditor
        self._salt = s.audit_hash_salt
        self._prefixes = tuple(s.health_data_path_prefixes)
        self._retry_after = str(auditor.config.rate_limit_seconds)

    def _is_health_path(self, path: str) -> bool:
        return path.startswith(self._prefixes)

    @staticmethod
    def _user_id(request: Request) -> str | None:
        user_id = getattr(request.state, "user_id", None)
        if user_id:
            return str(user_id)
        auth = getattr(request.state, "auth", None)
        auth_user = getattr(auth, "user_id", None)
        return str(auth_user) if auth_user else None

    @staticmethod
    def _client_ip(request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method == "OPTIONS" or not self._is_health_path(request.url.path):
            return await call_next(request)

        user_id = self._user_id(request)
        if not user_id:
            return _json_error("Authentication required", 401)

        if await run_in_threadpool(self._auditor.is_rate_limited, user_id):
            logger.warning("Rejected rate-limited health data request for user %s", user_id)
            return _json_error(
                "Too many requests. Please try again later.",
                429,
                headers={"Retry-After": self._retry_after},
            )

        if await run_in_threadpool(self._auditor.requires_verification, user_id):
            logger.warning("Health data request for user %s requires verification", user_id)
            return _json_error("Additional verification required", 403)

        event = AccessEvent(
            user_id=user_id,
            action=f"{request.method} {request.url.path}",
            ip_hash=hash_identifier(self._client_ip(request), self._salt),
            user_agent_hash=hash_identifier(request.headers.get("User-Agent", ""), self._salt),
        )
        context = {"method": request.method, "path": request.url.path}
        await run_in_threadpool(self._auditor.record_access, event, context)

        return await call_next(request)
