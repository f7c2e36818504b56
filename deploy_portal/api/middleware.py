"""Request middleware: per-request log context for the portal API."""

import re
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from deploy_portal.utils.logging import get_logger

logger = get_logger(__name__)

CLIENT_PATH = re.compile(r"^/v1/clients/(?P<client_id>[^/]+)")


def client_id_from_path(path: str) -> str | None:
    """Client id addressed by a ``/v1/clients/{id}/...`` path, if any."""
    match = CLIENT_PATH.match(path)
    return match.group("client_id") if match else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request and client ids to every log line emitted for a request.

    Orchestrator and ledger events logged while serving the request carry
    ``request_id``, plus ``client_id`` on client routes.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        context = {"request_id": request_id}
        client_id = client_id_from_path(request.url.path)
        if client_id:
            context["client_id"] = client_id

        with structlog.contextvars.bound_contextvars(**context):
            logger.debug("request.started", method=request.method, path=request.url.path)

            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            log = logger.warning if response.status_code >= 500 else logger.info
            log(
                "request.completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

        response.headers["X-Request-ID"] = request_id
        return response
