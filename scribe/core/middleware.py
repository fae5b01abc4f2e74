"""ASGI middleware for request tracing."""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("scribe.core.middleware")

REQUEST_ID_HEADER = "x-request-id"
_INBOUND_ID_RE = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


def _resolve_request_id(scope: Scope) -> str:
  """Reuse a well-formed id sent by the caller (e.g. a proxy), otherwise mint one."""
  inbound = Headers(scope=scope).get(REQUEST_ID_HEADER)
  if inbound and _INBOUND_ID_RE.match(inbound):
    return inbound
  return str(uuid.uuid4())


def _target(scope: Scope) -> str:
  path = scope.get("path", "")
  query_string = scope.get("query_string", b"")
  return f"{path}?{query_string.decode('latin-1')}" if query_string else path


class RequestLoggingMiddleware:
  """Log method, target, status and latency; tag every response with the request id."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    request_id = _resolve_request_id(scope)
    # Exception handlers read the id back from request.state.
    scope.setdefault("state", {})["request_id"] = request_id
    method = scope.get("method", "UNKNOWN")
    target = _target(scope)
    started = time.perf_counter()
    logger.info("Incoming request request_id=%s %s %s", request_id, method, target)
    status_code = 0

    async def send_with_request_id(message: dict[str, Any]) -> None:
      nonlocal status_code
      if message.get("type") == "http.response.start":
        status_code = message.get("status", 0)
        headers = MutableHeaders(scope=message)
        if REQUEST_ID_HEADER not in headers:
          headers[REQUEST_ID_HEADER] = request_id
      await send(message)

    try:
      await self.app(scope, receive, send_with_request_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      logger.info("Response request_id=%s %s %s status=%s (took %.2fms)", request_id, method, target, status_code, elapsed_ms)
