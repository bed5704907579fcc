"""Per-request logging middleware.

Plain ASGI rather than BaseHTTPMiddleware, so streamed responses pass through
untouched and the endpoint keeps the real ``receive`` for disconnect detection.
"""

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from codex_gateway.logging.audit import (
    RequestTimer,
    get_audit_logger,
    inherit_request_id,
    request_id_var,
)
from codex_gateway.security.masking import header_summary


class RequestLoggingMiddleware:
    """Assigns the request id, logs request/response lines, echoes X-Request-Id."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        logger = get_audit_logger()
        headers = Headers(scope=scope)
        rid = inherit_request_id(headers.get("x-request-id"))
        token = request_id_var.set(rid)
        scope.setdefault("state", {})["request_id"] = rid

        method = scope["method"]
        path = scope["path"]
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                MutableHeaders(scope=message)["X-Request-Id"] = rid
            await send(message)

        logger.info(
            f"--> {method} {path}",
            extra={"audit_data": {"headers": header_summary(headers)}},
        )

        timer = RequestTimer()
        try:
            with timer:
                await self.app(scope, receive, send_wrapper)
        except Exception:
            logger.exception(f"Unhandled exception on {method} {path}")
            raise
        finally:
            logger.info(
                "Request completed",
                extra={"audit_data": {
                    "method": method,
                    "path": path,
                    "status": status_code,
                    "elapsed_ms": timer,
                }},
            )
            request_id_var.reset(token)
