"""Forwarding engine: one upstream /v1/responses call per inbound request.

Non-streaming requests are bounded by a fixed deadline and relayed once the
full body is in. Streaming requests have no engine deadline and are relayed
chunk by chunk. Caller disconnect aborts either mode at any await.
"""

import httpx
from fastapi.responses import Response

from codex_gateway.config.settings import Settings
from codex_gateway.logging.audit import RequestTimer, get_audit_logger
from codex_gateway.proxy.context import CancelReason, ForwardCancelled, ForwardContext, ForwardState
from codex_gateway.proxy.errors import UPSTREAM_CONNECTION_ERROR, UPSTREAM_ERROR, gateway_error
from codex_gateway.proxy.relay import UpstreamRelayResponse
from codex_gateway.security.credentials import Credential
from codex_gateway.security.masking import scrub

UPSTREAM_PATH = "/v1/responses"

# nginx's "client closed request"; nobody reads it, but access logs do
CLIENT_CLOSED_REQUEST = 499


class UpstreamForwarder:
    """Owns the pooled upstream client and the resolved credential."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        credential: Credential,
        non_streaming_timeout: float = 120.0,
        chunk_size: int = 8 * 1024,
    ):
        self._client = client
        self._url = httpx.URL(base_url).join(UPSTREAM_PATH)
        self._credential = credential
        self._timeout = non_streaming_timeout
        self._chunk_size = chunk_size

    @classmethod
    def from_settings(cls, settings: Settings, credential: Credential) -> "UpstreamForwarder":
        # No client-level timeout: deadlines are enforced per request via the
        # linked cancel signal, and streams must be able to run indefinitely.
        client = httpx.AsyncClient(timeout=None)
        return cls(
            client,
            base_url=settings.codex_upstream_base_url,
            credential=credential,
            non_streaming_timeout=settings.non_streaming_timeout,
            chunk_size=settings.stream_chunk_size,
        )

    @property
    def upstream_url(self) -> str:
        return str(self._url)

    def _build_headers(self, ctx: ForwardContext) -> dict:
        return {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if ctx.stream else "application/json",
            "Authorization": f"Bearer {self._credential.token}",
            "X-Request-Id": ctx.request_id,
        }

    def build_request(self, ctx: ForwardContext, payload: dict) -> httpx.Request:
        return self._client.build_request(
            "POST", self._url, json=payload, headers=self._build_headers(ctx)
        )

    async def forward(self, ctx: ForwardContext, payload: dict) -> Response:
        """Send ``payload`` upstream and return the response to relay."""
        ctx.stream = payload.get("stream") is True
        ctx.state = ForwardState.BUILDING
        request = self.build_request(ctx, payload)

        try:
            ctx.start(deadline=None if ctx.stream else self._timeout)
            ctx.state = ForwardState.SENDING
            try:
                with RequestTimer() as timer:
                    upstream = await ctx.signal.guard(self._client.send(request, stream=True))
            except (ForwardCancelled, httpx.HTTPError, OSError) as e:
                ctx.close()
                return self._failure_response(ctx, e)

            ctx.state = ForwardState.HEADERS_RECEIVED
            get_audit_logger().info(
                "Upstream responded",
                extra={"audit_data": {
                    "upstream_status": upstream.status_code,
                    "stream": ctx.stream,
                    "latency_ms": timer,
                }},
            )
            if ctx.stream:
                # The relay response owns the upstream stream and the context from here
                return UpstreamRelayResponse(upstream, ctx, self._chunk_size)
            return await self._relay_buffered(ctx, upstream)
        except BaseException:
            ctx.close()
            raise

    async def _relay_buffered(self, ctx: ForwardContext, upstream: httpx.Response) -> Response:
        ctx.state = ForwardState.NON_STREAMING_BUFFERING
        try:
            body = await ctx.signal.guard(upstream.aread())
        except (ForwardCancelled, httpx.HTTPError, OSError) as e:
            return self._failure_response(ctx, e)
        finally:
            await upstream.aclose()
            ctx.close()

        status = upstream.status_code
        ctx.state = ForwardState.DONE
        if status >= 400 and not body.strip():
            return gateway_error(status, UPSTREAM_ERROR, f"Upstream returned HTTP {status}.")

        # Set the header directly so Starlette does not append a charset
        content_type = upstream.headers.get("content-type") or "application/json"
        return Response(content=body, status_code=status, headers={"content-type": content_type})

    def _failure_response(self, ctx: ForwardContext, error: BaseException) -> Response:
        logger = get_audit_logger()
        ctx.state = ForwardState.FAILED

        if isinstance(error, ForwardCancelled):
            if error.reason is CancelReason.CALLER_DISCONNECTED:
                logger.warning("Downstream request aborted by client")
                return Response(status_code=CLIENT_CLOSED_REQUEST)
            logger.error(
                "Upstream request timed out",
                extra={"audit_data": {"timeout_seconds": self._timeout}},
            )
            return gateway_error(502, UPSTREAM_CONNECTION_ERROR, "Upstream request timed out.")

        logger.error(
            "Upstream request failed",
            extra={"audit_data": {
                "upstream_url": self.upstream_url,
                "error_type": type(error).__name__,
                "error": scrub(str(error), self._credential.token),
            }},
        )
        return gateway_error(502, UPSTREAM_CONNECTION_ERROR, "Failed to reach upstream API.")

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()
