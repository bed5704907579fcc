"""ASGI response that relays an upstream event stream as it arrives."""

import httpx
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from codex_gateway.logging.audit import get_audit_logger
from codex_gateway.proxy.context import ForwardCancelled, ForwardContext, ForwardState

SSE_MEDIA_TYPE = "text/event-stream; charset=utf-8"


async def _next_chunk(chunks) -> bytes | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


class UpstreamRelayResponse(Response):
    """Streams upstream bytes to the caller, one ASGI message per piece.

    Every piece is sent as its own ``http.response.body`` message, which the
    server writes out immediately; buffering the whole upstream body first
    would defeat SSE. Disconnect detection comes from the forward context's
    linked signal rather than from ``receive``.
    """

    media_type = SSE_MEDIA_TYPE

    def __init__(self, upstream: httpx.Response, ctx: ForwardContext, chunk_size: int = 8 * 1024):
        self.upstream = upstream
        self.ctx = ctx
        self.chunk_size = chunk_size
        self.status_code = upstream.status_code
        self.background = None
        self.init_headers({"Cache-Control": "no-cache"})

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        logger = get_audit_logger()
        ctx = self.ctx
        ctx.state = ForwardState.STREAMING_RELAY
        relayed = 0
        try:
            await send({
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            })

            chunks = self.upstream.aiter_bytes().__aiter__()
            while True:
                data = await ctx.signal.guard(_next_chunk(chunks))
                if data is None:
                    break
                for start in range(0, len(data), self.chunk_size):
                    await send({
                        "type": "http.response.body",
                        "body": data[start:start + self.chunk_size],
                        "more_body": True,
                    })
                relayed += len(data)

            await send({"type": "http.response.body", "body": b"", "more_body": False})
            ctx.state = ForwardState.DONE
            logger.info(
                "Stream completed",
                extra={"audit_data": {
                    "upstream_status": self.status_code,
                    "bytes_relayed": relayed,
                }},
            )

        except (ForwardCancelled, OSError):
            # Caller is gone: stop writing, nothing to report to anyone
            ctx.state = ForwardState.FAILED
            logger.warning(
                "Downstream disconnected during stream",
                extra={"audit_data": {"bytes_relayed": relayed}},
            )

        except httpx.HTTPError as e:
            # Headers are already out; end the stream instead of surfacing an error
            ctx.state = ForwardState.FAILED
            logger.error(
                "Upstream stream interrupted",
                extra={"audit_data": {
                    "error_type": type(e).__name__,
                    "bytes_relayed": relayed,
                }},
            )
            await send({"type": "http.response.body", "body": b"", "more_body": False})

        finally:
            await self.upstream.aclose()
            ctx.close()
