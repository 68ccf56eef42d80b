"""ASGI middleware enforcing the inbound body ceiling.

Requests announcing a larger ``Content-Length`` are refused up front. Chunked
bodies are counted as they are received and the read is aborted with a 413
once the running total passes the ceiling.
"""

from loguru import logger
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

BODY_TOO_LARGE = "Request body too large."


def body_too_large_response() -> JSONResponse:
    return JSONResponse(status_code=413, content={"error": BODY_TOO_LARGE})


class BodySizeLimitMiddleware:
    def __init__(self, app: ASGIApp, max_body_bytes: int) -> None:
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        content_length = Headers(scope=scope).get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_body_bytes:
            logger.warning("Rejected {} byte body for {}", content_length, scope["path"])
            await body_too_large_response()(scope, receive, send)
            return

        received = 0
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    logger.warning("Aborted body read for {} after {} bytes", scope["path"], received)
                    raise HTTPException(status_code=413, detail=BODY_TOO_LARGE)
            return message

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except HTTPException as exc:
            if exc.status_code != 413 or response_started:
                raise
            await body_too_large_response()(scope, receive, send)
