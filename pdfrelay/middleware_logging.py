import asyncio
import logging
import time
from fastapi import FastAPI
from starlette.types import ASGIApp, Message, Receive, Scope, Send

# Configure root logger once (simple, readable format)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("pdfrelay.request")


class RequestLogMiddleware:
    """Logs one line per request once the body is fully sent.

    Event streams also get a line when headers go out, and a disconnect line if
    the client drops mid-stream.

    Plain ASGI rather than BaseHTTPMiddleware so long-lived event streams are
    passed through untouched and disconnects reach the endpoint.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        client = scope["client"][0] if scope.get("client") else "-"
        method = scope.get("method", "-")
        path = scope.get("path", "-")
        status = 500
        sent = 0
        streaming = False

        async def send_logged(message: Message) -> None:
            nonlocal status, sent, streaming
            if message["type"] == "http.response.start":
                status = message["status"]
                headers = dict(message.get("headers") or [])
                if headers.get(b"content-type", b"").startswith(b"text/event-stream"):
                    streaming = True
                    logger.info(
                        "client=%s method=%s path=%s status=%s stream=open ttfb_ms=%.2f",
                        client, method, path, status, (time.perf_counter() - start) * 1000.0
                    )
            elif message["type"] == "http.response.body":
                sent += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, send_logged)
        except asyncio.CancelledError:
            duration_ms = (time.perf_counter() - start) * 1000.0
            logger.info(
                "client=%s method=%s path=%s status=%s bytes=%d duration_ms=%.2f DISCONNECTED",
                client, method, path, status, sent, duration_ms
            )
            raise
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000.0
            logger.exception(
                "client=%s method=%s path=%s status=%s duration_ms=%.2f UNHANDLED",
                client, method, path, 500, duration_ms
            )
            raise
        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.info(
            "client=%s method=%s path=%s status=%s bytes=%d duration_ms=%.2f%s",
            client, method, path, status, sent, duration_ms,
            " stream=closed" if streaming else ""
        )


def register_request_logging(app: FastAPI):
    app.add_middleware(RequestLogMiddleware)
