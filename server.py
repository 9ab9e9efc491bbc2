from __future__ import annotations

import logging
import os
import socket
import threading
import time
from typing import BinaryIO, Callable, Optional
from urllib.parse import quote

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from tailburn_backend.config import (
    BROWSER_SHUTDOWN_DELAY_SECONDS,
    CHUNK_SIZE,
    DRAIN_TIMEOUT_SECONDS,
    FALLBACK_SENDER,
    REASON_ACK,
    REASON_BROWSER,
)
from tailburn_backend.identity import IdentityError, IdentityResolver
from tailburn_backend.pages import render_burned, render_landing
from tailburn_backend.session import ClientKind, TransferSession, classify
from tailburn_backend.shutdown import ShutdownSignal, arm_timer

log = logging.getLogger(__name__)

# Landing and burned pages must never be served from a cache.
NO_STORE = {"Cache-Control": "no-store"}


def content_disposition(file_name: str) -> str:
    quoted = quote(file_name)
    if quoted != file_name:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{file_name}"'


class FileDelivery(StreamingResponse):
    """Stream an already-open file and report whether every byte went out.

    `on_finish(sent_all)` runs exactly once after the response, whether the
    stream completed, failed, or the client went away. The file handle is
    closed before it runs.
    """

    def __init__(
        self,
        fh: BinaryIO,
        size: int,
        file_name: str,
        on_finish: Callable[[bool], None],
    ) -> None:
        self._fh = fh
        self._size = size
        self._on_finish = on_finish
        self.sent_all = False
        headers = {
            "Content-Disposition": content_disposition(file_name),
            "Content-Length": str(size),
            "X-Content-Type-Options": "nosniff",
            **NO_STORE,
        }
        super().__init__(self._chunks(), media_type="application/octet-stream", headers=headers)

    async def _chunks(self):
        remaining = self._size
        while remaining > 0:
            chunk = await run_in_threadpool(self._fh.read, min(CHUNK_SIZE, remaining))
            if not chunk:
                raise OSError(f"file shrank during transfer ({remaining} bytes missing)")
            remaining -= len(chunk)
            yield chunk
        # Only reached once the last chunk has been handed to the server.
        self.sent_all = True

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except Exception as e:
            log.error("Transfer failed: %s", e)
            raise
        finally:
            self._fh.close()
            self._on_finish(self.sent_all)


def _peer_address(request: Request) -> str:
    if request.client is None:
        return ""
    host, port = request.client.host, request.client.port
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _gone(kind: ClientKind) -> Response:
    if kind is ClientKind.COOPERATING:
        raise HTTPException(status_code=410, detail="Gone", headers=NO_STORE)
    return HTMLResponse(render_burned(), status_code=410, headers=NO_STORE)


def create_app(
    session: TransferSession,
    resolver: IdentityResolver,
    signal: ShutdownSignal,
    *,
    browser_shutdown_delay: float = BROWSER_SHUTDOWN_DELAY_SECONDS,
) -> FastAPI:
    """Build the two-route application for a single session.

    Only the secret path and its ack sub-path are routed; everything else is
    a plain 404.
    """
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
    app.state.session = session
    app.state.shutdown_signal = signal

    @app.post(session.ack_path)
    async def acknowledge() -> PlainTextResponse:
        # Knowing the ack path already proves the caller saw the secret path.
        log.info("ACK received from cooperating client.")
        session.used.store(True)
        signal.offer(REASON_ACK)
        return PlainTextResponse("OK", headers=NO_STORE)

    def _finish(kind: ClientKind, who: str, sent_all: bool) -> None:
        if sent_all and kind is ClientKind.INTERACTIVE:
            # A browser cannot confirm the save, so a completed body is final.
            session.used.store(True)
            log.info("Browser transfer to %s complete. Starting %.1fs timer...", who, browser_shutdown_delay)
            arm_timer(signal, browser_shutdown_delay, REASON_BROWSER)
        elif sent_all:
            log.info("Sent file to %s; waiting for ACK.", who)
        session.in_progress.store(False)

    @app.api_route(session.secret_path, methods=["GET", "POST"])
    async def deliver(request: Request) -> Response:
        peer = _peer_address(request)
        try:
            who = await run_in_threadpool(resolver.resolve, peer)
        except IdentityError as e:
            log.warning("Identity lookup failed for %s: %s", peer, e)
            raise HTTPException(status_code=500, detail="Identity Error")
        if not session.authorizes(who):
            log.warning("BLOCKED: %s", who)
            raise HTTPException(status_code=403, detail="Forbidden")

        kind = classify(request.headers)

        if session.used.load():
            return _gone(kind)

        if request.method == "GET" and kind is ClientKind.INTERACTIVE:
            try:
                sender = await run_in_threadpool(resolver.self_identity)
            except IdentityError:
                sender = FALLBACK_SENDER
            return HTMLResponse(
                render_landing(sender, session.file_name, session.file_size_display),
                headers=NO_STORE,
            )

        if not session.in_progress.compare_and_set(False, True):
            return _gone(kind)
        # A delivery or ACK may have burned the session while we were checking.
        if session.used.load():
            session.in_progress.store(False)
            return _gone(kind)

        log.info("Sending file to %s...", who)
        try:
            fh = open(session.file_path, "rb")
        except OSError as e:
            session.in_progress.store(False)
            log.error("Cannot open %s: %s", session.file_path, e)
            raise HTTPException(status_code=500, detail="File Error")
        try:
            size = os.fstat(fh.fileno()).st_size
        except OSError as e:
            fh.close()
            session.in_progress.store(False)
            log.error("Cannot stat %s: %s", session.file_path, e)
            raise HTTPException(status_code=500, detail="File Error")

        return FileDelivery(
            fh,
            size,
            session.file_name,
            on_finish=lambda sent_all: _finish(kind, who, sent_all),
        )

    return app


def bind_listener(host: str, port: int) -> socket.socket:
    """Bind the listening socket up front so failures abort before serving."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    return socket.create_server((host, port), family=family)


class ServerThread:
    """Run uvicorn on a pre-bound socket in a background thread."""

    def __init__(
        self,
        app: FastAPI,
        sock: socket.socket,
        *,
        log_level: str = "warning",
        access_log: bool = False,
        drain_timeout: float = DRAIN_TIMEOUT_SECONDS,
    ) -> None:
        config = uvicorn.Config(
            app,
            log_level=log_level,
            access_log=access_log,
            timeout_keep_alive=60,
            timeout_graceful_shutdown=max(1, int(drain_timeout)),
        )
        self.server = uvicorn.Server(config)
        self.sock = sock
        self._thread = threading.Thread(
            target=self.server.run,
            kwargs={"sockets": [sock]},
            name="tailburn-http",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def wait_started(self, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.server.started:
                return True
            if not self._thread.is_alive():
                return False
            time.sleep(0.01)
        return self.server.started

    def request_exit(self) -> None:
        self.server.should_exit = True

    def wait_drained(self, timeout: Optional[float] = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def url(self) -> str:
        host, port = self.sock.getsockname()[:2]
        if ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{port}"
