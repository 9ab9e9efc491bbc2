from __future__ import annotations

import argparse
import logging
from typing import Optional

from .config import LISTEN_PORT, TIMEOUT_MINUTES
from .identity import IdentityError, TailscaleResolver
from .receiver import AckOutcome, RetrievalError, retrieve
from .session import ConfigError, TransferSession, format_bytes
from .shutdown import ShutdownCoordinator, ShutdownSignal

log = logging.getLogger("tailburn")


def _share_url(host: str, port: int, path: str) -> str:
    if port == 80:
        return f"http://{host}{path}"
    return f"http://{host}:{port}{path}"


def cmd_send(args: argparse.Namespace) -> int:
    # Imported here so `receive` never pulls in the server stack.
    from server import ServerThread, bind_listener, create_app

    try:
        session = TransferSession.create(args.file, args.target)
    except ConfigError as e:
        log.error("%s", e)
        return 1

    resolver = TailscaleResolver()
    host = args.host
    if not host:
        try:
            host = resolver.self_address()
        except IdentityError as e:
            log.error("Cannot find this node's tailnet address: %s", e)
            return 1

    try:
        sock = bind_listener(host, args.port)
    except OSError as e:
        log.error("Cannot listen on %s:%d: %s", host, args.port, e)
        return 1

    signal = ShutdownSignal()
    app = create_app(session, resolver, signal)
    server = ServerThread(
        app,
        sock,
        log_level="debug" if args.debug else "warning",
        access_log=args.debug,
    )

    url = _share_url(resolver.self_dns_name() or host, args.port, session.secret_path)
    print("tailburn (Server Mode)")
    print("-------------------------------------------")
    print(f"File:   {session.file_name} ({session.file_size_display})")
    print(f"Target: {session.target_identity}")
    if args.wipe:
        print("MODE:   WIPE ENABLED (file will be deleted)")
    print("-------------------------------------------")
    print(f"Browser link: {url}")
    print(f"Command:      tailburn receive {url}")
    print("\n(Waiting...)")

    server.start()
    coordinator = ShutdownCoordinator(
        signal,
        server.request_exit,
        server.wait_drained,
        timeout_seconds=args.timeout * 60,
        wipe_path=session.file_path if args.wipe else None,
    )
    reason = coordinator.run()
    print(f"\nShut down: {reason}")
    return 0


def cmd_receive(args: argparse.Namespace) -> int:
    log.info("Connecting to tailburn server...")
    try:
        transcript = retrieve(args.url)
    except RetrievalError as e:
        log.error("%s", e)
        return 1

    print(f"Download complete: {transcript.path} ({format_bytes(transcript.bytes_received)})")
    if transcript.ack is AckOutcome.CONFIRMED:
        print("Server confirmed destruction.")
    elif transcript.ack is AckOutcome.UNCONFIRMED:
        log.warning("Server responded but did not confirm destruction.")
    else:
        log.warning("Server may have already timed out (link is dead).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tailburn", description="Single-use file drops over a tailnet.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    send = sub.add_parser("send", help="host a file for exactly one download")
    send.add_argument("--target", required=True, help="tailnet login name allowed to download")
    send.add_argument("--timeout", type=float, default=TIMEOUT_MINUTES, help="minutes before auto-burn")
    send.add_argument("--wipe", action="store_true", help="delete the source file after shutdown")
    send.add_argument("--debug", action="store_true", help="verbose server logs")
    send.add_argument("--host", default=None, help="address to bind (default: this node's tailnet IPv4)")
    send.add_argument("--port", type=int, default=LISTEN_PORT)
    send.add_argument("file")
    send.set_defaults(func=cmd_send)

    recv = sub.add_parser("receive", help="download a file and burn the link")
    recv.add_argument("url")
    recv.set_defaults(func=cmd_receive)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    level = "DEBUG" if getattr(args, "debug", False) else args.log_level
    logging.basicConfig(level=getattr(logging, level), format="%(asctime)s [%(levelname)s] %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return int(args.func(args))
