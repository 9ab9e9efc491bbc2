from __future__ import annotations

import os


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw and raw.strip():
        return float(raw)
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw and raw.strip():
        return int(raw)
    return default


# Minutes before the session burns itself regardless of any download.
# Override with env var TAILBURN_TIMEOUT_MINUTES (or --timeout).
TIMEOUT_MINUTES = _env_int("TAILBURN_TIMEOUT_MINUTES", 10)

# A browser cannot confirm that it saved the file, so after a completed
# browser download we wait this long before shutting down.
BROWSER_SHUTDOWN_DELAY_SECONDS = _env_float("TAILBURN_BROWSER_SHUTDOWN_DELAY", 5.0)

# Upper bound on the graceful drain once a shutdown reason arrives.
DRAIN_TIMEOUT_SECONDS = _env_float("TAILBURN_DRAIN_TIMEOUT", 5.0)

LISTEN_PORT = _env_int("TAILBURN_PORT", 80)

# Retrieval client request timeout.
CLIENT_TIMEOUT_SECONDS = _env_float("TAILBURN_CLIENT_TIMEOUT", 60.0)

CHUNK_SIZE = _env_int("TAILBURN_CHUNK_SIZE", 64 * 1024)

# Path to the tailscale CLI used for identity lookups.
TAILSCALE_BIN = os.environ.get("TAILBURN_TAILSCALE_BIN", "tailscale")

# Protocol constants shared by server and client.
CLIENT_HEADER = "X-Tail-Burn-Client"
CLIENT_HEADER_VALUE = "true"
ACK_SUFFIX = "/ack"
TOKEN_BYTES = 12
PLACEHOLDER_FILENAME = "downloaded_file"
FALLBACK_SENDER = "A Tailscale User"

REASON_TIMEOUT = "Timeout reached"
REASON_ACK = "Client confirmed receipt"
REASON_BROWSER = "Browser download finished"
