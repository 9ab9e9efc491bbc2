from __future__ import annotations

import secrets
from pathlib import Path

from .config import PLACEHOLDER_FILENAME, TOKEN_BYTES


def new_capability_token(nbytes: int = TOKEN_BYTES) -> str:
    """Return a hex-encoded random token for the secret path.

    The token is the capability: knowing it is what grants access to the
    delivery route, so never go below 12 bytes of entropy.
    """
    return secrets.token_hex(max(TOKEN_BYTES, nbytes))


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name in (".", ".."):
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name or "\x00" in name:
        return False
    return True


def safe_download_name(name: str | None) -> str:
    """Reduce a server-suggested filename to something safe to create locally.

    The name comes from a response header, so strip any directory parts and
    fall back to the placeholder when nothing usable is left.
    """
    if not name:
        return PLACEHOLDER_FILENAME
    candidate = name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not is_safe_basename(candidate):
        return PLACEHOLDER_FILENAME
    return candidate
