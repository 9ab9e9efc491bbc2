from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .config import ACK_SUFFIX, CLIENT_HEADER, CLIENT_HEADER_VALUE
from .security import new_capability_token


class ConfigError(Exception):
    """Raised for startup problems that must abort before the listener opens."""


class AtomicFlag:
    """A boolean shared between request handlers.

    Handlers run concurrently, so every read and write goes through the lock;
    compare_and_set is the only way to claim the flag.
    """

    def __init__(self, value: bool = False) -> None:
        self._value = value
        self._lock = threading.Lock()

    def load(self) -> bool:
        with self._lock:
            return self._value

    def store(self, value: bool) -> None:
        with self._lock:
            self._value = value

    def compare_and_set(self, expected: bool, new: bool) -> bool:
        with self._lock:
            if self._value != expected:
                return False
            self._value = new
            return True

    def __repr__(self) -> str:
        return f"AtomicFlag({self.load()})"


class ClientKind(enum.Enum):
    INTERACTIVE = "interactive"
    COOPERATING = "cooperating"


def classify(headers: Mapping[str, str]) -> ClientKind:
    """Decide once per request which delivery protocol the caller speaks."""
    value = headers.get(CLIENT_HEADER) or headers.get(CLIENT_HEADER.lower()) or ""
    if value.strip().lower() == CLIENT_HEADER_VALUE:
        return ClientKind.COOPERATING
    return ClientKind.INTERACTIVE


def format_bytes(size: int) -> str:
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}B"


@dataclass
class TransferSession:
    """One file, one recipient, one secret path.

    `used` only ever moves False -> True. `in_progress` guards the single open
    delivery stream and is released at the end of every attempt.
    """

    secret_path: str
    target_identity: str
    file_path: Path
    file_name: str
    file_size_display: str
    used: AtomicFlag = field(default_factory=AtomicFlag)
    in_progress: AtomicFlag = field(default_factory=AtomicFlag)

    @property
    def ack_path(self) -> str:
        return self.secret_path + ACK_SUFFIX

    @classmethod
    def create(cls, file_path: str | Path, target_identity: str) -> "TransferSession":
        target = (target_identity or "").strip()
        if not target:
            raise ConfigError("a target login name is required")
        if not file_path:
            raise ConfigError("a file to send is required")

        path = Path(file_path)
        try:
            st = path.stat()
        except OSError as e:
            raise ConfigError(f"cannot stat {path}: {e}") from e
        if not path.is_file():
            raise ConfigError(f"{path} is not a regular file")

        return cls(
            secret_path="/" + new_capability_token(),
            target_identity=target,
            file_path=path,
            file_name=path.name,
            file_size_display=format_bytes(st.st_size),
        )

    def authorizes(self, identity: str) -> bool:
        return (identity or "").casefold() == self.target_identity.casefold()
