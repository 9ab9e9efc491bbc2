from __future__ import annotations

import enum
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional
from urllib.parse import unquote

import httpx

from .config import (
    ACK_SUFFIX,
    CHUNK_SIZE,
    CLIENT_HEADER,
    CLIENT_HEADER_VALUE,
    CLIENT_TIMEOUT_SECONDS,
    PLACEHOLDER_FILENAME,
)
from .security import safe_download_name

log = logging.getLogger(__name__)


class RetrievalError(Exception):
    """The download itself failed; nothing is acknowledged."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class IntegrityError(RetrievalError):
    """Fewer (or more) bytes arrived than the server promised."""

    def __init__(self, path: Path, expected: int, received: int) -> None:
        super().__init__(f"download incomplete: expected {expected} bytes, got {received}")
        self.path = path
        self.expected = expected
        self.received = received


class AckOutcome(enum.Enum):
    CONFIRMED = "confirmed"
    UNCONFIRMED = "unconfirmed"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class RetrievalTranscript:
    url: str
    suggested_name: str
    path: Path
    bytes_received: int
    ack: AckOutcome

    @property
    def renamed(self) -> bool:
        return self.path.name != self.suggested_name


_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*([^']*)'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME_RE = re.compile(r'filename\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^;\s]+))', re.IGNORECASE)


def parse_disposition_filename(header: Optional[str]) -> str:
    """Recover the suggested filename from a Content-Disposition header.

    Understands both `filename="..."` and RFC 5987 `filename*=utf-8''...`.
    Anything missing or unusable becomes the placeholder name.
    """
    if not header:
        return PLACEHOLDER_FILENAME

    m = _FILENAME_STAR_RE.search(header)
    if m:
        charset = m.group(1).strip() or "utf-8"
        try:
            return safe_download_name(unquote(m.group(2).strip(), encoding=charset, errors="strict"))
        except (LookupError, UnicodeDecodeError):
            pass

    m = _FILENAME_RE.search(header)
    if m:
        if m.group(1) is not None:
            name = re.sub(r"\\(.)", r"\1", m.group(1))
        else:
            name = m.group(2)
        return safe_download_name(name)
    return PLACEHOLDER_FILENAME


def get_safe_filename(name: str | os.PathLike) -> str:
    """Return `name` if it is free, otherwise the first free `base-N.ext`."""
    name = os.fspath(name)
    if not os.path.lexists(name):
        return name

    base, ext = os.path.splitext(name)
    i = 1
    while True:
        candidate = f"{base}-{i}{ext}"
        if not os.path.lexists(candidate):
            return candidate
        i += 1


def _create_exclusive(path: str) -> tuple[str, BinaryIO]:
    # Another process may grab the probed name first; probe again, never overwrite.
    while True:
        candidate = get_safe_filename(path)
        try:
            return candidate, open(candidate, "xb")
        except FileExistsError:
            continue


def _content_length(response: httpx.Response) -> int:
    raw = response.headers.get("Content-Length")
    if raw is None:
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0


def send_ack(client: httpx.Client, url: str) -> AckOutcome:
    ack_url = url.rstrip("/") + ACK_SUFFIX
    try:
        resp = client.post(ack_url, content=b"", headers={"Content-Type": "text/plain"})
    except httpx.HTTPError as e:
        log.debug("ACK failed: %s", e)
        return AckOutcome.UNREACHABLE
    if resp.status_code == 200:
        return AckOutcome.CONFIRMED
    return AckOutcome.UNCONFIRMED


def _download(
    client: httpx.Client, url: str, dest_dir: Path
) -> tuple[str, Path, int]:
    headers = {CLIENT_HEADER: CLIENT_HEADER_VALUE}
    try:
        with client.stream("GET", url, headers=headers) as response:
            if response.status_code != 200:
                raise RetrievalError(
                    f"server rejected request: HTTP {response.status_code}",
                    status_code=response.status_code,
                )

            suggested = parse_disposition_filename(response.headers.get("Content-Disposition"))
            try:
                name, out = _create_exclusive(str(dest_dir / suggested))
            except OSError as e:
                raise RetrievalError(f"cannot create file: {e}") from e
            path = Path(name)
            if path.name != suggested:
                log.warning("File '%s' exists. Saving as '%s' instead.", suggested, path.name)

            log.info("Downloading '%s'...", path.name)
            received = 0
            with out:
                try:
                    for chunk in response.iter_raw(CHUNK_SIZE):
                        out.write(chunk)
                        received += len(chunk)
                except httpx.HTTPError as e:
                    raise RetrievalError(f"download interrupted: {e}") from e
                except OSError as e:
                    raise RetrievalError(f"cannot write file: {e}") from e

            expected = _content_length(response)
            if expected > 0 and received != expected:
                raise IntegrityError(path, expected, received)
            return suggested, path, received
    except httpx.HTTPError as e:
        raise RetrievalError(f"connection failed: {e}") from e


def retrieve(
    url: str,
    *,
    client: Optional[httpx.Client] = None,
    dest_dir: str | os.PathLike | None = None,
) -> RetrievalTranscript:
    """Download the file behind `url` once, verify it, then burn the link.

    Hard failures (rejection, interruption, length mismatch) raise
    RetrievalError and send no ACK. A failed ACK only changes the outcome
    recorded in the transcript.
    """
    # The routes are exact paths; a trailing slash would only earn a redirect.
    url = url.rstrip("/")
    own_client = client is None
    if client is None:
        client = httpx.Client(timeout=CLIENT_TIMEOUT_SECONDS)
    directory = Path(dest_dir) if dest_dir is not None else Path.cwd()

    try:
        suggested, path, received = _download(client, url, directory)
        log.info("Download complete (%d bytes), sending kill signal...", received)
        ack = send_ack(client, url)
    finally:
        if own_client:
            client.close()

    return RetrievalTranscript(
        url=url,
        suggested_name=suggested,
        path=path,
        bytes_received=received,
        ack=ack,
    )
