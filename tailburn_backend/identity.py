from __future__ import annotations

import logging
import subprocess
from typing import Dict, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from .config import TAILSCALE_BIN

log = logging.getLogger(__name__)


class IdentityError(Exception):
    """The tailnet could not tell us who a peer (or we) are."""


class IdentityResolver(Protocol):
    def resolve(self, peer_address: str) -> str:
        """Return the login name behind `peer_address` ("ip:port")."""

    def self_identity(self) -> str:
        """Return the login name of this node's owner."""


class UserProfile(BaseModel):
    login_name: str = Field("", alias="LoginName")


class WhoIsResponse(BaseModel):
    user_profile: Optional[UserProfile] = Field(None, alias="UserProfile")


class PeerStatus(BaseModel):
    user_id: Optional[int] = Field(None, alias="UserID")
    dns_name: str = Field("", alias="DNSName")


class Status(BaseModel):
    self_: Optional[PeerStatus] = Field(None, alias="Self")
    users: Dict[str, UserProfile] = Field(default_factory=dict, alias="User")


class TailscaleResolver:
    """IdentityResolver backed by the local `tailscale` CLI.

    Every call shells out, so results are always fresh; nothing is cached
    between requests.
    """

    def __init__(self, binary: str = TAILSCALE_BIN, timeout: float = 5.0) -> None:
        self.binary = binary
        self.timeout = timeout

    def _run(self, *args: str) -> str:
        cmd = [self.binary, *args]
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise IdentityError(f"{' '.join(cmd)}: {e}") from e
        if proc.returncode != 0:
            raise IdentityError(f"{' '.join(cmd)}: {proc.stderr.strip() or proc.returncode}")
        return proc.stdout

    def _whois(self, peer_address: str) -> WhoIsResponse:
        try:
            return WhoIsResponse.model_validate_json(self._run("whois", "--json", peer_address))
        except ValidationError as e:
            raise IdentityError(f"unparseable whois output: {e}") from e

    def _status(self) -> Status:
        try:
            return Status.model_validate_json(self._run("status", "--json"))
        except ValidationError as e:
            raise IdentityError(f"unparseable status output: {e}") from e

    def resolve(self, peer_address: str) -> str:
        who = self._whois(peer_address)
        if who.user_profile is None or not who.user_profile.login_name:
            raise IdentityError(f"no login name for {peer_address}")
        return who.user_profile.login_name

    def self_identity(self) -> str:
        status = self._status()
        if status.self_ is None or status.self_.user_id is None:
            raise IdentityError("status has no self entry")
        profile = status.users.get(str(status.self_.user_id))
        if profile is None or not profile.login_name:
            raise IdentityError("no login name for this node")
        return profile.login_name

    def self_dns_name(self) -> Optional[str]:
        try:
            status = self._status()
        except IdentityError as e:
            log.debug("status lookup failed: %s", e)
            return None
        if status.self_ is None:
            return None
        return status.self_.dns_name.rstrip(".") or None

    def self_address(self) -> str:
        lines = [ln.strip() for ln in self._run("ip", "-4").splitlines() if ln.strip()]
        if not lines:
            raise IdentityError("this node has no tailnet address")
        return lines[0]
