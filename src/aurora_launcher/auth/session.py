"""Credential bundle that carries the authenticated identity into the launch.

Pattern: Session Context Propagation
-------------------------------------
A single ``CredentialBundle`` is produced by the token chain after the player
signs in and is threaded through the launch: the session store persists it, the
session manager decides whether it is still usable, and the argument templater
reads the player's name, uuid and access token from it.

The bundle is immutable.  A refresh or a new login produces a whole new bundle
that replaces the stored one; nothing ever patches individual fields, so a
bundle on disk is either absent, fully stale, or fully valid.
"""

from __future__ import annotations

import dataclasses
import time

# Client id the game service expects in the launch arguments.
GAME_CLIENT_ID = "00000000441cc96b"


@dataclasses.dataclass(frozen=True)
class CredentialBundle:
    """Immutable snapshot of a signed-in player.

    Attributes:
        access_token:  Game-service access token presented by the client.
        refresh_token: Identity-provider refresh token used to renew the chain.
        username:      Profile name of the player.
        account_id:    Profile id (uuid) of the player.
        xuid:          User hash from the federated identity claims.
        client_id:     Game-service client id.
        expires_at:    Unix timestamp (seconds) at which ``access_token`` lapses.
    """

    access_token: str = dataclasses.field(repr=False)
    refresh_token: str = dataclasses.field(repr=False)
    username: str
    account_id: str
    xuid: str
    client_id: str
    expires_at: int

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at

    @property
    def has_usable_refresh_token(self) -> bool:
        token = self.refresh_token.strip()
        return bool(token) and token != "null"

    def __str__(self) -> str:
        return f"CredentialBundle(username={self.username}, expires_at={self.expires_at})"
