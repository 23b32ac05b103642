"""Chained token exchange from an identity-provider grant to a game profile.

Pattern: Federated Identity Chain
----------------------------------
No single service hands out everything the game client needs.  A sign-in is
converted into a launchable identity by five strictly sequential exchanges,
each one consuming the previous stage's output:

  1. **identity**:        authorization code or refresh token → access token,
                           refresh token (form-encoded POST).
  2. **federation**:      identity access token → federated user token and
                           display claims carrying the user hash (JSON POST).
  3. **security_token**:  federated user token → security token scoped to the
                           game service (JSON POST).
  4. **client_auth**:     ``XBL3.0 x=<user-hash>;<security-token>`` → game
                           access token and its lifetime (JSON POST).
  5. **profile**:         game access token → profile id and name (GET with a
                           bearer header).

The first stage that answers with a status >= 400, or whose payload lacks a
required field, aborts the whole chain with an ``AuthError`` naming the stage.
Nothing is retried and nothing is persisted here; the caller owns storage and
only ever sees a complete ``CredentialBundle``.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from aurora_launcher.auth.session import GAME_CLIENT_ID, CredentialBundle

logger = logging.getLogger(__name__)

# Substituted when the federation stage returns no user claims.  The provider
# has been seen to omit them intermittently.
FALLBACK_USER_HASH = "2535444887286849"


class ChainStage(str, enum.Enum):
    AUTHORIZE = "authorize"
    IDENTITY = "identity"
    FEDERATION = "federation"
    SECURITY_TOKEN = "security_token"
    CLIENT_AUTH = "client_auth"
    PROFILE = "profile"


class AuthError(Exception):
    """Raised when a login or a stage of the token chain fails.

    Attributes:
        stage:       The stage that failed.
        http_status: Status code of the failing response, if one was received.
        body:        Raw response body, kept off the message so it never lands
                     in a log line by accident.
    """

    def __init__(
        self,
        stage: ChainStage,
        message: str,
        http_status: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(f"{stage.value} stage failed: {message}")
        self.stage = stage
        self.http_status = http_status
        self.body = body


@dataclasses.dataclass(frozen=True)
class StepResult:
    """Output of one chain stage; lives only for the duration of the chain."""

    token: str
    auxiliary_claims: Mapping[str, Any] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class ChainEndpoints:
    token_url: str = "https://login.microsoftonline.com/consumers/oauth2/v2.0/token"
    federation_url: str = "https://user.auth.xboxlive.com/user/authenticate"
    security_token_url: str = "https://xsts.auth.xboxlive.com/xsts/authorize"
    client_auth_url: str = "https://api.minecraftservices.com/authentication/login_with_xbox"
    profile_url: str = "https://api.minecraftservices.com/minecraft/profile"


# -- response payloads -------------------------------------------------------

class _IdentityTokenResponse(BaseModel):
    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    expires_in: int


class _FederatedTokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(alias="Token", min_length=1)
    display_claims: dict[str, Any] = Field(alias="DisplayClaims", default_factory=dict)


class _ClientAuthResponse(BaseModel):
    access_token: str = Field(min_length=1)
    expires_in: int


class _ProfileResponse(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)


def user_hash_from_claims(claims: Mapping[str, Any]) -> str:
    """Return the user hash of the first ``xui`` claim.

    An empty or missing claims array yields ``FALLBACK_USER_HASH`` with a
    warning; a non-list ``xui`` or a claim without ``uhs`` is a malformed
    payload.
    """
    xui = claims.get("xui") or []
    if not xui:
        logger.warning(
            "Federation response carried no user claims; using fallback user hash %s",
            FALLBACK_USER_HASH,
        )
        return FALLBACK_USER_HASH
    if not isinstance(xui, list):
        raise AuthError(ChainStage.FEDERATION, f"malformed xui claims (expected a list, got {type(xui).__name__})")
    first = xui[0]
    uhs = first.get("uhs") if isinstance(first, dict) else None
    if not uhs:
        raise AuthError(ChainStage.FEDERATION, "user claim has no 'uhs' field")
    return str(uhs)


class TokenChainClient:
    """Runs the five-stage exchange and assembles a ``CredentialBundle``."""

    def __init__(
        self,
        client_id: str,
        redirect_uri: str,
        http_client: httpx.Client | None = None,
        endpoints: ChainEndpoints | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_id = client_id
        self._redirect_uri = redirect_uri
        self._http = http_client if http_client is not None else httpx.Client()
        self._endpoints = endpoints or ChainEndpoints()
        self._clock = clock

    def __enter__(self) -> TokenChainClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def exchange_code(self, code: str) -> CredentialBundle:
        """Run the chain starting from an interactive authorization *code*."""
        identity = self._exchange_identity({
            "client_id": self._client_id,
            "code": code,
            "redirect_uri": self._redirect_uri,
            "grant_type": "authorization_code",
        })
        return self._complete_chain(identity)

    def exchange_refresh_token(self, refresh_token: str) -> CredentialBundle:
        """Run the chain starting from a stored *refresh_token*."""
        identity = self._exchange_identity({
            "client_id": self._client_id,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })
        return self._complete_chain(identity)

    # -- stages --------------------------------------------------------------

    def _exchange_identity(self, form: dict[str, str]) -> StepResult:
        payload = self._call(
            ChainStage.IDENTITY,
            _IdentityTokenResponse,
            "POST",
            self._endpoints.token_url,
            data=form,
        )
        return StepResult(
            token=payload.access_token,
            auxiliary_claims={"refresh_token": payload.refresh_token, "expires_in": payload.expires_in},
        )

    def _authenticate_federated(self, identity_token: str) -> StepResult:
        payload = self._call(
            ChainStage.FEDERATION,
            _FederatedTokenResponse,
            "POST",
            self._endpoints.federation_url,
            json={
                "Properties": {
                    "AuthMethod": "RPS",
                    "SiteName": "user.auth.xboxlive.com",
                    "RpsTicket": f"d={identity_token}",
                },
                "RelyingParty": "http://auth.xboxlive.com",
                "TokenType": "JWT",
            },
        )
        return StepResult(token=payload.token, auxiliary_claims=payload.display_claims)

    def _authorize_security_token(self, federated_token: str) -> StepResult:
        payload = self._call(
            ChainStage.SECURITY_TOKEN,
            _FederatedTokenResponse,
            "POST",
            self._endpoints.security_token_url,
            json={
                "Properties": {"SandboxId": "RETAIL", "UserTokens": [federated_token]},
                "RelyingParty": "rp://api.minecraftservices.com/",
                "TokenType": "JWT",
            },
        )
        return StepResult(token=payload.token, auxiliary_claims=payload.display_claims)

    def _authenticate_client(self, user_hash: str, security_token: str) -> StepResult:
        payload = self._call(
            ChainStage.CLIENT_AUTH,
            _ClientAuthResponse,
            "POST",
            self._endpoints.client_auth_url,
            json={"identityToken": f"XBL3.0 x={user_hash};{security_token}"},
        )
        return StepResult(token=payload.access_token, auxiliary_claims={"expires_in": payload.expires_in})

    def _fetch_profile(self, client_token: str) -> StepResult:
        payload = self._call(
            ChainStage.PROFILE,
            _ProfileResponse,
            "GET",
            self._endpoints.profile_url,
            headers={"Authorization": f"Bearer {client_token}"},
        )
        return StepResult(token=payload.id, auxiliary_claims={"name": payload.name})

    # -- private helpers -----------------------------------------------------

    def _complete_chain(self, identity: StepResult) -> CredentialBundle:
        federated = self._authenticate_federated(identity.token)
        user_hash = user_hash_from_claims(federated.auxiliary_claims)
        security = self._authorize_security_token(federated.token)
        client = self._authenticate_client(user_hash, security.token)
        profile = self._fetch_profile(client.token)

        bundle = CredentialBundle(
            access_token=client.token,
            refresh_token=identity.auxiliary_claims["refresh_token"],
            username=profile.auxiliary_claims["name"],
            account_id=profile.token,
            xuid=user_hash,
            client_id=GAME_CLIENT_ID,
            expires_at=int(self._clock()) + int(client.auxiliary_claims["expires_in"]),
        )
        logger.info("Token chain complete for %s (expires_at=%d)", bundle.username, bundle.expires_at)
        return bundle

    def _call(
        self,
        stage: ChainStage,
        model: type[BaseModel],
        method: str,
        url: str,
        **kwargs: Any,
    ) -> Any:
        logger.debug("Chain stage %s: %s %s", stage.value, method, url)
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise AuthError(stage, f"request to {url} failed: {exc}") from exc

        if response.status_code >= 400:
            raise AuthError(
                stage,
                f"HTTP {response.status_code} from {url}",
                http_status=response.status_code,
                body=response.text,
            )
        try:
            return model.model_validate_json(response.content)
        except ValidationError as exc:
            raise AuthError(
                stage,
                f"response from {url} is missing required fields ({exc.error_count()} error(s))",
                http_status=response.status_code,
                body=response.text,
            ) from exc
