"""Shared fixtures for tests."""

from __future__ import annotations

import json
import pathlib
import sys
import time
import zipfile
from collections.abc import Iterator

import httpx
import pytest

from aurora_launcher.auth.session import GAME_CLIENT_ID, CredentialBundle
from aurora_launcher.auth.token_chain import ChainEndpoints, ChainStage, TokenChainClient
from aurora_launcher.config import AuthSettings, LauncherConfig

VERSION = "1.21.10"


def make_bundle(
    *,
    expires_in: float = 3600,
    refresh_token: str = "M.R3_BAY.refresh-token-value",
    username: str = "Steve",
    account_id: str = "abc-123",
) -> CredentialBundle:
    """Create a bundle that expires *expires_in* seconds from now."""
    return CredentialBundle(
        access_token="eyJhbGciOiJIUzI1NiJ9.game-access-token-payload",
        refresh_token=refresh_token,
        username=username,
        account_id=account_id,
        xuid="2535400000000000",
        client_id=GAME_CLIENT_ID,
        expires_at=int(time.time() + expires_in),
    )


def write_client_archive(path: pathlib.Path, files: dict[str, str]) -> pathlib.Path:
    """Write a zip archive of Python sources, the way client artifacts ship."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, source in files.items():
            zf.writestr(name, source)
    return path


@pytest.fixture
def valid_bundle() -> CredentialBundle:
    return make_bundle()


@pytest.fixture
def expired_bundle() -> CredentialBundle:
    return make_bundle(expires_in=-10)


@pytest.fixture
def install_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """A client installation with one version, two installed libraries and one missing."""
    root = tmp_path / "dot-minecraft"
    version_dir = root / "versions" / VERSION
    version_dir.mkdir(parents=True)
    (root / "assets").mkdir()

    manifest = {
        "id": VERSION,
        "assetIndex": {"id": "27"},
        "libraries": [
            {"name": "com.example:first:1.0",
             "downloads": {"artifact": {"path": "com/example/first/1.0/first-1.0.jar"}}},
            {"name": "org.lwjgl:natives:3.3.3"},
            {"name": "com.example:missing:2.0",
             "downloads": {"artifact": {"path": "com/example/missing/2.0/missing-2.0.jar"}}},
            {"name": "com.example:second:1.0",
             "downloads": {"artifact": {"path": "com/example/second/1.0/second-1.0.jar"}}},
        ],
        "arguments": {
            "game": [
                "--username", "${auth_player_name}",
                "--version", "${version_name}",
                "--gameDir", "${game_directory}",
                "--assetsDir", "${assets_root}",
                "--assetIndex", "${assets_index_name}",
                "--uuid", "${auth_uuid}",
                "--accessToken", "${auth_access_token}",
                "--clientId", "${clientid}",
                "--xuid", "${auth_xuid}",
                "--userType", "${user_type}",
                "--versionType", "${version_type}",
                {"rules": [{"action": "allow", "features": {"is_demo_user": True}}], "value": "--demo"},
            ]
        },
    }
    (version_dir / f"{VERSION}.json").write_text(json.dumps(manifest))

    libraries = root / "libraries"
    for rel in ("com/example/first/1.0/first-1.0.jar", "com/example/second/1.0/second-1.0.jar"):
        write_client_archive(libraries / rel, {"placeholder.txt": "library"})
    return root


@pytest.fixture
def launcher_config(tmp_path: pathlib.Path, install_dir: pathlib.Path) -> LauncherConfig:
    return LauncherConfig(
        version=VERSION,
        debug=True,
        work_root=tmp_path / "work",
        install_dir=install_dir,
        session_file=tmp_path / "work" / "session.yaml",
        entry_point="auroratest_game.main:main",
        reserved_prefixes=("auroratest_game",),
        auth=AuthSettings(redirect_port=0, login_timeout_seconds=5, open_browser=False),
    )


@pytest.fixture
def clean_imports() -> Iterator[None]:
    """Drop test client modules and installed namespaces after each test."""
    meta_path = list(sys.meta_path)
    modules = dict(sys.modules)
    yield
    sys.meta_path[:] = meta_path
    for name in list(sys.modules):
        if name.startswith("auroratest_"):
            del sys.modules[name]
    for name, module in modules.items():
        if sys.modules.get(name) is not module:
            sys.modules[name] = module


# ---------------------------------------------------------------------------
# Identity services
# ---------------------------------------------------------------------------

ENDPOINTS = ChainEndpoints()
NOW = 1_700_000_000

STAGE_URLS = {
    ChainStage.IDENTITY: ENDPOINTS.token_url,
    ChainStage.FEDERATION: ENDPOINTS.federation_url,
    ChainStage.SECURITY_TOKEN: ENDPOINTS.security_token_url,
    ChainStage.CLIENT_AUTH: ENDPOINTS.client_auth_url,
    ChainStage.PROFILE: ENDPOINTS.profile_url,
}


def _default_responses() -> dict[str, httpx.Response]:
    return {
        ENDPOINTS.token_url: httpx.Response(
            200, json={"access_token": "ms-access", "refresh_token": "ms-refresh", "expires_in": 3600},
        ),
        ENDPOINTS.federation_url: httpx.Response(
            200, json={"Token": "xbl-token", "DisplayClaims": {"xui": [{"uhs": "user-hash-1"}]}},
        ),
        ENDPOINTS.security_token_url: httpx.Response(
            200, json={"Token": "xsts-token", "DisplayClaims": {"xui": [{"uhs": "user-hash-1"}]}},
        ),
        ENDPOINTS.client_auth_url: httpx.Response(
            200, json={"access_token": "game-token", "expires_in": 86400, "token_type": "Bearer"},
        ),
        ENDPOINTS.profile_url: httpx.Response(
            200, json={"id": "069a79f444e94726a5befca90e38aaf5", "name": "Notch"},
        ),
    }


class FakeIdentityServices:
    """Routes chain requests to canned responses and records every call."""

    def __init__(self, overrides: dict[str, httpx.Response] | None = None) -> None:
        self.responses = _default_responses()
        self.responses.update(overrides or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses[str(request.url)]

    @property
    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]

    def client(self) -> TokenChainClient:
        return TokenChainClient(
            client_id="azure-client",
            redirect_uri="http://localhost:8080/",
            http_client=httpx.Client(transport=httpx.MockTransport(self)),
            clock=lambda: NOW,
        )
