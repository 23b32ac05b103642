"""Launcher configuration built once at startup and threaded through every component.

Pattern: Immutable Settings Snapshot
-------------------------------------
A YAML settings file (``config/settings.yaml``) is the single declarative
source for *which client version to launch, where it is installed, and how to
reach the identity provider*.  A handful of environment variables may override
individual values (``AURORA_VERSION``, ``AURORA_DEBUG``, ``AURORA_HOME``,
``AURORA_INSTALL_DIR``).

The file is read exactly once and folded into frozen dataclasses.  Nothing
downstream reads process-wide state: the session manager, the token chain and
the launcher all receive the ``LauncherConfig`` they need as an argument.
"""

from __future__ import annotations

import dataclasses
import pathlib
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

import yaml

DEFAULT_CONFIG_PATH = pathlib.Path(__file__).resolve().parents[2] / "config" / "settings.yaml"

# Azure application registered for the game's online mode.
DEFAULT_CLIENT_ID = "3963c466-60f2-4cf4-928e-287187933c94"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}

_ENDPOINT_FIELDS = (
    "authorize_url",
    "token_url",
    "federation_url",
    "security_token_url",
    "client_auth_url",
    "profile_url",
)


class ConfigurationError(Exception):
    """Raised when settings are malformed or a required local path is missing."""


@dataclasses.dataclass(frozen=True)
class AuthSettings:
    """Identity-provider settings for the interactive login and token chain.

    Attributes:
        client_id:             OAuth client id presented to the identity provider.
        redirect_host:         Host name used in the redirect URI.
        redirect_port:         Port the one-shot callback listener binds to.
        login_timeout_seconds: Upper bound on waiting for the browser redirect.
        open_browser:          Launch the system browser automatically.
        authorize_url:         Interactive sign-in page of the identity provider.
        token_url, federation_url, security_token_url, client_auth_url, profile_url:
                               Token chain endpoints, in stage order.
    """

    client_id: str = DEFAULT_CLIENT_ID
    redirect_host: str = "localhost"
    redirect_port: int = 8080
    login_timeout_seconds: float = 300.0
    open_browser: bool = True
    authorize_url: str = "https://login.microsoftonline.com/consumers/oauth2/v2.0/authorize"
    token_url: str = "https://login.microsoftonline.com/consumers/oauth2/v2.0/token"
    federation_url: str = "https://user.auth.xboxlive.com/user/authenticate"
    security_token_url: str = "https://xsts.auth.xboxlive.com/xsts/authorize"
    client_auth_url: str = "https://api.minecraftservices.com/authentication/login_with_xbox"
    profile_url: str = "https://api.minecraftservices.com/minecraft/profile"

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.redirect_host}:{self.redirect_port}/"


@dataclasses.dataclass(frozen=True)
class LauncherConfig:
    """Everything the launcher needs to know, resolved once.

    Attributes:
        version:           Client version to launch (e.g. ``"1.21.10"``).
        debug:             Verbose logging and classpath dumps.
        work_root:         Writable working area; the game directory lives under it.
        install_dir:       Client installation holding versions, libraries and assets.
        session_file:      Path of the persisted credential bundle.
        entry_point:       ``module:callable`` invoked with the rendered arguments.
        reserved_prefixes: Module prefixes that trigger the version-identity check.
        auth:              Identity-provider settings.
    """

    version: str
    debug: bool
    work_root: pathlib.Path
    install_dir: pathlib.Path
    session_file: pathlib.Path
    entry_point: str = "net.minecraft.client.main:main"
    reserved_prefixes: tuple[str, ...] = ("net.minecraft", "com.mojang")
    auth: AuthSettings = dataclasses.field(default_factory=AuthSettings)

    def with_debug(self, debug: bool) -> LauncherConfig:
        return dataclasses.replace(self, debug=debug)


def load_config(
    path: str | pathlib.Path | None = None,
    env: Mapping[str, str] | None = None,
) -> LauncherConfig:
    """Read *path* (default ``config/settings.yaml``) and apply *env* overrides.

    Raises ``ConfigurationError`` if the file is missing or malformed.
    """
    config_path = pathlib.Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise ConfigurationError(f"Settings file not found: {config_path}")
    try:
        with open(config_path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Settings file is not valid YAML: {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("Settings file must contain a mapping at the top level")
    return config_from_mapping(data, env if env is not None else {})


def config_from_mapping(data: Mapping[str, Any], env: Mapping[str, str]) -> LauncherConfig:
    """Fold a parsed settings mapping and environment overrides into a config."""
    launcher: Mapping[str, Any] = _section(data, "launcher")
    auth: Mapping[str, Any] = _section(data, "auth")

    version = str(env.get("AURORA_VERSION") or launcher.get("version") or "").strip()
    if not version:
        raise ConfigurationError("launcher.version is required")

    debug = _parse_bool(env.get("AURORA_DEBUG", launcher.get("debug", False)), "debug")
    work_root = _resolve(env.get("AURORA_HOME") or launcher.get("work_root", "aurora-mvp"))
    install_dir = _resolve(env.get("AURORA_INSTALL_DIR") or launcher.get("install_dir", "~/.minecraft"))
    session_file = _resolve(launcher.get("session_file", "config.aurora.yaml"))

    entry_point = str(launcher.get("entry_point", "net.minecraft.client.main:main"))
    if ":" not in entry_point:
        raise ConfigurationError(f"launcher.entry_point must look like 'module:callable', got {entry_point!r}")

    prefixes = launcher.get("reserved_prefixes", ["net.minecraft", "com.mojang"])
    if not isinstance(prefixes, list) or not all(isinstance(p, str) for p in prefixes):
        raise ConfigurationError("launcher.reserved_prefixes must be a list of strings")

    defaults = AuthSettings()
    endpoints = {
        name: str(auth.get(name, getattr(defaults, name))).strip() for name in _ENDPOINT_FIELDS
    }
    for name, url in endpoints.items():
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"auth.{name} must be an http(s) URL, got {url!r}")

    try:
        auth_settings = AuthSettings(
            client_id=str(auth.get("client_id", DEFAULT_CLIENT_ID)),
            redirect_host=str(auth.get("redirect_host", "localhost")),
            redirect_port=int(auth.get("redirect_port", 8080)),
            login_timeout_seconds=float(auth.get("login_timeout_seconds", 300)),
            open_browser=_parse_bool(auth.get("open_browser", True), "open_browser"),
            **endpoints,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid auth settings: {exc}") from exc
    if auth_settings.login_timeout_seconds <= 0:
        raise ConfigurationError("auth.login_timeout_seconds must be positive")

    return LauncherConfig(
        version=version,
        debug=debug,
        work_root=work_root,
        install_dir=install_dir,
        session_file=session_file,
        entry_point=entry_point,
        reserved_prefixes=tuple(prefixes),
        auth=auth_settings,
    )


# -- private helpers ---------------------------------------------------------

def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    block = data.get(name) or {}
    if not isinstance(block, dict):
        raise ConfigurationError(f"'{name}' section must be a mapping")
    return block


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise ConfigurationError(f"Cannot interpret {name}={value!r} as a boolean")


def _resolve(value: Any) -> pathlib.Path:
    # Relative paths are taken from the current working directory.
    return pathlib.Path(str(value)).expanduser().resolve()
