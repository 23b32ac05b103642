"""Launch orchestration: from settings to a running client.

Pattern: Pipeline Composition
------------------------------
``Launcher.launch()`` runs the launch pipeline in a fixed order:

  1. Resolve and validate local paths (``ConfigurationError`` before any
     network traffic).
  2. Read the version manifest and resolve the classpath.
  3. Ensure a valid session (reuse, refresh, or interactive login) and hand
     it to the optional ``on_session`` observer.
  4. Build and install the isolated namespace over the classpath.
  5. Render the argument template and log it with secrets redacted.
  6. Import the client's entry point through the namespace and call it.

A failure inside the client is logged with its traceback and reported as a
failed launch; it does not propagate.
"""

from __future__ import annotations

import dataclasses
import logging
import pathlib
from collections.abc import Callable, Sequence

from aurora_launcher.auth.session import CredentialBundle
from aurora_launcher.auth.session_manager import SessionManager
from aurora_launcher.config import ConfigurationError, LauncherConfig
from aurora_launcher.launch.arguments import (
    build_placeholder_table,
    log_arguments,
    render_arguments,
    unresolved_placeholders,
)
from aurora_launcher.launch.classpath import resolve_classpath
from aurora_launcher.launch.isolation import IsolatedNamespace, VersionShim, build_isolated_namespace
from aurora_launcher.launch.manifest import read_manifest

logger = logging.getLogger(__name__)

LAUNCHER_VERSION = "0.3.1"


class LaunchInvocationError(Exception):
    """Raised when the client's entry point cannot be loaded or raises."""


@dataclasses.dataclass(frozen=True)
class LaunchPaths:
    """Filesystem locations derived from the configuration.

    Attributes:
        install_dir:   Client installation root (``~/.minecraft``).
        game_dir:      Working directory handed to the client.
        assets_root:   Asset store inside the installation.
        manifest_path: ``versions/<v>/<v>.json``.
        entry_jar:     ``versions/<v>/<v>.jar``.
        libraries_dir: Root that manifest artifact paths are relative to.
    """

    install_dir: pathlib.Path
    game_dir: pathlib.Path
    assets_root: pathlib.Path
    manifest_path: pathlib.Path
    entry_jar: pathlib.Path
    libraries_dir: pathlib.Path

    @classmethod
    def build(cls, config: LauncherConfig) -> LaunchPaths:
        install_dir = config.install_dir
        if not install_dir.is_dir():
            raise ConfigurationError(f"Client installation not found: {install_dir}")

        version_dir = install_dir / "versions" / config.version
        paths = cls(
            install_dir=install_dir,
            game_dir=config.work_root / "run" / "minecraft",
            assets_root=install_dir / "assets",
            manifest_path=version_dir / f"{config.version}.json",
            entry_jar=version_dir / f"{config.version}.jar",
            libraries_dir=install_dir / "libraries",
        )
        if not paths.manifest_path.exists():
            raise ConfigurationError(f"Missing version manifest: {paths.manifest_path}")
        if not paths.entry_jar.exists():
            raise ConfigurationError(f"Missing client artifact: {paths.entry_jar}")

        paths.game_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Game directory: %s", paths.game_dir)
        logger.info("Assets root: %s", paths.assets_root)
        logger.info("Version manifest: %s", paths.manifest_path)
        return paths


class Launcher:
    """Composes session, manifest, classpath, namespace and arguments into a launch."""

    def __init__(
        self,
        config: LauncherConfig,
        sessions: SessionManager,
        shim: VersionShim | None = None,
        on_session: Callable[[CredentialBundle], None] | None = None,
    ) -> None:
        self._config = config
        self._sessions = sessions
        self._shim = shim
        self._on_session = on_session

    def launch(self) -> bool:
        """Run the pipeline; return ``False`` if the client itself failed."""
        logger.info("Aurora launcher %s+%s", LAUNCHER_VERSION, self._config.version)

        paths = LaunchPaths.build(self._config)
        manifest = read_manifest(paths.manifest_path, paths.entry_jar)
        classpath = resolve_classpath(manifest, paths.libraries_dir)

        bundle = self._sessions.ensure_session()
        if self._on_session is not None:
            self._on_session(bundle)

        namespace = build_isolated_namespace(
            classpath,
            self._config.reserved_prefixes,
            self._config.version,
            shim=self._shim,
        )

        table = build_placeholder_table(
            bundle,
            manifest,
            version=self._config.version,
            game_directory=paths.game_dir,
            assets_root=paths.assets_root,
        )
        args = render_arguments(manifest.argument_template, table)
        leftover = unresolved_placeholders(args, table)
        if leftover:
            logger.warning("Placeholders left unresolved: %s", leftover)
        logger.info("Loaded %d version arguments", len(args))
        log_arguments(args)

        try:
            self._invoke(namespace, args)
        except LaunchInvocationError:
            logger.exception("Exception during launch")
            return False
        return True

    def _invoke(self, namespace: IsolatedNamespace, args: Sequence[str]) -> None:
        entry_point = self._config.entry_point
        logger.info("Launching %s ...", entry_point)
        try:
            main = namespace.load_entry_point(entry_point)
            main(list(args))
        except Exception as exc:
            raise LaunchInvocationError(f"Client entry point {entry_point} failed: {exc}") from exc
