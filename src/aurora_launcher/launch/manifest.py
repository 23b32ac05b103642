"""Reader for the versioned client manifest (``versions/<v>/<v>.json``)."""

from __future__ import annotations

import dataclasses
import json
import logging
import pathlib
from typing import Any

from aurora_launcher.config import ConfigurationError

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class LibraryEntry:
    """A manifest library.

    Attributes:
        name:                  Maven-style coordinate, if the manifest gives one.
        artifact_path:         Path of the artifact relative to the libraries dir.
        has_download_metadata: ``name`` and ``downloads.artifact.path`` are both present.
    """

    name: str | None
    artifact_path: str | None

    @property
    def has_download_metadata(self) -> bool:
        return bool(self.name) and bool(self.artifact_path)


@dataclasses.dataclass(frozen=True)
class Manifest:
    entry_jar: pathlib.Path
    libraries: tuple[LibraryEntry, ...]
    argument_template: tuple[str, ...]
    asset_index_id: str


def read_manifest(path: str | pathlib.Path, entry_jar: str | pathlib.Path | None = None) -> Manifest:
    """Parse the manifest at *path*.

    *entry_jar* defaults to the ``<v>.jar`` that sits beside ``<v>.json``.
    Raises ``ConfigurationError`` if the file is missing, unreadable, or has
    no asset index id.
    """
    manifest_path = pathlib.Path(path)
    if not manifest_path.exists():
        raise ConfigurationError(f"Missing version manifest: {manifest_path}")
    try:
        with open(manifest_path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Unreadable version manifest {manifest_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Version manifest {manifest_path} must be a JSON object")

    asset_index = data.get("assetIndex") or {}
    asset_index_id = asset_index.get("id") if isinstance(asset_index, dict) else None
    if not asset_index_id:
        raise ConfigurationError(f"Version manifest {manifest_path} has no assetIndex.id")

    if entry_jar is None:
        entry_jar = manifest_path.with_suffix(".jar")

    manifest = Manifest(
        entry_jar=pathlib.Path(entry_jar),
        libraries=tuple(_parse_library(lib) for lib in data.get("libraries", []) if isinstance(lib, dict)),
        argument_template=tuple(_game_arguments(data)),
        asset_index_id=str(asset_index_id),
    )
    logger.info(
        "Loaded manifest %s: %d libraries, %d argument tokens",
        manifest_path.name,
        len(manifest.libraries),
        len(manifest.argument_template),
    )
    return manifest


# -- private helpers ---------------------------------------------------------

def _parse_library(lib: dict[str, Any]) -> LibraryEntry:
    downloads = lib.get("downloads")
    artifact = downloads.get("artifact") if isinstance(downloads, dict) else None
    path = artifact.get("path") if isinstance(artifact, dict) else None
    name = lib.get("name")
    return LibraryEntry(
        name=name if isinstance(name, str) else None,
        artifact_path=path if isinstance(path, str) else None,
    )


def _game_arguments(data: dict[str, Any]) -> list[str]:
    arguments = data.get("arguments")
    if isinstance(arguments, dict):
        # Rule objects (feature/OS-conditional arguments) are not evaluated.
        return [token for token in arguments.get("game", []) if isinstance(token, str)]
    legacy = data.get("minecraftArguments")
    if isinstance(legacy, str):
        return legacy.split()
    return []
