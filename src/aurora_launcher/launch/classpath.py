"""Classpath resolution against the locally installed libraries.

Order matters: the entry artifact comes first and libraries follow in manifest
order, because earlier entries shadow later ones when the client's modules are
resolved.  A library without download metadata is skipped quietly; one whose
artifact is missing on disk is skipped with a ``ClasspathWarning``.
"""

from __future__ import annotations

import logging
import pathlib
import warnings

from aurora_launcher.launch.manifest import Manifest

logger = logging.getLogger(__name__)


class ClasspathWarning(UserWarning):
    """A manifest library has no installed artifact and was left off the classpath."""


def resolve_classpath(manifest: Manifest, libraries_dir: str | pathlib.Path) -> list[pathlib.Path]:
    libraries_root = pathlib.Path(libraries_dir)
    classpath = [manifest.entry_jar]

    for entry in manifest.libraries:
        if not entry.has_download_metadata:
            logger.debug("Skipping library without download metadata: %s", entry.name)
            continue
        artifact = libraries_root / entry.artifact_path
        if not artifact.exists():
            warnings.warn(f"Library artifact not installed: {artifact}", ClasspathWarning, stacklevel=2)
            continue
        classpath.append(artifact)

    logger.info("Classpath resolved with %d entries", len(classpath))
    logger.debug("Classpath entries: %s", [str(p) for p in classpath])
    return classpath
