"""Isolated import namespace for the launched client.

Pattern: Scoped Module Resolution
----------------------------------
The client ships as archives and directories listed on the resolved
classpath.  ``IsolatedNamespace`` is a meta-path finder installed ahead of the
interpreter's own finders:

  - a top-level module is looked up *only* on the classpath; whatever is found
    there shadows site-packages, and whatever is not found falls through to the
    interpreter's standard finders (the standard library, mostly);
  - a module the launcher imported earlier under a name the classpath also
    provides (``yaml``, ``httpx`` and the like) is set aside on install, so
    the client gets its own copy rather than the launcher's;
  - sub-modules of packages the namespace resolved stay with the namespace;
  - before resolving any module under one of the reserved prefixes (the
    client's and its platform vendor's packages) the namespace asks a
    ``VersionShim`` whether the client's version identity is already in place.
    If the shim cannot tell, the expected version is published as the
    ``MINECRAFT_VERSION`` environment value instead.  The check is advisory and
    never blocks an import.

Once installed the namespace stays in place for the rest of the process.
"""

from __future__ import annotations

import enum
import functools
import importlib
import importlib.abc
import importlib.machinery
import logging
import os
import pathlib
import pkgutil
import sys
import threading
import zipfile
from collections.abc import Callable, Iterable, MutableMapping, Sequence
from types import ModuleType
from typing import Any, Protocol

logger = logging.getLogger(__name__)

VERSION_ENV_VAR = "MINECRAFT_VERSION"


class VersionIdentity(enum.Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"


class VersionShim(Protocol):
    def ensure_version_identity(self, expected: str) -> VersionIdentity: ...


class ConstantsModuleShim:
    """Looks for a populated version constant on the client's constants module.

    Only ``sys.modules`` is consulted; the module is never imported from here,
    so the check cannot recurse into the namespace that triggered it.
    """

    def __init__(
        self,
        module_name: str = "net.minecraft.shared_constants",
        attribute: str = "VERSION",
    ) -> None:
        self._module_name = module_name
        self._attribute = attribute

    def ensure_version_identity(self, expected: str) -> VersionIdentity:
        module = sys.modules.get(self._module_name)
        if module is None or getattr(module, self._attribute, None) is None:
            return VersionIdentity.UNAVAILABLE
        return VersionIdentity.OK


def bundle_location() -> pathlib.Path | None:
    """Return the zip archive this launcher runs from, if it is packaged."""
    for parent in pathlib.Path(__file__).parents:
        if parent.is_file() and zipfile.is_zipfile(parent):
            return parent
    return None


class IsolatedNamespace(importlib.abc.MetaPathFinder):
    """Meta-path finder scoped to an explicit search path."""

    def __init__(
        self,
        search_path: Sequence[pathlib.Path],
        reserved_prefixes: Iterable[str],
        expected_version: str,
        shim: VersionShim | None = None,
        environ: MutableMapping[str, str] | None = None,
    ) -> None:
        self._search_path = tuple(pathlib.Path(p) for p in search_path)
        self._entries = [str(p) for p in self._search_path]
        self._reserved = tuple(reserved_prefixes)
        self._expected_version = expected_version
        self._shim = shim or ConstantsModuleShim()
        self._environ = environ if environ is not None else os.environ
        self._owned: set[str] = set()
        self._lock = threading.Lock()
        self._fallback_logged = False
        self._displaced: dict[str, ModuleType] = {}

    @property
    def search_path(self) -> tuple[pathlib.Path, ...]:
        return self._search_path

    def owns(self, fullname: str) -> bool:
        return fullname.partition(".")[0] in self._owned

    # -- MetaPathFinder ------------------------------------------------------

    def find_spec(
        self,
        fullname: str,
        path: Sequence[str] | None = None,
        target: Any = None,
    ) -> importlib.machinery.ModuleSpec | None:
        if self._is_reserved(fullname):
            self._coerce_version()

        if path is None:
            spec = importlib.machinery.PathFinder.find_spec(fullname, self._entries)
            if spec is not None:
                self._owned.add(fullname)
            return spec
        if self.owns(fullname):
            return importlib.machinery.PathFinder.find_spec(fullname, path)
        return None

    def invalidate_caches(self) -> None:
        importlib.machinery.PathFinder.invalidate_caches()

    # -- lifecycle -----------------------------------------------------------

    def install(self) -> None:
        """Put the namespace first on ``sys.meta_path``.

        Modules already imported under a name the search path provides are
        set aside, so the next import of that name resolves from the search
        path instead of being served from ``sys.modules``.
        """
        if self not in sys.meta_path:
            self._displace_provided_modules()
            sys.meta_path.insert(0, self)
        importlib.invalidate_caches()
        logger.debug("Isolated namespace installed over %d search entries", len(self._entries))

    def uninstall(self) -> None:
        """Remove the namespace and restore the modules ``install`` set aside."""
        if self in sys.meta_path:
            sys.meta_path.remove(self)
        for name in list(sys.modules):
            if name.partition(".")[0] in self._owned:
                del sys.modules[name]
        sys.modules.update(self._displaced)
        self._displaced.clear()
        self._owned.clear()

    def load_entry_point(self, reference: str) -> Callable[..., Any]:
        """Import ``module:attr.path`` through the namespace and return the callable."""
        module_name, _, attr_path = reference.partition(":")
        module = importlib.import_module(module_name)
        target = functools.reduce(getattr, attr_path.split("."), module) if attr_path else module
        if not callable(target):
            raise TypeError(f"Entry point {reference!r} is not callable")
        return target

    # -- private helpers -----------------------------------------------------

    def _is_reserved(self, fullname: str) -> bool:
        return any(fullname == prefix or fullname.startswith(prefix + ".") for prefix in self._reserved)

    def _displace_provided_modules(self) -> None:
        provided = {info.name for info in pkgutil.iter_modules(self._entries)}
        protected = set(sys.builtin_module_names) | {__name__.partition(".")[0]}
        for name in list(sys.modules):
            top = name.partition(".")[0]
            if top in provided and top not in protected:
                self._displaced[name] = sys.modules.pop(name)
        if self._displaced:
            logger.debug(
                "Set aside %d already-imported module(s) shadowed by the search path: %s",
                len(self._displaced),
                sorted({name.partition(".")[0] for name in self._displaced}),
            )

    def _coerce_version(self) -> None:
        with self._lock:
            if self._shim.ensure_version_identity(self._expected_version) is VersionIdentity.OK:
                return
            self._environ[VERSION_ENV_VAR] = self._expected_version
            if not self._fallback_logged:
                logger.debug(
                    "Version identity unavailable; set %s=%s",
                    VERSION_ENV_VAR,
                    self._expected_version,
                )
                self._fallback_logged = True


def build_isolated_namespace(
    classpath: Sequence[pathlib.Path],
    reserved_prefixes: Iterable[str],
    expected_version: str,
    shim: VersionShim | None = None,
    install: bool = True,
) -> IsolatedNamespace:
    """Create (and by default install) a namespace over *classpath*.

    When the launcher runs from a packaged bundle, the bundle is appended as
    the last search entry.
    """
    search_path = list(classpath)
    bundle = bundle_location()
    if bundle is not None:
        search_path.append(bundle)
        logger.debug("Added launcher bundle to search path: %s", bundle)

    namespace = IsolatedNamespace(search_path, reserved_prefixes, expected_version, shim=shim)
    if install:
        namespace.install()
    return namespace
