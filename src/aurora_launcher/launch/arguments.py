"""Argument templating and redaction for the client's command line.

The manifest supplies an ordered token list mixing literal flags with
``${name}`` placeholders.  A placeholder table is built fresh for every launch
from the credential bundle, the manifest and the resolved paths; every
recognized placeholder is replaced once, unknown ones are passed through
untouched.

Logging goes through ``redact_arguments``: the value following any flag whose
name contains ``Token`` is cut to ``REDACTED_PREFIX_LENGTH`` characters.
"""

from __future__ import annotations

import logging
import pathlib
import re
from collections.abc import Mapping, Sequence

from aurora_launcher.auth.session import GAME_CLIENT_ID, CredentialBundle
from aurora_launcher.launch.manifest import Manifest

logger = logging.getLogger(__name__)

REDACTED_PREFIX_LENGTH = 20

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z0-9_]+)\}")


def _unquote(value: str) -> str:
    return value.replace('"', "")


def build_placeholder_table(
    bundle: CredentialBundle,
    manifest: Manifest,
    version: str,
    game_directory: pathlib.Path,
    assets_root: pathlib.Path,
) -> dict[str, str]:
    return {
        "version_name": version,
        "version_type": "release",
        "auth_player_name": _unquote(bundle.username),
        "auth_uuid": _unquote(bundle.account_id).replace("-", ""),
        "auth_access_token": _unquote(bundle.access_token),
        "user_type": "msa",
        "clientid": GAME_CLIENT_ID,
        "auth_xuid": _unquote(bundle.xuid),
        "game_directory": str(game_directory),
        "assets_root": str(assets_root),
        "assets_index_name": manifest.asset_index_id,
        "user_properties": "{}",
    }


def render_arguments(template: Sequence[str], table: Mapping[str, str]) -> list[str]:
    """Substitute *table* into every token of *template* in a single pass."""

    def substitute(match: re.Match[str]) -> str:
        return table.get(match.group(1), match.group(0))

    return [_PLACEHOLDER.sub(substitute, token) for token in template]


def unresolved_placeholders(args: Sequence[str], table: Mapping[str, str]) -> list[str]:
    """Names of recognized placeholders still present in *args*."""
    return [name for token in args for name in _PLACEHOLDER.findall(token) if name in table]


def redact_arguments(args: Sequence[str]) -> list[tuple[str, str]]:
    """Pair each ``--flag`` with its value, truncating values of ``*Token*`` flags.

    A token that is not a flag, or a flag directly followed by another flag,
    stands alone with an empty value.
    """
    pairs: list[tuple[str, str]] = []
    index = 0
    while index < len(args):
        key = args[index]
        has_value = (
            key.startswith("--")
            and index + 1 < len(args)
            and not args[index + 1].startswith("--")
        )
        if not has_value:
            pairs.append((key, ""))
            index += 1
            continue
        value = args[index + 1]
        if "Token" in key:
            value = value[:REDACTED_PREFIX_LENGTH] + "..."
        pairs.append((key, value))
        index += 2
    return pairs


def log_arguments(args: Sequence[str]) -> None:
    for key, value in redact_arguments(args):
        logger.info("Arg: %s = %s", key, value)
