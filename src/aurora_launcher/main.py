"""CLI entry point: ties together configuration, login, and the launch."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from aurora_launcher.config import DEFAULT_CONFIG_PATH, ConfigurationError, load_config


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Aurora: sign in and launch the game client in an isolated namespace",
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to settings.yaml",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config, env=os.environ)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)
    if args.verbose:
        config = config.with_debug(True)

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    logging.captureWarnings(True)

    from aurora_launcher.prompt.cli import run_cli

    sys.exit(run_cli(config))


if __name__ == "__main__":
    main()
