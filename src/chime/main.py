"""
main.py — Chime Entry Point

Usage:
    python -m chime                          # CLI REPL, default settings
    python -m chime --log-level DEBUG        # Verbose logging
    python -m chime --config path/to/config.yaml
    chime --no-proactive                     # start with the scheduler disabled
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chime",
        description="Chime — chat REPL with proactive, scheduled assistant messages",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $CHIME_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file with secrets (default: ./.env)",
    )
    parser.add_argument(
        "--no-proactive",
        action="store_true",
        default=False,
        help="Start with proactive messages disabled (toggle later with /enable)",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    import yaml
    from pydantic import ValidationError

    from chime.config.settings import load_settings
    from chime.exceptions import ConfigError
    from chime.observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except OSError as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (yaml.YAMLError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    log_level = args.log_level or settings.log_level

    setup_logging(
        level=log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("chime.main")
    return settings, log


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv(dotenv_path=Path(args.env_file))

    settings, log = bootstrap(args)

    if args.no_proactive:
        settings = settings.model_copy(
            update={"proactive": settings.proactive.merged({"enabled": False})}
        )

    log.info(
        "chime.starting",
        model=settings.generation.model,
        base_url=settings.generation.base_url,
        proactive=settings.proactive.enabled,
    )

    Path(settings.log_dir).mkdir(parents=True, exist_ok=True)
    settings.overrides_path.parent.mkdir(parents=True, exist_ok=True)

    from chime.interfaces.cli import run_cli

    log.info("chime.interface_starting", interface="cli")
    await run_cli(settings, log)
    return 0


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)
