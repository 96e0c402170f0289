"""Command line entry point."""

import argparse
import asyncio
import getpass
import sys
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from playtime_farmer import __version__
from playtime_farmer.core.config.config_loader import load_config, load_env_variables
from playtime_farmer.core.config.settings import FarmerSettings
from playtime_farmer.core.exceptions import ConfigurationError
from playtime_farmer.core.infra.runners import run_farm_mode
from playtime_farmer.core.logger import setup_structured_logging
from playtime_farmer.utils.encryption import encrypt_password

EXIT_OK = 0
EXIT_STARTUP_ERROR = 1


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="playtime-farmer",
        description="Keep presence sessions alive and accumulate activity playtime",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Fleet configuration file (default: CONFIG_PATH)")
    parser.add_argument("--provider", help="Session provider as package.module:attribute")
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )
    parser.add_argument(
        "--no-console", action="store_true", help="Do not read commands from stdin"
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Start farming (default)")
    subparsers.add_parser(
        "encrypt-password", help="Encrypt a password with ENCRYPTION_KEY for the config file"
    )
    return parser.parse_args(argv)


def encrypt_password_command(settings: FarmerSettings) -> int:
    """Prompt for a password and print its encrypted form."""
    password = getpass.getpass("Password: ")
    if not password:
        print("Password must not be empty", file=sys.stderr)
        return EXIT_STARTUP_ERROR
    try:
        token = encrypt_password(password, settings.get_encryption_key())
    except ValueError as e:
        print(f"Cannot encrypt: {e}", file=sys.stderr)
        return EXIT_STARTUP_ERROR
    print(token)
    print("Store it as 'password' with 'password_encrypted: true'.", file=sys.stderr)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the command line interface.

    Returns:
        0 on normal completion, 1 on an unrecoverable startup error
    """
    args = parse_args(argv)
    load_env_variables()

    overrides: Dict[str, Any] = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    try:
        settings = FarmerSettings(**overrides)
    except ValidationError as e:
        print(f"Invalid settings: {e}", file=sys.stderr)
        return EXIT_STARTUP_ERROR

    if args.command == "encrypt-password":
        return encrypt_password_command(settings)

    setup_structured_logging(
        settings.log_level,
        settings.log_json,
        settings.logs_dir,
        diagnose=settings.is_development(),
    )

    try:
        config = load_config(args.config or settings.config_path, env_path=None)
        outcomes = asyncio.run(
            run_farm_mode(
                config,
                settings,
                provider_target=args.provider,
                interactive=not args.no_console and sys.stdin.isatty(),
            )
        )
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_STARTUP_ERROR
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_OK

    failed = [o.account_id for o in outcomes.values() if not o.ok]
    if failed:
        logger.warning(f"Accounts that did not finish normally: {', '.join(failed)}")
    return EXIT_OK
