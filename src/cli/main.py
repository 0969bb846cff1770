"""Main CLI entry point for comic ingestion."""

import argparse
import logging
import sys

from src.ingestion.logger import setup_logging
from src.ingestion.settings import Settings

from .commands.ingest import setup_ingest_commands


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="comic-ingest", description="Comic ingestion pipeline - discovery, upload and failure recovery"
    )
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Setup ingestion commands
    setup_ingest_commands(subparsers)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    args.settings = Settings.from_env(args.env_file)
    setup_logging(logging.DEBUG if args.debug else logging.INFO, args.settings.device_name)

    # Execute command
    if hasattr(args, "func"):
        return args.func(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
