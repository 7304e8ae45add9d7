"""Main entry point for the redis-tui client."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import yaml

from ..config import DEFAULT_CONFIG_PATH, ClientConfig, load_config
from ..connection import ConnectionManager, parse_address
from ..controller import SessionController
from .tui import run_tui

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _address(value: str) -> str:
    """argparse type: validate host:port."""
    try:
        parse_address(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="redis-tui",
        description="Interactive terminal client for Redis-compatible key-value stores",
    )
    parser.add_argument("-a", "--address", type=_address, help="Server address as host:port (default: localhost:6379)")
    parser.add_argument("--config", help=f"YAML config file (default: {DEFAULT_CONFIG_PATH} if present)")
    parser.add_argument("--retry-delay", type=float, metavar="SECONDS", help="Delay between reconnect attempts (default: 2)")
    parser.add_argument("--connect-timeout", type=float, metavar="SECONDS", help="Timeout for each connect attempt")
    parser.add_argument(
        "--exit-on-connect-failure",
        action="store_true",
        default=None,
        help="Exit with status 1 if the first connection fails instead of retrying",
    )
    parser.add_argument("--match", metavar="PATTERN", help="Key pattern for the key browser (default: *)")
    parser.add_argument("--log-file", help="Write logs to this file (the terminal is owned by the UI)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Log level (default: INFO)",
    )
    return parser


def resolve_config(args: argparse.Namespace) -> ClientConfig:
    """Merge defaults, config file and command line (command line wins)."""
    config_path = args.config
    if config_path is None and Path(DEFAULT_CONFIG_PATH).exists():
        config_path = DEFAULT_CONFIG_PATH
    data = load_config(config_path) if config_path else {}
    config = ClientConfig.from_dict(data)

    if args.address:
        config.address = args.address
    if args.retry_delay is not None:
        config.retry_delay = args.retry_delay
    if args.connect_timeout is not None:
        config.connect_timeout = args.connect_timeout
    if args.exit_on_connect_failure is not None:
        config.exit_on_connect_failure = args.exit_on_connect_failure
    if args.match:
        config.scan_match = args.match
    if args.log_file:
        config.log_file = args.log_file
    if args.log_level:
        config.log_level = args.log_level
    return config


def setup_logging(config: ClientConfig) -> None:
    if config.log_file:
        logging.basicConfig(
            filename=config.log_file,
            level=getattr(logging, config.log_level, logging.INFO),
            format=LOG_FORMAT,
        )
    else:
        logging.basicConfig(handlers=[logging.NullHandler()], level=logging.WARNING)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for redis-tui."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = resolve_config(args)
        parse_address(config.address)
    except (yaml.YAMLError, ValueError, OSError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(config)
    logger.info(f"Starting redis-tui for {config.address}")

    controller = SessionController(
        retry_delay=config.retry_delay,
        scan_match=config.scan_match,
        scan_count=config.scan_count,
        exit_on_connect_failure=config.exit_on_connect_failure,
    )
    manager = ConnectionManager(config.address, connect_timeout=config.connect_timeout)
    exit_code = run_tui(controller, manager)
    if exit_code != 0:
        print(f"Error: could not connect to {config.address}", file=sys.stderr)
    logger.info(f"redis-tui exiting with status {exit_code}")
    return exit_code


def run():
    """Entry point for console script."""
    sys.exit(main())


if __name__ == "__main__":
    run()
