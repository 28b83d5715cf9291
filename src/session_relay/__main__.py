"""
Session Relay - Entry Point

Main entry point for running the relay daemon.
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path

from .config import RelayConfig, create_default_config, load_config
from .server import run_daemon

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Session Relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with relay.yaml from the current directory (or defaults)
  python -m session_relay

  # Explicit config and port
  python -m session_relay --config /etc/relay/relay.yaml --port 8080

  # Point at a bridge on another host
  python -m session_relay --bridge-url http://bridge:3100 --bridge-ws-url ws://bridge:3100

  # Write a starter relay.yaml
  python -m session_relay --init-config

  # Enable debug logging
  python -m session_relay --debug
"""
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to relay.yaml (default: search ./ and ./config/)'
    )
    parser.add_argument('--host', help='Control API bind address')
    parser.add_argument('--port', '-p', type=int, help='Control API port')
    parser.add_argument('--auth-root', help='Directory holding auth_info_<sessionId>/ folders')
    parser.add_argument('--bridge-url', help='Bridge HTTP URL')
    parser.add_argument('--bridge-ws-url', help='Bridge WebSocket URL')
    parser.add_argument(
        '--init-config',
        action='store_true',
        help='Write a default relay.yaml and exit'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    return parser


def apply_overrides(config: RelayConfig, args: argparse.Namespace) -> RelayConfig:
    """Apply CLI flags on top of the loaded configuration"""
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.auth_root:
        # relative to where the command runs, not to relay.yaml
        config.sessions.auth_root = str(Path.cwd() / args.auth_root)
    if args.bridge_url:
        config.bridge.http_url = args.bridge_url
    if args.bridge_ws_url:
        config.bridge.ws_url = args.bridge_ws_url
    return config


async def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.init_config:
        path = create_default_config(args.config)
        print(f"Created {path}")
        return

    try:
        config = load_config(args.config)
    except (FileNotFoundError, KeyError) as e:
        logger.error(f"Cannot load configuration: {e}")
        sys.exit(1)

    apply_overrides(config, args)

    level = logging.DEBUG if args.debug else getattr(logging, config.logging.level, logging.INFO)
    logging.getLogger().setLevel(level)

    await run_daemon(config=config, debug=args.debug)


def run():
    """Entry point for console script"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == '__main__':
    run()
