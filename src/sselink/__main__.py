"""Entry point: python -m sselink {listen,serve}"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from .config import SSELinkConfig
from .errors import TerminalError
from .logging_config import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Server-Sent Events client and demo server")
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    listen = sub.add_parser("listen", help="Stream events from URL as JSON lines")
    listen.add_argument("url", help="Event stream URL")
    listen.add_argument("--retry", type=float, default=None, help="Initial reconnect interval in seconds")

    serve = sub.add_parser("serve", help="Run the demo counter stream server")
    serve.add_argument("--host", default=None, help="Bind host (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: 8080)")
    serve.add_argument("--interval", type=float, default=None, help="Seconds between events (default: 1.0)")
    args = parser.parse_args()

    config = SSELinkConfig()
    if args.log_level:
        config.log_level = args.log_level

    setup_logging(config.log_dir, config.log_level)

    if args.command == "listen":
        if args.retry:
            config.retry_seconds = args.retry
        try:
            asyncio.run(_listen(args.url, config))
        except KeyboardInterrupt:
            pass
        except TerminalError as exc:
            print(f"sselink: {exc}", file=sys.stderr)
            sys.exit(1)
        return

    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.interval:
        config.tick_interval = args.interval

    from .server.app import run_server
    run_server(config)


async def _listen(url: str, config: SSELinkConfig) -> None:
    """Print each event as one JSON line until the stream ends."""
    from .client.eventsource import EventSource

    async with EventSource.from_config(url, config) as source:
        async for event in source:
            line = {"type": event.type, "id": event.id, "data": event.data.decode("utf-8")}
            sys.stdout.write(json.dumps(line) + "\n")
            sys.stdout.flush()


if __name__ == "__main__":
    main()
