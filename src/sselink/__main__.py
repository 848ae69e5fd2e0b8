"""Entry point: python -m sselink"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from .config import ClientConfig
from .logging_config import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Resilient event-stream client")
    parser.add_argument("--url", default=None, help="Stream URL (default: http://127.0.0.1:3000/api/v1/sse)")
    parser.add_argument("--method", default=None, help="HTTP method (default: POST)")
    parser.add_argument("--body", default=None, help="Request body, sent as-is")
    parser.add_argument("--max-retries", type=int, default=None, help="Reconnect attempts before giving up (default: 3)")
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    parser.add_argument("--serve-demo", action="store_true", help="Run the demo peer instead of the client")
    args = parser.parse_args()

    config = ClientConfig()
    if args.url:
        config.url = args.url
    if args.method:
        config.method = args.method
    if args.body is not None:
        config.body = args.body
    if args.max_retries is not None:
        config.max_retries = args.max_retries
    if args.log_level:
        config.log_level = args.log_level

    setup_logging(config.log_dir, config.log_level)

    if args.serve_demo:
        from .server import run_server
        run_server(config)
        return

    try:
        failed = asyncio.run(_run_client(config))
    except KeyboardInterrupt:
        failed = False
    sys.exit(1 if failed else 0)


async def _run_client(config: ClientConfig) -> bool:
    """Stream until the connection gives up. Returns True if it ended failed."""
    from .session.connection import ConnectionEvent, SSEConnection
    from .session.state_machine import ConnectionState

    connection = SSEConnection(config.transport_options(), config.retry_policy())

    def print_envelope(envelope: dict[str, Any]) -> None:
        print(json.dumps(envelope, ensure_ascii=False), flush=True)

    connection.on(ConnectionEvent.MESSAGE, print_envelope)
    await connection.connect()
    try:
        await connection.wait_for(ConnectionState.FAILED)
    finally:
        await connection.close()
        log_dump = [message.to_dict() for message in connection.messages]
        print(json.dumps({"messages": log_dump}, ensure_ascii=False, indent=2))
    return True


if __name__ == "__main__":
    main()
