"""
Entry point: ``python -m ballerina_mcp`` or ``ballerina-mcp``.

Configuration comes from the environment (see ServerConfig.from_env).
"""

import asyncio
import logging
import signal
import sys

from .config import ServerConfig
from .server import create_server


logger = logging.getLogger("ballerina_mcp")


async def serve(config: ServerConfig) -> None:
    server = create_server(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda s=sig: asyncio.ensure_future(_stop(server, s)))
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    await server.start()
    await server.wait_closed()


async def _stop(server, sig) -> None:
    logger.info(f"Received {sig.name}, shutting down gracefully...")
    await server.shutdown()


def main() -> int:
    config = ServerConfig.from_env()

    # stdout carries the stdio protocol stream, so logs go to stderr
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )

    try:
        logger.info("Starting Ballerina MCP Server...")
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("Failed to start server")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
