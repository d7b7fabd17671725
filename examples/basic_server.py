#!/usr/bin/env python3
"""
Basic Ballerina MCP Server Example

Runs the server over stdio with the Ballerina project tools, an extra
in-memory resource scheme and a small custom tool.
"""

import asyncio
import logging
import sys

from ballerina_mcp import (
    MemoryResourceProvider,
    ServerConfig,
    Tool,
    create_server,
)


def word_count(args: dict) -> dict:
    """Count words in a piece of text."""
    return {"words": len(args["text"].split())}


WORD_COUNT = Tool(
    name="text.word_count",
    description="Count the words in a piece of text",
    input_schema={
        "type": "object",
        "properties": {"text": {"type": "string", "description": "Text to count"}},
        "required": ["text"],
    },
    handler=word_count,
)


async def main():
    config = ServerConfig(transport="stdio", log_level="DEBUG")

    notes = MemoryResourceProvider(initial={"readme": "Scratch space for the session"})
    notes.watch("mem://readme", lambda event: logging.info(f"Resource event: {event}"))

    server = create_server(config, tools=[WORD_COUNT], providers={"mem": notes})

    await server.start()
    await server.wait_closed()


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG, stream=sys.stderr)
    asyncio.run(main())
