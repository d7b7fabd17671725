"""
Server configuration.

Values come from keyword arguments or, via ``ServerConfig.from_env``,
from environment variables (optionally loaded from a ``.env`` file).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

SUPPORTED_TRANSPORTS = ("websocket", "stdio")

DEFAULT_PERMISSIONS = ["tools:*", "resources:*", "prompts:*"]


@dataclass
class ServerConfig:
    """Configuration for the MCP server."""
    name: str = "ballerina-mcp-server"
    version: str = "0.1.0"
    protocol_version: str = "2024-11-05"
    transport: str = "websocket"
    host: str = "localhost"
    port: int = 3000
    path: str = "/"
    log_level: str = "INFO"
    max_connections: int = 100
    request_timeout: float = 30.0
    shutdown_grace_period: float = 1.0
    default_permissions: List[str] = field(
        default_factory=lambda: list(DEFAULT_PERMISSIONS)
    )
    bal_home: Optional[str] = None
    allowed_paths: Optional[List[str]] = None

    def validate(self) -> None:
        """Raise ValueError for settings the server cannot run with."""
        if self.transport not in SUPPORTED_TRANSPORTS:
            raise ValueError(f"Unsupported transport: {self.transport}")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")
        if self.max_connections <= 0:
            raise ValueError("max_connections must be positive")
        if self.shutdown_grace_period < 0:
            raise ValueError("shutdown_grace_period must not be negative")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "ServerConfig":
        """
        Create configuration from environment variables.

        Recognised variables:
        - MCP_TRANSPORT (websocket | stdio, default: websocket)
        - MCP_HOST (default: localhost)
        - MCP_PORT (default: 3000)
        - LOG_LEVEL (default: INFO)
        - MAX_CONNECTIONS (default: 100)
        - REQUEST_TIMEOUT in seconds (default: 30)
        - SHUTDOWN_GRACE_PERIOD in seconds (default: 1)
        - BAL_HOME
        - MCP_ALLOWED_PATHS (os.pathsep separated)
        """
        load_dotenv(env_file)

        allowed = os.getenv("MCP_ALLOWED_PATHS")

        return cls(
            transport=os.getenv("MCP_TRANSPORT", "websocket"),
            host=os.getenv("MCP_HOST", "localhost"),
            port=int(os.getenv("MCP_PORT", "3000")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            max_connections=int(os.getenv("MAX_CONNECTIONS", "100")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
            shutdown_grace_period=float(os.getenv("SHUTDOWN_GRACE_PERIOD", "1")),
            bal_home=os.getenv("BAL_HOME"),
            allowed_paths=[p for p in allowed.split(os.pathsep) if p] if allowed else None,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "transport": self.transport,
            "host": self.host,
            "port": self.port,
        }
