"""Tests for ballerina_mcp.config module."""

import os

import pytest

from ballerina_mcp.config import ServerConfig


class TestServerConfig:
    def test_defaults(self):
        config = ServerConfig()
        assert config.name == "ballerina-mcp-server"
        assert config.transport == "websocket"
        assert config.port == 3000
        assert config.shutdown_grace_period == 1.0
        assert "tools:*" in config.default_permissions

    def test_validate_accepts_defaults(self):
        ServerConfig().validate()

    def test_validate_rejects_transport(self):
        with pytest.raises(ValueError, match="Unsupported transport"):
            ServerConfig(transport="carrier-pigeon").validate()

    def test_validate_rejects_port(self):
        with pytest.raises(ValueError):
            ServerConfig(port=0).validate()

    def test_to_dict(self):
        d = ServerConfig(transport="stdio").to_dict()
        assert d["transport"] == "stdio"
        assert d["version"] == "0.1.0"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MCP_TRANSPORT", "stdio")
        monkeypatch.setenv("MCP_PORT", "4100")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("SHUTDOWN_GRACE_PERIOD", "0.25")
        monkeypatch.setenv("MCP_ALLOWED_PATHS", os.pathsep.join(["/a", "/b"]))

        config = ServerConfig.from_env(env_file=str(tmp_path / "missing.env"))

        assert config.transport == "stdio"
        assert config.port == 4100
        assert config.log_level == "DEBUG"
        assert config.shutdown_grace_period == 0.25
        assert config.allowed_paths == ["/a", "/b"]

    def test_from_env_file(self, monkeypatch, tmp_path):
        # registered with monkeypatch so the value dotenv loads is undone
        monkeypatch.setenv("MCP_HOST", "unset")
        monkeypatch.delenv("MCP_HOST")
        env_file = tmp_path / ".env"
        env_file.write_text("MCP_HOST=0.0.0.0\n")

        config = ServerConfig.from_env(env_file=str(env_file))

        assert config.host == "0.0.0.0"
