from __future__ import annotations

import os
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class EngineConfig(BaseModel):
    """Task execution engine settings."""

    tool_timeout_seconds: float = Field(default=30.0, gt=0)
    default_max_retries: int = Field(default=3, ge=0)
    retry_backoff_base: float = Field(default=1.5, ge=0)
    retry_backoff_jitter: float = Field(default=0.5, ge=0)


class MCPServerConfig(BaseModel):
    """Connection settings for a Model Context Protocol tool server."""

    transport: Literal["stdio", "sse"] = "stdio"
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    url: Optional[str] = None
    headers: Optional[Dict[str, str]] = None


class ToolsConfig(BaseModel):
    backend: Literal["local", "mcp"] = "local"
    mcp: MCPServerConfig = MCPServerConfig()


class RouterConfig(BaseModel):
    backend: Literal["keyword", "agent"] = "keyword"
    model: Optional[str] = None


class TaskplaneConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None
    engine: EngineConfig = EngineConfig()
    tools: ToolsConfig = ToolsConfig()
    router: RouterConfig = RouterConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> TaskplaneConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TASKPLANE_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("TASKPLANE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = TaskplaneConfig(**data)
    else:
        config = TaskplaneConfig()

    env_db_url = os.getenv("TASKPLANE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_transport = os.getenv("TASKPLANE_TRANSPORT")
    if env_transport:
        config.transport.backend = env_transport.lower()
    return config
