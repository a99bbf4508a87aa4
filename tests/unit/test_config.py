"""Tests for configuration loading."""

from taskplane.config import load_config
from taskplane.runtime import ControlPlane
from taskplane.transports import get_transport
from taskplane.transports.redis import RedisTransport


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
engine:
  tool_timeout_seconds: 5
  default_max_retries: 4
tools:
  backend: mcp
  mcp:
    transport: stdio
    command: python
    args: ["-m", "tool_server"]
router:
  backend: agent
  model: "openai:gpt-4o"
log_level: DEBUG
"""
    )
    monkeypatch.setenv("TASKPLANE_CONFIG", str(config_path))
    monkeypatch.delenv("TASKPLANE_TRANSPORT", raising=False)
    monkeypatch.delenv("TASKPLANE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.engine.tool_timeout_seconds == 5
    assert config.engine.default_max_retries == 4
    assert config.engine.retry_backoff_base == 1.5
    assert config.tools.backend == "mcp"
    assert config.tools.mcp.args == ["-m", "tool_server"]
    assert config.router.model == "openai:gpt-4o"
    assert config.log_level == "DEBUG"
    assert config.database_url is None


def test_missing_config_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("TASKPLANE_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("TASKPLANE_TRANSPORT", raising=False)
    monkeypatch.delenv("TASKPLANE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.transport.backend == "inmemory"
    assert config.tools.backend == "local"
    assert config.router.backend == "keyword"
    assert config.engine.tool_timeout_seconds == 30.0


def test_env_overrides_database_and_transport(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite://from-file.db\n")
    monkeypatch.setenv("TASKPLANE_CONFIG", str(config_path))
    monkeypatch.setenv("TASKPLANE_DATABASE_URL", "sqlite://from-env.db")
    monkeypatch.setenv("TASKPLANE_TRANSPORT", "REDIS")

    config = load_config()
    assert config.database_url == "sqlite://from-env.db"
    assert config.transport.backend == "redis"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("TASKPLANE_CONFIG", str(config_path))
    monkeypatch.delenv("TASKPLANE_TRANSPORT", raising=False)

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380


def test_control_plane_from_config_uses_engine_settings(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
database_url: sqlite://{tmp_path / 'plane.db'}
engine:
  default_max_retries: 7
"""
    )
    monkeypatch.setenv("TASKPLANE_CONFIG", str(config_path))
    monkeypatch.delenv("TASKPLANE_TRANSPORT", raising=False)
    monkeypatch.delenv("TASKPLANE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    plane = ControlPlane.from_config(load_config())

    assert plane.queue.job_names == ["execute-task"]
    assert plane.repository.db_path.endswith("plane.db")
    assert plane.dispatcher._default_max_retries == 7
