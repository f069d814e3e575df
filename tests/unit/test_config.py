"""Tests for configuration loading."""

from flowforge.config import load_config
from flowforge.optimizer import Constraints


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
engine:
  max_parallel_operations: 3
  history_limit: 10
optimizer:
  seed: 42
  constraints:
    max_total_cost: 8
log_level: DEBUG
"""
    )
    monkeypatch.setenv("FLOWFORGE_CONFIG", str(config_path))
    monkeypatch.delenv("FLOWFORGE_LOG_LEVEL", raising=False)
    monkeypatch.delenv("FLOWFORGE_WORKFLOWS_PATH", raising=False)

    config = load_config()
    assert config.engine.max_parallel_operations == 3
    assert config.engine.history_limit == 10
    assert config.optimizer.seed == 42
    assert config.log_level == "DEBUG"
    constraints = Constraints.from_config(config.optimizer.constraints)
    assert constraints.max_total_cost == 8
    assert constraints.max_parallel_operations == 5


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("FLOWFORGE_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("FLOWFORGE_LOG_LEVEL", "warning")
    monkeypatch.setenv("FLOWFORGE_WORKFLOWS_PATH", str(tmp_path))

    config = load_config()
    assert config.log_level == "WARNING"
    assert config.workflows_path == str(tmp_path)
    assert config.engine.max_parallel_operations == 5
