from pathlib import Path

import pytest

from agentdeck.config import config
from agentdeck.core_config import get_cfg_defaults


def test_default_config_loading():
    """Verify default values are loaded correctly."""
    cfg = get_cfg_defaults()
    assert cfg.SYSTEM.ROOT == str(Path(__file__).parent.parent.parent)
    assert Path(cfg.SYSTEM.BACKENDS_DIR).is_dir()
    assert Path(cfg.SYSTEM.BACKEND_SCHEMA).is_file()
    assert cfg.RUNS.ERROR_EXCERPT_CHARS == 500
    assert cfg.TERMINAL.MAX_RESULT_CHARS == 8000
    assert cfg.SESSIONS.STABILIZE_SEC == 1.0
    assert cfg.SESSIONS.MIN_NOTIFY_INTERVAL_SEC == 2.0


def test_config_singleton_is_frozen():
    assert config.is_frozen()
    with pytest.raises(Exception):
        config.RUNS.MAX_CONCURRENT = 99


def test_env_override(monkeypatch):
    import importlib

    from agentdeck import core_config

    monkeypatch.setenv("AGENTDECK_MAX_CONCURRENT", "2")
    monkeypatch.setenv("AGENTDECK_SESSION_RECONCILE_SEC", "not-a-number")
    try:
        reloaded = importlib.reload(core_config)
        cfg = reloaded.get_cfg_defaults()
        assert cfg.RUNS.MAX_CONCURRENT == 2
        assert cfg.SESSIONS.RECONCILE_INTERVAL_SEC == 30
    finally:
        monkeypatch.delenv("AGENTDECK_MAX_CONCURRENT")
        monkeypatch.delenv("AGENTDECK_SESSION_RECONCILE_SEC")
        importlib.reload(core_config)
