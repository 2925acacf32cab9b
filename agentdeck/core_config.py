"""
Core Configuration Definitions.

Default structure and values for the engine configuration, built with `yacs`.
Sections:
- SYSTEM: paths for data, backend descriptors and schemas.
- RUNS: one-shot run execution and scheduling.
- SESSIONS: tmux-backed interactive sessions and their output pipeline.
- TERMINAL: result extraction from terminal buffers.
"""

import os
from pathlib import Path
from yacs.config import CfgNode as CN  # type: ignore[import-untyped]


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


_C = CN()

# -----------------------------------------------------------------------------
# System Configuration
# -----------------------------------------------------------------------------
_C.SYSTEM = CN()
_C.SYSTEM.ROOT = str(Path(__file__).parent.parent)
_C.SYSTEM.DATA_DIR = os.environ.get("AGENTDECK_DATA_DIR", os.path.join(_C.SYSTEM.ROOT, "data"))
# Backend descriptors (one JSON file per CLI backend)
_C.SYSTEM.BACKENDS_DIR = os.environ.get(
    "AGENTDECK_BACKENDS_DIR",
    str(Path(__file__).parent / "assets" / "backends"),
)
_C.SYSTEM.BACKEND_SCHEMA = str(Path(__file__).parent / "assets" / "schemas" / "backend_descriptor_schema.json")

# -----------------------------------------------------------------------------
# One-shot runs
# -----------------------------------------------------------------------------
_C.RUNS = CN()
_C.RUNS.DEFAULT_PROVIDER = os.environ.get("AGENTDECK_DEFAULT_PROVIDER", "claude")
_C.RUNS.MAX_CONCURRENT = _env_int("AGENTDECK_MAX_CONCURRENT", 5)
_C.RUNS.DEFAULT_TIMEOUT_SEC = _env_float("AGENTDECK_RUN_TIMEOUT_SEC", 300.0)
# Grace period between SIGTERM and SIGKILL on timeout
_C.RUNS.KILL_GRACE_SEC = 10.0
_C.RUNS.ERROR_EXCERPT_CHARS = 500
# Credentials that must not leak into backend processes (they use their own login)
_C.RUNS.ENV_STRIP_KEYS = ["OPENAI_API_KEY", "ANTHROPIC_API_KEY"]

# -----------------------------------------------------------------------------
# Interactive sessions
# -----------------------------------------------------------------------------
_C.SESSIONS = CN()
_C.SESSIONS.TMUX_BINARY = os.environ.get("AGENTDECK_TMUX_BINARY", "tmux")
_C.SESSIONS.NAME_PREFIX = "agentdeck"
_C.SESSIONS.STORE_FILE = "sessions.json"
_C.SESSIONS.COMMAND_TIMEOUT_SEC = 3.0
_C.SESSIONS.POLL_INTERVAL_SEC = 0.5
_C.SESSIONS.STABILIZE_SEC = 1.0
_C.SESSIONS.MIN_NOTIFY_INTERVAL_SEC = 2.0
_C.SESSIONS.MIN_CHANGE_CHARS = 5
_C.SESSIONS.CAPTURE_LINES = 50
_C.SESSIONS.TASK_CAPTURE_LINES = 2000
_C.SESSIONS.OUTPUT_BUFFER_SIZE = 20
# 0 disables idle closing
_C.SESSIONS.IDLE_TIMEOUT_SEC = _env_float("AGENTDECK_SESSION_IDLE_TIMEOUT_SEC", 0.0)
# 0 disables the background reconcile job
_C.SESSIONS.RECONCILE_INTERVAL_SEC = _env_int("AGENTDECK_SESSION_RECONCILE_SEC", 30)
_C.SESSIONS.TASK_TIMEOUT_SEC = 1800.0
_C.SESSIONS.TASK_SETTLE_SEC = 5.0
_C.SESSIONS.TASK_MIN_EXEC_SEC = 2.0
_C.SESSIONS.BACKGROUND_COOLDOWN_SEC = 30.0

# -----------------------------------------------------------------------------
# Terminal result extraction
# -----------------------------------------------------------------------------
_C.TERMINAL = CN()
_C.TERMINAL.MAX_RESULT_CHARS = 8000
_C.TERMINAL.TRUNCATION_MARKER = os.environ.get(
    "AGENTDECK_TRUNCATION_MARKER",
    "...(earlier output truncated)...",
)


def get_cfg_defaults():
    """Get a yacs CfgNode object with default values."""
    return _C.clone()
