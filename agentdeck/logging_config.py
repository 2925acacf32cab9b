import logging
from logging.handlers import RotatingFileHandler
import os
from pathlib import Path

from .config import config

# Per-poll and per-tmux-command logs are noisy at INFO with many open sessions
_SESSION_LOGGERS = (
    "agentdeck.services.session.session_manager",
    "agentdeck.services.session.tmux_client",
)
# apscheduler logs every reconcile tick at INFO
_THIRD_PARTY_LEVELS = {
    "apscheduler": logging.WARNING,
}


def _level_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip().upper()
    if not raw:
        return default
    return getattr(logging, raw, default)


def configure_logger_levels(level: int) -> None:
    """Apply engine-specific logger levels relative to the root `level`."""
    session_level = _level_from_env("AGENTDECK_SESSION_LOG_LEVEL", level)
    for name in _SESSION_LOGGERS:
        logging.getLogger(name).setLevel(session_level)
    for name, third_party_level in _THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(max(level, third_party_level))


def setup_logging() -> None:
    """Configure engine logging: console plus a rotating file under the data dir."""
    level = _level_from_env("LOG_LEVEL", logging.INFO)
    configure_logger_levels(level)

    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    log_file = Path(os.environ.get("LOG_FILE", str(Path(config.SYSTEM.DATA_DIR) / "logs" / "agentdeck.log")))
    max_bytes = int(os.environ.get("LOG_MAX_BYTES", str(5 * 1024 * 1024)))
    backup_count = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)

    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    root_logger.setLevel(level)
    root_logger.addHandler(stream_handler)
    root_logger.addHandler(file_handler)
