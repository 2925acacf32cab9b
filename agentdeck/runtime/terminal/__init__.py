from .ansi import strip_ansi
from .extractor import extract_result_from_buffer
from .screen_filter import diff_screens, filter_screen
from .signals import (
    detect_completion,
    detect_idle_prompt,
    has_background_activity,
    is_artifact_line,
    is_chrome_line,
)

__all__ = [
    "detect_completion",
    "detect_idle_prompt",
    "diff_screens",
    "extract_result_from_buffer",
    "filter_screen",
    "has_background_activity",
    "is_artifact_line",
    "is_chrome_line",
    "strip_ansi",
]
