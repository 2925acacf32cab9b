"""
Pattern tables for terminal signal classification.

Each classifier is an ordered tuple of named patterns so a new pattern can be
added or tested on its own without touching the others.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class SignalPattern:
    name: str
    regex: re.Pattern[str]

    def matches(self, text: str) -> bool:
        return self.regex.search(text) is not None


def _p(name: str, pattern: str, flags: int = 0) -> SignalPattern:
    return SignalPattern(name=name, regex=re.compile(pattern, flags))


SPINNER_GLYPHS = "✢✳✶✻✽·"
_SPIN = f"[{SPINNER_GLYPHS}]"

IDLE_PROMPT_PATTERNS: tuple[SignalPattern, ...] = (
    _p("hint_ctrl_g_edit", r"ctrl\+g to edit", re.IGNORECASE),
    _p("hint_shift_tab_cycle", r"shift\+tab to cycle", re.IGNORECASE),
    _p("prompt_marker", r"^[>❯$]\s*$", re.MULTILINE),
    _p("invite_enter_message", r"Enter your message", re.IGNORECASE),
    _p("invite_type_message", r"Type a message", re.IGNORECASE),
    _p("invite_what_next", r"What would you like to do", re.IGNORECASE),
    _p("input_box_border", r"^\s*[╭╰]─", re.MULTILINE),
)

COMPLETION_PATTERNS: tuple[SignalPattern, ...] = (
    _p(
        "first_person_done",
        r"I've (?:completed|finished|made|created|updated|added|fixed|removed|implemented)",
        re.IGNORECASE,
    ),
    _p(
        "changes_applied",
        r"(?:changes|modifications|updates) (?:have been|were) (?:made|applied|saved)",
        re.IGNORECASE,
    ),
    _p("let_me_know", r"Let me know if", re.IGNORECASE),
    _p("anything_else", r"Is there anything else", re.IGNORECASE),
    _p("done_tail", r"\bDone[.!]?\s*$", re.IGNORECASE),
    _p("task_completed", r"Task completed", re.IGNORECASE),
    _p("ko_work_done", r"(?:작업|수정|변경|구현|추가|삭제)(?:이|을|를)?\s*(?:완료|마쳤|끝났)"),
    _p("ko_file_mutated", r"파일을?\s*(?:수정|생성|삭제|변경)(?:했|하였)"),
)

CHROME_PATTERNS: tuple[SignalPattern, ...] = (
    _p("rule_divider", r"^[─━═]{3,}$"),
    _p("model_status_bar", r"🤖.*(?:Opus|Sonnet|Haiku|Claude)"),
    _p("project_path", r"📁"),
    _p("status_glyph", r"🔷|💎"),
    _p("permission_banner", r"⏵⏵"),
    _p("permission_mode", r"bypass\s*permissions?\s*(?:on|off)", re.IGNORECASE),
    _p("hint_ctrl_g_edit", r"ctrl\+g to edit", re.IGNORECASE),
    _p("hint_shift_tab_cycle", r"shift\+tab to cycle", re.IGNORECASE),
    _p("ko_token_count", r"\d+\s*토큰"),
    _p("ko_cost_elapsed", r"\$[\d.]+.*\d+초"),
    _p("burn_rate", r"🔥.*/min"),
    _p("ko_todo_stats", r"할일:\s*-"),
    _p("token_download", r"↓\s*[\d.]+k?\s*tokens?", re.IGNORECASE),
    _p("token_budget", r"\d+K?/\d+K?\s*(?:tokens|tok)\b", re.IGNORECASE),
)

ARTIFACT_PATTERNS: tuple[SignalPattern, ...] = (
    _p("spinner_only", rf"^[{SPINNER_GLYPHS}\s]+$"),
    _p("spinner_fragment", rf"^{_SPIN}.{{0,15}}$"),
    _p("thinking_marker", r"\(thinking\)", re.IGNORECASE),
    _p(
        "thinking_in_progress",
        rf"^{_SPIN}?\s*(?:Stewing|Brewing|Thinking|Reasoning|Pondering|Mulling|Flowing|Spinning|Cogitating|Cooking)(?:…|\.{{3}})",
        re.IGNORECASE,
    ),
    _p(
        "thinking_completed",
        rf"^\(?{_SPIN}?\s*(?:Cogitated|Brewed|Thought|Pondered|Reasoned|Mulled|Stewed|Cooked)\s+for\s+[\dm\s]+s?",
        re.IGNORECASE,
    ),
    _p("elapsed_tokens", r"^\([\dm\s]+s?\s*[·•]\s*↓"),
    _p("bare_number", r"^\d+$"),
    _p("flowing_tail", r"Flowing(?:…|\.{2,})\s*$"),
    _p("title_remnant", r"\]0;"),
    _p("progress_bar", r"^[█▓▒░]+\s*\d{0,3}%?$"),
    _p("status_percent", r"^│\s*\d+%"),
    _p("model_status_fragment", r"(?:gemini|gpt|claude|sonnet|opus|haiku)-[\w.-]+\s*│", re.IGNORECASE),
    _p("elapsed_ctrl_hint", r"^\d+[smh]?\s*\(ctrl\+\w to \w+\)", re.IGNORECASE),
    _p("box_border", r"^[╭╮╰╯│─━═\s]+$"),
    _p("ascii_fragment", r"^[A-Za-z]{1,3}$"),
)

BACKGROUND_ACTIVITY_PATTERNS: tuple[SignalPattern, ...] = (
    _p("task_completed_background", r"⏺?\s*Task\s+\".*\"\s*completed\s*in\s*background", re.IGNORECASE),
    _p("agent_completed", r"⏺?\s*Agent\s+\".*\"\s*completed", re.IGNORECASE),
    _p("completed_in_background", r"completed\s*in\s*background", re.IGNORECASE),
    _p("conversation_compacted", r"✻\s*Conversation\s+compacted", re.IGNORECASE),
    _p("cooked_for", r"✻\s*Cooked\s+for", re.IGNORECASE),
)

TRAILING_PROMPT_RE = re.compile(r"^(?:claude\s*)?[>❯$]\s*$", re.IGNORECASE)
LEADING_SPINNER_RE = re.compile(rf"^{_SPIN}\s*")
PROMPT_ECHO_PREFIX_RE = re.compile(r"^(?:claude\s*)?[>❯$]\s*", re.IGNORECASE)
