import re

_ANSI_SEQUENCE_RE = re.compile(
    r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"   # OSC (title, hyperlinks)
    r"|(?:\x1b\[|\x9b)[0-?]*[ -/]*[@-~]"   # CSI
    r"|\x1b[()*+][0-9A-Za-z]"              # charset designators
    r"|\x1b[0-9=>@-Z\\^_a-z~]"             # two-character escapes
)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences and non-printing control characters."""
    if not text:
        return ""
    return _CONTROL_CHARS_RE.sub("", _ANSI_SEQUENCE_RE.sub("", text))
