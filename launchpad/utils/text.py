import re

# CSI sequences (colors, cursor movement) and OSC sequences (window titles, links)
ANSI_ESCAPE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]")

def strip_ansi(text: str) -> str:
    """Removes terminal escape sequences from a chunk of runner output."""
    if not text:
        return ""
    return ANSI_ESCAPE.sub("", text)
