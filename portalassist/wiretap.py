"""
Wire log: what was said on each thread, one JSON object per line.

Entries are written for the user's message, the assistant's reply, and each
tool call with its output. The debug log says how the service got somewhere;
the wire log says what crossed the wire, keyed by thread and run.

`portalassist tail` renders the file with colors and can follow it live.
"""

import json
import logging
import time
from collections import deque
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_CONTENT = 2000
PREVIEW_CHARS = 500
PREVIEW_LINES = 15

RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
GRAY = "\033[90m"

# role -> (color, marker)
STYLES = {
    "user": ("\033[96m", "▶"),
    "assistant": ("\033[93m", "◀"),
    "tool": ("\033[92m", "⚡"),
}


def _clip(content: str) -> str:
    """Keep the head and tail of oversized content."""
    if len(content) <= MAX_CONTENT:
        return content
    half = MAX_CONTENT // 2
    dropped = len(content) - MAX_CONTENT
    return f"{content[:half]}\n\n[... {dropped} chars truncated ...]\n\n{content[-half:]}"


class WireLog:
    """
    Appends entries shaped like

        {"ts": ..., "dir": "inbound|outbound|internal", "role": ...,
         "thread": ..., "run": ..., "len": 123, "tool": ..., "content": ...}

    "tool" is present only for tool traffic.
    """

    def __init__(self, log_path: str):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = None

    def log(
        self,
        direction: str,
        role: str,
        content: str,
        thread_id: str = "",
        run_id: str = "",
        tool_name: str = "",
    ):
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "dir": direction,
            "role": role,
            "thread": thread_id or "",
            "run": run_id or "",
            "len": len(content),
        }
        if tool_name:
            entry["tool"] = tool_name
        entry["content"] = _clip(content)

        if self._fh is None:
            self._fh = self.log_path.open("a", buffering=1)
        self._fh.write(json.dumps(entry, ensure_ascii=False) + "\n")

    def close(self):
        if self._fh is not None:
            self._fh.close()
            self._fh = None


# ---------------------------------------------------------------------------
# Viewer
# ---------------------------------------------------------------------------

def _clock(ts: str) -> str:
    try:
        return datetime.fromisoformat(ts).strftime("%H:%M:%S")
    except (TypeError, ValueError):
        return ts[:8] or "--:--:--"


def render(entry: dict) -> str:
    """Colored multi-line view of one entry."""
    role = entry.get("role", "?")
    color, marker = STYLES.get(role, (RESET, "?"))
    arrow = "──▶" if entry.get("dir") == "inbound" else "◀──"

    head = [
        f"  {GRAY}{_clock(entry.get('ts', ''))}{RESET}",
        f"{DIM}{arrow}{RESET}",
        f"{color}{BOLD}{marker} {role.upper()}{RESET}",
    ]
    if entry.get("tool"):
        head.append(f" {STYLES['tool'][0]}{entry['tool']}{RESET}")
    head.append(f" {DIM}({entry.get('len', 0)} chars){RESET}")
    if entry.get("thread"):
        head.append(f" {DIM}thread:{entry['thread']}{RESET}")

    out = [" ".join(head)]
    content = entry.get("content") or ""
    if content:
        preview = content[:PREVIEW_CHARS]
        out += ["      " + line for line in preview.splitlines()[:PREVIEW_LINES]]
        if len(content) > PREVIEW_CHARS:
            out.append(f"      {DIM}[... truncated]{RESET}")
    out.append(f"  {GRAY}{'─' * 60}{RESET}")
    return "\n".join(out)


def _parse(line: str) -> dict | None:
    line = line.strip()
    if not line:
        return None
    try:
        return json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping unreadable wire log line")
        return None


def _show(line: str, role_filter: str | None, raw: bool):
    entry = _parse(line)
    if entry is None or (role_filter and entry.get("role") != role_filter):
        return
    print(json.dumps(entry, ensure_ascii=False) if raw else render(entry))


def tail(
    log_path: str,
    follow: bool = False,
    last_n: int = 20,
    role_filter: str | None = None,
    raw: bool = False,
):
    """Print the last N entries; with follow, keep printing new ones until Ctrl-C."""
    path = Path(log_path)
    if not path.exists():
        print(f"  No wire log found at {path}")
        return

    with path.open() as fh:
        for line in deque(fh, maxlen=max(last_n, 0)):
            _show(line, role_filter, raw)

        if not follow:
            return

        try:
            while True:
                line = fh.readline()
                if line:
                    _show(line, role_filter, raw)
                else:
                    time.sleep(0.1)
        except KeyboardInterrupt:
            print()
