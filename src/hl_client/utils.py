"""
Utility functions for the headless.ly client.

Includes id generation, time helpers and stack string parsing.
"""

import random
import re
import uuid
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional


def generate_id() -> str:
    """Generate an opaque identifier for anonymous/session ids."""
    return uuid.uuid4().hex


def event_id() -> str:
    """32 lowercase hex characters. Not meant to be unguessable."""
    return "%032x" % random.getrandbits(128)


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


# File "/app/x.py", line 12, in handler
_PY_FRAME = re.compile(r'^\s*File "(?P<file>[^"]+)", line (?P<line>\d+)(?:, in (?P<function>.+))?$')
# at handler (/app/x.js:12:5)
_AT_FRAME = re.compile(r"at (?P<function>\S+) \((?P<file>.+):(?P<line>\d+):(?P<column>\d+)\)")
# at /app/x.js:12:5
_AT_BARE_FRAME = re.compile(r"at (?P<file>.+):(?P<line>\d+):(?P<column>\d+)")


def parse_stack(stack: str) -> List[Dict[str, Any]]:
    """
    Best-effort parse of a stack string into frame dicts.

    Understands Python tracebacks and "at fn (file:line:col)" style traces.
    Unrecognised lines are skipped. Frames are returned oldest call first.

    Args:
        stack: Raw stack/traceback text

    Returns:
        List of {function, file, line, column} dicts (missing keys omitted)
    """
    frames: List[Dict[str, Any]] = []
    at_style = False
    for raw in stack.splitlines():
        line = raw.strip()
        m = _PY_FRAME.match(line)
        if m:
            frames.append(_frame(m.group("function"), m.group("file"), m.group("line")))
            continue
        m = _AT_FRAME.search(line) or _AT_BARE_FRAME.search(line)
        if m:
            at_style = True
            groups = m.groupdict()
            frames.append(
                _frame(groups.get("function"), groups["file"], groups["line"], groups["column"])
            )
    # "at" traces list the innermost call first
    if at_style:
        frames.reverse()
    return frames


def _frame(
    function: Optional[str], file: str, line: str, column: Optional[str] = None
) -> Dict[str, Any]:
    out: Dict[str, Any] = {"file": file, "line": int(line)}
    if function:
        out["function"] = function.strip()
    if column is not None:
        out["column"] = int(column)
    return out
