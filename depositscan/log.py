"""Tagged console logging: `[TAG] message`, filtered by LOG_LEVEL."""

import sys
from datetime import datetime, timezone

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}
_threshold = _LEVELS["INFO"]


def set_level(level: str) -> None:
    global _threshold
    _threshold = _LEVELS.get(level.upper(), _LEVELS["INFO"])


def log(tag: str, message: str, level: str = "INFO") -> None:
    """Print one tagged line. WARNING and ERROR go to stderr."""
    severity = _LEVELS.get(level, _LEVELS["INFO"])
    if severity < _threshold:
        return
    ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    prefix = f"{ts} [{tag}]"
    if severity >= _LEVELS["WARNING"]:
        marker = "❌" if severity >= _LEVELS["ERROR"] else "⚠️ "
        print(f"{prefix} {marker} {message}", file=sys.stderr)
    else:
        print(f"{prefix} {message}")
