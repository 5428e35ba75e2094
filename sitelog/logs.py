import io
import json
import logging
import sys
from datetime import datetime, timezone
from typing import TextIO

logger = logging.getLogger("sitelog")

# Predeclare stream so type checkers see it before first use
_stdout_utf8: TextIO = sys.stdout


# Force a UTF-8 text stream for logging
def _utf8_stream_for_stdout() -> TextIO:
    try:
        if hasattr(sys.stdout, "buffer"):
            return io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace", line_buffering=True)
    except (AttributeError, ValueError):
        pass
    try:
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    except (AttributeError, ValueError):
        pass
    return sys.stdout


def configure_logging(level: int = logging.INFO) -> None:
    global _stdout_utf8
    _stdout_utf8 = _utf8_stream_for_stdout()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler(_stdout_utf8)],
        force=True,  # override handlers added by uvicorn
    )


def json_log(event: str, level: int = logging.INFO, **kwargs) -> None:
    """
    Emit an ASCII-only JSON log line. Values that are not JSON serializable are
    rendered with str(). Never raises.
    """
    payload = {"ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"), "event": event, **kwargs}
    try:
        line = json.dumps(payload, ensure_ascii=True, default=str)
    except (TypeError, ValueError):
        line = json.dumps({"ts": payload["ts"], "event": event, "unserializable": True})
    try:
        logger.log(level, line)
    except Exception:
        # logging must never raise into request handling
        pass
