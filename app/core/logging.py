import logging
import os
from typing import Any, Dict, Optional


DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEFAULT_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | "
    "room=%(room)s role=%(role)s participant=%(participant)s | %(message)s"
)

CONTEXT_FIELDS = ("room", "role", "participant")


class ContextFilter(logging.Filter):
    """Fills the room/role/participant fields the format string expects."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for field in CONTEXT_FIELDS:
            if getattr(record, field, None) is None:
                setattr(record, field, "-")
        return True


def log_context(
    room: Optional[str] = None,
    role: Optional[str] = None,
    participant: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the ``extra`` mapping for a quiz log record; unset fields render as '-'."""
    return {"room": room, "role": role, "participant": participant}


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Initialize root logger with the quiz context format."""
    resolved_level = getattr(logging, (level or DEFAULT_LEVEL), logging.INFO)
    formatter = logging.Formatter(fmt or DEFAULT_FORMAT)

    root = logging.getLogger()
    root.setLevel(resolved_level)

    # Clear existing handlers to avoid duplicate logs in reloads
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensure root is initialized."""
    if not logging.getLogger().handlers:
        setup_logging()
    return logging.getLogger(name)
