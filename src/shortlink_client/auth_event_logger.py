import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, Union

from .settings import data_root


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logs."""

    def format(self, record):
        # The message is already a dict, so we just format it as a JSON string
        return json.dumps(record.msg, default=str)


# Module-level state for lazy initialization
_auth_event_logger: Optional[logging.Logger] = None
_configured_logs_dir: Optional[Path] = None


def configure_auth_event_logger(logs_dir: Optional[Union[Path, str]] = None) -> None:
    """
    Configure the auth event logger to use a specific logs directory.

    Call this before first use if you want to override the default location.
    If not called, the logger writes to <data_root>/logs on first use.
    """
    global _configured_logs_dir, _auth_event_logger
    _configured_logs_dir = Path(logs_dir) if logs_dir else None
    # Reset logger so it gets reconfigured on next use
    _auth_event_logger = None


def _setup_auth_event_logger(logs_dir: Path) -> logging.Logger:
    logger = logging.getLogger("shortlink_client.auth_events")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    # Clear existing handlers to prevent duplicates on re-setup
    logger.handlers.clear()

    try:
        logs_dir.mkdir(parents=True, exist_ok=True)

        handler = RotatingFileHandler(
            logs_dir / "auth_events.log",
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=2,
        )
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    except (OSError, PermissionError, IOError) as e:
        logging.warning(f"Cannot create auth event log file handler: {e}")
        logger.addHandler(logging.NullHandler())

    return logger


def get_auth_event_logger() -> logging.Logger:
    """Get the auth event logger, initializing it lazily if needed."""
    global _auth_event_logger

    if _auth_event_logger is None:
        try:
            logs_dir = _configured_logs_dir if _configured_logs_dir else data_root() / "logs"
        except OSError as e:
            logging.warning(f"Cannot resolve logs directory: {e}")
            logger = logging.getLogger("shortlink_client.auth_events")
            logger.propagate = False
            logger.addHandler(logging.NullHandler())
            _auth_event_logger = logger
            return logger
        _auth_event_logger = _setup_auth_event_logger(logs_dir)

    return _auth_event_logger


# Main library logger for concise, propagated messages
main_lib_logger = logging.getLogger("shortlink_client")


def _error_chain(error: Optional[BaseException]) -> Optional[list]:
    chain = []
    visited = set()
    current = error
    while current is not None and id(current) not in visited and len(chain) < 5:
        visited.add(id(current))
        chain.append(
            {
                "type": type(current).__name__,
                "message": str(current)[:2000],
                "code": getattr(current, "code", None),
                "status_code": getattr(current, "status_code", None),
            }
        )
        current = current.__cause__ or current.__context__
    return chain or None


def log_auth_event(
    event: str,
    reason: str = "",
    identity: Optional[str] = None,
    error: Optional[BaseException] = None,
    **fields: Any,
) -> None:
    """
    Record a session-level auth event (refresh failure, forced logout, ...).

    The structured record goes to auth_events.log, a one-line summary to the
    main library logger. Tokens must never be passed in `fields` unmasked.
    """
    record = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "reason": reason,
        "identity": identity,
        "error_chain": _error_chain(error),
    }
    record.update(fields)

    try:
        get_auth_event_logger().info(record)
    except (OSError, IOError) as e:
        logging.warning(f"Failed to write to auth_events.log: {e}")

    main_lib_logger.warning(f"Auth event '{event}': {reason or 'no reason given'}")
