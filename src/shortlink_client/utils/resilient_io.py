# src/shortlink_client/utils/resilient_io.py
"""
Resilient I/O utilities for the persisted auth record.

All helpers log and swallow filesystem errors and report the outcome as a
boolean (or None for reads). The auth record holds live tokens, so writes are
atomic (tempfile + move) and can be restricted to the owner.

Rotating refresh tokens make buffered retries unsafe: a write that is replayed
later may resurrect a token the backend already invalidated. Failed writes are
therefore dropped, and the in-memory credential set stays authoritative.
"""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union


def safe_write_json(
    path: Union[str, Path],
    data: Dict[str, Any],
    logger: logging.Logger,
    atomic: bool = True,
    indent: int = 2,
    secure_permissions: bool = False,
) -> bool:
    """
    Write JSON data to file with error handling.

    Args:
        path: File path to write to
        data: JSON-serializable data
        logger: Logger for warnings
        atomic: Use atomic write pattern (tempfile + move)
        indent: JSON indentation level (default: 2)
        secure_permissions: Set file permissions to 0o600 (default: False)

    Returns:
        True on success, False on failure (never raises)
    """
    path = Path(path)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(data, indent=indent)

        if atomic:
            tmp_fd = None
            tmp_path = None
            try:
                tmp_fd, tmp_path = tempfile.mkstemp(
                    dir=path.parent, prefix=".tmp_", suffix=".json", text=True
                )
                with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                    f.write(content)
                    tmp_fd = None

                # Restrict before the move so the record is never world-readable
                if secure_permissions:
                    try:
                        os.chmod(tmp_path, 0o600)
                    except (OSError, AttributeError):
                        # Windows may not support chmod, ignore
                        pass

                shutil.move(tmp_path, path)
                tmp_path = None
            finally:
                if tmp_fd is not None:
                    try:
                        os.close(tmp_fd)
                    except OSError:
                        pass
                if tmp_path and os.path.exists(tmp_path):
                    try:
                        os.unlink(tmp_path)
                    except OSError:
                        pass
        else:
            with open(path, "w", encoding="utf-8") as f:
                f.write(content)

            if secure_permissions:
                try:
                    os.chmod(path, 0o600)
                except (OSError, AttributeError):
                    pass

        return True

    except (OSError, PermissionError, IOError, TypeError, ValueError) as e:
        logger.warning(f"Failed to write JSON to {path}: {e}")
        return False


def safe_read_json(
    path: Union[str, Path], logger: logging.Logger
) -> Optional[Dict[str, Any]]:
    """
    Read a JSON object from file.

    Returns:
        The decoded object, or None if the file is missing, unreadable,
        malformed, or does not contain a JSON object.
    """
    path = Path(path)
    if not path.exists():
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, PermissionError, IOError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read JSON from {path}: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path.name}: expected a JSON object")
        return None
    return data


def safe_remove(path: Union[str, Path], logger: logging.Logger) -> bool:
    """
    Delete a file with error handling. A missing file counts as success.

    Returns:
        True if the file no longer exists, False on failure
    """
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return True
    except (OSError, PermissionError) as e:
        logger.warning(f"Failed to remove {path}: {e}")
        return False
