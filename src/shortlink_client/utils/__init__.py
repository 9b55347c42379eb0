# src/shortlink_client/utils/__init__.py

from .resilient_io import safe_write_json, safe_read_json, safe_remove

__all__ = [
    "safe_write_json",
    "safe_read_json",
    "safe_remove",
]
