# src/shortlink_client/retry_policy.py

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from .error_handler import REFRESH_EXEMPT_CODES, TransientNetworkError

LOGIN_PATH = "/api/auth/login"
REGISTER_PATH = "/api/auth/register"
REFRESH_PATH = "/api/auth/refresh"

REFRESH_EXEMPT_PATHS = frozenset({LOGIN_PATH, REGISTER_PATH, REFRESH_PATH})


@dataclass(frozen=True)
class RetryPolicy:
    """
    Stateless decisions for the transient-failure retry loop.

    Only TransientNetworkError (no response, timeout, 5xx) is retried, up to
    `max_attempts` dispatches in total. Rejected credentials are a separate
    failure class owned by the refresh coordinator and never pass through here.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 5.0
    exempt_paths: FrozenSet[str] = field(default=REFRESH_EXEMPT_PATHS)
    exempt_codes: FrozenSet[str] = field(default=REFRESH_EXEMPT_CODES)

    def should_retry(self, attempt: int, error: Exception) -> bool:
        """
        Args:
            attempt: 1-based number of the dispatch that just failed
            error: The failure it raised
        """
        if attempt >= self.max_attempts:
            return False
        return isinstance(error, TransientNetworkError)

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed dispatch `attempt`: 1s, 2s, 4s, capped at 5s."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def is_refresh_exempt(self, path: str, code: Optional[str] = None) -> bool:
        """True if a 401 on `path` with `code` must never start a refresh."""
        if any(path == p or path.startswith(p + "?") for p in self.exempt_paths):
            return True
        return code is not None and code in self.exempt_codes
