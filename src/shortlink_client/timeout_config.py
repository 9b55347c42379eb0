# src/shortlink_client/timeout_config.py
"""
Centralized timeout configuration for HTTP requests.

All values can be overridden via environment variables:
    TIMEOUT_CONNECT - Connection establishment timeout (default: 10s)
    TIMEOUT_READ - Read timeout for ordinary API calls (default: 30s)
    TIMEOUT_WRITE - Request body send timeout (default: 30s)
    TIMEOUT_POOL - Connection pool acquisition timeout (default: 60s)
    TIMEOUT_REFRESH - Whole-call budget for the token refresh (default: 10s)

The refresh budget is deliberately shorter than ordinary calls: every request
waiting on a refresh stalls until it resolves.
"""

import os
import logging
import httpx

lib_logger = logging.getLogger("shortlink_client")


class TimeoutConfig:
    """
    Centralized timeout configuration for HTTP requests.

    All values can be overridden via environment variables.
    """

    # Default values (in seconds)
    _CONNECT = 10.0
    _READ = 30.0
    _WRITE = 30.0
    _POOL = 60.0
    _REFRESH = 10.0

    @classmethod
    def _get_env_float(cls, key: str, default: float) -> float:
        """Get a float value from environment variable, or return default."""
        value = os.environ.get(key)
        if value is not None:
            try:
                return float(value)
            except ValueError:
                lib_logger.warning(
                    f"Invalid value for {key}: {value}. Using default: {default}"
                )
        return default

    @classmethod
    def connect(cls) -> float:
        return cls._get_env_float("TIMEOUT_CONNECT", cls._CONNECT)

    @classmethod
    def read(cls) -> float:
        return cls._get_env_float("TIMEOUT_READ", cls._READ)

    @classmethod
    def write(cls) -> float:
        return cls._get_env_float("TIMEOUT_WRITE", cls._WRITE)

    @classmethod
    def pool(cls) -> float:
        return cls._get_env_float("TIMEOUT_POOL", cls._POOL)

    @classmethod
    def refresh_seconds(cls) -> float:
        """Overall budget for one refresh attempt, enforced by the coordinator."""
        return cls._get_env_float("TIMEOUT_REFRESH", cls._REFRESH)

    @classmethod
    def request(cls) -> httpx.Timeout:
        """Timeout configuration for ordinary API calls."""
        return httpx.Timeout(
            connect=cls.connect(),
            read=cls.read(),
            write=cls.write(),
            pool=cls.pool(),
        )

    @classmethod
    def refresh(cls) -> httpx.Timeout:
        """
        Timeout configuration for the refresh call.

        Every phase is capped by the refresh budget so a hung refresh cannot
        outlive the coordinator's own deadline.
        """
        budget = cls.refresh_seconds()
        return httpx.Timeout(
            connect=min(cls.connect(), budget),
            read=budget,
            write=min(cls.write(), budget),
            pool=min(cls.pool(), budget),
        )
