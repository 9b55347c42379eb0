# src/shortlink_client/settings.py

import os
import sys
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .timeout_config import TimeoutConfig

lib_logger = logging.getLogger("shortlink_client")

DEFAULT_API_URL = "http://localhost:4000"
DEFAULT_STATE_FILENAME = "auth_state.json"


def data_root(env: Optional[Mapping[str, str]] = None) -> Path:
    """
    Directory holding auth_state.json, .env and logs/.

    SHORTLINK_HOME takes precedence. A frozen (PyInstaller) build keeps its
    files next to the executable; otherwise the current working directory.
    """
    env = os.environ if env is None else env
    home = env.get("SHORTLINK_HOME")
    if home:
        return Path(home).expanduser()
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path.cwd()


def _env_number(env: Mapping[str, str], key: str, default, cast=float):
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        return cast(value)
    except ValueError:
        lib_logger.warning(f"Invalid {key} '{value}'. Falling back to {default}.")
        return default


@dataclass
class ClientSettings:
    """
    Runtime settings for the shortlink client.

    Built from the environment by from_env(); every field can also be passed
    directly, which is what the tests do.
    """

    api_url: str = DEFAULT_API_URL
    state_file: Optional[Path] = None
    clock_skew_seconds: float = 30.0
    session_warning_seconds: float = 300.0
    session_check_interval: float = 60.0
    max_refresh_attempts: int = 2
    refresh_timeout_seconds: float = field(default_factory=TimeoutConfig.refresh_seconds)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ClientSettings":
        """
        Read settings from environment variables.

        SHORTLINK_API_URL, SHORTLINK_STATE_FILE, SHORTLINK_CLOCK_SKEW_SECONDS,
        SHORTLINK_SESSION_WARNING_SECONDS, SHORTLINK_SESSION_CHECK_INTERVAL,
        SHORTLINK_MAX_REFRESH_ATTEMPTS. Timeouts come from TimeoutConfig.
        """
        env = os.environ if env is None else env

        state_file = env.get("SHORTLINK_STATE_FILE")
        return cls(
            api_url=env.get("SHORTLINK_API_URL", DEFAULT_API_URL).rstrip("/"),
            state_file=Path(state_file) if state_file else data_root(env) / DEFAULT_STATE_FILENAME,
            clock_skew_seconds=_env_number(env, "SHORTLINK_CLOCK_SKEW_SECONDS", 30.0),
            session_warning_seconds=_env_number(env, "SHORTLINK_SESSION_WARNING_SECONDS", 300.0),
            session_check_interval=_env_number(env, "SHORTLINK_SESSION_CHECK_INTERVAL", 60.0),
            max_refresh_attempts=_env_number(env, "SHORTLINK_MAX_REFRESH_ATTEMPTS", 2, cast=int),
            refresh_timeout_seconds=TimeoutConfig.refresh_seconds(),
        )
