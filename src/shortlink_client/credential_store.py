# src/shortlink_client/credential_store.py

import time
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, MutableMapping, Optional, Union

from .error_handler import mask_credential
from .utils.resilient_io import safe_read_json, safe_remove, safe_write_json

lib_logger = logging.getLogger("shortlink_client")

AUTH_HEADER = "Authorization"


def _parse_expiry(value: Any) -> float:
    """Epoch seconds from epoch seconds, epoch milliseconds, or an ISO-8601 string."""
    if isinstance(value, (int, float)):
        # Anything past year 33658 in seconds is really milliseconds
        return value / 1000 if value > 1e12 else float(value)
    if isinstance(value, str):
        try:
            return _parse_expiry(float(value))
        except ValueError:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    raise ValueError(f"Unsupported expiry value: {value!r}")


@dataclass(frozen=True)
class CredentialSet:
    access_token: str
    refresh_token: str
    expires_at: float
    identity: Optional[str] = None

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        identity: Optional[str] = None,
        previous: Optional["CredentialSet"] = None,
        now: Optional[float] = None,
    ) -> "CredentialSet":
        """
        Build a credential set from a backend payload.

        Accepts camelCase or snake_case keys, and either an absolute `expiresAt`
        or a relative `expiresIn`. A payload without a refresh token keeps the
        refresh token (and identity) of `previous`.
        """
        access_token = payload.get("accessToken") or payload.get("access_token")
        refresh_token = payload.get("refreshToken") or payload.get("refresh_token")
        if not refresh_token and previous is not None:
            refresh_token = previous.refresh_token
        if not access_token or not refresh_token:
            raise ValueError("Credential payload is missing accessToken or refreshToken")

        expires_at = payload.get("expiresAt", payload.get("expires_at"))
        if expires_at is not None:
            expires_at = _parse_expiry(expires_at)
        else:
            expires_in = payload.get("expiresIn", payload.get("expires_in"))
            if expires_in is None:
                raise ValueError("Credential payload is missing expiresAt or expiresIn")
            expires_at = (time.time() if now is None else now) + float(expires_in)

        if identity is None and previous is not None:
            identity = previous.identity
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            identity=identity,
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }

    def with_identity(self, identity: Optional[str]) -> "CredentialSet":
        return replace(self, identity=identity)

    def __repr__(self):
        return (
            f"CredentialSet(identity={self.identity!r}, "
            f"access_token={mask_credential(self.access_token)!r}, "
            f"refresh_token={mask_credential(self.refresh_token)!r}, "
            f"expires_at={self.expires_at})"
        )


def identity_of(value: Any) -> Optional[str]:
    """Reduce an identity payload (string or user object) to its identifier."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("identity", "email", "id"):
            if value.get(key) is not None:
                return str(value[key])
    return str(value)


def parse_credentials(
    data: Any,
    previous: Optional[CredentialSet] = None,
    now: Optional[float] = None,
) -> CredentialSet:
    """
    Parse the `data` member of a login, register or refresh response.

    Shape: {"identity": ..., "credentials": {...}}; `credentialSet` is accepted
    as the key, as is a flat payload with the token fields at the top level.
    """
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    payload = data.get("credentials") or data.get("credentialSet") or data
    identity = identity_of(data.get("identity") or data.get("user"))
    return CredentialSet.from_payload(payload, identity=identity, previous=previous, now=now)


@dataclass(frozen=True)
class Session:
    """Derived view of the store; never persisted."""

    authenticated: bool
    identity: Optional[str] = None
    expires_at: Optional[float] = None


class CredentialStore:
    """
    Sole owner of the current credential set.

    Mutation points: set() after login/register or a successful refresh, and
    clear() on logout or unrecoverable refresh failure. The in-memory set is the
    source of truth; the JSON record on disk only survives restarts.

    `generation` increases on every set/clear so a long-running refresh can tell
    whether the session it started from still exists.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        default_headers: Optional[MutableMapping[str, str]] = None,
        clock: Callable[[], float] = time.time,
        default_skew_seconds: float = 30.0,
    ):
        self._path = Path(path) if path else None
        self._headers = default_headers
        self._clock = clock
        self._default_skew = default_skew_seconds
        self._credentials: Optional[CredentialSet] = None
        self.generation = 0

    def bind_headers(self, default_headers: MutableMapping[str, str]) -> None:
        """Attach the default-header mapping of the HTTP client."""
        self._headers = default_headers
        self._sync_header()

    def now(self) -> float:
        return self._clock()

    def get(self) -> Optional[CredentialSet]:
        return self._credentials

    def set(self, credentials: CredentialSet) -> None:
        self._credentials = credentials
        self.generation += 1
        self._sync_header()

        if self._path is not None:
            if not safe_write_json(
                self._path, credentials.to_record(), lib_logger, secure_permissions=True
            ):
                lib_logger.warning(
                    f"Credentials for '{credentials.identity}' kept in memory only; "
                    f"persisting to '{self._path.name}' failed."
                )

        lib_logger.debug(f"Credential store updated: {credentials!r}")

    def clear(self) -> bool:
        """
        Empty the store, delete the persisted record and the default header.

        Returns:
            True if credentials were present, False if the store was already empty
        """
        had_credentials = self._credentials is not None
        self._credentials = None
        self.generation += 1
        self._sync_header()

        if self._path is not None:
            safe_remove(self._path, lib_logger)

        if had_credentials:
            lib_logger.debug("Credential store cleared")
        return had_credentials

    def is_expired(self, skew_seconds: Optional[float] = None) -> bool:
        """True when the stored access token expires within `skew_seconds`."""
        if self._credentials is None:
            return True
        skew = self._default_skew if skew_seconds is None else skew_seconds
        return self._credentials.expires_at <= self._clock() + skew

    def time_remaining(self) -> Optional[float]:
        if self._credentials is None:
            return None
        return self._credentials.expires_at - self._clock()

    def session(self) -> Session:
        creds = self._credentials
        if creds is None:
            return Session(authenticated=False)
        return Session(
            authenticated=creds.expires_at > self._clock(),
            identity=creds.identity,
            expires_at=creds.expires_at,
        )

    def load(self) -> Optional[CredentialSet]:
        """Restore the persisted record, if any. Unreadable records are ignored."""
        if self._path is None:
            return None

        record = safe_read_json(self._path, lib_logger)
        if record is None:
            return None

        try:
            creds = CredentialSet(
                access_token=record["access_token"],
                refresh_token=record["refresh_token"],
                expires_at=_parse_expiry(record["expires_at"]),
                identity=record.get("identity"),
            )
        except (KeyError, ValueError, TypeError) as e:
            lib_logger.warning(f"Ignoring malformed auth record '{self._path.name}': {e}")
            return None

        self._credentials = creds
        self.generation += 1
        self._sync_header()
        lib_logger.info(f"Restored session for '{creds.identity}' from '{self._path.name}'")
        return creds

    def _sync_header(self) -> None:
        if self._headers is None:
            return
        if self._credentials is None:
            self._headers.pop(AUTH_HEADER, None)
        else:
            self._headers[AUTH_HEADER] = f"Bearer {self._credentials.access_token}"
