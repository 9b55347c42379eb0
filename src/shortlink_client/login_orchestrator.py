# src/shortlink_client/login_orchestrator.py

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from .credential_store import Session, identity_of, parse_credentials
from .error_handler import (
    ApiError,
    AuthenticationLostError,
    ErrorCode,
    InvalidSecretError,
    UnknownIdentityError,
)
from .request_pipeline import ApiRequest, RequestPipeline, unwrap
from .retry_policy import LOGIN_PATH, REGISTER_PATH

lib_logger = logging.getLogger("shortlink_client")

LOGOUT_PATH = "/api/auth/logout"
LOGOUT_ALL_PATH = "/api/auth/logout-all"
ME_PATH = "/api/auth/me"


class LoginOutcome(Enum):
    AUTHENTICATED = "authenticated"
    UNKNOWN_IDENTITY = "unknown_identity"
    INVALID_SECRET = "invalid_secret"


@dataclass
class RegistrationOffer:
    """
    Invitation to create the account that a login could not find.

    Carries the identity and secret exactly as typed so the registration step
    only asks for what is missing (the display name).
    """

    identity: str
    secret: str = field(repr=False)
    _orchestrator: "LoginOrchestrator" = field(repr=False, compare=False, default=None)

    async def accept(self, display_name: str) -> "LoginResult":
        return await self._orchestrator.register(self.identity, self.secret, display_name)


@dataclass
class LoginResult:
    outcome: LoginOutcome
    identity: Optional[str] = None
    message: Optional[str] = None
    registration_offer: Optional[RegistrationOffer] = None

    @property
    def authenticated(self) -> bool:
        return self.outcome is LoginOutcome.AUTHENTICATED


class LoginOrchestrator:
    """
    Initial credential exchange, account creation, logout and session check.

    Unknown identity and wrong secret stay distinct outcomes end-to-end: only the
    former offers registration.
    """

    def __init__(
        self,
        pipeline: RequestPipeline,
        on_session_ended: Optional[Callable[[str], Any]] = None,
    ):
        self._pipeline = pipeline
        self._store = pipeline.store
        self._on_session_ended = on_session_ended
        self._verified_identity: Optional[str] = None

    async def login(self, identity: str, secret: str) -> LoginResult:
        """
        Returns:
            LoginResult with outcome AUTHENTICATED, UNKNOWN_IDENTITY (with a
            registration offer) or INVALID_SECRET

        Raises:
            ApiError: Any other failure (validation, rate limit, network)
        """
        request = ApiRequest("POST", LOGIN_PATH, json={"identity": identity, "secret": secret})
        try:
            response = await self._pipeline.execute(request, authenticated=False)
        except UnknownIdentityError as e:
            lib_logger.info(f"Login for '{identity}': no such account, offering registration")
            return LoginResult(
                outcome=LoginOutcome.UNKNOWN_IDENTITY,
                identity=identity,
                message=e.message,
                registration_offer=RegistrationOffer(identity, secret, self),
            )
        except InvalidSecretError as e:
            lib_logger.info(f"Login for '{identity}' rejected: wrong secret")
            return LoginResult(
                outcome=LoginOutcome.INVALID_SECRET, identity=identity, message=e.message
            )

        return self._establish(response, identity)

    async def register(self, identity: str, secret: str, display_name: str) -> LoginResult:
        """
        Create the account and sign in with it.

        Raises:
            ApiError: Registration rejected (e.g. IDENTITY_EXISTS) or failed
        """
        request = ApiRequest(
            "POST",
            REGISTER_PATH,
            json={"identity": identity, "secret": secret, "displayName": display_name},
        )
        response = await self._pipeline.execute(request, authenticated=False)
        lib_logger.info(f"Registered new account '{identity}'")
        return self._establish(response, identity)

    def _establish(self, response, fallback_identity: str) -> LoginResult:
        try:
            creds = parse_credentials(unwrap(response), now=self._store.now())
        except ValueError as e:
            raise ApiError(
                f"Malformed authentication response: {e}",
                status_code=response.status_code,
                code=ErrorCode.INTERNAL_ERROR.value,
            ) from e

        if creds.identity is None:
            creds = creds.with_identity(fallback_identity)
        self._store.set(creds)
        self._verified_identity = creds.identity
        lib_logger.info(f"Signed in as '{creds.identity}'")
        return LoginResult(outcome=LoginOutcome.AUTHENTICATED, identity=creds.identity)

    async def logout(self) -> bool:
        """
        Best-effort server logout, then local clear. Safe to call repeatedly.

        Returns:
            True if this call ended a live session
        """
        return await self._end_session(LOGOUT_PATH, "logout")

    async def logout_all(self) -> bool:
        """Sign out every session of this account, then clear locally."""
        return await self._end_session(LOGOUT_ALL_PATH, "logout_all")

    async def _end_session(self, path: str, reason: str) -> bool:
        if self._store.get() is not None:
            try:
                await self._pipeline.execute(ApiRequest("POST", path), allow_refresh=False)
            except (ApiError, asyncio.TimeoutError) as e:
                lib_logger.warning(f"Server {reason} failed, clearing local state anyway: {e}")

        self._verified_identity = None
        if not self._store.clear():
            return False

        if self._on_session_ended is not None:
            result = self._on_session_ended(reason)
            if asyncio.iscoroutine(result):
                await result
        return True

    async def verify_session(self) -> Session:
        """
        Confirm the stored credentials with the backend (start-up check).

        Returns:
            The derived session; unauthenticated if nothing is stored or the
            backend no longer accepts the credentials
        """
        if self._store.get() is None:
            return Session(authenticated=False)

        try:
            response = await self._pipeline.execute(ApiRequest("GET", ME_PATH))
        except AuthenticationLostError as e:
            lib_logger.info(f"Stored session rejected: {e}")
            return Session(authenticated=False)

        self._verified_identity = identity_of(unwrap(response))
        creds = self._store.get()
        if creds is None:
            return Session(authenticated=False)
        return Session(
            authenticated=True,
            identity=self._verified_identity or creds.identity,
            expires_at=creds.expires_at,
        )

    @property
    def verified_identity(self) -> Optional[str]:
        return self._verified_identity
