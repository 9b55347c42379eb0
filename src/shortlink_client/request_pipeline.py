# src/shortlink_client/request_pipeline.py

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .credential_store import AUTH_HEADER, CredentialSet, CredentialStore, parse_credentials
from .error_handler import (
    ApiError,
    AuthenticationLostError,
    CredentialExpiredError,
    ErrorCode,
    classify_response,
    classify_transport_error,
    mask_credential,
)
from .refresh_coordinator import AuthLostCallback, RefreshCoordinator
from .retry_policy import REFRESH_PATH, RetryPolicy
from .timeout_config import TimeoutConfig

lib_logger = logging.getLogger("shortlink_client")


@dataclass
class ApiRequest:
    """An outbound call, kept unbuilt so it can be re-dispatched with new headers."""

    method: str
    path: str
    params: Optional[Dict[str, Any]] = None
    json: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[httpx.Timeout] = None


def unwrap(response: httpx.Response) -> Any:
    """Return the `data` member of the success envelope, or the whole body."""
    if not response.content:
        return None
    body = response.json()
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class RequestPipeline:
    """
    Every outbound call goes through execute().

    Two disjoint, ordered stages:
    1. Transient failures (no response, 5xx) are retried per RetryPolicy.
    2. A rejected credential (401, non-exempt code) is handed to the
       RefreshCoordinator, then the call is replayed exactly once with the new
       token. A replay rejected again is terminal.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: CredentialStore,
        retry_policy: Optional[RetryPolicy] = None,
        max_refresh_attempts: int = 2,
        refresh_timeout: Optional[float] = None,
        on_auth_lost: Optional[AuthLostCallback] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self._store = store
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._refresh_timeout = (
            refresh_timeout if refresh_timeout is not None else TimeoutConfig.refresh_seconds()
        )
        self._store.bind_headers(client.headers)

        self.coordinator = RefreshCoordinator(
            store,
            self.send_refresh,
            retry_policy=self._retry_policy,
            max_attempts=max_refresh_attempts,
            timeout=self._refresh_timeout,
            on_auth_lost=on_auth_lost,
            sleep=sleep,
        )

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    async def execute(
        self,
        request: ApiRequest,
        authenticated: bool = True,
        allow_refresh: bool = True,
    ) -> httpx.Response:
        """
        Dispatch `request` with the current credential.

        Args:
            request: The call to make
            authenticated: False for public calls (login, register) that must
                never carry a credential
            allow_refresh: False for calls that must not wait on a token
                refresh (logout); a rejected credential is then terminal

        Returns:
            The successful (2xx/3xx) response

        Raises:
            TransientNetworkError: Still failing after the retry budget
            AuthenticationLostError: Refresh failed, replay rejected, or no session
            UnknownIdentityError / InvalidSecretError / ValidationError: Surfaced as-is
        """
        sent_token = self._current_token()
        try:
            return await self._send_with_retry(request, attach_credentials=authenticated)
        except CredentialExpiredError as e:
            if not (authenticated and allow_refresh):
                raise AuthenticationLostError(
                    "Not authenticated", code=e.code, details=e.details
                ) from e
            return await self._refresh_and_replay(request, e, sent_token)

    async def _refresh_and_replay(
        self,
        request: ApiRequest,
        error: CredentialExpiredError,
        sent_token: Optional[str],
    ) -> httpx.Response:
        creds = self._store.get()
        if creds is None or not creds.refresh_token:
            raise AuthenticationLostError(
                "Not authenticated", code=error.code, details=error.details
            ) from error

        lib_logger.debug(
            f"{request.method} {request.path} rejected ({error.code}), waiting for token refresh"
        )
        new_creds = await self.coordinator.refresh(failed_token=sent_token)

        try:
            return await self._send_once(request, credentials=new_creds)
        except CredentialExpiredError as replay_error:
            lib_logger.warning(
                f"Replay of {request.method} {request.path} rejected again "
                f"({replay_error.code}) with {mask_credential(new_creds.access_token)}"
            )
            await self.coordinator.invalidate(
                new_creds, "credentials rejected after refresh", replay_error
            )
            raise AuthenticationLostError(
                "Credential rejected after refresh",
                code=replay_error.code,
                details=replay_error.details,
            ) from replay_error

    async def _send_with_retry(
        self, request: ApiRequest, attach_credentials: bool = True
    ) -> httpx.Response:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._send_once(request, attach_credentials=attach_credentials)
            except CredentialExpiredError:
                raise
            except ApiError as e:
                if not self._retry_policy.should_retry(attempt, e):
                    if attempt > 1:
                        lib_logger.error(
                            f"{request.method} {request.path} failed after {attempt} attempt(s): {e}"
                        )
                    raise
                delay = self._retry_policy.backoff_delay(attempt)
                lib_logger.warning(
                    f"API retry attempt {attempt}/{self._retry_policy.max_attempts} for "
                    f"{request.method} {request.path} after {delay}s ({e})"
                )
                await self._sleep(delay)

    async def _send_once(
        self,
        request: ApiRequest,
        credentials: Optional[CredentialSet] = None,
        attach_credentials: bool = True,
    ) -> httpx.Response:
        """
        One dispatch. Raises the classified ApiError for any non-success outcome.

        Without explicit `credentials` the stored token is attached only while it
        has not expired.
        """
        http_request = self._client.build_request(
            request.method,
            request.path,
            params=request.params,
            json=request.json,
            headers=request.headers or None,
            timeout=request.timeout or TimeoutConfig.request(),
        )

        http_request.headers.pop(AUTH_HEADER, None)
        if attach_credentials:
            if credentials is not None:
                http_request.headers[AUTH_HEADER] = f"Bearer {credentials.access_token}"
            elif not self._store.is_expired():
                http_request.headers[AUTH_HEADER] = f"Bearer {self._store.get().access_token}"

        lib_logger.debug(f"API Request: {request.method} {request.path}")
        try:
            response = await self._client.send(http_request)
        except httpx.HTTPError as e:
            raise classify_transport_error(e) from e

        if response.is_success or response.is_redirect:
            lib_logger.debug(f"API Response: {response.status_code} {request.path}")
            return response

        await response.aread()
        raise classify_response(
            response,
            refresh_exempt=self._retry_policy.is_refresh_exempt(request.path),
            exempt_codes=self._retry_policy.exempt_codes,
        )

    async def send_refresh(self, refresh_token: str) -> CredentialSet:
        """
        Exchange a refresh token for a new credential set.

        Bypasses the retry loop and the coordinator; the coordinator owns the
        attempt budget for refreshes.
        """
        request = ApiRequest(
            "POST",
            REFRESH_PATH,
            json={"refreshToken": refresh_token},
            timeout=TimeoutConfig.refresh(),
        )
        response = await self._send_once(request, attach_credentials=False)

        try:
            return parse_credentials(
                unwrap(response), previous=self._store.get(), now=self._store.now()
            )
        except ValueError as e:
            raise ApiError(
                f"Malformed refresh response: {e}",
                status_code=response.status_code,
                code=ErrorCode.REFRESH_FAILED.value,
            ) from e

    def _current_token(self) -> Optional[str]:
        creds = self._store.get()
        return creds.access_token if creds else None
