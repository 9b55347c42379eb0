"""
Retry Policy & Error Classification Tests
"""

import httpx
import pytest

from shortlink_client.error_handler import (
    AuthenticationLostError,
    CredentialExpiredError,
    ErrorCode,
    InvalidSecretError,
    TransientNetworkError,
    UnknownIdentityError,
    ValidationError,
    classify_response,
    classify_transport_error,
    mask_credential,
)
from shortlink_client.retry_policy import RetryPolicy


def _response(status, code=None):
    body = {"success": False, "message": "nope"}
    if code:
        body["code"] = code
    return httpx.Response(status, json=body)


class TestRetryPolicy:
    @pytest.mark.parametrize(
        "attempt,delay", [(1, 1.0), (2, 2.0), (3, 4.0), (4, 5.0), (10, 5.0)]
    )
    def test_backoff_doubles_and_caps(self, attempt, delay):
        assert RetryPolicy().backoff_delay(attempt) == delay

    def test_only_transient_errors_are_retried(self):
        policy = RetryPolicy()
        assert policy.should_retry(1, TransientNetworkError("down"))
        assert policy.should_retry(2, TransientNetworkError("down"))
        assert not policy.should_retry(1, ValidationError("bad", status_code=400))
        assert not policy.should_retry(1, CredentialExpiredError("stale", status_code=401))

    def test_attempt_budget(self):
        policy = RetryPolicy(max_attempts=3)
        assert not policy.should_retry(3, TransientNetworkError("down"))

    @pytest.mark.parametrize(
        "path", ["/api/auth/login", "/api/auth/register", "/api/auth/refresh"]
    )
    def test_credential_endpoints_are_refresh_exempt(self, path):
        assert RetryPolicy().is_refresh_exempt(path)

    def test_exempt_codes(self):
        policy = RetryPolicy()
        assert policy.is_refresh_exempt("/api/links", ErrorCode.INVALID_SECRET.value)
        assert policy.is_refresh_exempt("/api/links", ErrorCode.ACCOUNT_DEACTIVATED.value)
        assert not policy.is_refresh_exempt("/api/links", ErrorCode.TOKEN_EXPIRED.value)
        assert not policy.is_refresh_exempt("/api/auth/me")


class TestClassification:
    def test_server_errors_are_transient(self):
        error = classify_response(_response(503))
        assert isinstance(error, TransientNetworkError)
        assert error.status_code == 503

    def test_stale_token(self):
        error = classify_response(_response(401, "TOKEN_EXPIRED"))
        assert isinstance(error, CredentialExpiredError)
        assert error.code == "TOKEN_EXPIRED"

    def test_401_without_code_is_still_a_stale_token(self):
        error = classify_response(httpx.Response(401, text="Unauthorized"))
        assert isinstance(error, CredentialExpiredError)
        assert error.code == ErrorCode.TOKEN_INVALID.value

    def test_login_outcomes_stay_distinct(self):
        assert isinstance(
            classify_response(_response(401, "UNKNOWN_IDENTITY"), refresh_exempt=True),
            UnknownIdentityError,
        )
        assert isinstance(
            classify_response(_response(401, "INVALID_SECRET"), refresh_exempt=True),
            InvalidSecretError,
        )

    def test_401_on_exempt_endpoint_never_means_refresh(self):
        error = classify_response(_response(401, "TOKEN_REVOKED"), refresh_exempt=True)
        assert isinstance(error, ValidationError)

    def test_custom_exempt_codes(self):
        custom = frozenset({"SESSION_LOCKED"})
        locked = classify_response(_response(401, "SESSION_LOCKED"), exempt_codes=custom)
        deactivated = classify_response(
            _response(401, "ACCOUNT_DEACTIVATED"), exempt_codes=custom
        )
        assert isinstance(locked, ValidationError)
        assert isinstance(deactivated, CredentialExpiredError)

    def test_deactivated_account_is_not_a_stale_token(self):
        error = classify_response(_response(401, "ACCOUNT_DEACTIVATED"))
        assert isinstance(error, ValidationError)

    def test_other_client_errors(self):
        error = classify_response(_response(429, "TOO_MANY_ATTEMPTS"))
        assert isinstance(error, ValidationError)
        assert error.code == "TOO_MANY_ATTEMPTS"
        assert classify_response(httpx.Response(404)).code == "HTTP_404"

    def test_transport_errors(self):
        request = httpx.Request("GET", "http://shortlink.test/api/links")
        timeout = classify_transport_error(httpx.ReadTimeout("slow", request=request))
        refused = classify_transport_error(httpx.ConnectError("refused", request=request))
        assert timeout.code == ErrorCode.NETWORK_TIMEOUT.value
        assert refused.code == ErrorCode.NETWORK_ERROR.value
        assert timeout.status_code is None

    def test_authentication_lost_defaults(self):
        error = AuthenticationLostError()
        assert error.status_code == 401
        assert error.code == ErrorCode.AUTHENTICATION_LOST.value

    def test_mask_credential(self):
        assert mask_credential(None) == "<none>"
        assert mask_credential("short") == "***"
        assert mask_credential("abcdefghijklmnop") == "...klmnop"
