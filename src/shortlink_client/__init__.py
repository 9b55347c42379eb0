from .client import ShortlinkClient
from .credential_store import CredentialSet, CredentialStore, Session
from .error_handler import (
    ApiError,
    AuthenticationLostError,
    CredentialExpiredError,
    ErrorCode,
    ErrorKind,
    InvalidSecretError,
    TransientNetworkError,
    UnknownIdentityError,
    ValidationError,
)
from .login_orchestrator import LoginOrchestrator, LoginOutcome, LoginResult, RegistrationOffer
from .refresh_coordinator import RefreshCoordinator, RefreshState
from .request_pipeline import ApiRequest, RequestPipeline
from .retry_policy import RetryPolicy
from .session_monitor import SessionMonitor
from .settings import ClientSettings

__all__ = [
    "ShortlinkClient",
    "ClientSettings",
    "CredentialSet",
    "CredentialStore",
    "Session",
    "RetryPolicy",
    "RefreshCoordinator",
    "RefreshState",
    "ApiRequest",
    "RequestPipeline",
    "SessionMonitor",
    "LoginOrchestrator",
    "LoginOutcome",
    "LoginResult",
    "RegistrationOffer",
    "ApiError",
    "AuthenticationLostError",
    "CredentialExpiredError",
    "ErrorCode",
    "ErrorKind",
    "InvalidSecretError",
    "TransientNetworkError",
    "UnknownIdentityError",
    "ValidationError",
]
