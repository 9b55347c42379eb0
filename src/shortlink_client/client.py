# src/shortlink_client/client.py

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .credential_store import CredentialStore, Session
from .login_orchestrator import LoginOrchestrator, LoginResult
from .request_pipeline import ApiRequest, RequestPipeline, unwrap
from .retry_policy import RetryPolicy
from .session_monitor import SessionListener, SessionMonitor
from .settings import ClientSettings

lib_logger = logging.getLogger("shortlink_client")


class ShortlinkClient:
    """
    Authenticated client for the shortlink backend.

    Owns one instance of each auth component and wires them together; there is
    no module-level state, so independent clients (and tests) never share
    credentials.

    Usage:
        async with ShortlinkClient(ClientSettings.from_env()) as client:
            result = await client.login("me@example.com", "secret")
            links = await client.get_links()
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.settings = settings or ClientSettings()
        self._http = httpx.AsyncClient(
            base_url=self.settings.api_url,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )

        store_kwargs: Dict[str, Any] = {"default_skew_seconds": self.settings.clock_skew_seconds}
        if clock is not None:
            store_kwargs["clock"] = clock
        self.store = CredentialStore(self.settings.state_file, **store_kwargs)

        pipeline_kwargs: Dict[str, Any] = {}
        if sleep is not None:
            pipeline_kwargs["sleep"] = sleep
        self.pipeline = RequestPipeline(
            self._http,
            self.store,
            retry_policy=retry_policy,
            max_refresh_attempts=self.settings.max_refresh_attempts,
            refresh_timeout=self.settings.refresh_timeout_seconds,
            **pipeline_kwargs,
        )
        self.coordinator = self.pipeline.coordinator

        self.monitor = SessionMonitor(
            self.store,
            self.coordinator,
            check_interval=self.settings.session_check_interval,
            warning_seconds=self.settings.session_warning_seconds,
        )
        self.coordinator.on_auth_lost = self.monitor.session_ended
        self.auth = LoginOrchestrator(self.pipeline, on_session_ended=self.monitor.session_ended)

        self.store.load()

    async def __aenter__(self) -> "ShortlinkClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.monitor.stop()
        await self._http.aclose()

    # ----- session -----

    def on_session_ended(self, listener: SessionListener) -> None:
        """Register a callback for forced or explicit logout (receives the reason)."""
        self.monitor.add_listener(listener)

    @property
    def session(self) -> Session:
        return self.store.session()

    async def login(self, identity: str, secret: str) -> LoginResult:
        result = await self.auth.login(identity, secret)
        if result.authenticated:
            self.monitor.start()
        return result

    async def register(self, identity: str, secret: str, display_name: str) -> LoginResult:
        result = await self.auth.register(identity, secret, display_name)
        self.monitor.start()
        return result

    async def logout(self) -> bool:
        return await self.auth.logout()

    async def logout_all(self) -> bool:
        return await self.auth.logout_all()

    async def verify_session(self) -> Session:
        session = await self.auth.verify_session()
        if session.authenticated:
            self.monitor.start()
        return session

    def record_activity(self) -> Optional[asyncio.Task]:
        return self.monitor.record_activity()

    # ----- generic requests -----

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        response = await self.pipeline.execute(
            ApiRequest(method, path, params=params, json=json)
        )
        return unwrap(response)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json if json is not None else {})

    async def put(self, path: str, json: Any = None) -> Any:
        return await self.request("PUT", path, json=json if json is not None else {})

    async def patch(self, path: str, json: Any = None) -> Any:
        return await self.request("PATCH", path, json=json if json is not None else {})

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    # ----- business endpoints -----

    async def me(self) -> Any:
        return await self.get("/api/auth/me")

    async def get_links(self, page: int = 1, limit: int = 20, search: str = "") -> Any:
        return await self.get("/api/links", {"page": page, "limit": limit, "search": search})

    async def create_link(self, link: Dict[str, Any]) -> Any:
        return await self.post("/api/links", link)

    async def update_link(self, link_id: str, changes: Dict[str, Any]) -> Any:
        return await self.put(f"/api/links/{link_id}", changes)

    async def delete_link(self, link_id: str) -> Any:
        return await self.delete(f"/api/links/{link_id}")

    async def get_link_stats(self) -> Any:
        return await self.get("/api/links/stats")

    async def get_dashboard(self, period: str = "30d") -> Any:
        return await self.get("/api/analytics/dashboard", {"period": period})

    async def get_link_analytics(self, link_id: str, period: str = "7d") -> Any:
        return await self.get(f"/api/analytics/links/{link_id}", {"period": period})

    async def get_domains(self) -> Any:
        return await self.get("/api/domains")
