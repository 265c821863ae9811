"""Client for the hosted storefront backend (PostgREST tables + GoTrue auth)."""

import logging
from typing import Any, Callable, NamedTuple, Optional

import httpx

from .auth import AuthManager, SessionEvent, Subscription
from .exceptions import AuthError, StoreError
from .models import SessionData

logger = logging.getLogger(__name__)


class Op(NamedTuple):
    """A PostgREST filter other than equality, e.g. Op("not.is", "null")."""

    operator: str
    value: str


NOT_NULL = Op("not.is", "null")


def _filter_params(filters: Optional[dict[str, Any]]) -> dict[str, str]:
    params: dict[str, str] = {}
    for column, value in (filters or {}).items():
        if isinstance(value, Op):
            params[column] = f"{value.operator}.{value.value}"
        elif value is None:
            params[column] = "is.null"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        else:
            params[column] = f"eq.{value}"
    return params


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        for key in ("message", "msg", "error_description", "error"):
            if data.get(key):
                return str(data[key])
    return f"HTTP {response.status_code}"


class TableQuery:
    """CRUD operations against one PostgREST table."""

    def __init__(self, store: "RemoteStoreClient", name: str) -> None:
        self.store = store
        self.name = name
        self.path = f"/rest/v1/{name}"

    async def _send(
        self,
        method: str,
        params: dict[str, str],
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        headers = self.store.rest_headers()
        if prefer:
            headers["Prefer"] = prefer

        logger.debug(f"{method} {self.path} params={params}")
        try:
            response = await self.store.client.request(
                method, self.path, params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            raise StoreError(f"Could not reach the store: {e}") from e
        except (TypeError, ValueError) as e:
            # payload that cannot be encoded as JSON, e.g. inf or NaN
            logger.warning(f"{method} {self.name} payload rejected: {e}")
            raise StoreError(f"Invalid request payload: {e}") from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(f"{method} {self.name} failed: status={response.status_code}, message={message}")
            raise StoreError(message, status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return []
        try:
            data = response.json()
        except ValueError as e:
            raise StoreError(f"Invalid response from the store: {e}", status_code=response.status_code) from e
        if isinstance(data, dict):
            return [data]
        return data

    async def select(
        self,
        columns: str = "*",
        filters: Optional[dict[str, Any]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Select rows.

        Args:
            columns: PostgREST select expression, e.g. "*,products(*)"
            filters: Column filters (equality unless an Op is given)
            order: Order expression, e.g. "created_at.desc"
            limit: Maximum number of rows

        Returns:
            List of row dicts
        """
        params = {"select": columns, **_filter_params(filters)}
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return await self._send("GET", params)

    async def insert(self, row: dict[str, Any]) -> list[dict[str, Any]]:
        """Insert a row and return the stored representation."""
        return await self._send("POST", {}, json=row, prefer="return=representation")

    async def update(self, patch: dict[str, Any], filters: dict[str, Any]) -> list[dict[str, Any]]:
        """Update matching rows and return them."""
        if not filters:
            raise StoreError("Refusing to update without a filter")
        return await self._send(
            "PATCH", _filter_params(filters), json=patch, prefer="return=representation"
        )

    async def delete(self, filters: dict[str, Any]) -> list[dict[str, Any]]:
        """Delete matching rows and return them."""
        if not filters:
            raise StoreError("Refusing to delete without a filter")
        return await self._send("DELETE", _filter_params(filters), prefer="return=representation")


class AuthAPI:
    """Session-based authentication against the GoTrue endpoints."""

    def __init__(self, store: "RemoteStoreClient", auth_manager: AuthManager) -> None:
        self.store = store
        self.auth_manager = auth_manager

    async def _post(
        self,
        path: str,
        json: dict[str, Any],
        params: Optional[dict[str, str]] = None,
        token: Optional[str] = None,
    ) -> httpx.Response:
        headers = self.store.auth_headers(token or self.store.api_key)
        try:
            return await self.store.client.post(path, json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise AuthError(f"Could not reach the auth service: {e}") from e

    async def sign_in(self, email: str, password: str) -> SessionData:
        """
        Sign in with email and password.

        Returns:
            The new session

        Raises:
            AuthError: If the credentials are rejected
        """
        logger.info(f"=== SIGN IN: email={email} ===")
        response = await self._post(
            "/auth/v1/token",
            {"email": email, "password": password},
            params={"grant_type": "password"},
        )
        if response.status_code != 200:
            message = _error_message(response)
            logger.error(f"Sign in failed: status={response.status_code}, message={message}")
            raise AuthError(message)

        session = SessionData.model_validate(response.json())
        self.auth_manager.save_session(session, SessionEvent.SIGNED_IN)
        logger.info(f"Signed in as {session.user.email} ({session.user.id})")
        return session

    async def sign_up(
        self, email: str, password: str, attributes: Optional[dict[str, Any]] = None
    ) -> Optional[SessionData]:
        """
        Create an account.

        Args:
            email: Account email
            password: Account password
            attributes: Profile attributes stored as user metadata

        Returns:
            The new session, or None when email confirmation is pending
        """
        logger.info(f"=== SIGN UP: email={email} ===")
        response = await self._post(
            "/auth/v1/signup",
            {"email": email, "password": password, "data": attributes or {}},
        )
        if response.status_code not in (200, 201):
            message = _error_message(response)
            logger.error(f"Sign up failed: status={response.status_code}, message={message}")
            raise AuthError(message)

        data = response.json()
        if not data.get("access_token"):
            logger.info("Sign up accepted, confirmation pending")
            return None

        session = SessionData.model_validate(data)
        self.auth_manager.save_session(session, SessionEvent.SIGNED_IN)
        return session

    async def sign_out(self) -> None:
        """
        Sign out. The local session is cleared even if the remote call fails.

        Raises:
            AuthError: If the auth service rejected the sign-out
        """
        session = self.auth_manager.get_session()
        error: Optional[AuthError] = None

        if session is not None:
            try:
                response = await self._post("/auth/v1/logout", {}, token=session.access_token)
                # 401 means the token is already gone
                if response.status_code not in (200, 204, 401):
                    error = AuthError(_error_message(response))
            except AuthError as e:
                error = e

        self.auth_manager.clear_session()
        if error is not None:
            logger.warning(f"Remote sign out failed: {error}")
            raise error

    async def refresh_session(self, session: SessionData) -> Optional[SessionData]:
        """Renew a session with its refresh token."""
        if not session.refresh_token:
            return None

        response = await self._post(
            "/auth/v1/token",
            {"refresh_token": session.refresh_token},
            params={"grant_type": "refresh_token"},
        )
        if response.status_code != 200:
            logger.warning(f"Session refresh failed: status={response.status_code}")
            return None

        renewed = SessionData.model_validate(response.json())
        self.auth_manager.save_session(renewed, SessionEvent.TOKEN_REFRESHED)
        return renewed

    async def get_current_session(self) -> Optional[SessionData]:
        """Return the current session, refreshing an expired token when possible."""
        session = self.auth_manager.get_session()
        if session is None:
            return None
        if not session.is_expired():
            return session

        logger.info("Stored session expired, attempting refresh")
        renewed = await self.refresh_session(session)
        if renewed is None:
            self.auth_manager.clear_session()
        return renewed

    def on_session_change(self, callback: Callable[[SessionEvent, Optional[SessionData]], None]) -> Subscription:
        """Subscribe to session changes."""
        return self.auth_manager.subscribe(callback)


class RemoteStoreClient:
    """Client for the hosted backend."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        auth_manager: AuthManager,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the store client.

        Args:
            base_url: Project URL, e.g. https://xyz.supabase.co
            api_key: Public (anon) API key
            auth_manager: Session manager shared by every component
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.auth_manager = auth_manager
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"apikey": api_key, "Accept": "application/json"},
        )
        self.auth = AuthAPI(self, auth_manager)

    def _bearer(self, token: Optional[str] = None) -> str:
        if token is None:
            session = self.auth_manager.get_session()
            token = session.access_token if session else self.api_key
        return f"Bearer {token}"

    def auth_headers(self, token: Optional[str] = None) -> dict[str, str]:
        return {"Authorization": self._bearer(token), "Content-Type": "application/json"}

    def rest_headers(self) -> dict[str, str]:
        return {"Authorization": self._bearer(), "Content-Type": "application/json"}

    def table(self, name: str) -> TableQuery:
        """Return CRUD operations for a table."""
        return TableQuery(self, name)

    async def close(self) -> None:
        await self.client.aclose()
