"""Shared fixtures: an in-memory stand-in for the hosted backend."""

from datetime import datetime, timedelta, timezone
import itertools
from typing import Any, Awaitable, Callable, Optional

import pytest

from clickcarry_server.auth import AuthManager, SessionEvent
from clickcarry_server.auth_state import AuthStateObserver
from clickcarry_server.cart import CartSynchronizer
from clickcarry_server.catalog import attach_variants
from clickcarry_server.config import Settings
from clickcarry_server.exceptions import AuthError, StoreError
from clickcarry_server.models import Product, SessionData, User
from clickcarry_server.notices import NoticeBoard
from clickcarry_server.store_client import Op

CallHook = Callable[[str, str], Awaitable[None]]


def _matches(row: dict[str, Any], filters: Optional[dict[str, Any]]) -> bool:
    for column, value in (filters or {}).items():
        if isinstance(value, Op):
            if (value.operator, value.value) == ("not.is", "null"):
                if row.get(column) is None:
                    return False
                continue
            raise NotImplementedError(f"Unsupported operator {value.operator}")
        if value is None:
            if row.get(column) is not None:
                return False
        elif str(row.get(column)) != str(value):
            return False
    return True


class FakeTable:
    def __init__(self, store: "FakeStore", name: str) -> None:
        self.store = store
        self.name = name

    @property
    def rows(self) -> list[dict[str, Any]]:
        return self.store.tables.setdefault(self.name, [])

    def _project(self, row: dict[str, Any], columns: str) -> dict[str, Any]:
        if columns == "*":
            return dict(row)
        if columns == "*,products(*)":
            result = dict(row)
            product = next(
                (p for p in self.store.tables.get("products", []) if p["id"] == row.get("product_id")),
                None,
            )
            result["products"] = dict(product) if product else None
            return result
        return {column: row.get(column) for column in columns.split(",")}

    async def select(
        self,
        columns: str = "*",
        filters: Optional[dict[str, Any]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        await self.store.record(self.name, "select")
        rows = [row for row in self.rows if _matches(row, filters)]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda row: row.get(column) or "", reverse=direction == "desc")
        if limit is not None:
            rows = rows[:limit]
        return [self._project(row, columns) for row in rows]

    async def insert(self, row: dict[str, Any]) -> list[dict[str, Any]]:
        await self.store.record(self.name, "insert")
        stored = dict(row)
        if self.name == "cart_items":
            for existing in self.rows:
                if (existing["user_id"], existing["product_id"]) == (stored["user_id"], stored["product_id"]):
                    raise StoreError("duplicate key value violates unique constraint", status_code=409)
        stored.setdefault("id", self.store.next_id(self.name))
        stored.setdefault("created_at", self.store.next_timestamp())
        self.rows.append(stored)
        return [dict(stored)]

    async def update(self, patch: dict[str, Any], filters: dict[str, Any]) -> list[dict[str, Any]]:
        await self.store.record(self.name, "update")
        changed = []
        for row in self.rows:
            if _matches(row, filters):
                row.update(patch)
                changed.append(dict(row))
        return changed

    async def delete(self, filters: dict[str, Any]) -> list[dict[str, Any]]:
        await self.store.record(self.name, "delete")
        removed = [row for row in self.rows if _matches(row, filters)]
        self.store.tables[self.name] = [row for row in self.rows if not _matches(row, filters)]
        return removed


class FakeAuth:
    def __init__(self, store: "FakeStore", auth_manager: AuthManager) -> None:
        self.store = store
        self.auth_manager = auth_manager
        self.accounts: dict[str, dict[str, Any]] = {}
        self.signups: list[dict[str, Any]] = []
        self.fail_sign_out = False
        self.fail_session_lookup = False
        self.before_session_lookup: Optional[Callable[[], Awaitable[None]]] = None

    async def sign_in(self, email: str, password: str) -> SessionData:
        await self.store.record("auth", "sign_in")
        account = self.accounts.get(email)
        if account is None or account["password"] != password:
            raise AuthError("Invalid login credentials")
        user = account["user"]
        session = SessionData(
            access_token=f"token-{user.id}",
            refresh_token=f"refresh-{user.id}",
            expires_at=int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp()),
            user=user,
        )
        self.auth_manager.save_session(session, SessionEvent.SIGNED_IN)
        return session

    async def sign_up(self, email: str, password: str, attributes: Optional[dict[str, Any]] = None) -> None:
        await self.store.record("auth", "sign_up")
        if email in self.accounts:
            raise AuthError("User already registered")
        self.store.add_user(email, password)
        self.signups.append({"email": email, "attributes": attributes or {}})
        return None

    async def sign_out(self) -> None:
        await self.store.record("auth", "sign_out")
        self.auth_manager.clear_session()
        if self.fail_sign_out:
            raise AuthError("Network error")

    async def get_current_session(self) -> Optional[SessionData]:
        session = self.auth_manager.get_session()
        if self.before_session_lookup is not None:
            await self.before_session_lookup()
        if self.fail_session_lookup:
            raise AuthError("Auth service unavailable")
        return session

    def on_session_change(self, callback):
        return self.auth_manager.subscribe(callback)


class FakeStore:
    """In-memory tables and accounts behind the RemoteStoreClient interface."""

    def __init__(self, auth_manager: AuthManager) -> None:
        self.auth_manager = auth_manager
        self.tables: dict[str, list[dict[str, Any]]] = {"products": [], "cart_items": [], "profiles": []}
        self.calls: list[tuple[str, str]] = []
        self.failures: set[tuple[str, str]] = set()
        self.on_call: Optional[CallHook] = None
        self.closed = False
        self.auth = FakeAuth(self, auth_manager)
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)

    def next_id(self, table: str) -> str:
        return f"{table}-{next(self._ids)}"

    def next_timestamp(self) -> str:
        moment = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=next(self._clock))
        return moment.isoformat()

    async def record(self, table: str, operation: str) -> None:
        self.calls.append((table, operation))
        if self.on_call is not None:
            hook, self.on_call = self.on_call, None
            await hook(table, operation)
        if (table, operation) in self.failures:
            raise StoreError(f"{operation} on {table} failed", status_code=500)

    def fail(self, table: str, operation: str) -> None:
        self.failures.add((table, operation))

    def count(self, table: str, operation: str) -> int:
        return self.calls.count((table, operation))

    def table(self, name: str) -> FakeTable:
        return FakeTable(self, name)

    def add_user(self, email: str, password: str, role: Optional[str] = None) -> User:
        user = User(id=f"user-{len(self.auth.accounts) + 1}", email=email)
        self.auth.accounts[email] = {"password": password, "user": user}
        self.tables["profiles"].append({"id": user.id, "role": role})
        return user

    def add_product(self, name: str, price: float, **fields: Any) -> Product:
        row = {
            "id": fields.pop("id", self.next_id("products")),
            "name": name,
            "description": fields.pop("description", f"{name} description"),
            "price": price,
            "image_url": fields.pop("image_url", "https://images.example.com/laptop.jpg"),
            "created_at": self.next_timestamp(),
            **fields,
        }
        self.tables["products"].append(row)
        return attach_variants(Product.model_validate(row))

    async def close(self) -> None:
        self.closed = True


PASSWORD = "secret123"


@pytest.fixture
def auth_manager() -> AuthManager:
    return AuthManager(persist=False)


@pytest.fixture
def store(auth_manager: AuthManager) -> FakeStore:
    return FakeStore(auth_manager)


@pytest.fixture
def notices() -> NoticeBoard:
    return NoticeBoard()


@pytest.fixture
def shopper(store: FakeStore) -> User:
    return store.add_user("shopper@example.com", PASSWORD)


@pytest.fixture
def other_shopper(store: FakeStore) -> User:
    return store.add_user("other@example.com", PASSWORD)


@pytest.fixture
def admin_user(store: FakeStore) -> User:
    return store.add_user("admin@example.com", PASSWORD, role="admin")


@pytest.fixture
def laptop(store: FakeStore) -> Product:
    return store.add_product("Dell XPS 15", 1999.99)


@pytest.fixture
def macbook(store: FakeStore) -> Product:
    return store.add_product('MacBook Pro 16"', 2499.99)


@pytest.fixture
async def auth_state(store: FakeStore):
    observer = AuthStateObserver(store)
    await observer.start()
    yield observer
    observer.close()


@pytest.fixture
async def cart(store: FakeStore, auth_state: AuthStateObserver, notices: NoticeBoard):
    synchronizer = CartSynchronizer(store, auth_state, notices)
    yield synchronizer
    synchronizer.close()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        supabase_url="https://project.supabase.co",
        supabase_anon_key="anon-key",
        session_file=str(tmp_path / "session.json"),
    )


async def sign_in(store: FakeStore, email: str, cart: Optional[CartSynchronizer] = None) -> SessionData:
    """Sign in through the fake auth API and wait for the cart to follow."""
    session = await store.auth.sign_in(email, PASSWORD)
    if cart is not None:
        await cart.settle()
    return session
