from typing import Optional

from .cart import CartStore
from .errors import AuthError, BackendError, FetchError
from .local_store import PROFILE_IMAGE_KEY, SESSION_KEY, LocalStore
from .logs import json_log
from .query import Backend, Query
from .security import hash_password, needs_rehash, verify_password


async def find_user_by_username(backend: Backend, username: str) -> Optional[dict]:
    res = await backend.fetch(Query("users").select("*").eq("username", username).limit(1))
    return res.rows[0] if res.rows else None


def _public_user(row: dict) -> dict:
    return {k: v for k, v in row.items() if k != "password_hash"}


class AuthService:
    """
    Username/password login against the backend `users` table. The logged-in user is
    kept on the device (session marker) and drives which cart is active.
    """

    def __init__(self, backend: Backend, cart: CartStore, store: LocalStore):
        self.backend = backend
        self.cart = cart
        self.store = store

    async def login(self, username: str, password: str) -> dict:
        username = (username or "").strip()
        if not username or not password:
            raise AuthError("invalid credentials")
        try:
            user = await find_user_by_username(self.backend, username)
        except BackendError as ex:
            json_log("error", "auth.lookup_failed", username=username, error=str(ex))
            raise FetchError(str(ex)) from ex
        if not user:
            raise AuthError("Invalid username or user not found")
        if not verify_password(password, user.get("password_hash")):
            raise AuthError("Incorrect password")

        if needs_rehash(user.get("password_hash")):
            try:
                await self.backend.update("users", {"password_hash": hash_password(password)}, id=user["id"])
            except BackendError as ex:
                # Login still succeeds; the upgrade is retried on the next login.
                json_log("warning", "auth.rehash_failed", user_id=user["id"], error=str(ex))

        public = _public_user(user)
        self.store.set(SESSION_KEY, public)
        self.cart.set_active_user(public["id"])
        json_log("info", "auth.login", user_id=public["id"], username=username)
        return public

    def logout(self) -> None:
        user = self.current_user()
        self.store.delete(SESSION_KEY)
        self.cart.clear_active_user()
        json_log("info", "auth.logout", user_id=(user or {}).get("id"))

    def current_user(self) -> Optional[dict]:
        user = self.store.get(SESSION_KEY)
        return user if isinstance(user, dict) and user.get("id") is not None else None

    def restore(self) -> Optional[dict]:
        """Re-activate the cart of a session persisted by a previous run."""
        user = self.current_user()
        if user:
            self.cart.set_active_user(user["id"])
        return user

    def get_profile_image(self) -> Optional[str]:
        path = self.store.get(PROFILE_IMAGE_KEY)
        return str(path) if path else None

    def set_profile_image(self, path: str) -> None:
        self.store.set(PROFILE_IMAGE_KEY, path)
