"""User and admin sign-in, sign-up and sign-out flows."""

import logging

from pydantic import ValidationError as PydanticValidationError

from .admin import UNAUTHORIZED_MESSAGE, is_admin
from .exceptions import AuthError, StoreError, ValidationError
from .models import AuthCredentials, SignUpForm
from .notices import NoticeBoard
from .store_client import RemoteStoreClient

logger = logging.getLogger(__name__)


class AccountService:
    """Runs the account flows; every flow posts exactly one notice."""

    def __init__(self, store: RemoteStoreClient, notices: NoticeBoard) -> None:
        self.store = store
        self.notices = notices

    def _reject(self, error: PydanticValidationError) -> bool:
        validation_error = ValidationError.from_pydantic(error)
        self.notices.error(validation_error.message)
        return False

    async def sign_in(self, email: str, password: str) -> bool:
        """Sign in a shopper."""
        try:
            credentials = AuthCredentials(email=email, password=password)
        except PydanticValidationError as e:
            return self._reject(e)

        try:
            await self.store.auth.sign_in(credentials.email, credentials.password)
        except AuthError as e:
            logger.error(f"Login error: {e}")
            self.notices.error(str(e) or "Login failed")
            return False

        self.notices.success("Logged in successfully!")
        return True

    async def sign_up(self, name: str, email: str, password: str, gender: str = "male") -> bool:
        """Create a shopper account; name and gender go to the profile."""
        try:
            form = SignUpForm(name=name, email=email, password=password, gender=gender)
        except PydanticValidationError as e:
            return self._reject(e)

        try:
            await self.store.auth.sign_up(
                form.email, form.password, {"name": form.name, "gender": form.gender}
            )
        except AuthError as e:
            logger.error(f"Signup error: {e}")
            self.notices.error(str(e) or "Signup failed")
            return False

        self.notices.success("Account created successfully! Please check your email for verification.")
        return True

    async def sign_out(self) -> bool:
        try:
            await self.store.auth.sign_out()
        except AuthError as e:
            logger.error(f"Sign out error: {e}")
            self.notices.error("Failed to sign out")
            return False

        self.notices.success("Signed out successfully!")
        return True

    async def admin_sign_in(self, email: str, password: str) -> bool:
        """
        Sign in and require the admin role.

        A user without the role is signed out again before the failure is
        reported, so no unauthorized session stays open.
        """
        try:
            credentials = AuthCredentials(email=email, password=password)
        except PydanticValidationError as e:
            return self._reject(e)

        try:
            session = await self.store.auth.sign_in(credentials.email, credentials.password)
            try:
                allowed = await is_admin(self.store, session.user.id)
            except (StoreError, PydanticValidationError) as e:
                logger.error(f"Role lookup failed: {e}")
                allowed = False

            if not allowed:
                await self._force_sign_out()
                raise AuthError(UNAUTHORIZED_MESSAGE)
        except AuthError as e:
            logger.error(f"Admin login error: {e}")
            self.notices.error(str(e) or "Admin login failed")
            return False

        self.notices.success("Admin login successful!")
        return True

    async def _force_sign_out(self) -> None:
        try:
            await self.store.auth.sign_out()
        except AuthError as e:
            # the local session is already cleared by sign_out
            logger.warning(f"Remote sign out after refused admin login failed: {e}")
