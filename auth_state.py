import logging
from typing import Callable, List, Optional

from errors import AuthError, IdentityError
from identity import IdentityProvider, Principal

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_USER = "user"

AuthStateListener = Callable[[Optional[Principal], Optional[str]], None]


def resolve_role(principal: Optional[Principal], admin_email: str) -> Optional[str]:
    """admin for the configured address (exact match), user otherwise, None when signed out."""
    if principal is None:
        return None
    return ROLE_ADMIN if principal.email == admin_email else ROLE_USER


class AuthState:
    """Current principal plus the role derived from it.

    Role is recomputed from the email on every change and never stored.
    `loading` stays True until the provider delivers its first state.
    """

    def __init__(self, provider: IdentityProvider, admin_email: str):
        self.provider = provider
        self.admin_email = admin_email
        self.current_user: Optional[Principal] = None
        self.role: Optional[str] = None
        self.loading = True
        self._listeners: List[AuthStateListener] = []
        self._unsubscribe = provider.on_auth_state_changed(self._on_change)

    def _on_change(self, principal: Optional[Principal]) -> None:
        if principal:
            logger.info(f"Auth state changed: user {principal.uid} signed in")
        else:
            logger.info("Auth state changed: signed out")
        self.current_user = principal
        self.role = resolve_role(principal, self.admin_email)
        self.loading = False
        for listener in list(self._listeners):
            listener(principal, self.role)

    def subscribe(self, listener: AuthStateListener) -> Callable[[], None]:
        self._listeners.append(listener)
        if not self.loading:
            listener(self.current_user, self.role)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        self._unsubscribe()
        self._listeners.clear()

    async def signup(self, email: str, password: str, full_name: str) -> Principal:
        logger.info(f"Starting signup for {email}")
        try:
            principal = await self.provider.sign_up(email, password)
            principal = await self.provider.update_profile(principal, full_name)
        except IdentityError as e:
            logger.error(f"Signup failed for {email}: {e.code} {e.message}")
            raise AuthError.from_identity_error(e)
        self.current_user = principal
        self.role = resolve_role(principal, self.admin_email)
        return principal

    async def login(self, email: str, password: str) -> Principal:
        logger.info(f"Attempting login for {email}")
        try:
            principal = await self.provider.sign_in(email, password)
        except IdentityError as e:
            logger.error(f"Login failed for {email}: {e.code} {e.message}")
            raise AuthError.from_identity_error(e)
        self.role = resolve_role(principal, self.admin_email)
        return principal

    async def logout(self) -> None:
        logger.info("Logging out")
        await self.provider.sign_out()

    async def reset_password(self, email: str) -> str:
        logger.info(f"Sending password reset to {email}")
        try:
            return await self.provider.send_password_reset(email)
        except IdentityError as e:
            logger.error(f"Password reset failed for {email}: {e.code} {e.message}")
            raise AuthError.from_identity_error(e)
