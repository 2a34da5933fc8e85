"""
Email/password identity provider backed by the `accounts` collection.

One IdentityProvider instance tracks one client session: it knows the
currently signed-in principal and notifies subscribers when that changes.
Accounts themselves are shared through the database, so any number of
instances can sign the same account in.
"""

import asyncio
import logging
import secrets
from datetime import timedelta
from typing import Callable, List, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, TypeAdapter, ValidationError

import config
from database import create_document, get_documents, now_utc, update_document
from errors import IdentityError

logger = logging.getLogger(__name__)

ACCOUNTS = "accounts"
PASSWORD_RESETS = "passwordResets"
MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_email_adapter = TypeAdapter(EmailStr)

AuthListener = Callable[[Optional["Principal"]], None]


class Principal(BaseModel):
    uid: str
    email: str
    display_name: Optional[str] = None


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _check_email(email: str) -> None:
    try:
        _email_adapter.validate_python(email)
    except ValidationError:
        raise IdentityError("auth/invalid-email", "The email address is badly formatted.")


def _find_account(email: str) -> Optional[dict]:
    found = get_documents(ACCOUNTS, {"email": email}, limit=1)
    return found[0] if found else None


def _to_principal(account: dict) -> Principal:
    return Principal(uid=account["id"], email=account["email"],
                     display_name=account.get("displayName"))


class IdentityProvider:
    def __init__(self):
        self._current: Optional[Principal] = None
        self._listeners: List[AuthListener] = []

    @property
    def current_user(self) -> Optional[Principal]:
        return self._current

    # ---------------------- subscription ----------------------
    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener; it is called right away with the current principal."""
        self._listeners.append(listener)
        listener(self._current)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_current(self, principal: Optional[Principal]) -> None:
        self._current = principal
        for listener in list(self._listeners):
            try:
                listener(principal)
            except Exception:
                logger.exception("Auth state listener failed")

    # ---------------------- account operations ----------------------
    def _sign_up(self, email: str, password: str) -> Principal:
        _check_email(email)
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise IdentityError("auth/weak-password", "Password should be at least 6 characters.")
        if _find_account(email):
            raise IdentityError("auth/email-already-in-use", "The email address is already in use.")
        uid = create_document(ACCOUNTS, {
            "email": email,
            "passwordHash": get_password_hash(password),
            "displayName": None,
        })
        return Principal(uid=uid, email=email)

    def _sign_in(self, email: str, password: str) -> Principal:
        _check_email(email)
        account = _find_account(email)
        if not account or not verify_password(password, account["passwordHash"]):
            raise IdentityError("auth/invalid-credential", "Invalid email or password.")
        return _to_principal(account)

    def _send_password_reset(self, email: str) -> str:
        _check_email(email)
        if not _find_account(email):
            raise IdentityError("auth/user-not-found", "There is no user with this email address.")
        code = secrets.token_urlsafe(24)
        create_document(PASSWORD_RESETS, {
            "email": email,
            "code": code,
            "expiresAt": now_utc() + timedelta(minutes=config.PASSWORD_RESET_EXPIRE_MIN),
            "used": False,
        })
        # No mail transport; the code is handed back to the caller.
        logger.info(f"Password reset requested for {email}")
        return code

    def _confirm_password_reset(self, code: str, new_password: str) -> None:
        found = get_documents(PASSWORD_RESETS, {"code": code, "used": False}, limit=1)
        if not found:
            raise IdentityError("auth/invalid-action-code", "The reset code is invalid or already used.")
        reset = found[0]
        expires = reset["expiresAt"]
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=now_utc().tzinfo)
        if expires < now_utc():
            raise IdentityError("auth/expired-action-code", "The reset code has expired.")
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise IdentityError("auth/weak-password", "Password should be at least 6 characters.")
        account = _find_account(reset["email"])
        if not account:
            raise IdentityError("auth/user-not-found", "There is no user with this email address.")
        update_document(ACCOUNTS, account["id"], {"passwordHash": get_password_hash(new_password)})
        update_document(PASSWORD_RESETS, reset["id"], {"used": True})

    def _update_profile(self, principal: Principal, display_name: str) -> Principal:
        update_document(ACCOUNTS, principal.uid, {"displayName": display_name})
        return principal.model_copy(update={"display_name": display_name})

    # ---------------------- async surface ----------------------
    async def sign_up(self, email: str, password: str) -> Principal:
        principal = await asyncio.to_thread(self._sign_up, email, password)
        logger.info(f"Account created for {email} ({principal.uid})")
        self._set_current(principal)
        return principal

    async def sign_in(self, email: str, password: str) -> Principal:
        principal = await asyncio.to_thread(self._sign_in, email, password)
        self._set_current(principal)
        return principal

    async def sign_out(self) -> None:
        self._set_current(None)

    async def send_password_reset(self, email: str) -> str:
        return await asyncio.to_thread(self._send_password_reset, email)

    async def confirm_password_reset(self, code: str, new_password: str) -> None:
        await asyncio.to_thread(self._confirm_password_reset, code, new_password)

    async def update_profile(self, principal: Principal, display_name: str) -> Principal:
        updated = await asyncio.to_thread(self._update_profile, principal, display_name)
        if self._current is not None and self._current.uid == updated.uid:
            self._current = updated
        return updated

    def restore_session(self, principal: Principal) -> None:
        """Adopt a principal recovered from a verified bearer token."""
        if self._current != principal:
            self._set_current(principal)

    # ---------------------- tokens ----------------------
    @staticmethod
    def issue_token(principal: Principal) -> str:
        now = now_utc()
        payload = {
            "sub": principal.uid,
            "email": principal.email,
            "name": principal.display_name,
            "iat": now,
            "exp": now + timedelta(minutes=config.TOKEN_EXPIRE_MIN),
        }
        return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)

    @staticmethod
    def verify_token(token: str) -> Principal:
        try:
            data = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
        except JWTError as e:
            raise IdentityError("auth/invalid-token", f"Invalid token: {e}")
        return Principal(uid=data["sub"], email=data["email"], display_name=data.get("name"))
