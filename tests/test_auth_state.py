import asyncio

import pytest

from auth_state import ROLE_ADMIN, ROLE_USER, AuthState, resolve_role
from errors import AuthError, IdentityError
from identity import IdentityProvider, Principal

ADMIN = "owner@restaurent.com"


def _principal(email, uid="u1"):
    return Principal(uid=uid, email=email)


def test_resolve_role():
    assert resolve_role(_principal(ADMIN), ADMIN) == ROLE_ADMIN
    assert resolve_role(_principal("cook@example.com"), ADMIN) == ROLE_USER
    assert resolve_role(_principal("Owner@restaurent.com"), ADMIN) == ROLE_USER
    assert resolve_role(None, ADMIN) is None


def test_loading_flips_on_first_delivery(mongo):
    auth = AuthState(IdentityProvider(), ADMIN)
    assert auth.loading is False
    assert auth.current_user is None
    assert auth.role is None


def test_signup_sets_display_name_and_role(mongo):
    async def scenario():
        auth = AuthState(IdentityProvider(), ADMIN)
        principal = await auth.signup("cook@example.com", "secret1", "Sam Cook")
        return auth, principal

    auth, principal = asyncio.run(scenario())
    assert principal.display_name == "Sam Cook"
    assert auth.role == ROLE_USER
    assert auth.current_user.uid == principal.uid


def test_admin_login(mongo):
    async def scenario():
        await IdentityProvider().sign_up(ADMIN, "adminpass")
        auth = AuthState(IdentityProvider(), ADMIN)
        await auth.login(ADMIN, "adminpass")
        return auth

    auth = asyncio.run(scenario())
    assert auth.role == ROLE_ADMIN


def test_logout_clears_role(mongo):
    async def scenario():
        auth = AuthState(IdentityProvider(), ADMIN)
        await auth.signup("cook@example.com", "secret1", "Sam")
        await auth.logout()
        return auth

    auth = asyncio.run(scenario())
    assert auth.current_user is None
    assert auth.role is None


@pytest.mark.parametrize("email,password,code", [
    ("not-an-email", "secret1", "auth/invalid-email"),
    ("cook@example.com", "123", "auth/weak-password"),
])
def test_signup_rejections(mongo, email, password, code):
    auth = AuthState(IdentityProvider(), ADMIN)
    with pytest.raises(AuthError) as exc:
        asyncio.run(auth.signup(email, password, "Sam"))
    assert exc.value.code == code


def test_signup_duplicate_email(mongo):
    async def scenario():
        await IdentityProvider().sign_up("cook@example.com", "secret1")
        await AuthState(IdentityProvider(), ADMIN).signup("cook@example.com", "secret2", "Sam")

    with pytest.raises(AuthError) as exc:
        asyncio.run(scenario())
    assert exc.value.code == "auth/email-already-in-use"


def test_login_wrong_password(mongo):
    async def scenario():
        await IdentityProvider().sign_up("cook@example.com", "secret1")
        await AuthState(IdentityProvider(), ADMIN).login("cook@example.com", "wrong-one")

    with pytest.raises(AuthError) as exc:
        asyncio.run(scenario())
    assert exc.value.code == "auth/invalid-credential"


def test_subscribers_see_role_changes(mongo):
    seen = []

    async def scenario():
        provider = IdentityProvider()
        auth = AuthState(provider, ADMIN)
        auth.subscribe(lambda principal, role: seen.append(role))
        await auth.signup("cook@example.com", "secret1", "Sam")
        await auth.logout()

    asyncio.run(scenario())
    assert seen == [None, ROLE_USER, None]


def test_password_reset_flow(mongo):
    async def scenario():
        provider = IdentityProvider()
        await provider.sign_up("cook@example.com", "secret1")
        code = await AuthState(IdentityProvider(), ADMIN).reset_password("cook@example.com")
        await provider.confirm_password_reset(code, "brand-new")
        return await IdentityProvider().sign_in("cook@example.com", "brand-new")

    principal = asyncio.run(scenario())
    assert principal.email == "cook@example.com"


def test_password_reset_code_single_use(mongo):
    async def scenario():
        provider = IdentityProvider()
        await provider.sign_up("cook@example.com", "secret1")
        code = await provider.send_password_reset("cook@example.com")
        await provider.confirm_password_reset(code, "brand-new")
        await provider.confirm_password_reset(code, "again-new")

    with pytest.raises(IdentityError) as exc:
        asyncio.run(scenario())
    assert exc.value.code == "auth/invalid-action-code"


def test_reset_unknown_email(mongo):
    auth = AuthState(IdentityProvider(), ADMIN)
    with pytest.raises(AuthError) as exc:
        asyncio.run(auth.reset_password("ghost@example.com"))
    assert exc.value.code == "auth/user-not-found"


def test_token_round_trip():
    principal = Principal(uid="u1", email="cook@example.com", display_name="Sam")
    token = IdentityProvider.issue_token(principal)
    assert IdentityProvider.verify_token(token) == principal
    with pytest.raises(IdentityError):
        IdentityProvider.verify_token(token + "x")
