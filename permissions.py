from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config
from auth_state import ROLE_ADMIN, resolve_role
from errors import IdentityError
from identity import IdentityProvider, Principal

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_principal(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Principal:
    if not creds:
        raise HTTPException(status_code=401, detail="Authorization required")
    try:
        return IdentityProvider.verify_token(creds.credentials)
    except IdentityError as e:
        raise HTTPException(status_code=401, detail=e.message)


def current_role(principal: Principal = Depends(get_current_principal)) -> str:
    # Recomputed from the token email on every request.
    return resolve_role(principal, config.ADMIN_EMAIL)


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if resolve_role(principal, config.ADMIN_EMAIL) != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal
