import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import config
import data_access
import database
from auth_state import AuthState
from dashboard_state import SessionRegistry
from errors import DocumentNotFoundError, IdentityError
from identity import IdentityProvider, Principal
from menu_utils import filter_menu_items, menu_categories, with_profit
from permissions import current_role, get_current_principal, require_admin
from schemas import (
    AdminUserUpdate,
    FeedbackStatusUpdate,
    FeedbackSubmission,
    MenuItem,
    MenuItemUpdate,
    Restaurant,
    RestaurantUpdate,
    UserProfileUpdate,
)

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

RESET_CODE_IN_RESPONSE = os.getenv("RESET_CODE_IN_RESPONSE", "false").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is None:
        logger.warning("DATABASE_URL not set; data endpoints will fail")
    else:
        data_access.ensure_indexes()
    yield


app = FastAPI(title="Restaurant Dashboard API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sessions = SessionRegistry(config.ADMIN_EMAIL)


# ---------------------- Error mapping ----------------------
@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError):
    status = 401 if exc.code in ("auth/invalid-credential", "auth/invalid-token") else 400
    return JSONResponse(status_code=status, content={"detail": {"code": exc.code, "message": exc.message}})


@app.exception_handler(DocumentNotFoundError)
async def not_found_handler(request: Request, exc: DocumentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# ---------------------- Helpers ----------------------
def _auth_payload(principal: Principal, role: Optional[str]) -> Dict[str, Any]:
    return {
        "token": IdentityProvider.issue_token(principal),
        "user": {"uid": principal.uid, "email": principal.email, "displayName": principal.display_name},
        "role": role,
    }


async def _refresh_session(uid: str) -> None:
    """Bring the caller's open dashboard back in line after a write."""
    session = sessions.get(uid)
    if session is None:
        return
    await session.dashboard.wait_idle()
    await session.dashboard.refresh_data()


def _get_restaurant_or_404(restaurant_id: str) -> Dict[str, Any]:
    restaurant = data_access.get_restaurant(restaurant_id)
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found")
    return restaurant


def _check_menu_access(restaurant: Dict[str, Any], principal: Principal, role: str) -> None:
    if role != "admin" and restaurant.get("ownerId") not in (principal.uid, principal.email):
        raise HTTPException(status_code=403, detail="Not the owner of this restaurant")


def _menu_listing(restaurant_id: str, category: str, search: Optional[str]) -> Dict[str, Any]:
    items = data_access.get_menu_items_by_restaurant(restaurant_id)
    return {
        "restaurantId": restaurant_id,
        "categories": menu_categories(items),
        "items": [with_profit(i) for i in filter_menu_items(items, category, search or "")],
    }


def _changes(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, exclude_unset=True)


# ---------------------- Auth ----------------------
class SignupBody(BaseModel):
    email: str
    password: str
    full_name: str = Field(..., alias="fullName", min_length=1)


class LoginBody(BaseModel):
    email: str
    password: str


class ResetBody(BaseModel):
    email: str


class ResetConfirmBody(BaseModel):
    code: str
    new_password: str = Field(..., alias="newPassword")


class DisplayNameBody(BaseModel):
    display_name: str = Field(..., alias="displayName", min_length=1)


class SelectRestaurantBody(BaseModel):
    restaurant_id: Optional[str] = Field(None, alias="restaurantId")


@app.post("/auth/signup")
async def signup(body: SignupBody):
    auth = AuthState(IdentityProvider(), config.ADMIN_EMAIL)
    try:
        principal = await auth.signup(body.email, body.password, body.full_name)
        return _auth_payload(principal, auth.role)
    finally:
        auth.close()


@app.post("/auth/login")
async def login(body: LoginBody):
    auth = AuthState(IdentityProvider(), config.ADMIN_EMAIL)
    try:
        principal = await auth.login(body.email, body.password)
        return _auth_payload(principal, auth.role)
    finally:
        auth.close()


@app.post("/auth/logout")
async def logout(principal: Principal = Depends(get_current_principal)):
    await sessions.close(principal.uid)
    return {"ok": True}


@app.post("/auth/reset-password")
async def reset_password(body: ResetBody):
    auth = AuthState(IdentityProvider(), config.ADMIN_EMAIL)
    try:
        code = await auth.reset_password(body.email)
    finally:
        auth.close()
    response: Dict[str, Any] = {"sent": True}
    if RESET_CODE_IN_RESPONSE:
        response["code"] = code
    return response


@app.post("/auth/reset-password/confirm")
async def confirm_reset_password(body: ResetConfirmBody):
    await IdentityProvider().confirm_password_reset(body.code, body.new_password)
    return {"ok": True}


@app.get("/auth/me")
def me(principal: Principal = Depends(get_current_principal), role: str = Depends(current_role)):
    return {"uid": principal.uid, "email": principal.email, "displayName": principal.display_name, "role": role}


@app.patch("/auth/profile")
async def update_display_name(body: DisplayNameBody, principal: Principal = Depends(get_current_principal),
                              role: str = Depends(current_role)):
    updated = await IdentityProvider().update_profile(principal, body.display_name)
    return _auth_payload(updated, role)


# ---------------------- Dashboard ----------------------
@app.get("/dashboard")
async def get_dashboard(principal: Principal = Depends(get_current_principal)):
    session = await sessions.open(principal)
    await session.dashboard.wait_idle()
    return session.dashboard.snapshot()


@app.post("/dashboard/refresh")
async def refresh_dashboard(principal: Principal = Depends(get_current_principal)):
    session = await sessions.open(principal)
    await session.dashboard.wait_idle()
    await session.dashboard.refresh_data()
    return session.dashboard.snapshot()


@app.put("/dashboard/restaurant")
async def select_restaurant(body: SelectRestaurantBody, principal: Principal = Depends(get_current_principal),
                            role: str = Depends(current_role)):
    if body.restaurant_id:
        restaurant = await run_in_threadpool(_get_restaurant_or_404, body.restaurant_id)
        _check_menu_access(restaurant, principal, role)
    session = await sessions.open(principal)
    await session.dashboard.wait_idle()
    await session.dashboard.select_restaurant(body.restaurant_id)
    return session.dashboard.snapshot()


# ---------------------- Profile ----------------------
@app.get("/profile")
def get_profile(principal: Principal = Depends(get_current_principal)):
    return data_access.get_user_profile(principal.uid)


@app.put("/profile")
async def update_profile(body: UserProfileUpdate, principal: Principal = Depends(get_current_principal)):
    await run_in_threadpool(data_access.update_user_profile, principal.uid, _changes(body))
    await _refresh_session(principal.uid)
    return await run_in_threadpool(data_access.get_user_profile, principal.uid)


# ---------------------- Restaurants & Menu ----------------------
@app.get("/restaurants")
def list_own_restaurants(principal: Principal = Depends(get_current_principal)):
    return data_access.get_restaurants_by_owner(principal.uid)


@app.post("/restaurants")
async def create_own_restaurant(body: Restaurant, principal: Principal = Depends(get_current_principal)):
    body.owner_id = principal.uid
    body.owner_email = body.owner_email or principal.email
    body.owner_name = body.owner_name or principal.display_name
    rid = await run_in_threadpool(data_access.create_restaurant, body)
    await _refresh_session(principal.uid)
    return {"id": rid}


@app.get("/restaurants/{restaurant_id}/menu")
def get_menu(restaurant_id: str, category: str = "all", search: Optional[str] = None,
             principal: Principal = Depends(get_current_principal), role: str = Depends(current_role)):
    _check_menu_access(_get_restaurant_or_404(restaurant_id), principal, role)
    return _menu_listing(restaurant_id, category, search)


# ---------------------- Feedback ----------------------
@app.get("/feedback")
def list_own_feedback(principal: Principal = Depends(get_current_principal)):
    return data_access.get_user_feedback(principal.uid)


@app.post("/feedback")
async def submit_feedback(body: FeedbackSubmission, principal: Principal = Depends(get_current_principal)):
    data = {
        "userId": principal.uid,
        "userName": principal.display_name or "",
        "userEmail": principal.email,
        "feedbackType": body.feedback_type,
        "feedbackText": body.feedback_text,
        "rating": body.rating,
    }
    fid = await run_in_threadpool(data_access.create_feedback, data)
    await _refresh_session(principal.uid)
    return {"id": fid, "status": "pending"}


# ---------------------- Admin ----------------------
@app.get("/admin/stats")
def admin_stats(_: Principal = Depends(require_admin)):
    return data_access.get_admin_statistics()


@app.post("/admin/initialize")
def admin_initialize(_: Principal = Depends(require_admin)):
    return {"initialized": data_access.initialize_collections()}


@app.get("/admin/users")
def admin_list_users(_: Principal = Depends(require_admin)):
    return data_access.get_all_users()


@app.put("/admin/users/{uid}")
async def admin_update_user(uid: str, body: AdminUserUpdate, admin: Principal = Depends(require_admin)):
    await run_in_threadpool(data_access.update_user_profile, uid, _changes(body))
    await _refresh_session(admin.uid)
    return {"ok": True}


@app.delete("/admin/users/{uid}")
async def admin_delete_user(uid: str, admin: Principal = Depends(require_admin)):
    await run_in_threadpool(data_access.delete_user_profile, uid)
    await _refresh_session(admin.uid)
    return {"ok": True}


@app.get("/admin/restaurants")
def admin_list_restaurants(_: Principal = Depends(require_admin)):
    return data_access.get_all_restaurants()


@app.post("/admin/restaurants")
async def admin_create_restaurant(body: Restaurant, admin: Principal = Depends(require_admin)):
    rid = await run_in_threadpool(data_access.create_restaurant, body)
    await _refresh_session(admin.uid)
    return {"id": rid}


@app.put("/admin/restaurants/{restaurant_id}")
async def admin_update_restaurant(restaurant_id: str, body: RestaurantUpdate,
                                  admin: Principal = Depends(require_admin)):
    await run_in_threadpool(data_access.update_restaurant, restaurant_id, _changes(body))
    await _refresh_session(admin.uid)
    return {"ok": True}


@app.delete("/admin/restaurants/{restaurant_id}")
async def admin_delete_restaurant(restaurant_id: str, admin: Principal = Depends(require_admin)):
    await run_in_threadpool(data_access.delete_restaurant, restaurant_id)
    await _refresh_session(admin.uid)
    return {"ok": True}


@app.get("/admin/restaurants/{restaurant_id}/menu")
def admin_get_menu(restaurant_id: str, category: str = "all", search: Optional[str] = None,
                   _: Principal = Depends(require_admin)):
    _get_restaurant_or_404(restaurant_id)
    return _menu_listing(restaurant_id, category, search)


@app.post("/admin/restaurants/{restaurant_id}/menu")
async def admin_add_menu_item(restaurant_id: str, body: MenuItem, admin: Principal = Depends(require_admin)):
    await run_in_threadpool(_get_restaurant_or_404, restaurant_id)
    body.restaurant_id = restaurant_id
    mid = await run_in_threadpool(data_access.create_menu_item, body)
    await _refresh_session(admin.uid)
    return {"id": mid}


@app.put("/admin/menu/{item_id}")
async def admin_update_menu_item(item_id: str, body: MenuItemUpdate, admin: Principal = Depends(require_admin)):
    await run_in_threadpool(data_access.update_menu_item, item_id, _changes(body))
    await _refresh_session(admin.uid)
    return {"ok": True}


@app.delete("/admin/menu/{item_id}")
async def admin_delete_menu_item(item_id: str, admin: Principal = Depends(require_admin)):
    await run_in_threadpool(data_access.delete_menu_item, item_id)
    await _refresh_session(admin.uid)
    return {"ok": True}


@app.get("/admin/feedback")
def admin_list_feedback(_: Principal = Depends(require_admin)):
    return data_access.get_all_feedback()


@app.patch("/admin/feedback/{feedback_id}")
async def admin_update_feedback(feedback_id: str, body: FeedbackStatusUpdate,
                                admin: Principal = Depends(require_admin)):
    try:
        updated = await run_in_threadpool(data_access.update_feedback_status, feedback_id,
                                          body.status, body.response)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await _refresh_session(admin.uid)
    return updated


# ---------------------- Misc ----------------------
@app.get("/")
def read_root():
    return {"message": "Restaurant Dashboard API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": config.DATABASE_NAME,
        "collections": [],
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            try:
                response["collections"] = database.db.list_collection_names()[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
