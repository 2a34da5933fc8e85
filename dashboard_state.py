"""
Per-session dashboard state.

DashboardState follows the signed-in principal of one AuthState and loads
the data the dashboard shows:

- users: profile -> owned restaurants -> menu of the selected restaurant
  -> own feedback. Only the profile step is fatal; the others are logged
  and skipped so the dashboard renders with whatever did load.
- admin: collection bootstrap (once) -> aggregate statistics.

Every store call runs in a worker thread under a timeout. Each run of a
chain takes a generation number and only commits while that number is
still the latest, so an older refresh finishing late cannot overwrite a
newer one.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import config
import data_access
from auth_state import ROLE_ADMIN, AuthState
from errors import FetchTimeoutError, is_index_error
from identity import IdentityProvider, Principal
from menu_utils import with_profit

logger = logging.getLogger(__name__)

INDEX_BUILDING_MESSAGE = "Database setup in progress. Please wait a few moments and try again."
PROFILE_FAILED_MESSAGE = "Failed to load profile. Please try again later."
ADMIN_FAILED_MESSAGE = "Failed to load admin data. Please try again later."
MENU_FAILED_MESSAGE = "Failed to load menu items. Please try again later."


class DashboardStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    PARTIAL_ERROR = "partial_error"


@dataclass
class DashboardError:
    message: str
    is_index_error: bool = False
    details: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException, message: str) -> "DashboardError":
        if is_index_error(exc):
            return cls(INDEX_BUILDING_MESSAGE, True, str(exc))
        return cls(message, False, str(exc))


class DashboardState:
    def __init__(self, auth: AuthState, store=data_access,
                 timeout: float = config.FETCH_TIMEOUT_SECONDS):
        self.auth = auth
        self.store = store
        self.timeout = timeout

        self.status = DashboardStatus.UNINITIALIZED
        self.error: Optional[DashboardError] = None
        self.user_profile: Optional[Dict[str, Any]] = None
        self.restaurants: List[Dict[str, Any]] = []
        self.selected_restaurant: Optional[str] = None
        self.menu_items: List[Dict[str, Any]] = []
        self.feedback_entries: List[Dict[str, Any]] = []
        self.admin_stats: Optional[Dict[str, Any]] = None
        self.collections_initialized = False

        self._generation = 0
        self._menu_generation = 0
        self._uid: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ---------------------- lifecycle ----------------------
    async def start(self) -> None:
        """Bootstrap the collections, then follow the auth state."""
        await self._initialize_collections()
        self._unsubscribe = self.auth.subscribe(self._on_auth_change)

    def close(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task and not self._task.done():
            self._task.cancel()

    async def wait_idle(self) -> None:
        while self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    async def _initialize_collections(self) -> bool:
        if self.collections_initialized:
            return True
        try:
            await self._call(self.store.initialize_collections)
        except Exception as e:
            logger.error(f"Error initializing collections: {e}")
            return False
        self.collections_initialized = True
        return True

    def _on_auth_change(self, principal: Optional[Principal], role: Optional[str]) -> None:
        if principal is None:
            self._uid = None
            self._clear()
            return
        if principal.uid == self._uid and self.status != DashboardStatus.UNINITIALIZED:
            return
        self._uid = principal.uid
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; dashboard will load on the next refresh")
            return
        self._task = loop.create_task(self.refresh_data())

    def _clear(self) -> None:
        self._generation += 1
        self._menu_generation += 1
        self.status = DashboardStatus.UNINITIALIZED
        self.error = None
        self.user_profile = None
        self.restaurants = []
        self.selected_restaurant = None
        self.menu_items = []
        self.feedback_entries = []
        self.admin_stats = None

    # ---------------------- fetching ----------------------
    async def _call(self, fn, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), self.timeout)
        except asyncio.TimeoutError:
            name = getattr(fn, "__name__", repr(fn))
            raise FetchTimeoutError(f"{name} did not complete within {self.timeout}s")

    def _fail(self, exc: BaseException, message: str) -> None:
        self.error = DashboardError.from_exception(exc, message)
        self.status = DashboardStatus.PARTIAL_ERROR

    async def refresh_data(self) -> DashboardStatus:
        principal = self.auth.current_user
        if principal is None:
            return self.status
        self._generation += 1
        token = self._generation
        self.status = DashboardStatus.LOADING
        self.error = None
        if self.auth.role == ROLE_ADMIN:
            await self._load_admin(token)
        else:
            await self._load_user(principal, token)
        return self.status

    async def _load_user(self, principal: Principal, token: int) -> None:
        uid = principal.uid
        try:
            profile = await self._call(self.store.get_user_profile, uid)
        except Exception as e:
            logger.error(f"Error fetching user profile for {uid}: {e}")
            if token == self._generation:
                self._fail(e, PROFILE_FAILED_MESSAGE)
            return
        if token != self._generation:
            return
        self.user_profile = profile

        try:
            restaurants = await self._call(self.store.get_restaurants_by_owner, uid)
        except Exception as e:
            logger.warning(f"Error fetching restaurants for {uid}, continuing: {e}")
            restaurants = []
        if token != self._generation:
            return
        self.restaurants = restaurants

        if restaurants:
            ids = [r["id"] for r in restaurants]
            if self.selected_restaurant not in ids:
                self.selected_restaurant = ids[0]
                self.menu_items = []
            self._menu_generation += 1
            menu_token = self._menu_generation
            try:
                items = await self._call(self.store.get_menu_items_by_restaurant, self.selected_restaurant)
            except Exception as e:
                logger.warning(f"Error fetching menu items, continuing: {e}")
                items = None
            if token != self._generation:
                return
            if items is not None and menu_token == self._menu_generation:
                self.menu_items = items
        else:
            self.selected_restaurant = None
            self.menu_items = []

        try:
            feedback = await self._call(self.store.get_user_feedback, uid)
        except Exception as e:
            logger.warning(f"Error fetching feedback for {uid}, continuing: {e}")
            feedback = None
        if token != self._generation:
            return
        if feedback is not None:
            self.feedback_entries = feedback
        self.status = DashboardStatus.READY

    async def _load_admin(self, token: int) -> None:
        if not await self._initialize_collections():
            if token == self._generation:
                self._fail(RuntimeError("collections not initialized"), ADMIN_FAILED_MESSAGE)
            return
        try:
            stats = await self._call(self.store.get_admin_statistics)
        except Exception as e:
            logger.error(f"Error fetching admin statistics: {e}")
            if token == self._generation:
                self._fail(e, ADMIN_FAILED_MESSAGE)
            return
        if token != self._generation:
            return
        self.admin_stats = stats
        self.status = DashboardStatus.READY

    async def select_restaurant(self, restaurant_id: Optional[str]) -> None:
        """Switch restaurants; only the menu is reloaded."""
        if restaurant_id != self.selected_restaurant:
            self.menu_items = []
        self.selected_restaurant = restaurant_id
        self._menu_generation += 1
        menu_token = self._menu_generation
        if not restaurant_id:
            self.menu_items = []
            return
        try:
            items = await self._call(self.store.get_menu_items_by_restaurant, restaurant_id)
        except Exception as e:
            logger.error(f"Error fetching menu items for {restaurant_id}: {e}")
            if menu_token == self._menu_generation:
                self._fail(e, MENU_FAILED_MESSAGE)
            return
        if menu_token == self._menu_generation:
            self.menu_items = items

    # ---------------------- view ----------------------
    def snapshot(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "loading": self.status == DashboardStatus.LOADING,
            "role": self.auth.role,
            "userProfile": self.user_profile,
            "restaurants": self.restaurants,
            "selectedRestaurant": self.selected_restaurant,
            "menuItems": [with_profit(i) for i in self.menu_items],
            "feedbackEntries": self.feedback_entries,
            "adminStats": self.admin_stats,
            "error": asdict(self.error) if self.error else None,
            "collectionsInitialized": self.collections_initialized,
        }


@dataclass
class DashboardSession:
    provider: IdentityProvider
    auth: AuthState
    dashboard: DashboardState
    last_used: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_used = time.monotonic()

    def discard(self) -> None:
        self.dashboard.close()
        self.auth.close()


@dataclass
class SessionRegistry:
    """One dashboard session per signed-in uid, for the HTTP layer.

    Sessions idle for longer than `idle_timeout` seconds are closed the next
    time any session is opened.
    """
    admin_email: str
    store: Any = data_access
    timeout: float = config.FETCH_TIMEOUT_SECONDS
    idle_timeout: float = config.SESSION_IDLE_MIN * 60
    _sessions: Dict[str, DashboardSession] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def get(self, uid: str) -> Optional[DashboardSession]:
        return self._sessions.get(uid)

    async def open(self, principal: Principal) -> DashboardSession:
        await self.evict_idle()
        session = self._sessions.get(principal.uid)
        if session is None:
            # The lock only guards the map; start() runs unlocked.
            provider = IdentityProvider()
            auth = AuthState(provider, self.admin_email)
            dashboard = DashboardState(auth, self.store, self.timeout)
            await dashboard.start()
            fresh = DashboardSession(provider, auth, dashboard)
            async with self._lock:
                session = self._sessions.setdefault(principal.uid, fresh)
            if session is fresh:
                logger.info(f"Dashboard session opened for {principal.uid}")
            else:
                fresh.discard()
        session.touch()
        session.provider.restore_session(principal)
        return session

    async def evict_idle(self) -> int:
        now = time.monotonic()
        async with self._lock:
            idle = [uid for uid, s in self._sessions.items() if now - s.last_used > self.idle_timeout]
        for uid in idle:
            logger.info(f"Evicting idle dashboard session for {uid}")
            await self.close(uid)
        return len(idle)

    async def close(self, uid: str) -> None:
        session = self._sessions.pop(uid, None)
        if session is None:
            return
        await session.auth.logout()
        session.discard()
        logger.info(f"Dashboard session closed for {uid}")
