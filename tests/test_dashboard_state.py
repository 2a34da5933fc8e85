import asyncio
import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

from pymongo.errors import OperationFailure

import data_access
from auth_state import AuthState
from dashboard_state import (
    ADMIN_FAILED_MESSAGE,
    INDEX_BUILDING_MESSAGE,
    PROFILE_FAILED_MESSAGE,
    DashboardState,
    DashboardStatus,
    SessionRegistry,
)
from identity import IdentityProvider, Principal

USER = Principal(uid="u1", email="cook@example.com", display_name="Sam")
OTHER = Principal(uid="u2", email="rival@example.com", display_name="Rex")


def _auth(role="user", principal=USER):
    return SimpleNamespace(current_user=principal, role=role, subscribe=lambda listener: (lambda: None))


def _store(**overrides):
    store = MagicMock()
    store.get_user_profile.return_value = {"id": "u1", "name": "Sam", "status": "active"}
    store.get_restaurants_by_owner.return_value = [{"id": "r1", "name": "Diner"}, {"id": "r2", "name": "Cafe"}]
    store.get_menu_items_by_restaurant.return_value = [{"id": "m1", "name": "Fries", "category": "Side",
                                                        "price": 4.0, "cost": 1.0}]
    store.get_user_feedback.return_value = [{"id": "f1", "status": "pending"}]
    store.get_admin_statistics.return_value = {"totalUsers": 3, "totalRestaurants": 2,
                                               "totalMenuItems": 5, "totalFeedback": 1}
    store.initialize_collections.return_value = True
    for name, value in overrides.items():
        setattr(store, name, value)
    return store


def _refresh(dash):
    return asyncio.run(dash.refresh_data())


def test_user_chain_loads_everything():
    store = _store()
    dash = DashboardState(_auth(), store, timeout=2)
    assert _refresh(dash) == DashboardStatus.READY
    assert dash.user_profile["name"] == "Sam"
    assert [r["id"] for r in dash.restaurants] == ["r1", "r2"]
    assert dash.selected_restaurant == "r1"
    store.get_menu_items_by_restaurant.assert_called_once_with("r1")
    assert dash.menu_items[0]["name"] == "Fries"
    assert dash.feedback_entries == [{"id": "f1", "status": "pending"}]
    assert dash.error is None


def test_no_restaurants_skips_menu_and_is_ready():
    store = _store()
    store.get_restaurants_by_owner.return_value = []
    dash = DashboardState(_auth(), store, timeout=2)
    assert _refresh(dash) == DashboardStatus.READY
    assert dash.restaurants == []
    assert dash.selected_restaurant is None
    store.get_menu_items_by_restaurant.assert_not_called()


def test_soft_failures_do_not_stop_the_chain():
    store = _store()
    store.get_restaurants_by_owner.side_effect = OperationFailure("network blip")
    store.get_user_feedback.side_effect = OperationFailure("network blip")
    dash = DashboardState(_auth(), store, timeout=2)
    assert _refresh(dash) == DashboardStatus.READY
    assert dash.restaurants == []
    assert dash.feedback_entries == []
    assert dash.error is None


def test_menu_failure_is_soft():
    store = _store()
    store.get_menu_items_by_restaurant.side_effect = OperationFailure("network blip")
    dash = DashboardState(_auth(), store, timeout=2)
    assert _refresh(dash) == DashboardStatus.READY
    assert dash.menu_items == []
    store.get_user_feedback.assert_called_once_with("u1")


def test_profile_failure_is_fatal():
    store = _store()
    store.get_user_profile.side_effect = OperationFailure("not authorized", code=13)
    dash = DashboardState(_auth(), store, timeout=2)
    assert _refresh(dash) == DashboardStatus.PARTIAL_ERROR
    assert dash.error.message == PROFILE_FAILED_MESSAGE
    assert dash.error.is_index_error is False
    assert "not authorized" in dash.error.details
    store.get_restaurants_by_owner.assert_not_called()


def test_profile_index_failure_asks_to_wait():
    store = _store()
    store.get_user_profile.side_effect = OperationFailure("index not found", code=27)
    dash = DashboardState(_auth(), store, timeout=2)
    assert _refresh(dash) == DashboardStatus.PARTIAL_ERROR
    assert dash.error.message == INDEX_BUILDING_MESSAGE
    assert dash.error.is_index_error is True


def test_refresh_keeps_selected_restaurant():
    store = _store()
    dash = DashboardState(_auth(), store, timeout=2)
    _refresh(dash)
    asyncio.run(dash.select_restaurant("r2"))
    _refresh(dash)
    assert dash.selected_restaurant == "r2"
    assert store.get_menu_items_by_restaurant.call_args_list[-1].args == ("r2",)


def test_select_restaurant_only_fetches_menu():
    store = _store()
    dash = DashboardState(_auth(), store, timeout=2)
    _refresh(dash)
    store.reset_mock()
    asyncio.run(dash.select_restaurant("r2"))
    store.get_menu_items_by_restaurant.assert_called_once_with("r2")
    store.get_user_profile.assert_not_called()
    store.get_restaurants_by_owner.assert_not_called()
    store.get_user_feedback.assert_not_called()


def test_admin_chain_fetches_statistics_only():
    store = _store()
    dash = DashboardState(_auth(role="admin"), store, timeout=2)
    assert _refresh(dash) == DashboardStatus.READY
    assert dash.admin_stats["totalUsers"] == 3
    assert dash.collections_initialized is True
    store.get_user_profile.assert_not_called()


def test_admin_statistics_failure_is_fatal():
    store = _store()
    store.get_admin_statistics.side_effect = RuntimeError("boom")
    dash = DashboardState(_auth(role="admin"), store, timeout=2)
    assert _refresh(dash) == DashboardStatus.PARTIAL_ERROR
    assert dash.error.message == ADMIN_FAILED_MESSAGE


def test_timeout_counts_as_failure():
    store = _store()
    store.get_user_profile.side_effect = lambda uid: time.sleep(0.5)
    dash = DashboardState(_auth(), store, timeout=0.05)
    assert _refresh(dash) == DashboardStatus.PARTIAL_ERROR
    assert dash.error.message == PROFILE_FAILED_MESSAGE
    assert "did not complete" in dash.error.details


def test_stale_refresh_does_not_overwrite_newer_one():
    gate = threading.Event()
    calls = []

    def profile(uid):
        calls.append(uid)
        if len(calls) == 1:
            gate.wait(5)
            return {"id": uid, "name": "stale"}
        return {"id": uid, "name": "fresh"}

    store = _store()
    store.get_user_profile.side_effect = profile
    dash = DashboardState(_auth(), store, timeout=10)

    async def scenario():
        first = asyncio.create_task(dash.refresh_data())
        while not calls:
            await asyncio.sleep(0.01)
        await dash.refresh_data()
        gate.set()
        await first

    asyncio.run(scenario())
    assert dash.user_profile["name"] == "fresh"
    assert dash.status == DashboardStatus.READY


def test_snapshot_adds_profit():
    dash = DashboardState(_auth(), _store(), timeout=2)
    _refresh(dash)
    snap = dash.snapshot()
    assert snap["status"] == "ready"
    assert snap["role"] == "user"
    assert snap["menuItems"][0]["profit"] == 3.0
    assert snap["menuItems"][0]["margin"] == 75


def test_follows_auth_state_end_to_end(mongo):
    async def scenario():
        provider = IdentityProvider()
        auth = AuthState(provider, "owner@restaurent.com")
        dash = DashboardState(auth, data_access, timeout=5)
        await dash.start()
        assert dash.status == DashboardStatus.UNINITIALIZED
        await auth.signup("cook@example.com", "secret1", "Sam")
        await dash.wait_idle()
        ready = (dash.status, dash.user_profile["status"], dash.restaurants)
        await auth.logout()
        return dash, ready

    dash, (status, profile_status, restaurants) = asyncio.run(scenario())
    assert status == DashboardStatus.READY
    assert profile_status == "active"
    assert restaurants == []
    assert dash.collections_initialized is True
    assert dash.status == DashboardStatus.UNINITIALIZED
    assert dash.user_profile is None


def test_session_registry_reuses_sessions(mongo):
    async def scenario():
        registry = SessionRegistry("owner@restaurent.com", data_access, 5)
        first = await registry.open(USER)
        await first.dashboard.wait_idle()
        again = await registry.open(USER)
        await registry.close(USER.uid)
        return first, again, registry

    first, again, registry = asyncio.run(scenario())
    assert first is again
    assert first.dashboard.status == DashboardStatus.UNINITIALIZED
    assert registry.get(USER.uid) is None


def test_menu_cleared_when_selected_restaurant_disappears():
    store = _store()
    dash = DashboardState(_auth(), store, timeout=2)
    _refresh(dash)
    assert dash.selected_restaurant == "r1" and dash.menu_items
    store.get_restaurants_by_owner.return_value = [{"id": "r2", "name": "Cafe"}]
    store.get_menu_items_by_restaurant.side_effect = OperationFailure("network blip")
    assert _refresh(dash) == DashboardStatus.READY
    assert dash.selected_restaurant == "r2"
    assert dash.menu_items == []


def test_failed_selection_does_not_show_previous_menu():
    store = _store()
    dash = DashboardState(_auth(), store, timeout=2)
    _refresh(dash)
    store.get_menu_items_by_restaurant.side_effect = OperationFailure("network blip")
    asyncio.run(dash.select_restaurant("r2"))
    assert dash.selected_restaurant == "r2"
    assert dash.menu_items == []


def test_idle_sessions_are_evicted():
    async def scenario():
        registry = SessionRegistry("owner@restaurent.com", _store(), 2, idle_timeout=60)
        first = await registry.open(USER)
        await first.dashboard.wait_idle()
        first.last_used -= 120
        second = await registry.open(OTHER)
        await second.dashboard.wait_idle()
        return registry, first

    registry, first = asyncio.run(scenario())
    assert registry.get(USER.uid) is None
    assert registry.get(OTHER.uid) is not None
    assert first.auth.current_user is None
    assert first.dashboard.status == DashboardStatus.UNINITIALIZED


def test_recently_used_sessions_are_kept():
    async def scenario():
        registry = SessionRegistry("owner@restaurent.com", _store(), 2, idle_timeout=60)
        first = await registry.open(USER)
        await registry.open(OTHER)
        evicted = await registry.evict_idle()
        return registry, first, evicted

    registry, first, evicted = asyncio.run(scenario())
    assert evicted == 0
    assert registry.get(USER.uid) is first


def test_new_session_starts_outside_registry_lock():
    held = []
    store = _store()
    registry = SessionRegistry("owner@restaurent.com", store, 2)

    def initialize():
        held.append(registry._lock.locked())
        return True

    store.initialize_collections.side_effect = initialize

    async def scenario():
        await asyncio.gather(registry.open(USER), registry.open(OTHER))

    asyncio.run(scenario())
    assert held == [False, False]
    assert registry.get(USER.uid) is not None
    assert registry.get(OTHER.uid) is not None
