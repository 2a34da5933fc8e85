"""
Data access functions for the dashboard collections.

List fetches keyed by owner/restaurant/user never fail on a missing index:
they bootstrap the collection and return an empty list, so an empty result
may only mean "not available yet". Everything else propagates.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pymongo import ASCENDING

from database import (
    count_documents,
    create_document,
    delete_document,
    get_collection,
    get_document,
    get_documents,
    new_id,
    now_utc,
    set_document,
    update_document,
)
from errors import DocumentNotFoundError, is_index_error
from menu_utils import sort_menu_items
from schemas import (
    COLLECTIONS,
    FEEDBACK,
    FEEDBACK_STATUS_ORDER,
    MENU_ITEMS,
    RESTAURANTS,
    USERS,
    AdminStatistics,
    Feedback,
    MenuItem,
    Restaurant,
    UserProfile,
)

logger = logging.getLogger(__name__)

# Dummy documents shaped like real ones so every inferred index has data to index.
_BOOTSTRAP_DOCS = {
    USERS: {"initialized": True, "name": "", "status": "active"},
    RESTAURANTS: {"name": "Initialization Restaurant", "ownerId": "system", "status": "active"},
    MENU_ITEMS: {"name": "Initialization Item", "restaurantId": "system", "category": "system",
                 "price": 0, "cost": 0},
    FEEDBACK: {"userId": "system", "feedbackType": "system",
               "feedbackText": "Initialization feedback", "status": "pending"},
}

INDEXES = {
    RESTAURANTS: [[("ownerId", ASCENDING)]],
    MENU_ITEMS: [[("restaurantId", ASCENDING)],
                 [("restaurantId", ASCENDING), ("category", ASCENDING), ("name", ASCENDING)]],
    FEEDBACK: [[("userId", ASCENDING)]],
}


def _by_created_desc(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    dated = [r for r in records if r.get("createdAt")]
    undated = [r for r in records if not r.get("createdAt")]
    dated.sort(key=lambda r: r["createdAt"], reverse=True)
    return dated + undated


# ---------------------- Bootstrap ----------------------
def bootstrap_collection(collection_name: str) -> None:
    """Write and immediately delete a throwaway document. Best effort."""
    dummy_id = new_id()
    try:
        set_document(collection_name, dummy_id, {"dummy": True})
        delete_document(collection_name, dummy_id)
    except Exception as e:
        logger.error(f"Error bootstrapping '{collection_name}' collection: {e}")


def ensure_indexes() -> None:
    """Create the equality and ordering indexes the list queries rely on."""
    for collection_name, key_sets in INDEXES.items():
        coll = get_collection(collection_name)
        for keys in key_sets:
            coll.create_index(keys)
    logger.info("Collection indexes ensured")


def initialize_collections() -> bool:
    logger.info("Initializing collections")
    for collection_name in COLLECTIONS:
        dummy_id = "dummy-doc"
        try:
            doc = {"initialized": True, "createdAt": now_utc()}
            doc.update(_BOOTSTRAP_DOCS[collection_name])
            set_document(collection_name, dummy_id, doc)
            delete_document(collection_name, dummy_id)
        except Exception as e:
            logger.error(f"Error initializing '{collection_name}' collection: {e}")
    logger.info("Collections initialized")
    return True


def _list_or_bootstrap(collection_name: str, filter_dict: Dict[str, Any]) -> List[Dict[str, Any]]:
    try:
        return get_documents(collection_name, filter_dict)
    except Exception as e:
        if not is_index_error(e):
            logger.error(f"Error querying '{collection_name}' with {filter_dict}: {e}")
            raise
        logger.warning(f"Index for '{collection_name}' not ready, bootstrapping collection: {e}")
        bootstrap_collection(collection_name)
        return []


# ---------------------- Users ----------------------
def create_user_profile(uid: str, data: Dict[str, Any]) -> str:
    logger.info(f"Creating user profile for {uid}")
    doc = dict(data)
    ts = now_utc()
    doc["createdAt"] = ts
    doc["updatedAt"] = ts
    return set_document(USERS, uid, doc, merge=True)


def get_user_profile(uid: str) -> Dict[str, Any]:
    profile = get_document(USERS, uid)
    if profile:
        return profile
    logger.info(f"No profile for {uid}, creating default profile")
    default = UserProfile().model_dump(by_alias=True, exclude_none=True)
    default["createdAt"] = now_utc()
    set_document(USERS, uid, default)
    return {"id": uid, **default}


def update_user_profile(uid: str, data: Dict[str, Any]) -> str:
    try:
        return update_document(USERS, uid, data)
    except DocumentNotFoundError:
        logger.info(f"Profile {uid} missing on update, creating it")
        return create_user_profile(uid, {**UserProfile().model_dump(by_alias=True, exclude_none=True), **data})


def get_all_users() -> List[Dict[str, Any]]:
    return _by_created_desc(get_documents(USERS))


def delete_user_profile(uid: str) -> None:
    # The identity account is left untouched.
    if not delete_document(USERS, uid):
        raise DocumentNotFoundError(USERS, uid)


# ---------------------- Restaurants ----------------------
def create_restaurant(data: Union[Restaurant, Dict[str, Any]]) -> str:
    if isinstance(data, Restaurant):
        data = data.model_dump(by_alias=True, exclude_none=True)
    else:
        data = dict(data)
    if not data.get("ownerId") and data.get("ownerEmail"):
        data["ownerId"] = data["ownerEmail"]
    rid = create_document(RESTAURANTS, data)
    logger.info(f"Restaurant created with id {rid}")
    return rid


def get_restaurant(restaurant_id: str) -> Optional[Dict[str, Any]]:
    return get_document(RESTAURANTS, restaurant_id)


def get_restaurants_by_owner(owner_id: str) -> List[Dict[str, Any]]:
    restaurants = _list_or_bootstrap(RESTAURANTS, {"ownerId": owner_id})
    logger.info(f"Found {len(restaurants)} restaurants for owner {owner_id}")
    return restaurants


def get_all_restaurants() -> List[Dict[str, Any]]:
    restaurants = _by_created_desc(get_documents(RESTAURANTS))
    for r in restaurants:
        r["menuItemCount"] = count_menu_items(r["id"])
    return restaurants


def update_restaurant(restaurant_id: str, data: Dict[str, Any]) -> str:
    return update_document(RESTAURANTS, restaurant_id, data)


def delete_restaurant(restaurant_id: str) -> None:
    # Menu items referencing this restaurant are left in place.
    if not delete_document(RESTAURANTS, restaurant_id):
        raise DocumentNotFoundError(RESTAURANTS, restaurant_id)
    logger.info(f"Restaurant {restaurant_id} deleted")


# ---------------------- Menu items ----------------------
def create_menu_item(data: Union[MenuItem, Dict[str, Any]]) -> str:
    mid = create_document(MENU_ITEMS, data)
    logger.info(f"Menu item created with id {mid}")
    return mid


def get_menu_items_by_restaurant(restaurant_id: str) -> List[Dict[str, Any]]:
    # Unordered fetch; category/name ordering needs an index that may not exist.
    items = _list_or_bootstrap(MENU_ITEMS, {"restaurantId": restaurant_id})
    logger.info(f"Found {len(items)} menu items for restaurant {restaurant_id}")
    return sort_menu_items(items)


def count_menu_items(restaurant_id: str) -> int:
    return count_documents(MENU_ITEMS, {"restaurantId": restaurant_id})


def update_menu_item(item_id: str, data: Dict[str, Any]) -> str:
    return update_document(MENU_ITEMS, item_id, data)


def delete_menu_item(item_id: str) -> None:
    if not delete_document(MENU_ITEMS, item_id):
        raise DocumentNotFoundError(MENU_ITEMS, item_id)


# ---------------------- Feedback ----------------------
def create_feedback(data: Union[Feedback, Dict[str, Any]]) -> str:
    if isinstance(data, Feedback):
        data = data.model_dump(by_alias=True, exclude_none=True)
    doc = dict(data)
    doc["status"] = "pending"
    fid = create_document(FEEDBACK, doc)
    logger.info(f"Feedback created with id {fid}")
    return fid


def get_user_feedback(uid: str) -> List[Dict[str, Any]]:
    entries = _list_or_bootstrap(FEEDBACK, {"userId": uid})
    logger.info(f"Found {len(entries)} feedback entries for user {uid}")
    return _by_created_desc(entries)


def get_all_feedback() -> List[Dict[str, Any]]:
    return _by_created_desc(get_documents(FEEDBACK))


def update_feedback_status(feedback_id: str, status: str, response: Optional[str] = None) -> Dict[str, Any]:
    """Move feedback forward along pending -> reviewed -> responded."""
    current = get_document(FEEDBACK, feedback_id)
    if current is None:
        raise DocumentNotFoundError(FEEDBACK, feedback_id)
    old = current.get("status", "pending")
    if FEEDBACK_STATUS_ORDER.index(status) < FEEDBACK_STATUS_ORDER.index(old):
        raise ValueError(f"Cannot move feedback from '{old}' back to '{status}'")
    changes: Dict[str, Any] = {"status": status}
    if status == "responded":
        if not response or not response.strip():
            raise ValueError("A response is required to mark feedback as responded")
        changes["response"] = response.strip()
        changes["respondedAt"] = now_utc()
    update_document(FEEDBACK, feedback_id, changes)
    current.update(changes)
    return current


# ---------------------- Admin ----------------------
def get_admin_statistics() -> Dict[str, Any]:
    try:
        for collection_name in COLLECTIONS:
            try:
                get_documents(collection_name, limit=1)
            except Exception:
                logger.info(f"Creating '{collection_name}' collection if needed")
                bootstrap_collection(collection_name)
        stats = AdminStatistics(
            total_users=count_documents(USERS),
            total_restaurants=count_documents(RESTAURANTS),
            total_menu_items=count_documents(MENU_ITEMS),
            total_feedback=count_documents(FEEDBACK),
        )
    except Exception as e:
        logger.error(f"Error getting admin statistics: {e}")
        stats = AdminStatistics(error=str(e) or e.__class__.__name__)
    return stats.model_dump(by_alias=True, exclude_none=True)
