"""
Wishlist Service
=================
Customer wishlists: items, share links, price tracking and per-wishlist
analytics snapshots.

Tables:
  - wishlists, wishlist_items, wishlist_shares
  - wishlist_price_history, wishlist_preferences, wishlist_analytics
"""

from datetime import timedelta
from typing import List, Optional

from chat_logger import get_logger
from core.helpers import generate_id, now_iso, utc_now, parse_timestamp, round_money
from db_client import get_db, rows

logger = get_logger("omnisales")

DEFAULT_PREFERENCES = {
    "notify_price_drops": True,
    "price_drop_threshold": 10,
    "notify_back_in_stock": True,
    "notify_shared_wishlists": True,
    "weekly_digest": False,
    "default_wishlist_visibility": "private",
}


def _with_items(wishlist: dict, items: List[dict]) -> dict:
    return {
        **wishlist,
        "items": items,
        "item_count": len(items),
        "total_value": round_money(sum(float(i.get("current_price") or 0) for i in items)),
    }


def _drop_percent(item: dict) -> float:
    added = float(item.get("price_at_added") or 0)
    current = float(item.get("current_price") or 0)
    if added <= 0 or current >= added:
        return 0.0
    return round((added - current) / added * 100, 2)


# ─────────────────────────────────────────────
# WISHLISTS
# ─────────────────────────────────────────────

def create_wishlist(user_id: str, data: dict) -> Optional[dict]:
    now = now_iso()
    result = get_db().insert("wishlists", {
        "user_id": user_id,
        "customer_email": data.get("customer_email"),
        "wishlist_name": data.get("wishlist_name"),
        "description": data.get("description"),
        "is_public": bool(data.get("is_public", False)),
        "created_at": now,
        "updated_at": now,
    })
    if not result["success"]:
        logger.error(f"Error creating wishlist: {result['error']}")
        return None
    return result["data"]


def get_user_wishlists(user_id: str, customer_email: str) -> List[dict]:
    db = get_db()
    wishlists = rows(db.select(
        "wishlists", {"user_id": user_id, "customer_email": customer_email}, order="created_at.desc"
    ))
    return [
        _with_items(w, rows(db.select("wishlist_items", {"wishlist_id": w["id"]})))
        for w in wishlists
    ]


def get_wishlist_with_items(wishlist_id: str) -> Optional[dict]:
    db = get_db()
    wishlist = db.select_one("wishlists", {"id": wishlist_id})
    if not wishlist:
        return None
    items = rows(db.select("wishlist_items", {"wishlist_id": wishlist_id}, order="priority.desc,created_at.desc"))
    return _with_items(wishlist, items)


def update_wishlist_visibility(wishlist_id: str, is_public: bool) -> bool:
    result = get_db().update("wishlists", {"is_public": is_public, "updated_at": now_iso()}, {"id": wishlist_id})
    if not result["success"]:
        logger.error(f"Error updating wishlist visibility {wishlist_id}: {result['error']}")
    return result["success"]


def delete_wishlist(wishlist_id: str) -> bool:
    db = get_db()
    db.delete("wishlist_items", {"wishlist_id": wishlist_id})
    result = db.delete("wishlists", {"id": wishlist_id})
    if not result["success"]:
        logger.error(f"Error deleting wishlist {wishlist_id}: {result['error']}")
    return result["success"]


# ─────────────────────────────────────────────
# ITEMS
# ─────────────────────────────────────────────

def add_wishlist_item(user_id: str, wishlist_id: str, item: dict) -> Optional[dict]:
    now = now_iso()
    result = get_db().insert("wishlist_items", {
        "user_id": user_id,
        "wishlist_id": wishlist_id,
        "product_id": item.get("product_id"),
        "product_name": item.get("product_name"),
        "product_image": item.get("product_image"),
        "price_at_added": item.get("price_at_added"),
        "current_price": item.get("current_price", item.get("price_at_added")),
        "priority": item.get("priority") or 0,
        "notes": item.get("notes"),
        "quantity_desired": item.get("quantity_desired") or 1,
        "created_at": now,
        "updated_at": now,
    })
    if not result["success"]:
        logger.error(f"Error adding wishlist item: {result['error']}")
        return None

    update_wishlist_analytics(user_id, wishlist_id)
    return result["data"]


def remove_wishlist_item(user_id: str, wishlist_id: str, item_id: str) -> bool:
    result = get_db().delete("wishlist_items", {"id": item_id, "wishlist_id": wishlist_id})
    if not result["success"]:
        logger.error(f"Error removing wishlist item {item_id}: {result['error']}")
        return False

    update_wishlist_analytics(user_id, wishlist_id)
    return True


# ─────────────────────────────────────────────
# SHARING
# ─────────────────────────────────────────────

def share_wishlist(user_id: str, wishlist_id: str, share: dict) -> Optional[dict]:
    expires_at = share.get("expires_at")
    result = get_db().insert("wishlist_shares", {
        "user_id": user_id,
        "wishlist_id": wishlist_id,
        "share_email": share.get("share_email"),
        "share_name": share.get("share_name"),
        "share_token": generate_id("wl", 9),
        "share_type": share.get("share_type") or "link",
        "expires_at": parse_timestamp(expires_at).isoformat() if expires_at else None,
        "can_edit": bool(share.get("can_edit", False)),
        "view_count": 0,
        "created_at": now_iso(),
    })
    if not result["success"]:
        logger.error(f"Error sharing wishlist {wishlist_id}: {result['error']}")
        return None
    return result["data"]


def get_shared_wishlist(share_token: str) -> Optional[dict]:
    """Wishlist behind a share token; None when unknown or expired. Counts the view."""
    db = get_db()
    share = db.select_one("wishlist_shares", {"share_token": share_token})
    if not share:
        return None

    expires_at = parse_timestamp(share.get("expires_at"))
    if expires_at and expires_at < utc_now():
        logger.info(f"Wishlist share expired | wishlist={share.get('wishlist_id')}")
        return None

    db.update("wishlist_shares", {
        "view_count": int(share.get("view_count") or 0) + 1,
        "accessed_at": now_iso(),
    }, {"share_token": share_token})
    return get_wishlist_with_items(share["wishlist_id"])


# ─────────────────────────────────────────────
# PRICE TRACKING
# ─────────────────────────────────────────────

def track_price_change(user_id: str, wishlist_item_id: str, new_price: float) -> Optional[dict]:
    db = get_db()
    item = db.select_one("wishlist_items", {"id": wishlist_item_id})
    if not item:
        return None

    old_price = float(item.get("current_price") or 0)
    drop_amount = old_price - new_price
    drop_percent = (drop_amount / old_price * 100) if old_price else 0.0

    result = db.insert("wishlist_price_history", {
        "user_id": user_id,
        "wishlist_item_id": wishlist_item_id,
        "old_price": old_price,
        "new_price": new_price,
        "price_drop_amount": round_money(max(0.0, drop_amount)),
        "price_drop_percent": round(max(0.0, drop_percent), 2),
        "price_checked_at": now_iso(),
        "created_at": now_iso(),
    })
    if not result["success"]:
        logger.error(f"Error recording wishlist price change: {result['error']}")
        return None

    db.update("wishlist_items", {"current_price": new_price, "updated_at": now_iso()}, {"id": wishlist_item_id})
    return result["data"]


def get_item_price_history(wishlist_item_id: str) -> List[dict]:
    return rows(get_db().select(
        "wishlist_price_history", {"wishlist_item_id": wishlist_item_id}, order="created_at.desc"
    ))


def get_price_drop_alerts(user_id: str, threshold_percent: float = 10) -> List[dict]:
    """Items whose current price is at least threshold_percent below the price when added."""
    alerts = []
    for item in rows(get_db().select("wishlist_items", {"user_id": user_id})):
        percent = _drop_percent(item)
        if percent > 0 and percent >= threshold_percent:
            alerts.append({
                **item,
                "price_drop_amount": round_money(float(item["price_at_added"]) - float(item["current_price"])),
                "price_drop_percent": percent,
            })
    alerts.sort(key=lambda a: a["price_drop_percent"], reverse=True)
    return alerts


# ─────────────────────────────────────────────
# PREFERENCES
# ─────────────────────────────────────────────

def update_wishlist_preferences(user_id: str, customer_email: str, preferences: dict) -> Optional[dict]:
    db = get_db()
    existing = db.select_one("wishlist_preferences", {"customer_email": customer_email})
    current = existing or DEFAULT_PREFERENCES
    values = {}
    for key, default in DEFAULT_PREFERENCES.items():
        value = preferences.get(key)
        values[key] = value if value is not None else current.get(key, default)
    values["updated_at"] = now_iso()

    if existing:
        result = db.update("wishlist_preferences", values, {"id": existing["id"]})
        updated = rows(result)
        if not result["success"]:
            logger.error(f"Error updating wishlist preferences: {result['error']}")
        return updated[0] if updated else None

    result = db.insert("wishlist_preferences", {"user_id": user_id, "customer_email": customer_email, **values})
    if not result["success"]:
        logger.error(f"Error saving wishlist preferences: {result['error']}")
        return None
    return result["data"]


def get_wishlist_preferences(customer_email: str) -> Optional[dict]:
    return get_db().select_one("wishlist_preferences", {"customer_email": customer_email})


# ─────────────────────────────────────────────
# ANALYTICS
# ─────────────────────────────────────────────

def update_wishlist_analytics(user_id: str, wishlist_id: str) -> Optional[dict]:
    """Record a snapshot: item count, total/average value, share count, price drops."""
    db = get_db()
    items = rows(db.select("wishlist_items", {"wishlist_id": wishlist_id}))
    total_value = sum(float(i.get("current_price") or 0) for i in items)
    shares = rows(db.select("wishlist_shares", {"wishlist_id": wishlist_id}, columns="id"))

    result = db.insert("wishlist_analytics", {
        "user_id": user_id,
        "wishlist_id": wishlist_id,
        "date": now_iso(),
        "total_items": len(items),
        "total_value": round_money(total_value),
        "average_price": round_money(total_value / len(items)) if items else 0.0,
        "share_count": len(shares),
        "price_drop_count": sum(1 for i in items if _drop_percent(i) > 0),
    })
    if not result["success"]:
        logger.error(f"Error updating wishlist analytics {wishlist_id}: {result['error']}")
        return None
    return result["data"]


def get_wishlist_analytics(wishlist_id: str, days: int = 30) -> List[dict]:
    since = (utc_now() - timedelta(days=days)).isoformat()
    return rows(get_db().select(
        "wishlist_analytics", {"wishlist_id": wishlist_id, "date": ("gte", since)}, order="date"
    ))
