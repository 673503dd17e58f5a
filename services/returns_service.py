"""
Returns & Refunds Service
==========================
RMA lifecycle for merchant returns: initiation, authorization, item
inspection, refunds, return shipping and analytics.

Statuses are written as given; transitions are not enforced.

Tables:
  - return_reasons, returns, return_items, return_inspections
  - refund_transactions, return_shipping, return_analytics
"""

import random
from collections import Counter
from datetime import timedelta
from typing import List, Optional

from chat_logger import get_logger
from core.helpers import epoch_ms, now_iso, utc_now, days_between, round_money
from db_client import get_db, rows

logger = get_logger("omnisales")

RETURN_SHIPPING_FIELDS = (
    "outbound_carrier",
    "outbound_tracking_number",
    "inbound_carrier",
    "inbound_tracking_number",
    "is_prepaid",
    "shipping_label_url",
    "return_instructions_url",
    "shipping_status",
    "shipped_at",
    "received_at",
)


def generate_rma_number() -> str:
    return f"RMA-{epoch_ms()}-{random.randint(0, 999)}"


def _insert(table: str, row: dict, action: str) -> Optional[dict]:
    result = get_db().insert(table, row)
    if not result["success"]:
        logger.error(f"Error {action}: {result['error']}")
        return None
    return result["data"]


def _update(table: str, values: dict, filters: dict, action: str) -> bool:
    result = get_db().update(table, values, filters)
    if not result["success"]:
        logger.error(f"Error {action}: {result['error']}")
    return result["success"]


# ─────────────────────────────────────────────
# RETURN REASONS
# ─────────────────────────────────────────────

def get_return_reasons() -> List[dict]:
    return rows(get_db().select("return_reasons", {"is_active": True}, order="reason_name"))


# ─────────────────────────────────────────────
# RETURNS
# ─────────────────────────────────────────────

def initiate_return(user_id: str, data: dict) -> Optional[dict]:
    now = now_iso()
    created = _insert("returns", {
        "user_id": user_id,
        "order_id": data.get("order_id"),
        "customer_id": data.get("customer_id"),
        "rma_number": generate_rma_number(),
        "return_reason_id": data.get("return_reason_id"),
        "reason_details": data.get("reason_details"),
        "return_status": "pending",
        "customer_notes": data.get("customer_notes"),
        "created_at": now,
        "updated_at": now,
    }, "initiating return")
    if created:
        logger.info(f"Return initiated | rma={created.get('rma_number')} | order={created.get('order_id')}")
    return created


def get_return(return_id: str) -> Optional[dict]:
    return get_db().select_one("returns", {"id": return_id})


def get_returns(user_id: str, status: Optional[str] = None) -> List[dict]:
    filters = {"user_id": user_id}
    if status:
        filters["return_status"] = status
    return rows(get_db().select("returns", filters, order="created_at.desc"))


def authorize_return(user_id: str, return_id: str, authorization_code: Optional[str] = None) -> bool:
    now = now_iso()
    return _update("returns", {
        "return_status": "authorized",
        "authorization_code": authorization_code or f"AUTH-{epoch_ms()}",
        "authorized_at": now,
        "authorized_by": user_id,
        "updated_at": now,
    }, {"id": return_id}, "authorizing return")


def update_return_status(return_id: str, new_status: str) -> bool:
    return _update("returns", {"return_status": new_status, "updated_at": now_iso()},
                   {"id": return_id}, "updating return status")


def approve_return(return_id: str, refund_amount: Optional[float] = None,
                   restocking_fee_percentage: Optional[float] = None) -> bool:
    """Approve, deducting a restocking fee of amount x pct / 100 from the refund."""
    restocking_fee = 0.0
    if refund_amount and restocking_fee_percentage:
        restocking_fee = round_money(refund_amount * restocking_fee_percentage / 100)

    return _update("returns", {
        "return_status": "approved",
        "refund_amount": round_money(refund_amount - restocking_fee) if refund_amount else refund_amount,
        "restocking_fee_applied": restocking_fee,
        "restocking_fee_percentage": restocking_fee_percentage,
        "updated_at": now_iso(),
    }, {"id": return_id}, "approving return")


def reject_return(return_id: str, reason: str) -> bool:
    return _update("returns", {"return_status": "rejected", "notes": reason, "updated_at": now_iso()},
                   {"id": return_id}, "rejecting return")


# ─────────────────────────────────────────────
# RETURN ITEMS & INSPECTIONS
# ─────────────────────────────────────────────

def add_return_item(return_id: str, data: dict) -> Optional[dict]:
    return _insert("return_items", {
        "return_id": return_id,
        "order_item_id": data.get("order_item_id"),
        "product_id": data.get("product_id"),
        "product_name": data.get("product_name"),
        "quantity_returned": data.get("quantity_returned"),
        "inspection_status": "pending",
        "created_at": now_iso(),
    }, "adding return item")


def get_return_items(return_id: str) -> List[dict]:
    return rows(get_db().select("return_items", {"return_id": return_id}))


def update_return_item_condition(item_id: str, condition: str) -> bool:
    return _update("return_items", {"item_condition": condition}, {"id": item_id},
                   "updating return item condition")


def create_return_inspection(return_item_id: str, data: dict) -> Optional[dict]:
    now = now_iso()
    inspection = _insert("return_inspections", {
        "return_item_id": return_item_id,
        "inspection_date": now,
        "inspector_name": data.get("inspector_name"),
        "condition_assessment": data.get("condition_assessment"),
        "is_resellable": data.get("is_resellable"),
        "damages_found": data.get("damages_found"),
        "photos_url": data.get("photos_url"),
        "inspection_result": data.get("inspection_result"),
        "notes": data.get("notes"),
        "created_at": now,
    }, "creating return inspection")
    if inspection is None:
        return None

    _update("return_items", {"inspection_status": "completed"}, {"id": return_item_id},
            "marking return item inspected")
    return inspection


def get_return_inspections(return_item_id: str) -> List[dict]:
    return rows(get_db().select(
        "return_inspections", {"return_item_id": return_item_id}, order="inspection_date.desc"
    ))


# ─────────────────────────────────────────────
# REFUNDS
# ─────────────────────────────────────────────

def process_refund(user_id: str, return_id: str, data: dict) -> Optional[dict]:
    now = now_iso()
    transaction = _insert("refund_transactions", {
        "user_id": user_id,
        "return_id": return_id,
        "order_payment_id": data.get("order_payment_id"),
        "refund_amount": data.get("refund_amount"),
        "refund_method": data.get("refund_method"),
        "payment_method": data.get("payment_method"),
        "refund_status": "approved",
        "processed_at": now,
        "created_at": now,
        "updated_at": now,
    }, "processing refund")
    if transaction is None:
        return None

    _update("returns", {
        "refund_status": "processed",
        "refund_processed_at": now,
        "refund_amount": data.get("refund_amount"),
        "updated_at": now,
    }, {"id": return_id}, "marking return refunded")
    logger.info(f"Refund processed | return={return_id} | amount={data.get('refund_amount')}")
    return transaction


def get_refund_transaction(return_id: str) -> Optional[dict]:
    return get_db().select_one("refund_transactions", {"return_id": return_id})


def get_refund_transactions(user_id: str) -> List[dict]:
    return rows(get_db().select("refund_transactions", {"user_id": user_id}, order="created_at.desc"))


# ─────────────────────────────────────────────
# RETURN SHIPPING
# ─────────────────────────────────────────────

def setup_return_shipping(return_id: str, data: dict) -> Optional[dict]:
    now = now_iso()
    shipping = _insert("return_shipping", {
        "return_id": return_id,
        "outbound_carrier": data.get("outbound_carrier"),
        "outbound_tracking_number": data.get("outbound_tracking_number"),
        "is_prepaid": bool(data.get("is_prepaid", False)),
        "shipping_label_url": data.get("shipping_label_url"),
        "return_instructions_url": data.get("return_instructions_url"),
        "shipping_status": "pending",
        "created_at": now,
        "updated_at": now,
    }, "setting up return shipping")
    if shipping is None:
        return None

    update_return_status(return_id, "awaiting_return")
    return shipping


def update_return_shipping(return_shipping_id: str, updates: dict) -> bool:
    values = {k: v for k, v in updates.items() if k in RETURN_SHIPPING_FIELDS}
    values["updated_at"] = now_iso()
    return _update("return_shipping", values, {"id": return_shipping_id}, "updating return shipping")


def get_return_shipping(return_id: str) -> Optional[dict]:
    return get_db().select_one("return_shipping", {"return_id": return_id})


# ─────────────────────────────────────────────
# ANALYTICS
# ─────────────────────────────────────────────

def record_return_analytics(user_id: str, data: dict) -> Optional[dict]:
    return _insert("return_analytics", {
        "user_id": user_id,
        "period_start_date": data.get("period_start_date"),
        "period_end_date": data.get("period_end_date"),
        "total_returns": data.get("total_returns") or 0,
        "total_return_value": data.get("total_return_value"),
        "total_refunded": data.get("total_refunded"),
        "return_rate": data.get("return_rate"),
        "average_days_to_return": data.get("average_days_to_return"),
        "average_days_to_refund": data.get("average_days_to_refund"),
        "resellable_items": data.get("resellable_items"),
        "unrepairable_items": data.get("unrepairable_items"),
        "restocking_fees_collected": data.get("restocking_fees_collected"),
        "top_return_reason": data.get("top_return_reason"),
        "refund_method_breakdown": data.get("refund_method_breakdown"),
        "return_by_category": data.get("return_by_category"),
        "created_at": now_iso(),
    }, "recording return analytics")


def get_return_analytics(user_id: str, days: int = 30) -> List[dict]:
    since = (utc_now() - timedelta(days=days)).isoformat()
    return rows(get_db().select(
        "return_analytics",
        {"user_id": user_id, "period_start_date": ("gte", since)},
        order="period_start_date.desc",
    ))


def get_return_statistics(user_id: str) -> Optional[dict]:
    db = get_db()
    returns = db.select("returns", {"user_id": user_id})
    if not returns["success"]:
        logger.error(f"Error fetching return statistics: {returns['error']}")
        return None

    all_returns = rows(returns)
    pending_returns = sum(1 for r in all_returns if r.get("return_status") == "pending")
    pending_refunds = len(rows(db.select(
        "refund_transactions", {"user_id": user_id, "refund_status": "pending"}, columns="id"
    )))

    stats = {
        "total_returns": len(all_returns),
        "total_return_value": 0.0,
        "average_refund_amount": 0.0,
        "average_days_to_refund": 0,
        "resellable_percentage": 0.0,
        "most_common_reason": "N/A",
        "pending_returns": pending_returns,
        "pending_refunds": pending_refunds,
    }
    if not all_returns:
        return stats

    total_value = sum(float(r.get("refund_amount") or 0) for r in all_returns)
    stats["total_return_value"] = round_money(total_value)
    stats["average_refund_amount"] = round_money(total_value / len(all_returns))

    refunded = [r for r in all_returns if r.get("refund_processed_at")]
    if refunded:
        total_days = sum(days_between(r["created_at"], r["refund_processed_at"]) for r in refunded)
        stats["average_days_to_refund"] = int(total_days / len(refunded))

    reasons = Counter(r["return_reason_id"] for r in all_returns if r.get("return_reason_id"))
    if reasons:
        reason_id, _ = reasons.most_common(1)[0]
        reason = db.select_one("return_reasons", {"id": reason_id})
        stats["most_common_reason"] = reason.get("reason_name", reason_id) if reason else reason_id

    stats["resellable_percentage"] = _resellable_percentage([r["id"] for r in all_returns])
    return stats


def _resellable_percentage(return_ids: List[str]) -> float:
    db = get_db()
    items = rows(db.select("return_items", {"return_id": ("in", return_ids)}, columns="id"))
    if not items:
        return 0.0
    inspections = rows(db.select(
        "return_inspections", {"return_item_id": ("in", [i["id"] for i in items])}
    ))
    if not inspections:
        return 0.0
    resellable = sum(1 for i in inspections if i.get("is_resellable"))
    return round(resellable / len(inspections) * 100, 2)
