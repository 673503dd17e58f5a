"""
Dynamic Pricing Service
========================
Per-merchant pricing strategies and their adjustment rules, price history
and competitor price tracking.

Tables:
  - pricing_strategies        (user_id, strategy_name, strategy_type, priority, is_active)
  - pricing_rules             (strategy_id, price_adjustment_type/value, min_price, max_price)
  - product_pricing_history   (old_price, new_price, price_change_percentage, change_reason)
  - competitor_prices
"""

from datetime import timedelta
from typing import List, Optional

from app_config import PRICE_FLOOR_RATIO, PRICE_CEILING_RATIO
from chat_logger import get_logger
from core.helpers import now_iso, utc_now, compact, round_money
from db_client import get_db, rows

logger = get_logger("omnisales")

ADJUSTMENT_TYPES = ("percentage", "fixed_amount", "absolute")


# ─────────────────────────────────────────────
# STRATEGIES
# ─────────────────────────────────────────────

def create_pricing_strategy(user_id: str, strategy: dict) -> Optional[dict]:
    now = now_iso()
    result = get_db().insert("pricing_strategies", {
        "user_id": user_id,
        "strategy_name": strategy.get("strategy_name"),
        "strategy_type": strategy.get("strategy_type"),
        "description": strategy.get("description"),
        "is_active": True,
        "priority": strategy.get("priority") or 0,
        "created_at": now,
        "updated_at": now,
    })
    if not result["success"]:
        logger.error(f"Error creating pricing strategy: {result['error']}")
        return None
    return result["data"]


def get_pricing_strategies(user_id: str, active_only: bool = False) -> List[dict]:
    filters = {"user_id": user_id}
    if active_only:
        filters["is_active"] = True
    return rows(get_db().select("pricing_strategies", filters, order="priority.desc"))


def update_pricing_strategy(strategy_id: str, updates: dict) -> bool:
    values = compact({
        "strategy_name": updates.get("strategy_name"),
        "description": updates.get("description"),
        "is_active": updates.get("is_active"),
        "priority": updates.get("priority"),
    })
    values["updated_at"] = now_iso()
    result = get_db().update("pricing_strategies", values, {"id": strategy_id})
    if not result["success"]:
        logger.error(f"Error updating pricing strategy {strategy_id}: {result['error']}")
    return result["success"]


def delete_pricing_strategy(strategy_id: str) -> bool:
    db = get_db()
    db.delete("pricing_rules", {"strategy_id": strategy_id})
    return db.delete("pricing_strategies", {"id": strategy_id})["success"]


# ─────────────────────────────────────────────
# RULES
# ─────────────────────────────────────────────

def create_pricing_rule(user_id: str, rule: dict) -> Optional[dict]:
    adjustment_type = rule.get("price_adjustment_type")
    if adjustment_type and adjustment_type not in ADJUSTMENT_TYPES:
        logger.warning(f"Rejected pricing rule with adjustment type {adjustment_type}")
        return None

    now = now_iso()
    result = get_db().insert("pricing_rules", {
        "user_id": user_id,
        "strategy_id": rule.get("strategy_id"),
        "rule_name": rule.get("rule_name"),
        "rule_type": rule.get("rule_type"),
        "condition_field": rule.get("condition_field"),
        "condition_operator": rule.get("condition_operator"),
        "condition_value": rule.get("condition_value"),
        "price_adjustment_type": adjustment_type,
        "price_adjustment_value": rule.get("price_adjustment_value"),
        "min_price": rule.get("min_price"),
        "max_price": rule.get("max_price"),
        "is_active": True,
        "priority": rule.get("priority") or 0,
        "created_at": now,
        "updated_at": now,
    })
    if not result["success"]:
        logger.error(f"Error creating pricing rule: {result['error']}")
        return None
    return result["data"]


def get_pricing_rules(strategy_id: str) -> List[dict]:
    """Active rules of a strategy, highest priority first."""
    return rows(get_db().select(
        "pricing_rules", {"strategy_id": strategy_id, "is_active": True}, order="priority.desc"
    ))


def update_pricing_rule(rule_id: str, updates: dict) -> bool:
    values = compact({
        "rule_name": updates.get("rule_name"),
        "price_adjustment_value": updates.get("price_adjustment_value"),
        "min_price": updates.get("min_price"),
        "max_price": updates.get("max_price"),
        "is_active": updates.get("is_active"),
        "priority": updates.get("priority"),
    })
    values["updated_at"] = now_iso()
    result = get_db().update("pricing_rules", values, {"id": rule_id})
    if not result["success"]:
        logger.error(f"Error updating pricing rule {rule_id}: {result['error']}")
    return result["success"]


def delete_pricing_rule(rule_id: str) -> bool:
    return get_db().delete("pricing_rules", {"id": rule_id})["success"]


# ─────────────────────────────────────────────
# DYNAMIC PRICE CALCULATION
# ─────────────────────────────────────────────

def apply_pricing_rule(price: float, rule: dict) -> float:
    """
    percentage   -> price * (1 + value / 100)
    fixed_amount -> price + value
    absolute     -> value
    then clamp to the rule's min_price / max_price when set.
    """
    adjustment_type = rule.get("price_adjustment_type")
    value = rule.get("price_adjustment_value")
    if not adjustment_type or not value:
        return price

    value = float(value)
    if adjustment_type == "percentage":
        adjusted = price * (1 + value / 100)
    elif adjustment_type == "fixed_amount":
        adjusted = price + value
    elif adjustment_type == "absolute":
        adjusted = value
    else:
        return price

    if rule.get("min_price"):
        adjusted = max(adjusted, float(rule["min_price"]))
    if rule.get("max_price"):
        adjusted = min(adjusted, float(rule["max_price"]))
    return adjusted


def calculate_dynamic_price(user_id: str, product_id: str, base_price: float) -> float:
    """
    Run every active strategy (priority desc) and its active rules
    (priority desc) over the base price, then keep the result within
    [base * PRICE_FLOOR_RATIO, base * PRICE_CEILING_RATIO].

    Any backend failure returns the base price unchanged.
    """
    db = get_db()
    strategies = db.select(
        "pricing_strategies", {"user_id": user_id, "is_active": True}, order="priority.desc"
    )
    if not strategies["success"]:
        logger.error(f"Dynamic price fallback to base for product {product_id}: {strategies['error']}")
        return base_price

    price = float(base_price)
    ordered = sorted(rows(strategies), key=lambda s: s.get("priority") or 0, reverse=True)
    for strategy in ordered:
        rules = db.select(
            "pricing_rules", {"strategy_id": strategy["id"], "is_active": True}, order="priority.desc"
        )
        if not rules["success"]:
            logger.error(f"Dynamic price fallback to base for product {product_id}: {rules['error']}")
            return base_price
        for rule in sorted(rows(rules), key=lambda r: r.get("priority") or 0, reverse=True):
            price = apply_pricing_rule(price, rule)

    price = max(price, base_price * PRICE_FLOOR_RATIO)
    price = min(price, base_price * PRICE_CEILING_RATIO)
    final = round_money(price)
    logger.info(f"Dynamic price | product={product_id} | base={base_price} | final={final}")
    return final


def update_product_price(user_id: str, product_id: str, new_price: float, change_reason: str,
                         strategy_id: Optional[str] = None, rule_id: Optional[str] = None) -> bool:
    """Record the change in product_pricing_history, then set the product price."""
    db = get_db()
    product = db.select_one("products", {"id": product_id})
    if not product:
        return False

    old_price = float(product.get("price") or 0)
    change_pct = ((new_price - old_price) / old_price * 100) if old_price else 0.0
    now = now_iso()
    history = db.insert("product_pricing_history", {
        "user_id": user_id,
        "product_id": product_id,
        "old_price": old_price,
        "new_price": new_price,
        "price_change_percentage": round(change_pct, 2),
        "change_reason": change_reason,
        "strategy_id": strategy_id,
        "rule_id": rule_id,
        "changed_at": now,
        "created_at": now,
    })
    if not history["success"]:
        logger.error(f"Error recording price change for {product_id}: {history['error']}")
        return False

    result = db.update("products", {"price": new_price, "updated_at": now}, {"id": product_id})
    if not result["success"]:
        logger.error(f"Error updating product price {product_id}: {result['error']}")
    return result["success"]


def get_price_history(product_id: str, days: int = 30) -> List[dict]:
    since = (utc_now() - timedelta(days=days)).isoformat()
    return rows(get_db().select(
        "product_pricing_history",
        {"product_id": product_id, "changed_at": ("gte", since)},
        order="changed_at.desc",
    ))


# ─────────────────────────────────────────────
# COMPETITOR PRICING
# ─────────────────────────────────────────────

def record_competitor_price(user_id: str, product_id: str, competitor_name: str,
                            competitor_price: float, our_price: float,
                            competitor_sku: Optional[str] = None) -> Optional[dict]:
    """Insert or refresh the competitor's price for a product."""
    db = get_db()
    now = now_iso()
    values = {
        "competitor_sku": competitor_sku,
        "competitor_price": competitor_price,
        "our_price": our_price,
        "price_difference": round_money(our_price - competitor_price),
        "last_checked_at": now,
        "is_available": True,
        "updated_at": now,
    }
    key = {"user_id": user_id, "product_id": product_id, "competitor_name": competitor_name}

    existing = db.select_one("competitor_prices", key)
    if existing:
        result = db.update("competitor_prices", values, {"id": existing["id"]})
        updated = rows(result)
        return updated[0] if updated else None

    result = db.insert("competitor_prices", {**key, **values, "created_at": now})
    if not result["success"]:
        logger.error(f"Error recording competitor price: {result['error']}")
        return None
    return result["data"]


def get_competitor_prices(product_id: str) -> List[dict]:
    return rows(get_db().select("competitor_prices", {"product_id": product_id}, order="updated_at.desc"))
