"""
Pricing Rules Engine
=====================
Condition/action pricing rules for checkout quotes: volume discounts,
customer tiers, seasonal and first-purchase promotions.

A rule matches when its conditions hold for the (item, customer, date)
triple. Matching rules run in priority order (lower number first); a
non-stackable rule that gives a discount ends the run.

Rules, usage counters and quote history live in memory on the engine.
"""

import math
import threading
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cache_manager import generate_cache_key, get_cache_manager, TTL_MEDIUM
from chat_logger import get_logger
from core.helpers import generate_id, parse_timestamp, utc_now

logger = get_logger("omnisales")

# ─────────────────────────────────────────────
# 1. DEFINITIONS
# ─────────────────────────────────────────────

RULE_TYPES = (
    "volume_discount", "customer_tier", "seasonal", "category_discount", "promotional",
    "time_limited", "bogo", "bundle", "loyalty_multiplier", "first_purchase", "referral",
)
OPERATORS = (
    "equals", "not_equals", "gt", "gte", "lt", "lte", "between",
    "in", "not_in", "contains", "not_contains",
)
ACTION_TYPES = (
    "percentage_discount", "fixed_discount", "fixed_price",
    "free_shipping", "bonus_points", "free_item",
)

LOYALTY_MULTIPLIERS = {"vip": 3, "wholesale": 2, "new": 1.5, "regular": 1}
LOYALTY_RATE = 0.01
HISTORY_LIMIT = 1000
QUOTE_CACHE_TTL = TTL_MEDIUM

# snake_case spellings accepted for condition fields
_FIELD_ALIASES = {
    "product_id": "productId",
    "product_name": "productName",
    "customer_tier": "customerTier",
    "customer_id": "customerId",
    "customer_email": "customerEmail",
    "total_orders": "totalOrders",
    "total_spent": "totalSpent",
    "order_total": "orderTotal",
    "day_of_week": "dayOfWeek",
    "is_weekend": "isWeekend",
    "is_new_customer": "isNewCustomer",
}


@dataclass
class RuleCondition:
    field: str
    operator: str
    value: Any
    # joins this condition's result with the NEXT condition
    logical_operator: Optional[str] = None


@dataclass
class RuleAction:
    type: str
    value: float
    max_discount: Optional[float] = None
    apply_to: str = "item"
    free_item_id: Optional[str] = None


@dataclass
class PricingRule:
    id: str
    name: str
    type: str
    conditions: List[RuleCondition] = field(default_factory=list)
    actions: List[RuleAction] = field(default_factory=list)
    description: str = ""
    priority: int = 10
    is_active: bool = True
    is_stackable: bool = True
    start_date: datetime = field(default_factory=utc_now)
    end_date: Optional[datetime] = None
    max_usages: Optional[int] = None
    usage_count: int = 0
    max_usages_per_customer: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "PricingRule":
        now = utc_now()
        return cls(
            id=data.get("id") or generate_id("rule", 9),
            name=data.get("name", ""),
            type=data.get("type", ""),
            description=data.get("description", ""),
            conditions=[RuleCondition(
                field=c.get("field"),
                operator=c.get("operator"),
                value=c.get("value"),
                logical_operator=c.get("logical_operator"),
            ) for c in data.get("conditions") or []],
            actions=[RuleAction(
                type=a.get("type"),
                value=float(a.get("value") or 0),
                max_discount=a.get("max_discount"),
                apply_to=a.get("apply_to") or "item",
                free_item_id=a.get("free_item_id"),
            ) for a in data.get("actions") or []],
            priority=int(data.get("priority", 10)),
            is_active=bool(data.get("is_active", True)),
            is_stackable=bool(data.get("is_stackable", True)),
            start_date=parse_timestamp(data.get("start_date")) or now,
            end_date=parse_timestamp(data.get("end_date")),
            max_usages=data.get("max_usages"),
            usage_count=int(data.get("usage_count") or 0),
            max_usages_per_customer=data.get("max_usages_per_customer"),
            created_at=parse_timestamp(data.get("created_at")) or now,
            updated_at=parse_timestamp(data.get("updated_at")) or now,
            tags=list(data.get("tags") or []),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("start_date", "end_date", "created_at", "updated_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class PriceCalculation:
    base_price: float
    quantity: int
    subtotal: float
    discounts: List[Dict[str, Any]]
    loyalty_points: int
    shipping_discount: float
    final_price: float
    final_price_per_unit: float
    total_savings: float
    breakdown: str
    applied_rule_ids: List[str]

    def to_dict(self) -> dict:
        return asdict(self)


# ─────────────────────────────────────────────
# 2. CONDITION EVALUATION
# ─────────────────────────────────────────────

def customer_tier(customer: dict) -> str:
    tags = customer.get("tags") or []
    return tags[0] if tags else "regular"


def get_field_value(name: str, item: dict, customer: dict, date: datetime,
                    order_total: Optional[float] = None) -> Any:
    name = _FIELD_ALIASES.get(name, name)
    if name == "quantity":
        return item.get("quantity")
    if name in ("product", "productId"):
        return item.get("product_id")
    if name == "productName":
        return item.get("product_name")
    if name == "price":
        return item.get("price")
    if name == "customerTier":
        return customer_tier(customer)
    if name == "customerId":
        return customer.get("id")
    if name == "customerEmail":
        return customer.get("email")
    if name == "totalOrders":
        return customer.get("total_orders")
    if name == "totalSpent":
        return customer.get("total_spent")
    if name == "orderTotal":
        return order_total or item.get("price", 0) * item.get("quantity", 0)
    if name == "date":
        return date.date().isoformat()
    if name == "month":
        return date.month
    if name == "dayOfWeek":
        # 0 = Sunday
        return (date.weekday() + 1) % 7
    if name == "hour":
        return date.hour
    if name == "isWeekend":
        return date.weekday() >= 5
    if name == "isNewCustomer":
        return (customer.get("total_orders") or 0) == 0
    return None


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def evaluate_condition(condition: RuleCondition, item: dict, customer: dict, date: datetime,
                       order_total: Optional[float] = None) -> bool:
    actual = get_field_value(condition.field, item, customer, date, order_total)
    expected = condition.value
    op = condition.operator

    if op == "equals":
        return actual == expected
    if op == "not_equals":
        return actual != expected
    if op == "gt":
        return _number(actual) > _number(expected)
    if op == "gte":
        return _number(actual) >= _number(expected)
    if op == "lt":
        return _number(actual) < _number(expected)
    if op == "lte":
        return _number(actual) <= _number(expected)
    if op == "between":
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            return False
        return _number(expected[0]) <= _number(actual) <= _number(expected[1])
    if op == "in":
        return isinstance(expected, (list, tuple)) and actual in expected
    if op == "not_in":
        return isinstance(expected, (list, tuple)) and actual not in expected
    if op == "contains":
        return str(expected).lower() in str(actual).lower()
    if op == "not_contains":
        return str(expected).lower() not in str(actual).lower()
    return False


def evaluate_conditions(conditions: List[RuleCondition], item: dict, customer: dict,
                        date: datetime, order_total: Optional[float] = None) -> bool:
    """Fold conditions left to right; each condition's logical_operator joins it to the next."""
    if not conditions:
        return True

    result = True
    logic = "and"
    for i, condition in enumerate(conditions):
        matched = evaluate_condition(condition, item, customer, date, order_total)
        if i == 0:
            result = matched
        elif logic == "and":
            result = result and matched
        else:
            result = result or matched
        if condition.logical_operator:
            logic = condition.logical_operator
    return result


def resolve_conflicts(rules: List[PricingRule]) -> List[PricingRule]:
    """Priority ascending, newest first on ties; nothing after the first non-stackable rule."""
    ordered = sorted(rules, key=lambda r: (r.priority, -r.created_at.timestamp()))
    resolved = []
    for rule in ordered:
        resolved.append(rule)
        if not rule.is_stackable:
            break
    return resolved


def apply_rule(rule: PricingRule, current_price: float, item: dict) -> Dict[str, Any]:
    """Run a rule's actions against the running price."""
    discount = 0.0
    bonus_points = 0.0
    action_type = "percentage_discount"
    percentage = None
    quantity = item.get("quantity", 1)

    for action in rule.actions:
        action_type = action.type
        if action.type == "percentage_discount":
            amount = current_price * action.value / 100
            discount += min(amount, action.max_discount) if action.max_discount else amount
            percentage = action.value
        elif action.type == "fixed_discount":
            discount += min(action.value, action.max_discount) if action.max_discount else action.value
        elif action.type == "fixed_price":
            original = item.get("price", 0) * quantity
            discount += max(0.0, original - action.value * quantity)
        elif action.type == "free_shipping":
            discount += action.value
        elif action.type == "bonus_points":
            bonus_points += action.value
        # free_item: fulfilled outside the price calculation

    return {
        "discount": discount,
        "bonus_points": bonus_points,
        "action_type": action_type,
        "percentage": percentage,
    }


def calculate_loyalty_points(final_price: float, customer: dict) -> float:
    multiplier = LOYALTY_MULTIPLIERS.get(customer_tier(customer), 1)
    return final_price * LOYALTY_RATE * multiplier


def price_breakdown(base_price: float, quantity: int, discounts: List[dict], final_price: float) -> str:
    lines = [f"Base: ฿{base_price:.2f} x {quantity} = ฿{base_price * quantity:.2f}"]
    if discounts:
        lines.append("Discounts:")
        for d in discounts:
            pct = f" ({d['percentage']:g}%)" if d.get("percentage") else ""
            lines.append(f"  - {d['rule_name']}: -฿{d['amount']:.2f}{pct}")
    lines.append(f"Final: ฿{final_price:.2f}")
    return "\n".join(lines)


def _whole_number(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return int(number) if number.is_integer() else None


def validate_rule(data: dict, partial: bool = False) -> List[str]:
    """
    Return validation errors for a rule payload (empty when valid).
    With partial=True only the fields present are checked (rule updates).
    """
    errors = []
    if not partial or "name" in data:
        if not str(data.get("name") or "").strip():
            errors.append("Rule name is required")
    if not partial or "type" in data:
        if not data.get("type"):
            errors.append("Rule type is required")
        elif data["type"] not in RULE_TYPES:
            errors.append(f"Unknown rule type: {data['type']}")
    if not partial or "conditions" in data:
        if not data.get("conditions"):
            errors.append("At least one condition is required")
        else:
            for c in data["conditions"]:
                if c.get("operator") not in OPERATORS:
                    errors.append(f"Unknown operator: {c.get('operator')}")
    if not partial or "actions" in data:
        if not data.get("actions"):
            errors.append("At least one action is required")
        else:
            for a in data["actions"]:
                if a.get("type") not in ACTION_TYPES:
                    errors.append(f"Unknown action type: {a.get('type')}")
                if a.get("value") is not None and math.isnan(_number(a["value"])):
                    errors.append(f"Action value must be a number: {a['value']}")
    if data.get("priority") is not None:
        priority = _whole_number(data["priority"])
        if priority is None:
            errors.append("Priority must be a whole number")
        elif priority < 1:
            errors.append("Priority must be at least 1")
    for limit in ("max_usages", "max_usages_per_customer"):
        if data.get(limit) is not None and _whole_number(data[limit]) is None:
            errors.append(f"{limit} must be a whole number")

    start = parse_timestamp(data.get("start_date"))
    end = parse_timestamp(data.get("end_date"))
    if start and end and start > end:
        errors.append("End date must be after start date")
    return errors


def default_rules() -> List[PricingRule]:
    now = utc_now()
    end_of_year = datetime(now.year, 12, 31, 23, 59, 59, tzinfo=timezone.utc)
    return [
        PricingRule(
            id="rule_volume_10",
            name="Volume Discount 10+",
            description="Get 5% off when buying 10 or more items",
            type="volume_discount",
            conditions=[RuleCondition("quantity", "gte", 10)],
            actions=[RuleAction("percentage_discount", 5)],
            priority=10,
            is_stackable=True,
            start_date=now,
            created_at=now,
            updated_at=now,
        ),
        PricingRule(
            id="rule_vip_discount",
            name="VIP Customer Discount",
            description="15% discount for VIP customers",
            type="customer_tier",
            conditions=[RuleCondition("customerTier", "equals", "vip")],
            actions=[RuleAction("percentage_discount", 15)],
            priority=5,
            is_stackable=True,
            start_date=now,
            created_at=now,
            updated_at=now,
        ),
        PricingRule(
            id="rule_first_purchase",
            name="First Purchase Discount",
            description="Welcome 20% off for new customers",
            type="first_purchase",
            conditions=[RuleCondition("isNewCustomer", "equals", True)],
            actions=[RuleAction("percentage_discount", 20, max_discount=50, apply_to="order")],
            priority=1,
            is_stackable=False,
            start_date=now,
            end_date=end_of_year,
            max_usages_per_customer=1,
            created_at=now,
            updated_at=now,
        ),
    ]


# ─────────────────────────────────────────────
# 3. ENGINE
# ─────────────────────────────────────────────

class PricingRuleEngine:
    """Holds the rule set, per-customer usage and quote history."""

    def __init__(self, rules: Optional[List[PricingRule]] = None):
        self._lock = threading.RLock()
        self._rules: Dict[str, PricingRule] = {r.id: r for r in (rules if rules is not None else default_rules())}
        self._usage: Dict[str, Dict[str, int]] = {}
        self._history: List[dict] = []

    # ── Rule CRUD ──

    def get_all_rules(self) -> List[PricingRule]:
        with self._lock:
            return list(self._rules.values())

    def get_active_rules(self, now: Optional[datetime] = None) -> List[PricingRule]:
        now = now or utc_now()
        return [
            r for r in self.get_all_rules()
            if r.is_active
            and r.start_date <= now
            and (r.end_date is None or r.end_date >= now)
            and not (r.max_usages and r.usage_count >= r.max_usages)
        ]

    def get_rule(self, rule_id: str) -> Optional[PricingRule]:
        with self._lock:
            return self._rules.get(rule_id)

    def create_rule(self, data: dict) -> PricingRule:
        rule = PricingRule.from_dict({**data, "id": None, "usage_count": 0,
                                      "created_at": None, "updated_at": None})
        with self._lock:
            self._rules[rule.id] = rule
        self.clear_cache()
        logger.info(f"Pricing rule created | id={rule.id} | name={rule.name}")
        return rule

    def update_rule(self, rule_id: str, updates: dict) -> Optional[PricingRule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return None
            merged = {**rule.to_dict(), **updates, "id": rule.id,
                      "created_at": rule.created_at.isoformat(),
                      "updated_at": utc_now().isoformat()}
            updated = PricingRule.from_dict(merged)
            self._rules[rule_id] = updated
        self.clear_cache()
        return updated

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            removed = self._rules.pop(rule_id, None) is not None
        if removed:
            self.clear_cache()
        return removed

    def toggle_rule(self, rule_id: str) -> Optional[PricingRule]:
        rule = self.get_rule(rule_id)
        if rule is None:
            return None
        return self.update_rule(rule_id, {"is_active": not rule.is_active})

    def duplicate_rule(self, rule_id: str, new_name: Optional[str] = None) -> Optional[PricingRule]:
        rule = self.get_rule(rule_id)
        if rule is None:
            return None
        return self.create_rule({**rule.to_dict(), "name": new_name or f"{rule.name} (copy)"})

    # ── Usage ──

    def get_customer_rule_usage(self, customer_id: str) -> Dict[str, int]:
        with self._lock:
            return dict(self._usage.get(customer_id, {}))

    def has_exceeded_max_usages(self, rule: PricingRule, customer_id: Optional[str]) -> bool:
        if not rule.max_usages_per_customer or customer_id is None:
            return False
        used = self.get_customer_rule_usage(customer_id).get(rule.id, 0)
        return used >= rule.max_usages_per_customer

    def _increment_usage(self, rule: PricingRule, customer_id: Optional[str]) -> None:
        with self._lock:
            stored = self._rules.get(rule.id)
            if stored is not None:
                self._rules[rule.id] = replace(stored, usage_count=stored.usage_count + 1)
            if customer_id is not None:
                per_customer = self._usage.setdefault(customer_id, {})
                per_customer[rule.id] = per_customer.get(rule.id, 0) + 1

    # ── Calculation ──

    def get_applicable_rules(self, item: dict, customer: dict, date: datetime,
                             order_total: Optional[float] = None) -> List[PricingRule]:
        return [
            r for r in self.get_active_rules(date)
            if not self.has_exceeded_max_usages(r, customer.get("id"))
            and evaluate_conditions(r.conditions, item, customer, date, order_total)
        ]

    def calculate_price(self, item: dict, customer: dict, date: Optional[datetime] = None,
                        order_total: Optional[float] = None) -> PriceCalculation:
        """
        Quote an order line.

        Args:
            item: {"product_id", "product_name", "price", "quantity"}
            customer: {"id", "email", "tags", "total_orders", "total_spent"}
            date: pricing moment (default now, UTC)
            order_total: whole-order value for orderTotal conditions
        """
        date = parse_timestamp(date) or utc_now()
        cache = get_cache_manager()
        cache_key = generate_cache_key(
            "pricing", "quote",
            f"{item.get('product_id')}_{item.get('quantity')}_{customer.get('id')}_"
            f"{date.replace(second=0, microsecond=0).isoformat()}_{order_total}",
        )
        cached = cache.get(cache_key)
        if cached is not None:
            return PriceCalculation(**cached)

        base_price = float(item.get("price", 0))
        quantity = int(item.get("quantity", 1))
        subtotal = base_price * quantity

        current = subtotal
        shipping_discount = 0.0
        bonus_points = 0.0
        discounts = []
        applied = []

        for rule in resolve_conflicts(self.get_applicable_rules(item, customer, date, order_total)):
            outcome = apply_rule(rule, current, item)
            if outcome["discount"] > 0:
                discounts.append({
                    "rule_id": rule.id,
                    "rule_name": rule.name,
                    "type": outcome["action_type"],
                    "amount": round(outcome["discount"], 2),
                    "percentage": outcome["percentage"],
                })
                if outcome["action_type"] == "free_shipping":
                    shipping_discount += outcome["discount"]
                else:
                    current -= outcome["discount"]
                applied.append(rule.id)
                self._increment_usage(rule, customer.get("id"))

            bonus_points += outcome["bonus_points"]

            if not rule.is_stackable and outcome["discount"] > 0:
                break

        final_price = round(max(0.0, current), 2)
        loyalty = int(bonus_points + calculate_loyalty_points(final_price, customer))

        calculation = PriceCalculation(
            base_price=base_price,
            quantity=quantity,
            subtotal=round(subtotal, 2),
            discounts=discounts,
            loyalty_points=loyalty,
            shipping_discount=round(shipping_discount, 2),
            final_price=final_price,
            final_price_per_unit=round(final_price / quantity, 2) if quantity else final_price,
            total_savings=round(subtotal - final_price, 2),
            breakdown=price_breakdown(base_price, quantity, discounts, final_price),
            applied_rule_ids=applied,
        )
        cache.set(cache_key, calculation.to_dict(), QUOTE_CACHE_TTL, tags=["pricing_quotes"])
        self._record_history(item.get("product_id"), customer.get("id"), calculation)
        return calculation

    # ── History & stats ──

    def _record_history(self, product_id, customer_id, calculation: PriceCalculation) -> None:
        with self._lock:
            self._history.append({
                "id": generate_id("history", 9),
                "product_id": product_id,
                "customer_id": customer_id,
                "calculation": calculation.to_dict(),
                "timestamp": utc_now().isoformat(),
            })
            if len(self._history) > HISTORY_LIMIT:
                self._history = self._history[-HISTORY_LIMIT:]

    def get_price_history(self, limit: int = 100, product_id: Optional[str] = None) -> List[dict]:
        """Most recent first."""
        with self._lock:
            history = list(reversed(self._history))
        if product_id is not None:
            history = [h for h in history if h["product_id"] == product_id]
        return history[:limit]

    def rule_statistics(self) -> dict:
        rules = self.get_all_rules()
        top = sorted(rules, key=lambda r: r.usage_count, reverse=True)[:5]
        return {
            "total_rules": len(rules),
            "active_rules": len(self.get_active_rules()),
            "total_usages": sum(r.usage_count for r in rules),
            "top_rules": [{"rule_id": r.id, "name": r.name, "usages": r.usage_count} for r in top],
        }

    def clear_cache(self) -> None:
        get_cache_manager().invalidate_by_tag("pricing_quotes")


_engine: Optional[PricingRuleEngine] = None


def get_rule_engine() -> PricingRuleEngine:
    global _engine
    if _engine is None:
        _engine = PricingRuleEngine()
    return _engine


def reset_rule_engine(rules: Optional[List[PricingRule]] = None) -> PricingRuleEngine:
    global _engine
    _engine = PricingRuleEngine(rules)
    return _engine
