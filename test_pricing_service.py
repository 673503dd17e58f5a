"""
Tests for per-merchant dynamic pricing: strategies, rules, price
calculation, price history and competitor prices.
"""
import pytest
from datetime import timedelta
from core.helpers import utc_now
from services import pricing_service as ps


def _strategy(db, priority, is_active=True, user_id="m1"):
    return db.seed("pricing_strategies", {
        "user_id": user_id, "strategy_name": f"s{priority}", "priority": priority, "is_active": is_active,
    })[0]


def _rule(db, strategy, adjustment_type, value, priority=0, **extra):
    return db.seed("pricing_rules", {
        "strategy_id": strategy["id"], "price_adjustment_type": adjustment_type,
        "price_adjustment_value": value, "priority": priority, "is_active": True, **extra,
    })[0]


# ═══════════════════════════════════════════
# A. SINGLE RULE
# ═══════════════════════════════════════════

class TestApplyPricingRule:

    @pytest.mark.parametrize("adjustment_type,value,expected", [
        ("percentage", 10, 110.0),
        ("percentage", -25, 75.0),
        ("fixed_amount", -15, 85.0),
        ("absolute", 79, 79.0),
    ])
    def test_adjustments(self, adjustment_type, value, expected):
        rule = {"price_adjustment_type": adjustment_type, "price_adjustment_value": value}
        assert ps.apply_pricing_rule(100.0, rule) == pytest.approx(expected)

    def test_min_and_max_clamp(self):
        assert ps.apply_pricing_rule(100.0, {
            "price_adjustment_type": "percentage", "price_adjustment_value": -50, "min_price": 60,
        }) == 60
        assert ps.apply_pricing_rule(100.0, {
            "price_adjustment_type": "fixed_amount", "price_adjustment_value": 50, "max_price": 120,
        }) == 120

    def test_missing_or_unknown_adjustment(self):
        assert ps.apply_pricing_rule(100.0, {"price_adjustment_type": "percentage"}) == 100.0
        assert ps.apply_pricing_rule(100.0, {
            "price_adjustment_type": "bogus", "price_adjustment_value": 5,
        }) == 100.0


# ═══════════════════════════════════════════
# B. DYNAMIC PRICE
# ═══════════════════════════════════════════

class TestCalculateDynamicPrice:
    """Strategies and their rules run in priority order, then the floor/ceiling apply."""

    def test_strategies_in_priority_order(self, mock_db):
        high = _strategy(mock_db, priority=2)
        low = _strategy(mock_db, priority=1)
        _rule(mock_db, low, "percentage", -10)
        _rule(mock_db, high, "fixed_amount", -10)
        # (100 - 10) * 0.9
        assert ps.calculate_dynamic_price("m1", "p1", 100.0) == 81.0

    def test_inactive_strategy_skipped(self, mock_db):
        off = _strategy(mock_db, priority=5, is_active=False)
        _rule(mock_db, off, "absolute", 10)
        assert ps.calculate_dynamic_price("m1", "p1", 100.0) == 100.0

    def test_floor(self, mock_db):
        _rule(mock_db, _strategy(mock_db, priority=1), "absolute", 10)
        assert ps.calculate_dynamic_price("m1", "p1", 100.0) == 50.0

    def test_ceiling(self, mock_db):
        _rule(mock_db, _strategy(mock_db, priority=1), "percentage", 300)
        assert ps.calculate_dynamic_price("m1", "p1", 100.0) == 200.0

    def test_backend_failure_returns_base(self, mock_db):
        mock_db.failing_tables.add("pricing_strategies")
        assert ps.calculate_dynamic_price("m1", "p1", 99.5) == 99.5

    def test_rule_lookup_failure_returns_base(self, mock_db):
        _strategy(mock_db, priority=1)
        mock_db.failing_tables.add("pricing_rules")
        assert ps.calculate_dynamic_price("m1", "p1", 99.5) == 99.5


# ═══════════════════════════════════════════
# C. STRATEGY & RULE CRUD
# ═══════════════════════════════════════════

class TestStrategyCrud:

    def test_create_and_list(self):
        ps.create_pricing_strategy("m1", {"strategy_name": "Low", "strategy_type": "markdown", "priority": 1})
        ps.create_pricing_strategy("m1", {"strategy_name": "High", "strategy_type": "markup", "priority": 9})
        names = [s["strategy_name"] for s in ps.get_pricing_strategies("m1")]
        assert names == ["High", "Low"]

    def test_active_only(self, mock_db):
        _strategy(mock_db, priority=1, is_active=False)
        assert ps.get_pricing_strategies("m1", active_only=True) == []

    def test_update_ignores_missing_fields(self, mock_db):
        strategy = _strategy(mock_db, priority=1)
        assert ps.update_pricing_strategy(strategy["id"], {"is_active": False}) is True
        stored = mock_db.table("pricing_strategies")[0]
        assert stored["is_active"] is False
        assert stored["strategy_name"] == "s1"

    def test_delete_removes_rules(self, mock_db):
        strategy = _strategy(mock_db, priority=1)
        _rule(mock_db, strategy, "percentage", 5)
        assert ps.delete_pricing_strategy(strategy["id"]) is True
        assert mock_db.table("pricing_rules") == []

    def test_rule_with_unknown_adjustment_rejected(self):
        assert ps.create_pricing_rule("m1", {"strategy_id": "s", "price_adjustment_type": "magic"}) is None

    def test_rules_sorted_by_priority(self, mock_db):
        strategy = _strategy(mock_db, priority=1)
        ps.create_pricing_rule("m1", {"strategy_id": strategy["id"], "rule_name": "a",
                                      "price_adjustment_type": "percentage", "priority": 1})
        ps.create_pricing_rule("m1", {"strategy_id": strategy["id"], "rule_name": "b",
                                      "price_adjustment_type": "percentage", "priority": 3})
        assert [r["rule_name"] for r in ps.get_pricing_rules(strategy["id"])] == ["b", "a"]


# ═══════════════════════════════════════════
# D. PRICE HISTORY & COMPETITORS
# ═══════════════════════════════════════════

class TestPriceHistory:

    def test_update_product_price_records_history(self, mock_db):
        mock_db.seed("products", {"id": "p1", "price": 100.0})
        assert ps.update_product_price("m1", "p1", 120.0, "Holiday markup") is True

        history = mock_db.table("product_pricing_history")[0]
        assert history["old_price"] == 100.0
        assert history["price_change_percentage"] == 20.0
        assert mock_db.table("products")[0]["price"] == 120.0

    def test_update_unknown_product(self):
        assert ps.update_product_price("m1", "missing", 10.0, "x") is False

    def test_history_window(self, mock_db):
        mock_db.seed(
            "product_pricing_history",
            {"product_id": "p1", "new_price": 1, "changed_at": (utc_now() - timedelta(days=40)).isoformat()},
            {"product_id": "p1", "new_price": 2, "changed_at": (utc_now() - timedelta(days=2)).isoformat()},
        )
        assert [h["new_price"] for h in ps.get_price_history("p1", days=30)] == [2]

    def test_competitor_price_upsert(self, mock_db):
        ps.record_competitor_price("m1", "p1", "ShopA", 95.0, 100.0)
        updated = ps.record_competitor_price("m1", "p1", "ShopA", 90.0, 100.0)

        assert len(mock_db.table("competitor_prices")) == 1
        assert updated["competitor_price"] == 90.0
        assert updated["price_difference"] == 10.0
        assert len(ps.get_competitor_prices("p1")) == 1
