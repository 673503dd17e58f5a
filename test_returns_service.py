"""
Tests for the returns & refunds service: RMA lifecycle, inspections,
refunds, return shipping and statistics.
"""
from datetime import timedelta
from core.helpers import utc_now
from services import returns_service as rs


def _iso(days_ago):
    return (utc_now() - timedelta(days=days_ago)).isoformat()


# ═══════════════════════════════════════════
# A. RMA LIFECYCLE
# ═══════════════════════════════════════════

class TestReturnLifecycle:

    def test_initiate(self, mock_db):
        created = rs.initiate_return("m1", {"order_id": "ORD1", "customer_id": "c1",
                                            "return_reason_id": "r1"})
        assert created["return_status"] == "pending"
        assert created["rma_number"].startswith("RMA-")
        assert rs.get_return(created["id"])["order_id"] == "ORD1"

    def test_initiate_backend_failure(self, mock_db):
        mock_db.failing_tables.add("returns")
        assert rs.initiate_return("m1", {"order_id": "ORD1"}) is None

    def test_list_by_status(self, mock_db):
        mock_db.seed("returns",
                     {"user_id": "m1", "return_status": "pending"},
                     {"user_id": "m1", "return_status": "approved"},
                     {"user_id": "m2", "return_status": "pending"})
        assert len(rs.get_returns("m1")) == 2
        assert len(rs.get_returns("m1", status="pending")) == 1

    def test_authorize_generates_code(self, mock_db):
        ret = mock_db.seed("returns", {"user_id": "m1", "return_status": "pending"})[0]
        assert rs.authorize_return("agent-7", ret["id"]) is True
        stored = mock_db.table("returns")[0]
        assert stored["return_status"] == "authorized"
        assert stored["authorization_code"].startswith("AUTH-")
        assert stored["authorized_by"] == "agent-7"

    def test_approve_with_restocking_fee(self, mock_db):
        ret = mock_db.seed("returns", {"user_id": "m1"})[0]
        assert rs.approve_return(ret["id"], refund_amount=199.99, restocking_fee_percentage=15) is True
        stored = mock_db.table("returns")[0]
        assert stored["restocking_fee_applied"] == 30.0
        assert stored["refund_amount"] == 169.99

    def test_approve_without_fee(self, mock_db):
        ret = mock_db.seed("returns", {"user_id": "m1"})[0]
        rs.approve_return(ret["id"], refund_amount=100)
        stored = mock_db.table("returns")[0]
        assert stored["restocking_fee_applied"] == 0.0
        assert stored["refund_amount"] == 100.0

    def test_reject_keeps_reason(self, mock_db):
        ret = mock_db.seed("returns", {"user_id": "m1"})[0]
        rs.reject_return(ret["id"], "Outside return window")
        stored = mock_db.table("returns")[0]
        assert (stored["return_status"], stored["notes"]) == ("rejected", "Outside return window")

    def test_update_failure_returns_false(self, mock_db):
        mock_db.failing_tables.add("returns")
        assert rs.update_return_status("x", "received") is False

    def test_active_reasons_sorted(self, mock_db):
        mock_db.seed("return_reasons",
                     {"reason_name": "Wrong size", "is_active": True},
                     {"reason_name": "Damaged", "is_active": True},
                     {"reason_name": "Legacy", "is_active": False})
        assert [r["reason_name"] for r in rs.get_return_reasons()] == ["Damaged", "Wrong size"]


# ═══════════════════════════════════════════
# B. ITEMS, INSPECTIONS, REFUNDS, SHIPPING
# ═══════════════════════════════════════════

class TestReturnItems:

    def test_inspection_completes_item(self, mock_db):
        item = rs.add_return_item("ret1", {"product_id": "p1", "quantity_returned": 1})
        assert item["inspection_status"] == "pending"

        inspection = rs.create_return_inspection(item["id"], {"inspector_name": "Nok", "is_resellable": True})

        assert inspection["is_resellable"] is True
        assert mock_db.table("return_items")[0]["inspection_status"] == "completed"
        assert len(rs.get_return_inspections(item["id"])) == 1

    def test_item_condition(self, mock_db):
        item = rs.add_return_item("ret1", {"product_id": "p1"})
        rs.update_return_item_condition(item["id"], "like_new")
        assert rs.get_return_items("ret1")[0]["item_condition"] == "like_new"

    def test_refund_marks_return(self, mock_db):
        ret = mock_db.seed("returns", {"user_id": "m1"})[0]
        transaction = rs.process_refund("m1", ret["id"], {"refund_amount": 250.0, "refund_method": "original"})

        assert transaction["refund_status"] == "approved"
        stored = mock_db.table("returns")[0]
        assert stored["refund_status"] == "processed"
        assert stored["refund_amount"] == 250.0
        assert rs.get_refund_transaction(ret["id"])["id"] == transaction["id"]

    def test_return_shipping(self, mock_db):
        ret = mock_db.seed("returns", {"user_id": "m1", "return_status": "approved"})[0]
        shipping = rs.setup_return_shipping(ret["id"], {"outbound_carrier": "kerry", "is_prepaid": True})

        assert shipping["shipping_status"] == "pending"
        assert mock_db.table("returns")[0]["return_status"] == "awaiting_return"

        rs.update_return_shipping(shipping["id"], {"shipping_status": "shipped", "return_status": "hacked"})
        stored = rs.get_return_shipping(ret["id"])
        assert stored["shipping_status"] == "shipped"
        assert "return_status" not in stored


# ═══════════════════════════════════════════
# C. STATISTICS & ANALYTICS
# ═══════════════════════════════════════════

class TestReturnStatistics:

    def test_empty(self):
        stats = rs.get_return_statistics("m1")
        assert stats["total_returns"] == 0
        assert stats["most_common_reason"] == "N/A"
        assert set(stats) == {
            "total_returns", "total_return_value", "average_refund_amount", "average_days_to_refund",
            "resellable_percentage", "most_common_reason", "pending_returns", "pending_refunds",
        }

    def test_backend_failure(self, mock_db):
        mock_db.failing_tables.add("returns")
        assert rs.get_return_statistics("m1") is None

    def test_aggregates(self, mock_db):
        mock_db.seed("return_reasons", {"id": "r-size", "reason_name": "Wrong size"})
        r1, r2, r3 = mock_db.seed(
            "returns",
            {"user_id": "m1", "return_reason_id": "r-size", "refund_amount": 100, "return_status": "pending",
             "created_at": _iso(10), "refund_processed_at": _iso(6)},
            {"user_id": "m1", "return_reason_id": "r-size", "refund_amount": 50, "return_status": "approved",
             "created_at": _iso(10), "refund_processed_at": _iso(8)},
            {"user_id": "m1", "return_reason_id": "r-other", "refund_amount": None,
             "return_status": "pending"},
        )
        mock_db.seed("refund_transactions", {"user_id": "m1", "refund_status": "pending"})
        i1, i2 = mock_db.seed("return_items", {"return_id": r1["id"]}, {"return_id": r2["id"]})
        mock_db.seed("return_inspections",
                     {"return_item_id": i1["id"], "is_resellable": True},
                     {"return_item_id": i2["id"], "is_resellable": False})

        stats = rs.get_return_statistics("m1")

        assert stats["total_returns"] == 3
        assert stats["total_return_value"] == 150.0
        assert stats["average_refund_amount"] == 50.0
        assert stats["average_days_to_refund"] == 3
        assert stats["most_common_reason"] == "Wrong size"
        assert stats["resellable_percentage"] == 50.0
        assert stats["pending_returns"] == 2
        assert stats["pending_refunds"] == 1

    def test_analytics_window(self, mock_db):
        rs.record_return_analytics("m1", {"period_start_date": _iso(5), "total_returns": 4})
        rs.record_return_analytics("m1", {"period_start_date": _iso(60), "total_returns": 9})
        assert [a["total_returns"] for a in rs.get_return_analytics("m1", days=30)] == [4]
