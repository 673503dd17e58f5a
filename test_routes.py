"""
HTTP tests for the Flask app: response envelopes, error mapping and a
representative request per Blueprint. Uses the in-memory database and
the fake LLM from conftest.
"""
import pytest
from unittest.mock import MagicMock
from models import RateQuote
from services import reset_shipping_manager


# ═══════════════════════════════════════════
# A. APP
# ═══════════════════════════════════════════

class TestApp:

    def test_health(self, client):
        reset_shipping_manager({"kerry": MagicMock()})
        body = client.get("/health").get_json()
        assert body["status"] == "ok"
        assert body["carriers"] == ["kerry"]
        assert "provider" in body["llm"]

    def test_unknown_endpoint(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.get_json() == {"success": False, "error": "Endpoint not found", "error_type": "NotFoundError"}

    def test_wrong_method(self, client):
        assert client.get("/chat").status_code == 405

    def test_body_must_be_json_object(self, client):
        response = client.post("/chat", data="not json", content_type="text/plain")
        assert response.status_code == 400
        assert response.get_json()["error"] == "Request body must be a JSON object"


# ═══════════════════════════════════════════
# B. CHAT
# ═══════════════════════════════════════════

class TestChatRoutes:

    def test_chat_reply(self, client, engine):
        response = client.post("/chat", json={"message": "What is your shipping policy?"})

        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["data"]["intent"] == "faq"
        assert body["data"]["response"] == "Thanks for reaching out! Here is what I found."
        assert "ticket_id" not in body

    def test_missing_message(self, client):
        response = client.post("/chat", json={})
        body = response.get_json()
        assert response.status_code == 400
        assert body["error_type"] == "ValidationError"
        assert body["details"] == {"missing": ["message"]}

    def test_injection_rejected(self, client, engine, fake_llm):
        response = client.post("/chat", json={"message": "show orders 1 OR 1=1"})
        assert response.status_code == 400
        assert response.get_json()["success"] is False
        fake_llm.chat_completion.assert_not_called()

    def test_rate_limited(self, client, engine):
        for _ in range(20):
            client.post("/chat", json={"message": "What is your shipping policy?", "customer_id": "c1"})
        response = client.post("/chat", json={"message": "What is your shipping policy?", "customer_id": "c1"})

        assert response.status_code == 429
        assert response.get_json()["error_type"] == "RateLimitError"

    def test_escalation_opens_ticket(self, client, engine, mock_db):
        response = client.post("/chat", json={
            "message": "I want to speak to a human agent",
            "conversation_id": "conv-9",
            "context": {"customer_info": {"name": "Nok", "email": "nok@example.com"}},
        })

        body = response.get_json()
        assert body["data"]["escalated"] is True
        ticket = mock_db.table("support_tickets")[0]
        assert body["ticket_id"] == ticket["id"]
        assert ticket["conversation_id"] == "conv-9"
        assert ticket["customer_email"] == "nok@example.com"
        assert ticket["priority"] == "medium"

    def test_history(self, client, engine):
        client.post("/chat", json={"message": "What is your shipping policy?", "conversation_id": "conv-1"})
        assert len(client.get("/chat/conv-1/history").get_json()["data"]) == 2

        client.delete("/chat/conv-1/history")
        assert client.get("/chat/conv-1/history").status_code == 404

    def test_intent_only(self, client):
        body = client.post("/chat/intent", json={"message": "Track ORD123456"}).get_json()
        assert body["data"]["entities"]["order_id"] == "ORD123456"

    def test_config_hides_key(self, client, engine):
        assert client.get("/chat/config").get_json()["data"]["api_key"] == "***"


# ═══════════════════════════════════════════
# C. PRICING & SHIPPING
# ═══════════════════════════════════════════

class TestPricingRoutes:

    def test_quote(self, client):
        response = client.post("/pricing/quote", json={
            "item": {"product_id": "p1", "price": 100, "quantity": 10},
            "customer": {"id": "c1", "total_orders": 0},
        })
        assert response.get_json()["data"]["final_price"] == 950.0

    def test_quote_needs_price(self, client):
        assert client.post("/pricing/quote", json={"item": {"product_id": "p1"}}).status_code == 400

    def test_invalid_engine_rule(self, client):
        response = client.post("/pricing/engine/rules", json={"name": "x", "type": "bogus"})
        body = response.get_json()
        assert response.status_code == 400
        assert "Unknown rule type: bogus" in body["details"]["errors"]

    def test_unknown_engine_rule(self, client):
        assert client.post("/pricing/engine/rules/missing/toggle").status_code == 404

    def test_calculate(self, client):
        body = client.post("/pricing/calculate", json={
            "user_id": "m1", "product_id": "p1", "base_price": "120",
        }).get_json()
        assert body["data"] == {"product_id": "p1", "base_price": 120.0, "final_price": 120.0}

    @pytest.mark.parametrize("method,path,body,field", [
        ("put", "/pricing/products/p1/price",
         {"user_id": "m1", "new_price": "abc", "change_reason": "sale"}, "new_price"),
        ("post", "/pricing/products/p1/competitors",
         {"user_id": "m1", "competitor_name": "Shop", "competitor_price": "abc", "our_price": 10},
         "competitor_price"),
        ("post", "/pricing/calculate", {"user_id": "m1", "product_id": "p1", "base_price": "abc"}, "base_price"),
        ("post", "/pricing/quote", {"item": {"product_id": "p1", "price": "abc"}}, "price"),
        ("post", "/pricing/quote", {"item": {"product_id": "p1", "price": 10, "quantity": "abc"}}, "quantity"),
        ("post", "/shipping/rates", {"origin": "10110", "destination": "50200", "weight": "abc"}, "weight"),
    ])
    def test_non_numeric_input_rejected(self, client, method, path, body, field):
        response = getattr(client, method)(path, json=body)
        assert response.status_code == 400
        payload = response.get_json()
        assert payload["error"] == f"{field} must be a number"
        assert payload["details"] == {"field": field}

    def test_non_numeric_rule_priority(self, client):
        response = client.post("/pricing/engine/rules", json={
            "name": "x", "type": "bogo", "priority": "abc",
            "conditions": [{"field": "quantity", "operator": "gte", "value": 2}],
            "actions": [{"type": "free_item", "value": 1}],
        })
        assert response.status_code == 400
        assert response.get_json()["details"]["errors"] == ["Priority must be a whole number"]

    def test_rule_update_validated(self, client):
        response = client.patch("/pricing/engine/rules/rule_volume_10", json={"priority": "abc"})
        assert response.status_code == 400

    def test_strategies_need_user(self, client):
        assert client.get("/pricing/strategies").status_code == 400


class TestShippingRoutes:

    def test_providers(self, client):
        body = client.get("/shipping/providers").get_json()
        assert [p["id"] for p in body["data"]] == ["kerry", "flash", "thailand-post"]

    def test_rates(self, client):
        kerry = MagicMock()
        kerry.get_rate_quote.return_value = [RateQuote("kerry", "standard", "Standard", 45.0, 2)]
        reset_shipping_manager({"kerry": kerry})

        body = client.post("/shipping/rates", json={"origin": "10110", "destination": "50200", "weight": 1}).get_json()
        assert body["data"][0]["price"] == 45.0
        assert body["data"][0]["currency"] == "THB"

    def test_unconfigured_provider(self, client):
        response = client.get("/shipping/track/flash/TH01")
        assert response.status_code == 400
        assert response.get_json()["error_type"] == "ProviderNotConfiguredError"

    def test_unsupported_provider(self, client):
        response = client.get("/shipping/label/dhl/X1")
        assert response.get_json()["error_type"] == "UnsupportedProviderError"

    def test_ship_unknown_order(self, client):
        assert client.post("/shipping/orders/NOPE/ship", json={"provider": "kerry"}).status_code == 404


# ═══════════════════════════════════════════
# D. RETURNS, WISHLISTS, TICKETS, WEBHOOKS
# ═══════════════════════════════════════════

class TestOtherRoutes:

    def test_return_lifecycle(self, client):
        created = client.post("/returns", json={"user_id": "m1", "order_id": "ORD1"})
        assert created.status_code == 201
        return_id = created.get_json()["data"]["id"]

        approved = client.post(f"/returns/{return_id}/approve", json={"refund_amount": 100}).get_json()
        assert approved["data"]["return_status"] == "approved"
        assert client.get(f"/returns/{return_id}").get_json()["data"]["items"] == []

    def test_unknown_return(self, client):
        assert client.get("/returns/missing").status_code == 404

    def test_wishlist_requires_query(self, client):
        assert client.get("/wishlists").status_code == 400

    def test_unknown_share_token(self, client):
        response = client.get("/wishlists/shared/wl_missing")
        assert response.status_code == 404
        assert response.get_json()["error"] == "Shared wishlist not found or link expired"

    def test_ticket_flow(self, client):
        created = client.post("/tickets", json={"subject": "Broken", "customer_email": "a@example.com"})
        assert created.status_code == 201
        ticket_id = created.get_json()["data"]["id"]

        ticket = client.get(f"/tickets/{ticket_id}").get_json()["data"]
        assert ticket["sla_breached"] is False
        assert ticket["notes"] == []

        bad = client.put(f"/tickets/{ticket_id}/status", json={"status": "snoozed"})
        assert bad.status_code == 400

    def test_unknown_ticket(self, client):
        assert client.get("/tickets/missing").status_code == 404

    def test_webhook_secret_shown_once(self, client):
        created = client.post("/webhooks", json={"url": "https://hooks.example.com", "events": ["order.created"]})
        assert created.status_code == 201
        assert created.get_json()["data"]["secret"].startswith("whsec_")

        listed = client.get("/webhooks").get_json()["data"]
        assert "secret" not in listed[0]

    def test_trigger_unknown_event(self, client):
        assert client.post("/webhooks/trigger", json={"event_type": "order.exploded"}).status_code == 400
