"""
Tests for intent detection: scoring, confidence levels, escalation
decisions and entity extraction.
"""
import pytest
from models import Intent, Confidence, EscalationReason
from intent_classifier import (
    detect_intent,
    calculate_score,
    confidence_level,
    extract_entities,
)


# ═══════════════════════════════════════════
# A. INTENT SELECTION
# ═══════════════════════════════════════════

class TestIntentSelection:
    """The highest scoring intent wins."""

    def test_order_lookup_with_order_id(self):
        result = detect_intent("Where is my order ORD123456?")
        assert result.intent == Intent.ORDER_LOOKUP
        assert result.confidence == Confidence.HIGH
        assert result.score == pytest.approx(0.75)
        assert result.entities["order_id"] == "ORD123456"
        assert result.should_escalate is False

    def test_shipping_tracking(self):
        result = detect_intent("Track my package EB123456789TH")
        assert result.intent == Intent.SHIPPING_TRACKING
        assert result.confidence == Confidence.MEDIUM
        assert result.entities["tracking_number"] == "EB123456789TH"

    def test_refund_request(self):
        result = detect_intent("How do I get a refund?")
        assert result.intent == Intent.REFUND_REQUEST
        assert result.confidence == Confidence.HIGH

    def test_faq(self):
        result = detect_intent("What is your shipping policy?")
        assert result.intent == Intent.FAQ
        assert result.score == pytest.approx(0.6)

    def test_product_recommendation_extracts_category(self):
        result = detect_intent("Can you recommend a good laptop product?")
        assert result.intent == Intent.PRODUCT_RECOMMENDATION
        assert result.entities["product_category"] == "laptop"

    def test_unmatched_message_is_general_inquiry(self):
        result = detect_intent("hello")
        assert result.intent == Intent.GENERAL_INQUIRY
        assert result.confidence == Confidence.LOW
        assert result.score == pytest.approx(0.3)


# ═══════════════════════════════════════════
# B. ESCALATION
# ═══════════════════════════════════════════

class TestEscalation:
    """Human requests, complaints and low confidence are escalated."""

    def test_user_requests_human(self):
        result = detect_intent("I want to speak to a human agent")
        assert result.intent == Intent.ESCALATE_TO_HUMAN
        assert result.should_escalate is True
        assert result.escalation_reason == EscalationReason.USER_REQUEST

    def test_complaint_is_sensitive(self):
        result = detect_intent("I am very unhappy with the bad service")
        assert result.intent == Intent.COMPLAINT
        assert result.confidence == Confidence.HIGH
        assert result.escalation_reason == EscalationReason.SENSITIVE_DATA

    def test_low_confidence(self):
        result = detect_intent("hello")
        assert result.should_escalate is True
        assert result.escalation_reason == EscalationReason.LOW_CONFIDENCE

    def test_to_dict_uses_plain_values(self):
        data = detect_intent("I want to speak to a human agent").to_dict()
        assert data["intent"] == "escalate_to_human"
        assert data["escalation_reason"] == "user_request"
        assert data["confidence"] == "medium"


# ═══════════════════════════════════════════
# C. SCORING
# ═══════════════════════════════════════════

class TestScoring:
    """0.3 per pattern, 0.15 per keyword, capped at 1.0."""

    def test_keyword_only(self):
        assert calculate_score("order order", Intent.ORDER_LOOKUP) == pytest.approx(0.15)

    def test_score_is_capped(self):
        text = "where is my order number? my order history shows the order status"
        assert calculate_score(text, Intent.ORDER_LOOKUP) == 1.0

    def test_no_match_scores_zero(self):
        assert calculate_score("hello", Intent.COMPLAINT) == 0

    @pytest.mark.parametrize("score,expected", [
        (1.0, Confidence.HIGH),
        (0.7, Confidence.HIGH),
        (0.69, Confidence.MEDIUM),
        (0.4, Confidence.MEDIUM),
        (0.39, Confidence.LOW),
        (0.0, Confidence.LOW),
    ])
    def test_confidence_thresholds(self, score, expected):
        assert confidence_level(score) == expected


# ═══════════════════════════════════════════
# D. ENTITY EXTRACTION
# ═══════════════════════════════════════════

class TestEntityExtraction:
    """Order ids, contact details and the conversation fallback."""

    def test_prefixed_order_id_is_uppercased(self):
        entities = extract_entities("status of order #ab12cd34 please", Intent.ORDER_LOOKUP)
        assert entities["order_id"] == "AB12CD34"

    def test_order_id_requires_a_digit(self):
        entities = extract_entities("my order ABCDEFGH is late", Intent.ORDER_LOOKUP)
        assert "order_id" not in entities

    def test_phone_number_is_not_an_order_id(self):
        entities = extract_entities("Call me at 0812345678 about it", Intent.GENERAL_INQUIRY)
        assert entities["phone"] == "0812345678"
        assert "order_id" not in entities

    def test_phone_separators_removed(self):
        entities = extract_entities("my number is 081-234-5678", Intent.GENERAL_INQUIRY)
        assert entities["phone"] == "0812345678"

    def test_email_is_lowercased(self):
        entities = extract_entities("my email is Somchai@Example.com", Intent.ACCOUNT_MANAGEMENT)
        assert entities["email"] == "somchai@example.com"

    def test_tracking_number_only_for_shipping(self):
        entities = extract_entities("parcel EB123456789TH", Intent.ORDER_LOOKUP)
        assert "tracking_number" not in entities

    def test_last_order_id_from_context(self):
        result = detect_intent("where is my order", {"last_order_id": "ord999111"})
        assert result.entities["order_id"] == "ORD999111"

    def test_message_order_id_beats_context(self):
        result = detect_intent("where is my order ORD123456", {"last_order_id": "ORD999111"})
        assert result.entities["order_id"] == "ORD123456"
