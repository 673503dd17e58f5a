"""
Customer-service intent detection for the OmniSales chatbot.
==============================================================
Scores every intent by regex patterns and keywords, picks the best one
and extracts the entities the intent actions need (order id, tracking
number, contact details, product category).
"""

import re
from typing import Dict, List, Optional, Tuple

from models import Intent, Confidence, EscalationReason, IntentDetectionResult

# ─────────────────────────────────────────────
# 1. PATTERNS & KEYWORDS
# ─────────────────────────────────────────────

PATTERN_WEIGHT = 0.3
KEYWORD_WEIGHT = 0.15

HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.4

# Declaration order breaks ties between equal scores.
INTENT_PATTERNS: Dict[Intent, List[str]] = {
    Intent.ORDER_LOOKUP: [
        r"\b(where|what|check|find|track|status|view)\b.*\border\b",
        r"\border\b.*\b(number|id|#|status|tracking)\b",
        r"\bmy\s+orders?\b",
        r"\border\s+history\b",
    ],
    Intent.SHIPPING_TRACKING: [
        r"\b(track|where|status|locate)\b.*\b(package|shipment|delivery|parcel)\b",
        r"\bshipping\b.*\b(status|track|update)\b",
        r"\bwhen\b.*\b(arrive|deliver|receive)\b",
        r"\bdelivery\s+(status|time|date)\b",
    ],
    Intent.RETURN_REQUEST: [
        r"\b(return|send back|exchange)\b.*\b(item|product|order)\b",
        r"\bhow\b.*\breturn\b",
        r"\breturn\s+(policy|process|label)\b",
        r"\bwant\s+to\s+return\b",
    ],
    Intent.REFUND_REQUEST: [
        r"\b(refund|money back|reimburse)\b",
        r"\bcancel\b.*\border\b.*\brefund\b",
        r"\bhow\b.*\bget\b.*\brefund\b",
        r"\brefund\s+(status|policy|request)\b",
    ],
    Intent.PRODUCT_RECOMMENDATION: [
        r"\b(recommend|suggest|show|find)\b.*\b(product|item)\b",
        r"\bwhat\b.*\b(product|item)\b.*\b(good|best|recommend)\b",
        r"\blooking\s+for\b.*\bproduct\b",
        r"\b(similar|alternative)\s+products?\b",
    ],
    Intent.FAQ: [
        r"\b(policy|policies|how|what|when|can|do you)\b",
        r"\bfrequently\s+asked\b",
        r"\bhelp\s+(center|desk)\b",
    ],
    Intent.ESCALATE_TO_HUMAN: [
        r"\b(speak|talk|chat)\b.*\b(human|agent|person|representative)\b",
        r"\bcustomer\s+(service|support)\b",
        r"\bneed\s+help\b.*\bhuman\b",
    ],
    Intent.ACCOUNT_MANAGEMENT: [
        r"\b(account|profile|password|email)\b.*\b(change|update|edit|reset)\b",
        r"\bupdate\b.*\b(information|details|address)\b",
        r"\bchange\s+password\b",
    ],
    Intent.COMPLAINT: [
        r"\b(complaint|complain|unhappy|dissatisfied|angry|frustrated)\b",
        r"\bbad\b.*\b(service|experience|quality)\b",
        r"\bnot\s+(satisfied|happy)\b",
    ],
    Intent.GENERAL_INQUIRY: [r".*"],
}

INTENT_KEYWORDS: Dict[Intent, List[str]] = {
    Intent.ORDER_LOOKUP: ["order", "purchase", "bought"],
    Intent.SHIPPING_TRACKING: ["shipping", "delivery", "track", "arrive"],
    Intent.RETURN_REQUEST: ["return", "exchange", "send back"],
    Intent.REFUND_REQUEST: ["refund", "money back", "reimburse"],
    Intent.PRODUCT_RECOMMENDATION: ["recommend", "suggest", "looking for"],
    Intent.FAQ: ["policy", "how", "what", "when"],
    Intent.ESCALATE_TO_HUMAN: ["agent", "human", "representative"],
    Intent.ACCOUNT_MANAGEMENT: ["account", "password", "profile"],
    Intent.COMPLAINT: ["complaint", "unhappy", "bad"],
    Intent.GENERAL_INQUIRY: [],
}

_COMPILED = {
    intent: [re.compile(p, re.IGNORECASE) for p in patterns]
    for intent, patterns in INTENT_PATTERNS.items()
}

# ─────────────────────────────────────────────
# 2. ENTITY PATTERNS
# ─────────────────────────────────────────────

_ORDER_ID_PREFIXED = re.compile(
    r"(?:\b(?:order|id|ref)\b|#)\s*:?\s*((?=[A-Z0-9-]*\d)[A-Z0-9-]{6,20})\b", re.IGNORECASE
)
_ORDER_ID_BARE = re.compile(r"\b((?=[A-Z0-9]*\d)[A-Z0-9]{6,20})\b")
_EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_THAI_PHONE = re.compile(r"\b(0\d{1,2}[-\s]?\d{3,4}[-\s]?\d{4})\b")
_PRODUCT_CATEGORY = re.compile(
    r"\b(laptop|phone|tablet|camera|watch|clothing|shoes|bag)\w*", re.IGNORECASE
)
# S10 postal barcode (EB123456789TH) or a carrier number with at least one digit
_TRACKING_NUMBER = re.compile(r"\b([A-Z]{2}\d{9}[A-Z]{2}|(?=[A-Z0-9]*\d)[A-Z0-9]{10,30})\b")


def detect_intent(message: str, context: Optional[dict] = None) -> IntentDetectionResult:
    """Detect the customer's intent and pull out the entities it needs."""
    scores = _score_intents(message)
    top_intent, top_score = scores[0] if scores else (Intent.GENERAL_INQUIRY, PATTERN_WEIGHT)

    entities = extract_entities(message, top_intent)
    if context and not entities.get("order_id") and context.get("last_order_id"):
        entities["order_id"] = str(context["last_order_id"]).upper()

    confidence = confidence_level(top_score)
    reason = _escalation_reason(top_intent, confidence)

    return IntentDetectionResult(
        intent=top_intent,
        confidence=confidence,
        score=top_score,
        entities=entities,
        should_escalate=reason is not None,
        escalation_reason=reason,
    )


def calculate_score(message: str, intent: Intent) -> float:
    """0.3 per matching pattern plus 0.15 per keyword present, capped at 1.0."""
    text = message.lower()
    score = sum(PATTERN_WEIGHT for p in _COMPILED[intent] if p.search(text))
    score += sum(KEYWORD_WEIGHT for kw in INTENT_KEYWORDS[intent] if kw in text)
    return round(min(score, 1.0), 2)


def confidence_level(score: float) -> Confidence:
    if score >= HIGH_CONFIDENCE:
        return Confidence.HIGH
    if score >= MEDIUM_CONFIDENCE:
        return Confidence.MEDIUM
    return Confidence.LOW


def _score_intents(message: str) -> List[Tuple[Intent, float]]:
    scores = []
    for intent in INTENT_PATTERNS:
        score = calculate_score(message, intent)
        if score > 0:
            scores.append((intent, score))
    # sorted() is stable: equal scores keep declaration order
    return sorted(scores, key=lambda pair: pair[1], reverse=True)


def _escalation_reason(intent: Intent, confidence: Confidence) -> Optional[EscalationReason]:
    if intent == Intent.ESCALATE_TO_HUMAN:
        return EscalationReason.USER_REQUEST
    if intent == Intent.COMPLAINT:
        return EscalationReason.SENSITIVE_DATA
    if confidence == Confidence.LOW:
        return EscalationReason.LOW_CONFIDENCE
    return None


# ─────────────────────────────────────────────
# 3. ENTITY EXTRACTION
# ─────────────────────────────────────────────

def extract_entities(message: str, intent: Intent) -> dict:
    entities = {}
    _extract_phone(message, entities)
    _extract_order_id(message, entities)
    _extract_email(message, entities)

    if intent == Intent.PRODUCT_RECOMMENDATION:
        _extract_product_category(message, entities)
    if intent == Intent.SHIPPING_TRACKING:
        _extract_tracking_number(message, entities)
    return entities


def _extract_order_id(text: str, entities: dict):
    m = _ORDER_ID_PREFIXED.search(text)
    if m:
        entities["order_id"] = m.group(1).upper()
        return
    for m in _ORDER_ID_BARE.finditer(text):
        candidate = m.group(1)
        # Thai mobile numbers look like bare ids
        if candidate == entities.get("phone"):
            continue
        entities["order_id"] = candidate.upper()
        return


def _extract_email(text: str, entities: dict):
    m = _EMAIL.search(text)
    if m:
        entities["email"] = m.group(0).lower()


def _extract_phone(text: str, entities: dict):
    m = _THAI_PHONE.search(text)
    if m:
        entities["phone"] = re.sub(r"[-\s]", "", m.group(1))


def _extract_product_category(text: str, entities: dict):
    m = _PRODUCT_CATEGORY.search(text)
    if m:
        entities["product_category"] = m.group(0).lower()


def _extract_tracking_number(text: str, entities: dict):
    m = _TRACKING_NUMBER.search(text)
    if m:
        entities["tracking_number"] = m.group(1)
