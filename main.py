"""
Main entry point: runs sample customer messages through the chatbot's
security check and intent detection, without calling the LLM.

    python main.py
    python main.py "Where is my order ORD123456?"
"""

import json
import sys

from chat_security import mask_pii, perform_security_check
from intent_classifier import detect_intent
from models import Intent
from services import execute_intent_action

# Intents whose actions only read fixed data
_OFFLINE_ACTIONS = {Intent.FAQ, Intent.REFUND_REQUEST, Intent.ACCOUNT_MANAGEMENT, Intent.GENERAL_INQUIRY}


def process(utterance: str):
    """Check, mask and classify a single utterance and print results."""
    security = perform_security_check(utterance, "demo")

    print(f"\n{'━'*70}")
    print(f"💬  \"{utterance}\"")
    if not security.allowed:
        print(f"⛔  Rejected:   {'; '.join(security.warnings)}")
        return

    masked, has_pii = mask_pii(security.sanitized_message)
    if has_pii:
        print(f"🔒  Masked:     \"{masked}\"")

    result = detect_intent(masked)
    print(f"🎯  Intent:     {result.intent.value}")
    print(f"📊  Confidence: {result.confidence.value} ({result.score:.2f})")
    if result.entities:
        print(f"📦  Entities:   {json.dumps(result.entities, ensure_ascii=False)}")
    if result.should_escalate:
        print(f"🙋  Escalate:   {result.escalation_reason.value}")

    if result.intent in _OFFLINE_ACTIONS:
        action = execute_intent_action(result.intent, result.entities, None)
        print(f"   → {action.message}")


if __name__ == "__main__":
    if len(sys.argv) > 1:
        process(" ".join(sys.argv[1:]))
        sys.exit(0)

    tests = [
        # ── Orders & Shipping ──
        "Where is my order ORD123456?",
        "Can I check the status of order #A1B2C3D4?",
        "Track my package EB123456789TH",
        "When will my delivery arrive?",

        # ── Returns & Refunds ──
        "I want to return this item from order ORD777888",
        "How do I get a refund?",

        # ── Discovery & FAQ ──
        "Can you recommend a good laptop product?",
        "What is your shipping policy?",

        # ── Hand-off ──
        "I want to speak to a human agent",
        "I am very unhappy with the bad service",
        "Please update my account password",

        # ── PII & Security ──
        "My email is somchai@example.com and phone 081-234-5678",
        "' OR 1=1 --",
        "<script>alert('x')</script> hello",
        "hello",
    ]

    for t in tests:
        process(t)
