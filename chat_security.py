"""
Security checks for inbound chatbot messages.

PII masking, content filtering, validation, input sanitization, injection
detection and per-user / per-IP rate limiting over the shared cache.
"""

import re
import time
from typing import List, Optional, Tuple

from app_config import (
    CHATBOT_RATE_LIMIT,
    CHATBOT_RATE_WINDOW_SECONDS,
    CHATBOT_IP_RATE_LIMIT,
    CHATBOT_IP_RATE_WINDOW_SECONDS,
    MAX_MESSAGE_LENGTH,
    MAX_URLS_PER_MESSAGE,
)
from cache_manager import generate_cache_key, get_cache_manager
from chat_logger import get_logger
from models import SecurityCheckResult

logger = get_logger("omnisales")


# ══════════════════════════════════════════════════════════════
# PII MASKING
# ══════════════════════════════════════════════════════════════

_PII_PATTERNS = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL_REDACTED]"),
    (re.compile(r"\b\d{4}[- ]?\d{4}[- ]?\d{4}[- ]?\d{4}\b"), "[CARD_REDACTED]"),
    # Thai national id: 1-4-5-2-1 digits
    (re.compile(r"\b\d[-\s]?\d{4}[-\s]?\d{5}[-\s]?\d{2}[-\s]?\d\b"), "[ID_REDACTED]"),
    (re.compile(r"(?:\b0\d{1,2}[-\s]?\d{3,4}[-\s]?\d{4}\b|\+\d{1,3}[-\s]?\d{6,14}\b)"), "[PHONE_REDACTED]"),
    (re.compile(r"\b[A-Z]{1,2}\d{6,9}\b"), "[PASSPORT_REDACTED]"),
]

_ADDRESS_KEYWORDS = ["street", "road", "avenue", "soi", "moo", "ถนน", "ซอย", "หมู่"]


def mask_pii(text: str) -> Tuple[str, bool]:
    """
    Redact personal data from a message.

    Addresses are not redacted but still count as PII.

    Returns:
        (masked_text, has_pii)
    """
    masked = text
    has_pii = False
    for pattern, replacement in _PII_PATTERNS:
        masked, count = pattern.subn(replacement, masked)
        if count:
            has_pii = True

    lower = text.lower()
    if any(keyword in lower for keyword in _ADDRESS_KEYWORDS):
        has_pii = True

    return masked, has_pii


# ══════════════════════════════════════════════════════════════
# CONTENT FILTER
# ══════════════════════════════════════════════════════════════

_PROFANITY = [
    re.compile(r"\b(fuck|shit|damn|bastard|bitch|asshole)\w*", re.IGNORECASE),
    re.compile(r"(เหี้ย|ควย|สัส|เชี่ย)"),
]
_SPAM = [
    re.compile(r"click here now", re.IGNORECASE),
    re.compile(r"limited time offer", re.IGNORECASE),
    re.compile(r"act now", re.IGNORECASE),
    re.compile(r"\b(viagra|cialis|lottery|casino)\b", re.IGNORECASE),
]
_THREATS = [
    re.compile(r"\b(kill|murder|bomb|attack|threat)\b", re.IGNORECASE),
    re.compile(r"(ฆ่า|ทำร้าย|ข่มขู่)"),
]
_REPETITION = re.compile(r"(.)\1{5,}")


def filter_content(text: str) -> dict:
    """
    Classify a message as appropriate or not.

    Returns:
        {"is_appropriate": bool, "reason": str | None, "severity": "low" | "medium" | "high"}
    """
    if any(p.search(text) for p in _PROFANITY):
        return {"is_appropriate": False, "reason": "Contains profanity or offensive language", "severity": "medium"}
    if any(p.search(text) for p in _SPAM):
        return {"is_appropriate": False, "reason": "Detected as spam", "severity": "low"}
    if any(p.search(text) for p in _THREATS):
        return {"is_appropriate": False, "reason": "Contains threatening language", "severity": "high"}

    caps = sum(1 for c in text if "A" <= c <= "Z")
    if len(text) > 20 and caps / len(text) > 0.7:
        # flagged, still allowed through
        return {"is_appropriate": True, "reason": "Excessive capitalization detected", "severity": "low"}

    if _REPETITION.search(text):
        return {"is_appropriate": False, "reason": "Excessive character repetition", "severity": "low"}

    return {"is_appropriate": True, "reason": None, "severity": "low"}


# ══════════════════════════════════════════════════════════════
# VALIDATION & SANITIZATION
# ══════════════════════════════════════════════════════════════

def validate_message(message: str) -> List[str]:
    """Return the list of validation errors (empty when the message is valid)."""
    errors = []
    if len(message) == 0:
        errors.append("Message cannot be empty")
    if len(message) > MAX_MESSAGE_LENGTH:
        errors.append(f"Message too long (maximum {MAX_MESSAGE_LENGTH} characters)")
    if len(message.strip()) == 0:
        errors.append("Message cannot contain only whitespace")
    if len(re.findall(r"https?://", message)) > MAX_URLS_PER_MESSAGE:
        errors.append("Too many URLs in message")
    return errors


_SCRIPT_BLOCK = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_HTML_TAG = re.compile(r"<[^>]*>")
_EVENT_HANDLER = re.compile(r"on\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)


def sanitize_input(text: str) -> str:
    """Strip script blocks, HTML tags and inline event handlers."""
    sanitized = _SCRIPT_BLOCK.sub("", text)
    sanitized = _HTML_TAG.sub("", sanitized)
    sanitized = _EVENT_HANDLER.sub("", sanitized)
    return sanitized.strip()


_SQL_INJECTION = [
    re.compile(r"\b(OR|AND)\b\s+\d+\s*=\s*\d+", re.IGNORECASE),
    re.compile(r"UNION\s+SELECT", re.IGNORECASE),
    re.compile(r"DROP\s+TABLE", re.IGNORECASE),
    re.compile(r"--\s*$"),
    re.compile(r";.*--"),
]
_XSS = [
    re.compile(r"<script\b", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"onerror\s*=", re.IGNORECASE),
    re.compile(r"onclick\s*=", re.IGNORECASE),
]
_COMMAND_INJECTION = [
    re.compile(r"[;|]\s*(ls|cat|rm|wget|curl|bash|sh)\s", re.IGNORECASE),
]


def detect_injection(text: str) -> List[str]:
    """Return the detected threats (empty when the text looks safe)."""
    threats = []
    if any(p.search(text) for p in _SQL_INJECTION):
        threats.append("Possible SQL injection attempt")
    if any(p.search(text) for p in _XSS):
        threats.append("Possible XSS attempt")
    if any(p.search(text) for p in _COMMAND_INJECTION):
        threats.append("Possible command injection attempt")
    return threats


# ══════════════════════════════════════════════════════════════
# RATE LIMITING
# ══════════════════════════════════════════════════════════════

def check_rate_limit(identifier: str, max_requests: int = CHATBOT_RATE_LIMIT,
                     window_seconds: int = CHATBOT_RATE_WINDOW_SECONDS) -> dict:
    """
    Fixed-window counter per identifier.

    Returns:
        {"allowed": bool, "remaining": int, "reset_at": epoch seconds}
    """
    key = generate_cache_key("ratelimit", "chatbot", identifier)
    now = int(time.time())
    cache = get_cache_manager()
    try:
        with cache.atomic():
            window = cache.get(key)
            if not window or now >= window["reset_at"]:
                reset_at = now + window_seconds
                cache.set(key, {"count": 1, "reset_at": reset_at}, window_seconds)
                return {"allowed": True, "remaining": max_requests - 1, "reset_at": reset_at}

            if window["count"] >= max_requests:
                return {"allowed": False, "remaining": 0, "reset_at": window["reset_at"]}

            window["count"] += 1
            cache.set(key, window, max(1, window["reset_at"] - now))
            return {"allowed": True, "remaining": max_requests - window["count"], "reset_at": window["reset_at"]}
    except Exception as e:
        # Fail open
        logger.error(f"Rate limit check failed for {sanitize_identifier(identifier)}: {e}", exc_info=True)
        return {"allowed": True, "remaining": max_requests, "reset_at": now + window_seconds}


def check_ip_rate_limit(ip: str, max_requests: int = CHATBOT_IP_RATE_LIMIT,
                        window_seconds: int = CHATBOT_IP_RATE_WINDOW_SECONDS) -> dict:
    return check_rate_limit(f"ip:{ip}", max_requests, window_seconds)


def sanitize_identifier(identifier: str) -> str:
    return re.sub(r"[^\w:.@-]", "_", identifier or "")[:64]


# ══════════════════════════════════════════════════════════════
# FULL CHECK
# ══════════════════════════════════════════════════════════════

def perform_security_check(message: str, user_id: str, ip: Optional[str] = None) -> SecurityCheckResult:
    """
    Validation -> sanitization -> injection -> content -> user rate -> IP rate.
    The first hard failure stops the pipeline.
    """
    errors = validate_message(message)
    if errors:
        return SecurityCheckResult(allowed=False, sanitized_message=message, warnings=errors)

    sanitized = sanitize_input(message)

    threats = detect_injection(message)
    if threats:
        logger.warning(f"Injection attempt from {sanitize_identifier(user_id)}: {threats}")
        return SecurityCheckResult(allowed=False, sanitized_message=sanitized, warnings=threats)

    warnings = []
    content = filter_content(sanitized)
    if not content["is_appropriate"]:
        warnings.append(content["reason"] or "Inappropriate content detected")
        if content["severity"] == "high":
            return SecurityCheckResult(allowed=False, sanitized_message=sanitized, warnings=warnings)

    rate = check_rate_limit(user_id)
    if not rate["allowed"]:
        return SecurityCheckResult(
            allowed=False,
            sanitized_message=sanitized,
            warnings=["Rate limit exceeded. Please try again later."],
            rate_limit_info=rate,
            rate_limited=True,
        )

    if ip:
        ip_rate = check_ip_rate_limit(ip)
        if not ip_rate["allowed"]:
            return SecurityCheckResult(
                allowed=False,
                sanitized_message=sanitized,
                warnings=["Too many requests from this IP address."],
                rate_limit_info=ip_rate,
                rate_limited=True,
            )

    return SecurityCheckResult(allowed=True, sanitized_message=sanitized, warnings=warnings, rate_limit_info=rate)
