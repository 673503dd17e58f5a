"""
Application configuration module for the OmniSales commerce services.
Contains environment variables, constants, and settings.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# ═══════════════════════════════════════════
# ENVIRONMENT VARIABLES
# ═══════════════════════════════════════════

SUPABASE_URL = os.getenv("SUPABASE_URL", "http://localhost:54321")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
SUPABASE_TIMEOUT_SECONDS = int(os.getenv("SUPABASE_TIMEOUT_SECONDS", "15"))

PORT = int(os.getenv("PORT", 5010))
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ═══════════════════════════════════════════
# AI CHATBOT
# ═══════════════════════════════════════════

AI_PROVIDER = os.getenv("AI_PROVIDER", "openai")  # openai, anthropic
AI_MODEL = os.getenv("AI_MODEL", "gpt-4")
AI_API_KEY = os.getenv("AI_API_KEY", "")
AI_API_BASE_URL = os.getenv("AI_API_BASE_URL", "")
AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", "0.7"))
AI_MAX_TOKENS = int(os.getenv("AI_MAX_TOKENS", "1000"))
AI_TIMEOUT_SECONDS = int(os.getenv("AI_TIMEOUT_SECONDS", "30"))
AI_SYSTEM_PROMPT = os.getenv("AI_SYSTEM_PROMPT", "")

CHATBOT_CACHE_ENABLED = os.getenv("CHATBOT_CACHE_ENABLED", "true").lower() == "true"
CHATBOT_CACHE_TTL = int(os.getenv("CHATBOT_CACHE_TTL", "3600"))
CHATBOT_PII_MASKING = os.getenv("CHATBOT_PII_MASKING", "true").lower() == "true"
CHATBOT_AUTO_ESCALATE = os.getenv("CHATBOT_AUTO_ESCALATE", "true").lower() == "true"
CHATBOT_LOW_CONFIDENCE_THRESHOLD = float(os.getenv("CHATBOT_LOW_CONFIDENCE_THRESHOLD", "0.6"))
CHATBOT_HISTORY_LIMIT = int(os.getenv("CHATBOT_HISTORY_LIMIT", "20"))

# Per-user and per-IP request windows for /chat
CHATBOT_RATE_LIMIT = int(os.getenv("CHATBOT_RATE_LIMIT", "20"))
CHATBOT_RATE_WINDOW_SECONDS = int(os.getenv("CHATBOT_RATE_WINDOW_SECONDS", "60"))
CHATBOT_IP_RATE_LIMIT = int(os.getenv("CHATBOT_IP_RATE_LIMIT", "100"))
CHATBOT_IP_RATE_WINDOW_SECONDS = int(os.getenv("CHATBOT_IP_RATE_WINDOW_SECONDS", "3600"))

MAX_MESSAGE_LENGTH = 2000
MAX_URLS_PER_MESSAGE = 3

# ═══════════════════════════════════════════
# SHIPPING CARRIERS
# ═══════════════════════════════════════════

KERRY_API_KEY = os.getenv("KERRY_API_KEY", "")
KERRY_ENVIRONMENT = os.getenv("KERRY_ENVIRONMENT", "production")

FLASH_API_KEY = os.getenv("FLASH_API_KEY", "")
FLASH_MERCHANT_ID = os.getenv("FLASH_MERCHANT_ID", "")
FLASH_ENVIRONMENT = os.getenv("FLASH_ENVIRONMENT", "production")

THAILAND_POST_API_KEY = os.getenv("THAILAND_POST_API_KEY", "")
THAILAND_POST_ENVIRONMENT = os.getenv("THAILAND_POST_ENVIRONMENT", "production")

CARRIER_TIMEOUT_SECONDS = int(os.getenv("CARRIER_TIMEOUT_SECONDS", "30"))
SHIPPING_RATE_CACHE_HOURS = int(os.getenv("SHIPPING_RATE_CACHE_HOURS", "24"))
DEFAULT_CURRENCY = "THB"
DEFAULT_COUNTRY = "TH"

# Sender address used when shipping an order
COMPANY_SENDER_ADDRESS = {
    "name": os.getenv("COMPANY_NAME", "Company Name"),
    "phone": os.getenv("COMPANY_PHONE", "0123456789"),
    "address": os.getenv("COMPANY_ADDRESS", "Company Address"),
    "district": os.getenv("COMPANY_DISTRICT", "District"),
    "province": os.getenv("COMPANY_PROVINCE", "Bangkok"),
    "postal_code": os.getenv("COMPANY_POSTAL_CODE", "10100"),
}

# ═══════════════════════════════════════════
# RETURNS & PRICING
# ═══════════════════════════════════════════

RETURN_WINDOW_DAYS = int(os.getenv("RETURN_WINDOW_DAYS", "30"))

# Dynamic price is always kept within [base * floor, base * ceiling]
PRICE_FLOOR_RATIO = float(os.getenv("PRICE_FLOOR_RATIO", "0.5"))
PRICE_CEILING_RATIO = float(os.getenv("PRICE_CEILING_RATIO", "2.0"))

PRICE_QUOTE_CACHE_SECONDS = 5 * 60

# ═══════════════════════════════════════════
# WEBHOOKS
# ═══════════════════════════════════════════

WEBHOOK_MAX_ATTEMPTS = int(os.getenv("WEBHOOK_MAX_ATTEMPTS", "5"))
WEBHOOK_INITIAL_DELAY_MS = int(os.getenv("WEBHOOK_INITIAL_DELAY_MS", "1000"))
WEBHOOK_BACKOFF_MULTIPLIER = float(os.getenv("WEBHOOK_BACKOFF_MULTIPLIER", "2"))
WEBHOOK_MAX_DELAY_MS = int(os.getenv("WEBHOOK_MAX_DELAY_MS", str(60 * 60 * 1000)))
WEBHOOK_DEFAULT_TIMEOUT_SECONDS = int(os.getenv("WEBHOOK_DEFAULT_TIMEOUT_SECONDS", "30"))
WEBHOOK_USER_AGENT = "OmniSales-Webhook/1.0"
WEBHOOK_RETRY_BATCH_SIZE = 100

# ═══════════════════════════════════════════
# SUPPORT TICKETS
# ═══════════════════════════════════════════

# SLA deadline per ticket priority (hours)
SLA_HOURS = {
    "urgent": 1,
    "high": 4,
    "medium": 24,
    "low": 72,
}
