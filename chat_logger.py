"""
chat_logger.py - Logging setup shared by every OmniSales module

    logger = get_logger("omnisales")
    logger.info(f"Shipment created | provider={provider} | tracking={tracking}")

Output goes to the console and to logs/<YYYY-MM-DD>/omnisales.txt
(LOG_DIR overrides the base folder). LOG_LEVEL sets the console level;
the file always receives DEBUG and up.

Customer text, URLs and credentials pass through the sanitize helpers
before they reach a log line.
"""

import os
import re
import logging
from datetime import datetime
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "omnisales.txt"

# Query parameters masked by sanitize_url
SECRET_QUERY_PARAMS = ("apikey", "api_key", "token", "access_token", "key", "secret", "signature")

_WEBHOOK_SECRET = re.compile(r"whsec_[0-9a-fA-F]+")
_BEARER_TOKEN = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)


class MillisecondFormatter(logging.Formatter):
    """[2026-10-19 08:15:02.137] style timestamps."""

    def formatTime(self, record, datefmt=None):
        if not datefmt:
            return super().formatTime(record, datefmt)
        stamp = datetime.fromtimestamp(record.created).strftime(datefmt)
        return f"{stamp}.{int(record.msecs):03d}"


def _level(name: str) -> int:
    return getattr(logging, (name or "INFO").upper(), logging.INFO)


def setup_logger(name: str = "omnisales", log_level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    if logger.handlers:
        return logger

    formatter = MillisecondFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    # ─── Daily log folder ───
    log_dir = Path(os.getenv("LOG_DIR", "logs")) / datetime.now().strftime("%Y-%m-%d")
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # ─── Console ───
    console_handler = logging.StreamHandler()
    console_handler.setLevel(_level(log_level))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.propagate = False
    return logger


def get_logger(name: str = "omnisales") -> logging.Logger:
    """The named logger, configured on first use from LOG_LEVEL."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        setup_logger(name, os.getenv("LOG_LEVEL", "INFO"))
    return logger


# ═══════════════════════════════════════════
# SANITIZERS
# ═══════════════════════════════════════════

def redact_secrets(text: str) -> str:
    """Mask webhook signing secrets and bearer tokens."""
    if not text:
        return text
    text = _WEBHOOK_SECRET.sub("whsec_***", text)
    return _BEARER_TOKEN.sub(r"\1***", text)


def sanitize_log_string(text: str) -> str:
    """
    Make user-supplied text safe for a single log line: control
    characters (newlines included) become spaces, secrets are masked.
    """
    if not text:
        return text
    text = "".join(" " if ord(char) < 32 else char for char in text)
    return redact_secrets(text)


def sanitize_url(url: str) -> str:
    """Mask credential query parameters, e.g. ?token=abc -> ?token=***."""
    if not url:
        return url
    for param in SECRET_QUERY_PARAMS:
        url = re.sub(rf"([?&]{param}=)[^&#]*", r"\1***", url, flags=re.IGNORECASE)
    return url
