"""
Chatbot Engine - customer-service conversations for the OmniSales storefront.

Flow per message:
    mask PII -> detect intent -> escalate? -> run intent action
    -> cached reply or LLM call -> update history -> suggestions
"""

import json
import time
from dataclasses import dataclass, asdict, replace
from typing import Dict, List, Optional

from app_config import (
    AI_PROVIDER,
    AI_MODEL,
    AI_API_KEY,
    AI_TEMPERATURE,
    AI_MAX_TOKENS,
    AI_SYSTEM_PROMPT,
    CHATBOT_CACHE_ENABLED,
    CHATBOT_CACHE_TTL,
    CHATBOT_PII_MASKING,
    CHATBOT_AUTO_ESCALATE,
    CHATBOT_LOW_CONFIDENCE_THRESHOLD,
    CHATBOT_HISTORY_LIMIT,
)
from cache_manager import get_cache, set_cache
from chat_logger import get_logger, sanitize_log_string
from chat_security import mask_pii
from core.helpers import generate_id, now_iso
from core.session import get_history, save_history, clear_history
from errors import LLMError
from intent_classifier import detect_intent
from llm_client import LLMClient
from models import (
    ChatRequest,
    ChatResponse,
    Confidence,
    EscalationReason,
    Intent,
    IntentDetectionResult,
)
from services.intent_actions import execute_intent_action

logger = get_logger("omnisales")

DEFAULT_SYSTEM_PROMPT = """You are a helpful customer service assistant for an online store in Thailand. Your role is to:

1. Help customers with order inquiries, shipping tracking, returns, and refunds
2. Provide product recommendations based on customer preferences
3. Answer frequently asked questions about policies and procedures
4. Be polite, professional, and empathetic
5. If you cannot help with a complex issue, escalate to a human agent

Always provide accurate information. If you're unsure, say so and offer to connect with a human agent.
Reply in the customer's language (Thai or English)."""

ESCALATION_MESSAGE = (
    "I understand this is an important matter. Let me connect you with one of our "
    "customer service specialists who can better assist you with this request. "
    "Please hold for a moment."
)

SUGGESTIONS = {
    Intent.ORDER_LOOKUP: ["Track my order", "When will my order arrive?", "Change delivery address"],
    Intent.SHIPPING_TRACKING: ["Where is my package?", "Update shipping address", "Contact delivery driver"],
    Intent.RETURN_REQUEST: ["How to return an item?", "Return policy", "Get return label"],
    Intent.PRODUCT_RECOMMENDATION: ["Show similar products", "Best sellers", "New arrivals"],
    Intent.FAQ: ["Shipping policy", "Return policy", "Payment methods"],
}

# Intents whose action data belongs to one customer; their replies are never cached
CUSTOMER_DATA_INTENTS = frozenset({
    Intent.ORDER_LOOKUP,
    Intent.SHIPPING_TRACKING,
    Intent.RETURN_REQUEST,
    Intent.REFUND_REQUEST,
})


@dataclass
class ChatbotConfig:
    provider: str = AI_PROVIDER
    model: str = AI_MODEL
    temperature: float = AI_TEMPERATURE
    max_tokens: int = AI_MAX_TOKENS
    api_key: str = AI_API_KEY
    system_prompt: str = AI_SYSTEM_PROMPT or DEFAULT_SYSTEM_PROMPT
    enable_cache: bool = CHATBOT_CACHE_ENABLED
    cache_ttl: int = CHATBOT_CACHE_TTL
    enable_pii_masking: bool = CHATBOT_PII_MASKING
    auto_escalate: bool = CHATBOT_AUTO_ESCALATE
    low_confidence_threshold: float = CHATBOT_LOW_CONFIDENCE_THRESHOLD
    history_limit: int = CHATBOT_HISTORY_LIMIT

    def to_dict(self, include_secrets: bool = False) -> dict:
        data = asdict(self)
        if not include_secrets:
            data["api_key"] = "***" if self.api_key else ""
        return data


class ChatbotEngine:

    def __init__(self, config: Optional[ChatbotConfig] = None, llm_client: Optional[LLMClient] = None):
        self.config = config or ChatbotConfig()
        self._llm_client = llm_client

    # ─────────────────────────────────────────────
    # CHAT
    # ─────────────────────────────────────────────

    def chat(self, request: ChatRequest) -> ChatResponse:
        start_time = time.time()
        conversation_id = request.conversation_id or generate_id("conv")

        try:
            history = get_history(conversation_id)
            prompt = enhance_prompt_with_context(self.config.system_prompt, request.context)

            message = request.message
            if self.config.enable_pii_masking:
                message, has_pii = mask_pii(message)
                if has_pii:
                    logger.info(f"PII masked | conversation={conversation_id}")

            intent_result = detect_intent(message, request.context)
            logger.info(
                f"Intent: {intent_result.intent.value} | confidence={intent_result.confidence.value} | "
                f"score={intent_result.score:.2f} | conversation={conversation_id} | "
                f"message=\"{sanitize_log_string(message[:120])}\""
            )

            if self.config.auto_escalate and intent_result.should_escalate:
                return self._escalate(conversation_id, message, history, intent_result,
                                      intent_result.escalation_reason)

            action = execute_intent_action(intent_result.intent, intent_result.entities, request.customer_id)
            if self.config.auto_escalate and action.should_escalate:
                return self._escalate(conversation_id, message, history, intent_result,
                                      action.escalation_reason)
            if action.message:
                prompt += f"\n\nLookup result ({intent_result.intent.value}): {action.message}"
                if action.data:
                    prompt += "\n" + json.dumps(action.data, ensure_ascii=False, default=str)[:4000]

            cached = False
            tokens_used = 0
            use_cache = self.config.enable_cache and is_shareable_reply(request, intent_result.intent, history)
            cache_key = generate_chat_cache_key(message, intent_result.intent)
            reply = get_cache(cache_key) if use_cache else None
            if reply is not None:
                cached = True
                logger.info(f"Chat cache hit | key={cache_key[:60]}")
            else:
                completion = self._llm().chat_completion(prompt, _to_turns(history) + [
                    {"role": "user", "content": message},
                ])
                reply = completion["content"]
                tokens_used = completion["total_tokens"]
                if use_cache:
                    set_cache(cache_key, reply, self.config.cache_ttl)

            metadata = {
                "model_used": self.config.model,
                "tokens_used": tokens_used,
                "response_time_ms": int((time.time() - start_time) * 1000),
                "cached": cached,
            }
            history.append(_message(conversation_id, "user", message,
                                    intent=intent_result.intent.value,
                                    intent_confidence=intent_result.confidence.value,
                                    entities=intent_result.entities))
            assistant = _message(conversation_id, "assistant", reply, metadata=metadata)
            history.append(assistant)
            save_history(conversation_id, history, self.config.history_limit)

            return ChatResponse(
                conversation_id=conversation_id,
                message_id=assistant["id"],
                response=reply,
                intent=intent_result.intent,
                intent_confidence=intent_result.confidence,
                entities=intent_result.entities,
                suggestions=list(SUGGESTIONS.get(intent_result.intent, [])),
                metadata=metadata,
            )
        except Exception as e:
            logger.error(f"Chatbot error | conversation={conversation_id} | error={str(e)}", exc_info=True)
            raise LLMError(f"Chatbot processing failed: {str(e)}") from e

    def _escalate(self, conversation_id: str, message: str, history: List[Dict],
                  intent_result: IntentDetectionResult,
                  reason: Optional[EscalationReason]) -> ChatResponse:
        logger.info(
            f"Escalating conversation={conversation_id} | "
            f"reason={reason.value if reason else 'unknown'}"
        )
        metadata = {"model_used": self.config.model, "tokens_used": 0, "response_time_ms": 0, "cached": False}
        history.append(_message(conversation_id, "user", message,
                                intent=intent_result.intent.value,
                                intent_confidence=intent_result.confidence.value,
                                entities=intent_result.entities))
        assistant = _message(conversation_id, "assistant", ESCALATION_MESSAGE, metadata=metadata)
        history.append(assistant)
        save_history(conversation_id, history, self.config.history_limit)

        return ChatResponse(
            conversation_id=conversation_id,
            message_id=assistant["id"],
            response=ESCALATION_MESSAGE,
            intent=Intent.ESCALATE_TO_HUMAN,
            intent_confidence=Confidence.HIGH,
            entities=intent_result.entities,
            escalated=True,
            escalation_reason=reason,
            metadata=metadata,
        )

    def _llm(self) -> LLMClient:
        if self._llm_client is not None:
            return self._llm_client
        return LLMClient(
            provider=self.config.provider,
            model=self.config.model,
            api_key=self.config.api_key or None,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )

    # ─────────────────────────────────────────────
    # HISTORY & CONFIG
    # ─────────────────────────────────────────────

    def get_conversation_history(self, conversation_id: str) -> List[Dict]:
        return get_history(conversation_id)

    def clear_conversation_history(self, conversation_id: str) -> None:
        clear_history(conversation_id)

    def update_config(self, **changes) -> ChatbotConfig:
        unknown = set(changes) - set(ChatbotConfig.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown chatbot config fields: {sorted(unknown)}")
        self.config = replace(self.config, **changes)
        return self.config

    def get_config(self) -> ChatbotConfig:
        return replace(self.config)


def enhance_prompt_with_context(base_prompt: str, context: Optional[dict]) -> str:
    """Append customer info, recent orders and previous topics to the system prompt."""
    if not context:
        return base_prompt

    prompt = base_prompt
    if context.get("customer_info"):
        prompt += "\n\nCustomer Information:\n" + json.dumps(
            context["customer_info"], indent=2, ensure_ascii=False, default=str)
    if context.get("order_history"):
        prompt += "\n\nRecent Orders:\n" + json.dumps(
            context["order_history"][:5], indent=2, ensure_ascii=False, default=str)
    if context.get("previous_intents"):
        prompt += "\n\nPrevious Conversation Topics: " + ", ".join(context["previous_intents"])
    return prompt


def is_shareable_reply(request: ChatRequest, intent: Intent, history: List[Dict]) -> bool:
    """
    Cached replies are keyed by message and intent only, so they may be
    served to any customer. A reply qualifies when nothing customer-specific
    went into its prompt: no caller context, no earlier turns and no
    per-customer lookup data.
    """
    if request.context or history:
        return False
    return intent not in CUSTOMER_DATA_INTENTS


def generate_chat_cache_key(message: str, intent: Optional[Intent]) -> str:
    normalized = message.lower().strip()
    return f"chatbot:{intent.value if intent else 'general'}:{normalized[:100]}"


def _message(conversation_id: str, role: str, content: str, **extra) -> Dict:
    msg = {
        "id": generate_id("msg"),
        "conversation_id": conversation_id,
        "role": role,
        "content": content,
        "created_at": now_iso(),
    }
    msg.update(extra)
    return msg


def _to_turns(history: List[Dict]) -> List[Dict[str, str]]:
    return [{"role": m["role"], "content": m["content"]} for m in history]


# ═══════════════════════════════════════════
# SINGLETON
# ═══════════════════════════════════════════

_engine: Optional[ChatbotEngine] = None


def get_chatbot_engine(config: Optional[ChatbotConfig] = None) -> ChatbotEngine:
    global _engine
    if _engine is None:
        _engine = ChatbotEngine(config)
    return _engine


def reset_chatbot_engine() -> None:
    global _engine
    _engine = None
