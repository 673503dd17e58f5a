"""
LLM Client - chat completions for the customer-service chatbot.

Providers:
- openai: OpenAI API (or any OpenAI-compatible base URL)
- anthropic: Anthropic Messages API
"""

import time
from typing import Any, Dict, List, Optional

import requests

from app_config import (
    AI_PROVIDER,
    AI_MODEL,
    AI_API_KEY,
    AI_API_BASE_URL,
    AI_TEMPERATURE,
    AI_MAX_TOKENS,
    AI_TIMEOUT_SECONDS,
)
from chat_logger import get_logger
from errors import LLMError

logger = get_logger("omnisales")

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

SUPPORTED_PROVIDERS = ("openai", "anthropic")


class LLMClient:
    """
    Abstraction over LLM providers, configurable via environment variables
    or per-instance overrides (the chatbot passes its own config).
    """

    def __init__(self, provider: Optional[str] = None, model: Optional[str] = None,
                 api_key: Optional[str] = None, api_url: Optional[str] = None,
                 temperature: Optional[float] = None, max_tokens: Optional[int] = None,
                 timeout: int = AI_TIMEOUT_SECONDS):
        self.provider = (provider or AI_PROVIDER).lower()
        self.model = model or AI_MODEL
        self.api_key = api_key or AI_API_KEY
        self.temperature = AI_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or AI_MAX_TOKENS
        self.timeout = timeout

        if self.provider == "openai":
            self.api_url = api_url or AI_API_BASE_URL or OPENAI_URL
        elif self.provider == "anthropic":
            self.api_url = api_url or AI_API_BASE_URL or ANTHROPIC_URL
        else:
            raise LLMError(f"Unsupported AI provider: {self.provider}")

    def chat_completion(self, system_prompt: str, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        """
        Send a chat completion request to the configured provider.

        Args:
            system_prompt: System instructions
            messages: Conversation turns, each {"role": "user"|"assistant", "content": str}

        Returns:
            Dict with content, input_tokens, output_tokens, total_tokens,
            model and latency_ms

        Raises:
            LLMError: missing key, HTTP failure or malformed response
        """
        if not self.api_key:
            raise LLMError(f"{self.provider} API key not configured")

        start_time = time.time()
        logger.info(
            f"LLM request | provider={self.provider} | model={self.model} | turns={len(messages)}"
        )
        try:
            if self.provider == "openai":
                result = self._openai_completion(system_prompt, messages)
            else:
                result = self._anthropic_completion(system_prompt, messages)
        except requests.exceptions.HTTPError as e:
            detail = _error_detail(e.response)
            logger.error(f"LLM API call failed | provider={self.provider} | error={detail}")
            raise LLMError(f"{self.provider} API error: {detail}") from e
        except (requests.exceptions.RequestException, KeyError, IndexError, ValueError) as e:
            logger.error(f"LLM API call failed | provider={self.provider} | error={str(e)}", exc_info=True)
            raise LLMError(f"{self.provider} API error: {str(e)}") from e

        result["latency_ms"] = int((time.time() - start_time) * 1000)
        logger.info(
            f"LLM response | provider={self.provider} | tokens={result['total_tokens']} | "
            f"response_time_ms={result['latency_ms']}"
        )
        return result

    def _openai_completion(self, system_prompt: str, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}] + list(messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        response = requests.post(self.api_url, headers=headers, json=payload, timeout=self.timeout)
        response.raise_for_status()

        data = response.json()
        usage = data.get("usage", {})
        return {
            "content": data["choices"][0]["message"]["content"],
            "input_tokens": usage.get("prompt_tokens", 0),
            "output_tokens": usage.get("completion_tokens", 0),
            "total_tokens": usage.get("total_tokens", 0),
            "model": self.model,
        }

    def _anthropic_completion(self, system_prompt: str, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        payload = {
            "model": self.model,
            "system": system_prompt,
            "messages": [
                {"role": "assistant" if m["role"] == "assistant" else "user", "content": m["content"]}
                for m in messages
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        response = requests.post(self.api_url, headers=headers, json=payload, timeout=self.timeout)
        response.raise_for_status()

        data = response.json()
        usage = data.get("usage", {})
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        return {
            "content": data["content"][0]["text"],
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "model": self.model,
        }


def _error_detail(response) -> str:
    if response is None:
        return "Unknown error"
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return f"HTTP {response.status_code}"
