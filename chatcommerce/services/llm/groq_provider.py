from typing import List, Optional

import httpx

from chatcommerce.logging_config import get_logger
from chatcommerce.services.llm.base import LLMProvider, LLMResponse, ProviderUnavailableError

logger = get_logger("llm.groq")

GROQ_CHAT_URL = "https://api.groq.com/openai/v1/chat/completions"


class GroqProvider(LLMProvider):
    """OpenAI-compatible chat completions (Groq by default)."""

    name = "groq"

    def __init__(
        self,
        api_key: str,
        default_model: str = "llama-3.3-70b-versatile",
        base_url: str = GROQ_CHAT_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url
        self.transport = transport

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 300,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        """Generate response from the chat completions endpoint."""

        model = model or self.default_model

        timeout = timeout_seconds if timeout_seconds is not None else 30.0
        with httpx.Client(timeout=timeout, transport=self.transport) as client:
            payload = {
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
            logger.debug(f"Groq request: model={model}, messages_count={len(messages)}")

            response = client.post(
                self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

            if response.status_code != 200:
                logger.error(f"Groq error: {response.text}")
                raise ProviderUnavailableError(f"Groq API error: {response.status_code} - {response.text}")

            data = response.json()

            content = ""
            if data.get("choices"):
                message = data["choices"][0].get("message", {})
                content = message.get("content") or ""
            logger.debug(f"Groq content: {content[:100] if content else 'EMPTY'}")

            return LLMResponse(
                content=content,
                model=data.get("model", model),
                usage=data.get("usage"),
            )
