from typing import List, Optional

import httpx

from chatcommerce.logging_config import get_logger
from chatcommerce.services.llm.base import LLMProvider, LLMResponse, ProviderUnavailableError

logger = get_logger("llm.gemini")

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


def to_gemini_contents(messages: List[dict]) -> tuple[Optional[str], List[dict]]:
    """Split chat messages into a system instruction and Gemini `contents`."""
    system_parts = [m["content"] for m in messages if m.get("role") == "system"]
    contents = []
    for message in messages:
        if message.get("role") == "system":
            continue
        role = "model" if message.get("role") == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": message.get("content", "")}]})
    return ("\n\n".join(system_parts) or None), contents


class GeminiProvider(LLMProvider):
    """Google Gemini generateContent API."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        default_model: str = "gemini-1.5-flash",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.transport = transport

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 300,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        model = model or self.default_model
        system_instruction, contents = to_gemini_contents(messages)
        payload = {
            "contents": contents,
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        timeout = timeout_seconds if timeout_seconds is not None else 30.0
        with httpx.Client(timeout=timeout, transport=self.transport) as client:
            response = client.post(
                GEMINI_URL.format(model=model),
                params={"key": self.api_key},
                json=payload,
            )

        if response.status_code != 200:
            logger.error(f"Gemini error: {response.text}")
            raise ProviderUnavailableError(f"Gemini API error: {response.status_code} - {response.text}")

        data = response.json()
        try:
            content = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderUnavailableError(f"Gemini response without text: {data}") from e

        return LLMResponse(content=content or "", model=model, usage=data.get("usageMetadata"))
