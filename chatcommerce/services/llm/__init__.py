from typing import Optional

from chatcommerce.config import Settings
from chatcommerce.services.llm.base import LLMProvider, LLMResponse, ProviderUnavailableError
from chatcommerce.services.llm.gemini_provider import GeminiProvider
from chatcommerce.services.llm.groq_provider import GroqProvider


def build_llm_provider(settings: Settings) -> Optional[LLMProvider]:
    """First configured credential wins: Groq, then Gemini."""
    if settings.groq_api_key:
        return GroqProvider(api_key=settings.groq_api_key, default_model=settings.groq_model)
    if settings.gemini_api_key:
        return GeminiProvider(api_key=settings.gemini_api_key, default_model=settings.gemini_model)
    return None


__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ProviderUnavailableError",
    "GroqProvider",
    "GeminiProvider",
    "build_llm_provider",
]
