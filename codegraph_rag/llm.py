"""Multi-provider LLM adapter supporting Ollama, Groq, OpenAI, OpenRouter, Anthropic and Gemini.

Every provider takes the same inputs (a system instruction, prior
conversation turns, the new user prompt) and returns the answer text.  Any
failure, including a missing API key or an empty answer, raises
:class:`~codegraph_rag.errors.GenerationError`; there is no silent fallback
answer.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from . import config
from .errors import GenerationError
from .models import Turn

logger = logging.getLogger(__name__)

TEMPERATURE = 0.1
MAX_TOKENS = 2048

Message = Dict[str, str]


def _to_messages(system: str, history: Sequence[Turn], prompt: str) -> List[Message]:
    messages: List[Message] = [{"role": "system", "content": system}]
    messages += [{"role": turn.role, "content": turn.text} for turn in history]
    messages.append({"role": "user", "content": prompt})
    return messages


def _post_json(url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float) -> Any:
    try:
        response = requests.post(
            url,
            json=payload,
            headers={"Content-Type": "application/json", **headers},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.json()
    except requests.RequestException as exc:
        raise GenerationError(f"Request to {url.split('?')[0]} failed: {exc}") from exc
    except ValueError as exc:
        raise GenerationError(f"Malformed JSON response: {exc}") from exc


class LLMProvider:
    """Base class for LLM providers."""

    requires_key = True

    def __init__(self, model: str, api_key: str = "", endpoint: str = "") -> None:
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint

    def chat(self, messages: List[Message], timeout: float) -> str:
        raise NotImplementedError


class OllamaProvider(LLMProvider):
    """Ollama local LLM provider (``/api/chat``)."""

    requires_key = False

    def chat(self, messages: List[Message], timeout: float) -> str:
        parsed = _post_json(
            self.endpoint or config.DEFAULT_LLM_ENDPOINT,
            {
                "model": self.model,
                "messages": messages,
                "stream": False,
                "options": {"temperature": TEMPERATURE},
            },
            {},
            timeout,
        )
        try:
            return parsed["message"]["content"]
        except (KeyError, TypeError) as exc:
            raise GenerationError(f"Unexpected Ollama response: {parsed!r:.200}") from exc


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions (also any OpenAI-compatible endpoint)."""

    default_endpoint = "https://api.openai.com/v1/chat/completions"

    def chat(self, messages: List[Message], timeout: float) -> str:
        parsed = _post_json(
            self.endpoint or self.default_endpoint,
            {
                "model": self.model,
                "messages": messages,
                "temperature": TEMPERATURE,
                "max_tokens": MAX_TOKENS,
            },
            {"Authorization": f"Bearer {self.api_key}"},
            timeout,
        )
        try:
            return self._extract_response(parsed)
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationError(f"Unexpected chat completion response: {parsed!r:.200}") from exc

    @staticmethod
    def _extract_response(parsed: Dict[str, Any]) -> str:
        msg = parsed["choices"][0]["message"]
        content = msg.get("content") or ""
        if content.strip():
            return content
        # Reasoning models may leave content empty
        return msg.get("reasoning") or ""


class GroqProvider(OpenAIProvider):
    """Groq cloud API provider."""

    default_endpoint = "https://api.groq.com/openai/v1/chat/completions"


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter multi-model gateway."""

    default_endpoint = "https://openrouter.ai/api/v1/chat/completions"


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider."""

    default_endpoint = "https://api.anthropic.com/v1/messages"

    def chat(self, messages: List[Message], timeout: float) -> str:
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        turns = [m for m in messages if m["role"] != "system"]
        parsed = _post_json(
            self.endpoint or self.default_endpoint,
            {
                "model": self.model,
                "system": system,
                "messages": turns,
                "max_tokens": MAX_TOKENS,
                "temperature": TEMPERATURE,
            },
            {"x-api-key": self.api_key, "anthropic-version": "2023-06-01"},
            timeout,
        )
        try:
            return "".join(block.get("text", "") for block in parsed["content"])
        except (KeyError, TypeError, AttributeError) as exc:
            raise GenerationError(f"Unexpected Anthropic response: {parsed!r:.200}") from exc


class GeminiProvider(LLMProvider):
    """Google Gemini API provider."""

    def chat(self, messages: List[Message], timeout: float) -> str:
        contents = []
        system_instruction = None
        for msg in messages:
            role = msg["role"]
            if role == "system":
                system_instruction = msg["content"]
            elif role == "user":
                contents.append({"role": "user", "parts": [{"text": msg["content"]}]})
            elif role == "assistant":
                contents.append({"role": "model", "parts": [{"text": msg["content"]}]})

        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"temperature": TEMPERATURE, "maxOutputTokens": MAX_TOKENS},
        }
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        base = self.endpoint or (
            f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
        )
        parsed = _post_json(f"{base}?key={self.api_key}", body, {}, timeout)
        try:
            return parsed["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationError(f"Unexpected Gemini response: {parsed!r:.200}") from exc


PROVIDERS = {
    "ollama": OllamaProvider,
    "openai": OpenAIProvider,
    "groq": GroqProvider,
    "openrouter": OpenRouterProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}


class LocalLLM:
    """Generative-model collaborator used by the answer synthesizer."""

    def __init__(
        self,
        provider: str = config.DEFAULT_LLM_PROVIDER,
        model: str = config.DEFAULT_LLM_MODEL,
        api_key: str = "",
        endpoint: str = "",
        timeout: float = config.DEFAULT_LLM_TIMEOUT,
    ) -> None:
        self.provider_name = provider.lower()
        cls = PROVIDERS.get(self.provider_name)
        if cls is None:
            raise ValueError(
                f"Unknown LLM provider '{provider}'. Available: {', '.join(PROVIDERS)}"
            )
        self.model = model
        self.timeout = timeout
        self.provider = cls(model, api_key, endpoint)

    def generate(self, system: str, history: Sequence[Turn], prompt: str) -> str:
        """Answer *prompt* given the system instruction and prior turns.

        Raises:
            GenerationError: the call failed or produced no text.
        """
        if self.provider.requires_key and not self.provider.api_key:
            raise GenerationError(
                f"No API key configured for provider '{self.provider_name}'. "
                "Set CODEGRAPH_LLM_API_KEY or [llm] api_key in config.toml."
            )
        logger.info("Calling %s model %s", self.provider_name, self.model)
        answer = self.provider.chat(_to_messages(system, history, prompt), self.timeout)
        if not answer or not answer.strip():
            raise GenerationError(f"{self.provider_name} returned an empty answer")
        return answer.strip()
