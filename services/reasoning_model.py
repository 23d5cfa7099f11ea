"""
Reasoning Model Clients
The model the classifier and plan synthesizer think with.

Two backends, both routed through the CapabilityGateway so they share
rate limiting and 429 handling with every other provider call:
- "chat": any OpenAI-compatible chat completions endpoint
- "gemini": Google Gemini via the google-genai SDK
"""
from google import genai
from google.genai import types

from config import settings
from orchestration.errors import ConfigurationError, ProviderError, error_for_kind
from orchestration.gateway import CapabilityGateway
from utils import get_logger

logger = get_logger(__name__)


class ReasoningModel:
    """Text in, text out. JSON mode asks the backend for a JSON response."""

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        json_mode: bool = False,
        timeout: float | None = None,
    ) -> str:
        raise NotImplementedError


class ChatCompletionModel(ReasoningModel):
    """OpenAI-compatible chat completions"""

    def __init__(
        self,
        gateway: CapabilityGateway,
        api_key: str = settings.LLM_API_KEY,
        url: str | None = None,
        model: str = settings.REASONING_MODEL,
        temperature: float = 0.2,
    ):
        self.gateway = gateway
        self.api_key = api_key
        self.url = url or settings.url_for("chat")
        self.model = model
        self.temperature = temperature

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        json_mode: bool = False,
        timeout: float | None = None,
    ) -> str:
        if not self.api_key:
            raise ConfigurationError("LLM_API_KEY not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        result = self.gateway.call(
            self.url,
            payload,
            timeout=timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if not result.success:
            raise error_for_kind(result.kind, result.error or "Reasoning model call failed")

        try:
            content = result.data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise ProviderError("Reasoning model returned no content")

        logger.debug(f"Reasoning response: {content[:500]}")
        return content


class GeminiModel(ReasoningModel):
    """Google Gemini through google-genai"""

    def __init__(
        self,
        gateway: CapabilityGateway,
        client: genai.Client | None = None,
        model: str = settings.MODEL_NAME,
        temperature: float = 0.2,
    ):
        if client is None:
            if not settings.GEMINI_API_KEY:
                raise ConfigurationError("GEMINI_API_KEY not configured")
            client = genai.Client(api_key=settings.GEMINI_API_KEY)
        self.gateway = gateway
        self.client = client
        self.model = model
        self.temperature = temperature
        # Rate limit bucket, the SDK owns the real URL
        self.endpoint = (
            f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
        )

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        json_mode: bool = False,
        timeout: float | None = None,
    ) -> str:
        def send(remaining: float) -> str:
            response = self.client.models.generate_content(
                model=self.model,
                contents=[types.Content(role="user", parts=[types.Part(text=user_prompt)])],
                config=types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    temperature=self.temperature,
                    response_mime_type="application/json" if json_mode else None,
                    http_options=types.HttpOptions(timeout=int(remaining * 1000)),
                ),
            )
            response_text = ""
            for candidate in response.candidates or []:
                if not candidate.content:
                    continue
                for part in candidate.content.parts or []:
                    if part.text:
                        response_text += part.text
            return response_text

        result = self.gateway.invoke(self.endpoint, send, timeout=timeout)
        if not result.success:
            raise error_for_kind(result.kind, result.error or "Gemini call failed")
        if not result.data:
            raise ProviderError("Gemini returned no content")

        logger.debug(f"Gemini response: {result.data[:500]}")
        return result.data


def build_reasoning_model(
    gateway: CapabilityGateway, backend: str = settings.REASONING_BACKEND
) -> ReasoningModel:
    """Reasoning model for the configured backend"""
    if backend == "gemini":
        return GeminiModel(gateway)
    if backend != "chat":
        logger.warning(f"Unknown REASONING_BACKEND {backend!r}, using chat")
    return ChatCompletionModel(gateway)
