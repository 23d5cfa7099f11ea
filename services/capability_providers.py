"""
Capability Provider Codecs
Builds provider requests and decodes provider responses, per provider kind family.

- text: OpenAI-style role-tagged messages, decoded to (markdown-cleaned) text
- structured: same messages plus response_format, decoded to parsed JSON
- media: flat generation request, decoded to a {url | b64_json} reference

ProviderInvoker glues a codec to the CapabilityGateway and never raises for
a provider failure; it returns a ProviderOutput with success=False instead.
"""
import re
from dataclasses import dataclass
from typing import Any, Callable

from config import settings
from orchestration.errors import ProviderError
from orchestration.gateway import CapabilityGateway
from utils import extract_json_object, get_logger

from .agent_catalog import CapabilityProviderDescriptor

logger = get_logger(__name__)


STRUCTURED_FORMATS = {"json", "table", "search-results", "search-card"}

# Body keys the media request already carries at the top level
MEDIA_RESERVED_KEYS = {"imageType", "prompt"}


@dataclass
class ProviderOutput:
    """Result of invoking one provider"""
    success: bool
    output: Any = None
    error: str | None = None
    kind: str | None = None
    token_usage: dict | None = None
    cost: float | None = None
    duration_ms: int | None = None
    response_format: str | None = None


@dataclass(frozen=True)
class ProviderCodec:
    """Request builder + response decoder for one kind family"""
    build_request: Callable[[CapabilityProviderDescriptor, str, dict, dict], dict]
    decode_response: Callable[[CapabilityProviderDescriptor, Any], Any]
    timeout: float


# ============================================================================
# Requests
# ============================================================================

def _parameter_notes(descriptor: CapabilityProviderDescriptor, body: dict) -> list[str]:
    """Describe chosen body parameters so the model sees what they mean"""
    notes = []
    for field in descriptor.fields_in("body"):
        value = body.get(field.name)
        if value is None or value == "":
            continue
        label = field.label or field.name
        option = next(
            (
                o for o in field.options
                if isinstance(o, dict) and value in (o.get("id"), o.get("value"))
            ),
            None,
        )
        if option and option.get("description"):
            notes.append(f"{label} ({option.get('label') or value}):\n{option['description']}")
        else:
            notes.append(f"{label}: {value}")
    return notes


def build_chat_request(
    descriptor: CapabilityProviderDescriptor,
    prompt: str,
    body: dict,
    extra_body: dict,
) -> dict:
    """OpenAI-style chat completion payload"""
    user_prompt = prompt
    notes = _parameter_notes(descriptor, body)
    if notes:
        user_prompt = f"{prompt}\n\n" + "\n\n".join(notes)

    messages = []
    if descriptor.system_prompt:
        messages.append({"role": "system", "content": descriptor.system_prompt})
    messages.append({"role": "user", "content": user_prompt})

    payload: dict[str, Any] = {
        "model": descriptor.model or settings.REASONING_MODEL,
        "messages": messages,
    }
    if descriptor.family == "structured" or descriptor.required_output_format in STRUCTURED_FORMATS:
        payload["response_format"] = {"type": "json_object"}
    if extra_body:
        payload.update(extra_body)
    return payload


def build_media_request(
    descriptor: CapabilityProviderDescriptor,
    prompt: str,
    body: dict,
    extra_body: dict,
) -> dict:
    """Flat generation payload: model, prompt, body params, extra_body"""
    payload: dict[str, Any] = {"prompt": prompt}
    if descriptor.model:
        payload["model"] = descriptor.model
    payload.update({k: v for k, v in body.items() if k not in MEDIA_RESERVED_KEYS})
    if extra_body:
        payload["extra_body"] = dict(extra_body)
    return payload


# ============================================================================
# Responses
# ============================================================================

_OUTER_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n([\s\S]*?)\n?```$")


def clean_markdown(text: str) -> str:
    """Strip an outer code fence around a whole text response"""
    cleaned = text.strip()
    match = _OUTER_FENCE_RE.match(cleaned)
    if match:
        cleaned = match.group(1).strip()
    return cleaned


def _chat_content(data: Any) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        content = None
    if isinstance(content, list):
        # Multi-part content: keep the text parts
        content = "".join(
            part.get("text") or "" for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    if not content:
        raise ProviderError("No response content from AI")
    if not isinstance(content, str):
        raise ProviderError(
            f"Unexpected response content type {type(content).__name__} from AI"
        )
    return content


def decode_text_response(descriptor: CapabilityProviderDescriptor, data: Any) -> Any:
    if descriptor.required_output_format in STRUCTURED_FORMATS:
        return decode_structured_response(descriptor, data)
    content = _chat_content(data)
    if descriptor.required_output_format == "string":
        return clean_markdown(content)
    return content


def decode_structured_response(descriptor: CapabilityProviderDescriptor, data: Any) -> Any:
    extracted = extract_json_object(_chat_content(data))
    if extracted is None:
        raise ProviderError("Failed to extract valid JSON from AI response")
    return extracted


def _media_reference(item: Any) -> dict | None:
    if not isinstance(item, dict):
        return None
    url = item.get("url")
    b64 = item.get("b64_json") or item.get("data")
    # Some providers send an empty list instead of null
    if isinstance(b64, list) and not b64:
        b64 = None
    if not url and not isinstance(b64, str):
        return None
    reference = {"url": url or None, "b64_json": b64 if isinstance(b64, str) else None}
    mime_type = item.get("mimeType") or item.get("mime_type")
    if mime_type:
        reference["mime_type"] = mime_type
    if item.get("revised_prompt"):
        reference["revised_prompt"] = item["revised_prompt"]
    return reference


def decode_media_response(descriptor: CapabilityProviderDescriptor, data: Any) -> dict:
    """
    Find the generated media in one of the known response shapes:
    OpenAI ({"data": [{...}]}), Gemini (candidates/parts/inlineData),
    a direct image object ({"image": {...}}) or direct base64.
    """
    reference = None
    if isinstance(data, dict):
        if isinstance(data.get("data"), list) and data["data"]:
            reference = _media_reference(data["data"][0])
        elif isinstance(data.get("candidates"), list) and data["candidates"]:
            parts = ((data["candidates"][0] or {}).get("content") or {}).get("parts") or []
            for part in parts:
                inline = part.get("inlineData") if isinstance(part, dict) else None
                if inline and inline.get("data"):
                    reference = _media_reference(
                        {"b64_json": inline["data"], "mimeType": inline.get("mimeType", "image/png")}
                    )
                    break
        elif isinstance(data.get("image"), dict):
            reference = _media_reference(data["image"])
        else:
            reference = _media_reference(data)

    if reference is None:
        raise ProviderError("No valid media data found in response (url and b64_json are both empty)")
    return reference


CODECS: dict[str, ProviderCodec] = {
    "text": ProviderCodec(build_chat_request, decode_text_response, settings.DEFAULT_TIMEOUT),
    "structured": ProviderCodec(build_chat_request, decode_structured_response, settings.DEFAULT_TIMEOUT),
    "media": ProviderCodec(build_media_request, decode_media_response, settings.MEDIA_TIMEOUT),
}


def _token_usage(data: Any) -> dict | None:
    usage = data.get("usage") if isinstance(data, dict) else None
    if not isinstance(usage, dict):
        return None
    return {
        "prompt_tokens": usage.get("prompt_tokens", 0),
        "completion_tokens": usage.get("completion_tokens", 0),
        "total_tokens": usage.get("total_tokens", 0),
    }


class ProviderInvoker:
    """Calls a capability provider through the gateway"""

    def __init__(
        self,
        gateway: CapabilityGateway,
        api_key: str = settings.LLM_API_KEY,
        codecs: dict[str, ProviderCodec] | None = None,
    ):
        self.gateway = gateway
        self.api_key = api_key
        self.codecs = codecs or CODECS

    def invoke(
        self,
        descriptor: CapabilityProviderDescriptor,
        prompt: str,
        body: dict | None = None,
        extra_body: dict | None = None,
    ) -> ProviderOutput:
        if not self.api_key:
            return ProviderOutput(success=False, kind="config", error="LLM_API_KEY not configured")

        codec = self.codecs.get(descriptor.family, self.codecs["text"])
        url = descriptor.endpoint or settings.url_for(descriptor.kind)
        payload = codec.build_request(descriptor, prompt, body or {}, extra_body or {})

        logger.info(f"Invoking agent {descriptor.id} ({descriptor.kind}) at {url}")
        result = self.gateway.call(
            url,
            payload,
            timeout=codec.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if not result.success:
            return ProviderOutput(
                success=False,
                kind=result.kind,
                error=result.error,
                duration_ms=result.duration_ms,
            )

        try:
            output = codec.decode_response(descriptor, result.data)
        except ProviderError as e:
            logger.warning(f"Agent {descriptor.id} returned unusable content: {e.message}")
            return ProviderOutput(
                success=False, kind=e.kind, error=e.message, duration_ms=result.duration_ms
            )

        usage = result.data.get("usage") if isinstance(result.data, dict) else None
        return ProviderOutput(
            success=True,
            output=output,
            token_usage=_token_usage(result.data),
            cost=usage.get("cost") if isinstance(usage, dict) else None,
            duration_ms=result.duration_ms,
            response_format=descriptor.required_output_format,
        )
