"""
Capability Provider Catalog
Read-through TTL cache over the agent definitions file.

The catalog is read-only: it is edited elsewhere and only looked up here.
A missing, empty or malformed file is logged and treated as an empty
catalog, so a broken file degrades to "no relevant providers" guidance
instead of failing every request.
"""
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Callable

from config import settings
from utils import get_logger

logger = get_logger(__name__)


# Provider kind -> family used to pick request/response codecs
KIND_FAMILIES = {
    "chat": "text",
    "search": "text",
    "voice-transcription": "text",
    "orchestrator": "text",
    "json": "structured",
    "graph-generation": "structured",
    "image-generation": "media",
    "video-generation": "media",
}

PARAMETER_BUCKETS = ("prompt", "body", "extra")


def kind_family(kind: str | None) -> str:
    """Family (text, structured, media) for a provider kind; unknown kinds are text"""
    return KIND_FAMILIES.get(kind or "chat", "text")


@dataclass(frozen=True)
class ParameterField:
    """One configurable provider parameter and where it goes in the request"""
    name: str
    bucket: str = "prompt"          # prompt | body | extra
    label: str | None = None
    component: str | None = None
    options: tuple = ()
    default: Any = None
    description: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ParameterField":
        bucket = data.get("sectionId") or data.get("bucket") or "prompt"
        if bucket not in PARAMETER_BUCKETS:
            bucket = "prompt"
        options = data.get("options") or ()
        return cls(
            name=data.get("name") or data.get("id") or "",
            bucket=bucket,
            label=data.get("label"),
            component=data.get("component"),
            options=tuple(options) if isinstance(options, (list, tuple)) else (),
            default=data.get("defaultValue", data.get("default")),
            description=data.get("description"),
        )

    def to_manifest(self) -> dict:
        """Compact description for reasoning prompts"""
        entry: dict[str, Any] = {"name": self.name}
        if self.label:
            entry["label"] = self.label
        if self.component:
            entry["component"] = self.component
        if self.options:
            entry["options"] = [
                o.get("id") or o.get("value") or o.get("label") if isinstance(o, dict) else o
                for o in self.options
            ]
        if self.default is not None:
            entry["default"] = self.default
        if self.description:
            entry["description"] = self.description
        return entry


@dataclass(frozen=True)
class CapabilityProviderDescriptor:
    """Catalog entry for one capability provider ("agent")"""
    id: str
    label: str
    description: str = ""
    kind: str = "chat"
    fields: tuple[ParameterField, ...] = ()
    required_output_format: str = "string"
    complexity_threshold: float | None = None
    model: str | None = None
    endpoint: str | None = None
    system_prompt: str | None = None

    @property
    def family(self) -> str:
        return kind_family(self.kind)

    def fields_in(self, bucket: str) -> list[ParameterField]:
        return [f for f in self.fields if f.bucket == bucket]

    @classmethod
    def from_dict(cls, data: dict) -> "CapabilityProviderDescriptor":
        """Build from a catalog entry; camelCase and snake_case keys both work"""
        raw_fields = data.get("renderComponents") or data.get("fields") or []
        threshold = data.get("complexityThreshold", data.get("complexity_threshold"))
        return cls(
            id=str(data["id"]),
            label=data.get("label") or str(data["id"]),
            description=data.get("description") or "",
            kind=data.get("agentType") or data.get("kind") or "chat",
            fields=tuple(
                ParameterField.from_dict(f) for f in raw_fields if isinstance(f, dict)
            ),
            required_output_format=(
                data.get("requiredOutputFormat")
                or data.get("required_output_format")
                or "string"
            ),
            complexity_threshold=float(threshold) if threshold is not None else None,
            model=data.get("model"),
            endpoint=data.get("endpoint"),
            system_prompt=data.get("systemPrompt") or data.get("system_prompt"),
        )

    def to_manifest(self) -> dict:
        """Compact description for reasoning prompts"""
        return {
            "id": self.id,
            "label": self.label,
            "agentType": self.kind,
            "description": self.description,
            "body": [f.to_manifest() for f in self.fields_in("body")],
            "extra_body": [f.to_manifest() for f in self.fields_in("extra")],
        }


def _entries(raw: Any) -> list[dict]:
    """Accept a top-level list, {"data": [...]} or an id-keyed object"""
    if isinstance(raw, list):
        return [e for e in raw if isinstance(e, dict)]
    if isinstance(raw, dict):
        if isinstance(raw.get("data"), list):
            return [e for e in raw["data"] if isinstance(e, dict)]
        entries = []
        for key, value in raw.items():
            if isinstance(value, dict):
                entries.append({"id": key, **value})
        return entries
    return []


class ProviderCatalog:
    """
    Loads provider descriptors from a JSON file and caches them for `ttl` seconds.
    """

    def __init__(
        self,
        path: str | Path = settings.AGENTS_FILE,
        ttl: float = settings.AGENTS_CACHE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path)
        self.ttl = ttl
        self.clock = clock
        self._cache: list[CapabilityProviderDescriptor] | None = None
        self._loaded_at = 0.0
        self._lock = Lock()

    def load(self) -> list[CapabilityProviderDescriptor]:
        """All providers, from cache when fresh"""
        with self._lock:
            now = self.clock()
            if self._cache is not None and now - self._loaded_at < self.ttl:
                return list(self._cache)
            self._cache = self._read()
            self._loaded_at = now
            return list(self._cache)

    def get(self, provider_id: str) -> CapabilityProviderDescriptor | None:
        for provider in self.load():
            if provider.id == provider_id:
                return provider
        return None

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None

    def _read(self) -> list[CapabilityProviderDescriptor]:
        if not self.path.exists():
            logger.warning(f"Agent catalog not found at {self.path}")
            return []

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to read agent catalog {self.path}: {e}")
            return []

        if not content.strip():
            logger.warning(f"Agent catalog {self.path} is empty")
            return []

        try:
            raw = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Agent catalog {self.path} is not valid JSON: {e}")
            return []

        providers = []
        for entry in _entries(raw):
            try:
                providers.append(CapabilityProviderDescriptor.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed agent entry: {e}")
        logger.info(f"Loaded {len(providers)} agents from {self.path}")
        return providers


# Singleton instance
_catalog: ProviderCatalog | None = None


def get_catalog() -> ProviderCatalog:
    """Get or create the shared catalog"""
    global _catalog
    if _catalog is None:
        _catalog = ProviderCatalog()
    return _catalog
