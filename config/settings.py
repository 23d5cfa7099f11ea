"""
Configuration settings for the orchestration engine
Loads environment variables and provides configuration access
"""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Settings:
    """Application settings loaded from environment"""

    # Environment
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = APP_ENV == "development"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # OpenAI-compatible capability provider API
    LLM_API_KEY: str = os.getenv("LLM_API_KEY", "")
    LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
    CHAT_PATH: str = os.getenv("CHAT_PATH", "/chat/completions")
    IMAGE_PATH: str = os.getenv("IMAGE_PATH", "/images/generations")
    VIDEO_PATH: str = os.getenv("VIDEO_PATH", "/videos/generations")

    # Reasoning model used for classification and plan synthesis
    # "chat" = OpenAI-compatible endpoint above, "gemini" = Google Gemini
    REASONING_BACKEND: str = os.getenv("REASONING_BACKEND", "chat")
    REASONING_MODEL: str = os.getenv("REASONING_MODEL", "gpt-4o-mini")

    # Google Gemini
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    MODEL_NAME: str = os.getenv("MODEL_NAME", "gemini-2.0-flash")

    # Agent catalog
    AGENTS_FILE: str = os.getenv("AGENTS_FILE", "data/ai-agents.json")
    AGENTS_CACHE_TTL: float = float(os.getenv("AGENTS_CACHE_TTL", "300"))
    ORCHESTRATOR_ID: str = os.getenv("ORCHESTRATOR_ID", "orchestrator")
    COMPLEXITY_THRESHOLD: float = float(os.getenv("COMPLEXITY_THRESHOLD", "0.5"))

    # Gateway rate limiting (seconds)
    MIN_REQUEST_DELAY: float = float(os.getenv("MIN_REQUEST_DELAY", "0.2"))
    COOLDOWN_AFTER_THROTTLE: float = float(os.getenv("COOLDOWN_AFTER_THROTTLE", "60"))
    MAX_THROTTLE_RETRIES: int = int(os.getenv("MAX_THROTTLE_RETRIES", "3"))
    INITIAL_RETRY_DELAY: float = float(os.getenv("INITIAL_RETRY_DELAY", "1.0"))

    # Timeouts (seconds)
    DEFAULT_TIMEOUT: float = float(os.getenv("DEFAULT_TIMEOUT", "120"))
    INFORMATIONAL_TIMEOUT: float = float(os.getenv("INFORMATIONAL_TIMEOUT", "15"))
    ANSWER_TIMEOUT: float = float(os.getenv("ANSWER_TIMEOUT", "30"))
    CLASSIFY_TIMEOUT: float = float(os.getenv("CLASSIFY_TIMEOUT", "30"))
    PLAN_TIMEOUT: float = float(os.getenv("PLAN_TIMEOUT", "45"))
    MEDIA_TIMEOUT: float = float(os.getenv("MEDIA_TIMEOUT", "60"))

    # Plan synthesis outer retry
    PLAN_MAX_RETRIES: int = int(os.getenv("PLAN_MAX_RETRIES", "3"))
    PLAN_RETRY_DELAY: float = float(os.getenv("PLAN_RETRY_DELAY", "2.0"))

    @classmethod
    def validate(cls) -> list[str]:
        """Validate required settings, returns list of missing vars"""
        missing = []
        if not cls.LLM_API_KEY:
            missing.append("LLM_API_KEY")
        if cls.REASONING_BACKEND == "gemini" and not cls.GEMINI_API_KEY:
            missing.append("GEMINI_API_KEY")
        return missing

    @classmethod
    def url_for(cls, kind: str) -> str:
        """Endpoint URL for a provider kind"""
        base = cls.LLM_BASE_URL.rstrip("/")
        if kind == "image-generation":
            return base + cls.IMAGE_PATH
        if kind == "video-generation":
            return base + cls.VIDEO_PATH
        return base + cls.CHAT_PATH


settings = Settings()
