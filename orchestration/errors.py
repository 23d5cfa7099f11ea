"""
Orchestration error taxonomy and user-facing message sanitization.

Structural errors carry the identifiers involved so callers can point at
the offending task. Gateway failures are normally returned as
GatewayResult values; reasoning and provider clients turn them into these
exceptions via error_for_kind().
"""


class OrchestrationError(Exception):
    """Base class for all orchestration failures"""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(OrchestrationError):
    """Missing credentials, malformed endpoint, wrong response content type"""

    kind = "config"


class GatewayTimeoutError(OrchestrationError):
    """A provider call ran out of time; never retried"""

    kind = "timeout"


class ProviderError(OrchestrationError):
    """A provider ran but reported failure or returned unusable content"""

    kind = "provider"


class ClassificationError(OrchestrationError):
    """Complexity analysis returned nothing usable"""

    kind = "classification"


class PlanSynthesisError(OrchestrationError):
    """Structured plan could not be parsed even after repair"""

    kind = "synthesis"


class InvalidDependencyError(OrchestrationError):
    kind = "structural"

    def __init__(self, task_id: str, reference: str):
        super().__init__(
            f"Todo {task_id} has invalid dependency: {reference} (dependency does not exist)"
        )
        self.task_id = task_id
        self.reference = reference


class CircularDependencyError(OrchestrationError):
    kind = "structural"

    def __init__(self, task_ids: list[str]):
        super().__init__(
            f"Circular dependency detected. Affected todos: {', '.join(task_ids)}"
        )
        self.task_ids = list(task_ids)


class UnmetDependencyError(OrchestrationError):
    kind = "structural"

    def __init__(self, task_id: str, references: list[str]):
        super().__init__(
            f"Todo {task_id} has unmet dependencies: {', '.join(references)}"
        )
        self.task_id = task_id
        self.references = list(references)


class ProviderNotFoundError(OrchestrationError):
    kind = "structural"

    def __init__(self, provider_id: str, task_id: str | None = None):
        super().__init__(f"Agent {provider_id} not found")
        self.provider_id = provider_id
        self.task_id = task_id


class TaskExecutionError(OrchestrationError):
    """A task failed; the run stops here"""

    kind = "provider"

    def __init__(self, task_id: str, message: str):
        super().__init__(message)
        self.task_id = task_id


def error_for_kind(kind: str | None, message: str) -> OrchestrationError:
    """Map a gateway failure kind to the matching exception"""
    # rate_limiter imports this module
    from .rate_limiter import RateLimitExceededError

    if kind == "timeout":
        return GatewayTimeoutError(message)
    if kind == "throttled":
        return RateLimitExceededError(message)
    if kind == "config":
        return ConfigurationError(message)
    return ProviderError(message)


# (substrings, user-facing message), checked in order
_SANITIZE_RULES = [
    (("network", "fetch", "connection"), "Network error. Please check your connection and try again."),
    (("timeout", "timed out"), "Request timeout. The service took too long to respond. Please try again."),
    (("unauthorized", "401"), "Authentication failed. Please check your credentials."),
    (("forbidden", "403"), "Access denied. You do not have permission to perform this action."),
    (("not found", "404"), "Resource not found."),
    (("rate limit", "429"), "Rate limit exceeded. Please try again later."),
    (("server error", "500"), "Server error. Please try again later."),
]


def sanitize_error_message(error: object, is_development: bool = False) -> str:
    """
    Turn an error into a message safe to show the user.

    Development returns the raw message. Production maps known substrings
    to fixed phrases and falls back to a generic message.
    """
    if is_development:
        return str(error)

    if isinstance(error, (BaseException, str)):
        message = str(error).lower()
        for needles, friendly in _SANITIZE_RULES:
            if any(needle in message for needle in needles):
                return friendly
        return "An error occurred. Please try again."

    return "An unknown error occurred."
