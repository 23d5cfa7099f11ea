"""
Orchestration Module - Multi-Agent Workflow

This module provides the CLASSIFY → PLAN → EXECUTE workflow:
- RequestClassifier: Informational check, complexity and relevant agents
- TaskGraphSynthesizer: Turns complex requests into todo lists
- TaskGraphExecutor: Runs todos in dependency order
- CapabilityGateway: Rate-limited, retrying transport to every agent

The facade lives in orchestration.orchestrator (Orchestrator,
get_orchestrator). It is not re-exported here because it pulls in the
services package, which itself depends on this package.
"""
from .action_plan import Task, TaskInput, TaskStatus, DEPENDENCY_MARKER
from .types import (
    ExecutionType,
    OrchestrationResponse,
    ChainResult,
    ClassificationResult,
    InformationalCheck,
)
from .errors import (
    OrchestrationError,
    ConfigurationError,
    GatewayTimeoutError,
    ProviderError,
    ClassificationError,
    PlanSynthesisError,
    InvalidDependencyError,
    CircularDependencyError,
    UnmetDependencyError,
    ProviderNotFoundError,
    TaskExecutionError,
    sanitize_error_message,
)
from .rate_limiter import RateLimitStore, RateLimitExceededError, get_rate_limit_store
from .gateway import CapabilityGateway, GatewayResult, get_gateway
from .classifier import RequestClassifier
from .planner import TaskGraphSynthesizer, normalize_dependencies, parse_plan_response
from .executor import TaskGraphExecutor, topological_order, validate_dependencies
from .plan_graph import tasks_to_graph

__all__ = [
    # Data model
    "Task",
    "TaskInput",
    "TaskStatus",
    "DEPENDENCY_MARKER",
    "ExecutionType",
    "OrchestrationResponse",
    "ChainResult",
    "ClassificationResult",
    "InformationalCheck",
    # Errors
    "OrchestrationError",
    "ConfigurationError",
    "GatewayTimeoutError",
    "ProviderError",
    "ClassificationError",
    "PlanSynthesisError",
    "InvalidDependencyError",
    "CircularDependencyError",
    "UnmetDependencyError",
    "ProviderNotFoundError",
    "TaskExecutionError",
    "sanitize_error_message",
    # Gateway and rate limiting
    "RateLimitStore",
    "RateLimitExceededError",
    "get_rate_limit_store",
    "CapabilityGateway",
    "GatewayResult",
    "get_gateway",
    # Workflow components
    "RequestClassifier",
    "TaskGraphSynthesizer",
    "normalize_dependencies",
    "parse_plan_response",
    "TaskGraphExecutor",
    "topological_order",
    "validate_dependencies",
    "tasks_to_graph",
]
