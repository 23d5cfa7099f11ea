"""
Orchestration response types
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .action_plan import Task


class ExecutionType(Enum):
    """How the facade handled a request"""
    GUIDANCE = "guidance"               # informational answer or "no matching agent"
    DIRECT = "direct"                   # one provider called with the request
    TODO_REQUIRED = "todo_required"     # plan awaiting approval
    CHAIN_EXECUTED = "chain_executed"   # several providers run as a linear chain


@dataclass
class ClassificationResult:
    """What the classifier decided about a request"""
    complexity: float
    needs_plan: bool
    suggested_providers: list[str] = field(default_factory=list)
    no_relevant_providers: bool = False
    reasoning: str = ""

    def to_dict(self) -> dict:
        return {
            "complexity": self.complexity,
            "needs_plan": self.needs_plan,
            "suggested_providers": list(self.suggested_providers),
            "no_relevant_providers": self.no_relevant_providers,
            "reasoning": self.reasoning,
        }


@dataclass
class InformationalCheck:
    """Whether a request is a general question answered without any provider"""
    is_informational: bool
    direct_answer: str | None = None


@dataclass
class ChainResult:
    """Tasks after execution, the output of the last task run and the run's audit log"""
    tasks: list[Task]
    final_output: Any = None
    execution_log: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "todos": [t.to_dict() for t in self.tasks],
            "finalOutput": self.final_output,
            "executionLog": list(self.execution_log),
        }


@dataclass
class OrchestrationResponse:
    """Result of one orchestration run"""
    complexity: float
    execution_type: ExecutionType
    response: Any = None
    todos: list[Task] | None = None
    final_output: Any = None
    suggested_providers: list[str] = field(default_factory=list)
    provider_used: str | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "complexity": self.complexity,
            "executionType": self.execution_type.value,
        }
        if self.response is not None:
            data["response"] = self.response
        if self.todos is not None:
            data["todos"] = [t.to_dict() for t in self.todos]
        if self.final_output is not None:
            data["finalOutput"] = self.final_output
        if self.suggested_providers:
            data["suggestedAgents"] = list(self.suggested_providers)
        if self.provider_used:
            data["agentUsed"] = self.provider_used
        if self.message:
            data["message"] = self.message
        return data
