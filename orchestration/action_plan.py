"""
Action Plan Data Model
Tasks ("todos") produced by the synthesizer and run by the executor.

A Task is created once, by the synthesizer or by the facade's fast chain,
and is only mutated by the executor afterwards.
"""
import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(Enum):
    """Lifecycle of a task"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# Parameter value meaning "fill with the current input when this task runs"
DEPENDENCY_MARKER = {"__fromDependency": True, "source": "previous-output"}


def is_dependency_marker(value: Any) -> bool:
    return isinstance(value, dict) and value.get("__fromDependency") is True


def new_task_id() -> str:
    return uuid.uuid4().hex


def _hydrate(value: Any, current_input: str) -> Any:
    if is_dependency_marker(value):
        return current_input
    if isinstance(value, dict):
        return {k: _hydrate(v, current_input) for k, v in value.items()}
    if isinstance(value, list):
        return [_hydrate(v, current_input) for v in value]
    return value


@dataclass
class TaskInput:
    """Explicit parameters for a task; any field may hold dependency markers"""
    prompt: Any = None
    body: dict = field(default_factory=dict)
    extra_body: dict = field(default_factory=dict)

    def hydrate(self, current_input: str) -> "TaskInput":
        """Copy with every dependency marker replaced by current_input"""
        return TaskInput(
            prompt=_hydrate(self.prompt, current_input),
            body=_hydrate(self.body, current_input),
            extra_body=_hydrate(self.extra_body, current_input),
        )

    def is_empty(self) -> bool:
        return self.prompt in (None, "") and not self.body and not self.extra_body

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        if self.prompt is not None:
            data["prompt"] = copy.deepcopy(self.prompt)
        if self.body:
            data["body"] = copy.deepcopy(self.body)
        if self.extra_body:
            data["extra_body"] = copy.deepcopy(self.extra_body)
        return data

    @classmethod
    def from_dict(cls, data: dict | None) -> "TaskInput | None":
        if not isinstance(data, dict):
            return None
        body = data.get("body")
        extra_body = data.get("extra_body", data.get("extraBody"))
        return cls(
            prompt=data.get("prompt"),
            body=dict(body) if isinstance(body, dict) else {},
            extra_body=dict(extra_body) if isinstance(extra_body, dict) else {},
        )


@dataclass
class ChainMetadata:
    """What actually went in and came out when the task ran"""
    input: Any = None
    output: Any = None
    error: str | None = None
    executed_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "input": self.input,
            "output": self.output,
            "error": self.error,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }


@dataclass
class Task:
    """A single step of a plan, bound to one capability provider"""
    title: str
    description: str
    provider_id: str
    provider_kind: str | None = None
    dependencies: list[str] = field(default_factory=list)
    input: TaskInput | None = None
    id: str = field(default_factory=new_task_id)
    status: TaskStatus = TaskStatus.PENDING

    # Execution results
    output: Any = None
    error: str | None = None
    token_usage: dict | None = None
    cost: float | None = None
    duration_ms: int | None = None
    response_format: str | None = None
    chain_metadata: ChainMetadata | None = None

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None

    def mark_completed(self, output: Any) -> None:
        self.status = TaskStatus.COMPLETED
        self.output = output
        self.error = None
        self.completed_at = datetime.now()

    def mark_failed(self, message: str) -> None:
        self.status = TaskStatus.FAILED
        self.error = message
        self.output = message
        self.completed_at = datetime.now()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "agentId": self.provider_id,
            "agentType": self.provider_kind,
            "dependencies": list(self.dependencies),
            "input": self.input.to_dict() if self.input else None,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "tokenUsage": self.token_usage,
            "cost": self.cost,
            "duration": self.duration_ms,
            "responseFormat": self.response_format,
            "chainMetadata": self.chain_metadata.to_dict() if self.chain_metadata else None,
            "createdAt": self.created_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Build from a stored/approved todo; camelCase and snake_case keys both work"""
        try:
            status = TaskStatus(data.get("status") or "pending")
        except ValueError:
            status = TaskStatus.PENDING
        dependencies = data.get("dependencies") or []
        task = cls(
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            provider_id=str(data.get("agentId") or data.get("provider_id") or ""),
            provider_kind=data.get("agentType") or data.get("provider_kind"),
            dependencies=[str(d) for d in dependencies if d is not None],
            input=TaskInput.from_dict(data.get("input")),
            status=status,
            output=data.get("output"),
            error=data.get("error"),
            token_usage=data.get("tokenUsage") or data.get("token_usage"),
            cost=data.get("cost"),
            duration_ms=data.get("duration") or data.get("duration_ms"),
            response_format=data.get("responseFormat") or data.get("response_format"),
        )
        if data.get("id"):
            task.id = str(data["id"])
        return task
