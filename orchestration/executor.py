"""
Task Graph Executor
Responsible for the EXECUTION phase of the agentic workflow.

The executor:
1. Validates every dependency reference before any agent is called
2. Orders todos topologically (Kahn's algorithm, stable on insertion order)
3. Runs them one at a time, feeding each output to the next as the current input
4. Stops the run at the first failure
5. Logs all actions for audit trail

Execution is strictly sequential: a single "current input" threads through
the run, so two todos never race for it.
"""
import json
from collections import deque
from datetime import datetime
from typing import Any, Callable

from services.agent_catalog import CapabilityProviderDescriptor
from utils import get_logger

from .action_plan import ChainMetadata, Task, TaskInput, TaskStatus
from .errors import (
    CircularDependencyError,
    InvalidDependencyError,
    ProviderNotFoundError,
    TaskExecutionError,
    UnmetDependencyError,
)
from .types import ChainResult

logger = get_logger(__name__)


def _lookup(tasks: list[Task]) -> dict[str, Task]:
    """Tasks by id, and by title where the title is not also an id"""
    by_ref = {t.title: t for t in tasks if t.title}
    by_ref.update({t.id: t for t in tasks})
    return by_ref


def validate_dependencies(tasks: list[Task]) -> None:
    """Raise InvalidDependencyError for the first reference that matches no task"""
    by_ref = _lookup(tasks)
    for task in tasks:
        for reference in task.dependencies:
            if reference not in by_ref:
                raise InvalidDependencyError(task.id, reference)


def topological_order(tasks: list[Task]) -> list[Task]:
    """
    Kahn's algorithm with a FIFO queue seeded in insertion order.

    Raises CircularDependencyError listing every task that could not be
    sorted. References must already be valid (see validate_dependencies).
    """
    by_ref = _lookup(tasks)
    in_degree = {t.id: 0 for t in tasks}
    dependents: dict[str, list[str]] = {t.id: [] for t in tasks}

    for task in tasks:
        for reference in dict.fromkeys(task.dependencies):
            parent = by_ref[reference]
            dependents[parent.id].append(task.id)
            in_degree[task.id] += 1

    by_id = {t.id: t for t in tasks}
    queue = deque(t.id for t in tasks if in_degree[t.id] == 0)
    ordered: list[Task] = []
    while queue:
        task_id = queue.popleft()
        ordered.append(by_id[task_id])
        for child in dependents[task_id]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                queue.append(child)

    if len(ordered) < len(tasks):
        sorted_ids = {t.id for t in ordered}
        raise CircularDependencyError([t.id for t in tasks if t.id not in sorted_ids])
    return ordered


def _stringify(output: Any) -> str:
    if isinstance(output, str):
        return output
    try:
        return json.dumps(output, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(output)


class TaskGraphExecutor:
    """
    Handles the EXECUTION phase.

    Key responsibilities:
    - Structural validation before any side effect
    - Dependency-ordered, sequential execution with progress callbacks
    - Abort on first failure, leaving later todos pending
    - Execution logging and audit trail

    `invoker` is any object with invoke(descriptor, prompt, body, extra_body)
    returning a ProviderOutput.
    """

    def __init__(self, invoker):
        self.invoker = invoker
        # Audit trail of the most recent run; each run starts a fresh list
        self.execution_log: list[dict] = []

    def execute(
        self,
        tasks: list[Task],
        providers: list[CapabilityProviderDescriptor],
        initial_input: str,
        progress_callback: Callable[[Task, str], None] | None = None,
    ) -> ChainResult:
        """
        Run the todos in dependency order.

        Args:
            tasks: Todos to run; mutated in place
            providers: Agent catalog to resolve agentIds against
            initial_input: Current input for the first todo(s)
            progress_callback: Called with (task, "executing" | "completed" | "failed")

        Returns:
            ChainResult with the tasks, the output of the last todo run and
            the run's audit log

        Raises:
            InvalidDependencyError, CircularDependencyError before anything runs;
            UnmetDependencyError, ProviderNotFoundError, TaskExecutionError mid-run
        """
        log: list[dict] = []
        self.execution_log = log

        validate_dependencies(tasks)
        ordered = topological_order(tasks)
        logger.info(f"Starting execution of {len(ordered)} todos")

        by_ref = _lookup(tasks)
        by_provider = {p.id: p for p in providers}
        current_input = initial_input

        for task in ordered:
            if task.status == TaskStatus.COMPLETED:
                # Resumed plan: completed work still feeds the chain
                if task.output is not None:
                    current_input = _stringify(task.output)
                logger.info(f"Skipping completed todo {task.id}")
                continue
            if task.status != TaskStatus.PENDING:
                logger.info(f"Skipping todo {task.id} with status {task.status.value}")
                continue

            unmet = [
                ref for ref in task.dependencies
                if by_ref[ref].status != TaskStatus.COMPLETED
            ]
            if unmet:
                raise UnmetDependencyError(task.id, unmet)

            descriptor = by_provider.get(task.provider_id)
            if descriptor is None:
                error = ProviderNotFoundError(task.provider_id, task.id)
                self._fail(task, error.message, None, progress_callback, log)
                raise error

            current_input = self._run_task(
                task, descriptor, current_input, progress_callback, log
            )

        logger.info(f"Execution complete: {len(ordered)} todos")
        return ChainResult(tasks=tasks, final_output=current_input, execution_log=log)

    def _run_task(
        self,
        task: Task,
        descriptor: CapabilityProviderDescriptor,
        current_input: str,
        progress_callback: Callable[[Task, str], None] | None,
        log: list[dict],
    ) -> str:
        task.status = TaskStatus.IN_PROGRESS
        if progress_callback:
            progress_callback(task, "executing")

        task_input = (task.input or TaskInput()).hydrate(current_input)
        prompt = task_input.prompt
        if not isinstance(prompt, str) or not prompt:
            prompt = current_input
        logger.info(f"Executing todo {task.id} ({task.title}) with agent {descriptor.id}")

        try:
            result = self.invoker.invoke(
                descriptor, prompt, task_input.body, task_input.extra_body
            )
        except Exception as e:
            logger.exception(f"Agent {descriptor.id} raised while running todo {task.id}")
            message = str(e) or f"Agent {descriptor.id} failed"
            self._fail(task, message, prompt, progress_callback, log)
            raise TaskExecutionError(task.id, message) from e
        executed_at = datetime.now()

        if not result.success:
            message = result.error or f"Agent {descriptor.id} failed"
            self._fail(task, message, prompt, progress_callback, log, executed_at)
            raise TaskExecutionError(task.id, message)

        task.mark_completed(result.output)
        task.provider_kind = task.provider_kind or descriptor.kind
        if result.token_usage is not None:
            task.token_usage = result.token_usage
        if result.cost is not None:
            task.cost = result.cost
        if result.duration_ms is not None:
            task.duration_ms = result.duration_ms
        if result.response_format is not None:
            task.response_format = result.response_format
        task.chain_metadata = ChainMetadata(
            input=prompt, output=result.output, executed_at=executed_at
        )

        log.append({
            "todo_id": task.id,
            "agent_id": descriptor.id,
            "status": "completed",
            "timestamp": executed_at.isoformat(),
            "result_preview": _stringify(result.output)[:200],
        })
        if progress_callback:
            progress_callback(task, "completed")

        return _stringify(result.output)

    def _fail(
        self,
        task: Task,
        message: str,
        prompt: str | None,
        progress_callback: Callable[[Task, str], None] | None,
        log: list[dict],
        executed_at: datetime | None = None,
    ) -> None:
        executed_at = executed_at or datetime.now()
        logger.error(f"Todo {task.id} failed: {message}")
        task.mark_failed(message)
        task.chain_metadata = ChainMetadata(input=prompt, error=message, executed_at=executed_at)
        log.append({
            "todo_id": task.id,
            "agent_id": task.provider_id,
            "status": "failed",
            "timestamp": executed_at.isoformat(),
            "error": message,
        })
        if progress_callback:
            progress_callback(task, "failed")
