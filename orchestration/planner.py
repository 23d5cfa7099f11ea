"""
Task Graph Synthesizer
Responsible for the PLANNING phase: turns a complex request into todos.

The synthesizer:
1. Describes the candidate agents (and their configurable fields) to the reasoning model
2. Asks for a JSON array of todos with dependencies and per-agent input
3. Recovers the array from prose, code fences or truncated output
4. Re-keys every todo with a fresh id and normalizes dependency references

Models refer to other steps in many ways ("Step 2", "2", a title, their own
ids). normalize_dependencies() maps all of them onto real task ids so the
executor only ever sees a well-formed graph.
"""
import json
import re
from dataclasses import replace

from config import settings
from services.agent_catalog import CapabilityProviderDescriptor
from utils import (
    extract_json_block,
    get_logger,
    repair_truncated_json,
    safe_json_parse,
)

from .action_plan import DEPENDENCY_MARKER, Task, TaskInput
from .errors import PlanSynthesisError

logger = get_logger(__name__)


STEP_REF_RE = re.compile(r"^Step\s*(\d+)$", re.IGNORECASE)
NUMBER_REF_RE = re.compile(r"^\d+$")


PLANNING_SYSTEM_PROMPT = """You are an AI orchestration expert that creates todo lists for multi-agent workflows.

Rules:
- Never put two consecutive todos on the same agent; merge them into one todo with a complete prompt instead.
- The first todo has "dependencies": []. Every later todo depends on the todo before it.
- Only use the agents listed in the request."""

PLANNING_PROMPT = """Create a todo list for this request.

User request: "{request}"

Available agents (with configurable fields):
{agents}

For each todo fill "input" from the user request:
- "body": values for the agent's body fields, keyed by field name; use option ids for select fields
- "extra_body": values for the agent's extra fields
- "prompt": only when this todo needs different text than the previous output

When a todo should work on the previous todo's output (summarize it, translate it,
turn it into an image...), use this value for the field that carries the main input:
{marker}

Respond with a JSON array only:
[
  {{
    "title": "Step title",
    "description": "What this step does",
    "agentId": "agent-id",
    "agentType": "agent-type",
    "dependencies": ["Step 1"],
    "input": {{"body": {{}}, "extra_body": {{}}}}
  }}
]"""


def parse_plan_response(content: str) -> list[dict]:
    """
    Recover the list of raw todo dicts from model output.

    Accepts a bare array or {"todos": [...]}, inside prose or code fences,
    and repairs truncated output once. Raises PlanSynthesisError when the
    text cannot be parsed.
    """
    block = extract_json_block(content, prefer="array")
    parsed = safe_json_parse(block)
    if not parsed.success:
        logger.warning("Initial plan JSON parse failed, attempting repair")
        repaired = repair_truncated_json(block)
        if repaired is not None:
            parsed = safe_json_parse(repaired)
    if not parsed.success:
        logger.error(f"Failed to parse plan response: {content[:1000]}")
        raise PlanSynthesisError(
            f"Failed to parse todo generation response: {parsed.error or 'Invalid JSON format'}"
        )

    data = parsed.data
    if isinstance(data, dict):
        data = data.get("todos")
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def _resolve_reference(
    reference: str,
    tasks: list[Task],
    ids: set[str],
    aliases: dict[str, str],
) -> str | None:
    """Step N, then bare 1-based N, then exact title, then an existing id"""
    ref = reference.strip()

    step = STEP_REF_RE.match(ref)
    if step:
        index = int(step.group(1)) - 1
        if 0 <= index < len(tasks):
            return tasks[index].id

    if NUMBER_REF_RE.match(ref):
        index = int(ref) - 1
        if 0 <= index < len(tasks):
            return tasks[index].id

    for task in tasks:
        if task.title == ref:
            return task.id

    if ref in ids:
        return ref
    return aliases.get(ref)


def normalize_dependencies(
    tasks: list[Task], aliases: dict[str, str] | None = None
) -> list[Task]:
    """
    Rewrite every dependency reference to the id of a task in `tasks`.

    Unresolvable references are dropped. A task left without dependencies,
    other than the first one, depends on the task right before it. Returns
    new Task objects; running it again on its own output changes nothing.
    """
    aliases = aliases or {}
    ids = {t.id for t in tasks}
    normalized = []
    for index, task in enumerate(tasks):
        resolved: list[str] = []
        for reference in task.dependencies:
            target = _resolve_reference(str(reference), tasks, ids, aliases)
            if target is None:
                logger.warning(f"Dropping unresolvable dependency {reference!r} of todo {task.title!r}")
                continue
            if target not in resolved:
                resolved.append(target)
        if not resolved and index > 0:
            resolved = [tasks[index - 1].id]
        normalized.append(replace(task, dependencies=resolved))
    return normalized


def build_plan_manifest(providers: list[CapabilityProviderDescriptor]) -> str:
    return json.dumps([p.to_manifest() for p in providers], indent=2)


class TaskGraphSynthesizer:
    """
    Handles the PLANNING phase.

    `model` is any reasoning model with complete(system_prompt, user_prompt,
    json_mode, timeout) -> str.
    """

    def __init__(self, model):
        self.model = model

    def synthesize(
        self,
        request_text: str,
        candidate_ids: list[str],
        providers: list[CapabilityProviderDescriptor],
        system_prompt: str | None = None,
    ) -> list[Task]:
        """Todos for the request, bound to agents; [] when there are no candidates"""
        if not candidate_ids:
            return []

        candidates = [p for p in providers if p.id in candidate_ids]
        logger.info(f"Creating plan for: {request_text[:100]}...")

        content = self.model.complete(
            system_prompt or PLANNING_SYSTEM_PROMPT,
            PLANNING_PROMPT.format(
                request=request_text,
                agents=build_plan_manifest(candidates),
                marker=json.dumps(DEPENDENCY_MARKER),
            ),
            json_mode=False,
            timeout=settings.PLAN_TIMEOUT,
        )
        raw_todos = parse_plan_response(content)
        tasks = self._build_tasks(raw_todos, candidate_ids, providers)
        logger.info(f"Created plan with {len(tasks)} todos")
        return tasks

    def _build_tasks(
        self,
        raw_todos: list[dict],
        candidate_ids: list[str],
        providers: list[CapabilityProviderDescriptor],
    ) -> list[Task]:
        by_id = {p.id: p for p in providers}
        tasks: list[Task] = []
        aliases: dict[str, str] = {}

        for raw in raw_todos:
            provider_id = str(raw.get("agentId") or "")
            descriptor = by_id.get(provider_id)
            dependencies = raw.get("dependencies")
            if not isinstance(dependencies, list):
                dependencies = []
            task = Task(
                title=str(raw.get("title") or "Untitled Todo"),
                description=str(raw.get("description") or ""),
                provider_id=provider_id,
                provider_kind=raw.get("agentType") or (descriptor.kind if descriptor else None),
                dependencies=[str(d) for d in dependencies if d is not None],
                input=TaskInput.from_dict(raw.get("input")),
            )
            if raw.get("id") is not None:
                aliases[str(raw["id"])] = task.id
            tasks.append(task)

        # Resolve against the full list so step numbers match what the model saw
        tasks = normalize_dependencies(tasks, aliases)

        kept = []
        for task in tasks:
            if task.provider_id in candidate_ids or task.provider_id in by_id:
                kept.append(task)
            else:
                logger.warning(
                    f"Dropping todo {task.title!r}: agent {task.provider_id!r} is not in the catalog"
                )

        if len(kept) == len(tasks):
            return kept
        # References to dropped todos fall back to the preceding todo
        return normalize_dependencies(kept)
