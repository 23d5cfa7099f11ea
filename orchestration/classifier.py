"""
Request Classifier
Decides how much orchestration a request needs before anything runs.

Two questions, both answered by the reasoning model:
- Is this a general/informational question we can just answer? (fails soft)
- How complex is it, and which agents from the catalog are relevant? (fails loud)

The model's answer is never trusted as-is: complexity is clamped, and
suggested agents are filtered down to ids that really exist in the catalog.
"""
import json
from typing import Any

from config import settings
from services.agent_catalog import CapabilityProviderDescriptor
from utils import extract_json_object, get_logger

from .errors import ClassificationError, OrchestrationError
from .types import ClassificationResult, InformationalCheck

logger = get_logger(__name__)


DEFAULT_COMPLEXITY = 0.5
PLAN_COMPLEXITY = 0.7  # above this a plan is always required


DETECTION_SYSTEM_PROMPT = (
    "You separate general informational questions (about the system, its "
    "capabilities, how to use it) from concrete task requests that need an "
    "agent to run. Respond with JSON only."
)

DETECTION_PROMPT = """Is this user message a general question, FAQ or help request that should be answered directly, without running any agent?

User message: "{request}"

Available agents:
{agents}

General questions look like "What can you do?", "How does this work?", "Which agents are available?".
Task requests look like "Summarize this text", "Generate an image of a cat", "Analyze this process".

Respond with JSON:
{{"isGeneral": true/false, "reasoning": "brief explanation"}}"""

ANSWER_SYSTEM_PROMPT = (
    "You are a helpful orchestration assistant. You answer general questions, "
    "explain how to use the system and describe the available agents. "
    "End your answer with 2-4 topic hashtags such as #help #guidance #agents."
)

ANSWER_PROMPT = """Available agents:
{agents}

User question: "{request}"

Give a clear, friendly and concise answer. Mention the relevant agents when the question is about capabilities."""

CLASSIFY_SYSTEM_PROMPT = "You are an AI orchestration expert that analyzes request complexity."

CLASSIFY_PROMPT = """Analyze the complexity of this user request and decide whether it needs several agents or a todo list.

User request: "{request}"

Available agents:
{agents}

Only suggest agents that are actually relevant. If no agent can handle the request, return an empty suggestedAgents list.

Respond with a JSON object:
{{
  "complexity": 0.0-1.0,
  "needsTodos": true/false,
  "suggestedAgents": ["agent-id-1", "agent-id-2"],
  "reasoning": "brief explanation",
  "noRelevantAgents": true/false
}}

Guidelines:
- complexity < 0.3: a single agent, no todos
- 0.3 to 0.7: two or three agents chained together
- complexity > 0.7: several agents, todos required, approval needed"""


def _agents_summary(providers: list[CapabilityProviderDescriptor], orchestrator_id: str) -> str:
    return "\n".join(
        f"- {p.id}: {p.label} - {p.description}"
        for p in providers if p.id != orchestrator_id
    )


def build_agents_manifest(
    providers: list[CapabilityProviderDescriptor], orchestrator_id: str
) -> str:
    """Agent list with configurable fields, for the complexity prompt"""
    lines = []
    for p in providers:
        if p.id == orchestrator_id:
            continue
        line = f"- {p.id}: {p.label} ({p.kind}) - {p.description}"
        body_fields = p.fields_in("body")
        extra_fields = p.fields_in("extra")
        if body_fields or extra_fields:
            line += "\n  Configurable options:"
            if body_fields:
                line += "\n    Body fields: " + ", ".join(
                    f"{f.name} ({f.component or 'text'})" for f in body_fields
                )
            if extra_fields:
                line += "\n    Extra fields: " + ", ".join(
                    f"{f.name} ({f.component or 'text'})" for f in extra_fields
                )
        lines.append(line)
    return "\n".join(lines)


def _clamp_complexity(value: Any) -> float:
    try:
        complexity = float(value)
    except (TypeError, ValueError):
        return DEFAULT_COMPLEXITY
    if complexity != complexity:  # NaN
        return DEFAULT_COMPLEXITY
    return min(1.0, max(0.0, complexity))


def parse_classification(
    content: str,
    providers: list[CapabilityProviderDescriptor],
    orchestrator_id: str = settings.ORCHESTRATOR_ID,
) -> ClassificationResult:
    """
    Turn the model's complexity analysis into a ClassificationResult.

    Raises ClassificationError when no JSON object can be recovered.
    """
    analysis = extract_json_object(content)
    if not isinstance(analysis, dict):
        logger.error(f"Failed to parse complexity analysis: {content[:500]}")
        raise ClassificationError("Failed to parse complexity analysis response")

    complexity = (
        _clamp_complexity(analysis["complexity"])
        if analysis.get("complexity") is not None
        else DEFAULT_COMPLEXITY
    )

    known_ids = {p.id for p in providers if p.id != orchestrator_id}
    suggested = analysis.get("suggestedAgents")
    valid: list[str] = []
    if isinstance(suggested, list):
        for agent_id in suggested:
            if isinstance(agent_id, str) and agent_id in known_ids and agent_id not in valid:
                valid.append(agent_id)
        dropped = [a for a in suggested if a not in valid]
        if dropped:
            logger.info(f"Ignoring unknown suggested agents: {dropped}")

    return ClassificationResult(
        complexity=complexity,
        needs_plan=bool(analysis.get("needsTodos")) or complexity > PLAN_COMPLEXITY,
        suggested_providers=valid,
        no_relevant_providers=analysis.get("noRelevantAgents") is True or not valid,
        reasoning=str(analysis.get("reasoning") or ""),
    )


class RequestClassifier:
    """
    Classifies a request against the agent catalog.

    `model` is any reasoning model with complete(system_prompt, user_prompt,
    json_mode, timeout) -> str.
    """

    def __init__(self, model, orchestrator_id: str = settings.ORCHESTRATOR_ID):
        self.model = model
        self.orchestrator_id = orchestrator_id

    def is_informational_query(
        self, request_text: str, providers: list[CapabilityProviderDescriptor]
    ) -> InformationalCheck:
        """
        Detect general questions and answer them directly.

        Any failure here is logged and reported as "not informational" so the
        request falls through to classification.
        """
        agents = _agents_summary(providers, self.orchestrator_id)
        try:
            detection = self.model.complete(
                DETECTION_SYSTEM_PROMPT,
                DETECTION_PROMPT.format(request=request_text, agents=agents),
                json_mode=True,
                timeout=settings.INFORMATIONAL_TIMEOUT,
            )
            parsed = extract_json_object(detection)
            if not isinstance(parsed, dict) or not parsed.get("isGeneral"):
                return InformationalCheck(is_informational=False)

            logger.info("Request looks informational, answering directly")
            answer = self.model.complete(
                ANSWER_SYSTEM_PROMPT,
                ANSWER_PROMPT.format(request=request_text, agents=agents),
                timeout=settings.ANSWER_TIMEOUT,
            )
        except OrchestrationError as e:
            logger.warning(f"Informational check failed, continuing with analysis: {e.message}")
            return InformationalCheck(is_informational=False)

        answer = (answer or "").strip()
        if not answer:
            return InformationalCheck(is_informational=False)
        return InformationalCheck(is_informational=True, direct_answer=answer)

    def classify(
        self,
        request_text: str,
        providers: list[CapabilityProviderDescriptor],
        system_prompt: str | None = None,
    ) -> ClassificationResult:
        """Complexity score plus relevant agents; errors propagate"""
        prompt = CLASSIFY_PROMPT.format(
            request=request_text,
            agents=build_agents_manifest(providers, self.orchestrator_id),
        )
        content = self.model.complete(
            system_prompt or CLASSIFY_SYSTEM_PROMPT,
            prompt,
            json_mode=True,
            timeout=settings.CLASSIFY_TIMEOUT,
        )
        if not content:
            raise ClassificationError("No response content from complexity analysis")

        result = parse_classification(content, providers, self.orchestrator_id)
        logger.info(
            f"Classified request: complexity={result.complexity:.2f}, "
            f"needs_plan={result.needs_plan}, agents={result.suggested_providers}"
        )
        logger.debug(f"Classification: {json.dumps(result.to_dict())}")
        return result
