"""
Orchestrator - Multi-Agent Workflow
Main orchestration logic, routing each request by what it actually needs:

- INFORMATIONAL: General questions answered directly, no agent runs
- NO MATCH: Friendly guidance when no agent fits the request
- DIRECT: Simple requests go straight to the one relevant agent
- PLAN: Complex requests get a todo list that waits for approval
- CHAIN: Medium requests run the suggested agents as a linear chain

Approved plans come back through run_approved_plan(), which skips
classification and planning entirely.
"""
import re
import time
from typing import Callable

from config import settings
from services.agent_catalog import CapabilityProviderDescriptor, ProviderCatalog, get_catalog
from services.capability_providers import ProviderInvoker
from services.reasoning_model import build_reasoning_model
from utils import get_logger, retry_with_backoff

from .action_plan import Task
from .classifier import RequestClassifier
from .errors import (
    ConfigurationError,
    OrchestrationError,
    TaskExecutionError,
    error_for_kind,
    sanitize_error_message,
)
from .executor import TaskGraphExecutor
from .gateway import CapabilityGateway, get_gateway
from .planner import TaskGraphSynthesizer
from .rate_limiter import RateLimitExceededError
from .types import ChainResult, ExecutionType, OrchestrationResponse

logger = get_logger(__name__)


MAX_PROMPT_LENGTH = 100_000

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

NO_PROVIDER_MESSAGE = """I understand your request, but I don't have any agents designed to handle this task.

Could you please:
1. Rephrase your request to match what the available agents can do, or
2. Be more specific about what you'd like to accomplish?

I'm happy to help once I know how to best assist you with the available tools.

#guidance #help #agents"""

RATE_LIMIT_MESSAGE = "The AI service is busy right now. Please try again in a minute."


def sanitize_prompt(prompt: str) -> str:
    """Cap the length and strip NUL/control characters, keeping newlines and tabs"""
    if not prompt or not isinstance(prompt, str):
        return ""
    return _CONTROL_CHARS_RE.sub("", prompt[:MAX_PROMPT_LENGTH]).strip()


class Orchestrator:
    """
    Orchestration facade over classifier, synthesizer and executor.

    Every collaborator is injectable; anything not passed in is built from
    settings around the shared gateway.
    """

    def __init__(
        self,
        catalog: ProviderCatalog | None = None,
        gateway: CapabilityGateway | None = None,
        model=None,
        classifier: RequestClassifier | None = None,
        synthesizer: TaskGraphSynthesizer | None = None,
        executor: TaskGraphExecutor | None = None,
        invoker: ProviderInvoker | None = None,
        complexity_threshold: float = settings.COMPLEXITY_THRESHOLD,
        plan_max_retries: int = settings.PLAN_MAX_RETRIES,
        plan_retry_delay: float = settings.PLAN_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        is_development: bool = settings.DEBUG,
    ):
        self.catalog = catalog or get_catalog()
        self.gateway = gateway or get_gateway()

        if classifier is None or synthesizer is None:
            model = model or build_reasoning_model(self.gateway)
        self.classifier = classifier or RequestClassifier(model)
        self.synthesizer = synthesizer or TaskGraphSynthesizer(model)
        self.invoker = invoker or ProviderInvoker(self.gateway)
        self.executor = executor or TaskGraphExecutor(self.invoker)

        self.complexity_threshold = complexity_threshold
        self.plan_max_retries = plan_max_retries
        self.plan_retry_delay = plan_retry_delay
        self.sleep = sleep
        self.is_development = is_development

    def run_orchestration(
        self,
        request_text: str,
        orchestrator_id: str = settings.ORCHESTRATOR_ID,
        progress_callback: Callable[[Task, str], None] | None = None,
    ) -> OrchestrationResponse:
        """
        Handle one user request end to end.

        Raises:
            ValueError: request is empty after sanitization
            OrchestrationError: classification, direct call or chain failure
        """
        text = sanitize_prompt(request_text)
        if not text:
            raise ValueError("Prompt cannot be empty after sanitization")

        providers = self.catalog.load()
        by_id = {p.id: p for p in providers}
        orchestrator = by_id.get(orchestrator_id)
        threshold = self.complexity_threshold
        system_prompt = None
        if orchestrator is not None:
            if orchestrator.complexity_threshold is not None:
                threshold = orchestrator.complexity_threshold
            system_prompt = orchestrator.system_prompt

        # Step 1: General questions are answered without any agent
        check = self.classifier.is_informational_query(text, providers)
        if check.is_informational and check.direct_answer:
            return OrchestrationResponse(
                complexity=0.0,
                execution_type=ExecutionType.GUIDANCE,
                response=check.direct_answer,
            )

        # Step 2: Complexity and relevant agents
        analysis = self.classifier.classify(text, providers, system_prompt)
        suggested = analysis.suggested_providers
        if analysis.no_relevant_providers or not suggested:
            logger.info("No relevant agents for request, returning guidance")
            return OrchestrationResponse(
                complexity=analysis.complexity,
                execution_type=ExecutionType.GUIDANCE,
                response=NO_PROVIDER_MESSAGE,
            )

        # Step 3: Simple request, single agent
        if analysis.complexity < threshold and len(suggested) == 1:
            descriptor = by_id.get(suggested[0])
            if descriptor is not None:
                return self._direct(text, descriptor, analysis.complexity)

        # Step 4: Complex request, plan for approval
        if analysis.needs_plan or analysis.complexity >= threshold:
            todos = retry_with_backoff(
                lambda: self.synthesizer.synthesize(text, suggested, providers, system_prompt),
                max_retries=self.plan_max_retries,
                initial_delay=self.plan_retry_delay,
                retry_on=(OrchestrationError,),
                give_up_on=(ConfigurationError,),
                sleep=self.sleep,
            )
            if todos:
                return OrchestrationResponse(
                    complexity=analysis.complexity,
                    execution_type=ExecutionType.TODO_REQUIRED,
                    todos=todos,
                    suggested_providers=list(suggested),
                    message=f"I've created a plan with {len(todos)} steps. Please review and approve to execute.",
                )

        # Step 5: Several agents, run them as a chain
        if len(suggested) > 1:
            chain = self._linear_chain(suggested, by_id)
            result = self.executor.execute(chain, providers, text, progress_callback)
            return OrchestrationResponse(
                complexity=analysis.complexity,
                execution_type=ExecutionType.CHAIN_EXECUTED,
                todos=result.tasks,
                final_output=result.final_output,
                suggested_providers=list(suggested),
            )

        # Fallback: first suggested agent directly
        descriptor = by_id.get(suggested[0])
        if descriptor is None:
            return OrchestrationResponse(
                complexity=analysis.complexity,
                execution_type=ExecutionType.GUIDANCE,
                response=NO_PROVIDER_MESSAGE,
            )
        return self._direct(text, descriptor, analysis.complexity)

    def run_approved_plan(
        self,
        tasks: list[Task],
        initial_input: str,
        progress_callback: Callable[[Task, str], None] | None = None,
    ) -> ChainResult:
        """Execute an approved todo list; no classification or planning"""
        logger.info(f"Executing approved plan with {len(tasks)} todos")
        return self.executor.execute(tasks, self.catalog.load(), initial_input, progress_callback)

    def process_request(
        self,
        request_text: str,
        orchestrator_id: str = settings.ORCHESTRATOR_ID,
        progress_callback: Callable[[Task, str], None] | None = None,
    ) -> dict:
        """run_orchestration() as {"success": bool, "data" | "error"}"""
        try:
            response = self.run_orchestration(request_text, orchestrator_id, progress_callback)
            return {"success": True, "data": response.to_dict()}
        except ValueError as e:
            return {"success": False, "error": str(e)}
        except RateLimitExceededError as e:
            logger.warning(f"Rate limit exceeded: {e.message}")
            return {"success": False, "error": RATE_LIMIT_MESSAGE}
        except OrchestrationError as e:
            logger.error(f"Orchestration failed ({e.kind}): {e.message}")
            return {"success": False, "error": self._sanitize(e)}
        except Exception as e:
            logger.exception("Orchestrator error")
            return {"success": False, "error": self._sanitize(e)}

    def execute_approved(
        self,
        todos: list[Task | dict],
        initial_input: str,
        progress_callback: Callable[[Task, str], None] | None = None,
    ) -> dict:
        """run_approved_plan() as {"success": bool, "data" | "error"}"""
        tasks = [t if isinstance(t, Task) else Task.from_dict(t) for t in todos]
        try:
            result = self.run_approved_plan(tasks, initial_input, progress_callback)
            return {"success": True, "data": result.to_dict()}
        except TaskExecutionError as e:
            logger.error(f"Todo {e.task_id} failed: {e.message}")
            return {
                "success": False,
                "error": self._sanitize(e),
                "data": {"todos": [t.to_dict() for t in tasks]},
            }
        except OrchestrationError as e:
            logger.error(f"Approved plan rejected ({e.kind}): {e.message}")
            return {"success": False, "error": self._sanitize(e)}
        except Exception as e:
            logger.exception("Approved plan execution error")
            return {"success": False, "error": self._sanitize(e)}

    def _direct(
        self, text: str, descriptor: CapabilityProviderDescriptor, complexity: float
    ) -> OrchestrationResponse:
        logger.info(f"Calling agent {descriptor.id} directly")
        result = self.invoker.invoke(descriptor, text)
        if not result.success:
            raise error_for_kind(result.kind, result.error or f"Agent {descriptor.id} failed")
        return OrchestrationResponse(
            complexity=complexity,
            execution_type=ExecutionType.DIRECT,
            response=result.output,
            provider_used=descriptor.id,
        )

    @staticmethod
    def _linear_chain(
        provider_ids: list[str], by_id: dict[str, CapabilityProviderDescriptor]
    ) -> list[Task]:
        """One todo per agent, each depending on the todo before it"""
        tasks: list[Task] = []
        for index, provider_id in enumerate(provider_ids):
            descriptor = by_id.get(provider_id)
            label = descriptor.label if descriptor else provider_id
            tasks.append(Task(
                title=f"Step {index + 1}: {label}",
                description=f"Execute {label}",
                provider_id=provider_id,
                provider_kind=descriptor.kind if descriptor else None,
                dependencies=[tasks[-1].id] if tasks else [],
            ))
        return tasks

    def _sanitize(self, error: Exception) -> str:
        message = error.message if isinstance(error, OrchestrationError) else str(error)
        return sanitize_error_message(message, is_development=self.is_development)


# Singleton instance
_orchestrator: Orchestrator | None = None


def get_orchestrator() -> Orchestrator:
    """Get or create orchestrator singleton"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator()
    return _orchestrator
