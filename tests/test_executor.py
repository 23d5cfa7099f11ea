"""Tests for dependency validation, ordering and sequential execution."""
import pytest

from orchestration.action_plan import DEPENDENCY_MARKER, Task, TaskInput, TaskStatus
from orchestration.errors import (
    CircularDependencyError,
    InvalidDependencyError,
    ProviderNotFoundError,
    TaskExecutionError,
)
from orchestration.executor import TaskGraphExecutor, topological_order
from orchestration.gateway import CapabilityGateway
from services.agent_catalog import CapabilityProviderDescriptor
from services.capability_providers import ProviderInvoker, ProviderOutput
from tests.conftest import FakeInvoker, FakeResponse, FakeSession


def make_task(title, provider="summarizer", deps=(), task_input=None):
    return Task(
        title=title,
        description=title,
        provider_id=provider,
        dependencies=list(deps),
        input=task_input,
    )


def test_topological_order_is_stable():
    """Test that independent tasks keep insertion order and dependents come after parents."""
    a = make_task("A")
    b = make_task("B")
    c = make_task("C", deps=[a.id])
    d = make_task("D", deps=[c.id, b.id])

    ordered = topological_order([d, c, a, b])

    assert [t.title for t in ordered] == ["A", "B", "C", "D"]


def test_dependencies_may_reference_titles():
    a = make_task("A")
    b = make_task("B", deps=["A"])
    assert [t.title for t in topological_order([b, a])] == ["A", "B"]


def test_cycle_is_rejected_before_any_call(providers):
    """Test that a cycle lists every unsortable task and invokes nothing."""
    a = make_task("A")
    b = make_task("B", deps=[a.id])
    c = make_task("C", deps=[b.id])
    a.dependencies = [c.id]
    free = make_task("Free")
    invoker = FakeInvoker()

    with pytest.raises(CircularDependencyError) as exc:
        TaskGraphExecutor(invoker).execute([a, b, c, free], providers, "input")

    assert set(exc.value.task_ids) == {a.id, b.id, c.id}
    assert "Circular dependency detected" in str(exc.value)
    assert invoker.calls == []


def test_self_loop_is_a_cycle(providers):
    a = make_task("A")
    a.dependencies = [a.id]
    with pytest.raises(CircularDependencyError):
        TaskGraphExecutor(FakeInvoker()).execute([a], providers, "input")


def test_invalid_reference_is_rejected_before_any_call(providers):
    a = make_task("A")
    b = make_task("B", deps=["does-not-exist"])
    invoker = FakeInvoker()

    with pytest.raises(InvalidDependencyError) as exc:
        TaskGraphExecutor(invoker).execute([a, b], providers, "input")

    assert exc.value.task_id == b.id
    assert exc.value.reference == "does-not-exist"
    assert invoker.calls == []


def test_outputs_flow_as_current_input(providers):
    a = make_task("Summarize", "summarizer")
    b = make_task("Translate", "translator", deps=[a.id])
    invoker = FakeInvoker({
        "summarizer": lambda prompt, body, extra: ProviderOutput(True, output="short"),
        "translator": lambda prompt, body, extra: ProviderOutput(True, output=f"FR({prompt})"),
    })

    result = TaskGraphExecutor(invoker).execute([a, b], providers, "long text")

    assert [c["prompt"] for c in invoker.calls] == ["long text", "short"]
    assert result.final_output == "FR(short)"
    assert a.status == TaskStatus.COMPLETED
    assert b.chain_metadata.input == "short"


def test_structured_output_is_stringified_for_next_task(providers):
    a = make_task("Extract", "summarizer")
    b = make_task("Translate", "translator", deps=[a.id])
    invoker = FakeInvoker({"summarizer": ProviderOutput(True, output={"k": "v"})})

    TaskGraphExecutor(invoker).execute([a, b], providers, "x")

    assert invoker.calls[1]["prompt"] == '{"k": "v"}'
    assert a.output == {"k": "v"}


def test_failure_aborts_run(providers):
    """Test that t2 failing marks it failed, leaves t3 pending and never calls t3's agent."""
    t1 = make_task("t1", "summarizer")
    t2 = make_task("t2", "translator", deps=[t1.id])
    t3 = make_task("t3", "image-generator", deps=[t2.id])
    invoker = FakeInvoker({
        "translator": ProviderOutput(False, error="HTTP 400: bad request", kind="http"),
    })
    executor = TaskGraphExecutor(invoker)

    with pytest.raises(TaskExecutionError) as exc:
        executor.execute([t1, t2, t3], providers, "input")

    assert exc.value.task_id == t2.id
    assert t1.status == TaskStatus.COMPLETED
    assert t2.status == TaskStatus.FAILED
    assert t2.error == "HTTP 400: bad request"
    assert t2.output == "HTTP 400: bad request"
    assert t3.status == TaskStatus.PENDING
    assert [c["provider_id"] for c in invoker.calls] == ["summarizer", "translator"]
    assert [entry["status"] for entry in executor.execution_log] == ["completed", "failed"]


def test_missing_provider_fails_task(providers):
    a = make_task("A", "ghost-agent")

    with pytest.raises(ProviderNotFoundError) as exc:
        TaskGraphExecutor(FakeInvoker()).execute([a], providers, "input")

    assert str(exc.value) == "Agent ghost-agent not found"
    assert a.status == TaskStatus.FAILED


def test_dependency_markers_are_hydrated(providers):
    a = make_task("A", "summarizer")
    b = make_task(
        "B",
        "translator",
        deps=[a.id],
        task_input=TaskInput(
            body={"text": DEPENDENCY_MARKER, "targetLanguage": "fr"},
            extra_body={"context": [DEPENDENCY_MARKER]},
        ),
    )
    invoker = FakeInvoker({"summarizer": ProviderOutput(True, output="summary")})

    TaskGraphExecutor(invoker).execute([a, b], providers, "input")

    call = invoker.calls[1]
    assert call["body"] == {"text": "summary", "targetLanguage": "fr"}
    assert call["extra_body"] == {"context": ["summary"]}
    # The stored input keeps its markers
    assert b.input.body["text"] == DEPENDENCY_MARKER


def test_explicit_prompt_overrides_current_input(providers):
    a = make_task("A", "summarizer", task_input=TaskInput(prompt="use this instead"))
    invoker = FakeInvoker()

    TaskGraphExecutor(invoker).execute([a], providers, "original")

    assert invoker.calls[0]["prompt"] == "use this instead"


def test_completed_tasks_are_skipped_and_seed_input(providers):
    """Test that a resumed plan skips completed work but still feeds its output on."""
    a = make_task("A", "summarizer")
    a.status = TaskStatus.COMPLETED
    a.output = "earlier result"
    b = make_task("B", "translator", deps=[a.id])
    invoker = FakeInvoker()

    result = TaskGraphExecutor(invoker).execute([a, b], providers, "original")

    assert [c["provider_id"] for c in invoker.calls] == ["translator"]
    assert invoker.calls[0]["prompt"] == "earlier result"
    assert result.final_output == "translator:earlier result"


def test_progress_callback_sees_each_transition(providers):
    a = make_task("A")
    events = []

    TaskGraphExecutor(FakeInvoker()).execute(
        [a], providers, "x", progress_callback=lambda task, status: events.append(status)
    )

    assert events == ["executing", "completed"]


def test_usage_and_format_are_copied(providers):
    a = make_task("A", "image-generator")
    invoker = FakeInvoker({
        "image-generator": ProviderOutput(
            True,
            output={"url": "https://img/1.png", "b64_json": None},
            token_usage={"total_tokens": 12},
            cost=0.04,
            duration_ms=850,
            response_format="image",
        ),
    })

    TaskGraphExecutor(invoker).execute([a], providers, "a cat")

    assert a.token_usage == {"total_tokens": 12}
    assert a.cost == 0.04
    assert a.duration_ms == 850
    assert a.response_format == "image"


def test_audit_log_is_per_run(providers):
    """Test that each run starts a fresh audit log and returns it with the result."""
    executor = TaskGraphExecutor(FakeInvoker())

    executor.execute([make_task("A")], providers, "first")
    result = executor.execute([make_task("B"), make_task("C")], providers, "second")

    assert len(result.execution_log) == 2
    assert executor.execution_log is result.execution_log
    assert result.to_dict()["executionLog"][0]["status"] == "completed"


def test_invoker_exception_fails_task(providers):
    """Test that an exception from the invoker is recorded on the todo before aborting."""
    def explode(prompt, body, extra):
        raise RuntimeError("codec exploded")

    a = make_task("A", "summarizer")
    b = make_task("B", "translator", deps=[a.id])
    executor = TaskGraphExecutor(FakeInvoker({"summarizer": explode}))

    with pytest.raises(TaskExecutionError) as exc:
        executor.execute([a, b], providers, "input")

    assert exc.value.task_id == a.id
    assert a.status == TaskStatus.FAILED
    assert a.error == a.output == "codec exploded"
    assert b.status == TaskStatus.PENDING
    assert executor.execution_log[-1]["status"] == "failed"


CHAT_AGENT = CapabilityProviderDescriptor(
    id="chat-agent",
    label="Chat agent",
    endpoint="https://llm.example.com/v1/chat/completions",
)


def run_with_reply(store, clock, reply):
    session = FakeSession([FakeResponse(json_data=reply)], clock=clock)
    gateway = CapabilityGateway(store=store, session=session, clock=clock, debug=True)
    executor = TaskGraphExecutor(ProviderInvoker(gateway, api_key="sk-test"))
    task = make_task("Translate", "chat-agent")
    return executor, task


def test_multipart_chat_content_is_joined(store, clock):
    reply = {"choices": [{"message": {"content": [
        {"type": "text", "text": "ho"},
        {"type": "image_url", "image_url": {"url": "https://img/1.png"}},
        {"type": "text", "text": "la"},
    ]}}]}
    executor, task = run_with_reply(store, clock, reply)

    result = executor.execute([task], [CHAT_AGENT], "hello")

    assert task.status == TaskStatus.COMPLETED
    assert result.final_output == "hola"


def test_unexpected_chat_content_fails_task(store, clock):
    """Test that a 200 reply with non-text content marks the todo failed, not stuck in progress."""
    reply = {"choices": [{"message": {"content": {"unexpected": True}}}]}
    executor, task = run_with_reply(store, clock, reply)

    with pytest.raises(TaskExecutionError):
        executor.execute([task], [CHAT_AGENT], "hello")

    assert task.status == TaskStatus.FAILED
    assert "Unexpected response content type dict" in task.error
    assert task.output == task.error
