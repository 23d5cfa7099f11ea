"""Tests for request classification and the informational check."""
import json

import pytest

from orchestration.classifier import RequestClassifier, parse_classification
from orchestration.errors import ClassificationError, GatewayTimeoutError
from tests.conftest import FakeModel


def analysis(**fields):
    return json.dumps(fields)


def test_suggestions_are_filtered_to_catalog(providers):
    """Test that unknown ids and the orchestrator itself never reach the result."""
    result = parse_classification(
        analysis(complexity=0.4, suggestedAgents=["summarizer", "ghost", "orchestrator", "summarizer"]),
        providers,
    )

    assert result.suggested_providers == ["summarizer"]
    assert not result.no_relevant_providers


def test_empty_suggestions_mean_no_relevant_providers(providers):
    result = parse_classification(analysis(complexity=0.2, suggestedAgents=["ghost"]), providers)

    assert result.suggested_providers == []
    assert result.no_relevant_providers


@pytest.mark.parametrize(
    "raw, expected",
    [(1.7, 1.0), (-0.3, 0.0), ("0.25", 0.25), ("high", 0.5), (None, 0.5)],
)
def test_complexity_is_clamped(providers, raw, expected):
    result = parse_classification(analysis(complexity=raw, suggestedAgents=["summarizer"]), providers)
    assert result.complexity == expected


def test_missing_complexity_defaults(providers):
    result = parse_classification(analysis(suggestedAgents=["summarizer"]), providers)
    assert result.complexity == 0.5


def test_high_complexity_forces_plan(providers):
    result = parse_classification(
        analysis(complexity=0.8, needsTodos=False, suggestedAgents=["summarizer"]), providers
    )
    assert result.needs_plan


def test_needs_todos_forces_plan(providers):
    result = parse_classification(
        analysis(complexity=0.1, needsTodos=True, suggestedAgents=["summarizer"]), providers
    )
    assert result.needs_plan


def test_parses_fenced_output(providers):
    content = 'Here you go:\n```json\n{"complexity": 0.3, "suggestedAgents": ["translator"]}\n```'
    assert parse_classification(content, providers).suggested_providers == ["translator"]


def test_unparsable_output_raises(providers):
    with pytest.raises(ClassificationError):
        parse_classification("I think this needs the summarizer.", providers)


def test_classify_sends_manifest_in_json_mode(providers):
    model = FakeModel([analysis(complexity=0.2, suggestedAgents=["summarizer"])])
    classifier = RequestClassifier(model)

    result = classifier.classify("Summarize this", providers)

    assert result.suggested_providers == ["summarizer"]
    call = model.calls[0]
    assert call["json_mode"] is True
    assert "summarizer: Summarizer" in call["user_prompt"]
    assert "orchestrator:" not in call["user_prompt"]


def test_classify_uses_orchestrator_system_prompt(providers):
    model = FakeModel([analysis(complexity=0.2, suggestedAgents=["summarizer"])])
    RequestClassifier(model).classify("Summarize this", providers, system_prompt="Be strict.")
    assert model.calls[0]["system_prompt"] == "Be strict."


def test_classify_propagates_gateway_errors(providers):
    model = FakeModel([GatewayTimeoutError("Request timeout after 30s")])
    with pytest.raises(GatewayTimeoutError):
        RequestClassifier(model).classify("Summarize this", providers)


def test_informational_question_is_answered(providers):
    model = FakeModel([
        json.dumps({"isGeneral": True, "reasoning": "asks about capabilities"}),
        "I can summarize and translate text. #help #agents",
    ])

    check = RequestClassifier(model).is_informational_query("What can you do?", providers)

    assert check.is_informational
    assert check.direct_answer.startswith("I can summarize")
    assert len(model.calls) == 2


def test_task_request_is_not_informational(providers):
    model = FakeModel([json.dumps({"isGeneral": False})])

    check = RequestClassifier(model).is_informational_query("Summarize this", providers)

    assert not check.is_informational
    assert len(model.calls) == 1


def test_informational_check_fails_soft(providers):
    """Test that a failing detection call lets the request proceed to analysis."""
    model = FakeModel([GatewayTimeoutError("Request timeout after 15s")])

    check = RequestClassifier(model).is_informational_query("What can you do?", providers)

    assert not check.is_informational
    assert check.direct_answer is None


def test_no_relevant_flag_must_be_literal_true(providers):
    """Test that a stringly "false" flag does not hide valid suggestions."""
    result = parse_classification(
        analysis(complexity=0.3, noRelevantAgents="false", suggestedAgents=["summarizer"]),
        providers,
    )
    assert result.suggested_providers == ["summarizer"]
    assert not result.no_relevant_providers

    flagged = parse_classification(
        analysis(complexity=0.3, noRelevantAgents=True, suggestedAgents=["summarizer"]),
        providers,
    )
    assert flagged.no_relevant_providers
