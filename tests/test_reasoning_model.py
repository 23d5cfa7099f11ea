"""Tests for the reasoning model backends."""
from types import SimpleNamespace

import pytest

from orchestration.errors import ConfigurationError, GatewayTimeoutError, ProviderError
from orchestration.gateway import CapabilityGateway, GatewayResult
from services.reasoning_model import ChatCompletionModel, GeminiModel


class RecordingGateway:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def call(self, endpoint, payload, timeout=None, headers=None, method="POST"):
        self.calls.append({"endpoint": endpoint, "payload": payload, "timeout": timeout, "headers": headers})
        return self.result


class FakeModels:
    def __init__(self, texts):
        self.texts = texts
        self.requests = []

    def generate_content(self, model, contents, config):
        self.requests.append({"model": model, "contents": contents, "config": config})
        parts = [SimpleNamespace(text=t) for t in self.texts]
        return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))])


def test_chat_model_json_mode():
    gateway = RecordingGateway(GatewayResult(
        success=True, data={"choices": [{"message": {"content": '{"complexity": 0.2}'}}]}
    ))
    model = ChatCompletionModel(gateway, api_key="sk-test", url="https://llm.test/v1/chat", model="m1")

    content = model.complete("system", "user", json_mode=True, timeout=30)

    assert content == '{"complexity": 0.2}'
    call = gateway.calls[0]
    assert call["endpoint"] == "https://llm.test/v1/chat"
    assert call["timeout"] == 30
    assert call["payload"]["response_format"] == {"type": "json_object"}
    assert call["payload"]["messages"][0] == {"role": "system", "content": "system"}


def test_chat_model_requires_key():
    gateway = RecordingGateway(GatewayResult(success=True, data={}))
    with pytest.raises(ConfigurationError):
        ChatCompletionModel(gateway, api_key="").complete("s", "u")
    assert gateway.calls == []


def test_chat_model_raises_by_failure_kind():
    gateway = RecordingGateway(GatewayResult(success=False, kind="timeout", error="Request timeout after 30s"))
    with pytest.raises(GatewayTimeoutError):
        ChatCompletionModel(gateway, api_key="sk-test").complete("s", "u")


def test_chat_model_empty_content():
    gateway = RecordingGateway(GatewayResult(success=True, data={"choices": [{"message": {"content": ""}}]}))
    with pytest.raises(ProviderError):
        ChatCompletionModel(gateway, api_key="sk-test").complete("s", "u")


def test_gemini_model_joins_parts_through_gateway(store, clock):
    models = FakeModels(['{"isGeneral": ', "false}"])
    client = SimpleNamespace(models=models)
    model = GeminiModel(CapabilityGateway(store=store), client=client, model="gemini-test")

    content = model.complete("system", "What can you do?", json_mode=True, timeout=15)

    assert content == '{"isGeneral": false}'
    config = models.requests[0]["config"]
    assert config.system_instruction == "system"
    assert config.response_mime_type == "application/json"
    assert config.http_options.timeout == 15000
    assert len(store.get_usage_stats()) == 1


def test_gemini_model_empty_reply(store):
    client = SimpleNamespace(models=FakeModels([]))
    model = GeminiModel(CapabilityGateway(store=store), client=client)
    with pytest.raises(ProviderError):
        model.complete("system", "user")
