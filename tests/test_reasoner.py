import asyncio
from types import SimpleNamespace

import pytest

from packages.domain.bid_comparison.errors import ConfigurationError, ProviderTransientError
from packages.domain.bid_comparison.reasoner import (
    AnthropicReasoner,
    OpenAIReasoner,
    ProviderChainReasoner,
    ReasonerOptions,
    ReasonerResponse,
    complete_with_timeout,
)


class StubProvider:
    def __init__(self, name, fail=False):
        self.name = name
        self.fail = fail
        self.calls = 0
        self.is_configured = True

    async def complete(self, system_prompt, user_prompt, options):
        self.calls += 1
        if self.fail:
            raise ProviderTransientError(self.name, "503 overloaded")
        return ReasonerResponse(content=f"from {self.name}", provider=self.name)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def test_chain_uses_first_healthy_provider():
    primary, secondary = StubProvider("anthropic"), StubProvider("openai")
    chain = ProviderChainReasoner([primary, secondary])

    response = await chain.complete("sys", "user", ReasonerOptions())

    assert response.content == "from anthropic"
    assert secondary.calls == 0


async def test_failed_provider_is_skipped_until_ttl_expires():
    clock = FakeClock()
    primary, secondary = StubProvider("anthropic", fail=True), StubProvider("openai")
    chain = ProviderChainReasoner([primary, secondary], degradation_ttl_seconds=1800, clock=clock)

    first = await chain.complete("sys", "user", ReasonerOptions())
    second = await chain.complete("sys", "user", ReasonerOptions())

    assert first.provider == "openai"
    assert second.provider == "openai"
    assert primary.calls == 1
    assert chain.is_degraded("anthropic")

    clock.now = 1801
    primary.fail = False
    third = await chain.complete("sys", "user", ReasonerOptions())

    assert third.provider == "anthropic"
    assert not chain.is_degraded("anthropic")


async def test_all_providers_failing_raises_transient_error():
    chain = ProviderChainReasoner([StubProvider("anthropic", fail=True), StubProvider("openai", fail=True)])

    with pytest.raises(ProviderTransientError) as exc_info:
        await chain.complete("sys", "user", ReasonerOptions())

    assert exc_info.value.provider == "openai"


async def test_unconfigured_chain_raises_configuration_error():
    chain = ProviderChainReasoner([AnthropicReasoner(api_key=None), OpenAIReasoner(api_key=None)])

    assert not chain.is_configured
    with pytest.raises(ConfigurationError):
        await chain.complete("sys", "user", ReasonerOptions())


async def test_degradation_state_is_per_instance():
    failing = StubProvider("anthropic", fail=True)
    first_chain = ProviderChainReasoner([failing, StubProvider("openai")])
    await first_chain.complete("sys", "user", ReasonerOptions())

    second_chain = ProviderChainReasoner([StubProvider("anthropic"), StubProvider("openai")])
    response = await second_chain.complete("sys", "user", ReasonerOptions())

    assert first_chain.is_degraded("anthropic")
    assert response.provider == "anthropic"


async def test_anthropic_adapter_passes_options_and_joins_text():
    captured = {}

    async def create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text='{"isMatch": '), SimpleNamespace(type="text", text="true}")],
            usage=SimpleNamespace(input_tokens=12, output_tokens=5),
        )

    client = SimpleNamespace(messages=SimpleNamespace(create=create))
    reasoner = AnthropicReasoner(api_key=None, model="claude-test", client=client)

    response = await reasoner.complete("system text", "user text", ReasonerOptions(temperature=0.3, max_tokens=4000, timeout_ms=2500))

    assert response.content == '{"isMatch": true}'
    assert response.input_tokens == 12
    assert captured["system"] == "system text"
    assert captured["messages"] == [{"role": "user", "content": "user text"}]
    assert captured["max_tokens"] == 4000
    assert captured["timeout"] == 2.5


async def test_openai_adapter_sends_system_and_user_messages():
    captured = {}

    async def create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="ok"))],
            usage=SimpleNamespace(prompt_tokens=3, completion_tokens=1),
        )

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    reasoner = OpenAIReasoner(api_key=None, model="gpt-test", client=client)

    response = await reasoner.complete("sys", "usr", ReasonerOptions())

    assert response.content == "ok"
    assert response.provider == "openai"
    assert [m["role"] for m in captured["messages"]] == ["system", "user"]


async def test_caller_timeout_becomes_transient_error():
    class SlowReasoner:
        name = "slow"

        async def complete(self, system_prompt, user_prompt, options):
            await asyncio.sleep(5)

    with pytest.raises(ProviderTransientError) as exc_info:
        await complete_with_timeout(SlowReasoner(), "sys", "usr", ReasonerOptions(timeout_ms=20))

    assert exc_info.value.provider == "slow"
    assert "timed out" in str(exc_info.value)


async def test_slow_provider_times_out_and_chain_fails_over():
    class SlowProvider(StubProvider):
        async def complete(self, system_prompt, user_prompt, options):
            self.calls += 1
            await asyncio.sleep(5)

    primary, secondary = SlowProvider("anthropic"), StubProvider("openai")
    chain = ProviderChainReasoner([primary, secondary])

    response = await complete_with_timeout(chain, "sys", "usr", ReasonerOptions(timeout_ms=50))

    assert response.provider == "openai"
    assert primary.calls == 1
    assert chain.is_degraded("anthropic")
