"""
Reasoning providers - narrow completion interface over LLM vendors

Flow:
- AnthropicReasoner / OpenAIReasoner wrap one vendor SDK each
- ProviderChainReasoner tries providers in order (Anthropic → OpenAI) and
  skips a provider for a while after it fails with a transient error

Every vendor exception and timeout is translated to ProviderTransientError
here, so matching and analysis code only ever sees the engine's taxonomy.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

import anthropic
import openai
import structlog

from packages.domain.bid_comparison.errors import (
    ConfigurationError,
    ProviderTransientError,
)

logger = structlog.get_logger()


@dataclass
class ReasonerOptions:
    """Per-call generation options"""
    temperature: float = 0.2
    max_tokens: int = 1000
    timeout_ms: int = 60000


@dataclass
class ReasonerResponse:
    """Completion text plus provenance"""
    content: str
    provider: str = ""
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


class Reasoner(Protocol):
    """Protocol for reasoning-service providers"""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: ReasonerOptions,
    ) -> ReasonerResponse:
        """
        Run one completion.

        Raises:
            ConfigurationError: Provider not configured
            ProviderTransientError: Network, timeout or rate-limit failure
        """
        ...


class AnthropicReasoner:
    """Anthropic Claude messages API"""

    name = "anthropic"

    def __init__(self, api_key: Optional[str], model: str = "claude-sonnet-4-5", client=None):
        """
        Args:
            api_key: Anthropic API key (None leaves the provider unconfigured)
            model: Claude model name
            client: Pre-built AsyncAnthropic-compatible client (tests)
        """
        self.model = model
        if client is not None:
            self.client = client
        elif api_key:
            self.client = anthropic.AsyncAnthropic(api_key=api_key)
        else:
            self.client = None

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: ReasonerOptions,
    ) -> ReasonerResponse:
        if self.client is None:
            raise ConfigurationError("Anthropic API key not configured")

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                timeout=options.timeout_ms / 1000,
            )
        except anthropic.APIError as e:
            raise ProviderTransientError(self.name, str(e)) from e

        text_blocks = [block.text for block in response.content if getattr(block, "type", "") == "text"]
        return ReasonerResponse(
            content="".join(text_blocks),
            provider=self.name,
            model=self.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


class OpenAIReasoner:
    """OpenAI chat completions API"""

    name = "openai"

    def __init__(self, api_key: Optional[str], model: str = "gpt-4o-mini", client=None):
        self.model = model
        if client is not None:
            self.client = client
        elif api_key:
            self.client = openai.AsyncOpenAI(api_key=api_key)
        else:
            self.client = None

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: ReasonerOptions,
    ) -> ReasonerResponse:
        if self.client is None:
            raise ConfigurationError("OpenAI API key not configured")

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                timeout=options.timeout_ms / 1000,
            )
        except openai.APIError as e:
            raise ProviderTransientError(self.name, str(e)) from e

        usage = response.usage
        return ReasonerResponse(
            content=response.choices[0].message.content or "",
            provider=self.name,
            model=self.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


class ProviderChainReasoner:
    """
    Try providers in order until one answers.

    Each provider gets its own timeout_ms deadline. A provider that fails
    with a transient error or overruns its deadline is marked degraded and
    skipped until the TTL expires. Degradation state lives on the instance.
    """

    def __init__(self, providers: List, degradation_ttl_seconds: float = 1800, clock=time.monotonic):
        self.providers = [p for p in providers if getattr(p, "is_configured", True)]
        self.degradation_ttl_seconds = degradation_ttl_seconds
        self._clock = clock
        self._degraded_until: Dict[str, float] = {}

    @property
    def is_configured(self) -> bool:
        return bool(self.providers)

    def is_degraded(self, name: str) -> bool:
        """Check if a provider is currently degraded (recently failed)"""
        until = self._degraded_until.get(name)
        if until is None:
            return False
        if self._clock() > until:
            del self._degraded_until[name]
            return False
        return True

    def mark_degraded(self, name: str) -> None:
        self._degraded_until[name] = self._clock() + self.degradation_ttl_seconds
        logger.warning("reasoning_provider_degraded",
                       provider=name,
                       ttl_seconds=self.degradation_ttl_seconds)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: ReasonerOptions,
    ) -> ReasonerResponse:
        if not self.providers:
            raise ConfigurationError(
                "No reasoning provider configured. Set ANTHROPIC_API_KEY or OPENAI_API_KEY."
            )

        last_error: Optional[ProviderTransientError] = None
        for provider in self.providers:
            name = getattr(provider, "name", type(provider).__name__)
            if self.is_degraded(name):
                continue

            try:
                return await complete_with_timeout(provider, system_prompt, user_prompt, options)
            except ProviderTransientError as e:
                logger.warning("reasoning_provider_failed", provider=name, error=str(e))
                self.mark_degraded(name)
                last_error = e

        if last_error is None:
            last_error = ProviderTransientError("provider_chain", "all providers degraded")
        raise last_error


async def complete_with_timeout(
    reasoner: Reasoner,
    system_prompt: str,
    user_prompt: str,
    options: ReasonerOptions,
) -> ReasonerResponse:
    """
    Run a completion under a caller-imposed deadline.

    A deadline overrun is reported as a provider error, same as a
    network failure. A provider chain already bounds each provider, so its
    overall deadline is one timeout_ms per provider.
    """
    deadline_ms = options.timeout_ms * max(1, len(getattr(reasoner, "providers", ())))
    try:
        return await asyncio.wait_for(
            reasoner.complete(system_prompt, user_prompt, options),
            timeout=deadline_ms / 1000,
        )
    except asyncio.TimeoutError as e:
        raise ProviderTransientError(
            getattr(reasoner, "name", type(reasoner).__name__),
            f"timed out after {deadline_ms}ms",
        ) from e
