"""Ordered LLM provider chain: OpenAI first, Anthropic second, deterministic fallback last."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import anthropic
from openai import AsyncOpenAI

from travel_kb.config import settings

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json(text: str) -> Any:
    """Pull a JSON object out of an LLM response.

    Tries a fenced ```json block first, then the first balanced ``{...}`` span.

    Raises:
        ValueError if no parseable object is found.
    """
    if not text:
        raise ValueError("Empty response")

    match = _FENCE_RE.search(text)
    if match:
        try:
            return json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            pass

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    try:
                        return json.loads(text[start:i + 1])
                    except json.JSONDecodeError:
                        break
        start = text.find("{", start + 1)

    raise ValueError("No JSON object found in response")


class LLMProvider(Protocol):
    name: str

    @property
    def is_configured(self) -> bool: ...

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        max_tokens: int = 1000,
        temperature: float = 0,
        json_mode: bool = False,
    ) -> str: ...


class OpenAIProvider:
    name = "openai"

    def __init__(self, api_key: str | None = None, model: str | None = None):
        key = settings.openai_api_key if api_key is None else api_key
        self.model = model or settings.openai_model
        self._client = AsyncOpenAI(api_key=key) if key else None

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def complete(self, system, prompt, *, max_tokens=1000, temperature=0, json_mode=False) -> str:
        kwargs: dict = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self._client.chat.completions.create(**kwargs)
        return (response.choices[0].message.content or "").strip()


class AnthropicProvider:
    name = "anthropic"

    def __init__(self, api_key: str | None = None, model: str | None = None):
        key = settings.anthropic_api_key if api_key is None else api_key
        self.model = model or settings.anthropic_model
        self._client = anthropic.AsyncAnthropic(api_key=key) if key else None

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def complete(self, system, prompt, *, max_tokens=1000, temperature=0, json_mode=False) -> str:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text.strip()


@dataclass
class GenerationTask:
    """One unit of generation work with its deterministic fallback."""
    name: str
    system: str
    prompt: str
    fallback: str
    reshaped_prompt: str | None = None
    expect_json: bool = False
    max_tokens: int = 1000
    temperature: float = 0.3
    # Rejects well-formed but unusable output so the next provider gets a turn
    validate: Callable[[Any], bool] | None = None


@dataclass
class GenerationResult:
    text: str
    provider: str
    data: Any = None
    attempts: list[str] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return self.provider == "fallback"


class LLMChain:
    """Tries each configured provider in order; never raises from ``generate``."""

    def __init__(self, providers: list[LLMProvider] | None = None, timeout: float | None = None):
        if providers is None:
            providers = [OpenAIProvider(), AnthropicProvider()]
        self.providers = providers
        self.timeout = timeout or settings.llm_timeout_seconds

    @property
    def is_configured(self) -> bool:
        return any(p.is_configured for p in self.providers)

    async def generate(self, task: GenerationTask) -> GenerationResult:
        attempts: list[str] = []

        for index, provider in enumerate(self.providers):
            if not provider.is_configured:
                continue
            prompt = task.prompt if index == 0 else (task.reshaped_prompt or task.prompt)
            attempts.append(provider.name)
            try:
                text = await asyncio.wait_for(
                    provider.complete(
                        task.system,
                        prompt,
                        max_tokens=task.max_tokens,
                        temperature=task.temperature,
                        json_mode=task.expect_json,
                    ),
                    timeout=self.timeout,
                )
                data = extract_json(text) if task.expect_json else None
                if task.validate is not None and not task.validate(data if task.expect_json else text):
                    raise ValueError("Response failed validation")
                return GenerationResult(text=text, provider=provider.name, data=data, attempts=attempts)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"{task.name}: {provider.name} failed, trying next provider: {e}")

        if attempts:
            logger.warning(f"{task.name}: all providers failed ({', '.join(attempts)}), using fallback")
        data = None
        if task.expect_json:
            try:
                data = extract_json(task.fallback)
            except ValueError:
                data = None
        return GenerationResult(text=task.fallback, provider="fallback", data=data, attempts=attempts)

    async def test_services(self) -> dict:
        """Check every provider with a tiny prompt."""
        results: dict[str, dict] = {}
        for provider in self.providers:
            if not provider.is_configured:
                results[provider.name] = {"status": "demo", "message": "Not configured"}
                continue
            try:
                await asyncio.wait_for(
                    provider.complete("You are a connectivity check.", "Reply with OK.", max_tokens=5),
                    timeout=self.timeout,
                )
                results[provider.name] = {"status": "success", "message": "Connected"}
            except asyncio.CancelledError:
                raise
            except Exception as e:
                results[provider.name] = {"status": "error", "message": str(e)}

        statuses = [r["status"] for r in results.values()]
        configured = [s for s in statuses if s != "demo"]
        if not configured:
            overall = "demo"
        elif all(s == "success" for s in configured):
            overall = "success"
        elif any(s == "success" for s in configured):
            overall = "partial"
        else:
            overall = "error"
        return {"status": overall, "providers": results}

    def status(self) -> dict:
        configured = [p.name for p in self.providers if p.is_configured]
        return {
            "status": "configured" if configured else "demo",
            "providers": configured,
        }
