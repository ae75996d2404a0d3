"""OpenAI chat client constrained to JSON object responses."""

from __future__ import annotations

import json
from typing import Any

from openai import AsyncOpenAI

from app.core.config import settings
from app.core.errors import UpstreamUnavailable
from app.ingestion.observability import UpstreamMonitor, upstream_monitor


class LLMClient:
    source_name = "llm"

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        timeout: float | None = None,
        monitor: UpstreamMonitor | None = None,
    ) -> None:
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.openai_model
        self.timeout = timeout or settings.llm_timeout_seconds
        self.monitor = monitor or upstream_monitor
        self._client: AsyncOpenAI | None = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def complete_json(self, system: str, user: str) -> dict[str, Any]:
        """Return the parsed JSON object the model produced for ``user``."""
        if not self.configured:
            raise UpstreamUnavailable("OpenAI API key missing")

        async def _call() -> str:
            completion = await self._get_client().chat.completions.create(
                model=self.model,
                temperature=0.2,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
            choices = completion.choices or []
            return (choices[0].message.content if choices else None) or "{}"

        content = await self.monitor.track(self.source_name, "extract", _call, timeout=self.timeout)
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise UpstreamUnavailable("LLM returned malformed JSON") from exc
        if not isinstance(parsed, dict):
            raise UpstreamUnavailable("LLM returned a non-object JSON payload")
        return parsed
