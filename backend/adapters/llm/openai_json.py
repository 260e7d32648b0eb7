"""
OpenAI-compatible JSON completion adapter.

Works against OpenAI and any OpenAI-compatible endpoint (Groq) through the
official AsyncOpenAI client.

Role in the system:
- Sends one chat completion in JSON mode.
- Parses the message content with json.loads.
- Maps provider errors to UpstreamServiceError carrying the HTTP status so
  the retry classifier can decide.

Architectural constraints:
- No retries, no timeouts beyond the client's own, no validation.
"""

from __future__ import annotations

import json

from openai import APIStatusError, AsyncOpenAI, OpenAIError

from adapters.llm.base import JsonCompletionClient
from config import AppConfig
from constants import LLM_TEMPERATURE
from errors import UpstreamServiceError


class OpenAIJsonClient(JsonCompletionClient):
    """
    Concrete JSON-mode completion client.

    One instance may be shared by every call in the process; it holds no
    per-request state.
    """

    def __init__(
        self,
        *,
        client: AsyncOpenAI,
        provider: str = "openai",
        default_temperature: float = LLM_TEMPERATURE,
    ) -> None:
        self._client = client
        self._provider = provider
        self._default_temperature = default_temperature

    async def complete_json(
        self,
        *,
        system: str,
        user: str,
        model: str,
        max_output_tokens: int,
        temperature: float | None = None,
    ) -> object:
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                response_format={"type": "json_object"},
                max_tokens=max_output_tokens,
                temperature=(
                    self._default_temperature if temperature is None else temperature
                ),
            )
        except APIStatusError as exc:
            raise UpstreamServiceError(
                self._provider, str(exc), status_code=exc.status_code
            ) from exc
        except OpenAIError as exc:
            raise UpstreamServiceError(self._provider, str(exc)) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise UpstreamServiceError(self._provider, "empty completion")

        return json.loads(content)


def build_llm_client(config: AppConfig) -> OpenAIJsonClient | None:
    """Build a JSON client for the configured provider, or None if unconfigured."""
    if not config.llm_configured:
        return None

    if config.llm_provider.lower() == "groq":
        client = AsyncOpenAI(
            api_key=config.groq_api_key,
            base_url="https://api.groq.com/openai/v1",
        )
        return OpenAIJsonClient(client=client, provider="groq")

    return OpenAIJsonClient(client=AsyncOpenAI(api_key=config.openai_api_key))
