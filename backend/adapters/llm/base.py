"""
LLM adapter contract.

Purpose:
- Define the single call the core makes to a language-model service:
  "complete as JSON".
- Keep prompt building, validation and grounding OUT of the adapter.

Rules:
- This file contains NO logic.
- The returned value is untrusted: callers must fully validate it.
- Adapters raise on transport/provider failure; they never return
  partial results.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class JsonCompletionClient(ABC):
    """
    Abstract base class for JSON-mode completion clients.

    The adapter is a *dumb pipe*:
    prompts -> vendor -> parsed JSON value.

    Caller responsibilities (NOT here):
    - Prompt construction
    - Retry policy and timeouts
    - Validation of the returned shape
    """

    @abstractmethod
    async def complete_json(
        self,
        *,
        system: str,
        user: str,
        model: str,
        max_output_tokens: int,
        temperature: float | None = None,
    ) -> object:
        """
        Request a single JSON object completion.

        Contract:
        - Returns the parsed JSON value (any shape).
        - Raises UpstreamServiceError on provider failure or empty output.
        - Raises ValueError when the output is not valid JSON.
        """
        raise NotImplementedError
