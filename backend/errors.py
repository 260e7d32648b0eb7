"""
Error taxonomy for the call coaching core.

Categories:
- Precondition: reducer invoked on missing/invalid state (programming defect).
- Upstream service: transcription, LLM or storage failure (retryable or not).
- Resource: missing audio, service not configured (never retryable).

Validation failures of model output are NOT exceptions; they are recovered
locally into empty, versioned result values.
"""

from __future__ import annotations


class PreconditionError(ValueError):
    """Reducer invoked with a state that violates the event's precondition."""


class UnhandledEventError(TypeError):
    """Reducer received an event kind it has no branch for."""


class UpstreamServiceError(RuntimeError):
    """
    Failure reported by an external collaborator.

    status_code is the provider's HTTP status when one exists; the retry
    classifier prefers it over message inspection.
    """

    def __init__(
        self,
        service: str,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class ResourceError(RuntimeError):
    """A required input or collaborator is missing. Never retryable."""


class ServiceNotConfiguredError(ResourceError):
    def __init__(self, service: str) -> None:
        super().__init__(f"{service} is not configured")
        self.service = service


class EmptyAudioError(ResourceError):
    def __init__(self, object_path: str) -> None:
        super().__init__(f"Audio object is empty: {object_path}")
        self.object_path = object_path
