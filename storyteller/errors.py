"""Error taxonomy shared by the providers, the parsers and the turn engine.

    LLMError                 base for everything raised by a model backend
      ProviderError          backend reachable but the call failed
        TransientProviderError   rate limited without a quota signal; retried
        QuotaExceeded            quota exhausted; switch to the next model
        ProvidersExhausted       no model left to switch to
      StreamTimeout          no terminal signal within the time budget
    MalformedResponse        model JSON could not be recovered or reshaped
    TurnInProgress           a turn-initiating call while one is in flight
"""

from __future__ import annotations


class LLMError(RuntimeError):
    """Raised when a model backend cannot be reached or returns an error."""


class ProviderError(LLMError):
    """A provider call failed with a message fit to show the player."""


class TransientProviderError(ProviderError):
    """Rate limited (HTTP 429) without a quota signal."""


class QuotaExceeded(ProviderError):
    """The current model's quota is exhausted."""


class ProvidersExhausted(ProviderError):
    """Every configured model has been tried."""


class StreamTimeout(LLMError):
    """A generation did not finish within its wall-clock budget."""

    def __init__(self, seconds: float) -> None:
        super().__init__(f"The model did not respond within {seconds:g} seconds.")
        self.seconds = seconds


class MalformedResponse(ValueError):
    """Model output that could not be turned into the expected structure.

    `raw_text` keeps the original text for diagnostics.
    """

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class TurnInProgress(RuntimeError):
    """A turn is already being generated for this session."""


def classify_provider_error(exc: BaseException) -> ProviderError | None:
    """Map a backend exception onto the retry/fallback taxonomy.

    Returns None when the error is neither a rate limit nor a quota signal.
    """
    if isinstance(exc, ProviderError):
        return exc
    message = str(exc)
    lowered = message.lower()
    code = getattr(exc, "code", None) or getattr(exc, "status_code", None)
    rate_limited = code == 429 or "429" in lowered or "resource_exhausted" in lowered
    if not rate_limited:
        return None
    if "quota" in lowered:
        return QuotaExceeded(message)
    return TransientProviderError(message)
