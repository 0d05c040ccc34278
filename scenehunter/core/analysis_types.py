"""Request/attempt/result contracts for `scenehunter.core.engine`.

Architectural role:
    Defines the transient, request-scoped types exchanged between the HTTP
    adapters, the inference proxy engine, and the Gemini transport client.
    Nothing here is persisted or shared across requests.

Control-flow interaction:
    - Adapters construct an `AnalysisRequest` from the inbound body.
    - `llm.client` reports each HTTP call as an `InferenceCallAttempt`.
    - `engine.InferenceProxy.analyze` folds attempts into exactly one
      `AnalysisResult` and a `TerminalState`.

Error taxonomy:
    Every failure kind is an `InferenceProxyError` subclass carrying the HTTP
    status code and a client-safe message. The engine converts these into
    results; only adapters turn results into HTTP responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class InferenceProxyError(Exception):
    """Base class for errors that terminate one analysis request."""

    status_code: int = 500
    default_message: str = "An unexpected internal server error occurred."

    def __init__(self, message: str | None = None, status_code: int | None = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidRequest(InferenceProxyError):
    status_code = 400
    default_message = "Missing image or prompt"


class ConfigurationError(InferenceProxyError):
    status_code = 500
    default_message = "API key is not configured on the server"


class ServiceOverloaded(InferenceProxyError):
    status_code = 503
    default_message = "The model is overloaded. Please try again later."


class UpstreamError(InferenceProxyError):
    """Non-503 error status returned by the inference endpoint (passed through)."""

    status_code = 502
    default_message = "An unknown error occurred with the Gemini API."


class InternalError(InferenceProxyError):
    status_code = 500
    default_message = "An unexpected internal server error occurred."


class DeadlineExceeded(InferenceProxyError):
    status_code = 504
    default_message = "The model did not respond in time. Please try again later."


@dataclass(frozen=True)
class AnalysisRequest:
    """Image + prompt pair submitted by a client.

    Attributes:
        image_data: Data URI (`data:<mime>;base64,<payload>`).
        prompt: Instruction text sent alongside the image.
    """

    image_data: str
    prompt: str

    def validate(self) -> None:
        """Raise `InvalidRequest` when either field is absent or blank."""
        if not _has_text(self.image_data) or not _has_text(self.prompt):
            raise InvalidRequest()


@dataclass(frozen=True)
class InlineImage:
    """Parsed data URI: declared MIME type and base64 payload as received."""

    mime_type: str
    data: str


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE_OVERLOAD = "retryable_overload"
    FATAL_ERROR = "fatal_error"


@dataclass(frozen=True)
class InferenceCallAttempt:
    """Outcome of a single HTTP call to the inference endpoint.

    Attributes:
        attempt_number: 1-based attempt index within one request.
        outcome: Classification used by the retry loop.
        status_code: Upstream HTTP status.
        payload: Parsed upstream body (success only).
        message: Extracted upstream error message (fatal errors only).
    """

    attempt_number: int
    outcome: AttemptOutcome
    status_code: int
    payload: Any = None
    message: str | None = None

    def __post_init__(self) -> None:
        if self.attempt_number < 1:
            raise ValueError("attempt_number must be >= 1")


class TerminalState(str, Enum):
    """Every exit path of one analysis request."""

    SUCCESS = "success"
    INVALID_REQUEST = "invalid_request"
    CONFIGURATION_ERROR = "configuration_error"
    TERMINAL_OVERLOAD = "terminal_overload"
    TERMINAL_UPSTREAM_ERROR = "terminal_upstream_error"
    TERMINAL_INTERNAL_ERROR = "terminal_internal_error"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    RETRIES_EXHAUSTED = "retries_exhausted"


_ERROR_STATES: dict[type[InferenceProxyError], TerminalState] = {
    InvalidRequest: TerminalState.INVALID_REQUEST,
    ConfigurationError: TerminalState.CONFIGURATION_ERROR,
    ServiceOverloaded: TerminalState.TERMINAL_OVERLOAD,
    UpstreamError: TerminalState.TERMINAL_UPSTREAM_ERROR,
    InternalError: TerminalState.TERMINAL_INTERNAL_ERROR,
    DeadlineExceeded: TerminalState.DEADLINE_EXCEEDED,
}


@dataclass(frozen=True)
class AnalysisResult:
    """Normalized response produced exactly once per `AnalysisRequest`.

    Attributes:
        state: Terminal state the request ended in.
        status_code: HTTP status adapters should respond with.
        payload: Raw upstream body on success, else `None`.
        error: Client-facing error message on failure, else `None`.
        attempts: Number of outbound calls made.
    """

    state: TerminalState
    status_code: int
    payload: Any = None
    error: str | None = None
    attempts: int = 0

    @property
    def is_success(self) -> bool:
        return self.state is TerminalState.SUCCESS

    @classmethod
    def success(cls, payload: Any, attempts: int) -> AnalysisResult:
        return cls(
            state=TerminalState.SUCCESS,
            status_code=200,
            payload=payload,
            attempts=attempts,
        )

    @classmethod
    def from_error(cls, err: InferenceProxyError, attempts: int = 0) -> AnalysisResult:
        state = _ERROR_STATES.get(type(err), TerminalState.TERMINAL_INTERNAL_ERROR)
        return cls(
            state=state,
            status_code=err.status_code,
            error=err.message,
            attempts=attempts,
        )

    def to_body(self) -> Any:
        """Return the JSON body adapters send back to the client."""
        if self.is_success:
            return self.payload
        return {"error": self.error}


def _has_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())
