"""Provider/runtime configuration for the inference proxy.

Architectural role:
    Centralizes Gemini endpoint selection, credential lookup, retry tuning, and
    HTTP server settings for `scenehunter.core.engine`, `scenehunter.llm.client`
    and `scenehunter.api`.

Model call flow integration:
    - `GeminiConfig.from_env()` is resolved once by the HTTP app factory and
      injected into `InferenceProxy`; the proxy never reads the environment.
    - `client.GeminiVisionClient` consumes `endpoint_url`, `api_key` and the
      per-attempt timeout.

Determinism:
    Deterministic for a fixed process environment and key files. `.env` values
    are loaded at import time; dataclass values are resolved when `from_env()`
    is called.

Failure behavior:
    Missing key material is represented as `None` and surfaced by the engine as
    a `ConfigurationError` before any network call.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-1.5-flash"
GEMINI_KEY_FILE = "config/gemini.key"
DEFAULT_RATE_LIMIT = "100/15 minutes"


def load_key(path):
    """Load API key from environment override or key file.

    Resolution order:
        1. Environment variable inferred from file stem (for example
           `config/gemini.key` -> `GEMINI_API_KEY`).
        2. Raw file contents at `path`.

    Args:
        path: Configured key file path or `None`.

    Returns:
        Key string or `None` when not available.

    Edge cases:
        - `None` path returns `None`.
        - Missing or blank file returns `None`.
    """
    if not path:
        return None
    key_name = os.path.splitext(os.path.basename(path))[0].upper() + "_API_KEY"
    env_value = os.getenv(key_name)
    if env_value and env_value.strip():
        return env_value.strip()
    if not os.path.exists(path):
        return None
    with open(path, "r") as f:
        return f.read().strip() or None


def _optional_float(raw: str | None) -> float | None:
    if raw is None or raw.strip().lower() in ("", "none", "0"):
        return None
    return float(raw)


def _optional_str(raw: str | None) -> str | None:
    if raw is None or raw.strip().lower() in ("", "none", "0"):
        return None
    return raw.strip()


@dataclass(frozen=True)
class GeminiConfig:
    """Runtime configuration for `InferenceProxy` and `GeminiVisionClient`.

    Relevant environment variables:
        - `GEMINI_API_KEY` (or `config/gemini.key`)
        - `GEMINI_MODEL`
        - `GEMINI_BASE_URL`
        - `GEMINI_MAX_ATTEMPTS`
        - `GEMINI_BACKOFF_BASE_SECONDS`
        - `GEMINI_TIMEOUT_SECONDS`
        - `GEMINI_REQUEST_DEADLINE_SECONDS` (`none` disables the deadline)

    Backoff:
        The wait after failed attempt `n` is `backoff_base_seconds ** n`, so the
        default base of 2 gives 2s then 4s between three attempts.
    """

    api_key: str | None = field(default=None, repr=False)
    model: str = DEFAULT_MODEL
    base_url: str = GEMINI_BASE_URL
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    attempt_timeout_seconds: float = 60.0
    request_deadline_seconds: float | None = 120.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @property
    def endpoint_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.model}:generateContent"

    def backoff_seconds(self, attempt: int) -> float:
        return self.backoff_base_seconds ** attempt

    @classmethod
    def from_env(cls) -> GeminiConfig:
        return cls(
            api_key=load_key(GEMINI_KEY_FILE),
            model=os.getenv("GEMINI_MODEL", DEFAULT_MODEL).strip(),
            base_url=os.getenv("GEMINI_BASE_URL", GEMINI_BASE_URL).strip(),
            max_attempts=int(os.getenv("GEMINI_MAX_ATTEMPTS", "3")),
            backoff_base_seconds=float(os.getenv("GEMINI_BACKOFF_BASE_SECONDS", "2")),
            attempt_timeout_seconds=float(os.getenv("GEMINI_TIMEOUT_SECONDS", "60")),
            request_deadline_seconds=_optional_float(
                os.getenv("GEMINI_REQUEST_DEADLINE_SECONDS", "120")
            ),
        )


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server settings consumed by `scenehunter.api`.

    Relevant environment variables: `HOST`, `PORT`, `CORS_ORIGIN`
    (comma-separated), `APP_ENV`, `LOG_LEVEL`, `RATE_LIMIT`.

    `rate_limit` is a per-client limit string for the proxy routes in the
    `limits` notation (for example `100/15 minutes`); `None` disables it.
    """

    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)
    environment: str = "development"
    log_level: str = "INFO"
    rate_limit: str | None = DEFAULT_RATE_LIMIT

    @classmethod
    def from_env(cls) -> ServerConfig:
        origins = os.getenv("CORS_ORIGIN", "http://localhost:3000")
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3001")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            environment=os.getenv("APP_ENV", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            rate_limit=_optional_str(os.getenv("RATE_LIMIT", DEFAULT_RATE_LIMIT)),
        )
