"""
HTTP API adapter for the SceneHunter inference proxy.

Architectural role:
- Expose the image-analysis proxy under every path the frontends call.
- Translate request/response shape only; validation, retries and the error
  taxonomy live in `scenehunter.core.engine.InferenceProxy`.
- Serve liveness/status endpoints and JSON error envelopes.
- Rate-limit the proxy routes per client address (slowapi) and gzip large
  responses.

Endpoint responsibilities:
- `POST /api/generate-with-gemini`, `POST /api/gemini`, `POST /`:
  identical proxy adapters taking `{ "base64": <data URI>, "prompt": <text> }`.
- `GET /health`: liveness payload with uptime and version.
- `GET /api/status`: static running message.

API request lifecycle (proxy routes):
1. Parse the JSON body; anything but a JSON object is a 400.
2. Hand `base64` and `prompt` to `InferenceProxy.analyze`.
3. Poll for client disconnect while the analysis runs and cancel it if the
   client goes away.
4. Respond with the raw upstream body (200) or `{"error": ...}` with the status
   chosen by the engine.

Error handling strategy:
- Unknown routes -> 404 `{"error": "Route not found", "path": ...}`.
- Rate limit exceeded -> 429 `{"error": "Too many requests, please try again later."}`.
- Unhandled exceptions -> 500 `{"error": "An unhandled server error occurred."}`.

Side effects:
- Loads environment variables at import time via `load_dotenv()`.
- Creates the outbound HTTP pool with the app and closes it on shutdown.
"""

from dotenv import load_dotenv

load_dotenv()

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware

from scenehunter import __version__
from scenehunter.core.analysis_types import AnalysisResult, InvalidRequest
from scenehunter.core.engine import InferenceProxy
from scenehunter.llm.provider_config import GeminiConfig, ServerConfig


logger = logging.getLogger(__name__)

PROXY_ROUTES = ("/api/generate-with-gemini", "/api/gemini", "/")

# Seconds between client-disconnect checks while an analysis is in flight.
DISCONNECT_POLL_SECONDS = 0.5

# Non-standard "client closed request"; never seen by the departed client.
CLIENT_CLOSED_STATUS = 499

# Responses smaller than this are sent uncompressed.
GZIP_MINIMUM_SIZE = 1000

RATE_LIMITED_MESSAGE = "Too many requests, please try again later."

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# ============================================================
# Schemas
# ============================================================

class AnalyzeRequestBody(BaseModel):
    """
    Documented payload shape of the proxy routes (OpenAPI only).

    Note:
    - The routes parse JSON directly from `Request` so malformed bodies map to
      the proxy 400 envelope instead of FastAPI validation 422s.
    """
    base64: str
    prompt: str


ANALYZE_OPENAPI_BODY = {
    "requestBody": {
        "required": True,
        "content": {"application/json": {"schema": AnalyzeRequestBody.model_json_schema()}},
    }
}


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str
    uptime_seconds: float


class StatusResponse(BaseModel):
    message: str


# ============================================================
# Request helpers
# ============================================================

async def read_analysis_fields(request: Request):
    """
    Return `(base64, prompt)` from the JSON body, or `None` if the body is not a
    JSON object. Non-string fields come back as empty strings so the engine
    rejects them as missing.
    """
    try:
        body = await request.json()
    except ValueError:
        return None

    if not isinstance(body, dict):
        return None

    image_data = body.get("base64")
    prompt = body.get("prompt")
    return (
        image_data if isinstance(image_data, str) else "",
        prompt if isinstance(prompt, str) else "",
    )


async def analyze_until_disconnect(request: Request, proxy: InferenceProxy, image_data: str, prompt: str):
    """
    Run `proxy.analyze` and cancel it if the client disconnects first.

    Returns:
        The `AnalysisResult`, or `None` when the client went away.
    """
    task = asyncio.ensure_future(proxy.analyze(image_data, prompt))
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected from %s; cancelling analysis.", request.url.path)
                return None
    finally:
        if not task.done():
            task.cancel()


def to_response(result: AnalysisResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.to_body())


# ============================================================
# Application factory
# ============================================================

def create_app(
    gemini_config: GeminiConfig | None = None,
    server_config: ServerConfig | None = None,
    proxy: InferenceProxy | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        gemini_config: Proxy configuration; read from the environment if omitted.
        server_config: CORS, environment and rate-limit settings; read from the
            environment if omitted.
        proxy: Pre-built proxy (tests inject one with a mocked transport). When
            omitted the app builds one and closes it on shutdown.
    """
    server_config = server_config or ServerConfig.from_env()
    owns_proxy = proxy is None
    if proxy is None:
        proxy = InferenceProxy(gemini_config or GeminiConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.started_at = time.monotonic()
        logger.info(
            "SceneHunter proxy ready (env=%s, model=%s).",
            server_config.environment,
            proxy.config.model,
        )
        yield
        if owns_proxy:
            await proxy.aclose()

    app = FastAPI(
        title="SceneHunter Backend API",
        description="Forwards image + prompt analysis requests to the Gemini API.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.proxy = proxy
    app.state.server_config = server_config
    app.state.started_at = time.monotonic()
    app.state.limiter = Limiter(key_func=get_remote_address)

    app.add_middleware(GZipMiddleware, minimum_size=GZIP_MINIMUM_SIZE)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(server_config.cors_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["Content-Type", "Authorization"],
        allow_credentials=True,
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    # --------------------------------------------------------
    # Error envelopes
    # --------------------------------------------------------

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content={"error": "Route not found", "path": request.url.path},
            )
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RateLimitExceeded)
    async def rate_limited(request: Request, exc: RateLimitExceeded):
        logger.warning(
            "Rate limit %s exceeded by %s on %s",
            exc.detail,
            get_remote_address(request),
            request.url.path,
        )
        return JSONResponse(status_code=429, content={"error": RATE_LIMITED_MESSAGE})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "An unhandled server error occurred."})

    # --------------------------------------------------------
    # Proxy routes
    # --------------------------------------------------------

    async def generate_with_gemini(request: Request):
        """
        Forward `{base64, prompt}` to the inference proxy.

        Response formatting:
        - 200 with the raw upstream JSON body on success.
        - `{"error": message}` with the taxonomy status otherwise.
        """
        fields = await read_analysis_fields(request)
        if fields is None:
            logger.warning("Rejected %s: body is not a JSON object.", request.url.path)
            return to_response(
                AnalysisResult.from_error(InvalidRequest("Request body must be a JSON object"))
            )

        result = await analyze_until_disconnect(request, request.app.state.proxy, *fields)
        if result is None:
            return JSONResponse(
                status_code=CLIENT_CLOSED_STATUS,
                content={"error": "Client closed request"},
            )
        return to_response(result)

    # one shared counter per client across every proxy path
    proxy_endpoint = generate_with_gemini
    if server_config.rate_limit:
        proxy_endpoint = app.state.limiter.limit(server_config.rate_limit)(generate_with_gemini)

    for path in PROXY_ROUTES:
        app.add_api_route(
            path,
            proxy_endpoint,
            methods=["POST"],
            openapi_extra=ANALYZE_OPENAPI_BODY,
        )

    # --------------------------------------------------------
    # Status endpoints
    # --------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    def health_check(request: Request, response: Response):
        """Liveness payload; never cached."""
        response.headers.update(NO_CACHE_HEADERS)
        uptime = time.monotonic() - request.app.state.started_at
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
            version=__version__,
            environment=server_config.environment,
            uptime_seconds=round(uptime, 2),
        )

    @app.get("/api/status", response_model=StatusResponse)
    def api_status():
        return StatusResponse(message="SceneHunter Backend API is running")

    return app


app = create_app()
