"""
Server entrypoint for the SceneHunter inference proxy.

Architectural role:
- Parses bind/log overrides from the command line.
- Configures process-wide logging.
- Serves `scenehunter.api.http_api:app` with uvicorn.

Configuration precedence:
- CLI flags override environment (`HOST`, `PORT`, `LOG_LEVEL`), which override
  `ServerConfig` defaults.
"""

import argparse
import logging

import uvicorn

from scenehunter.llm.provider_config import ServerConfig


LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SceneHunter backend: image analysis proxy for the Gemini API",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--host", type=str, default=defaults.host, help="Server bind address")
    parser.add_argument("--port", type=int, default=defaults.port, help="Server bind port")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=defaults.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root log level",
    )
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    return parser


def main(argv=None):
    """Parse CLI arguments, configure logging, and start the server."""
    defaults = ServerConfig.from_env()
    args = build_parser(defaults).parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
    logging.getLogger(__name__).info(
        "SceneHunter Backend API starting on http://%s:%d (env=%s)",
        args.host,
        args.port,
        defaults.environment,
    )

    uvicorn.run(
        "scenehunter.api.http_api:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
