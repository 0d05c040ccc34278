"""
Command-line client for a running SceneHunter proxy.

Architectural role:
- Terminal equivalent of the image-analyzer page: reads a local image, sends
  `{base64, prompt}` to the proxy, and prints the generated text.
- Talks to the proxy over HTTP only; it never calls Gemini directly.

Request lifecycle:
1. Resolve the prompt from `--prompt` or a named `--preset`.
2. Read the image and encode it as a data URI (MIME type guessed from the name).
3. POST to `<server>/api/generate-with-gemini`.
4. Print `candidates[0].content.parts[0].text`.

Error handling strategy:
- Non-2xx responses print the proxy's `error` field and exit 1.
- A 200 without text reports `promptFeedback.blockReason` when present.
- Connection failures print a short message and exit 1.
"""

import argparse
import logging
import mimetypes
import os
import sys

import requests

from scenehunter.api.multimodal.data_uri import encode_data_uri
from scenehunter.llm.client import extract_text
from scenehunter.prompting.presets import get_preset, list_presets


logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = os.getenv("SCENEHUNTER_SERVER_URL", "http://localhost:3001")
ANALYZE_PATH = "/api/generate-with-gemini"


class AnalysisFailed(Exception):
    """Proxy returned an error or a response without usable text."""


def read_image_as_data_uri(path: str) -> str:
    """Read an image file and encode it as a data URI.

    Raises:
        ValueError: If the MIME type cannot be guessed or is not an image type.
    """
    mime_type, _ = mimetypes.guess_type(path)
    if not mime_type or not mime_type.startswith("image/"):
        raise ValueError(f"Not a recognised image file: {path}")
    with open(path, "rb") as f:
        return encode_data_uri(f.read(), mime_type)


def analyze_image(data_uri: str, prompt: str, server_url: str = DEFAULT_SERVER_URL, timeout: float = 180.0) -> str:
    """Send one analysis request to the proxy and return the generated text.

    Raises:
        AnalysisFailed: Proxy error status, or a body without candidate text.
        requests.exceptions.RequestException: Transport failures.
    """
    url = server_url.rstrip("/") + ANALYZE_PATH
    response = requests.post(
        url,
        json={"base64": data_uri, "prompt": prompt},
        timeout=timeout,
    )

    try:
        body = response.json()
    except ValueError:
        body = None

    if not response.ok:
        message = body.get("error") if isinstance(body, dict) else None
        raise AnalysisFailed(message or f"Backend request failed ({response.status_code})")

    text = extract_text(body)
    if text is None:
        feedback = body.get("promptFeedback") if isinstance(body, dict) else None
        reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        raise AnalysisFailed(reason or "Invalid API response.")

    return text


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Analyze an image through a SceneHunter proxy")
    parser.add_argument("image", help="Path to a local image file")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--preset", default="description", choices=list_presets(), help="Named analysis")
    group.add_argument("--prompt", default=None, help="Custom prompt (overrides --preset)")
    parser.add_argument("--server", default=DEFAULT_SERVER_URL, help="Proxy base URL")
    parser.add_argument("--timeout", type=float, default=180.0, help="Request timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    prompt = args.prompt or get_preset(args.preset).prompt

    try:
        data_uri = read_image_as_data_uri(args.image)
    except (OSError, ValueError) as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1

    logger.debug("Sending %s (%d chars) to %s", args.image, len(data_uri), args.server)

    try:
        text = analyze_image(data_uri, prompt, server_url=args.server, timeout=args.timeout)
    except AnalysisFailed as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1
    except requests.exceptions.RequestException as err:
        logger.debug("Transport failure", exc_info=True)
        print(f"Error: could not reach {args.server} ({type(err).__name__})", file=sys.stderr)
        return 1

    print(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
