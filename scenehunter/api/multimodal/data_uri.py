"""
Data-URI parsing and multimodal payload construction for API adapters.

Architectural role:
- Convert the client-submitted `base64` field into a typed `InlineImage`.
- Build the Gemini `generateContent` request body from prompt + image.
- Provide adapter-level preprocessing only (no endpoint registration, no I/O).

Processing lifecycle:
1. Check the `data:` scheme prefix.
2. Extract the MIME type between the first `:` and the first `;`.
3. Extract the base64 payload after the first `,`.
4. Pre-validate the approximate decoded size before decoding.
5. Strictly decode the payload to prove it is well-formed base64.

Input validation behavior:
- Every structural or decoding failure raises `InvalidRequest` (HTTP 400).
- The payload forwarded upstream is the original base64 text, not a re-encoding.

Determinism considerations:
- Pure functions; identical inputs always produce identical outputs.
"""

import base64
import binascii
import os

from scenehunter.core.analysis_types import InlineImage, InvalidRequest


# ============================================================
# CONFIG
# ============================================================

MAX_IMAGE_SIZE_MB = int(os.getenv("MAX_IMAGE_SIZE_MB", "10"))
MAX_IMAGE_SIZE_BYTES = MAX_IMAGE_SIZE_MB * 1024 * 1024

DATA_URI_PREFIX = "data:"


# ============================================================
# PARSING
# ============================================================

def parse_data_uri(value: str) -> InlineImage:
    """
    Split a `data:<mime-type>;base64,<payload>` string into its parts.

    Raises:
        InvalidRequest: If the value is not a well-formed base64 data URI, the
            MIME type is empty, the payload does not decode, or the decoded
            image exceeds `MAX_IMAGE_SIZE_BYTES`.
    """
    if not isinstance(value, str) or value[:len(DATA_URI_PREFIX)].lower() != DATA_URI_PREFIX:
        raise InvalidRequest("Image must be a base64 data URI")

    colon = value.find(":")
    semicolon = value.find(";")
    comma = value.find(",")

    if semicolon < colon or comma < semicolon:
        raise InvalidRequest("Malformed image data URI")

    mime_type = value[colon + 1:semicolon].strip()
    params = value[semicolon + 1:comma].split(";")
    payload = value[comma + 1:].strip()

    if "/" not in mime_type:
        raise InvalidRequest("Image data URI is missing a MIME type")

    if "base64" not in (p.strip().lower() for p in params):
        raise InvalidRequest("Image data URI must be base64 encoded")

    if not payload:
        raise InvalidRequest("Image data URI has an empty payload")

    if _approx_decoded_size(payload) > MAX_IMAGE_SIZE_BYTES:
        raise InvalidRequest("Image exceeds max size limit")

    try:
        decoded = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidRequest("Image payload is not valid base64")

    if not decoded:
        raise InvalidRequest("Image data URI has an empty payload")

    return InlineImage(mime_type=mime_type, data=payload)


def _approx_decoded_size(encoded: str) -> int:
    """Decoded byte count estimated from base64 length and padding."""
    padding = 0
    if encoded.endswith("=="):
        padding = 2
    elif encoded.endswith("="):
        padding = 1
    return (len(encoded) * 3) // 4 - padding


def encode_data_uri(raw: bytes, mime_type: str) -> str:
    """Encode raw bytes as a base64 data URI."""
    encoded = base64.b64encode(raw).decode("ascii")
    return f"{DATA_URI_PREFIX}{mime_type};base64,{encoded}"


# ============================================================
# PAYLOAD CONSTRUCTION
# ============================================================

def build_generation_payload(prompt: str, image: InlineImage) -> dict:
    """
    Build the multimodal `generateContent` body.

    Shape:
        {"contents": [{"parts": [{"text": prompt},
                                 {"inlineData": {"mimeType": ..., "data": ...}}]}]}
    """
    return {
        "contents": [
            {
                "parts": [
                    {"text": prompt},
                    {
                        "inlineData": {
                            "mimeType": image.mime_type,
                            "data": image.data,
                        }
                    },
                ]
            }
        ]
    }
