"""Fixed image-analysis prompt presets.

This module is intentionally narrow: it only maps preset names to prompt text.
Image handling, transport, and retry behavior happen elsewhere.

Design constraints:
    - Deterministic lookup for identical names.
    - No hidden side effects (no I/O, no global state mutation).
"""

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class AnalysisPreset:
    """Named prompt offered to clients as a one-click analysis."""

    name: str
    title: str
    prompt: str
    description: str


# =========================================================
# PRESETS
# =========================================================
# Each prompt forbids preambles so the returned text can be shown verbatim.

PRESETS = {
    "description": AnalysisPreset(
        name="description",
        title="Describe Scene",
        prompt=(
            "Describe this image in detail for a movie scene. IMPORTANT: Do not "
            "include any introductory phrases or scene headings like "
            "'EXT. ROAD - NIGHT'. Just provide the raw description of the scene itself."
        ),
        description="Generate a detailed, cinematic scene description.",
    ),
    "alt_text": AnalysisPreset(
        name="alt_text",
        title="Create Alt Text",
        prompt=(
            "Write a concise and descriptive alt text for this image. IMPORTANT: "
            "Do not include any introductory phrases like 'Here's the alt text:'. "
            "Just provide the alt text directly."
        ),
        description="Create accessible alt text for screen readers.",
    ),
    "similar_query": AnalysisPreset(
        name="similar_query",
        title="Find Similar",
        prompt=(
            "Based on this image's content, create a concise search query to find "
            "similar stock photos. Return only the query text, without any extra "
            "formatting or quotation marks."
        ),
        description="Get a search query to find similar photos.",
    ),
}


def get_preset(name: str) -> AnalysisPreset:
    """Look up a preset by name.

    Raises:
        ValueError: If `name` is not a known preset.
    """
    preset = PRESETS.get(name.strip().lower())
    if preset is None:
        raise ValueError(
            f"Unknown preset {name!r}. Available: {', '.join(list_presets())}"
        )
    return preset


def list_presets() -> List[str]:
    return sorted(PRESETS)
