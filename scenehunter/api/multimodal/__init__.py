"""Multimodal preprocessing package for API adapters.

Architectural role:
- Parses client-submitted image data URIs into typed inline images.
- Builds the multimodal generation request body.

Scope:
- Content preprocessing only; no HTTP endpoint definitions.
"""
