"""LLM access package.

Architectural role:
    Provides provider configuration and the transport adapter used by the core
    proxy to invoke the Gemini multimodal generation endpoint.

Module split:
    - `provider_config`: environment-driven endpoint, credential and retry settings.
    - `client`: single-attempt HTTP transport and response classification.
"""
