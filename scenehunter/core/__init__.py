"""Core proxy package.

Architectural role:
    Holds the single implementation of the request-proxy behavior shared by
    every HTTP entry point.

Composition:
    - `engine`: `InferenceProxy` validation, retry/backoff and result mapping.
    - `analysis_types`: request/attempt/result types and the error taxonomy.

Determinism and side effects:
    Package import itself is deterministic and side-effect free.
"""
