"""SceneHunter API adapter package.

Architectural role:
- Defines the external interaction boundary for HTTP and CLI interfaces.
- Performs transport-level parsing and response shaping.
- Delegates validation, retries and error mapping to `scenehunter.core.engine`.

Scope:
- Request lifecycle control for adapter concerns only.
- No direct model invocation logic is implemented in this package root.
"""
