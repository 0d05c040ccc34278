"""SceneHunter backend: image + prompt analysis proxy for the Gemini API."""

__version__ = "1.0.0"
