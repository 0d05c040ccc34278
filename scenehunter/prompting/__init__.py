"""Prompting package.

Holds the fixed image-analysis prompt presets offered to clients. It does not
perform transport, retries, or model invocation.
"""
