"""FastAPI surface for the decision runtime.

This package is the process frontline:
- reads deployment settings from the environment
- wires the runtime services into one container
- routes pipeline events to handlers and serves the synchronous API

It must NOT be imported by `decision_runtime`.
"""
