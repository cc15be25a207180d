"""BTRIX dialogue core: scripted flow, grounded answers and price guardrail."""

__version__ = "0.1.0"
