"""
HookStream — Webhook event ingestion and payload transformation.

A registry of webhook endpoints, each with a bounded event buffer and live
subscribers, plus a declarative transform engine that turns arbitrary JSON
payloads into dashboard-ready records.
"""

__version__ = "1.0.0"
__all__ = ["engine", "cli"]
