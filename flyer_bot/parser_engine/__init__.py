"""
Flyer parser engine.

Turns a flyer photo into a validated ExtractedPayload:
- prompt + image → vision model (inference.py)
- model text → bare JSON text (sanitizer.py)
- JSON text → schema-checked payload (validator.py, contract.py)

Nothing in this package should talk directly to Flask, WhatsApp, or Supabase.
"""

from .contract import ExtractedPayload, LineItem

__all__ = [
    "ExtractedPayload",
    "LineItem",
]
