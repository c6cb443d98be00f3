from __future__ import annotations

from typing import List, Optional


class IngestError(Exception):
    """
    Base class for every failure inside the flyer ingestion pipeline.

    Each error carries the stage it happened in and the sender it belongs to
    so one log line is enough to diagnose it.
    """

    stage = "ingest"

    def __init__(self, message: str, sender: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.sender = sender

    def __str__(self) -> str:
        who = self.sender or "unknown"
        return f"[{self.stage}] {who}: {self.message}"


# Fatal to the submission
class InferenceError(IngestError):
    stage = "inference"


class ArtifactUploadError(IngestError):
    stage = "artifact"


class PayloadParseError(IngestError):
    stage = "parse"

    def __init__(
        self,
        message: str,
        sender: Optional[str] = None,
        reasons: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message, sender)
        self.reasons = list(reasons or [])

    def __str__(self) -> str:
        base = super().__str__()
        if not self.reasons:
            return base
        return f"{base} ({'; '.join(self.reasons)})"


class FlyerInsertError(IngestError):
    stage = "persist"


# Fatal to a single line item only
class CatalogLookupError(IngestError):
    stage = "catalog_lookup"


class CatalogInsertError(IngestError):
    stage = "catalog_insert"


class PromotionInsertError(IngestError):
    stage = "promotion_insert"
