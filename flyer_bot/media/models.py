from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from flyer_bot.errors import IngestError
from flyer_bot.utils.time import utcnow


@dataclass
class FlyerSubmission:
    """
    One flyer image received from a chat. Never persisted as-is: it becomes
    a stored artifact plus a row in `flyers`.

    Fields:
        source_contact_id: WhatsApp id of the sender ("5511999999999@c.us").
        image_bytes: Raw image content.
        mime_type: Content type reported by the gateway.
        received_at: When the bot accepted the message (UTC).
        trigger: "command" or "allow_list", for logs.
    """

    source_contact_id: str
    image_bytes: bytes
    mime_type: str
    received_at: datetime = field(default_factory=utcnow)
    trigger: str = "command"


class Stage(str, Enum):
    RECEIVED = "received"
    INFERRING = "inferring"
    SANITIZED = "sanitized"
    ARTIFACT_STORED = "artifact_stored"
    PARSED = "parsed"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass
class PipelineRun:
    """
    Outcome of one submission.

    failed_stage is the stage the run was trying to reach when it failed.
    timings holds milliseconds per attempted stage.
    """

    sender: str
    stage: Stage = Stage.RECEIVED
    failed_stage: Optional[Stage] = None
    error: Optional[IngestError] = None
    raw_text: Optional[str] = None
    artifact_path: Optional[str] = None
    flyer_id: Optional[int] = None
    timings: Dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.stage == Stage.PERSISTED

    def advance(self, stage: Stage) -> None:
        self.stage = stage

    def fail(self, attempted: Stage, error: IngestError) -> None:
        self.failed_stage = attempted
        self.error = error
        self.stage = Stage.FAILED
