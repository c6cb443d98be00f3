from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional

logger = logging.getLogger(__name__)

ENCARTE_COMMAND = "!encarteNovo"
PING_COMMAND = "!ping"
CHATID_COMMAND = "!chatid"

# `message`: received from others. `message_create` / `message.any`: every
# message in the session, including our own.
MESSAGE_EVENTS = {"message", "message_create", "message.any"}

SEEN_CAPACITY = 1024


@dataclass
class InboundMessage:
    """
    A gateway webhook event, reduced to what the bot looks at.
    """

    event: str
    id: str
    sender: str
    to: str
    body: str
    has_media: bool
    media_type: str
    media_url: Optional[str] = None
    mime_type: Optional[str] = None
    from_me: bool = False

    @property
    def chat_id(self) -> str:
        """Chat the message belongs to (our own messages carry it in `to`)."""
        return self.to if self.from_me and self.to else self.sender

    @property
    def command(self) -> str:
        return self.body.strip()

    @classmethod
    def from_event(cls, update: Dict[str, Any]) -> Optional["InboundMessage"]:
        """
        Build from a webhook body; None if it is not a message event.
        """
        event = str(update.get("event") or "")
        payload = update.get("payload")
        if event not in MESSAGE_EVENTS or not isinstance(payload, dict):
            return None

        media = payload.get("media") or {}
        mime_type = media.get("mimetype") if isinstance(media, dict) else None
        media_type = payload.get("type") or ""
        if not media_type and mime_type:
            media_type = str(mime_type).split("/")[0]

        return cls(
            event=event,
            id=str(payload.get("id") or ""),
            sender=str(payload.get("from") or ""),
            to=str(payload.get("to") or ""),
            body=str(payload.get("body") or ""),
            has_media=bool(payload.get("hasMedia")),
            media_type=str(media_type),
            media_url=media.get("url") if isinstance(media, dict) else None,
            mime_type=mime_type,
            from_me=bool(payload.get("fromMe")),
        )


def load_contacts(path: str) -> FrozenSet[str]:
    """
    Read the allow-list: one WhatsApp id per line, blank lines ignored.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            contacts = frozenset(line.strip() for line in f if line.strip())
    except FileNotFoundError:
        logger.warning("Contacts file %s not found; only %s will be ingested.", path, ENCARTE_COMMAND)
        return frozenset()

    logger.info("Loaded %d allow-listed contact(s) from %s", len(contacts), path)
    return contacts


class SeenMessages:
    """
    Ids of messages the bot already acted on, oldest dropped first.

    The gateway may deliver one message under several events (`message`,
    `message_create`, `message.any`), depending on which ones the webhook
    subscribes to. Webhook requests run concurrently, hence the lock.
    """

    def __init__(self, capacity: int = SEEN_CAPACITY) -> None:
        self.capacity = capacity
        self._ids: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: str) -> bool:
        """
        Record an id. False if it was already there.

        Messages without an id cannot be matched and always count as new.
        """
        if not message_id:
            return True
        with self._lock:
            if message_id in self._ids:
                self._ids.move_to_end(message_id)
                return False
            self._ids[message_id] = None
            while len(self._ids) > self.capacity:
                self._ids.popitem(last=False)
        return True


def match_intake(message: InboundMessage, allow_list: FrozenSet[str]) -> Optional[str]:
    """
    Decide whether a message is a flyer submission.

    Returns:
        "command"    - `!encarteNovo` with media attached, from anyone
        "allow_list" - an image from an allow-listed contact, captioned or not
        None         - not a flyer; the caller ignores it

    The answer does not depend on which event carried the message; the
    caller drops repeated deliveries with SeenMessages.
    """
    if not message.has_media:
        return None

    if message.command == ENCARTE_COMMAND:
        return "command"

    if message.media_type == "image" and message.sender in allow_list:
        return "allow_list"

    return None
