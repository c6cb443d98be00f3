from __future__ import annotations

import logging
import os
import queue
import sys
from datetime import datetime
from logging.handlers import QueueHandler, QueueListener
from typing import Dict, Optional

from flyer_bot.utils.time import UTC, today

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"

# Prefix shown in the audit chat, per level
LEVEL_PREFIX = {
    "INFO": "ℹ",
    "WARN": "⚠️",
    "ERROR": "❌",
    "DEBUG": "🛠️",
}

_SINK_ATTR = "_flyer_bot_sink"


class IsoFormatter(logging.Formatter):
    """Formatter that stamps records with a UTC ISO-8601 timestamp."""

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        stamp = datetime.fromtimestamp(record.created, UTC)
        return stamp.isoformat(timespec="milliseconds")


class AuditChannelHandler(logging.Handler):
    """
    Forward log lines to a WhatsApp chat (usually an admin group).

    The transport only needs a send_message(chat_id, text) method. Delivery
    is best effort: a failed send is dropped.
    """

    def __init__(self, transport, chat_id: str, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.transport = transport
        self.chat_id = chat_id

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
            prefix = LEVEL_PREFIX.get(record.levelname, "📄")
            self.transport.send_message(self.chat_id, f"{prefix} {line}")
        except Exception:  # noqa: BLE001
            self.handleError(record)


def daily_log_path(log_dir: str) -> str:
    return os.path.join(log_dir, f"logs-{today()}.log")


def build_sinks(settings, transport=None) -> Dict[str, logging.Handler]:
    """
    Default sinks: console, daily file and (when configured) the audit chat.
    """
    sinks: Dict[str, logging.Handler] = {
        "console": logging.StreamHandler(sys.stdout),
    }

    if settings.log_dir:
        os.makedirs(settings.log_dir, exist_ok=True)
        sinks["file"] = logging.FileHandler(daily_log_path(settings.log_dir), encoding="utf-8")

    if transport is not None and settings.log_group_id:
        audit = AuditChannelHandler(transport, settings.log_group_id)
        # Only our own records: HTTP library records emitted while sending
        # would otherwise be forwarded again.
        audit.addFilter(logging.Filter("flyer_bot"))
        sinks["audit"] = audit

    return sinks


def configure_logging(
    settings,
    transport=None,
    sinks: Optional[Dict[str, logging.Handler]] = None,
) -> Optional[QueueListener]:
    """
    Attach the named sinks to the root logger.

    The audit sink runs behind a QueueHandler so that a slow chat send never
    holds up the pipeline thread that logged. Returns the started
    QueueListener (stop it on shutdown) or None when there is no audit sink.

    Calling this again replaces the sinks installed by the previous call.
    """
    logging.addLevelName(logging.WARNING, "WARN")

    if sinks is None:
        sinks = build_sinks(settings, transport)

    root = logging.getLogger()
    level = logging.getLevelName(settings.log_level)
    root.setLevel(level if isinstance(level, int) else logging.INFO)

    for handler in list(root.handlers):
        if getattr(handler, _SINK_ATTR, None):
            root.removeHandler(handler)
            handler.close()

    formatter = IsoFormatter(LOG_FORMAT)
    listener: Optional[QueueListener] = None

    for name, handler in sinks.items():
        handler.setFormatter(formatter)

        if name == "audit":
            q: "queue.Queue[logging.LogRecord]" = queue.Queue(-1)
            front = QueueHandler(q)
            listener = QueueListener(q, handler, respect_handler_level=True)
            listener.start()
            handler = front

        setattr(handler, _SINK_ATTR, name)
        root.addHandler(handler)

    return listener
