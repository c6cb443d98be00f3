from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any, Dict, Optional

import requests
from flask import Blueprint, current_app, jsonify, request

from flyer_bot.media.intake import (
    CHATID_COMMAND,
    PING_COMMAND,
    InboundMessage,
    match_intake,
)
from flyer_bot.media.models import FlyerSubmission, PipelineRun

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__)


def _services():
    return current_app.extensions["flyer_bot"]


@api.route("/", methods=["GET"])
def healthcheck() -> str:
    return "Flyer bot running"


def ingest_message(services, message: InboundMessage, trigger: str) -> Optional[PipelineRun]:
    """
    Download the media of an accepted message and run the flyer pipeline.

    Runs on a worker thread. Returns None if the media could not be
    fetched; otherwise the finished PipelineRun.
    """
    if not message.media_url:
        logger.error("Error with %s: message %s has no media url", message.sender, message.id)
        return None

    try:
        image_bytes, mime_type = services.transport.download_media(message.media_url, message.mime_type)
    except requests.RequestException as e:
        logger.error("Error with %s: media download failed: %s", message.sender, e)
        return None

    logger.debug("Media downloaded successfully from %s", message.sender)

    submission = FlyerSubmission(
        source_contact_id=message.sender,
        image_bytes=image_bytes,
        mime_type=mime_type,
        trigger=trigger,
    )
    return services.pipeline.run(submission)


def _log_worker_error(message: InboundMessage, future: Future) -> None:
    if future.cancelled():
        logger.warning("Ingestion of %s from %s was cancelled", message.id, message.sender)
        return
    error = future.exception()
    if error is not None:
        logger.error(
            "Error with %s: ingestion of %s crashed: %s",
            message.sender,
            message.id,
            error,
            exc_info=error,
        )


@api.route("/webhook", methods=["POST"])
def webhook() -> Any:
    """
    WhatsApp gateway webhook.

    Handles:
    - `!ping` / `!chatid` diagnostics
    - flyer submissions (`!encarteNovo` + media, or images from allow-listed
      contacts), which are queued on the pipeline executor
    Everything else is ignored. A message delivered under more than one
    event is handled once.
    """
    update: Dict[str, Any] = request.get_json(silent=True)
    if not isinstance(update, dict):
        return jsonify({"ok": False}), 400

    message = InboundMessage.from_event(update)
    if message is None:
        return jsonify({"ok": True})

    services = _services()
    diagnostic = message.command in (PING_COMMAND, CHATID_COMMAND)
    trigger = None if diagnostic else match_intake(message, services.allow_list)
    if not diagnostic and trigger is None:
        return jsonify({"ok": True})

    if not services.seen.add(message.id):
        logger.debug("Skipping %s: %s already handled", message.event, message.id)
        return jsonify({"ok": True})

    # 1) Diagnostics
    if message.command == PING_COMMAND:
        logger.info("Ping received from: %s", message.sender)
        services.transport.send_message(message.chat_id, "Bot: pong!", reply_to=message.id)
        return jsonify({"ok": True})

    if message.command == CHATID_COMMAND:
        logger.info("ChatId of: %s", message.chat_id)
        services.transport.send_message(message.chat_id, f"Bot: {message.chat_id}", reply_to=message.id)
        return jsonify({"ok": True})

    # 2) Flyers
    logger.info("Image received from: %s (%s)", message.sender, trigger)
    future = services.executor.submit(ingest_message, services, message, trigger)
    future.add_done_callback(lambda f: _log_worker_error(message, f))
    return jsonify({"ok": True})
