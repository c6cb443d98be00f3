from __future__ import annotations

import atexit
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from logging.handlers import QueueListener
from typing import Any, FrozenSet, Optional

from dotenv import load_dotenv
from flask import Flask

from flyer_bot.api.webhook import api
from flyer_bot.catalog.persister import CatalogPersister
from flyer_bot.config import Settings
from flyer_bot.logging_setup import configure_logging
from flyer_bot.media.intake import SeenMessages, load_contacts
from flyer_bot.media.pipeline import FlyerPipeline
from flyer_bot.media.storage import ArtifactStore
from flyer_bot.parser_engine.inference import InferenceClient
from flyer_bot.parser_engine.prompt import load_prompt
from flyer_bot.services.supabase import build_client
from flyer_bot.services.whatsapp import WhatsAppClient

logger = logging.getLogger(__name__)


@dataclass
class BotServices:
    """
    Every long-lived object the bot uses, built once in build_services().
    """

    settings: Settings
    transport: Any
    pipeline: FlyerPipeline
    allow_list: FrozenSet[str]
    executor: Executor
    log_listener: Optional[QueueListener] = None
    seen: SeenMessages = field(default_factory=SeenMessages)

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)
        if self.log_listener is not None:
            self.log_listener.stop()
            self.log_listener = None


def build_services(
    settings: Settings,
    transport: Any = None,
    supabase_client: Any = None,
    openai_client: Any = None,
    executor: Optional[Executor] = None,
) -> BotServices:
    """
    Composition root: wire transport, model, storage and database clients
    into one FlyerPipeline. Any client can be passed in to replace the real one.
    """
    if transport is None:
        transport = WhatsAppClient(
            settings.whatsapp_api_base,
            api_key=settings.whatsapp_api_key,
            session=settings.whatsapp_session,
        )

    if supabase_client is None:
        settings.require("supabase_url", "supabase_key")
        supabase_client = build_client(settings.supabase_url, settings.supabase_key)

    prompt = load_prompt(settings.prompt_file)
    if openai_client is None:
        inference = InferenceClient.from_settings(settings, prompt)
    else:
        inference = InferenceClient(openai_client, prompt, settings.vision_model)

    pipeline = FlyerPipeline(
        inference=inference,
        store=ArtifactStore(supabase_client, settings.supabase_bucket, settings.artifact_prefix),
        persister=CatalogPersister(supabase_client),
        concurrency=settings.ingest_concurrency,
    )

    if executor is None:
        executor = ThreadPoolExecutor(
            max_workers=settings.ingest_concurrency,
            thread_name_prefix="flyer-ingest",
        )

    return BotServices(
        settings=settings,
        transport=transport,
        pipeline=pipeline,
        allow_list=load_contacts(settings.contacts_file),
        executor=executor,
    )


def create_app(settings: Optional[Settings] = None, services: Optional[BotServices] = None) -> Flask:
    """
    Build the Flask app.

    With no arguments, reads `.env` + environment, sets up logging sinks and
    builds real clients. Tests pass ready-made services instead.
    """
    app = Flask(__name__)

    if services is None:
        if settings is None:
            load_dotenv()
            settings = Settings.from_env()

        transport = WhatsAppClient(
            settings.whatsapp_api_base,
            api_key=settings.whatsapp_api_key,
            session=settings.whatsapp_session,
        )
        listener = configure_logging(settings, transport=transport)
        services = build_services(settings, transport=transport)
        services.log_listener = listener
        atexit.register(services.shutdown)
        logger.info("Client connected and ready!")

    app.extensions["flyer_bot"] = services
    app.register_blueprint(api)
    return app
