"""
Flyer ingestion pipeline.

    received → inferring → sanitized → artifact_stored → parsed → persisted

Any stage can end the run in `failed`. Nothing is retried, and nothing a
single submission does can raise past FlyerPipeline.run().
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flyer_bot.catalog.persister import CatalogPersister
from flyer_bot.errors import ArtifactUploadError, IngestError, InferenceError, PayloadParseError
from flyer_bot.media.models import FlyerSubmission, PipelineRun, Stage
from flyer_bot.media.storage import ArtifactStore
from flyer_bot.parser_engine.contract import ExtractedPayload
from flyer_bot.parser_engine.inference import InferenceClient
from flyer_bot.parser_engine.sanitizer import sanitize
from flyer_bot.parser_engine.validator import parse_payload
from flyer_bot.utils.time import elapsed_ms

logger = logging.getLogger(__name__)

# Stage a run was trying to reach, given the last stage it completed.
_ATTEMPTING = {
    Stage.RECEIVED: Stage.INFERRING,
    Stage.INFERRING: Stage.INFERRING,
    Stage.SANITIZED: Stage.ARTIFACT_STORED,
    Stage.ARTIFACT_STORED: Stage.PARSED,
    Stage.PARSED: Stage.PERSISTED,
}


class FlyerPipeline:
    """
    Runs one FlyerSubmission end-to-end.

    Collaborators are passed in by the composition root. `concurrency`
    caps how many runs may be waiting on the vision model at once; runs
    over the cap block until a slot frees up.
    """

    def __init__(
        self,
        inference: InferenceClient,
        store: ArtifactStore,
        persister: CatalogPersister,
        concurrency: int = 4,
        parse: Callable[..., ExtractedPayload] = parse_payload,
    ) -> None:
        self.inference = inference
        self.store = store
        self.persister = persister
        self.concurrency = concurrency
        self._parse = parse
        self._gate = threading.BoundedSemaphore(concurrency)

    def _fail(self, run: PipelineRun, attempted: Stage, error: IngestError) -> PipelineRun:
        logger.error("Flyer from %s failed at %s: %s", run.sender, attempted.value, error)
        run.fail(attempted, error)
        return run

    def _run(self, submission: FlyerSubmission, run: PipelineRun) -> PipelineRun:
        sender = submission.source_contact_id
        logger.info(
            "Processing flyer from %s (%s, received %s)",
            sender,
            submission.trigger,
            submission.received_at.isoformat(),
        )

        # 1) Vision model
        run.advance(Stage.INFERRING)
        logger.debug("Sending flyer from %s to the vision model", sender)
        started = time.perf_counter()
        try:
            with self._gate:
                raw = self.inference.infer(submission.image_bytes, submission.mime_type, sender=sender)
        except InferenceError as e:
            run.timings["inference"] = elapsed_ms(started)
            return self._fail(run, Stage.INFERRING, e)
        run.timings["inference"] = elapsed_ms(started)

        # 2) Strip markdown fences
        run.raw_text = sanitize(raw)
        run.advance(Stage.SANITIZED)
        logger.info("Model response: %s", run.raw_text)

        # 3) Keep the original image, whatever the model said
        started = time.perf_counter()
        path = self.store.store(submission.image_bytes, submission.mime_type, sender)
        run.timings["artifact"] = elapsed_ms(started)
        if not path:
            return self._fail(
                run,
                Stage.ARTIFACT_STORED,
                ArtifactUploadError("upload returned no path; flyer not recorded", sender),
            )
        run.artifact_path = path
        run.advance(Stage.ARTIFACT_STORED)

        # 4) JSON + schema
        started = time.perf_counter()
        try:
            payload = self._parse(run.raw_text, sender)
        except PayloadParseError as e:
            run.timings["parse"] = elapsed_ms(started)
            logger.error("Unparseable model output from %s: %s", sender, run.raw_text)
            return self._fail(run, Stage.PARSED, e)
        run.timings["parse"] = elapsed_ms(started)
        run.advance(Stage.PARSED)

        # 5) Database
        report = self.persister.persist(payload, sender, path)
        run.timings["persist"] = report.duration_ms
        if report.error is not None:
            return self._fail(run, Stage.PERSISTED, report.error)

        run.flyer_id = report.flyer_id
        run.advance(Stage.PERSISTED)
        logger.info("All data saved successfully! (flyer %s from %s)", run.flyer_id, sender)
        return run

    def run(self, submission: FlyerSubmission) -> PipelineRun:
        """
        Process one submission. Always returns; never raises.
        """
        run = PipelineRun(sender=submission.source_contact_id)
        started = time.perf_counter()
        try:
            self._run(submission, run)
        except Exception as e:  # noqa: BLE001
            logger.exception("Unexpected error with %s", run.sender)
            self._fail(run, _ATTEMPTING.get(run.stage, run.stage), IngestError(str(e), run.sender))
        run.timings["total"] = elapsed_ms(started)
        return run
