"""
Flyer artifact storage.

The original photo is kept in a Supabase Storage bucket so every `flyers`
row can point back at the image it was extracted from.
"""

from __future__ import annotations

import logging
import mimetypes
import re
import secrets
import time
from typing import Any, Optional

from flyer_bot.utils.time import artifact_stamp, elapsed_ms

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


def _extension(mime_type: Optional[str]) -> str:
    if not mime_type:
        return ".jpg"
    mime_type = mime_type.split(";")[0].strip().lower()
    return _EXTENSIONS.get(mime_type) or mimetypes.guess_extension(mime_type) or ".jpg"


def sender_digits(source_contact_id: str) -> str:
    """5511999999999@c.us -> 5511999999999"""
    return re.sub(r"[^0-9]", "", source_contact_id or "")


class ArtifactStore:
    """
    Upload flyer images to `<bucket>/<prefix>/encarte-<digits>-<stamp>-<hex><ext>`.

    The stamp only increases within one process; the random hex keeps names
    apart when several bot processes share a bucket.
    """

    def __init__(self, client: Any, bucket: str, prefix: str = "encartes-publico") -> None:
        self._client = client
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    def artifact_path(self, source_contact_id: str, mime_type: Optional[str]) -> str:
        name = (
            f"encarte-{sender_digits(source_contact_id)}-{artifact_stamp()}"
            f"-{secrets.token_hex(4)}{_extension(mime_type)}"
        )
        return f"{self.prefix}/{name}" if self.prefix else name

    def store(self, image_bytes: bytes, mime_type: str, source_contact_id: str) -> Optional[str]:
        """
        Save the raw media to storage.

        Returns:
            Optional[str]: Path of the stored object, or None if the upload
            failed. Failures are logged here and never raised.
        """
        path = self.artifact_path(source_contact_id, mime_type)
        logger.info("Uploading flyer %s to bucket %s.", path, self.bucket)

        started = time.perf_counter()
        try:
            response = self._client.storage.from_(self.bucket).upload(
                path,
                image_bytes,
                file_options={"content-type": mime_type, "upsert": "true"},
            )
        except Exception as e:  # noqa: BLE001
            logger.error(
                "Flyer upload failed | sender=%s bucket=%s path=%s error=%s",
                source_contact_id,
                self.bucket,
                path,
                e,
            )
            return None

        logger.debug("⏱️ Flyer upload time: %dms", elapsed_ms(started))

        stored = getattr(response, "path", None) or path
        logger.info("Upload succeeded! File path: %s", stored)
        return stored
