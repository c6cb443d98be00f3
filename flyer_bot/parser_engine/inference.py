from __future__ import annotations

import base64
import logging
import time
from typing import Any, Optional

from openai import OpenAI, OpenAIError

from flyer_bot.errors import InferenceError
from flyer_bot.utils.time import elapsed_ms

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 4096


class InferenceClient:
    """
    One vision-model call per flyer image.

    Model and decoding parameters are fixed when the client is built; the
    only runtime inputs are the image bytes and their mime type.
    """

    def __init__(
        self,
        client: Any,
        prompt: str,
        model: str,
        temperature: float = 0,
        max_tokens: int = MAX_OUTPUT_TOKENS,
    ) -> None:
        self._client = client
        self.prompt = prompt
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings, prompt: str) -> "InferenceClient":
        settings.require("openai_api_key")
        return cls(OpenAI(api_key=settings.openai_api_key), prompt, settings.vision_model)

    def _messages(self, image_bytes: bytes, mime_type: str) -> list:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": self.prompt},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                    },
                ],
            }
        ]

    def infer(self, image_bytes: bytes, mime_type: str, sender: Optional[str] = None) -> str:
        """
        Send prompt + image and return the raw model text.

        Raises:
            InferenceError: transport, auth or quota failure, or an empty answer.
        """
        started = time.perf_counter()
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=self._messages(image_bytes, mime_type),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            raise InferenceError(f"vision request failed: {e}", sender) from e
        finally:
            logger.debug("⏱️ AI execution time: %dms", elapsed_ms(started))

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise InferenceError(f"unexpected response shape: {e}", sender) from e

        if not content or not content.strip():
            raise InferenceError("model returned an empty answer", sender)

        return content
