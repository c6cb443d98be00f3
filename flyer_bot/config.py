from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_VISION_MODEL = "gpt-4o-mini"
DEFAULT_CONCURRENCY = 4
DEFAULT_PORT = 10000


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %s", name, raw, default)
        return default
    if value < 1:
        logger.warning("%s=%r must be >= 1, using %s", name, raw, default)
        return default
    return value


def _str_setting(env: Mapping[str, str], name: str, default: str = "") -> str:
    return (env.get(name) or default).strip()


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration, read once by the composition root.

    Nothing else in the package reads the environment directly.
    """

    openai_api_key: str = ""
    vision_model: str = DEFAULT_VISION_MODEL

    supabase_url: str = ""
    supabase_key: str = ""
    supabase_bucket: str = "encartes"
    artifact_prefix: str = "encartes-publico"

    whatsapp_api_base: str = "http://localhost:3000"
    whatsapp_api_key: str = ""
    whatsapp_session: str = "default"

    log_group_id: str = ""
    log_dir: str = "logs"
    log_level: str = "INFO"

    contacts_file: str = "contatos.txt"
    prompt_file: str = ""

    ingest_concurrency: int = DEFAULT_CONCURRENCY
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            openai_api_key=_str_setting(env, "OPENAI_API_KEY"),
            vision_model=_str_setting(env, "OPENAI_VISION_MODEL", DEFAULT_VISION_MODEL),
            supabase_url=_str_setting(env, "SUPABASE_URL"),
            supabase_key=_str_setting(env, "SUPABASE_SERVICE_ROLE_KEY"),
            supabase_bucket=_str_setting(env, "SUPABASE_BUCKET", "encartes"),
            artifact_prefix=_str_setting(env, "ARTIFACT_PREFIX", "encartes-publico"),
            whatsapp_api_base=_str_setting(env, "WHATSAPP_API_BASE", "http://localhost:3000"),
            whatsapp_api_key=_str_setting(env, "WHATSAPP_API_KEY"),
            whatsapp_session=_str_setting(env, "WHATSAPP_SESSION", "default"),
            log_group_id=_str_setting(env, "LOG_GROUP_ID"),
            log_dir=_str_setting(env, "LOG_DIR", "logs"),
            log_level=_str_setting(env, "LOG_LEVEL", "INFO").upper(),
            contacts_file=_str_setting(env, "CONTACTS_FILE", "contatos.txt"),
            prompt_file=_str_setting(env, "PROMPT_FILE"),
            ingest_concurrency=_int_setting(env, "INGEST_CONCURRENCY", DEFAULT_CONCURRENCY),
            port=_int_setting(env, "PORT", DEFAULT_PORT),
        )

    def require(self, *names: str) -> None:
        """
        Raise RuntimeError naming the first empty setting.

        Mirrors how the bot refuses to build an OpenAI client without a key.
        """
        env_names = {
            "openai_api_key": "OPENAI_API_KEY",
            "supabase_url": "SUPABASE_URL",
            "supabase_key": "SUPABASE_SERVICE_ROLE_KEY",
        }
        for name in names:
            if not getattr(self, name):
                var = env_names.get(name, name.upper())
                logger.error("%s is not set; the flyer pipeline cannot start.", var)
                raise RuntimeError(f"{var} is not set")
