"""Runtime configuration for the Veo Studio service.

Every field can be overridden by the environment variable named in its
alias; a ``.env`` file in the working directory is read first.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    """Model id, polling cadence, upload ceiling and local storage for generations."""

    veo_model_id: str = Field(default="veo-2.0-generate-001", alias="VEO_MODEL_ID")
    # Fixed-interval polling; there is no backoff.
    poll_interval_seconds: float = Field(default=10.0, alias="POLL_INTERVAL_SECONDS")
    max_in_flight: int = Field(default=1, alias="MAX_IN_FLIGHT")
    max_image_bytes: int = Field(default=4 * 1024 * 1024, alias="MAX_IMAGE_BYTES")
    # Holds local_storage.json with the saved API key.
    storage_dir: Path = Field(default=Path(".veo_studio"), alias="STORAGE_DIR")
    credential_key: str = Field(default="google-ai-api-key", alias="CREDENTIAL_KEY")
    download_timeout_seconds: float = Field(default=120.0, alias="DOWNLOAD_TIMEOUT_SECONDS")
    log_level: str = Field(default="info", alias="LOG_LEVEL")

    model_config = {
        "populate_by_name": True,
        "arbitrary_types_allowed": True,
    }


def _from_environment() -> Dict[str, str]:
    """Collect ``VEO_MODEL_ID``-style variables keyed by alias.

    Blank variables are skipped so that ``POLL_INTERVAL_SECONDS=`` in a
    ``.env`` file keeps the default instead of failing validation.
    """
    aliases = [field.alias for field in Settings.model_fields.values() if field.alias]
    return {alias: os.environ[alias] for alias in aliases if os.environ.get(alias, "").strip()}


@lru_cache()
def get_settings() -> Settings:
    """Settings shared by the generation session, credential store and app startup."""
    return Settings(**_from_environment())


__all__ = ["Settings", "get_settings"]
