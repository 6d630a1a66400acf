import json
import logging
import os
from pathlib import Path
from typing import Optional

from ..core.settings import get_settings

logger = logging.getLogger(__name__)


class CredentialStore:
    """Single API key persisted under one fixed name in a local JSON file.

    The file plays the part of the browser's local storage: values are kept
    as plain text, there is no expiry and no schema versioning. Other keys
    found in the file are preserved on write.
    """

    FILENAME = "local_storage.json"

    def __init__(self, storage_dir: Path, key: str = "google-ai-api-key"):
        self.path = Path(storage_dir) / self.FILENAME
        self.key = key

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("local storage unreadable at %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _dump(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self) -> Optional[str]:
        value = self._load().get(self.key)
        if not isinstance(value, str) or not value:
            return None
        return value

    def set(self, value: str) -> None:
        if not value:
            self.clear()
            return
        data = self._load()
        data[self.key] = value
        self._dump(data)
        logger.info("credential %s stored", self.key)

    def clear(self) -> None:
        data = self._load()
        if self.key in data:
            del data[self.key]
            self._dump(data)
            logger.info("credential %s cleared", self.key)


def get_credential_store() -> CredentialStore:
    settings = get_settings()
    return CredentialStore(settings.storage_dir, settings.credential_key)
