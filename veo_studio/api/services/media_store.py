import logging
import threading
import uuid
from typing import Dict, Optional, Tuple

from ..models.schemas import MediaRef

logger = logging.getLogger(__name__)


class MediaStore:
    """In-memory registry of locally resolvable media references.

    A reference stays resolvable until it is released. Releasing an unknown
    or already released reference is a no-op.
    """

    def __init__(self):
        self._items: Dict[str, Tuple[MediaRef, bytes]] = {}
        self._lock = threading.Lock()

    def create(self, data: bytes, mime_type: str) -> MediaRef:
        ref = MediaRef(id=uuid.uuid4().hex, mime_type=mime_type, size=len(data))
        with self._lock:
            self._items[ref.id] = (ref, data)
        logger.debug("media %s created (%s, %d bytes)", ref.id, mime_type, ref.size)
        return ref

    def resolve(self, media_id: str) -> Optional[Tuple[MediaRef, bytes]]:
        with self._lock:
            return self._items.get(media_id)

    def release(self, ref: Optional[MediaRef]) -> bool:
        if ref is None:
            return False
        with self._lock:
            removed = self._items.pop(ref.id, None)
        if removed is not None:
            logger.debug("media %s released", ref.id)
        return removed is not None

    def live_count(self) -> int:
        with self._lock:
            return len(self._items)
