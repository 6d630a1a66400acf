import base64
import logging
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from ..models.schemas import EncodedImage, MediaRef
from .errors import SizeExceeded, UnsupportedImage
from .media_store import MediaStore

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 4 * 1024 * 1024

# Pillow format name -> MIME type accepted by the upload field
ACCEPTED_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}


def _sniff_mime_type(data: bytes) -> str:
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise UnsupportedImage() from e
    mime_type = ACCEPTED_FORMATS.get(fmt or "")
    if mime_type is None:
        raise UnsupportedImage()
    return mime_type


def process_file(
    data: bytes, mime_type: Optional[str] = None, max_bytes: int = MAX_IMAGE_BYTES
) -> EncodedImage:
    """Validate an uploaded image and encode it for the generation request.

    The size ceiling is checked before the bytes are decoded. The MIME type
    reported by the upload wins when it is one we accept; otherwise the type
    detected from the content is used.
    """
    if len(data) > max_bytes:
        raise SizeExceeded()
    detected = _sniff_mime_type(data)
    if mime_type not in ACCEPTED_FORMATS.values():
        mime_type = detected
    encoded = base64.b64encode(data).decode("utf-8")
    logger.info("image accepted (%s, %d bytes)", mime_type, len(data))
    return EncodedImage(image_bytes=encoded, mime_type=mime_type)


def create_preview(store: MediaStore, data: bytes, mime_type: str) -> MediaRef:
    return store.create(data, mime_type)


def release_preview(store: MediaStore, ref: Optional[MediaRef]) -> None:
    store.release(ref)
