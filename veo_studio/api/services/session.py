"""Form and result state for one page session.

Replaces the page's scattered globals (prompt, image, loading flag, result)
with one object. The session owns at most one live preview reference and one
live result reference, and releases each before replacing it.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from ..core.settings import Settings, get_settings
from ..security.credential_store import get_credential_store
from ..models.schemas import (
    EncodedImage,
    GenerationForm,
    GenerationRequest,
    GenerationResult,
    MediaRef,
)
from . import intake
from .errors import CredentialMissing, GenerationBusy, GenerationError, PromptRequired
from .media_store import MediaStore
from .veo import CancelToken, ProgressCallback, VideoGenerationClient

logger = logging.getLogger(__name__)


class GenerationSession:
    def __init__(
        self,
        client: VideoGenerationClient,
        media: MediaStore,
        settings: Optional[Settings] = None,
    ):
        self._client = client
        self._media = media
        self._settings = settings or get_settings()
        self._in_flight = 0
        self.image: Optional[EncodedImage] = None
        self.preview: Optional[MediaRef] = None
        self.result: Optional[GenerationResult] = None
        self.progress_message = ""
        self.error: Optional[str] = None
        self.needs_credential = False

    @property
    def loading(self) -> bool:
        return self._in_flight > 0

    def attach_image(self, data: bytes, mime_type: Optional[str] = None) -> MediaRef:
        try:
            image = intake.process_file(data, mime_type, self._settings.max_image_bytes)
        except GenerationError as e:
            self.error = e.message
            raise
        self.error = None
        intake.release_preview(self._media, self.preview)
        self.image = image
        self.preview = intake.create_preview(self._media, data, image.mime_type)
        return self.preview

    def remove_image(self) -> None:
        intake.release_preview(self._media, self.preview)
        self.image = None
        self.preview = None

    def _build_request(self, form: GenerationForm) -> GenerationRequest:
        try:
            return GenerationRequest(
                prompt=form.prompt,
                negative_prompt=form.negative_prompt,
                aspect_ratio=form.aspect_ratio,
                resolution=form.resolution,
                image=self.image,
            )
        except ValidationError as e:
            raise PromptRequired() from e

    def reserve(self, form: GenerationForm) -> GenerationRequest:
        """Validate the form and take an in-flight slot.

        The slot is given back by the ``run`` call that consumes the request.
        """
        try:
            request = self._build_request(form)
        except PromptRequired as e:
            self.error = e.message
            raise
        if self._in_flight >= self._settings.max_in_flight:
            raise GenerationBusy()
        self._in_flight += 1
        return request

    async def submit(
        self,
        form: GenerationForm,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> GenerationResult:
        return await self.run(self.reserve(form), progress, cancel)

    async def run(
        self,
        request: GenerationRequest,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> GenerationResult:
        def on_progress(message: str) -> None:
            self.progress_message = message
            if progress is not None:
                progress(message)

        self.error = None
        self.needs_credential = False
        self._release_result()
        try:
            result = await self._client.generate(request, on_progress, cancel)
        except CredentialMissing as e:
            self.needs_credential = True
            self.error = e.message
            raise
        except GenerationError as e:
            self.error = e.message
            raise
        finally:
            self._in_flight -= 1

        if self.preview is not None:
            result = GenerationResult(
                media=result.media,
                metadata=result.metadata.model_copy(
                    update={"source_image_url": self.preview.url}
                ),
            )
        # Overlapping submits still leave a single live result.
        self._release_result()
        self.result = result
        logger.info("result %s ready", result.media.id)
        return result

    def _release_result(self) -> None:
        if self.result is not None:
            self._media.release(self.result.media)
            self.result = None

    def clear(self) -> None:
        self.remove_image()
        self._release_result()
        self.error = None
        self.needs_credential = False
        self.progress_message = ""

    def close(self) -> None:
        self.clear()



_media: Optional[MediaStore] = None
_session: Optional[GenerationSession] = None


def get_media_store() -> MediaStore:
    global _media
    if _media is None:
        _media = MediaStore()
    return _media


def get_session() -> GenerationSession:
    global _session
    if _session is None:
        media = get_media_store()
        client = VideoGenerationClient(get_credential_store(), media)
        _session = GenerationSession(client, media)
    return _session


def close_session() -> None:
    global _session
    if _session is not None:
        _session.close()
        _session = None
