"""Veo video generation client.

Submits a generation request through ``google-genai``, polls the returned
long-running operation at a fixed interval until it reaches a terminal state,
downloads the generated video and registers it in the local media store.

Progress is reported through a plain callable receiving human readable
status strings. On failure the callable first receives ``"Error: <message>"``
and the error is then raised, so a caller sees every failure twice.
"""

import asyncio
import base64
import logging
from typing import Any, Callable, Optional

import httpx
from google import genai
from google.genai import types

from ..core.settings import Settings, get_settings
from ..models.schemas import GenerationRequest, GenerationResult, JobStatus, ResultMetadata
from ..security.credential_store import CredentialStore
from .errors import (
    CredentialMissing,
    DownloadFailed,
    GenerationCancelled,
    GenerationError,
    JobFailed,
    LinkMissing,
    SubmissionFailed,
)
from .media_store import MediaStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

PROGRESS_INITIALIZING = "Initializing request..."
PROGRESS_SUBMITTED = "Request submitted, generating video..."
PROGRESS_PROCESSING = "Processing video... this may take a few minutes."
PROGRESS_DOWNLOADING = "Video generated successfully, downloading..."
PROGRESS_READY = "Video is ready."
UNKNOWN_JOB_ERROR = "Video generation failed with an unknown error."


class CancelToken:
    """Cooperative cancellation shared between a caller and one generate call."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise GenerationCancelled()

    async def sleep(self, seconds: float) -> None:
        """Wait ``seconds`` unless cancelled first, in which case raise."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise GenerationCancelled()


def build_payload(request: GenerationRequest, model: str) -> dict:
    """Submission payload; empty optional fields are left out, not sent empty."""
    config = {
        "number_of_videos": 1,
        "aspect_ratio": request.aspect_ratio.value,
        "resolution": request.resolution.value,
    }
    if request.negative_prompt:
        config["negative_prompt"] = request.negative_prompt
    payload = {"model": model, "prompt": request.prompt, "config": config}
    if request.image is not None:
        payload["image"] = {
            "image_bytes": request.image.image_bytes,
            "mime_type": request.image.mime_type,
        }
    return payload


def job_status(operation: Any) -> JobStatus:
    error = getattr(operation, "error", None)
    if error:
        if isinstance(error, dict):
            message = error.get("message")
        else:
            message = getattr(error, "message", None)
        return JobStatus(done=True, error=message or UNKNOWN_JOB_ERROR)
    if not getattr(operation, "done", False):
        return JobStatus(done=False)
    response = getattr(operation, "response", None)
    videos = getattr(response, "generated_videos", None) or []
    uri = None
    if videos:
        video = getattr(videos[0], "video", None)
        uri = getattr(video, "uri", None)
    return JobStatus(done=True, video_uri=uri or None)


def _default_genai_factory(api_key: str):
    return genai.Client(api_key=api_key)


async def _close_client(client: Any) -> None:
    # Older google-genai releases have no aclose on the async client.
    aclose = getattr(client.aio, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        logger.warning("closing genai client failed", exc_info=True)


class VideoGenerationClient:
    def __init__(
        self,
        credentials: CredentialStore,
        media: MediaStore,
        settings: Optional[Settings] = None,
        genai_factory: Callable[[str], Any] = _default_genai_factory,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._credentials = credentials
        self._media = media
        self._settings = settings or get_settings()
        self._genai_factory = genai_factory
        self._transport = transport

    @property
    def model(self) -> str:
        return self._settings.veo_model_id

    async def generate(
        self,
        request: GenerationRequest,
        progress: ProgressCallback,
        cancel: Optional[CancelToken] = None,
    ) -> GenerationResult:
        cancel = cancel or CancelToken()
        # Checked before anything touches the network.
        api_key = self._credentials.get()
        if not api_key:
            raise CredentialMissing()

        client = None
        try:
            client = self._genai_factory(api_key)
            return await self._run(request, client, api_key, progress, cancel)
        except GenerationCancelled:
            logger.info("video generation cancelled")
            raise
        except GenerationError as e:
            logger.error("video generation failed: %s", e.message)
            self._notify(progress, cancel, f"Error: {e.message}")
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.exception("video generation failed unexpectedly")
            self._notify(progress, cancel, f"Error: {message}")
            raise GenerationError(message) from e
        finally:
            if client is not None:
                await _close_client(client)

    def _notify(self, progress: ProgressCallback, cancel: CancelToken, message: str) -> None:
        if cancel.cancelled:
            return
        logger.info(message)
        progress(message)

    async def _run(
        self,
        request: GenerationRequest,
        client: Any,
        api_key: str,
        progress: ProgressCallback,
        cancel: CancelToken,
    ) -> GenerationResult:
        payload = build_payload(request, self.model)

        self._notify(progress, cancel, PROGRESS_INITIALIZING)
        operation = await self._submit(client, payload)
        cancel.raise_if_cancelled()

        self._notify(progress, cancel, PROGRESS_SUBMITTED)
        status = job_status(operation)
        while not status.done:
            self._notify(progress, cancel, PROGRESS_PROCESSING)
            await cancel.sleep(self._settings.poll_interval_seconds)
            operation = await self._refresh(client, operation)
            cancel.raise_if_cancelled()
            status = job_status(operation)
        if status.failed:
            raise JobFailed(f"Video generation failed: {status.error}")

        if not status.video_uri:
            raise LinkMissing()

        self._notify(progress, cancel, PROGRESS_DOWNLOADING)
        data, mime_type = await self._download(status.video_uri, api_key)
        cancel.raise_if_cancelled()

        media = self._media.create(data, mime_type)
        self._notify(progress, cancel, PROGRESS_READY)
        metadata = ResultMetadata(
            prompt=request.prompt,
            negative_prompt=request.negative_prompt,
            aspect_ratio=request.aspect_ratio,
            resolution=request.resolution,
            model=self.model,
        )
        return GenerationResult(media=media, metadata=metadata)

    async def _submit(self, client: Any, payload: dict) -> Any:
        kwargs = {
            "model": payload["model"],
            "prompt": payload["prompt"],
            "config": types.GenerateVideosConfig(**payload["config"]),
        }
        if "image" in payload:
            kwargs["image"] = types.Image(
                image_bytes=base64.b64decode(payload["image"]["image_bytes"]),
                mime_type=payload["image"]["mime_type"],
            )
        try:
            return await client.aio.models.generate_videos(**kwargs)
        except Exception as e:
            raise SubmissionFailed(str(e) or type(e).__name__) from e

    async def _refresh(self, client: Any, operation: Any) -> Any:
        try:
            return await client.aio.operations.get(operation)
        except Exception as e:
            raise SubmissionFailed(str(e) or type(e).__name__) from e

    async def _download(self, uri: str, api_key: str) -> tuple[bytes, str]:
        # The download endpoint authenticates with the key as a query parameter.
        url = f"{uri}&key={api_key}"
        async with httpx.AsyncClient(
            timeout=self._settings.download_timeout_seconds,
            follow_redirects=True,
            transport=self._transport,
        ) as http:
            try:
                r = await http.get(url)
            except httpx.HTTPError as e:
                raise DownloadFailed(f"Failed to download video: {e}") from e
        if not r.is_success:
            raise DownloadFailed(f"Failed to download video: {r.reason_phrase}")
        mime_type = r.headers.get("content-type", "video/mp4").split(";")[0].strip()
        return r.content, mime_type or "video/mp4"
