import asyncio
import json
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from ...core.settings import get_settings
from ...models.schemas import GenerationForm
from ...services.errors import (
    GenerationBusy,
    GenerationError,
    PromptRequired,
    SizeExceeded,
    UnsupportedImage,
)
from ...services.session import GenerationSession, get_session
from ...services.veo import CancelToken

logger = logging.getLogger(__name__)

router = APIRouter()


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def _error_body(e: GenerationError, session: GenerationSession) -> dict:
    return {
        "message": e.message,
        # only set when the message is a translatable key
        "key": e.key if e.key == e.message else None,
        "needs_credential": session.needs_credential,
    }


@router.post("/image")
async def upload_image(
    image_file: UploadFile = File(...),
    session: GenerationSession = Depends(get_session),
):
    # One byte past the ceiling is enough to reject the upload.
    data = await image_file.read(get_settings().max_image_bytes + 1)
    try:
        ref = session.attach_image(data, image_file.content_type)
    except SizeExceeded as e:
        raise HTTPException(status_code=413, detail=e.message)
    except UnsupportedImage as e:
        raise HTTPException(status_code=415, detail=e.message)
    return {
        "media_id": ref.id,
        "preview_url": ref.url,
        "mime_type": ref.mime_type,
        "size": ref.size,
    }


@router.delete("/image")
def remove_image(session: GenerationSession = Depends(get_session)):
    session.remove_image()
    return {"ok": True}


@router.post("/video")
async def generate_video(
    form: GenerationForm, session: GenerationSession = Depends(get_session)
):
    """Start a generation and stream its progress as server-sent events.

    Emits ``progress`` events while the job runs, then exactly one ``result``
    or ``error`` event. A failure is also announced by a final ``progress``
    event prefixed with ``Error:``. Closing the stream cancels the job.
    """
    try:
        request = session.reserve(form)
    except PromptRequired as e:
        raise HTTPException(status_code=400, detail=e.message)
    except GenerationBusy as e:
        raise HTTPException(status_code=409, detail=e.message)

    queue: asyncio.Queue = asyncio.Queue()
    cancel = CancelToken()

    def on_done(t: asyncio.Task) -> None:
        if not t.cancelled():
            t.exception()
        queue.put_nowait(None)

    # Started here so the reserved slot is released even if the stream is never read.
    task = asyncio.create_task(session.run(request, queue.put_nowait, cancel))
    task.add_done_callback(on_done)

    async def gen():
        try:
            while True:
                message = await queue.get()
                if message is None:
                    break
                yield _sse("progress", {"message": message})
            try:
                result = task.result()
            except GenerationError as e:
                yield _sse("error", _error_body(e, session))
            else:
                yield _sse("result", result.to_dict())
        finally:
            if not task.done():
                logger.info("client went away, cancelling generation")
                cancel.cancel()

    return StreamingResponse(gen(), media_type="text/event-stream")


@router.get("/result")
def get_result(session: GenerationSession = Depends(get_session)):
    if session.result is None:
        raise HTTPException(status_code=404, detail="no result")
    return session.result.to_dict()


@router.get("/state")
def get_state(session: GenerationSession = Depends(get_session)):
    return {
        "loading": session.loading,
        "progress_message": session.progress_message,
        "error": session.error,
        "needs_credential": session.needs_credential,
        "preview_url": session.preview.url if session.preview else None,
        "result": session.result.to_dict() if session.result else None,
    }


@router.post("/clear")
def clear(session: GenerationSession = Depends(get_session)):
    session.clear()
    return {"ok": True}
