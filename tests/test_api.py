import asyncio
import json
import tempfile
import unittest
from io import BytesIO
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

import httpx
from fastapi import HTTPException
from fastapi.testclient import TestClient
from PIL import Image

from veo_studio.api.main import app
from veo_studio.api.core.settings import Settings
from veo_studio.api.models.schemas import GenerationForm
from veo_studio.api.routers.v1 import generate as generate_routes
from veo_studio.api.security.credential_store import CredentialStore, get_credential_store
from veo_studio.api.services.media_store import MediaStore
from veo_studio.api.services.session import GenerationSession, get_media_store, get_session
from veo_studio.api.services.veo import (
    PROGRESS_INITIALIZING,
    PROGRESS_PROCESSING,
    PROGRESS_READY,
    PROGRESS_SUBMITTED,
    CancelToken,
    VideoGenerationClient,
)

VIDEO_URI = "https://generativelanguage.example/v1beta/files/xyz:download?alt=media"


class FakeGenai:
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.submitted = []
        self.aio = SimpleNamespace(
            models=SimpleNamespace(generate_videos=self._generate_videos),
            operations=SimpleNamespace(get=self._get),
        )

    async def _generate_videos(self, **kwargs):
        self.submitted.append(kwargs)
        return SimpleNamespace(done=False, error=None, response=None)

    async def _get(self, operation):
        return self.statuses.pop(0)


def done_op():
    video = SimpleNamespace(video=SimpleNamespace(uri=VIDEO_URI))
    return SimpleNamespace(done=True, error=None, response=SimpleNamespace(generated_videos=[video]))


def parse_events(body: str):
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


class APITests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.client = TestClient(app)

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        settings = Settings(poll_interval_seconds=0, max_image_bytes=2048)
        self.store = CredentialStore(Path(self._tmp.name))
        self.media = MediaStore()
        self.genai = FakeGenai([done_op()])
        self.download_status = 200
        veo = VideoGenerationClient(
            self.store,
            self.media,
            settings=settings,
            genai_factory=lambda api_key: self.genai,
            transport=httpx.MockTransport(self._download),
        )
        self.session = GenerationSession(veo, self.media, settings)
        app.dependency_overrides[get_session] = lambda: self.session
        app.dependency_overrides[get_media_store] = lambda: self.media
        app.dependency_overrides[get_credential_store] = lambda: self.store

    def tearDown(self):
        app.dependency_overrides.clear()
        self._tmp.cleanup()

    def _download(self, request):
        if self.download_status != 200:
            return httpx.Response(self.download_status)
        return httpx.Response(200, content=b"mp4-bytes", headers={"content-type": "video/mp4"})

    def test_healthz(self):
        r = self.client.get("/healthz")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json().get("status"), "ok")

    def test_credential_roundtrip(self):
        self.assertFalse(self.client.get("/v1/credential").json()["configured"])
        r = self.client.put("/v1/credential", json={"api_key": "  k-123  "})
        self.assertTrue(r.json()["configured"])
        self.assertEqual(self.store.get(), "k-123")
        r = self.client.get("/v1/credential")
        self.assertNotIn("k-123", r.text)
        self.client.delete("/v1/credential")
        self.assertIsNone(self.store.get())

    def test_blank_prompt_is_rejected_before_streaming(self):
        self.store.set("k-123")
        r = self.client.post("/v1/generate/video", json={"prompt": ""})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["detail"], "promptRequiredError")
        self.assertEqual(self.genai.submitted, [])

    def test_generate_streams_progress_and_result(self):
        self.store.set("k-123")
        r = self.client.post(
            "/v1/generate/video",
            json={"prompt": "a paper boat on a stream", "aspect_ratio": "1:1", "resolution": "1080p"},
        )
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.headers["content-type"].startswith("text/event-stream"))
        events = parse_events(r.text)
        kinds = [kind for kind, _ in events]
        self.assertEqual(kinds[-1], "result")
        self.assertTrue(all(kind == "progress" for kind in kinds[:-1]))
        self.assertEqual(events[-2][1]["message"], PROGRESS_READY)
        result = events[-1][1]
        self.assertEqual(result["prompt"], "a paper boat on a stream")
        self.assertEqual(result["aspect_ratio"], "1:1")
        self.assertEqual(result["resolution"], "1080p")

        video = self.client.get(result["video_url"])
        self.assertEqual(video.status_code, 200)
        self.assertEqual(video.content, b"mp4-bytes")
        self.assertEqual(video.headers["content-type"], "video/mp4")

        download = self.client.get(result["video_url"], params={"download": "true"})
        self.assertIn("generated-video.mp4", download.headers["content-disposition"])

        self.assertEqual(self.client.get("/v1/generate/result").json()["media_id"], result["media_id"])
        self.client.post("/v1/generate/clear")
        self.assertEqual(self.client.get(result["video_url"]).status_code, 404)
        self.assertEqual(self.client.get("/v1/generate/result").status_code, 404)

    def test_missing_credential_event(self):
        r = self.client.post("/v1/generate/video", json={"prompt": "a paper boat"})
        events = parse_events(r.text)
        self.assertEqual(len(events), 1)
        kind, body = events[0]
        self.assertEqual(kind, "error")
        self.assertEqual(body["key"], "apiKeyRequiredError")
        self.assertTrue(body["needs_credential"])
        self.assertEqual(self.genai.submitted, [])

    def test_download_failure_event(self):
        self.store.set("k-123")
        self.download_status = 500
        r = self.client.post("/v1/generate/video", json={"prompt": "a paper boat"})
        events = parse_events(r.text)
        self.assertEqual(events[-2], ("progress", {"message": "Error: Failed to download video: Internal Server Error"}))
        kind, body = events[-1]
        self.assertEqual(kind, "error")
        self.assertEqual(body["message"], "Failed to download video: Internal Server Error")
        self.assertIsNone(body["key"])
        self.assertEqual(self.media.live_count(), 0)

    def test_image_upload_and_limits(self):
        buf = BytesIO()
        Image.new("RGB", (8, 8), (10, 120, 200)).save(buf, format="PNG")
        r = self.client.post(
            "/v1/generate/image",
            files={"image_file": ("frame.png", buf.getvalue(), "image/png")},
        )
        self.assertEqual(r.status_code, 200)
        preview = r.json()
        self.assertEqual(preview["mime_type"], "image/png")
        self.assertEqual(self.client.get(preview["preview_url"]).content, buf.getvalue())

        r = self.client.post(
            "/v1/generate/image",
            files={"image_file": ("big.png", b"\x00" * 4096, "image/png")},
        )
        self.assertEqual(r.status_code, 413)
        self.assertEqual(r.json()["detail"], "imageSizeError")

        r = self.client.post(
            "/v1/generate/image",
            files={"image_file": ("notes.txt", b"hello", "text/plain")},
        )
        self.assertEqual(r.status_code, 415)

        self.client.delete("/v1/generate/image")
        self.assertEqual(self.client.get(preview["preview_url"]).status_code, 404)

    def test_malformed_operation_ends_with_error_event(self):
        self.store.set("k-123")
        self.genai.statuses = [
            SimpleNamespace(done=True, error=None, response=SimpleNamespace(generated_videos=SimpleNamespace()))
        ]
        r = self.client.post("/v1/generate/video", json={"prompt": "a paper boat"})
        self.assertEqual(r.status_code, 200)
        events = parse_events(r.text)
        kind, body = events[-1]
        self.assertEqual(kind, "error")
        self.assertIn("not subscriptable", body["message"])
        self.assertEqual(events[-2], ("progress", {"message": f"Error: {body['message']}"}))
        self.assertEqual(self.session.error, body["message"])
        self.assertFalse(self.session.loading)

    def test_inspire(self):
        r = self.client.get("/v1/prompts/inspire")
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()["prompt"])


class TrackedToken(CancelToken):
    instances = []

    def __init__(self):
        super().__init__()
        TrackedToken.instances.append(self)


class StreamCancelTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        settings = Settings(poll_interval_seconds=30)
        self.store = CredentialStore(Path(self._tmp.name))
        self.store.set("k-123")
        self.media = MediaStore()
        self.genai = FakeGenai([done_op()])
        veo = VideoGenerationClient(
            self.store,
            self.media,
            settings=settings,
            genai_factory=lambda api_key: self.genai,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"mp4-bytes")),
        )
        self.session = GenerationSession(veo, self.media, settings)
        TrackedToken.instances = []
        patcher = mock.patch.object(generate_routes, "CancelToken", TrackedToken)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self._tmp.cleanup()

    async def _wait_idle(self):
        for _ in range(200):
            if not self.session.loading:
                return
            await asyncio.sleep(0.01)
        self.fail("generation still running")

    async def _read_until_processing(self, stream):
        messages = []
        while PROGRESS_PROCESSING not in messages:
            chunk = await stream.__anext__()
            messages.extend(body["message"] for _, body in parse_events(chunk))
        return messages

    async def test_closing_stream_cancels_generation(self):
        response = await generate_routes.generate_video(GenerationForm(prompt="a slow sunrise"), self.session)
        stream = response.body_iterator
        messages = await self._read_until_processing(stream)
        self.assertEqual(messages, [PROGRESS_INITIALIZING, PROGRESS_SUBMITTED, PROGRESS_PROCESSING])

        await stream.aclose()
        await self._wait_idle()

        self.assertEqual(len(TrackedToken.instances), 1)
        self.assertTrue(TrackedToken.instances[0].cancelled)
        self.assertEqual(self.session.progress_message, PROGRESS_PROCESSING)
        self.assertEqual(self.session.error, "Video generation was cancelled.")
        self.assertEqual(len(self.genai.statuses), 1)
        self.assertEqual(self.media.live_count(), 0)
        self.assertIsNone(self.session.result)

    async def test_second_request_refused_while_first_streams(self):
        response = await generate_routes.generate_video(GenerationForm(prompt="a slow sunrise"), self.session)
        with self.assertRaises(HTTPException) as ctx:
            await generate_routes.generate_video(GenerationForm(prompt="a fast sunset"), self.session)
        self.assertEqual(ctx.exception.status_code, 409)

        stream = response.body_iterator
        await self._read_until_processing(stream)
        await stream.aclose()
        await self._wait_idle()


if __name__ == "__main__":
    unittest.main()
