from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class AspectRatio(str, Enum):
    SIXTEEN_TO_NINE = "16:9"
    NINE_TO_SIXTEEN = "9:16"
    ONE_TO_ONE = "1:1"
    FOUR_TO_THREE = "4:3"
    THREE_TO_FOUR = "3:4"


class Resolution(str, Enum):
    HD = "720p"
    FULL_HD = "1080p"


class EncodedImage(BaseModel):
    image_bytes: str  # base64
    mime_type: str


class GenerationForm(BaseModel):
    """Raw form input as posted by the page; the prompt may still be blank."""

    prompt: str = ""
    negative_prompt: str = ""
    aspect_ratio: AspectRatio = AspectRatio.SIXTEEN_TO_NINE
    resolution: Resolution = Resolution.HD


class GenerationRequest(BaseModel):
    prompt: str
    negative_prompt: str = ""
    aspect_ratio: AspectRatio = AspectRatio.SIXTEEN_TO_NINE
    resolution: Resolution = Resolution.HD
    image: Optional[EncodedImage] = None

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("prompt must not be empty")
        return value


@dataclass(frozen=True)
class MediaRef:
    """Handle to bytes held in the local media store."""

    id: str
    mime_type: str
    size: int

    @property
    def url(self) -> str:
        return f"/v1/media/{self.id}"


@dataclass(frozen=True)
class JobStatus:
    """Pending, succeeded (with an optional video uri) or failed."""

    done: bool
    video_uri: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class ResultMetadata(BaseModel):
    prompt: str
    negative_prompt: str = ""
    aspect_ratio: AspectRatio
    resolution: Resolution
    model: str
    source_image_url: Optional[str] = Field(default=None)


@dataclass(frozen=True)
class GenerationResult:
    media: MediaRef
    metadata: ResultMetadata

    def to_dict(self) -> dict:
        return {
            "video_url": self.media.url,
            "media_id": self.media.id,
            "mime_type": self.media.mime_type,
            "size": self.media.size,
            **self.metadata.model_dump(mode="json"),
        }
