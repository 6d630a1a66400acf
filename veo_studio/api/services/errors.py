"""Failure kinds raised by the generation services.

Each error carries a human readable ``message``. Errors the page knows how to
translate also carry a ``key`` (the message is the key itself in that case),
so callers can tell a translatable key apart from free text.
"""

from typing import Optional


class GenerationError(Exception):
    key: Optional[str] = None

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.key or "An unknown error occurred while generating the video."
        super().__init__(self.message)


class CredentialMissing(GenerationError):
    key = "apiKeyRequiredError"


class SubmissionFailed(GenerationError):
    pass


class JobFailed(GenerationError):
    pass


class LinkMissing(GenerationError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Could not retrieve the video download link.")


class DownloadFailed(GenerationError):
    pass


class GenerationCancelled(GenerationError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Video generation was cancelled.")


class PromptRequired(GenerationError):
    key = "promptRequiredError"


class GenerationBusy(GenerationError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "A video is already being generated.")


class SizeExceeded(GenerationError):
    key = "imageSizeError"


class UnsupportedImage(GenerationError):
    key = "imageFormatError"
