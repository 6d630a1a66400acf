from fastapi import APIRouter

from .v1 import credential, generate, media, prompts

router = APIRouter()

router.include_router(generate.router, prefix="/generate", tags=["generate"])
router.include_router(credential.router, prefix="", tags=["credential"])
router.include_router(media.router, prefix="", tags=["media"])
router.include_router(prompts.router, prefix="", tags=["prompts"])
