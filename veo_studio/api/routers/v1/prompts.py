import random

from fastapi import APIRouter

router = APIRouter()

# Shown by the "Inspire me" button.
EXAMPLE_PROMPTS = [
    "A majestic lion walking through a golden savanna at sunset, cinematic lighting",
    "A drone shot flying over a misty mountain range at dawn",
    "A cozy coffee shop on a rainy evening, steam rising from a cup by the window",
    "A neon-lit city street at night with reflections on wet pavement",
    "A time-lapse of a flower blooming in a sunlit garden",
    "An astronaut floating gently above the Earth, slow motion",
    "Waves crashing against a rocky lighthouse during a storm",
    "A hot air balloon drifting over desert dunes at sunrise",
]


@router.get("/prompts/inspire")
def inspire():
    return {"prompt": random.choice(EXAMPLE_PROMPTS)}
