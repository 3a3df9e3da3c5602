from fastapi import APIRouter, HTTPException, Depends, status
from fastapi.concurrency import run_in_threadpool

from models import StoryTurn, StoryTurnRequest, User, get_genre
from routes.auth_routes import get_current_user
from utils.ai_utils import (
    StoryGenerator, StoryGenerationError, get_client, get_story_generator,
)

router = APIRouter()


@router.get("/health", summary="AI Health Check")
async def ai_health():
    try:
        resp = get_client().models.list()
        return {
            "status": "ok",
            "available_models": [m.id for m in resp.data]
        }
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"OpenAI health check failed: {e}"
        )


@router.post(
    "/stories/generate",
    response_model=StoryTurn,
    summary="Generate the next story step without saving",
)
async def generate_story(
    req: StoryTurnRequest,
    current_user: User = Depends(get_current_user),
    generator: StoryGenerator = Depends(get_story_generator),
):
    if get_genre(req.genre_id) is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid genre")
    try:
        return await run_in_threadpool(generator, req)
    except StoryGenerationError:
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to generate story",
        )
