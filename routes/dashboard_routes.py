import logging

from fastapi import APIRouter, Depends
from google.cloud.firestore import Client as FirestoreClient

from models import ProgressUpdateRequest, User
from routes.auth_routes import get_current_user
from utils.firebase import get_db
from utils.room_store import list_user_stories, load_or_create_progress, save_progress

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/dashboard", summary="Profile, saved stories and progress of the caller")
async def dashboard(
    current_user: User            = Depends(get_current_user),
    db:           FirestoreClient = Depends(get_db),
):
    stories = list_user_stories(db, current_user.user_id)
    progress = load_or_create_progress(db, current_user.user_id)
    return {
        "user": {
            "user_id":  current_user.user_id,
            "username": current_user.username,
            "email":    current_user.email,
        },
        "stories": [s.model_dump() for s in stories],
        "stats":   progress.stats(),
    }


@router.get("/gamification")
async def get_stats(
    current_user: User            = Depends(get_current_user),
    db:           FirestoreClient = Depends(get_db),
):
    return {"stats": load_or_create_progress(db, current_user.user_id).stats()}


# Partial update; the level always follows from XP
@router.post("/gamification")
async def update_stats(
    payload:      ProgressUpdateRequest,
    current_user: User            = Depends(get_current_user),
    db:           FirestoreClient = Depends(get_db),
):
    progress = load_or_create_progress(db, current_user.user_id)
    changes = payload.updates.model_dump(exclude_none=True)
    if changes:
        progress = progress.model_copy(update={
            **changes,
            "badges": payload.updates.badges if payload.updates.badges is not None else progress.badges,
        })
    save_progress(db, progress)
    logger.info("Progress of %s updated: %s", current_user.user_id, sorted(changes))
    return {"stats": progress.stats()}
