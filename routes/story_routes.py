from fastapi import APIRouter, HTTPException, Depends, status
from typing import List

from models import GenreInfo, GENRE_CATALOG, Story, User
from utils.firebase import get_db
from utils.room_store import STORIES, list_user_stories, load_story
from google.cloud.firestore import Client as FirestoreClient
from routes.auth_routes import get_current_user

router = APIRouter()


@router.get("/genres", response_model=List[GenreInfo], summary="List all available genres")
async def list_genres():
    """
    Returns the genres a room can vote on.
    """
    return list(GENRE_CATALOG.values())


# Saved stories of the current user, newest first
@router.get("/", response_model=List[Story])
async def list_my_stories(
    current_user: User            = Depends(get_current_user),
    db:           FirestoreClient = Depends(get_db),
):
    return list_user_stories(db, current_user.user_id)


@router.get("/{story_id}", response_model=Story)
async def get_story(
    story_id:     str,
    current_user: User            = Depends(get_current_user),
    db:           FirestoreClient = Depends(get_db),
):
    story = load_story(db, story_id)
    if story is None or story.user_id != current_user.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Story not found")
    return story


@router.delete("/{story_id}")
async def delete_story(
    story_id:     str,
    current_user: User            = Depends(get_current_user),
    db:           FirestoreClient = Depends(get_db),
):
    story = load_story(db, story_id)
    if story is None or story.user_id != current_user.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Story not found")
    db.collection(STORIES).document(story_id).delete()
    return {"message": "Story deleted"}
