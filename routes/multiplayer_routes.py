import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from google.cloud.firestore import Client as FirestoreClient

from models import DEFAULT_PERSONALITY_TRAITS, Chapter, Story, StoryTurnRequest, User, get_genre
from models_multiplayer import (
    Room, RoomStatus, JoinRoomRequest, GenreVoteRequest, ChoiceVoteRequest,
    StartStoryRequest, ProcessChoiceRequest, TransferHostRequest,
    LeaveRoomRequest, ChatSendRequest,
)
from routes.auth_routes import get_current_user
from utils.ai_utils import StoryGenerator, StoryGenerationError, get_story_generator
from utils.choice_resolution import resolve_choice
from utils.firebase import get_db
from utils.room_lifecycle import (
    add_chat_message, cast_choice_vote, cast_genre_vote,
    check_can_leave, join_room as join_members, leave_room as leave_members,
    require_host, require_member, require_status, resolve_genre,
    transfer_host as hand_over_host, transition,
)
from utils.room_store import (
    create_room as store_room, load_room, load_story, load_usernames,
    save_room, save_story, set_story_owner, upsert_personal_copy,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _get_room_or_404(db: FirestoreClient, code: str) -> Room:
    room = load_room(db, code)
    if room is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


def room_view(room: Room, usernames: Optional[Dict[str, Optional[str]]] = None) -> Dict[str, Any]:
    usernames = usernames or {}
    return {
        "room_code":               room.room_code,
        "status":                  room.status,
        "host_id":                 room.host_id,
        "host_active":             room.host_active,
        "participants":            room.participants,
        "members":                 [
            {"user_id": uid, "username": usernames.get(uid)} for uid in room.member_ids()
        ],
        "genre_votes":             {k: list(v) for k, v in room.genre_votes.items()},
        "selected_genre":          room.selected_genre,
        "story_id":                room.story_id,
        "choice_votes":            {k: list(v) for k, v in room.choice_votes.items()},
        "current_choice_index":    room.current_choice_index,
        "tied_choices_for_voting": room.tied_choices_for_voting,
        "is_processing":           room.is_processing,
        "last_choice_evaluation":  room.last_choice_evaluation.model_dump(),
        "messages":                [m.model_dump() for m in room.messages],
        "new_host_notification":   room.new_host_notification,
    }


# Create a new room, the creator becomes host
@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_room(
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
):
    room = store_room(db, current.user_id)
    if room is None:
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate unique room code",
        )
    return {
        "message": "Room created",
        "room": {
            "room_code":    room.room_code,
            "status":       room.status,
            "participants": room.participants,
        },
    }


# Join by code
@router.post("/join")
async def join_room(
    payload: JoinRoomRequest,
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
):
    room = _get_room_or_404(db, payload.room_code)
    if join_members(room, current.user_id):
        save_room(db, room)
    return {
        "message": "Joined room",
        "room": {
            "room_code":      room.room_code,
            "status":         room.status,
            "participants":   room.participants,
            "selected_genre": room.selected_genre,
            "story_id":       room.story_id,
            "host_id":        room.host_id,
            "host_active":    room.host_active,
        },
    }


# Polled room state
@router.get("/{code}")
async def get_room(
    code: str,
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
):
    room = _get_room_or_404(db, code)
    return {"room": room_view(room, load_usernames(db, room.member_ids()))}


@router.post("/{code}/vote-genre")
async def vote_genre(
    code: str,
    payload: GenreVoteRequest,
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
):
    room = _get_room_or_404(db, code)
    cast_genre_vote(room, current.user_id, payload.genre_id)
    save_room(db, room)
    return {"message": "Vote recorded", "genre_votes": room.genre_votes}


@router.post("/{code}/vote-choice")
async def vote_choice(
    code: str,
    payload: ChoiceVoteRequest,
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
):
    room = _get_room_or_404(db, code)
    story = load_story(db, room.story_id)
    valid_ids = [c.id for c in story.choices] if story else []
    cast_choice_vote(room, current.user_id, payload.choice_id, valid_ids)
    save_room(db, room)
    return {"message": "Vote recorded", "choice_votes": room.choice_votes}


# Resolve the genre vote and create the shared story
@router.post("/{code}/start-story")
async def start_story(
    code: str,
    payload: Optional[StartStoryRequest] = None,
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
    generator: StoryGenerator = Depends(get_story_generator),
):
    payload = payload or StartStoryRequest()
    room = _get_room_or_404(db, code)
    require_status(room, RoomStatus.voting_genre, error="Room is not ready to start story")
    require_host(room, current.user_id, "Only the host can start the story")

    genre_id = resolve_genre(room, payload.selected_genre)
    genre = get_genre(genre_id)
    if genre is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Invalid genre selected")

    traits = dict(DEFAULT_PERSONALITY_TRAITS)
    try:
        turn = await run_in_threadpool(generator, StoryTurnRequest(
            genre_id=genre_id,
            personality_traits=traits,
            is_multiplayer=True,
        ))
    except StoryGenerationError:
        logger.exception("Failed to generate opening for room %s", room.room_code)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to generate story")

    story = Story(
        user_id            = room.host_id,
        title              = f"{genre.name} Adventure",
        genre              = genre_id,
        content            = turn.content,
        choices            = turn.choices,
        personality_traits = traits,
        is_story_complete  = turn.is_story_complete,
        full_story_content = [Chapter(chapter_index=0, content=turn.content, choices=turn.choices)],
        is_multiplayer     = True,
        room_code          = room.room_code,
    )
    save_story(db, story)

    room.selected_genre = genre_id
    room.story_id = story.story_id
    room.current_choice_index = 0
    transition(room, RoomStatus.playing)
    save_room(db, room)
    logger.info("Room %s started a %s story", room.room_code, genre_id)

    return {
        "message": "Story started",
        "room": {
            "room_code":      room.room_code,
            "status":         room.status,
            "selected_genre": room.selected_genre,
            "story_id":       room.story_id,
        },
    }


@router.post("/{code}/process-choice")
async def process_choice(
    code: str,
    payload: Optional[ProcessChoiceRequest] = None,
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
    generator: StoryGenerator = Depends(get_story_generator),
):
    payload = payload or ProcessChoiceRequest()
    return await resolve_choice(
        db, code, current.user_id, payload.selected_choice_id, generator,
    )


@router.post("/{code}/transfer-host")
async def transfer_host(
    code: str,
    payload: TransferHostRequest,
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
):
    room = _get_room_or_404(db, code)
    previous = hand_over_host(room, current.user_id, payload.new_host_id)

    if room.story_id:
        try:
            set_story_owner(db, room.story_id, room.host_id)
        except Exception:
            logger.exception("Error transferring story ownership to new host in room %s", room.room_code)

    save_room(db, room)
    logger.info("Room %s host moved from %s to %s", room.room_code, previous, room.host_id)
    return {"message": "Host transferred successfully", "host_id": room.host_id}


@router.post("/{code}/leave")
async def leave_room(
    code: str,
    payload: Optional[LeaveRoomRequest] = None,
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
):
    payload = payload or LeaveRoomRequest()
    room = _get_room_or_404(db, code)
    check_can_leave(room, current.user_id)

    if payload.save_and_exit and room.story_id and room.status == RoomStatus.playing:
        story = load_story(db, room.story_id)
        if story is not None:
            try:
                upsert_personal_copy(db, story, current.user_id, room.room_code)
            except Exception:
                logger.exception("Error saving story for user %s", current.user_id)

    leave_members(room, current.user_id, payload.save_and_exit)
    save_room(db, room)
    return {"message": "Left room successfully"}


@router.post("/{code}/chat/send")
async def send_chat(
    code: str,
    payload: ChatSendRequest,
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
):
    room = _get_room_or_404(db, code)
    entry = add_chat_message(room, current.user_id, current.username, payload.message)
    save_room(db, room)
    return {"message": "Message sent", "chat_message": entry.model_dump()}


@router.post("/{code}/clear-host-notification")
async def clear_host_notification(
    code: str,
    current: User = Depends(get_current_user),
    db: FirestoreClient = Depends(get_db),
):
    room = _get_room_or_404(db, code)
    require_member(room, current.user_id)
    room.new_host_notification = None
    save_room(db, room)
    return {"message": "Notification cleared"}
