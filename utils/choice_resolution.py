import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import status
from fastapi.concurrency import run_in_threadpool
from google.cloud.firestore import Client as FirestoreClient

from models import Chapter, ChoiceEvaluation, ChoiceHistoryEntry, Story, StoryTurnRequest
from models_multiplayer import Room, RoomStatus
from utils.ai_utils import StoryGenerator, StoryGenerationError
from utils.room_lifecycle import (
    RoomError, eligible_voter_count, require_host, require_status, transition,
)
from utils.room_store import (
    load_room, load_story, save_room, save_story, upsert_personal_copy,
)
from utils.vote_tally import VoteBox

logger = logging.getLogger(__name__)


async def fan_out_saved_copies(db: FirestoreClient, story: Story, room: Room) -> None:
    """Upsert one copy of the finished story per member; failures are only logged."""
    users = room.member_ids()

    async def save_for(user_id: str) -> None:
        try:
            await asyncio.to_thread(upsert_personal_copy, db, story, user_id, room.room_code)
        except Exception:
            logger.exception("Error saving story for user %s in room %s", user_id, room.room_code)

    await asyncio.gather(*(save_for(uid) for uid in users))


def _reset_processing(db: FirestoreClient, room_code: str) -> None:
    try:
        room = load_room(db, room_code)
        if room is not None:
            room.is_processing = False
            save_room(db, room)
    except Exception:
        logger.exception("Error resetting processing flag for room %s", room_code)


async def resolve_choice(
    db: FirestoreClient,
    room_code: str,
    user_id: str,
    selected_choice_id: Optional[str],
    generator: StoryGenerator,
) -> Dict[str, Any]:
    try:
        return await _resolve_choice(db, room_code, user_id, selected_choice_id, generator)
    except RoomError:
        raise
    except Exception:
        logger.exception("Process choice failed for room %s", room_code)
        _reset_processing(db, room_code)
        raise RoomError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


async def _resolve_choice(
    db: FirestoreClient,
    room_code: str,
    user_id: str,
    selected_choice_id: Optional[str],
    generator: StoryGenerator,
) -> Dict[str, Any]:
    room = load_room(db, room_code)
    if room is None:
        raise RoomError(status.HTTP_404_NOT_FOUND, "Room not found")
    require_status(room, RoomStatus.playing, error="Room is not in playing phase")
    require_host(room, user_id, "Only the host can process choices")
    if not room.story_id:
        raise RoomError(status.HTTP_400_BAD_REQUEST, "No story associated with room")
    story = load_story(db, room.story_id)
    if story is None:
        raise RoomError(status.HTTP_404_NOT_FOUND, "Story not found")
    if not room.choice_votes:
        raise RoomError(status.HTTP_400_BAD_REQUEST, "No votes recorded", has_votes=False)

    box = VoteBox(room.choice_votes)
    tie_breaker = bool(room.tied_choices_for_voting)
    active: List[str] = list(room.tied_choices_for_voting) if tie_breaker else list(room.choice_votes)

    eligible = eligible_voter_count(room)
    tally = box.tally(active)
    if not selected_choice_id and not box.quorum_met(eligible, active):
        raise RoomError(
            status.HTTP_400_BAD_REQUEST,
            "Waiting for all players to vote",
            participants=eligible,
            voters=tally.total_voters,
            missing_votes=eligible - tally.total_voters,
            is_tie_breaker_mode=tie_breaker,
            ready=False,
        )

    if not tally.counts:
        box.clear()
        room.tied_choices_for_voting = []
        save_room(db, room)
        raise RoomError(status.HTTP_400_BAD_REQUEST, "No votes found for any choice", reset_votes=True)

    if tally.has_tie and not selected_choice_id:
        if not tie_breaker:
            room.tied_choices_for_voting = list(tally.tied_at_max)
            box.restrict(tally.tied_at_max)
            # tied options restart from zero
            box.clear()
            save_room(db, room)
            logger.info("Room %s tied on %s, starting re-vote", room.room_code, tally.tied_at_max)
            return {
                "has_tie":               True,
                "tied_choices":          tally.tied_at_max,
                "is_tie_breaker_voting": True,
                "require_new_votes":     True,
                "message":               "Tie detected. All players will vote again on the tied choices.",
            }
        return {
            "has_tie":                 True,
            "tied_choices":            tally.tied_at_max,
            "is_tie_breaker_voting":   True,
            "requires_host_selection": True,
            "message":                 "Tie persists after re-voting. Host must select the final choice.",
        }

    if selected_choice_id:
        valid = list(room.tied_choices_for_voting) if tie_breaker else tally.tied_at_max
        if selected_choice_id not in valid:
            raise RoomError(
                status.HTTP_400_BAD_REQUEST,
                "Selected choice is not one of the tied choices",
                valid_choices=valid,
                selected_choice_id=selected_choice_id,
            )
        winning_id = selected_choice_id
    else:
        winning_id = tally.winner

    winning = story.find_choice(winning_id)
    if winning is None:
        logger.error(
            "Winning choice %s not found in story %s choices %s",
            winning_id, story.story_id, [c.id for c in story.choices],
        )
        raise RoomError(
            status.HTTP_400_BAD_REQUEST,
            "Winning choice not found in story",
            choice_id=winning_id,
            available_choices=[c.model_dump() for c in story.choices],
        )

    room.is_processing = True
    room.last_choice_evaluation = ChoiceEvaluation()
    save_room(db, room)

    turn_request = StoryTurnRequest(
        genre_id=story.genre,
        personality_traits=dict(story.personality_traits),
        character=story.character,
        previous_content=story.content,
        last_choice=winning,
        choice_history=story.choice_history,
        is_multiplayer=True,
    )
    try:
        turn = await run_in_threadpool(generator, turn_request)
    except StoryGenerationError as e:
        logger.error("Failed to generate next part for room %s: %s", room.room_code, e)
        room.is_processing = False
        save_room(db, room)
        raise RoomError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to generate next part of the story")

    story.full_story_content.append(Chapter(
        chapter_index=story.current_choice_index,
        content=story.content,
        choices=story.choices,
        selected_choice=winning,
    ))
    story.content = turn.content
    story.choices = turn.choices
    story.current_choice_index += 1
    story.is_story_complete = turn.is_story_complete
    evaluation = turn.last_choice_evaluation
    story.choice_history.append(ChoiceHistoryEntry(
        segment_index=story.current_choice_index - 1,
        choice_id=winning.id,
        quality=evaluation.quality if evaluation else None,
    ))
    save_story(db, story)

    # pick up chat or membership changes made while the generator ran
    room = load_room(db, room_code) or room
    VoteBox(room.choice_votes).clear()
    room.tied_choices_for_voting = []
    room.current_choice_index = story.current_choice_index
    room.is_processing = False
    room.last_choice_evaluation = (
        ChoiceEvaluation(quality=evaluation.quality, message=evaluation.message)
        if evaluation else ChoiceEvaluation()
    )

    if story.is_story_complete:
        transition(room, RoomStatus.completed)
        story.full_story_content.append(Chapter(
            chapter_index=story.current_choice_index,
            content=story.content,
            choices=story.choices,
        ))
        save_story(db, story)
        await fan_out_saved_copies(db, story, room)
        logger.info("Story %s in room %s completed", story.story_id, room.room_code)
    else:
        transition(room, RoomStatus.playing)

    save_room(db, room)

    return {
        "message": "Choice processed successfully",
        "story": {
            "content":              story.content,
            "choices":              [c.model_dump() for c in story.choices],
            "current_choice_index": story.current_choice_index,
            "is_story_complete":    story.is_story_complete,
        },
        "last_choice_evaluation": evaluation.model_dump() if evaluation else None,
        "has_tie":                False,
        "winning_choice":         winning.model_dump(),
    }
