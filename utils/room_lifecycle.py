import logging
from typing import Any, Dict, List, Optional

from fastapi import status

from models import get_genre
from models_multiplayer import (
    Room, RoomStatus, ChatMessage, MAX_CHAT_MESSAGES, MAX_CHAT_LENGTH,
)
from utils.vote_tally import VoteBox

logger = logging.getLogger(__name__)

MAX_ROOM_SIZE = 5

ALLOWED_TRANSITIONS: Dict[RoomStatus, frozenset] = {
    RoomStatus.waiting:      frozenset({RoomStatus.voting_genre}),
    RoomStatus.voting_genre: frozenset({RoomStatus.playing}),
    RoomStatus.playing:      frozenset({RoomStatus.playing, RoomStatus.completed}),
    RoomStatus.completed:    frozenset(),
}


class RoomError(Exception):
    """A rejected room action, rendered as ``{"error": ..., **extra}``."""

    def __init__(self, status_code: int, error: str, **extra: Any):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.extra = extra


# ─── Status ──────────────────────────────────────────────────────────────────
def transition(room: Room, target: RoomStatus) -> None:
    current = RoomStatus(room.status)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise RoomError(
            status.HTTP_400_BAD_REQUEST,
            f"Cannot move room from {current.value} to {target.value}",
        )
    room.status = target.value


def require_status(room: Room, *allowed: RoomStatus, error: str) -> None:
    if RoomStatus(room.status) not in allowed:
        raise RoomError(status.HTTP_400_BAD_REQUEST, error)


def require_host(room: Room, user_id: str, error: str) -> None:
    if not room.is_host(user_id):
        raise RoomError(status.HTTP_403_FORBIDDEN, error)


def require_member(room: Room, user_id: str, error: str = "You are not a member of this room") -> None:
    if not room.is_member(user_id):
        raise RoomError(status.HTTP_403_FORBIDDEN, error)


def eligible_voter_count(room: Room) -> int:
    """Participants, plus the host when active and not listed among them."""
    host_counted = room.host_active and room.host_id not in room.participants
    return len(room.participants) + (1 if host_counted else 0)


# ─── Membership ──────────────────────────────────────────────────────────────
def join_room(room: Room, user_id: str) -> bool:
    """Add ``user_id`` to the room. Returns True when the room changed."""
    if user_id in room.blocked_rejoin_users:
        raise RoomError(
            status.HTTP_403_FORBIDDEN,
            "You chose to exit this room and cannot re-join.",
        )
    if room.status == RoomStatus.completed:
        raise RoomError(status.HTTP_400_BAD_REQUEST, "Room is no longer active")

    if not room.host_active:
        # an abandoned room is taken over by whoever joins next
        room.host_id = user_id
        room.host_active = True
        room.participants = [p for p in room.participants if p != user_id]
        logger.info("User %s took over host of room %s", user_id, room.room_code)
        return True

    if room.is_member(user_id):
        if room.is_host(user_id) and not room.is_participant(user_id):
            room.participants.append(user_id)
            return True
        return False

    if eligible_voter_count(room) >= MAX_ROOM_SIZE:
        raise RoomError(
            status.HTTP_400_BAD_REQUEST,
            f"Room is full. Maximum {MAX_ROOM_SIZE} users allowed per room.",
        )
    room.participants.append(user_id)
    return True


def check_can_leave(room: Room, user_id: str) -> None:
    require_member(room, user_id)
    others = [p for p in room.participants if p != user_id]
    if room.is_host(user_id) and room.host_active and others:
        raise RoomError(
            status.HTTP_400_BAD_REQUEST,
            "Transfer host to a participant before exiting the room",
        )


def leave_room(room: Room, user_id: str, save_and_exit: bool = False) -> None:
    check_can_leave(room, user_id)

    preserved_story_id = room.story_id
    preserved_status = room.status

    if not save_and_exit and user_id not in room.blocked_rejoin_users:
        room.blocked_rejoin_users.append(user_id)

    VoteBox(room.choice_votes).remove_voter(user_id)
    VoteBox(room.genre_votes).remove_voter(user_id)

    room.participants = [p for p in room.participants if p != user_id]
    if room.is_host(user_id):
        room.host_active = False
        room.new_host_notification = None

    room.story_id = preserved_story_id
    room.status = preserved_status


def transfer_host(room: Room, user_id: str, new_host_id: Optional[str]) -> str:
    """Hand the host role to a participant. Returns the previous host id."""
    if not new_host_id:
        raise RoomError(status.HTTP_400_BAD_REQUEST, "Select a participant to transfer host")
    require_host(room, user_id, "Only the current host can transfer host powers")
    if room.host_id == new_host_id:
        raise RoomError(status.HTTP_400_BAD_REQUEST, "Select a different participant to become host")
    if not room.is_participant(new_host_id):
        raise RoomError(status.HTTP_400_BAD_REQUEST, "Selected user is not an active participant")

    previous_host = room.host_id
    room.host_id = new_host_id
    room.host_active = True
    room.new_host_notification = new_host_id
    room.participants = [p for p in room.participants if p != new_host_id]
    if previous_host not in room.participants:
        room.participants.append(previous_host)
    return previous_host


# ─── Voting ──────────────────────────────────────────────────────────────────
def cast_genre_vote(room: Room, user_id: str, genre_id: str) -> None:
    if get_genre(genre_id) is None:
        raise RoomError(status.HTTP_400_BAD_REQUEST, "Invalid genre")
    require_status(
        room, RoomStatus.waiting, RoomStatus.voting_genre,
        error="Room is not in voting phase",
    )
    require_member(room, user_id, "You are not a participant in this room")

    VoteBox(room.genre_votes).cast(genre_id, user_id)
    if room.status == RoomStatus.waiting:
        transition(room, RoomStatus.voting_genre)


def cast_choice_vote(room: Room, user_id: str, choice_id: str, valid_choice_ids: List[str]) -> None:
    require_status(room, RoomStatus.playing, error="Room is not in playing phase")
    require_member(room, user_id, "You are not a participant in this room")
    allowed = room.tied_choices_for_voting or valid_choice_ids
    if choice_id not in allowed:
        raise RoomError(
            status.HTTP_400_BAD_REQUEST,
            "Invalid choice",
            valid_choices=list(allowed),
        )
    VoteBox(room.choice_votes).cast(choice_id, user_id)


def resolve_genre(room: Room, selected_genre: Optional[str] = None) -> str:
    """
    Pick the winning genre. A tie goes to the host's explicit selection when
    given, else to the host's own vote when it is one of the tied genres.
    """
    box = VoteBox(room.genre_votes)
    if not room.genre_votes:
        raise RoomError(status.HTTP_400_BAD_REQUEST, "No genre votes recorded")

    eligible = eligible_voter_count(room)
    tally = box.tally()
    if not box.quorum_met(eligible):
        raise RoomError(
            status.HTTP_400_BAD_REQUEST,
            "All participants must vote before starting the story",
            participants=eligible,
            voters=tally.total_voters,
        )

    winner = tally.winner
    if tally.has_tie:
        tied = [{"genre_id": g, "votes": tally.counts[g]} for g in tally.tied_at_max]
        if selected_genre:
            if selected_genre not in tally.tied_at_max:
                raise RoomError(
                    status.HTTP_400_BAD_REQUEST,
                    "Selected genre is not part of the tie",
                    tied_genres=tied,
                )
            winner = selected_genre
        else:
            host_vote = box.vote_of(room.host_id)
            winner = host_vote if host_vote in tally.tied_at_max else None

    if not winner:
        raise RoomError(status.HTTP_400_BAD_REQUEST, "Could not determine selected genre")
    return winner


# ─── Chat ────────────────────────────────────────────────────────────────────
def add_chat_message(room: Room, user_id: str, username: str, message: str) -> ChatMessage:
    text = (message or "").strip()
    if not text:
        raise RoomError(status.HTTP_400_BAD_REQUEST, "Message is required")
    if len(message) > MAX_CHAT_LENGTH:
        raise RoomError(
            status.HTTP_400_BAD_REQUEST,
            f"Message is too long (max {MAX_CHAT_LENGTH} characters)",
        )
    require_member(room, user_id)

    entry = ChatMessage(user_id=user_id, username=username, message=text)
    room.messages.append(entry)
    if len(room.messages) > MAX_CHAT_MESSAGES:
        room.messages = room.messages[-MAX_CHAT_MESSAGES:]
    return entry
