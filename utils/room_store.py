import logging
import random
import string
from typing import Dict, Iterable, List, Optional

from google.cloud.firestore import Client as FirestoreClient, FieldFilter

from models import Story, User, UserProgress, gen_uuid, now_utc
from models_multiplayer import Room

logger = logging.getLogger(__name__)

ROOMS = "rooms"
STORIES = "stories"
USERS = "users"
PROGRESS = "user_progress"

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6
ROOM_CODE_ATTEMPTS = 10


def generate_room_code() -> str:
    return "".join(random.choices(ROOM_CODE_ALPHABET, k=ROOM_CODE_LENGTH))


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


# ─── Rooms ───────────────────────────────────────────────────────────────────
def create_room(db: FirestoreClient, host_id: str) -> Optional[Room]:
    """
    Create a room with a fresh code. Returns None when no free code was
    found within ``ROOM_CODE_ATTEMPTS`` tries.
    """
    for _ in range(ROOM_CODE_ATTEMPTS):
        code = generate_room_code()
        ref = db.collection(ROOMS).document(code)
        if ref.get().exists:
            continue
        room = Room(room_code=code, host_id=host_id, participants=[host_id])
        ref.set(room.model_dump())
        logger.info("Room %s created by %s", code, host_id)
        return room
    logger.warning("Could not find a free room code after %d attempts", ROOM_CODE_ATTEMPTS)
    return None


def load_room(db: FirestoreClient, code: str) -> Optional[Room]:
    snap = db.collection(ROOMS).document(normalize_code(code)).get()
    if not snap.exists:
        return None
    room = Room.model_validate(snap.to_dict())
    # the TTL sweep is lazy, so expired rooms may still be readable
    if room.expires_at <= now_utc():
        return None
    return room


def save_room(db: FirestoreClient, room: Room) -> None:
    room.updated_at = now_utc()
    db.collection(ROOMS).document(room.room_code).set(room.model_dump())


# ─── Stories ─────────────────────────────────────────────────────────────────
def load_story(db: FirestoreClient, story_id: Optional[str]) -> Optional[Story]:
    if not story_id:
        return None
    snap = db.collection(STORIES).document(story_id).get()
    if not snap.exists:
        return None
    return Story.model_validate(snap.to_dict())


def save_story(db: FirestoreClient, story: Story) -> None:
    story.updated_at = now_utc()
    db.collection(STORIES).document(story.story_id).set(story.model_dump())


def set_story_owner(db: FirestoreClient, story_id: str, user_id: str) -> None:
    db.collection(STORIES).document(story_id).update({
        "user_id":    user_id,
        "updated_at": now_utc(),
    })


def list_user_stories(db: FirestoreClient, user_id: str) -> List[Story]:
    snaps = (
        db.collection(STORIES)
          .where(filter=FieldFilter("user_id", "==", user_id))
          .stream()
    )
    stories = [Story.model_validate(s.to_dict()) for s in snaps]
    return sorted(stories, key=lambda s: s.saved_at, reverse=True)


def find_personal_copy(db: FirestoreClient, user_id: str, room_code: str) -> Optional[Story]:
    snaps = (
        db.collection(STORIES)
          .where(filter=FieldFilter("user_id", "==", user_id))
          .where(filter=FieldFilter("room_code", "==", room_code))
          .where(filter=FieldFilter("is_multiplayer", "==", True))
          .limit(1)
          .stream()
    )
    for doc in snaps:
        return Story.model_validate(doc.to_dict())
    return None


def upsert_personal_copy(db: FirestoreClient, story: Story, user_id: str, room_code: str) -> Story:
    """
    Save ``story`` as ``user_id``'s own copy for ``room_code``, replacing the
    copy saved earlier for the same room if there is one.
    """
    existing = find_personal_copy(db, user_id, room_code)
    now = now_utc()
    copy = story.model_copy(deep=True, update={
        "story_id":       existing.story_id if existing else gen_uuid(),
        "user_id":        user_id,
        "is_multiplayer": True,
        "room_code":      room_code,
        "saved_at":       now,
        "created_at":     existing.created_at if existing else now,
    })
    save_story(db, copy)
    return copy


# ─── Users ───────────────────────────────────────────────────────────────────
def load_usernames(db: FirestoreClient, user_ids: Iterable[str]) -> Dict[str, Optional[str]]:
    names: Dict[str, Optional[str]] = {}
    for uid in dict.fromkeys(user_ids):
        snap = db.collection(USERS).document(uid).get()
        names[uid] = snap.to_dict().get("username") if snap.exists else None
    return names


def find_user_by_email(db: FirestoreClient, email: str) -> Optional[User]:
    snaps = (
        db.collection(USERS)
          .where(filter=FieldFilter("email", "==", email.lower()))
          .limit(1)
          .stream()
    )
    for doc in snaps:
        return User.model_validate(doc.to_dict())
    return None


def load_user(db: FirestoreClient, user_id: str) -> Optional[User]:
    snap = db.collection(USERS).document(user_id).get()
    if not snap.exists:
        return None
    return User.model_validate(snap.to_dict())


def save_user(db: FirestoreClient, user: User) -> None:
    db.collection(USERS).document(user.user_id).set(user.model_dump())


# ─── Progress ────────────────────────────────────────────────────────────────
def load_or_create_progress(db: FirestoreClient, user_id: str) -> UserProgress:
    ref = db.collection(PROGRESS).document(user_id)
    snap = ref.get()
    if snap.exists:
        return UserProgress.model_validate(snap.to_dict())
    progress = UserProgress(user_id=user_id)
    ref.set(progress.model_dump())
    return progress


def save_progress(db: FirestoreClient, progress: UserProgress) -> None:
    progress.last_activity_at = now_utc()
    db.collection(PROGRESS).document(progress.user_id).set(progress.model_dump())
