from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from datetime import datetime, timedelta
from enum import Enum
from models import ChoiceEvaluation, now_utc

ROOM_TTL = timedelta(hours=24)
MAX_CHAT_MESSAGES = 100
MAX_CHAT_LENGTH = 500

class RoomStatus(str, Enum):
    waiting      = "waiting"
    voting_genre = "voting-genre"
    playing      = "playing"
    completed    = "completed"

class ChatMessage(BaseModel):
    user_id:   str
    username:  str
    message:   str
    timestamp: datetime = Field(default_factory=now_utc)

def _expiry() -> datetime:
    return now_utc() + ROOM_TTL

class Room(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    room_code:              str
    host_id:                 str
    host_active:             bool                   = True
    participants:            List[str]              = Field(default_factory=list)
    blocked_rejoin_users:    List[str]              = Field(default_factory=list)
    status:                  RoomStatus             = RoomStatus.waiting
    genre_votes:             Dict[str, List[str]]   = Field(default_factory=dict)
    selected_genre:          Optional[str]          = None
    story_id:                Optional[str]          = None
    choice_votes:            Dict[str, List[str]]   = Field(default_factory=dict)
    current_choice_index:    int                    = 0
    is_processing:           bool                   = False
    last_choice_evaluation:  ChoiceEvaluation       = Field(default_factory=ChoiceEvaluation)
    tied_choices_for_voting: List[str]              = Field(default_factory=list)
    messages:                List[ChatMessage]      = Field(default_factory=list)
    new_host_notification:   Optional[str]          = None
    created_at:              datetime               = Field(default_factory=now_utc)
    updated_at:              datetime               = Field(default_factory=now_utc)
    # Firestore TTL policy field
    expires_at:              datetime               = Field(default_factory=_expiry)

    def is_host(self, user_id: str) -> bool:
        return self.host_id == user_id

    def is_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def is_member(self, user_id: str) -> bool:
        return self.is_host(user_id) or self.is_participant(user_id)

    def member_ids(self) -> List[str]:
        """Host first, then participants, without duplicates."""
        return list(dict.fromkeys([self.host_id, *self.participants]))

# ─── Request payloads ────────────────────────────────────────────────────────
class JoinRoomRequest(BaseModel):
    room_code: str = Field(..., min_length=1)

class GenreVoteRequest(BaseModel):
    genre_id: str = Field(..., min_length=1)

class ChoiceVoteRequest(BaseModel):
    choice_id: str = Field(..., min_length=1)

class StartStoryRequest(BaseModel):
    selected_genre: Optional[str] = None

class ProcessChoiceRequest(BaseModel):
    selected_choice_id: Optional[str] = None

class TransferHostRequest(BaseModel):
    new_host_id: Optional[str] = None

class LeaveRoomRequest(BaseModel):
    save_and_exit: bool = False

class ChatSendRequest(BaseModel):
    message: str
