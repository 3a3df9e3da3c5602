from pydantic import BaseModel, Field, EmailStr
from typing import List, Optional, Literal, Dict
from datetime import datetime, timezone
import uuid
from enum import Enum

def gen_uuid() -> str:
    return str(uuid.uuid4())

def now_utc() -> datetime:
    """Current moment in UTC with tzinfo."""
    return datetime.now(timezone.utc)

class Genre(str, Enum):
    fantasy = "fantasy"
    scifi = "scifi"
    mystery = "mystery"
    romance = "romance"
    adventure = "adventure"

class GenreInfo(BaseModel):
    id:          Genre
    name:        str
    description: str
    prompt:      str

GENRE_CATALOG: Dict[str, GenreInfo] = {
    g.id.value: g for g in (
        GenreInfo(
            id=Genre.fantasy,
            name="Fantasy",
            description="Epic quests, magic, and mythical worlds",
            prompt="Create an immersive fantasy story opening that draws the reader into a magical world. "
                   "Include vivid descriptions of the setting and introduce an intriguing conflict or mystery.",
        ),
        GenreInfo(
            id=Genre.scifi,
            name="Science Fiction",
            description="Future worlds, technology, and space exploration",
            prompt="Create a compelling sci-fi story opening set in a futuristic world. "
                   "Include advanced technology, interesting world-building, and an engaging premise.",
        ),
        GenreInfo(
            id=Genre.mystery,
            name="Mystery",
            description="Puzzles, secrets, and detective work",
            prompt="Create an intriguing mystery story opening with a compelling puzzle or crime. "
                   "Include atmospheric details and clues that make the reader want to solve it.",
        ),
        GenreInfo(
            id=Genre.romance,
            name="Romance",
            description="Love, relationships, and emotional journeys",
            prompt="Create a romantic story opening that introduces compelling characters and emotional tension.",
        ),
        GenreInfo(
            id=Genre.adventure,
            name="Adventure",
            description="Thrilling journeys and daring exploits",
            prompt="Create an action-packed adventure story opening with high stakes and a sense of urgency.",
        ),
    )
}

def get_genre(genre_id: Optional[str]) -> Optional[GenreInfo]:
    if not genre_id:
        return None
    return GENRE_CATALOG.get(genre_id)

# Neutral trait scores used when a room starts a shared story
DEFAULT_PERSONALITY_TRAITS: Dict[str, int] = {
    "conscientiousness": 50,
    "neuroticism":       50,
    "extraversion":      50,
    "agreeableness":     50,
    "openness":          50,
    "honestyHumility":   50,
}

ChoiceQuality = Literal["excellent", "good", "average", "bad"]

class User(BaseModel):
    user_id:    str = Field(default_factory=gen_uuid)
    email:      EmailStr
    password:   str
    username:   str
    created_at: datetime = Field(default_factory=now_utc)
    last_login: datetime = Field(default_factory=now_utc)

class StoryChoice(BaseModel):
    id:   str
    text: str

class ChoiceEvaluation(BaseModel):
    quality: Optional[ChoiceQuality] = None
    message: Optional[str]           = None

class ChoiceHistoryEntry(BaseModel):
    segment_index: int
    choice_id:     str
    quality:       Optional[ChoiceQuality] = None

class Chapter(BaseModel):
    chapter_index:   int
    content:         str
    choices:         List[StoryChoice]     = Field(default_factory=list)
    selected_choice: Optional[StoryChoice] = None

class StoryCharacter(BaseModel):
    name:             Optional[str] = None
    archetype:        Optional[str] = None
    role:             Optional[str] = None
    description:      Optional[str] = None
    strengths:        List[str] = Field(default_factory=list)
    weaknesses:       List[str] = Field(default_factory=list)
    preferred_genres: List[str] = Field(default_factory=list)

#  Stored story, either the shared room story or a personal saved copy
class Story(BaseModel):
    story_id:             str = Field(default_factory=gen_uuid)
    user_id:              str
    title:                str
    genre:                str
    content:              str
    choices:              List[StoryChoice]        = Field(default_factory=list)
    current_choice_index: int                      = 0
    personality_traits:   Dict[str, int]           = Field(default_factory=dict)
    character:            Optional[StoryCharacter] = None
    is_story_complete:    bool                     = False
    choice_history:       List[ChoiceHistoryEntry] = Field(default_factory=list)
    full_story_content:   List[Chapter]            = Field(default_factory=list)
    is_multiplayer:       bool                     = False
    room_code:            Optional[str]            = None
    saved_at:             datetime                 = Field(default_factory=now_utc)
    created_at:           datetime                 = Field(default_factory=now_utc)
    updated_at:           datetime                 = Field(default_factory=now_utc)

    def find_choice(self, choice_id: str) -> Optional[StoryChoice]:
        return next((c for c in self.choices if c.id == choice_id), None)

# Generator contract
class StoryTurnRequest(BaseModel):
    genre_id:           str
    personality_traits: Dict[str, int]           = Field(default_factory=dict)
    character:          Optional[StoryCharacter] = None
    previous_content:   Optional[str]            = None
    last_choice:        Optional[StoryChoice]    = None
    choice_history:     List[ChoiceHistoryEntry] = Field(default_factory=list)
    is_multiplayer:     bool                     = False

class StoryTurn(BaseModel):
    content:                str
    choices:                List[StoryChoice]          = Field(default_factory=list, max_length=4)
    is_story_complete:      bool                       = False
    last_choice_evaluation: Optional[ChoiceEvaluation] = None

# Reader progress: XP, level and unlocked badges
XP_PER_LEVEL = 100

def level_for_xp(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1

class Badge(BaseModel):
    id:          str
    name:        str
    description: str
    icon:        str
    unlocked_at: Optional[datetime] = None

class UserProgress(BaseModel):
    user_id:           str
    xp:                int         = Field(0, ge=0)
    stories_completed: int         = Field(0, ge=0)
    choices_made:      int         = Field(0, ge=0)
    badges:            List[Badge] = Field(default_factory=list)
    last_activity_at:  datetime    = Field(default_factory=now_utc)

    @property
    def level(self) -> int:
        return level_for_xp(self.xp)

    def stats(self) -> Dict:
        return {
            "level":             self.level,
            "xp":                self.xp,
            "xp_to_next_level":  self.level * XP_PER_LEVEL,
            "stories_completed": self.stories_completed,
            "choices_made":      self.choices_made,
            "badges":            [b.model_dump() for b in self.badges],
        }

class ProgressUpdate(BaseModel):
    xp:                Optional[int]         = Field(None, ge=0)
    stories_completed: Optional[int]         = Field(None, ge=0)
    choices_made:      Optional[int]         = Field(None, ge=0)
    badges:            Optional[List[Badge]] = None

class ProgressUpdateRequest(BaseModel):
    updates: ProgressUpdate
