import os
import logging
from functools import lru_cache
from typing import Callable, List, Dict

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from models import (
    ChoiceHistoryEntry, StoryTurn, StoryTurnRequest, get_genre,
)

logger = logging.getLogger(__name__)

AI_MODEL = os.getenv("AI_MODEL", "gpt-4o-mini")
MAX_CHAPTERS = 10

StoryGenerator = Callable[[StoryTurnRequest], StoryTurn]


class StoryGenerationError(RuntimeError):
    pass


@lru_cache(maxsize=1)
def get_client() -> OpenAI:
    return OpenAI(api_key=os.getenv("OPENAI_API_KEY"))


# Common wrapper for any chat request
def chat_with_model(
    messages: List[dict],
    model: str = AI_MODEL,
    max_tokens: int = 900,
    temperature: float = 0.8,
    json_mode: bool = False,
) -> str:
    extra = {"response_format": {"type": "json_object"}} if json_mode else {}
    resp = get_client().chat.completions.create(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        **extra,
    )
    return (resp.choices[0].message.content or "").strip()


def _quality_summary(history: List[ChoiceHistoryEntry]) -> str:
    counts: Dict[str, int] = {"excellent": 0, "good": 0, "average": 0, "bad": 0}
    for entry in history:
        if entry.quality in counts:
            counts[entry.quality] += 1
    return ", ".join(f"{k}={v}" for k, v in counts.items())


def should_force_complete(history: List[ChoiceHistoryEntry]) -> bool:
    return len(history) >= MAX_CHAPTERS - 1


def build_story_prompt(req: StoryTurnRequest) -> List[dict]:
    genre = get_genre(req.genre_id)
    if genre is None:
        raise StoryGenerationError(f"Invalid genre: {req.genre_id}")

    chapter = len(req.choice_history) + 1
    remaining = max(0, MAX_CHAPTERS - chapter)
    traits = ", ".join(f"{k}: {v}" for k, v in req.personality_traits.items())
    history = "; ".join(
        f"Step {h.segment_index + 1}: choice {h.choice_id}" + (f" ({h.quality})" if h.quality else "")
        for h in req.choice_history
    )

    system_msg = (
        f"You are an interactive story engine for a {genre.name.lower()} narrative. "
        "Use simple, clear English and short sentences. "
        "Return ONLY a JSON object with keys: content (string), choices (list of {id, text}, 2-4 items, "
        "empty when the story is complete), is_story_complete (bool), and, when a last choice is given, "
        "last_choice_evaluation ({quality: excellent|good|average|bad, message})."
    )
    parts: List[str] = [
        f"Personality traits (0-100): {traits or 'balanced and adaptable'}",
        f"Choice history so far: {history or 'no previous choices yet'}",
        f"Choice quality summary: {_quality_summary(req.choice_history)}",
        "",
    ]
    if req.character and req.character.name:
        parts.append(f"The reader's avatar: {req.character.name}, {req.character.archetype or ''} "
                     f"{req.character.role or ''}. {req.character.description or ''}")
    if req.previous_content:
        parts += ["Previous story content:", req.previous_content, ""]
    else:
        parts += [genre.prompt, ""]
    if req.last_choice:
        parts.append(
            f"The reader just chose '{req.last_choice.text}' (id: {req.last_choice.id}). "
            "Evaluate how strong or risky this decision was and continue accordingly."
        )
    if req.is_multiplayer:
        parts.append('Write in SECOND PERSON ("you", "your"). The readers share the main character.')
    else:
        parts.append("Continue the story using the avatar as the main character.")

    parts.append(f"You are writing chapter {chapter} of at most {MAX_CHAPTERS}; {remaining} remain after it.")
    if should_force_complete(req.choice_history):
        parts.append("This is the FINAL chapter: set is_story_complete to true and conclude every plot thread.")
    else:
        parts.append("Complete the story early only if it reaches a natural ending.")
    parts.append("Many bad choices should lead to a darker ending; good choices may earn a hopeful one.")

    return [
        {"role": "system", "content": system_msg},
        {"role": "user",   "content": "\n".join(parts)},
    ]


def generate_story_turn(req: StoryTurnRequest) -> StoryTurn:
    """
    Ask the model for the next story step. Any transport or parsing failure
    is raised as ``StoryGenerationError``.
    """
    messages = build_story_prompt(req)
    try:
        raw = chat_with_model(messages, json_mode=True)
        turn = StoryTurn.model_validate_json(raw)
    except (OpenAIError, ValidationError) as e:
        logger.exception("Story generation failed for genre %s", req.genre_id)
        raise StoryGenerationError(str(e)) from e

    if should_force_complete(req.choice_history):
        turn.is_story_complete = True
    if turn.is_story_complete:
        turn.choices = []
    return turn


def get_story_generator() -> StoryGenerator:
    return generate_story_turn
