from __future__ import annotations

import copy
import itertools
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from main import app
from models import StoryChoice, StoryTurn, StoryTurnRequest, User
from routes.auth_routes import create_jwt
from utils.ai_utils import StoryGenerationError, get_story_generator
from utils.firebase import get_db


# ─── In-memory Firestore double ────────────────────────────────────────────────
class FakeSnapshot:
    def __init__(self, ref: "FakeDocumentRef", data: Optional[dict]):
        self.reference = ref
        self.id = ref.id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[dict]:
        return copy.deepcopy(self._data)


class FakeDocumentRef:
    def __init__(self, store: Dict[str, dict], doc_id: str):
        self._store = store
        self.id = doc_id

    def get(self) -> FakeSnapshot:
        return FakeSnapshot(self, self._store.get(self.id))

    def set(self, data: dict, merge: bool = False) -> None:
        if merge and self.id in self._store:
            self._store[self.id].update(copy.deepcopy(data))
        else:
            self._store[self.id] = copy.deepcopy(data)

    def update(self, data: dict) -> None:
        if self.id not in self._store:
            raise KeyError(f"No document to update: {self.id}")
        self._store[self.id].update(copy.deepcopy(data))

    def delete(self) -> None:
        self._store.pop(self.id, None)


class FakeQuery:
    def __init__(self, store: Dict[str, dict], filters=(), limit: Optional[int] = None):
        self._store = store
        self._filters = list(filters)
        self._limit = limit

    def where(self, field_path=None, op_string=None, value=None, *, filter=None) -> "FakeQuery":
        if filter is not None:
            field_path, op_string, value = filter.field_path, filter.op_string, filter.value
        assert op_string == "==", "only equality filters are supported"
        return FakeQuery(self._store, [*self._filters, (field_path, value)], self._limit)

    def limit(self, count: int) -> "FakeQuery":
        return FakeQuery(self._store, self._filters, count)

    def stream(self):
        matches = [
            FakeSnapshot(FakeDocumentRef(self._store, doc_id), data)
            for doc_id, data in list(self._store.items())
            if all(data.get(f) == v for f, v in self._filters)
        ]
        return iter(matches[: self._limit] if self._limit is not None else matches)


class FakeCollection(FakeQuery):
    _ids = itertools.count(1)

    def document(self, doc_id: Optional[str] = None) -> FakeDocumentRef:
        return FakeDocumentRef(self._store, doc_id or f"doc-{next(self._ids)}")


class FakeFirestore:
    def __init__(self):
        self.collections: Dict[str, Dict[str, dict]] = {}

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self.collections.setdefault(name, {}))

    def docs(self, name: str) -> Dict[str, dict]:
        return self.collections.get(name, {})


# ─── Story generator double ────────────────────────────────────────────────────
def make_turn(
    content: str = "You stand at a crossroads.",
    choice_ids: tuple = ("c1", "c2", "c3"),
    complete: bool = False,
    quality: Optional[str] = None,
) -> StoryTurn:
    data: Dict[str, Any] = {
        "content": content,
        "choices": [] if complete else [{"id": cid, "text": f"Take path {cid}"} for cid in choice_ids],
        "is_story_complete": complete,
    }
    if quality:
        data["last_choice_evaluation"] = {"quality": quality, "message": f"That was {quality}."}
    return StoryTurn.model_validate(data)


class FakeGenerator:
    """Returns queued turns in order, then repeats the default opening."""

    def __init__(self):
        self.requests: List[StoryTurnRequest] = []
        self.turns: List[StoryTurn] = []
        self.fail = False

    def queue(self, *turns: StoryTurn) -> None:
        self.turns.extend(turns)

    def __call__(self, req: StoryTurnRequest) -> StoryTurn:
        self.requests.append(req)
        if self.fail:
            raise StoryGenerationError("model unavailable")
        if self.turns:
            return self.turns.pop(0)
        return make_turn()


# ─── Fixtures ──────────────────────────────────────────────────────────────────
@pytest.fixture
def db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def client(db: FakeFirestore, generator: FakeGenerator):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_story_generator] = lambda: generator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db: FakeFirestore) -> Callable[[str], Dict[str, str]]:
    """Store a user and return its bearer headers; the user id equals the name."""

    def _make(name: str) -> Dict[str, str]:
        user = User(user_id=name, email=f"{name.lower()}@example.com", password="x", username=name)
        db.collection("users").document(user.user_id).set(user.model_dump())
        return {"Authorization": f"Bearer {create_jwt(user.user_id)}"}

    return _make


@pytest.fixture
def playing_room(client: TestClient, make_user) -> Callable[..., Dict[str, Any]]:
    """Build a room in the playing state with host H and the given participants."""

    def _build(*participants: str) -> Dict[str, Any]:
        headers = {"H": make_user("H")}
        code = client.post("/rooms/create", headers=headers["H"]).json()["room"]["room_code"]
        for name in participants:
            headers[name] = make_user(name)
            assert client.post("/rooms/join", json={"room_code": code}, headers=headers[name]).status_code == 200
        for name, h in headers.items():
            assert client.post(f"/rooms/{code}/vote-genre", json={"genre_id": "fantasy"}, headers=h).status_code == 200
        started = client.post(f"/rooms/{code}/start-story", headers=headers["H"])
        assert started.status_code == 200, started.json()
        return {"code": code, "headers": headers}

    return _build
