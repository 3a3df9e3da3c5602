from __future__ import annotations

from models import Story


def test_new_reader_starts_at_level_one(client, make_user, db) -> None:
    resp = client.get("/gamification", headers=make_user("P1"))

    assert resp.status_code == 200
    assert resp.json()["stats"] == {
        "level": 1,
        "xp": 0,
        "xp_to_next_level": 100,
        "stories_completed": 0,
        "choices_made": 0,
        "badges": [],
    }
    assert "P1" in db.docs("user_progress")


def test_update_recomputes_level(client, make_user) -> None:
    headers = make_user("P1")
    badge = {"id": "first-story", "name": "Story Weaver", "description": "Created your first story", "icon": "book"}
    resp = client.post(
        "/gamification",
        json={"updates": {"xp": 250, "choices_made": 12, "badges": [badge]}},
        headers=headers,
    )

    stats = resp.json()["stats"]
    assert stats["level"] == 3
    assert stats["xp_to_next_level"] == 300
    assert stats["choices_made"] == 12
    assert stats["stories_completed"] == 0
    assert [b["id"] for b in stats["badges"]] == ["first-story"]

    resp = client.post("/gamification", json={"updates": {"stories_completed": 1}}, headers=headers)
    assert resp.json()["stats"]["xp"] == 250
    assert len(resp.json()["stats"]["badges"]) == 1


def test_negative_xp_is_rejected(client, make_user) -> None:
    resp = client.post("/gamification", json={"updates": {"xp": -5}}, headers=make_user("P1"))
    assert resp.status_code == 400


def test_dashboard_collects_profile_stories_and_stats(client, make_user, db) -> None:
    headers = make_user("P1")
    story = Story(story_id="s1", user_id="P1", title="Fantasy Adventure", genre="fantasy", content="...")
    db.collection("stories").document("s1").set(story.model_dump())

    body = client.get("/dashboard", headers=headers).json()
    assert body["user"] == {"user_id": "P1", "username": "P1", "email": "p1@example.com"}
    assert [s["story_id"] for s in body["stories"]] == ["s1"]
    assert body["stats"]["level"] == 1


def test_dashboard_requires_login(client) -> None:
    assert client.get("/dashboard").status_code == 401
