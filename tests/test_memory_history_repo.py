"""
Tests for the in-memory history store contract.
"""
import uuid

import pytest

from chat_session.domain.errors import InputValidationError, SessionNotFoundError


@pytest.mark.anyio
async def test_create_and_get_returns_snapshot(repo):
    session = await repo.create_session("u1", "First")
    loaded = await repo.get_session(session.id)

    assert loaded.id == session.id
    assert loaded.user_id == "u1"
    assert loaded.title == "First"
    assert loaded.turns == []

    # Mutating a snapshot never touches stored state
    loaded.title = "changed"
    loaded.turns.append(object())
    again = await repo.get_session(session.id)
    assert again.title == "First"
    assert again.turns == []


@pytest.mark.anyio
async def test_get_missing_session_returns_none(repo):
    assert await repo.get_session(uuid.uuid4()) is None
    assert await repo.session_exists(uuid.uuid4()) is False


@pytest.mark.anyio
async def test_append_turn_moves_last_message_at(repo):
    session = await repo.create_session("u1", "t")
    turn = await repo.append_turn(session.id, "system", "seed")

    loaded = await repo.get_session(session.id)
    assert loaded.turns == [turn]
    assert loaded.last_message_at == turn.timestamp


@pytest.mark.anyio
async def test_append_turn_timestamps_strictly_increase(repo):
    session = await repo.create_session("u1", "t")
    turns = [await repo.append_turn(session.id, "user", str(i)) for i in range(20)]

    stamps = [t.timestamp for t in turns]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


@pytest.mark.anyio
async def test_append_turn_to_missing_session_raises(repo):
    with pytest.raises(SessionNotFoundError):
        await repo.append_turn(uuid.uuid4(), "user", "hello")


@pytest.mark.anyio
async def test_append_turn_metadata_is_detached_and_validated(repo):
    session = await repo.create_session("u1", "t")
    meta = {"source": "cli", "tags": ["a", {"nested": 1}]}
    turn = await repo.append_turn(session.id, "user", "hi", metadata=meta)

    meta["tags"].append("late")
    loaded = await repo.get_session(session.id)
    assert loaded.turns[0].metadata == {"source": "cli", "tags": ["a", {"nested": 1}]}
    assert turn.metadata == loaded.turns[0].metadata

    with pytest.raises(InputValidationError):
        await repo.append_turn(session.id, "user", "hi", metadata={"bad": object()})
    assert len((await repo.get_session(session.id)).turns) == 1


@pytest.mark.anyio
async def test_list_sessions_most_recent_first(repo):
    a = await repo.create_session("u1", "a")
    b = await repo.create_session("u1", "b")
    c = await repo.create_session("u1", "c")
    await repo.create_session("u2", "other owner")

    await repo.append_turn(b.id, "user", "x")
    await repo.append_turn(a.id, "user", "y")

    sessions = await repo.list_sessions("u1")
    assert [s.id for s in sessions] == [a.id, b.id, c.id]

    limited = await repo.list_sessions("u1", limit=2)
    assert [s.id for s in limited] == [a.id, b.id]


@pytest.mark.anyio
async def test_update_session_overwrites_mutable_fields_only(repo):
    session = await repo.create_session("u1", "old")
    await repo.append_turn(session.id, "system", "seed")

    loaded = await repo.get_session(session.id)
    loaded.title = "new"
    loaded.user_id = "someone-else"
    await repo.update_session(loaded)

    stored = await repo.get_session(session.id)
    assert stored.title == "new"
    assert stored.user_id == "u1"
    assert stored.created_at == session.created_at
    assert [t.content for t in stored.turns] == ["seed"]


@pytest.mark.anyio
async def test_update_missing_session_raises(repo):
    session = await repo.create_session("u1", "t")
    await repo.delete_session(session.id)
    with pytest.raises(SessionNotFoundError):
        await repo.update_session(session)


@pytest.mark.anyio
async def test_delete_is_idempotent(repo):
    session = await repo.create_session("u1", "t")

    assert await repo.delete_session(session.id) is True
    assert await repo.delete_session(session.id) is False
    assert await repo.session_exists(session.id) is False
    assert await repo.get_session(session.id) is None


@pytest.mark.anyio
async def test_update_title_leaves_turns_and_activity_alone(repo):
    session = await repo.create_session("u1", "Chat")
    turn = await repo.append_turn(session.id, "user", "hello")

    await repo.update_title(session.id, "Renamed")

    stored = await repo.get_session(session.id)
    assert stored.title == "Renamed"
    assert [t.id for t in stored.turns] == [turn.id]
    assert stored.last_message_at == turn.timestamp

    with pytest.raises(SessionNotFoundError):
        await repo.update_title(uuid.uuid4(), "x")
