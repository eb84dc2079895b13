"""
Tests for the asyncpg history store against an in-process stand-in for the pool.
"""
import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import asyncpg
import pytest

from chat_session.domain.errors import SessionNotFoundError, StoreError
from chat_session.infrastructure.repo.postgres_history_repo import PostgresHistoryRepository


class StubConnection:
    def __init__(self, *, status="UPDATE 1", row=None, rows=(), error=None):
        self.status = status
        self.row = row
        self.rows = list(rows)
        self.error = error
        self.executed = []

    def _record(self, sql, args):
        self.executed.append((" ".join(sql.split()), args))
        if self.error is not None:
            raise self.error

    async def execute(self, sql, *args):
        self._record(sql, args)
        return self.status

    async def fetchrow(self, sql, *args):
        self._record(sql, args)
        return self.row

    async def fetch(self, sql, *args):
        self._record(sql, args)
        return self.rows

    async def fetchval(self, sql, *args):
        self._record(sql, args)
        return self.row is not None

    @asynccontextmanager
    async def transaction(self):
        yield


class StubPool:
    def __init__(self, conn):
        self.conn = conn
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield self.conn

    async def close(self):
        self.closed = True


def _repo(**kwargs):
    conn = StubConnection(**kwargs)
    return PostgresHistoryRepository(StubPool(conn)), conn


def _row(session_id, messages):
    at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return {
        "id": session_id,
        "user_id": "u1",
        "title": "Chat",
        "created_at": at,
        "last_message_at": at,
        "messages": json.dumps(messages),
    }


@pytest.mark.anyio
async def test_initialize_creates_schema_and_close_releases_pool():
    repo, conn = _repo()

    await repo.initialize()
    await repo.close()

    assert "CREATE TABLE IF NOT EXISTS chat_sessions" in conn.executed[0][0]
    assert repo.pool.closed is True


@pytest.mark.anyio
async def test_get_session_parses_jsonb_messages():
    sid = uuid.uuid4()
    repo, _ = _repo(row=_row(sid, [
        {"id": str(uuid.uuid4()), "role": "system", "content": "seed", "timestamp": "2024-01-01T00:00:00Z"},
        {"id": str(uuid.uuid4()), "role": "user", "content": "hi", "timestamp": "2024-01-01T00:00:01Z",
         "metadata": {"source": "console"}},
    ]))

    session = await repo.get_session(sid)

    assert session.id == sid
    assert [(t.role, t.content) for t in session.turns] == [("system", "seed"), ("user", "hi")]
    assert session.turns[1].metadata == {"source": "console"}
    assert session.turns[0].timestamp.tzinfo is not None


@pytest.mark.anyio
async def test_get_missing_session_returns_none():
    repo, _ = _repo(row=None)

    assert await repo.get_session(uuid.uuid4()) is None
    assert await repo.session_exists(uuid.uuid4()) is False


@pytest.mark.anyio
async def test_append_turn_moves_past_last_timestamp():
    sid = uuid.uuid4()
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    repo, conn = _repo(row={"messages": json.dumps([
        {"id": str(uuid.uuid4()), "role": "user", "content": "hi", "timestamp": future.isoformat()},
    ])})

    turn = await repo.append_turn(sid, "assistant", "hello", {"model": "m1"})

    assert turn.timestamp == future + timedelta(microseconds=1)
    sql, args = conn.executed[-1]
    assert sql.startswith("UPDATE chat_sessions SET messages = messages || $2::jsonb")
    assert args[0] == sid
    appended = json.loads(args[1])
    assert [(m["role"], m["content"], m["metadata"]) for m in appended] == [("assistant", "hello", {"model": "m1"})]
    assert args[2] == turn.timestamp


@pytest.mark.anyio
async def test_append_to_missing_session_writes_nothing():
    repo, conn = _repo(row=None)

    with pytest.raises(SessionNotFoundError):
        await repo.append_turn(uuid.uuid4(), "user", "hi")

    assert not any(sql.startswith("UPDATE") for sql, _ in conn.executed)


@pytest.mark.anyio
async def test_update_title_touches_title_only():
    sid = uuid.uuid4()
    repo, conn = _repo(status="UPDATE 1")

    await repo.update_title(sid, "Renamed")

    assert conn.executed == [("UPDATE chat_sessions SET title = $2 WHERE id = $1;", (sid, "Renamed"))]


@pytest.mark.anyio
async def test_zero_row_status_means_missing_session():
    repo, _ = _repo(status="UPDATE 0")

    with pytest.raises(SessionNotFoundError):
        await repo.update_title(uuid.uuid4(), "Renamed")


@pytest.mark.anyio
@pytest.mark.parametrize("status, expected", [("DELETE 1", True), ("DELETE 0", False)])
async def test_delete_reports_whether_a_row_was_removed(status, expected):
    repo, _ = _repo(status=status)

    assert await repo.delete_session(uuid.uuid4()) is expected


@pytest.mark.anyio
async def test_list_sessions_passes_owner_and_limit():
    sid = uuid.uuid4()
    repo, conn = _repo(rows=[_row(sid, [])])

    sessions = await repo.list_sessions("u1", limit=5)

    assert [s.id for s in sessions] == [sid]
    assert conn.executed[0][1] == ("u1", 5)


@pytest.mark.anyio
@pytest.mark.parametrize("error", [
    OSError("connection refused"),
    asyncpg.InterfaceError("connection is closed"),
])
async def test_driver_failures_become_store_errors(error):
    repo, _ = _repo(error=error)

    with pytest.raises(StoreError) as exc_info:
        await repo.delete_session(uuid.uuid4())

    assert exc_info.value.__cause__ is error
