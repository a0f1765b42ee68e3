import asyncio

import pytest

import santa_jobs
from db import init_db, upsert_user


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    asyncio.run(init_db(path))
    return path


@pytest.fixture
def users(db_path):
    people = [
        (1, "alice", "Alice"),
        (2, "bob", "Bob"),
        (3, "carol", "Carol"),
        (4, "dave", "Dave"),
    ]

    async def _add():
        for tg_id, username, full_name in people:
            await upsert_user(db_path, tg_id, username, full_name)

    asyncio.run(_add())
    return [p[0] for p in people]


@pytest.fixture(autouse=True)
def fresh_draw_locks():
    # каждый asyncio.run — новый event loop
    santa_jobs._DRAW_LOCKS.clear()
    yield
    santa_jobs._DRAW_LOCKS.clear()
