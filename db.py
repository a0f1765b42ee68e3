import random
import string
from datetime import datetime

import aiosqlite

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6


class CoupleError(Exception):
    pass


# ---------------- BASE INIT ----------------
async def init_db(db_path: str):
    async with aiosqlite.connect(db_path) as db:
        await db.execute("""
        CREATE TABLE IF NOT EXISTS users(
            tg_id INTEGER PRIMARY KEY,
            username TEXT,
            full_name TEXT,
            created_at TEXT NOT NULL
        )""")

        await db.execute("""
        CREATE TABLE IF NOT EXISTS groups(
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            budget INTEGER NOT NULL DEFAULT 0,
            code TEXT NOT NULL UNIQUE,
            created_by INTEGER NOT NULL,
            is_finalized INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )""")

        await db.execute("""
        CREATE TABLE IF NOT EXISTS group_members(
            group_id INTEGER NOT NULL,
            tg_id INTEGER NOT NULL,
            role TEXT NOT NULL DEFAULT 'member',
            joined_at TEXT NOT NULL,
            PRIMARY KEY (group_id, tg_id)
        )""")

        # member1_id < member2_id
        await db.execute("""
        CREATE TABLE IF NOT EXISTS couples(
            group_id INTEGER NOT NULL,
            member1_id INTEGER NOT NULL,
            member2_id INTEGER NOT NULL,
            PRIMARY KEY (group_id, member1_id, member2_id)
        )""")

        await db.execute("""
        CREATE TABLE IF NOT EXISTS assignments(
            group_id INTEGER NOT NULL,
            giver_id INTEGER NOT NULL,
            receiver_id INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (group_id, giver_id)
        )""")

        await db.commit()


# ---------------- USERS ----------------
async def upsert_user(db_path: str, tg_id: int, username: str | None, full_name: str):
    async with aiosqlite.connect(db_path) as db:
        await db.execute("""
        INSERT INTO users(tg_id, username, full_name, created_at)
        VALUES(?, ?, ?, ?)
        ON CONFLICT(tg_id) DO UPDATE SET
            username=excluded.username,
            full_name=excluded.full_name
        """, (tg_id, username, full_name, datetime.utcnow().isoformat()))
        await db.commit()


async def get_user_label(db_path: str, tg_id: int) -> str:
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute(
            "SELECT username, full_name FROM users WHERE tg_id=?",
            (tg_id,)
        )
        row = await cur.fetchone()

    if not row:
        return str(tg_id)

    username, full_name = row
    return f"{full_name}" + (f" (@{username})" if username else "")


# ---------------- GROUPS ----------------
def make_group_code() -> str:
    return "".join(random.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


async def create_group(
    db_path: str,
    name: str,
    created_by: int,
    budget: int = 0,
    description: str = "",
) -> tuple[int, str]:
    """Создаёт группу, создатель сразу становится админом. -> (id, code)"""
    now = datetime.utcnow().isoformat()
    async with aiosqlite.connect(db_path) as db:
        while True:
            code = make_group_code()
            cur = await db.execute("SELECT 1 FROM groups WHERE code=?", (code,))
            if not await cur.fetchone():
                break

        cur = await db.execute("""
        INSERT INTO groups(name, description, budget, code, created_by, created_at)
        VALUES(?, ?, ?, ?, ?, ?)
        """, (name, description, budget, code, created_by, now))
        group_id = cur.lastrowid

        await db.execute("""
        INSERT INTO group_members(group_id, tg_id, role, joined_at)
        VALUES(?, ?, 'admin', ?)
        """, (group_id, created_by, now))
        await db.commit()

    return group_id, code


async def get_group(db_path: str, group_id: int):
    """-> (id, name, description, budget, code, created_by, is_finalized) | None"""
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute("""
        SELECT id, name, description, budget, code, created_by, is_finalized
        FROM groups WHERE id=?
        """, (group_id,))
        return await cur.fetchone()


async def get_group_by_code(db_path: str, code: str):
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute("""
        SELECT id, name, description, budget, code, created_by, is_finalized
        FROM groups WHERE code=?
        """, (code.strip().upper(),))
        return await cur.fetchone()


async def list_user_groups(db_path: str, tg_id: int):
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute("""
        SELECT g.id, g.name, g.code, m.role
        FROM groups g
        JOIN group_members m ON m.group_id = g.id
        WHERE m.tg_id=?
        ORDER BY g.created_at
        """, (tg_id,))
        return await cur.fetchall()


async def delete_group(db_path: str, group_id: int):
    async with aiosqlite.connect(db_path) as db:
        await db.execute("DELETE FROM assignments WHERE group_id=?", (group_id,))
        await db.execute("DELETE FROM couples WHERE group_id=?", (group_id,))
        await db.execute("DELETE FROM group_members WHERE group_id=?", (group_id,))
        await db.execute("DELETE FROM groups WHERE id=?", (group_id,))
        await db.commit()


# ---------------- MEMBERS ----------------
async def join_group(db_path: str, group_id: int, tg_id: int) -> bool:
    """False — если уже в группе."""
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute("""
        INSERT OR IGNORE INTO group_members(group_id, tg_id, role, joined_at)
        VALUES(?, ?, 'member', ?)
        """, (group_id, tg_id, datetime.utcnow().isoformat()))
        await db.commit()
        return cur.rowcount > 0


async def leave_group(db_path: str, group_id: int, tg_id: int) -> bool:
    """False — если и не был в группе. Тогда ничего не трогаем."""
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute(
            "DELETE FROM group_members WHERE group_id=? AND tg_id=?",
            (group_id, tg_id)
        )
        if cur.rowcount == 0:
            return False

        await db.execute(
            "DELETE FROM couples WHERE group_id=? AND (member1_id=? OR member2_id=?)",
            (group_id, tg_id, tg_id)
        )
        # без участника старое распределение уже не биекция — сносим целиком
        await db.execute("DELETE FROM assignments WHERE group_id=?", (group_id,))
        await db.execute("UPDATE groups SET is_finalized=0 WHERE id=?", (group_id,))

        # ушёл последний админ — админом становится самый ранний участник
        cur = await db.execute(
            "SELECT 1 FROM group_members WHERE group_id=? AND role='admin'",
            (group_id,)
        )
        if not await cur.fetchone():
            await db.execute("""
            UPDATE group_members SET role='admin'
            WHERE group_id=? AND tg_id=(
                SELECT tg_id FROM group_members
                WHERE group_id=?
                ORDER BY joined_at, tg_id
                LIMIT 1
            )
            """, (group_id, group_id))

        await db.commit()
        return True


async def get_group_member_ids(db_path: str, group_id: int) -> list[int]:
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute("""
        SELECT tg_id FROM group_members
        WHERE group_id=?
        ORDER BY joined_at, tg_id
        """, (group_id,))
        return [r[0] for r in await cur.fetchall()]


async def get_group_members(db_path: str, group_id: int):
    """-> [(tg_id, username, full_name, role)]"""
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute("""
        SELECT m.tg_id, u.username, u.full_name, m.role
        FROM group_members m
        LEFT JOIN users u ON u.tg_id = m.tg_id
        WHERE m.group_id=?
        ORDER BY m.joined_at, m.tg_id
        """, (group_id,))
        return await cur.fetchall()


async def is_group_member(db_path: str, group_id: int, tg_id: int) -> bool:
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute(
            "SELECT 1 FROM group_members WHERE group_id=? AND tg_id=?",
            (group_id, tg_id)
        )
        return await cur.fetchone() is not None


async def is_group_admin(db_path: str, group_id: int, tg_id: int) -> bool:
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute(
            "SELECT role FROM group_members WHERE group_id=? AND tg_id=?",
            (group_id, tg_id)
        )
        row = await cur.fetchone()
        return bool(row) and row[0] == "admin"


async def find_member_by_username(db_path: str, group_id: int, username: str) -> int | None:
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute("""
        SELECT m.tg_id
        FROM group_members m
        JOIN users u ON u.tg_id = m.tg_id
        WHERE m.group_id=? AND lower(u.username)=lower(?)
        """, (group_id, username.lstrip("@")))
        row = await cur.fetchone()
        return row[0] if row else None


# ---------------- COUPLES ----------------
async def add_couple(db_path: str, group_id: int, member1_id: int, member2_id: int) -> bool:
    """True — если пришлось сбросить уже проведённую жеребьёвку."""
    if member1_id == member2_id:
        raise CoupleError("Нельзя быть парой самому себе")

    a, b = sorted((member1_id, member2_id))
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute(
            "SELECT COUNT(*) FROM group_members WHERE group_id=? AND tg_id IN (?, ?)",
            (group_id, a, b)
        )
        (cnt,) = await cur.fetchone()
        if cnt != 2:
            raise CoupleError("Оба участника должны быть в группе")

        cur = await db.execute("""
        SELECT 1 FROM couples
        WHERE group_id=? AND (member1_id IN (?, ?) OR member2_id IN (?, ?))
        """, (group_id, a, b, a, b))
        if await cur.fetchone():
            raise CoupleError("Кто-то из них уже в паре")

        await db.execute(
            "INSERT INTO couples(group_id, member1_id, member2_id) VALUES(?,?,?)",
            (group_id, a, b)
        )
        # старое распределение могло нарушить новую пару
        cur = await db.execute("DELETE FROM assignments WHERE group_id=?", (group_id,))
        await db.execute("UPDATE groups SET is_finalized=0 WHERE id=?", (group_id,))
        await db.commit()
        return cur.rowcount > 0


async def remove_couple(db_path: str, group_id: int, member1_id: int, member2_id: int) -> bool:
    a, b = sorted((member1_id, member2_id))
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute(
            "DELETE FROM couples WHERE group_id=? AND member1_id=? AND member2_id=?",
            (group_id, a, b)
        )
        await db.commit()
        return cur.rowcount > 0


async def get_couples(db_path: str, group_id: int) -> list[tuple[int, int]]:
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute(
            "SELECT member1_id, member2_id FROM couples WHERE group_id=?",
            (group_id,)
        )
        return [tuple(r) for r in await cur.fetchall()]


# ---------------- ASSIGNMENTS ----------------
async def replace_assignments(db_path: str, group_id: int, pairs: list[tuple[int, int]]):
    """Старое распределение группы заменяется целиком, одной транзакцией."""
    now = datetime.utcnow().isoformat()
    async with aiosqlite.connect(db_path) as db:
        try:
            await db.execute("DELETE FROM assignments WHERE group_id=?", (group_id,))
            await db.executemany(
                "INSERT INTO assignments(group_id, giver_id, receiver_id, created_at) VALUES(?,?,?,?)",
                [(group_id, g, r, now) for g, r in pairs]
            )
            await db.execute("UPDATE groups SET is_finalized=1 WHERE id=?", (group_id,))
            await db.commit()
        except Exception:
            await db.rollback()
            raise


async def get_assignments(db_path: str, group_id: int) -> list[tuple[int, int]]:
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute(
            "SELECT giver_id, receiver_id FROM assignments WHERE group_id=? ORDER BY giver_id",
            (group_id,)
        )
        return [tuple(r) for r in await cur.fetchall()]


async def get_receiver_for_giver(db_path: str, group_id: int, giver_id: int):
    async with aiosqlite.connect(db_path) as db:
        cur = await db.execute(
            "SELECT receiver_id FROM assignments WHERE group_id=? AND giver_id=?",
            (group_id, giver_id)
        )
        row = await cur.fetchone()
        return row[0] if row else None
