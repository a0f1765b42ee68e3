import asyncio
import logging
import random
import weakref

from db import (
    add_couple,
    delete_group,
    get_couples,
    get_group_member_ids,
    leave_group,
    replace_assignments,
)
from logic import MAX_ATTEMPTS, GenerationFailure, generate_assignments

logger = logging.getLogger(__name__)

# не больше одной операции над составом/парами/жеребьёвкой группы одновременно
_DRAW_LOCKS: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


def _draw_lock(group_id: int) -> asyncio.Lock:
    lock = _DRAW_LOCKS.get(group_id)
    if lock is None:
        lock = asyncio.Lock()
        _DRAW_LOCKS[group_id] = lock
    return lock


async def run_draw(
    db_path: str,
    group_id: int,
    rng: random.Random | None = None,
    max_attempts: int = MAX_ATTEMPTS,
) -> list[tuple[int, int]]:
    async with _draw_lock(group_id):
        members = await get_group_member_ids(db_path, group_id)
        couples = await get_couples(db_path, group_id)

        try:
            pairs = generate_assignments(members, couples, rng=rng, max_attempts=max_attempts)
        except GenerationFailure as e:
            logger.warning(
                "Draw failed for group %s (%d members, %d couples): %s",
                group_id, len(members), len(couples), e,
            )
            raise

        await replace_assignments(db_path, group_id, pairs)
        logger.info("Draw done for group %s: %d pairs", group_id, len(pairs))
        return pairs


async def run_leave(db_path: str, group_id: int, tg_id: int) -> bool:
    async with _draw_lock(group_id):
        left = await leave_group(db_path, group_id, tg_id)
    if left:
        logger.info("User %s left group %s, draw reset", tg_id, group_id)
    return left


async def run_add_couple(db_path: str, group_id: int, member1_id: int, member2_id: int) -> bool:
    async with _draw_lock(group_id):
        reset = await add_couple(db_path, group_id, member1_id, member2_id)
    logger.info("Couple (%s, %s) in group %s, draw reset: %s", member1_id, member2_id, group_id, reset)
    return reset


async def run_delete_group(db_path: str, group_id: int):
    async with _draw_lock(group_id):
        await delete_group(db_path, group_id)
    _DRAW_LOCKS.pop(group_id, None)
    logger.info("Group %s deleted", group_id)
