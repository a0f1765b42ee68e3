import os
import asyncio
import logging

from aiogram import Bot, Dispatcher, F
from aiogram.filters import CommandStart, Command, CommandObject
from aiogram.types import Message, CallbackQuery
from dotenv import load_dotenv

from db import (
    CoupleError,
    init_db,
    upsert_user,
    get_user_label,
    create_group,
    get_group,
    get_group_by_code,
    list_user_groups,
    join_group,
    get_group_members,
    is_group_member,
    is_group_admin,
    find_member_by_username,
    remove_couple,
    get_receiver_for_giver,
)
from logic import InvalidInput, Unsatisfiable
from santa_jobs import run_draw, run_leave, run_add_couple, run_delete_group
from keyboards import user_menu, group_menu

logger = logging.getLogger(__name__)

# ---------------- ENV ----------------
load_dotenv()

BOT_TOKEN = os.getenv("BOT_TOKEN")
DB_PATH = os.getenv("DB_PATH", "bot.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DRAW_MAX_ATTEMPTS = int(os.getenv("DRAW_MAX_ATTEMPTS", "100"))

if not BOT_TOKEN:
    raise RuntimeError("Заполни .env")

# ---------------- CORE ----------------
bot = Bot(BOT_TOKEN)
dp = Dispatcher()


# ---------------- UTILS ----------------
async def group_from_code(message: Message, command: CommandObject):
    """Первый аргумент команды — код группы. Сам отвечает, если что-то не так."""
    if not command.args:
        await message.answer(f"❗ Формат: /{command.command} КОД")
        return None

    group = await get_group_by_code(DB_PATH, command.args.split()[0])
    if not group:
        await message.answer("❌ Нет группы с таким кодом")
        return None
    return group


async def groups_text(tg_id: int) -> str:
    groups = await list_user_groups(DB_PATH, tg_id)
    if not groups:
        return "Ты пока не состоишь ни в одной группе."

    lines = [f"• {name} [{code}]" + (" 👑" if role == "admin" else "") for _, name, code, role in groups]
    return "🎄 Твои группы:\n\n" + "\n".join(lines)


async def members_text(group_id: int, user_id: int) -> str:
    if not await is_group_member(DB_PATH, group_id, user_id):
        return "⛔ Список видят только участники группы"

    members = await get_group_members(DB_PATH, group_id)
    lines = []
    for tg_id, username, full_name, role in members:
        line = f"• {full_name or tg_id}"
        if username:
            line += f" (@{username})"
        if role == "admin":
            line += " 👑"
        lines.append(line)
    return "👥 Участники:\n\n" + "\n".join(lines)


async def draw_for(group_id: int, user_id: int) -> str:
    if not await is_group_admin(DB_PATH, group_id, user_id):
        return "⛔ Жеребьёвку проводит только админ группы"

    try:
        pairs = await run_draw(DB_PATH, group_id, max_attempts=DRAW_MAX_ATTEMPTS)
    except InvalidInput:
        return "⛔ Нужно минимум 2 участника."
    except Unsatisfiable as e:
        if not e.solvable:
            return "❌ С такими парочками пары не составить — проверь настройки пар."
        return "⚠️ Не повезло с перемешиванием, попробуй ещё раз."

    return f"✅ Жеребьёвка проведена: {len(pairs)} пар. Каждый может посмотреть своего подопечного."


async def receiver_text(group_id: int, user_id: int) -> str:
    child_id = await get_receiver_for_giver(DB_PATH, group_id, user_id)
    if not child_id:
        return "🎅 Жеребьёвки ещё не было."

    label = await get_user_label(DB_PATH, child_id)
    return f"🎁 Твой подопечный:\n{label}\n\nНикому не рассказывай 😉"


# ---------------- START ----------------
@dp.message(CommandStart())
async def start_cmd(message: Message):
    if message.chat.type != "private":
        await message.answer("👋 Напиши мне в личку, чтобы участвовать в игре 🙂")
        return

    await upsert_user(
        DB_PATH,
        message.from_user.id,
        message.from_user.username,
        message.from_user.full_name or "",
    )

    await message.answer(
        "✅ Ты зарегистрирован\n\n"
        "/new_group Название [бюджет] — создать группу\n"
        "/join КОД — вступить в группу",
        reply_markup=user_menu(),
    )


@dp.message(Command("menu"))
async def menu_cmd(message: Message):
    await message.answer("Меню:", reply_markup=user_menu())


# ---------------- GROUPS ----------------
@dp.message(Command("new_group"))
async def new_group_cmd(message: Message, command: CommandObject):
    if not command.args:
        await message.answer("❗ Формат: /new_group Название [бюджет]")
        return

    name, budget = command.args.strip(), 0
    head, _, tail = name.rpartition(" ")
    if head and tail.isdigit():
        name, budget = head, int(tail)

    await upsert_user(
        DB_PATH,
        message.from_user.id,
        message.from_user.username,
        message.from_user.full_name or "",
    )
    group_id, code = await create_group(DB_PATH, name, message.from_user.id, budget=budget)
    logger.info("Group %s (%s) created by %s", group_id, code, message.from_user.id)

    await message.answer(
        f"✅ Группа «{name}» создана\n"
        f"💰 Бюджет: {budget}\n"
        f"🔑 Код для приглашения: {code}",
        reply_markup=group_menu(group_id, True),
    )


@dp.message(Command("join"))
async def join_cmd(message: Message, command: CommandObject):
    group = await group_from_code(message, command)
    if not group:
        return

    await upsert_user(
        DB_PATH,
        message.from_user.id,
        message.from_user.username,
        message.from_user.full_name or "",
    )
    if not await join_group(DB_PATH, group[0], message.from_user.id):
        await message.answer("ℹ️ Ты уже в этой группе")
        return

    logger.info("User %s joined group %s", message.from_user.id, group[0])
    await message.answer(
        f"✅ Ты в группе «{group[1]}»",
        reply_markup=group_menu(group[0], False),
    )


@dp.message(Command("leave"))
async def leave_cmd(message: Message, command: CommandObject):
    group = await group_from_code(message, command)
    if not group:
        return

    if not await run_leave(DB_PATH, group[0], message.from_user.id):
        await message.answer("ℹ️ Ты не в этой группе")
        return

    await message.answer("❌ Ты вышел из группы. Жеребьёвку нужно провести заново.")


@dp.message(Command("delete_group"))
async def delete_group_cmd(message: Message, command: CommandObject):
    group = await group_from_code(message, command)
    if not group:
        return

    if not await is_group_admin(DB_PATH, group[0], message.from_user.id):
        await message.answer("⛔ Нет доступа")
        return

    await run_delete_group(DB_PATH, group[0])
    await message.answer("🧹 Группа удалена")


@dp.message(Command("groups"))
async def groups_cmd(message: Message):
    await message.answer(await groups_text(message.from_user.id))


@dp.callback_query(F.data == "my_groups")
async def my_groups(call: CallbackQuery):
    groups = await list_user_groups(DB_PATH, call.from_user.id)
    if not groups:
        await call.message.answer("Ты пока не состоишь ни в одной группе.")
        return

    for group_id, name, code, role in groups:
        await call.message.answer(
            f"🎄 {name} [{code}]",
            reply_markup=group_menu(group_id, role == "admin"),
        )


@dp.message(Command("members"))
async def members_cmd(message: Message, command: CommandObject):
    group = await group_from_code(message, command)
    if group:
        await message.answer(await members_text(group[0], message.from_user.id))


@dp.callback_query(F.data.startswith("members:"))
async def members_cb(call: CallbackQuery):
    group_id = int(call.data.split(":", 1)[1])
    await call.message.answer(await members_text(group_id, call.from_user.id))


# ---------------- COUPLES ----------------
@dp.message(Command("couple", "uncouple"))
async def couple_cmd(message: Message, command: CommandObject):
    args = (command.args or "").split()
    if len(args) != 3:
        await message.answer(f"❗ Формат: /{command.command} КОД @user1 @user2")
        return

    group = await group_from_code(message, command)
    if not group:
        return

    group_id = group[0]
    if not await is_group_admin(DB_PATH, group_id, message.from_user.id):
        await message.answer("⛔ Парочки задаёт только админ группы")
        return

    ids = [await find_member_by_username(DB_PATH, group_id, u) for u in args[1:]]
    if None in ids:
        await message.answer("❌ Оба должны быть участниками группы (и иметь @username)")
        return

    if command.command == "uncouple":
        removed = await remove_couple(DB_PATH, group_id, *ids)
        await message.answer("✅ Пара удалена" if removed else "ℹ️ Такой пары нет")
        return

    try:
        reset = await run_add_couple(DB_PATH, group_id, *ids)
    except CoupleError as e:
        await message.answer(f"❌ {e}")
        return

    text = "💞 Пара сохранена — друг другу они дарить не будут"
    if reset:
        text += "\n\n🔄 Старая жеребьёвка сброшена, проведи её заново: /draw " + group[4]
    await message.answer(text)


# ---------------- SANTA ----------------
@dp.message(Command("draw"))
async def draw_cmd(message: Message, command: CommandObject):
    group = await group_from_code(message, command)
    if group:
        await message.answer(await draw_for(group[0], message.from_user.id))


@dp.callback_query(F.data.startswith("draw:"))
async def draw_cb(call: CallbackQuery):
    group_id = int(call.data.split(":", 1)[1])
    if not await get_group(DB_PATH, group_id):
        await call.message.answer("❌ Группа удалена")
        return
    await call.message.answer(await draw_for(group_id, call.from_user.id))


@dp.message(Command("my"))
async def my_cmd(message: Message, command: CommandObject):
    if message.chat.type != "private":
        await message.answer("📩 Открой личку с ботом — это секрет 🤫")
        return

    group = await group_from_code(message, command)
    if group:
        await message.answer(await receiver_text(group[0], message.from_user.id))


@dp.callback_query(F.data.startswith("santa_me:"))
async def santa_me(call: CallbackQuery):
    if call.message.chat.type != "private":
        return

    group_id = int(call.data.split(":", 1)[1])
    await call.message.answer(await receiver_text(group_id, call.from_user.id))


# ---------------- MAIN ----------------
async def main():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await init_db(DB_PATH)
    await dp.start_polling(bot)

if __name__ == "__main__":
    asyncio.run(main())
