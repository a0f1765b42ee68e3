from aiogram.utils.keyboard import InlineKeyboardBuilder


def user_menu():
    kb = InlineKeyboardBuilder()
    kb.button(text="🎄 Мои группы", callback_data="my_groups")
    kb.adjust(1)
    return kb.as_markup()


def group_menu(group_id: int, is_admin: bool):
    kb = InlineKeyboardBuilder()
    kb.button(text="🎅 Мой подопечный", callback_data=f"santa_me:{group_id}")
    kb.button(text="👥 Участники", callback_data=f"members:{group_id}")
    if is_admin:
        kb.button(text="🧠 Провести жеребьёвку", callback_data=f"draw:{group_id}")
    kb.adjust(2)
    return kb.as_markup()
