from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder


def kb_admin_menu() -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="🏆 Today", callback_data="admin:lb:daily")
    b.button(text="🏆 Week", callback_data="admin:lb:weekly")
    b.button(text="🏆 Month", callback_data="admin:lb:monthly")
    b.button(text="🏆 All time", callback_data="admin:lb:lifetime")
    b.button(text="📊 Stats", callback_data="admin:stats")
    b.button(text="🎯 Monthly achievers", callback_data="admin:achievers")
    b.button(text="🧨 Delete user", callback_data="admin:delete:user")
    b.adjust(2, 2, 1, 1, 1)
    return b.as_markup()


def kb_leaderboard_windows(current: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    for window, label in (("daily", "Today"), ("weekly", "Week"), ("monthly", "Month"), ("lifetime", "All time")):
        text = f"• {label} •" if window == current else label
        b.button(text=text, callback_data=f"admin:lb:{window}")
    b.button(text="⬅️ Menu", callback_data="admin:menu")
    b.adjust(4, 1)
    return b.as_markup()


def kb_confirm_delete() -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="🧨 Delete", callback_data="admin:delete:do")
    b.button(text="Cancel", callback_data="admin:delete:cancel")
    b.adjust(2)
    return b.as_markup()
