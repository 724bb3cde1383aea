import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand

from app.core.config import settings
from app.bot.handlers.admin import router as admin_router
from app.bot.handlers.cleanup import router as cleanup_router
from app.bot.middlewares import CorrelationIdMiddleware, RateLimitMiddleware

log = logging.getLogger(__name__)

COMMANDS = [
    BotCommand(command="admin", description="Admin menu"),
    BotCommand(command="leaderboard", description="Earnings leaderboard"),
    BotCommand(command="stats", description="Affiliate stats"),
    BotCommand(command="earnings", description="One user's earnings"),
    BotCommand(command="achievers", description="Monthly target achievers"),
    BotCommand(command="target", description="Monthly target"),
    BotCommand(command="broadcast", description="Mail every user"),
    BotCommand(command="delete_user", description="Delete a user and its records"),
    BotCommand(command="cancel", description="Cancel the current action"),
]


def build_dispatcher() -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage())
    for observer in (dp.message, dp.callback_query):
        observer.middleware(CorrelationIdMiddleware())
    dp.callback_query.middleware(RateLimitMiddleware(min_interval_sec=0.4))

    # the delete-user FSM must see its state messages before the command router
    dp.include_routers(cleanup_router, admin_router)
    return dp


async def run_bot() -> None:
    bot = Bot(token=settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = build_dispatcher()
    await bot.set_my_commands(COMMANDS)
    log.info("bot_start owner=%s admins=%d", settings.owner_tg_id, len(settings.admin_tg_ids))
    try:
        await dp.start_polling(bot)
    finally:
        await bot.session.close()
