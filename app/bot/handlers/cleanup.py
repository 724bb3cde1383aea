import logging
from html import escape

from aiogram import F, Router
from aiogram.dispatcher.event.bases import SkipHandler
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import CallbackQuery, Message

from app.bot.auth import is_admin, is_owner
from app.bot.keyboards import kb_confirm_delete
from app.bot.ui import render_cleanup
from app.deps import get_services
from app.services.errors import CleanupFailed

router = Router()
log = logging.getLogger(__name__)


class DeleteUserFSM(StatesGroup):
    waiting_uid = State()
    waiting_confirm = State()


async def _ask_uid(message: Message, state: FSMContext) -> None:
    await state.set_state(DeleteUserFSM.waiting_uid)
    await message.answer(
        "🧨 <b>Delete user</b>\n\n"
        "Send the user's <code>uid</code>.\n"
        "⚠️ Orders, commissions, cashbacks, KYC and withdrawal records go with it.",
    )


@router.message(Command("delete_user"))
async def delete_user_cmd(msg: Message, state: FSMContext):
    if not is_owner(msg.from_user.id):
        return
    await _ask_uid(msg, state)


@router.callback_query(F.data == "admin:delete:user")
async def delete_user_start(cb: CallbackQuery, state: FSMContext):
    await cb.answer()
    if not is_owner(cb.from_user.id):
        return
    await _ask_uid(cb.message, state)


@router.message(Command("cancel"))
async def cancel_cmd(msg: Message, state: FSMContext):
    if not is_admin(msg.from_user.id):
        return
    if await state.get_state() is None:
        await msg.answer("Nothing to cancel.")
        return
    await state.clear()
    await msg.answer("Cancelled.")


@router.message(DeleteUserFSM.waiting_uid, F.text.startswith("/"))
async def delete_user_other_command(msg: Message, state: FSMContext):
    # any other command abandons the deletion and is handled as usual
    await state.clear()
    log.info("delete_user_abandoned")
    raise SkipHandler()


@router.message(DeleteUserFSM.waiting_uid)
async def delete_user_uid(msg: Message, state: FSMContext):
    if not is_owner(msg.from_user.id):
        return

    uid = (msg.text or "").strip()
    if not uid or any(c in uid for c in " /.#$[]"):
        await msg.answer("❌ Send a single uid")
        return

    user = await get_services().store.get(f"users/{uid}")
    name = user.get("name") if isinstance(user, dict) else None
    email = user.get("email") if isinstance(user, dict) else None

    await state.update_data(uid=uid)
    await state.set_state(DeleteUserFSM.waiting_confirm)
    await msg.answer(
        f"Delete <code>{escape(uid)}</code>"
        + (f" ({escape(str(name))}, {escape(str(email or ''))})" if name else " (no user record, references only)")
        + "?",
        reply_markup=kb_confirm_delete(),
    )


@router.callback_query(DeleteUserFSM.waiting_confirm, F.data == "admin:delete:cancel")
async def delete_user_cancel(cb: CallbackQuery, state: FSMContext):
    await cb.answer()
    await state.clear()
    await cb.message.edit_text("Cancelled.")


@router.callback_query(DeleteUserFSM.waiting_confirm, F.data == "admin:delete:do")
async def delete_user_do(cb: CallbackQuery, state: FSMContext):
    await cb.answer()
    if not is_owner(cb.from_user.id):
        return

    uid = (await state.get_data()).get("uid")
    await state.clear()
    if not uid:
        return

    await cb.message.edit_text("⏳ Deleting user...")
    try:
        summary = await get_services().cleanup.delete_user(uid)
    except CleanupFailed as e:
        await cb.message.answer(
            f"❌ Cleanup of <code>{escape(uid)}</code> stopped at <b>{e.stage}</b>: {escape(str(e.cause))}\n"
            "Writes before this stage stay applied; reconcile manually.",
        )
        return

    log.info("admin_delete_user_done uid=%s", uid, extra={"uid": uid})
    await cb.message.answer(render_cleanup(uid, summary))
