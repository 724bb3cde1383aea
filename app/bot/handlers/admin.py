from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from html import escape

from aiogram import F, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, Message

from app.bot.auth import is_admin, is_owner
from app.bot.keyboards import kb_admin_menu, kb_leaderboard_windows
from app.bot.ui import (
    render_achievers,
    render_board,
    render_broadcast,
    render_stats,
    render_summary,
    render_target,
)
from app.deps import get_services
from app.services.errors import (
    AchieverNotEligible,
    InsufficientBalance,
    InvalidStateTransition,
    NotFoundError,
)
from app.services.ledger.windows import WINDOWS
from app.store.base import InvalidPathError

router = Router()
log = logging.getLogger(__name__)

USAGE = (
    "<b>Admin commands</b>\n"
    "/leaderboard [daily|weekly|monthly|lifetime]\n"
    "/stats\n"
    "/earnings &lt;uid&gt;\n"
    "/achievers\n"
    "/award &lt;uid&gt;\n"
    "/target [&lt;goal&gt; &lt;prize&gt;]\n"
    "/approve_order &lt;order_id&gt;\n"
    "/reject_order &lt;order_id&gt;\n"
    "/withdrawal &lt;request_id&gt; &lt;completed|rejected&gt;\n"
    "/kyc &lt;uid&gt; &lt;approved|rejected&gt;\n"
    "/broadcast &lt;subject&gt; | &lt;html&gt;\n"
    "/broadcast_to &lt;uid,uid&gt; &lt;subject&gt; | &lt;html&gt;\n"
    "/delete_user\n"
    "/cancel"
)


def _args(command: CommandObject) -> list[str]:
    return (command.args or "").split()


# ==========================
# MENU / READ-ONLY VIEWS
# ==========================

async def _leaderboards():
    services = get_services()
    boards = services.live.current()
    if boards is None:
        boards = await services.ledger.leaderboards()
    return boards


@router.message(Command("admin"))
async def admin_menu_cmd(message: Message) -> None:
    if not is_admin(message.from_user.id):
        return
    await message.answer(USAGE, reply_markup=kb_admin_menu())


@router.callback_query(F.data == "admin:menu")
async def admin_menu_cb(cb: CallbackQuery) -> None:
    await cb.answer()
    if not is_admin(cb.from_user.id):
        return
    await cb.message.edit_text(USAGE, reply_markup=kb_admin_menu())


@router.message(Command("leaderboard"))
async def leaderboard_cmd(message: Message, command: CommandObject) -> None:
    if not is_admin(message.from_user.id):
        return
    args = _args(command)
    window = args[0].lower() if args else "monthly"
    if window not in WINDOWS:
        await message.answer("❌ Window must be one of: " + ", ".join(WINDOWS))
        return
    boards = await _leaderboards()
    await message.answer(
        render_board(window, boards.window(window)),
        reply_markup=kb_leaderboard_windows(window),
    )


@router.callback_query(F.data.startswith("admin:lb:"))
async def leaderboard_cb(cb: CallbackQuery) -> None:
    await cb.answer()
    if not is_admin(cb.from_user.id):
        return
    window = cb.data.rsplit(":", 1)[-1]
    if window not in WINDOWS:
        return
    boards = await _leaderboards()
    await cb.message.edit_text(
        render_board(window, boards.window(window)),
        reply_markup=kb_leaderboard_windows(window),
    )


async def _stats_text() -> str:
    ledger = get_services().ledger
    return render_stats(await ledger.stats(), await ledger.admin_lifetime())


@router.message(Command("stats"))
async def stats_cmd(message: Message) -> None:
    if not is_admin(message.from_user.id):
        return
    await message.answer(await _stats_text())


@router.callback_query(F.data == "admin:stats")
async def stats_cb(cb: CallbackQuery) -> None:
    await cb.answer()
    if not is_admin(cb.from_user.id):
        return
    await cb.message.answer(await _stats_text())


@router.message(Command("earnings"))
async def earnings_cmd(message: Message, command: CommandObject) -> None:
    if not is_admin(message.from_user.id):
        return
    args = _args(command)
    if not args:
        await message.answer("Usage: /earnings &lt;uid&gt;")
        return
    uid = args[0]
    services = get_services()
    try:
        name = await services.store.get(f"users/{uid}/name")
    except InvalidPathError:
        name = None
    if not name:
        await message.answer("❌ User not found")
        return
    summary = await services.ledger.user_summary(uid)
    await message.answer(render_summary(str(name), summary))


async def _achievers_text() -> str:
    ledger = get_services().ledger
    return render_achievers(await ledger.get_target(), await ledger.achievers())


@router.message(Command("achievers"))
async def achievers_cmd(message: Message) -> None:
    if not is_admin(message.from_user.id):
        return
    await message.answer(await _achievers_text())


@router.callback_query(F.data == "admin:achievers")
async def achievers_cb(cb: CallbackQuery) -> None:
    await cb.answer()
    if not is_admin(cb.from_user.id):
        return
    await cb.message.answer(await _achievers_text())


# ==========================
# WRITE ACTIONS
# ==========================

@router.message(Command("award"))
async def award_cmd(message: Message, command: CommandObject) -> None:
    if not is_owner(message.from_user.id):
        return
    args = _args(command)
    if not args:
        await message.answer("Usage: /award &lt;uid&gt;")
        return
    uid = args[0]
    try:
        await get_services().ledger.award_prize(uid)
    except (AchieverNotEligible, InvalidPathError) as e:
        await message.answer(f"❌ {escape(str(e))}")
        return
    log.info("admin_award_prize uid=%s", uid, extra={"uid": uid})
    await message.answer(f"🎁 Prize marked as given to <code>{escape(uid)}</code>")


@router.message(Command("approve_order"))
async def approve_order_cmd(message: Message, command: CommandObject) -> None:
    if not is_admin(message.from_user.id):
        return
    args = _args(command)
    if not args:
        await message.answer("Usage: /approve_order &lt;order_id&gt;")
        return
    try:
        res = await get_services().orders.approve_order(args[0])
    except (NotFoundError, InvalidStateTransition, InvalidPathError) as e:
        await message.answer(f"❌ {e.__class__.__name__}: {escape(str(e))}")
        return
    await message.answer(
        f"✅ Order <code>{escape(res.order_id)}</code> approved.\n"
        f"Commission: {res.commission_amount} | Cashback: {res.cashback_amount}",
    )


@router.message(Command("reject_order"))
async def reject_order_cmd(message: Message, command: CommandObject) -> None:
    if not is_admin(message.from_user.id):
        return
    args = _args(command)
    if not args:
        await message.answer("Usage: /reject_order &lt;order_id&gt;")
        return
    try:
        await get_services().orders.reject_order(args[0])
    except (NotFoundError, InvalidStateTransition, InvalidPathError) as e:
        await message.answer(f"❌ {e.__class__.__name__}: {escape(str(e))}")
        return
    await message.answer(f"✅ Order <code>{escape(args[0])}</code> rejected.")


@router.message(Command("withdrawal"))
async def withdrawal_cmd(message: Message, command: CommandObject) -> None:
    if not is_admin(message.from_user.id):
        return
    args = _args(command)
    if len(args) != 2 or args[1].lower() not in ("completed", "rejected"):
        await message.answer("Usage: /withdrawal &lt;request_id&gt; &lt;completed|rejected&gt;")
        return
    request_id, status = args[0], args[1].capitalize()
    try:
        await get_services().withdrawals.process(request_id, status)
    except InsufficientBalance as e:
        await message.answer(f"⚠️ Insufficient balance ({e}). Request rejected.")
        return
    except (NotFoundError, InvalidStateTransition, InvalidPathError) as e:
        await message.answer(f"❌ {e.__class__.__name__}: {escape(str(e))}")
        return
    await message.answer(f"✅ Withdrawal <code>{escape(request_id)}</code>: {status}")


@router.message(Command("kyc"))
async def kyc_cmd(message: Message, command: CommandObject) -> None:
    if not is_admin(message.from_user.id):
        return
    args = _args(command)
    if len(args) != 2 or args[1].lower() not in ("approved", "rejected"):
        await message.answer("Usage: /kyc &lt;uid&gt; &lt;approved|rejected&gt;")
        return
    uid, status = args[0], args[1].capitalize()
    try:
        await get_services().kyc.review(uid, status)
    except (NotFoundError, InvalidStateTransition, InvalidPathError) as e:
        await message.answer(f"❌ {e.__class__.__name__}: {escape(str(e))}")
        return
    await message.answer(f"✅ KYC <code>{escape(uid)}</code>: {status}")


@router.message(Command("target"))
async def target_cmd(message: Message, command: CommandObject) -> None:
    if not is_admin(message.from_user.id):
        return
    ledger = get_services().ledger
    parts = (command.args or "").split(maxsplit=1)
    if not parts:
        await message.answer(render_target(await ledger.get_target()))
        return
    if not is_owner(message.from_user.id):
        return
    try:
        goal = Decimal(parts[0])
        target = await ledger.set_target(goal_amount=goal, prize=parts[1] if len(parts) > 1 else "")
    except (InvalidOperation, ValueError):
        await message.answer("Usage: /target &lt;goal&gt; &lt;prize&gt;")
        return
    log.info("admin_target_set goal=%s", target.goal_amount)
    await message.answer(render_target(target))


def _subject_and_html(text: str) -> tuple[str, str] | None:
    subject, sep, html = text.partition("|")
    if not sep or not subject.strip() or not html.strip():
        return None
    return subject.strip(), html.strip()


async def _broadcast(message: Message, text: str, uids: list[str] | None) -> None:
    parsed = _subject_and_html(text)
    if parsed is None:
        await message.answer("Usage: /broadcast [uid,uid] &lt;subject&gt; | &lt;html&gt;")
        return
    subject, html = parsed
    try:
        result = await get_services().broadcast.send(subject, html, uids=uids)
    except InvalidPathError as e:
        await message.answer(f"❌ {escape(str(e))}")
        return
    log.info("admin_broadcast recipients=%d sent=%d", result.recipients, result.sent)
    await message.answer(render_broadcast(result))


@router.message(Command("broadcast"))
async def broadcast_cmd(message: Message, command: CommandObject) -> None:
    if not is_owner(message.from_user.id):
        return
    await _broadcast(message, command.args or "", None)


@router.message(Command("broadcast_to"))
async def broadcast_to_cmd(message: Message, command: CommandObject) -> None:
    if not is_owner(message.from_user.id):
        return
    parts = (command.args or "").split(maxsplit=1)
    if len(parts) != 2:
        await message.answer("Usage: /broadcast_to &lt;uid,uid&gt; &lt;subject&gt; | &lt;html&gt;")
        return
    await _broadcast(message, parts[1], [u for u in parts[0].split(",") if u])
