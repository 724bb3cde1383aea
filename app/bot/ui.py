from __future__ import annotations

from html import escape

from app.services.cleanup.service import CleanupSummary
from app.services.ledger.aggregator import (
    Achiever,
    AdminStats,
    EarningsSummary,
    LeaderboardEntry,
    MonthlyTarget,
    format_currency,
)
from app.services.notify.broadcast import BroadcastResult

WINDOW_TITLES = {
    "daily": "Today",
    "weekly": "This week",
    "monthly": "This month",
    "lifetime": "All time",
}

_MEDALS = {1: "🥇", 2: "🥈", 3: "🥉"}


def render_board(window: str, entries: list[LeaderboardEntry]) -> str:
    lines = [f"🏆 <b>Leaderboard: {WINDOW_TITLES.get(window, window)}</b>", ""]
    if not entries:
        lines.append("No earnings yet.")
    for pos, e in enumerate(entries, start=1):
        mark = _MEDALS.get(pos, f"{pos}.")
        lines.append(f"{mark} {escape(e.user.name)} — <b>{format_currency(e.earnings)}</b>")
    return "\n".join(lines)


def render_stats(stats: AdminStats, lifetime: list[LeaderboardEntry]) -> str:
    lines = [
        "📊 <b>Affiliate stats</b>",
        "",
        f"Users: <b>{stats.total_users}</b>",
        f"Active earners: <b>{stats.active_earners}</b>",
        f"Total earnings: <b>{format_currency(stats.total_earnings)}</b>",
        f"Total balance: <b>{format_currency(stats.total_balance)}</b>",
        "",
        "<b>Top by stored earnings</b>",
    ]
    for pos, e in enumerate(lifetime, start=1):
        lines.append(f"{pos}. {escape(e.user.name)} — {format_currency(e.earnings)}")
    return "\n".join(lines)


def render_achievers(target: MonthlyTarget, achievers: list[Achiever]) -> str:
    lines = [
        f"🎯 <b>Monthly target</b>: {format_currency(target.goal_amount)}",
        f"🎁 Prize: {escape(target.prize)}",
        "",
    ]
    if not achievers:
        lines.append("Nobody reached the target yet.")
    for a in achievers:
        status = f"✅ given {escape(a.prize_given_at or '')}" if a.prize_given else "⏳ pending"
        lines.append(
            f"• {escape(a.user.name)} (<code>{escape(a.user.id)}</code>) — "
            f"{format_currency(a.monthly_earnings)} — {status}"
        )
    return "\n".join(lines)


def render_summary(name: str, s: EarningsSummary) -> str:
    days = " | ".join(f"{b.label} {format_currency(b.earnings)}" for b in s.last_7_days)
    return "\n".join(
        [
            f"👤 <b>{escape(name)}</b> (<code>{escape(s.user_id)}</code>)",
            f"Today: {format_currency(s.daily)}",
            f"This week: {format_currency(s.weekly)}",
            f"This month: {format_currency(s.monthly)}",
            f"All time: {format_currency(s.lifetime)}",
            f"Cashback: {format_currency(s.cashback)}",
            f"Monthly target: {round(s.monthly_progress)}%",
            "",
            days,
        ]
    )


def render_cleanup(uid: str, s: CleanupSummary) -> str:
    return "\n".join(
        [
            f"✅ User <code>{escape(uid)}</code> deleted.",
            f"Orders removed: {s.removed_orders}",
            f"Orders with referrer cleared: {s.cleared_referrer_in_orders}",
            f"Commissions removed: {s.removed_commissions}",
            f"Cashbacks removed: {s.removed_cashbacks}",
            f"Special assignments cleared: {s.cleared_special_assignments}",
            f"Withdrawal requests removed: {s.removed_withdrawal_requests}",
            f"Referral entries removed: {s.removed_referrals}",
            f"Deleted-users record: {'yes' if s.wrote_deleted_record else 'no'}",
        ]
    )


def render_target(target: MonthlyTarget) -> str:
    return f"🎯 <b>Monthly target</b>: {format_currency(target.goal_amount)}\n🎁 Prize: {escape(target.prize)}"


def render_broadcast(result: BroadcastResult) -> str:
    if not result.recipients:
        return "📭 No valid recipients found."
    return f"📨 Broadcast sent: {result.sent}, skipped: {result.skipped}"
