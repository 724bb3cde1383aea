from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.services.ledger.aggregator import (
    MonthlyTarget,
    admin_lifetime_board,
    admin_stats,
    compute_leaderboards,
    format_currency,
    monthly_achievers,
    parse_target,
    rank,
    select_events,
    user_earnings_summary,
)
from app.services.ledger.normalize import (
    derive_from_orders,
    normalize_cashbacks,
    normalize_commissions,
    to_decimal,
    to_timestamp,
    visible_users,
)
from tests.fakes import LAST_MONTH, NOW, TODAY, ms


def _ids(entries):
    return [e.user.id for e in entries]


def _amounts(entries):
    return [e.earnings for e in entries]


USERS = {
    "u1": {"name": "Alice", "email": "alice@x.com", "status": "active"},
    "u2": {"name": "", "email": "ghost@x.com", "status": "active"},
    "u3": {"name": "Bob", "email": "bob@x.com", "status": "active"},
    "u4": {"name": "Dora", "status": "deleted"},
    "u5": {"name": "Eve", "status": "rejected"},
}


class TestNormalize:
    """Raw store values are parsed leniently; bad rows are dropped."""

    def test_numbers_and_numeric_strings(self):
        assert to_decimal(5) == Decimal(5)
        assert to_decimal("12.5") == Decimal("12.5")
        assert to_decimal(" 7 ") == Decimal(7)

    def test_garbage_is_none(self):
        for value in (None, "", "abc", True, [], {}, float("nan"), float("inf")):
            assert to_decimal(value) is None

    def test_timestamp_forms(self):
        expected = datetime(2025, 1, 15, 11, 0, tzinfo=timezone.utc)
        assert to_timestamp(ms(expected)) == expected
        assert to_timestamp(str(ms(expected))) == expected
        assert to_timestamp("2025-01-15T11:00:00Z") == expected
        assert to_timestamp("2025-01-15T11:00:00") == expected
        assert to_timestamp("yesterday") is None
        assert to_timestamp(None) is None

    def test_malformed_commissions_dropped(self):
        raw = {
            "c1": {"referrerId": "u1", "amount": "250", "timestamp": ms(TODAY)},
            "c2": {"referrerId": "u1", "amount": "abc", "timestamp": ms(TODAY)},
            "c3": {"referrerId": "u1", "amount": -10, "timestamp": ms(TODAY)},
            "c4": {"referrerId": "u1", "amount": 0, "timestamp": ms(TODAY)},
            "c5": {"amount": 100, "timestamp": ms(TODAY)},
            "c6": {"referrerId": "u1", "amount": 100, "timestamp": "not a date"},
            "c7": "junk",
            "c8": {"referrerId": "u1", "amount": 40, "timestamp": "2025-01-15T09:30:00Z"},
        }
        events = normalize_commissions(raw)
        assert sorted(e.amount for e in events) == [Decimal(40), Decimal(250)]
        assert {e.earner_id for e in events} == {"u1"}

    def test_cashback_earner_is_buyer(self):
        raw = {"k1": {"userId": "buyer", "referrerId": "ref", "amount": 10, "timestamp": ms(TODAY)}}
        (ev,) = normalize_cashbacks(raw)
        assert ev.earner_id == "buyer"
        assert ev.source_user_id == "ref"

    def test_visible_users_filters_unnamed_and_hidden(self):
        assert sorted(visible_users(USERS)) == ["u1", "u3"]
        assert visible_users(None) == {}


class TestDeriveFromOrders:
    """Completed orders stand in for commission events."""

    def test_stored_amount_wins(self):
        orders = {
            "o1": {"status": "Completed", "referrerId": "u1", "createdAt": ms(TODAY), "commissionAmount": 700, "courseId": "p1"}
        }
        (ev,) = derive_from_orders(orders, {"p1": {"price": 5000}})
        assert ev.amount == Decimal(700)
        assert ev.order_id == "o1"

    def test_price_times_default_percent_floored(self):
        orders = {"o1": {"status": "Completed", "referrerId": "u1", "createdAt": ms(TODAY), "courseId": "p1"}}
        (ev,) = derive_from_orders(orders, {"p1": {"price": 999}}, default_percent=58)
        # 999 * 0.58 = 579.42
        assert ev.amount == Decimal(579)

    def test_skips_non_completed_and_unreferred(self):
        orders = {
            "o1": {"status": "Pending Approval", "referrerId": "u1", "createdAt": ms(TODAY), "courseId": "p1"},
            "o2": {"status": "Completed", "createdAt": ms(TODAY), "courseId": "p1"},
            "o3": {"status": "Completed", "referrerId": "u1", "courseId": "p1"},
            "o4": {"status": "Completed", "referrerId": "u1", "createdAt": ms(TODAY), "courseId": "missing"},
        }
        assert derive_from_orders(orders, {"p1": {"price": 1000}}) == []

    def test_board_events_ignore_package_percent(self):
        orders = {"o1": {"status": "Completed", "referrerId": "u1", "createdAt": ms(TODAY), "courseId": "p1"}}
        (ev,) = select_events({}, orders, {"p1": {"price": 1000, "commissionPercent": 40}})
        assert ev.amount == Decimal(580)


class TestLeaderboards:
    """Windowed leaderboards recomputed from commission events."""

    def test_windows_and_invisible_earners(self, today_ms, last_month_ms):
        commissions = {
            "c1": {"referrerId": "u1", "amount": 500, "timestamp": today_ms},
            "c2": {"referrerId": "u1", "amount": 1000, "timestamp": last_month_ms},
            "c3": {"referrerId": "u2", "amount": 2000, "timestamp": today_ms},
        }
        boards = compute_leaderboards(USERS, commissions, {}, {}, NOW)

        assert _ids(boards.daily) == ["u1"]
        assert _amounts(boards.daily) == [Decimal(500)]
        assert _amounts(boards.weekly) == [Decimal(500)]
        assert _amounts(boards.monthly) == [Decimal(500)]
        assert _ids(boards.lifetime) == ["u1"]
        assert _amounts(boards.lifetime) == [Decimal(1500)]

    def test_deleted_and_rejected_hidden(self, today_ms):
        commissions = {
            "c1": {"referrerId": "u4", "amount": 900, "timestamp": today_ms},
            "c2": {"referrerId": "u5", "amount": 800, "timestamp": today_ms},
            "c3": {"referrerId": "u3", "amount": 10, "timestamp": today_ms},
        }
        boards = compute_leaderboards(USERS, commissions, {}, {}, NOW)
        assert _ids(boards.lifetime) == ["u3"]

    def test_windows_nest(self):
        stamps = [
            NOW - timedelta(hours=2),  # today
            datetime(2025, 1, 12, 8, 0, tzinfo=timezone.utc),  # Sunday, this week
            datetime(2025, 1, 11, 23, 0, tzinfo=timezone.utc),  # Saturday, last week
            datetime(2025, 1, 2, 8, 0, tzinfo=timezone.utc),  # this month
            LAST_MONTH,
        ]
        commissions = {f"c{i}": {"referrerId": "u1", "amount": 100, "timestamp": ms(ts)} for i, ts in enumerate(stamps)}
        boards = compute_leaderboards(USERS, commissions, {}, {}, NOW)

        assert _amounts(boards.daily) == [Decimal(100)]
        assert _amounts(boards.weekly) == [Decimal(200)]
        assert _amounts(boards.monthly) == [Decimal(400)]
        assert _amounts(boards.lifetime) == [Decimal(500)]

    def test_ties_broken_by_user_id(self, today_ms):
        users = {uid: {"name": uid.upper(), "status": "active"} for uid in ("b", "a", "c")}
        commissions = {uid: {"referrerId": uid, "amount": 100, "timestamp": today_ms} for uid in users}
        boards = compute_leaderboards(users, commissions, {}, {}, NOW)
        assert _ids(boards.daily) == ["a", "b", "c"]

    def test_size_limit(self, today_ms):
        users = {f"u{i:02d}": {"name": f"N{i}"} for i in range(15)}
        commissions = {f"c{i}": {"referrerId": f"u{i:02d}", "amount": 100 + i, "timestamp": today_ms} for i in range(15)}
        boards = compute_leaderboards(users, commissions, {}, {}, NOW, size=10)
        assert len(boards.lifetime) == 10
        assert boards.lifetime[0].user.id == "u14"

    def test_fallback_to_orders_uses_flat_percent(self, today_ms):
        orders = {
            "o1": {"status": "Completed", "referrerId": "u1", "createdAt": today_ms, "courseId": "p1"},
            "o2": {"status": "Completed", "referrerId": "u3", "createdAt": today_ms, "courseId": "p2"},
        }
        packages = {"p1": {"price": 1000, "commissionPercent": 40}, "p2": {"price": 1000}}
        boards = compute_leaderboards(USERS, {}, orders, packages, NOW)
        assert [(e.user.id, e.earnings) for e in boards.daily] == [("u1", Decimal(580)), ("u3", Decimal(580))]

    def test_orders_ignored_when_commissions_exist(self, today_ms):
        commissions = {"c1": {"referrerId": "u1", "amount": 5, "timestamp": today_ms}}
        orders = {"o1": {"status": "Completed", "referrerId": "u3", "createdAt": today_ms, "commissionAmount": 999}}
        boards = compute_leaderboards(USERS, commissions, orders, {}, NOW)
        assert _ids(boards.lifetime) == ["u1"]

    def test_adding_event_never_lowers_a_total(self, today_ms):
        commissions = {"c1": {"referrerId": "u1", "amount": 100, "timestamp": today_ms}}
        before = compute_leaderboards(USERS, commissions, {}, {}, NOW)
        commissions["c2"] = {"referrerId": "u3", "amount": 300, "timestamp": today_ms}
        after = compute_leaderboards(USERS, commissions, {}, {}, NOW)

        def total(boards, uid):
            return next(e.earnings for e in boards.lifetime if e.user.id == uid)

        assert total(after, "u1") >= total(before, "u1")
        assert _ids(after.lifetime) == ["u3", "u1"]

    def test_empty_inputs(self):
        boards = compute_leaderboards(None, None, None, None, NOW)
        for window in ("daily", "weekly", "monthly", "lifetime"):
            assert boards.window(window) == []

    def test_unknown_window(self):
        with pytest.raises(ValueError):
            compute_leaderboards({}, {}, {}, {}, NOW).window("yearly")

    def test_naive_now_rejected(self):
        with pytest.raises(ValueError):
            compute_leaderboards({}, {}, {}, {}, datetime(2025, 1, 15, 12, 0))

    def test_rank_without_limit(self):
        users = visible_users(USERS)
        entries = rank({"u1": Decimal(1), "u3": Decimal(2), "zz": Decimal(9)}, users, size=None)
        assert _ids(entries) == ["u3", "u1"]


class TestAdminViews:
    """Views built from the stored per-user counters."""

    USERS = {
        "a": {"name": "A", "status": "active", "totalEarnings": 500, "balance": 200},
        "b": {"name": "B", "status": "active", "totalEarnings": "1500", "balance": 0},
        "c": {"name": "C", "status": "pending", "totalEarnings": 0, "balance": 50},
        "d": {"name": "D", "status": "deleted", "totalEarnings": 9000, "balance": 10},
        "e": {"email": "noname@x.com", "totalEarnings": 100},
    }

    def test_lifetime_board_from_counters(self):
        board = admin_lifetime_board(self.USERS)
        assert [(e.user.id, e.earnings) for e in board] == [("b", Decimal(1500)), ("a", Decimal(500))]

    def test_stats(self):
        stats = admin_stats(self.USERS)
        assert stats.total_users == 4
        assert stats.active_earners == 2
        assert stats.total_earnings == Decimal(11000)
        assert stats.total_balance == Decimal(260)


class TestMonthlyAchievers:
    """Users at or above the monthly goal, with prize state."""

    TARGET = MonthlyTarget(goal_amount=Decimal(1000), prize="Hamper")

    def _commissions(self, today_ms, last_month_ms):
        return {
            "c1": {"referrerId": "u1", "amount": 1000, "timestamp": today_ms},
            "c2": {"referrerId": "u3", "amount": 999, "timestamp": today_ms},
            "c3": {"referrerId": "u3", "amount": 5000, "timestamp": last_month_ms},
        }

    def test_goal_is_inclusive(self, today_ms, last_month_ms):
        out = monthly_achievers(USERS, self._commissions(today_ms, last_month_ms), {}, {}, self.TARGET, None, NOW)
        assert [(a.user.id, a.monthly_earnings, a.prize_given) for a in out] == [("u1", Decimal(1000), False)]

    def test_prize_record_uses_zero_based_month(self, today_ms, last_month_ms):
        records = {
            "p1": {"userId": "u1", "month": 0, "year": 2025, "givenAt": "2025-01-10T00:00:00.000Z"},
        }
        (a,) = monthly_achievers(USERS, self._commissions(today_ms, last_month_ms), {}, {}, self.TARGET, records, NOW)
        assert a.prize_given is True
        assert a.prize_given_at == "2025-01-10T00:00:00.000Z"

    def test_other_month_record_ignored(self, today_ms, last_month_ms):
        records = {"p1": {"userId": "u1", "month": 1, "year": 2025}, "p2": {"userId": "u1", "month": 0, "year": 2024}}
        (a,) = monthly_achievers(USERS, self._commissions(today_ms, last_month_ms), {}, {}, self.TARGET, records, NOW)
        assert a.prize_given is False

    def test_parse_target_defaults(self):
        t = parse_target(None, default_goal=30000, default_prize="T-Shirt")
        assert (t.goal_amount, t.prize, t.image_url) == (Decimal(30000), "T-Shirt", None)
        t = parse_target({"goalAmount": "2500", "prize": "  ", "imageUrl": "http://img"}, default_goal=1, default_prize="X")
        assert (t.goal_amount, t.prize, t.image_url) == (Decimal(2500), "X", "http://img")


class TestUserSummary:
    """Per-user dashboard numbers."""

    TARGET = MonthlyTarget(goal_amount=Decimal(2000), prize="Hamper")

    def test_windows_buckets_and_progress(self, today_ms, last_month_ms):
        commissions = {
            "c1": {"referrerId": "u1", "amount": 500, "timestamp": today_ms},
            "c2": {"referrerId": "u1", "amount": 300, "timestamp": ms(datetime(2025, 1, 10, 9, tzinfo=timezone.utc))},
            "c3": {"referrerId": "u1", "amount": 1000, "timestamp": last_month_ms},
            "c4": {"referrerId": "u3", "amount": 7000, "timestamp": today_ms},
        }
        cashbacks = {"k1": {"userId": "u1", "amount": 25, "timestamp": today_ms}}
        s = user_earnings_summary("u1", USERS, commissions, {}, {}, self.TARGET, NOW, cashbacks=cashbacks)

        assert (s.daily, s.weekly, s.monthly, s.lifetime) == (Decimal(500), Decimal(500), Decimal(800), Decimal(1800))
        assert s.cashback == Decimal(25)
        assert s.monthly_progress == Decimal(40)

        assert len(s.last_7_days) == 7
        assert s.last_7_days[0].day == date(2025, 1, 9)
        assert s.last_7_days[-1].day == date(2025, 1, 15)
        assert s.last_7_days[-1].label == "Wed"
        assert s.last_7_days[-1].earnings == Decimal(500)
        assert s.last_7_days[1].earnings == Decimal(300)
        assert sum(b.earnings for b in s.last_7_days) == Decimal(800)

    def test_progress_clamped(self, today_ms):
        commissions = {"c1": {"referrerId": "u1", "amount": 9000, "timestamp": today_ms}}
        s = user_earnings_summary("u1", USERS, commissions, {}, {}, self.TARGET, NOW)
        assert s.monthly_progress == Decimal(100)

        s = user_earnings_summary("u1", USERS, commissions, {}, {}, MonthlyTarget(Decimal(0), "x"), NOW)
        assert s.monthly_progress == Decimal(0)

    def test_fallback_prefers_special_percent(self, today_ms):
        users = {"u1": {"name": "Alice", "specialAccess": {"commissionPercent": 70}}}
        orders = {"o1": {"status": "Completed", "referrerId": "u1", "createdAt": today_ms, "courseId": "p1"}}
        packages = {"p1": {"price": 1000, "commissionPercent": 40}}
        s = user_earnings_summary("u1", users, {}, orders, packages, None, NOW)
        assert s.daily == Decimal(700)

    def test_fallback_inactive_special_uses_package_percent(self, today_ms):
        users = {"u1": {"name": "Alice", "specialAccess": {"commissionPercent": 70, "active": False}}}
        orders = {"o1": {"status": "Completed", "referrerId": "u1", "createdAt": today_ms, "courseId": "p1"}}
        packages = {"p1": {"price": 1000, "commissionPercent": 40}}
        s = user_earnings_summary("u1", users, {}, orders, packages, None, NOW)
        assert s.daily == Decimal(400)

    def test_fallback_is_per_user(self, today_ms):
        # another user's commissions do not stop this user's order fallback
        commissions = {"c1": {"referrerId": "u3", "amount": 10, "timestamp": today_ms}}
        orders = {"o1": {"status": "Completed", "referrerId": "u1", "createdAt": today_ms, "commissionAmount": 250}}
        s = user_earnings_summary("u1", USERS, commissions, orders, {}, None, NOW)
        assert s.lifetime == Decimal(250)

    def test_unknown_user_is_zero(self):
        s = user_earnings_summary("nobody", USERS, {}, {}, {}, self.TARGET, NOW)
        assert s.lifetime == Decimal(0)
        assert s.monthly_progress == Decimal(0)


class TestFormatCurrency:
    def test_grouping_and_rounding(self):
        assert format_currency(1500) == "Rs 1,500"
        assert format_currency(Decimal("1234567.5")) == "Rs 1,234,568"
        assert format_currency(0) == "Rs 0"
