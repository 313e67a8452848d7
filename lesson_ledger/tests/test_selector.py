"""
Unit Tests for allocation selection

Tests cover:
1. Date coverage and ledger-order tie-break
2. Deduction failures
3. Refund targeting and fallback
"""

import pytest
from datetime import date, datetime, timezone

from lesson_ledger.errors import NoCreditsInRangeError, NoPackageForDateError
from lesson_ledger.selector import select_for_date, select_for_deduction, select_refund_target

from .helpers import january_package, make_package

CANCELLED_AT = datetime(2025, 1, 2, tzinfo=timezone.utc)


class TestSelectForDate:
    def test_range_is_inclusive(self):
        packages = [january_package()]

        assert select_for_date(packages, date(2025, 1, 1)) == packages
        assert select_for_date(packages, date(2025, 1, 31)) == packages
        assert select_for_date(packages, date(2025, 2, 1)) == []

    def test_cancelled_packages_never_qualify(self):
        cancelled = make_package("c", date(2025, 1, 1), date(2025, 1, 31), cancelled_at=CANCELLED_AT)

        assert select_for_date([cancelled], date(2025, 1, 15)) == []

    def test_keeps_ledger_order(self):
        first = make_package("first", date(2025, 1, 10), date(2025, 2, 10))
        second = make_package("second", date(2025, 1, 1), date(2025, 1, 31))

        assert [p.id for p in select_for_date([first, second], date(2025, 1, 15))] == ["first", "second"]


class TestSelectForDeduction:
    def test_earlier_assigned_wins_even_with_fewer_credits(self):
        early = make_package("early", date(2025, 1, 1), date(2025, 2, 28), remaining=1)
        late = make_package("late", date(2025, 1, 10), date(2025, 3, 10), remaining=8)

        assert select_for_deduction([early, late], date(2025, 1, 15)).id == "early"

    def test_depleted_package_is_passed_over(self):
        early = make_package("early", date(2025, 1, 1), date(2025, 2, 28), remaining=0)
        late = make_package("late", date(2025, 1, 10), date(2025, 3, 10))

        assert select_for_deduction([early, late], date(2025, 1, 15)).id == "late"

    def test_no_covering_package(self):
        with pytest.raises(NoPackageForDateError):
            select_for_deduction([january_package()], date(2025, 2, 1))

    def test_covering_but_depleted(self):
        with pytest.raises(NoCreditsInRangeError):
            select_for_deduction([january_package(remaining=0)], date(2025, 1, 15))


class TestSelectRefundTarget:
    def test_depleted_covering_package_is_refundable(self):
        target = select_refund_target([january_package(remaining=0)], date(2025, 1, 15))

        assert target.package.id == "A"
        assert target.fallback_used is False

    def test_fallback_prefers_latest_start_with_headroom(self):
        older = make_package("older", date(2024, 11, 1), date(2024, 11, 30), remaining=2)
        newer = make_package("newer", date(2024, 12, 1), date(2024, 12, 31), remaining=5)
        full = make_package("full", date(2025, 1, 1), date(2025, 1, 31))

        target = select_refund_target([older, newer, full], date(2025, 3, 1))

        assert target.package.id == "newer"
        assert target.fallback_used is True

    def test_fallback_uses_last_entry_when_everything_is_full(self):
        first = make_package("first", date(2024, 12, 1), date(2024, 12, 31))
        last = make_package("last", date(2024, 11, 1), date(2024, 11, 30))

        assert select_refund_target([first, last], date(2025, 3, 1)).package.id == "last"

    def test_fallback_disabled(self):
        with pytest.raises(NoPackageForDateError):
            select_refund_target([january_package(remaining=3)], date(2025, 3, 1), allow_fallback=False)

    def test_only_cancelled_packages(self):
        cancelled = make_package("c", date(2025, 1, 1), date(2025, 1, 31), remaining=3, cancelled_at=CANCELLED_AT)

        with pytest.raises(NoPackageForDateError):
            select_refund_target([cancelled], date(2025, 1, 15))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
