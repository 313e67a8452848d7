"""
Allocation selection: which package a booking or a refund applies to.

Candidates are always kept in ledger order (earliest assigned first); that
order is the tie-break when several packages cover the same date.
"""

from datetime import date
from typing import NamedTuple, Optional, Sequence

from .errors import NoCreditsInRangeError, NoPackageForDateError
from .models import Package


class RefundTarget(NamedTuple):
    package: Package
    fallback_used: bool


def covers(package: Package, on_date: date) -> bool:
    return package.start_date <= on_date <= package.expiry_date


def select_for_date(packages: Sequence[Package], on_date: date) -> list[Package]:
    return [p for p in packages if not p.is_cancelled and covers(p, on_date)]


def select_for_deduction(packages: Sequence[Package], on_date: date) -> Package:
    candidates = select_for_date(packages, on_date)
    if not candidates:
        raise NoPackageForDateError(f"No package covers {on_date.isoformat()}")
    for package in candidates:
        if package.remaining_lessons > 0:
            return package
    raise NoCreditsInRangeError(f"No lessons left in the packages covering {on_date.isoformat()}")


def select_refund_target(
    packages: Sequence[Package],
    on_date: date,
    allow_fallback: bool = True,
) -> RefundTarget:
    candidates = select_for_date(packages, on_date)
    if candidates:
        return RefundTarget(candidates[0], False)

    if not allow_fallback:
        raise NoPackageForDateError(f"No package covers {on_date.isoformat()}")

    live = [(index, p) for index, p in enumerate(packages) if not p.is_cancelled]
    with_headroom = [(index, p) for index, p in live if p.remaining_lessons < p.total_lessons]
    if with_headroom:
        _, package = max(with_headroom, key=lambda item: (item[1].start_date, item[0]))
        return RefundTarget(package, True)
    if live:
        return RefundTarget(live[-1][1], True)
    raise NoPackageForDateError(f"No package available to refund a lesson on {on_date.isoformat()}")


def find_drawn(packages: Sequence[Package], lesson_id: str) -> Optional[Package]:
    """The non-cancelled package a lesson's credit was drawn from, if recorded."""
    for package in packages:
        if not package.is_cancelled and lesson_id in package.drawn_lessons:
            return package
    return None
