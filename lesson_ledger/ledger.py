"""
Package Ledger

Pure status and aggregate rules shared by every other component:
- a package's status is derived from the calendar, never stored
- the member aggregate is the sum of remaining lessons over non-cancelled packages
- expiry dates use fixed 30-day months so every client computes the same date
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

from .errors import LedgerServiceError
from .models import Member, MembershipStatus, Package, PackageStatus, PackageView

log = logging.getLogger(__name__)

DAYS_PER_MONTH = 30

BOOKABLE_MEMBERSHIP = (MembershipStatus.ACTIVE,)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def legacy_package_id(member_id: str) -> str:
    return f"legacy_{member_id}"


def add_months(start: date, months: int, days_per_month: int = DAYS_PER_MONTH) -> date:
    return start + timedelta(days=months * days_per_month)


def inclusive_days(start: date, end: date) -> int:
    """Number of calendar days from the start of ``start`` to the end of ``end``."""
    return max(0, (end - start).days + 1)


def derive_status(package: Package, today: date) -> PackageStatus:
    if package.is_cancelled:
        return PackageStatus.CANCELLED
    if package.expiry_date < today:
        return PackageStatus.EXPIRED
    if package.start_date > today:
        return PackageStatus.UPCOMING
    if package.remaining_lessons <= 0:
        return PackageStatus.DEPLETED
    return PackageStatus.ACTIVE


def view(package: Package, today: date) -> PackageView:
    return PackageView(**package.model_dump(), status=derive_status(package, today))


def recompute_aggregate(packages: Iterable[Package]) -> int:
    return sum(p.remaining_lessons for p in packages if not p.is_cancelled)


def bookable_remaining(packages: Iterable[Package], today: date) -> int:
    return sum(
        p.remaining_lessons for p in packages
        if derive_status(p, today) == PackageStatus.ACTIVE
    )


def apply_aggregate(member: Member) -> bool:
    """Recompute the cached aggregate in place. Returns True when it had drifted."""
    aggregate = recompute_aggregate(member.packages)
    if aggregate == member.remaining_classes_aggregate:
        return False
    log.debug(
        "Aggregate for member %s corrected from %s to %s",
        member.id, member.remaining_classes_aggregate, aggregate,
    )
    member.remaining_classes_aggregate = aggregate
    return True


def check_invariants(member: Member) -> None:
    for package in member.packages:
        if not 0 <= package.remaining_lessons <= package.total_lessons:
            raise LedgerServiceError(
                f"Package {package.id} balance {package.remaining_lessons} "
                f"outside 0..{package.total_lessons}"
            )
    expected = recompute_aggregate(member.packages)
    if member.remaining_classes_aggregate != expected:
        raise LedgerServiceError(
            f"Member {member.id} aggregate {member.remaining_classes_aggregate} != {expected}"
        )
    if member.membership_status == MembershipStatus.FROZEN and member.freeze is None:
        raise LedgerServiceError(f"Member {member.id} is frozen without a freeze record")
    if member.freeze is not None and member.membership_status != MembershipStatus.FROZEN:
        raise LedgerServiceError(f"Member {member.id} has a freeze record but is not frozen")


def latest_expiry(packages: Iterable[Package]) -> Optional[date]:
    dates = [p.expiry_date for p in packages if not p.is_cancelled]
    return max(dates) if dates else None
