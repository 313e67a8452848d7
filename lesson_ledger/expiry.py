"""
Expiry Clock

Freezing a membership stops the expiry clock of its packages; unfreezing
restarts it once, pushing each package's pre-freeze expiry forward by the days
the member actually spent frozen.

States: active -> frozen -> active. Any other transition is rejected.
"""

import logging
from datetime import date, timedelta
from typing import Callable, Optional

from .config import Settings, get_settings
from .errors import (
    AlreadyFrozenError,
    InvalidFreezeWindowError,
    InvalidRequestError,
    LedgerServiceError,
    MembershipNotActiveError,
    NotFrozenError,
)
from .ledger import apply_aggregate, derive_status, inclusive_days, utc_today
from .migration import LegacyMigrator
from .models import (
    FreezeHistoryEntry,
    FreezeRecord,
    FreezeResult,
    FreezeScope,
    FreezeSnapshot,
    Member,
    MembershipStatus,
    PackageStatus,
)
from .repository import MemberRepository

log = logging.getLogger(__name__)


def planned_duration_days(freeze_start: date, planned_end: date) -> int:
    return inclusive_days(freeze_start, planned_end)


def actual_frozen_days(record: FreezeRecord, today: date) -> int:
    """
    Days of the freeze window actually consumed.

    Reaching the planned end day uses the whole planned window. An early
    unfreeze counts only the days already spent frozen; the unfreeze day
    itself is an active day again. Records without a planned duration count
    every elapsed day.
    """
    elapsed = max(0, (today - record.freeze_start_date).days)
    if record.planned_duration_days is None:
        return elapsed
    if record.freeze_end_date_planned is not None and today >= record.freeze_end_date_planned:
        return max(0, record.planned_duration_days)
    return max(0, min(record.planned_duration_days, elapsed))


class ExpiryClock:
    def __init__(
        self,
        repository: MemberRepository,
        migrator: Optional[LegacyMigrator] = None,
        settings: Optional[Settings] = None,
        today: Callable[[], date] = utc_today,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.today = today
        self.migrator = migrator or LegacyMigrator(repository, self.settings, today)

    def freeze(
        self,
        member_id: str,
        reason: str,
        planned_end_date: date,
        actor: str,
        scope: FreezeScope = FreezeScope.INDIVIDUAL,
    ) -> FreezeResult:
        today = self.today()

        def mutate(member: Member) -> FreezeRecord:
            self.migrator.migrate(member)
            if member.membership_status == MembershipStatus.FROZEN:
                raise AlreadyFrozenError(f"Member {member.id} is already frozen")
            if member.membership_status != MembershipStatus.ACTIVE:
                raise MembershipNotActiveError(
                    f"Member {member.id} is {member.membership_status.value} and cannot be frozen"
                )

            expiries = {
                p.id: p.expiry_date for p in member.packages
                if derive_status(p, today) not in (PackageStatus.CANCELLED, PackageStatus.EXPIRED)
            }
            record = FreezeRecord(
                freeze_start_date=today,
                freeze_end_date_planned=planned_end_date,
                planned_duration_days=planned_duration_days(today, planned_end_date),
                reason=reason.strip(),
                frozen_by=actor,
                freeze_scope=scope,
                snapshot=FreezeSnapshot(membership_status=member.membership_status, package_expiries=expiries),
            )
            member.freeze = record
            member.membership_status = MembershipStatus.FROZEN
            apply_aggregate(member)
            return record

        try:
            if not reason or not reason.strip():
                raise InvalidRequestError("A freeze reason is required")
            if planned_end_date <= today:
                raise InvalidFreezeWindowError(
                    f"Freeze end date {planned_end_date.isoformat()} must be after {today.isoformat()}"
                )
            member, record = self.repository.update(member_id, mutate)
        except LedgerServiceError as e:
            log.warning("Freezing member %s failed: %s", member_id, e.message)
            return FreezeResult.failure(e, member_id=member_id)

        log.info(
            "Froze member %s (%s) until %s, %s planned days",
            member_id, scope.value, planned_end_date, record.planned_duration_days,
        )
        return FreezeResult(
            member_id=member_id,
            membership_status=member.membership_status,
            freeze=record,
            message="Membership frozen",
        )

    def unfreeze(self, member_id: str, actor: str, reason: Optional[str] = None) -> FreezeResult:
        today = self.today()

        def mutate(member: Member):
            if member.membership_status != MembershipStatus.FROZEN:
                raise NotFrozenError(f"Member {member.id} is not frozen")
            self.migrator.migrate(member)
            record = member.freeze
            changes = {}
            days = 0
            if record is not None:
                days = actual_frozen_days(record, today)
                for package_id, original_expiry in record.snapshot.package_expiries.items():
                    package = member.find_package(package_id)
                    if package is None or package.is_cancelled:
                        continue
                    # Always from the pre-freeze expiry, so repeating this is harmless.
                    package.expiry_date = original_expiry + timedelta(days=days)
                    changes[package_id] = package.expiry_date
                member.membership_status = record.snapshot.membership_status
                member.freeze_history.append(FreezeHistoryEntry(
                    freeze=record,
                    unfrozen_on=today,
                    unfrozen_by=actor,
                    unfreeze_reason=reason,
                    actual_frozen_days=days,
                ))
            else:
                member.membership_status = MembershipStatus.ACTIVE
            member.freeze = None
            apply_aggregate(member)
            return days, changes

        try:
            member, (days, changes) = self.repository.update(member_id, mutate)
        except LedgerServiceError as e:
            log.warning("Unfreezing member %s failed: %s", member_id, e.message)
            return FreezeResult.failure(e, member_id=member_id)

        log.info("Unfroze member %s after %s frozen days (by %s)", member_id, days, actor)
        return FreezeResult(
            member_id=member_id,
            membership_status=member.membership_status,
            actual_frozen_days=days,
            expiry_changes=changes,
            message="Membership unfrozen",
        )
