"""
Auto Reconciler

Opportunistic pass run before bulk reads: repairs aggregate drift and lifts
freezes whose planned end date has passed. It never raises; problems go to
the log and into the returned summary.
"""

import logging
from datetime import date
from typing import Optional

from .config import Settings, get_settings
from .errors import ErrorCode, LedgerServiceError
from .expiry import ExpiryClock
from .ledger import apply_aggregate, recompute_aggregate
from .migration import LegacyMigrator
from .models import Member, MemberError, MembershipStatus, ReconcileSummary
from .repository import MemberRepository

log = logging.getLogger(__name__)


class AutoReconciler:
    def __init__(
        self,
        repository: MemberRepository,
        clock: ExpiryClock,
        migrator: LegacyMigrator,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.clock = clock
        self.migrator = migrator
        self.settings = settings or get_settings()

    def _has_drift(self, member: Member) -> bool:
        if self.migrator.needs_migration(member):
            return True
        return member.remaining_classes_aggregate != recompute_aggregate(member.packages)

    def _repair(self, member: Member) -> None:
        self.migrator.migrate(member)
        apply_aggregate(member)

    @staticmethod
    def freeze_lapsed(member: Member, today: date) -> bool:
        return (
            member.membership_status == MembershipStatus.FROZEN
            and member.freeze is not None
            and member.freeze.freeze_end_date_planned is not None
            and member.freeze.freeze_end_date_planned < today
        )

    def run(self) -> ReconcileSummary:
        today = self.clock.today()
        summary = ReconcileSummary()
        for member_id in self.repository.member_ids():
            summary.scanned_count += 1
            try:
                member = self.repository.get(member_id)
                if member.deleted:
                    continue
                if self._has_drift(member):
                    self.repository.update(member_id, self._repair)
                    summary.corrected_count += 1
                if self.freeze_lapsed(member, today):
                    result = self.clock.unfreeze(
                        member_id,
                        self.settings.auto_unfreeze_actor,
                        self.settings.auto_unfreeze_reason,
                    )
                    if result.success:
                        summary.auto_unfrozen_count += 1
                    else:
                        log.warning("Auto-unfreeze of member %s failed: %s", member_id, result.message)
                        summary.errors.append(
                            MemberError(member_id=member_id, error=result.error, message=result.message)
                        )
            except Exception as e:
                log.exception("Reconciling member %s failed", member_id)
                summary.errors.append(MemberError(
                    member_id=member_id,
                    error=e.code if isinstance(e, LedgerServiceError) else ErrorCode.INVALID_REQUEST,
                    message=str(e),
                ))

        summary.success = not summary.errors
        summary.message = (
            f"{summary.scanned_count} scanned, {summary.corrected_count} corrected, "
            f"{summary.auto_unfrozen_count} auto-unfrozen"
        )
        if summary.corrected_count or summary.auto_unfrozen_count or summary.errors:
            log.info("Reconcile pass: %s, %s errors", summary.message, len(summary.errors))
        return summary
