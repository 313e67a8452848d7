"""
Population-wide freeze and unfreeze.

Every eligible member is attempted; one member's failure is recorded in the
batch result and never stops the batch.
"""

import logging
from datetime import date
from typing import Callable, Optional

from .errors import ErrorCode, InvalidFreezeWindowError, InvalidRequestError, LedgerServiceError
from .expiry import ExpiryClock
from .models import BatchOutcome, BatchResult, FreezeScope, Member, MemberError, MembershipStatus
from .repository import MemberRepository

log = logging.getLogger(__name__)

# Member states a batch reports as already done, skipped, or acts on.
ALREADY = "already"
SKIP = "skip"
ACT = "act"


def classify_for_freeze(member: Member) -> str:
    if member.deleted or member.membership_status == MembershipStatus.CANCELLED:
        return SKIP
    if member.membership_status == MembershipStatus.FROZEN:
        return ALREADY
    if member.membership_status != MembershipStatus.ACTIVE:
        return SKIP
    return ACT


def classify_for_unfreeze(member: Member) -> str:
    if member.deleted or member.membership_status == MembershipStatus.CANCELLED:
        return SKIP
    if member.membership_status != MembershipStatus.FROZEN:
        return ALREADY
    if member.freeze is not None and member.freeze.freeze_scope == FreezeScope.INDIVIDUAL:
        return SKIP
    return ACT


class BulkFreezeCoordinator:
    def __init__(self, repository: MemberRepository, clock: ExpiryClock):
        self.repository = repository
        self.clock = clock

    def _run(
        self,
        classify: Callable[[Member], str],
        apply: Callable[[str], object],
        already_code: ErrorCode,
    ) -> BatchResult:
        batch = BatchResult()
        for member_id in self.repository.member_ids():
            try:
                member = self.repository.get(member_id)
                decision = classify(member)
                if decision == SKIP:
                    batch.skipped_count += 1
                    continue
                if decision == ALREADY:
                    batch.already_in_state_count += 1
                    continue
                result = apply(member_id)
            except Exception as e:
                log.exception("Bulk operation failed for member %s", member_id)
                batch.errors.append(MemberError(
                    member_id=member_id,
                    error=e.code if isinstance(e, LedgerServiceError) else ErrorCode.INVALID_REQUEST,
                    message=str(e),
                ))
                continue

            if result.success:
                batch.processed_count += 1
            elif result.error == already_code:
                # Changed state between the scan and the update.
                batch.already_in_state_count += 1
            else:
                batch.errors.append(MemberError(member_id=member_id, error=result.error, message=result.message))
        return batch.resolve_outcome()

    def freeze_all(self, reason: str, planned_end_date: date, actor: str) -> BatchResult:
        if not reason or not reason.strip():
            return BatchResult.failure(InvalidRequestError("A freeze reason is required"), outcome=BatchOutcome.FAILED)
        today = self.clock.today()
        if planned_end_date <= today:
            return BatchResult.failure(
                InvalidFreezeWindowError(
                    f"Freeze end date {planned_end_date.isoformat()} must be after {today.isoformat()}"
                ),
                outcome=BatchOutcome.FAILED,
            )

        batch = self._run(
            classify_for_freeze,
            lambda member_id: self.clock.freeze(
                member_id, reason, planned_end_date, actor, scope=FreezeScope.GROUP
            ),
            ErrorCode.ALREADY_FROZEN,
        )
        batch.message = self._summarize("frozen", batch)
        log.info("Bulk freeze by %s: %s", actor, batch.message)
        return batch

    def unfreeze_all(self, actor: str, reason: Optional[str] = None) -> BatchResult:
        reason = reason.strip() if reason else None
        batch = self._run(
            classify_for_unfreeze,
            lambda member_id: self.clock.unfreeze(member_id, actor, reason),
            ErrorCode.NOT_FROZEN,
        )
        batch.message = self._summarize("unfrozen", batch)
        log.info("Bulk unfreeze by %s: %s", actor, batch.message)
        return batch

    @staticmethod
    def _summarize(verb: str, batch: BatchResult) -> str:
        parts = [f"{batch.processed_count} members {verb}"]
        if batch.already_in_state_count:
            parts.append(f"{batch.already_in_state_count} already {verb}")
        if batch.skipped_count:
            parts.append(f"{batch.skipped_count} skipped")
        if batch.errors:
            parts.append(f"{len(batch.errors)} failed")
        return ", ".join(parts)
