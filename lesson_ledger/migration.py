"""
Legacy migration: turns the single-package root fields of an older member
record into one ledger entry. Running it again on a migrated member is a no-op.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from .config import Settings, get_settings
from .errors import ErrorCode, LedgerServiceError
from .ledger import apply_aggregate, legacy_package_id, utc_today
from .models import Member, MemberError, MigrationResult, MigrationSummary, Package
from .repository import MemberRepository
from .resolvers import (
    LEGACY_EXPIRY_RESOLVERS,
    NAME_RESOLVERS,
    START_DATE_RESOLVERS,
    TOTAL_LESSONS_RESOLVERS,
    TYPE_RESOLVERS,
    TermSources,
    resolve_first,
)

log = logging.getLogger(__name__)


class LegacyMigrator:
    def __init__(
        self,
        repository: MemberRepository,
        settings: Optional[Settings] = None,
        today: Callable[[], date] = utc_today,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.today = today

    def needs_migration(self, member: Member) -> bool:
        return not member.packages and member.legacy is not None and member.legacy.remaining_classes > 0

    def synthesize(self, member: Member) -> Package:
        legacy = member.legacy
        sources = TermSources(settings=self.settings, today=self.today(), legacy=legacy)
        start_date = resolve_first(START_DATE_RESOLVERS, sources)
        expiry_date = max(resolve_first(LEGACY_EXPIRY_RESOLVERS, sources), start_date)
        return Package(
            id=legacy_package_id(member.id),
            catalog_package_id=legacy.package_id,
            name=resolve_first(NAME_RESOLVERS, sources),
            type=resolve_first(TYPE_RESOLVERS, sources),
            start_date=start_date,
            expiry_date=expiry_date,
            total_lessons=resolve_first(TOTAL_LESSONS_RESOLVERS, sources),
            remaining_lessons=legacy.remaining_classes,
            assigned_at=legacy.assigned_at or legacy.approved_at or datetime.now(timezone.utc),
            assigned_by=legacy.approved_by or "system_migration",
            is_legacy=True,
        )

    def migrate(self, member: Member) -> Optional[Package]:
        """Migrate ``member`` in place. Returns the synthesized package, if any."""
        if not self.needs_migration(member):
            return None
        package = self.synthesize(member)
        member.packages.append(package)
        member.legacy = None
        member.migrated_at = datetime.now(timezone.utc)
        apply_aggregate(member)
        return package

    def migrate_member(self, member_id: str) -> MigrationResult:
        try:
            if not self.needs_migration(self.repository.get(member_id)):
                return MigrationResult(member_id=member_id, migrated=False, message="Nothing to migrate")
            _, package = self.repository.update(member_id, self.migrate)
        except LedgerServiceError as e:
            log.warning("Migration of member %s failed: %s", member_id, e.message)
            return MigrationResult.failure(e, member_id=member_id)

        if package is None:
            return MigrationResult(member_id=member_id, migrated=False, message="Nothing to migrate")
        log.info("Migrated legacy credits of member %s into package %s", member_id, package.id)
        return MigrationResult(
            member_id=member_id,
            migrated=True,
            package=package,
            message=f"Migrated {package.remaining_lessons} legacy lessons",
        )

    def migrate_all(self) -> MigrationSummary:
        summary = MigrationSummary()
        for member_id in self.repository.member_ids():
            try:
                result = self.migrate_member(member_id)
            except Exception as e:
                log.exception("Unexpected error migrating member %s", member_id)
                summary.errors.append(
                    MemberError(member_id=member_id, error=ErrorCode.INVALID_REQUEST, message=str(e))
                )
                continue

            if result.migrated:
                summary.migrated_count += 1
            elif result.success:
                summary.skipped_count += 1
            else:
                summary.errors.append(MemberError(member_id=member_id, error=result.error, message=result.message))

        summary.success = not summary.errors
        summary.message = (
            f"{summary.migrated_count} migrated, {summary.skipped_count} skipped, "
            f"{len(summary.errors)} failed"
        )
        return summary
