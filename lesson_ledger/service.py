import logging
from datetime import date, timedelta
from typing import Callable, Optional

from .bulk import BulkFreezeCoordinator
from .config import Settings, get_settings
from .credits import CreditService
from .errors import LedgerServiceError
from .expiry import ExpiryClock
from .ledger import derive_status, utc_today, view
from .migration import LegacyMigrator
from .models import (
    BatchResult,
    BookingEvent,
    CreditResult,
    Eligibility,
    ExpiringPackage,
    FreezeResult,
    FreezeScope,
    MemberLedger,
    MemberSummary,
    MembershipStatus,
    MigrationResult,
    MigrationSummary,
    PackageAssignment,
    PackageStatus,
    PackageTerms,
    ReconcileSummary,
)
from .reconciler import AutoReconciler
from .repository import CatalogLookup, DocumentStore, InMemoryCatalog, MemberRepository

log = logging.getLogger(__name__)


class LessonLedgerService:
    """
    Entry point used by the booking flow and the admin panel.

    One instance wires the credit service, expiry clock, bulk coordinator,
    migrator and reconciler around a single member repository.
    """

    def __init__(
        self,
        repository: Optional[MemberRepository] = None,
        catalog: Optional[CatalogLookup] = None,
        settings: Optional[Settings] = None,
        today: Callable[[], date] = utc_today,
        storage: Optional[DocumentStore] = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository or MemberRepository(storage, settings=self.settings)
        self.catalog = catalog or InMemoryCatalog()
        self.today = today

        self.migrator = LegacyMigrator(self.repository, self.settings, today)
        self.credits = CreditService(self.repository, self.catalog, self.migrator, self.settings, today)
        self.clock = ExpiryClock(self.repository, self.migrator, self.settings, today)
        self.bulk = BulkFreezeCoordinator(self.repository, self.clock)
        self.reconciler = AutoReconciler(self.repository, self.clock, self.migrator, self.settings)

    # Credits

    def can_book(self, member_id: str, on_date: date) -> Eligibility:
        return self.credits.can_book_on_date(member_id, on_date)

    def deduct(
        self, member_id: str, on_date: date, note: str = "", lesson_id: Optional[str] = None
    ) -> CreditResult:
        return self.credits.deduct(member_id, on_date, note, lesson_id)

    def refund(
        self, member_id: str, on_date: date, note: str = "", lesson_id: Optional[str] = None
    ) -> CreditResult:
        return self.credits.refund(member_id, on_date, note, lesson_id)

    def add_package(self, member_id: str, terms: PackageTerms, assigned_by: str) -> PackageAssignment:
        return self.credits.add_package(member_id, terms, assigned_by)

    def cancel_package(
        self, member_id: str, package_id: str, cancelled_by: str, reason: Optional[str] = None
    ) -> PackageAssignment:
        return self.credits.cancel_package(member_id, package_id, cancelled_by, reason)

    def get_ledger(self, member_id: str) -> MemberLedger:
        return self.credits.get_ledger(member_id)

    def handle_enrollment(self, event: BookingEvent) -> CreditResult:
        return self.credits.handle_enrollment(event)

    def handle_cancellation(self, event: BookingEvent) -> CreditResult:
        return self.credits.handle_cancellation(event)

    # Freeze

    def freeze(self, member_id: str, reason: str, planned_end_date: date, actor: str) -> FreezeResult:
        return self.clock.freeze(member_id, reason, planned_end_date, actor, FreezeScope.INDIVIDUAL)

    def unfreeze(self, member_id: str, actor: str, reason: Optional[str] = None) -> FreezeResult:
        return self.clock.unfreeze(member_id, actor, reason)

    def freeze_all(self, reason: str, planned_end_date: date, actor: str) -> BatchResult:
        return self.bulk.freeze_all(reason, planned_end_date, actor)

    def unfreeze_all(self, actor: str, reason: Optional[str] = None) -> BatchResult:
        return self.bulk.unfreeze_all(actor, reason)

    # Migration / reconciliation

    def migrate_member(self, member_id: str) -> MigrationResult:
        return self.migrator.migrate_member(member_id)

    def migrate_all(self) -> MigrationSummary:
        return self.migrator.migrate_all()

    def reconcile(self) -> ReconcileSummary:
        return self.reconciler.run()

    # Bulk reads

    def _before_bulk_read(self) -> None:
        if self.settings.reconcile_on_read:
            self.reconciler.run()

    def list_members(self) -> list[MemberSummary]:
        self._before_bulk_read()
        summaries = []
        for member_id in self.repository.member_ids():
            try:
                member = self.repository.get(member_id)
            except LedgerServiceError as e:
                log.warning("Skipping member %s in listing: %s", member_id, e.message)
                continue
            if member.deleted:
                continue
            summaries.append(MemberSummary(
                id=member.id,
                display_name=member.display_name,
                membership_status=member.membership_status,
                aggregate=member.remaining_classes_aggregate,
                package_count=len(member.packages),
                freeze_scope=member.freeze.freeze_scope if member.freeze else None,
            ))
        return summaries

    def expiring_packages(self, days_ahead: Optional[int] = None) -> list[ExpiringPackage]:
        self._before_bulk_read()
        if days_ahead is None:
            days_ahead = self.settings.expiring_soon_days
        today = self.today()
        horizon = today + timedelta(days=days_ahead)
        expiring = []
        for member_id in self.repository.member_ids():
            try:
                member = self.repository.get(member_id)
            except LedgerServiceError as e:
                log.warning("Skipping member %s in expiry scan: %s", member_id, e.message)
                continue
            if member.deleted or member.membership_status != MembershipStatus.ACTIVE:
                continue
            for package in member.packages:
                if derive_status(package, today) != PackageStatus.ACTIVE:
                    continue
                if package.expiry_date <= horizon:
                    expiring.append(ExpiringPackage(
                        member_id=member.id,
                        display_name=member.display_name,
                        package=view(package, today),
                        days_until_expiry=(package.expiry_date - today).days,
                    ))
        expiring.sort(key=lambda item: item.days_until_expiry)
        return expiring
