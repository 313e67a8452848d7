import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from .config import Settings, get_settings
from .errors import (
    CatalogPackageNotFoundError,
    InvalidRequestError,
    LedgerServiceError,
    MembershipNotActiveError,
    PackageNotFoundError,
)
from .ledger import (
    BOOKABLE_MEMBERSHIP,
    add_months,
    apply_aggregate,
    bookable_remaining,
    utc_today,
    view,
)
from .migration import LegacyMigrator
from .models import (
    BookingEvent,
    CatalogPackage,
    CreditResult,
    Eligibility,
    Member,
    MemberLedger,
    MembershipStatus,
    Package,
    PackageAssignment,
    PackageTerms,
)
from .repository import CatalogLookup, InMemoryCatalog, MemberRepository
from .resolvers import (
    DURATION_RESOLVERS,
    NAME_RESOLVERS,
    PRICE_RESOLVERS,
    START_DATE_RESOLVERS,
    TOTAL_LESSONS_RESOLVERS,
    TYPE_RESOLVERS,
    TermSources,
    resolve_first,
)
from .selector import (
    RefundTarget,
    find_drawn,
    select_for_date,
    select_for_deduction,
    select_refund_target,
)

log = logging.getLogger(__name__)


def _require_bookable(member: Member) -> None:
    if member.membership_status not in BOOKABLE_MEMBERSHIP:
        raise MembershipNotActiveError(
            f"Member {member.id} is {member.membership_status.value} and cannot book lessons"
        )


class CreditService:
    """Deducts, refunds and assigns lesson credits on a member's package ledger."""

    def __init__(
        self,
        repository: MemberRepository,
        catalog: Optional[CatalogLookup] = None,
        migrator: Optional[LegacyMigrator] = None,
        settings: Optional[Settings] = None,
        today: Callable[[], date] = utc_today,
    ):
        self.repository = repository
        self.catalog = catalog or InMemoryCatalog()
        self.settings = settings or get_settings()
        self.today = today
        self.migrator = migrator or LegacyMigrator(repository, self.settings, today)

    def _read(self, member_id: str) -> Member:
        member = self.repository.get(member_id)
        # Lazy migration on read stays in memory; writes persist it.
        self.migrator.migrate(member)
        return member

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def can_book_on_date(self, member_id: str, on_date: date) -> Eligibility:
        try:
            member = self._read(member_id)
            _require_bookable(member)
            select_for_deduction(member.packages, on_date)
        except LedgerServiceError as e:
            return Eligibility.failure(e, can_book=False)

        today = self.today()
        eligible = [view(p, today) for p in select_for_date(member.packages, on_date) if p.remaining_lessons > 0]
        return Eligibility(can_book=True, eligible_packages=eligible, message="Lesson can be booked")

    def get_ledger(self, member_id: str) -> MemberLedger:
        try:
            member = self._read(member_id)
        except LedgerServiceError as e:
            return MemberLedger.failure(e, member_id=member_id)

        today = self.today()
        return MemberLedger(
            member_id=member.id,
            membership_status=member.membership_status,
            packages=[view(p, today) for p in member.packages],
            aggregate=member.remaining_classes_aggregate,
            bookable_remaining=bookable_remaining(member.packages, today),
        )

    # ------------------------------------------------------------------
    # Deduct / refund
    # ------------------------------------------------------------------

    def deduct(
        self, member_id: str, on_date: date, note: str = "", lesson_id: Optional[str] = None
    ) -> CreditResult:
        def mutate(member: Member) -> Package:
            self.migrator.migrate(member)
            _require_bookable(member)
            package = select_for_deduction(member.packages, on_date)
            package.remaining_lessons -= 1
            package.last_used_at = datetime.now(timezone.utc)
            package.last_used_for = note or None
            if lesson_id:
                package.drawn_lessons.append(lesson_id)
            apply_aggregate(member)
            return package

        try:
            member, package = self.repository.update(member_id, mutate)
        except LedgerServiceError as e:
            log.warning("Deduction for member %s on %s failed: %s", member_id, on_date, e.message)
            return CreditResult.failure(e)

        log.info(
            "Deducted 1 lesson from package %s of member %s (%s left, aggregate %s)",
            package.id, member_id, package.remaining_lessons, member.remaining_classes_aggregate,
        )
        return CreditResult(
            package=view(package, self.today()),
            remaining_in_package=package.remaining_lessons,
            aggregate=member.remaining_classes_aggregate,
            message=f"Lesson deducted from {package.name}",
        )

    def refund(
        self, member_id: str, on_date: date, note: str = "", lesson_id: Optional[str] = None
    ) -> CreditResult:
        def mutate(member: Member):
            self.migrator.migrate(member)
            drawn = find_drawn(member.packages, lesson_id) if lesson_id else None
            if drawn is not None:
                drawn.drawn_lessons.remove(lesson_id)
                target = RefundTarget(drawn, False)
            else:
                target = select_refund_target(
                    member.packages, on_date, allow_fallback=self.settings.refund_fallback_enabled
                )
            package = target.package
            capped = package.remaining_lessons >= package.total_lessons
            if not capped:
                package.remaining_lessons += 1
            package.last_refund_at = datetime.now(timezone.utc)
            package.last_refund_for = note or None
            apply_aggregate(member)
            return package, target.fallback_used, capped

        try:
            member, (package, fallback_used, capped) = self.repository.update(member_id, mutate)
        except LedgerServiceError as e:
            log.warning("Refund for member %s on %s failed: %s", member_id, on_date, e.message)
            return CreditResult.failure(e)

        if fallback_used:
            log.warning(
                "No package of member %s covers %s; refunded to package %s instead",
                member_id, on_date, package.id,
            )
        if capped:
            message = f"{package.name} is already full; nothing refunded"
        else:
            message = f"Lesson refunded to {package.name}"
        return CreditResult(
            package=view(package, self.today()),
            remaining_in_package=package.remaining_lessons,
            aggregate=member.remaining_classes_aggregate,
            fallback_used=fallback_used,
            capped=capped,
            message=message,
        )

    # ------------------------------------------------------------------
    # Assignment / cancellation
    # ------------------------------------------------------------------

    def _catalog_entry(self, terms: PackageTerms) -> Optional[CatalogPackage]:
        if not terms.catalog_package_id:
            return None
        entry = self.catalog.get(terms.catalog_package_id)
        if entry is None:
            raise CatalogPackageNotFoundError(terms.catalog_package_id)
        return entry

    def build_package(self, terms: PackageTerms, assigned_by: str) -> Package:
        sources = TermSources(
            settings=self.settings,
            today=self.today(),
            catalog=self._catalog_entry(terms),
            terms=terms,
        )
        start_date = resolve_first(START_DATE_RESOLVERS, sources)
        duration_months = resolve_first(DURATION_RESOLVERS, sources)
        total_lessons = resolve_first(TOTAL_LESSONS_RESOLVERS, sources)
        return Package(
            catalog_package_id=terms.catalog_package_id,
            name=resolve_first(NAME_RESOLVERS, sources),
            type=resolve_first(TYPE_RESOLVERS, sources),
            start_date=start_date,
            expiry_date=add_months(start_date, duration_months, self.settings.days_per_month),
            total_lessons=total_lessons,
            remaining_lessons=total_lessons,
            price=resolve_first(PRICE_RESOLVERS, sources),
            duration_months=duration_months,
            assigned_by=assigned_by,
        )

    def add_package(self, member_id: str, terms: PackageTerms, assigned_by: str) -> PackageAssignment:
        try:
            if not assigned_by or not assigned_by.strip():
                raise InvalidRequestError("assigned_by is required")
            package = self.build_package(terms, assigned_by)

            def mutate(member: Member) -> None:
                self.migrator.migrate(member)
                member.packages.append(package)
                if member.membership_status == MembershipStatus.PENDING:
                    member.membership_status = MembershipStatus.ACTIVE
                apply_aggregate(member)

            member, _ = self.repository.update(member_id, mutate)
        except LedgerServiceError as e:
            log.warning("Assigning a package to member %s failed: %s", member_id, e.message)
            return PackageAssignment.failure(e)

        log.info(
            "Assigned package %s (%s lessons, %s..%s) to member %s",
            package.id, package.total_lessons, package.start_date, package.expiry_date, member_id,
        )
        return PackageAssignment(
            package=view(package, self.today()),
            aggregate=member.remaining_classes_aggregate,
            total_packages=len(member.packages),
            message=f"{package.name} assigned",
        )

    def cancel_package(
        self, member_id: str, package_id: str, cancelled_by: str, reason: Optional[str] = None
    ) -> PackageAssignment:
        def mutate(member: Member) -> Package:
            self.migrator.migrate(member)
            package = member.find_package(package_id)
            if package is None:
                raise PackageNotFoundError(f"Package {package_id} not found for member {member_id}")
            if package.is_cancelled:
                raise InvalidRequestError(f"Package {package_id} is already cancelled")
            package.cancelled_at = datetime.now(timezone.utc)
            package.cancelled_by = cancelled_by
            package.cancellation_reason = reason
            apply_aggregate(member)
            return package

        try:
            member, package = self.repository.update(member_id, mutate)
        except LedgerServiceError as e:
            log.warning("Cancelling package %s of member %s failed: %s", package_id, member_id, e.message)
            return PackageAssignment.failure(e)

        log.info("Cancelled package %s of member %s", package_id, member_id)
        return PackageAssignment(
            package=view(package, self.today()),
            aggregate=member.remaining_classes_aggregate,
            total_packages=len(member.packages),
            message=f"{package.name} cancelled",
        )

    # ------------------------------------------------------------------
    # Booking events
    # ------------------------------------------------------------------

    def handle_enrollment(self, event: BookingEvent) -> CreditResult:
        return self.deduct(event.participant_id, event.scheduled_date, event.describe(), event.lesson_id)

    def handle_cancellation(self, event: BookingEvent) -> CreditResult:
        return self.refund(event.participant_id, event.scheduled_date, event.describe(), event.lesson_id)
