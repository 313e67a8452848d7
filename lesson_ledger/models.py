import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import uuid4

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from .errors import ErrorCode, LedgerServiceError


def _to_date(value: Any) -> Any:
    # Older records carry full ISO timestamps where a calendar date is meant.
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value


LedgerDate = Annotated[date, BeforeValidator(_to_date)]


PACKAGE_TYPE_ALIASES = {
    "one-on-one": ("one-on-one", "one-onone", "oneonone", "birebir", "private", "personal"),
    "duo": ("duo", "partner", "semi-private", "ikili"),
    "group": ("group", "group-class", "group-lesson", "class", "grup"),
}


def normalize_package_type(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    normalized = re.sub(r"[_\s]+", "-", value.strip().lower())
    if not normalized:
        return None
    for canonical, aliases in PACKAGE_TYPE_ALIASES.items():
        if normalized in aliases:
            return canonical
    return normalized


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_package_id() -> str:
    return f"pkg_{uuid4().hex[:16]}"


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    FROZEN = "frozen"
    CANCELLED = "cancelled"
    PENDING = "pending"
    REJECTED = "rejected"


class PackageType(str, Enum):
    GROUP = "group"
    ONE_ON_ONE = "one-on-one"
    DUO = "duo"


LessonType = Annotated[PackageType, BeforeValidator(normalize_package_type)]


class PackageStatus(str, Enum):
    ACTIVE = "active"
    UPCOMING = "upcoming"
    EXPIRED = "expired"
    DEPLETED = "depleted"
    CANCELLED = "cancelled"


class FreezeScope(str, Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class BatchOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    NOOP = "noop"


# ---------------------------------------------------------------------------
# Stored ledger shape
# ---------------------------------------------------------------------------

class LegacyCredits(BaseModel):
    """Root-level credit fields of a member record that predates the package ledger."""

    remaining_classes: int = 0
    package_id: Optional[str] = None
    package_name: Optional[str] = None
    package_type: Optional[LessonType] = None
    lesson_count: Optional[int] = None
    package_start_date: Optional[LedgerDate] = None
    package_expiry_date: Optional[LedgerDate] = None
    assigned_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None


class Package(BaseModel):
    id: str = Field(default_factory=new_package_id)
    catalog_package_id: Optional[str] = None
    name: str
    type: LessonType = PackageType.GROUP
    start_date: LedgerDate
    expiry_date: LedgerDate
    total_lessons: int = Field(..., ge=0)
    remaining_lessons: int = Field(..., ge=0)
    price: float = 0
    duration_months: Optional[int] = None
    assigned_at: datetime = Field(default_factory=_utc_now)
    assigned_by: str = "system"
    is_legacy: bool = False

    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None

    last_used_at: Optional[datetime] = None
    last_used_for: Optional[str] = None
    last_refund_at: Optional[datetime] = None
    last_refund_for: Optional[str] = None
    drawn_lessons: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_balance(self) -> "Package":
        if self.remaining_lessons > self.total_lessons:
            raise ValueError("remaining_lessons cannot exceed total_lessons")
        if self.expiry_date < self.start_date:
            raise ValueError("expiry_date cannot be before start_date")
        return self

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None


class FreezeSnapshot(BaseModel):
    membership_status: MembershipStatus
    package_expiries: dict[str, LedgerDate] = Field(default_factory=dict)


class FreezeRecord(BaseModel):
    freeze_start_date: LedgerDate
    freeze_end_date_planned: Optional[LedgerDate] = None
    # None on older records that never stored a duration
    planned_duration_days: Optional[int] = None
    reason: str
    frozen_by: str
    frozen_at: datetime = Field(default_factory=_utc_now)
    freeze_scope: FreezeScope = FreezeScope.INDIVIDUAL
    snapshot: FreezeSnapshot


class FreezeHistoryEntry(BaseModel):
    freeze: FreezeRecord
    unfrozen_on: LedgerDate
    unfrozen_by: str
    unfreeze_reason: Optional[str] = None
    actual_frozen_days: int


class Member(BaseModel):
    id: str
    display_name: Optional[str] = None
    membership_status: MembershipStatus = MembershipStatus.ACTIVE
    packages: list[Package] = Field(default_factory=list)
    remaining_classes_aggregate: int = 0
    freeze: Optional[FreezeRecord] = None
    freeze_history: list[FreezeHistoryEntry] = Field(default_factory=list)
    deleted: bool = False
    legacy: Optional[LegacyCredits] = None
    migrated_at: Optional[datetime] = None

    def find_package(self, package_id: str) -> Optional[Package]:
        for package in self.packages:
            if package.id == package_id:
                return package
        return None


class CatalogPackage(BaseModel):
    id: str
    name: str
    type: LessonType = PackageType.GROUP
    total_lessons: int = Field(..., gt=0)
    duration_months: int = Field(default=1, gt=0)
    price: float = 0
    is_active: bool = True


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class PackageTerms(BaseModel):
    catalog_package_id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[LessonType] = None
    total_lessons: Optional[int] = Field(default=None, gt=0)
    duration_months: Optional[int] = Field(default=None, gt=0)
    start_date: Optional[LedgerDate] = None
    price: Optional[float] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "catalog_package_id": "group-8",
            "start_date": "2025-01-01",
        }
    })


class AddPackageRequest(BaseModel):
    terms: PackageTerms
    assigned_by: str = Field(..., min_length=1)


class CreditRequest(BaseModel):
    date: LedgerDate
    note: str = ""
    lesson_id: Optional[str] = None


class CancelPackageRequest(BaseModel):
    cancelled_by: str = Field(..., min_length=1)
    reason: Optional[str] = None


class FreezeRequest(BaseModel):
    reason: str
    planned_end_date: LedgerDate
    frozen_by: str = "admin"


class UnfreezeRequest(BaseModel):
    unfrozen_by: str = "admin"
    reason: Optional[str] = None


class BookingEvent(BaseModel):
    participant_id: str
    lesson_id: str
    scheduled_date: LedgerDate
    title: str = ""

    def describe(self) -> str:
        label = self.title or "Lesson"
        return f"{label} ({self.lesson_id})"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class LedgerResult(BaseModel):
    success: bool = True
    error: Optional[ErrorCode] = None
    message: str = ""

    @classmethod
    def failure(cls, exc: LedgerServiceError, **fields):
        return cls(success=False, error=exc.code, message=exc.message, **fields)

    @property
    def retryable(self) -> bool:
        return self.error == ErrorCode.PERSISTENCE_CONFLICT


class PackageView(Package):
    status: PackageStatus


class Eligibility(LedgerResult):
    can_book: bool = False
    eligible_packages: list[PackageView] = Field(default_factory=list)

    @property
    def reason(self) -> Optional[ErrorCode]:
        return self.error


class CreditResult(LedgerResult):
    package: Optional[PackageView] = None
    remaining_in_package: Optional[int] = None
    aggregate: Optional[int] = None
    fallback_used: bool = False
    capped: bool = False


class PackageAssignment(LedgerResult):
    package: Optional[PackageView] = None
    aggregate: Optional[int] = None
    total_packages: int = 0


class MemberLedger(LedgerResult):
    member_id: Optional[str] = None
    membership_status: Optional[MembershipStatus] = None
    packages: list[PackageView] = Field(default_factory=list)
    aggregate: int = 0
    bookable_remaining: int = 0


class FreezeResult(LedgerResult):
    member_id: Optional[str] = None
    membership_status: Optional[MembershipStatus] = None
    freeze: Optional[FreezeRecord] = None
    actual_frozen_days: Optional[int] = None
    expiry_changes: dict[str, LedgerDate] = Field(default_factory=dict)


class MemberError(BaseModel):
    member_id: str
    error: ErrorCode
    message: str


class BatchResult(LedgerResult):
    outcome: BatchOutcome = BatchOutcome.NOOP
    processed_count: int = 0
    already_in_state_count: int = 0
    skipped_count: int = 0
    errors: list[MemberError] = Field(default_factory=list)

    def resolve_outcome(self) -> "BatchResult":
        if self.errors and self.processed_count:
            self.outcome = BatchOutcome.PARTIAL
        elif self.errors:
            self.outcome = BatchOutcome.FAILED
        elif self.processed_count:
            self.outcome = BatchOutcome.SUCCESS
        else:
            self.outcome = BatchOutcome.NOOP
        self.success = not self.errors
        return self


class MigrationResult(LedgerResult):
    member_id: Optional[str] = None
    migrated: bool = False
    package: Optional[Package] = None


class MigrationSummary(LedgerResult):
    migrated_count: int = 0
    skipped_count: int = 0
    errors: list[MemberError] = Field(default_factory=list)


class ReconcileSummary(LedgerResult):
    scanned_count: int = 0
    corrected_count: int = 0
    auto_unfrozen_count: int = 0
    errors: list[MemberError] = Field(default_factory=list)


class MemberSummary(BaseModel):
    id: str
    display_name: Optional[str] = None
    membership_status: MembershipStatus
    aggregate: int
    package_count: int
    freeze_scope: Optional[FreezeScope] = None


class ExpiringPackage(BaseModel):
    member_id: str
    display_name: Optional[str] = None
    package: PackageView
    days_until_expiry: int
