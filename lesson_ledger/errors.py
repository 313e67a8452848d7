from enum import Enum


class ErrorCode(str, Enum):
    MEMBER_NOT_FOUND = "MemberNotFound"
    CATALOG_PACKAGE_NOT_FOUND = "CatalogPackageNotFound"
    PACKAGE_NOT_FOUND = "PackageNotFound"
    NO_PACKAGE_FOR_DATE = "NoPackageForDate"
    NO_CREDITS_IN_RANGE = "NoCreditsInRange"
    INVALID_FREEZE_WINDOW = "InvalidFreezeWindow"
    ALREADY_FROZEN = "AlreadyFrozen"
    NOT_FROZEN = "NotFrozen"
    MEMBERSHIP_NOT_ACTIVE = "MembershipNotActive"
    INVALID_REQUEST = "InvalidRequest"
    PERSISTENCE_CONFLICT = "PersistenceConflict"
    CORRUPT_RECORD = "CorruptRecord"


class LedgerServiceError(Exception):
    code = ErrorCode.INVALID_REQUEST
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MemberNotFoundError(LedgerServiceError):
    code = ErrorCode.MEMBER_NOT_FOUND

    def __init__(self, member_id: str):
        super().__init__(f"Member {member_id} not found")
        self.member_id = member_id


class CatalogPackageNotFoundError(LedgerServiceError):
    code = ErrorCode.CATALOG_PACKAGE_NOT_FOUND

    def __init__(self, catalog_package_id: str):
        super().__init__(f"Catalog package {catalog_package_id} not found")
        self.catalog_package_id = catalog_package_id


class PackageNotFoundError(LedgerServiceError):
    code = ErrorCode.PACKAGE_NOT_FOUND


class NoPackageForDateError(LedgerServiceError):
    code = ErrorCode.NO_PACKAGE_FOR_DATE


class NoCreditsInRangeError(LedgerServiceError):
    code = ErrorCode.NO_CREDITS_IN_RANGE


class InvalidFreezeWindowError(LedgerServiceError):
    code = ErrorCode.INVALID_FREEZE_WINDOW


class AlreadyFrozenError(LedgerServiceError):
    code = ErrorCode.ALREADY_FROZEN


class NotFrozenError(LedgerServiceError):
    code = ErrorCode.NOT_FROZEN


class MembershipNotActiveError(LedgerServiceError):
    code = ErrorCode.MEMBERSHIP_NOT_ACTIVE


class InvalidRequestError(LedgerServiceError):
    code = ErrorCode.INVALID_REQUEST


class CorruptRecordError(LedgerServiceError):
    """Raised when a stored member document cannot be read as a ledger."""

    code = ErrorCode.CORRUPT_RECORD


class PersistenceConflictError(LedgerServiceError):
    """Raised when a member record kept changing underneath an update."""

    code = ErrorCode.PERSISTENCE_CONFLICT
    retryable = True
