"""
Lesson Credit Ledger

This module provides:
- A per-member ledger of lesson packages with their own date ranges and balances
- Date-aware allocation of bookings and refunds to packages
- Membership freeze / unfreeze that pushes package expiry forward exactly once
- Population-wide freezes with per-member outcome reporting
- Migration of single-package legacy records into the ledger
- Opportunistic repair of aggregate drift and lapsed freezes
"""

from .config import Settings, get_settings
from .errors import ErrorCode, LedgerServiceError
from .models import (
    BatchOutcome,
    BatchResult,
    CatalogPackage,
    FreezeScope,
    Member,
    MembershipStatus,
    Package,
    PackageStatus,
    PackageTerms,
    PackageType,
)
from .repository import DocumentStore, InMemoryCatalog, MemberRepository
from .service import LessonLedgerService

__all__ = [
    "Settings",
    "get_settings",
    "ErrorCode",
    "LedgerServiceError",
    "BatchOutcome",
    "BatchResult",
    "CatalogPackage",
    "FreezeScope",
    "Member",
    "MembershipStatus",
    "Package",
    "PackageStatus",
    "PackageTerms",
    "PackageType",
    "DocumentStore",
    "InMemoryCatalog",
    "MemberRepository",
    "LessonLedgerService",
]
