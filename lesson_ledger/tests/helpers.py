"""Builders shared by the test modules."""

from datetime import date
from typing import Optional

from lesson_ledger.config import Settings
from lesson_ledger.ledger import apply_aggregate
from lesson_ledger.models import CatalogPackage, Member, Package, PackageType
from lesson_ledger.repository import DocumentStore, InMemoryCatalog, VersionConflict
from lesson_ledger.service import LessonLedgerService

CATALOG = [
    CatalogPackage(id="group-8", name="Group 8", type=PackageType.GROUP, total_lessons=8, duration_months=1, price=120),
    CatalogPackage(
        id="private-12", name="Private 12", type=PackageType.ONE_ON_ONE, total_lessons=12, duration_months=3, price=600
    ),
]


class FixedClock:
    """Callable ``today`` provider the tests can move forward."""

    def __init__(self, current: date):
        self.current = current

    def __call__(self) -> date:
        return self.current


class FlakyStore(DocumentStore):
    """Rejects every write to the given document ids as if someone else wrote first."""

    def __init__(self, failing_ids=()):
        super().__init__()
        self.failing_ids = set(failing_ids)

    def compare_and_set(self, collection, doc_id, data, expected_version):
        if doc_id in self.failing_ids:
            raise VersionConflict(f"{collection}/{doc_id} was modified concurrently")
        return super().compare_and_set(collection, doc_id, data, expected_version)


def make_package(package_id: str, start: date, expiry: date, total: int = 8, remaining: Optional[int] = None, **fields):
    return Package(
        id=package_id,
        name=fields.pop("name", f"Package {package_id}"),
        start_date=start,
        expiry_date=expiry,
        total_lessons=total,
        remaining_lessons=total if remaining is None else remaining,
        **fields,
    )


def make_member(member_id: str, *packages: Package, **fields) -> Member:
    member = Member(id=member_id, packages=list(packages), **fields)
    apply_aggregate(member)
    return member


def make_service(today: date = date(2025, 1, 15), storage: Optional[DocumentStore] = None, **overrides):
    settings = Settings(**{"reconcile_on_read": False, **overrides})
    return LessonLedgerService(
        catalog=InMemoryCatalog(CATALOG),
        settings=settings,
        today=FixedClock(today),
        storage=storage,
    )


def january_package(remaining: Optional[int] = None) -> Package:
    return make_package("A", date(2025, 1, 1), date(2025, 1, 31), remaining=remaining)
