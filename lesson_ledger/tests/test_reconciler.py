"""
Unit Tests for the Auto Reconciler

Tests cover:
1. Aggregate drift repair
2. Automatic unfreeze of lapsed freezes
3. Reconcile-before-read for bulk listings
4. Errors reported instead of raised
"""

import pytest
from datetime import date

from lesson_ledger.errors import ErrorCode
from lesson_ledger.models import Member, MembershipStatus

from .helpers import FlakyStore, january_package, make_member, make_service


class TestDriftRepair:
    def test_drifted_aggregate_is_corrected(self):
        service = make_service()
        service.repository.add(Member(id="m1", packages=[january_package(remaining=5)], remaining_classes_aggregate=9))

        summary = service.reconcile()

        assert summary.success
        assert summary.scanned_count == 1
        assert summary.corrected_count == 1
        assert service.repository.get("m1").remaining_classes_aggregate == 5
        assert service.reconcile().corrected_count == 0

    def test_unmigrated_legacy_credits_are_kept(self):
        service = make_service()
        service.repository.store.put("users", "u1", {"role": "customer", "status": "approved", "remainingClasses": 5})

        summary = service.reconcile()

        document = service.repository.store.get("users", "u1").data
        assert summary.corrected_count == 1
        assert document["remainingClasses"] == 5
        assert document["packages"][0]["id"] == "legacy_u1"

    def test_deleted_members_are_left_alone(self):
        service = make_service()
        service.repository.add(
            Member(id="m1", packages=[january_package(remaining=5)], remaining_classes_aggregate=9, deleted=True)
        )

        summary = service.reconcile()

        assert summary.corrected_count == 0
        assert service.repository.get("m1").remaining_classes_aggregate == 9


class TestAutoUnfreeze:
    def frozen(self):
        service = make_service(today=date(2025, 1, 10))
        service.repository.add(make_member("m1", january_package()))
        service.freeze("m1", "Travelling", date(2025, 1, 20), "admin")
        return service

    def test_lapsed_freeze_is_lifted_by_system(self):
        service = self.frozen()
        service.today.current = date(2025, 1, 21)

        summary = service.reconcile()

        member = service.repository.get("m1")
        assert summary.auto_unfrozen_count == 1
        assert member.membership_status == MembershipStatus.ACTIVE
        assert member.packages[0].expiry_date == date(2025, 2, 11)
        assert member.freeze_history[0].unfrozen_by == "system-auto"

    def test_freeze_ending_today_is_kept(self):
        service = self.frozen()
        service.today.current = date(2025, 1, 20)

        assert service.reconcile().auto_unfrozen_count == 0
        assert service.repository.get("m1").membership_status == MembershipStatus.FROZEN

    def test_listing_reconciles_first(self):
        service = make_service(today=date(2025, 1, 10), reconcile_on_read=True)
        service.repository.add(make_member("m1", january_package()))
        service.freeze("m1", "Travelling", date(2025, 1, 20), "admin")
        service.today.current = date(2025, 1, 25)

        members = service.list_members()

        assert [(m.id, m.membership_status) for m in members] == [("m1", MembershipStatus.ACTIVE)]


class TestErrorReporting:
    def test_failures_are_collected(self):
        service = make_service(storage=FlakyStore({"m1"}))
        service.repository.add(Member(id="m1", packages=[january_package(remaining=5)], remaining_classes_aggregate=9))
        service.repository.add(Member(id="m2", packages=[january_package(remaining=5)], remaining_classes_aggregate=1))

        summary = service.reconcile()

        assert summary.success is False
        assert summary.corrected_count == 1
        assert [(e.member_id, e.error) for e in summary.errors] == [("m1", ErrorCode.PERSISTENCE_CONFLICT)]
        assert service.repository.get("m2").remaining_classes_aggregate == 5


class TestExpiringPackages:
    def test_lists_active_packages_expiring_soon(self):
        service = make_service(today=date(2025, 1, 25))
        service.repository.add(make_member("m1", january_package(), display_name="Ana"))
        service.repository.add(make_member("m2", january_package(remaining=0)))

        expiring = service.expiring_packages()

        assert [(e.member_id, e.display_name, e.days_until_expiry) for e in expiring] == [("m1", "Ana", 6)]
        assert service.expiring_packages(days_ahead=3) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
