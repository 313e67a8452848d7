"""
Unit Tests for the Legacy Migrator

Tests cover:
1. Synthesizing one legacy package from root-level fields
2. Idempotence
3. Lazy migration on read vs. persisted migration on write
4. Population sweep counts
"""

import pytest
from datetime import date

from lesson_ledger.errors import ErrorCode
from lesson_ledger.models import PackageType, normalize_package_type

from .helpers import january_package, make_member, make_service

LEGACY_USER = {
    "role": "customer",
    "status": "approved",
    "displayName": "Ana",
    "remainingClasses": 5,
    "lessonCredits": 5,
    "packageInfo": {
        "packageId": "group-8",
        "packageName": "Group 8",
        "packageType": "group",
        "lessonCount": 8,
        "assignedAt": "2025-01-02T10:00:00Z",
    },
    "packageStartDate": "2025-01-02",
    "packageExpiryDate": "2025-02-01T00:00:00Z",
}


def legacy_service(**documents):
    service = make_service()
    for user_id, document in documents.items():
        service.repository.store.put("users", user_id, document)
    return service


class TestMigrateMember:
    def test_synthesizes_one_legacy_package(self):
        service = legacy_service(u1=LEGACY_USER)

        result = service.migrate_member("u1")

        assert result.success
        assert result.migrated is True
        package = result.package
        assert package.id == "legacy_u1"
        assert package.is_legacy is True
        assert package.name == "Group 8"
        assert package.type == PackageType.GROUP
        assert package.catalog_package_id == "group-8"
        assert package.total_lessons == 8
        assert package.remaining_lessons == 5
        assert package.start_date == date(2025, 1, 2)
        assert package.expiry_date == date(2025, 2, 1)

    def test_stored_document_keeps_its_shape(self):
        service = legacy_service(u1=LEGACY_USER)
        service.migrate_member("u1")

        document = service.repository.store.get("users", "u1").data

        assert document["remainingClasses"] == 5
        assert document["lessonCredits"] == 5
        assert document["packageExpiryDate"] == "2025-02-01"
        assert document["status"] == "approved"
        assert document["displayName"] == "Ana"
        assert len(document["packages"]) == 1
        assert document["packages"][0]["remainingLessons"] == 5
        assert document["packages"][0]["isLegacy"] is True

    def test_running_twice_changes_nothing(self):
        service = legacy_service(u1=LEGACY_USER)
        service.migrate_member("u1")
        first = service.repository.store.get("users", "u1")

        result = service.migrate_member("u1")
        second = service.repository.store.get("users", "u1")

        assert result.success
        assert result.migrated is False
        assert second.version == first.version
        assert second.data == first.data

    def test_lesson_count_below_remaining(self):
        document = {**LEGACY_USER, "remainingClasses": 10, "lessonCredits": 10}
        service = legacy_service(u1=document)

        package = service.migrate_member("u1").package

        assert package.total_lessons == 10
        assert package.remaining_lessons == 10

    def test_missing_package_info_uses_legacy_defaults(self):
        service = legacy_service(u1={"role": "customer", "status": "approved", "remainingClasses": 3})

        package = service.migrate_member("u1").package

        assert package.name == "Existing Package"
        assert package.total_lessons == 3
        assert package.start_date == date(2025, 1, 15)

    def test_unknown_member(self):
        service = make_service()

        assert service.migrate_member("ghost").error == ErrorCode.MEMBER_NOT_FOUND


class TestLegacyPackageTypes:
    def test_booking_app_type_names_are_normalized(self):
        document = {
            "role": "customer",
            "status": "approved",
            "remainingClasses": 5,
            "packageInfo": {"packageName": "Private 8", "packageType": "private", "lessonCount": 8},
            "packageStartDate": "2025-01-02",
            "packageExpiryDate": "2025-02-01",
        }
        service = legacy_service(u1=document)

        result = service.deduct("u1", date(2025, 1, 15))

        assert result.success
        assert result.package.type == PackageType.ONE_ON_ONE
        assert result.aggregate == 4

    @pytest.mark.parametrize("raw, expected", [
        ("birebir", PackageType.ONE_ON_ONE),
        ("One On One", PackageType.ONE_ON_ONE),
        ("grup", PackageType.GROUP),
        ("semi_private", PackageType.DUO),
    ])
    def test_aliases(self, raw, expected):
        assert normalize_package_type(raw) == expected.value


class TestLazyMigration:
    def test_read_migrates_in_memory_only(self):
        service = legacy_service(u1=LEGACY_USER)

        ledger = service.get_ledger("u1")

        assert [p.id for p in ledger.packages] == ["legacy_u1"]
        assert ledger.aggregate == 5
        assert "packages" not in service.repository.store.get("users", "u1").data

    def test_write_persists_the_migration(self):
        service = legacy_service(u1=LEGACY_USER)

        result = service.deduct("u1", date(2025, 1, 15))

        assert result.package.id == "legacy_u1"
        assert result.aggregate == 4
        document = service.repository.store.get("users", "u1").data
        assert document["remainingClasses"] == 4
        assert document["packages"][0]["remainingLessons"] == 4


class TestMigrateAll:
    def test_counts(self):
        service = legacy_service(
            u1=LEGACY_USER,
            u2={"role": "customer", "status": "approved", "remainingClasses": 0},
            staff={"role": "admin", "remainingClasses": 4},
        )
        service.repository.add(make_member("m1", january_package()))

        summary = service.migrate_all()

        assert summary.success
        assert summary.migrated_count == 1
        assert summary.skipped_count == 2
        assert summary.errors == []

    def test_second_sweep_migrates_nothing(self):
        service = legacy_service(u1=LEGACY_USER)
        service.migrate_all()

        summary = service.migrate_all()

        assert summary.migrated_count == 0
        assert summary.skipped_count == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
