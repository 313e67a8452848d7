"""
Member persistence.

- DocumentStore: versioned in-memory document collections with compare-and-set
- MemberAdapter: converts one collection's document shape to/from ``Member``
- MemberRepository: resolves which collection owns a member once per call and
  applies read-modify-write updates atomically with optimistic retries
"""

import copy
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional, Sequence, TypeVar

from pydantic import ValidationError
from pydantic.alias_generators import to_camel, to_snake

from .config import Settings, get_settings
from .errors import CorruptRecordError, MemberNotFoundError, PersistenceConflictError
from .ledger import latest_expiry, legacy_package_id
from .models import (
    CatalogPackage,
    FreezeRecord,
    FreezeScope,
    LegacyCredits,
    Member,
    MembershipStatus,
    normalize_package_type,
)

log = logging.getLogger(__name__)

T = TypeVar("T")


class VersionConflict(Exception):
    pass


@dataclass(frozen=True)
class StoredDocument:
    id: str
    version: int
    data: dict


class DocumentStore:
    """Thread-safe in-memory document store keyed by collection and id."""

    def __init__(self):
        self._collections: dict[str, dict[str, tuple[int, dict]]] = {}
        self._lock = threading.Lock()

    def get(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        with self._lock:
            entry = self._collections.get(collection, {}).get(doc_id)
            if entry is None:
                return None
            version, data = entry
            return StoredDocument(doc_id, version, copy.deepcopy(data))

    def put(self, collection: str, doc_id: str, data: dict) -> StoredDocument:
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            version = docs[doc_id][0] + 1 if doc_id in docs else 1
            docs[doc_id] = (version, copy.deepcopy(data))
            return StoredDocument(doc_id, version, copy.deepcopy(data))

    def compare_and_set(self, collection: str, doc_id: str, data: dict, expected_version: int) -> StoredDocument:
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            current = docs.get(doc_id)
            current_version = current[0] if current else 0
            if current_version != expected_version:
                raise VersionConflict(
                    f"{collection}/{doc_id} is at version {current_version}, expected {expected_version}"
                )
            docs[doc_id] = (current_version + 1, copy.deepcopy(data))
            return StoredDocument(doc_id, current_version + 1, copy.deepcopy(data))

    def ids(self, collection: str) -> list[str]:
        with self._lock:
            return list(self._collections.get(collection, {}))


# ---------------------------------------------------------------------------
# Collection adapters
# ---------------------------------------------------------------------------

class MemberAdapter(ABC):
    collection: str

    def accepts(self, data: dict) -> bool:
        return True

    @abstractmethod
    def to_member(self, doc_id: str, data: dict) -> Member:
        ...

    @abstractmethod
    def to_document(self, member: Member, original: dict) -> dict:
        ...


class MembersCollectionAdapter(MemberAdapter):
    """Records created by the admin panel: the ``Member`` shape stored as-is."""

    collection = "members"

    def to_member(self, doc_id: str, data: dict) -> Member:
        return Member.model_validate({**data, "id": doc_id})

    def to_document(self, member: Member, original: dict) -> dict:
        return {**original, **member.model_dump(mode="json")}


# Maps keyed by package id keep their keys verbatim.
_ID_KEYED = {"package_expiries", "packageExpiries"}


def _camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {to_camel(k): (v if k in _ID_KEYED else _camelize(v)) for k, v in value.items()}
    if isinstance(value, list):
        return [_camelize(v) for v in value]
    return value


def _snakify(value: Any) -> Any:
    if isinstance(value, dict):
        return {to_snake(k): (v if k in _ID_KEYED else _snakify(v)) for k, v in value.items()}
    if isinstance(value, list):
        return [_snakify(v) for v in value]
    return value


class UsersCollectionAdapter(MemberAdapter):
    """
    Self-registered customers in the ``users`` collection.

    These documents use camelCase keys, mirror the aggregate into both
    ``remainingClasses`` and ``lessonCredits``, and may still hold the
    pre-ledger single-package fields and flat freeze fields at the root.
    """

    collection = "users"
    ledger_keys = (
        "displayName", "membershipStatus", "packages", "freeze", "freezeHistory",
        "deleted", "migratedAt",
    )
    flat_freeze_keys = (
        "freezeStartDate", "freezeEndDate", "freezeReason", "frozenBy",
        "freezeType", "freezeDurationDays", "originalMembershipData",
    )

    def accepts(self, data: dict) -> bool:
        return data.get("role", "customer") == "customer"

    def to_member(self, doc_id: str, data: dict) -> Member:
        fields = _snakify({k: data[k] for k in self.ledger_keys if k in data})
        fields["id"] = doc_id
        if data.get("status") == "permanently_deleted":
            fields["deleted"] = True
        if "membership_status" not in fields and data.get("status") in {s.value for s in MembershipStatus}:
            fields["membership_status"] = data["status"]
        if fields.get("packages"):
            fields["packages"] = [self._package_fields(entry) for entry in fields["packages"]]
            fields["remaining_classes_aggregate"] = data.get("remainingClasses") or data.get("lessonCredits") or 0
        else:
            fields["legacy"] = self._legacy_credits(data)
        if not fields.get("freeze") and data.get("freezeStartDate"):
            fields["freeze"] = self._legacy_freeze(doc_id, data, bool(fields.get("packages")))
        return Member.model_validate(fields)

    @staticmethod
    def _package_fields(entry: dict) -> dict:
        # Entries written by the booking app use its own key names.
        package = dict(entry)
        name = package.pop("package_name", None)
        if not package.get("name"):
            package["name"] = name or "Existing Package"
        package_type = package.get("type") or package.pop("package_type", None)
        if normalize_package_type(package_type):
            package["type"] = package_type
        else:
            package.pop("type", None)
        if not package.get("catalog_package_id"):
            package["catalog_package_id"] = package.get("package_id")
        if package.get("duration_months") is None:
            package["duration_months"] = package.get("duration")
        if package.get("status") == "cancelled" and not package.get("cancelled_at"):
            package["cancelled_at"] = package.get("updated_at") or datetime.now(timezone.utc)
        return package

    @staticmethod
    def _legacy_credits(data: dict) -> Optional[LegacyCredits]:
        info = data.get("packageInfo") or {}
        remaining = data.get("remainingClasses") or data.get("lessonCredits") or 0
        if not info and not data.get("packageExpiryDate") and not remaining:
            return None
        return LegacyCredits(
            remaining_classes=remaining,
            package_id=info.get("packageId") or data.get("packageId"),
            package_name=info.get("packageName") or data.get("packageName"),
            package_type=info.get("packageType") or data.get("packageType"),
            lesson_count=info.get("lessonCount"),
            package_start_date=data.get("packageStartDate"),
            package_expiry_date=data.get("packageExpiryDate") or info.get("expiryDate"),
            assigned_at=info.get("assignedAt"),
            approved_at=data.get("approvedAt"),
            approved_by=data.get("approvedBy"),
        )

    @staticmethod
    def _legacy_freeze(doc_id: str, data: dict, has_packages: bool) -> FreezeRecord:
        original = data.get("originalMembershipData") or {}
        record = {
            "freeze_start_date": data["freezeStartDate"],
            "freeze_end_date_planned": data.get("freezeEndDate"),
            "planned_duration_days": data.get("freezeDurationDays"),
            "reason": data.get("freezeReason") or "",
            "frozen_by": data.get("frozenBy") or "admin",
            "freeze_scope": data.get("freezeType") or FreezeScope.INDIVIDUAL,
            "snapshot": {
                "membership_status": original.get("membershipStatus") or MembershipStatus.ACTIVE,
                "package_expiries": {},
            },
        }
        if not has_packages and original.get("packageExpiryDate"):
            record["snapshot"]["package_expiries"][legacy_package_id(doc_id)] = original["packageExpiryDate"]
        return FreezeRecord.model_validate(record)

    def to_document(self, member: Member, original: dict) -> dict:
        dumped = _camelize(member.model_dump(mode="json", exclude={"id", "legacy", "remaining_classes_aggregate"}))
        document = {k: v for k, v in original.items() if k not in self.flat_freeze_keys}
        document.update(dumped)
        for entry, package in zip(document.get("packages") or [], member.packages):
            entry.update({
                "packageName": package.name,
                "packageType": package.type.value,
                "packageId": package.catalog_package_id,
                "duration": package.duration_months,
                "status": "cancelled" if package.is_cancelled else "active",
            })
        if member.packages or member.legacy is None:
            credits = member.remaining_classes_aggregate
        else:
            credits = member.legacy.remaining_classes
        document["remainingClasses"] = credits
        document["lessonCredits"] = credits
        if member.packages:
            expiry = latest_expiry(member.packages)
            document["packageExpiryDate"] = expiry.isoformat() if expiry else None
        if original.get("status") in ("approved", "active", "frozen"):
            document["status"] = "frozen" if member.membership_status == MembershipStatus.FROZEN else "approved"
        return document


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

@dataclass
class LoadedMember:
    member: Member
    adapter: MemberAdapter
    stored: StoredDocument


class MemberRepository:
    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        adapters: Optional[Sequence[MemberAdapter]] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store or DocumentStore()
        self.adapters = list(adapters or (MembersCollectionAdapter(), UsersCollectionAdapter()))
        self.settings = settings or get_settings()

    def _resolve(self, member_id: str) -> tuple[MemberAdapter, StoredDocument]:
        for adapter in self.adapters:
            stored = self.store.get(adapter.collection, member_id)
            if stored is not None and adapter.accepts(stored.data):
                return adapter, stored
        raise MemberNotFoundError(member_id)

    def load(self, member_id: str) -> LoadedMember:
        adapter, stored = self._resolve(member_id)
        try:
            member = adapter.to_member(member_id, stored.data)
        except ValidationError as exc:
            log.error("Unreadable %s record for member %s: %s", adapter.collection, member_id, exc)
            raise CorruptRecordError(
                f"Member {member_id} has an unreadable record ({exc.error_count()} invalid fields)"
            ) from exc
        return LoadedMember(member, adapter, stored)

    def get(self, member_id: str) -> Member:
        return self.load(member_id).member

    def save(self, loaded: LoadedMember) -> LoadedMember:
        data = loaded.adapter.to_document(loaded.member, loaded.stored.data)
        stored = self.store.compare_and_set(
            loaded.adapter.collection, loaded.member.id, data, loaded.stored.version
        )
        return LoadedMember(loaded.member, loaded.adapter, stored)

    def add(self, member: Member, collection: Optional[str] = None) -> Member:
        adapter = self._adapter_for(collection)
        self.store.put(adapter.collection, member.id, adapter.to_document(member, {}))
        return member

    def _adapter_for(self, collection: Optional[str]) -> MemberAdapter:
        if collection is None:
            return self.adapters[0]
        for adapter in self.adapters:
            if adapter.collection == collection:
                return adapter
        raise ValueError(f"Unknown collection {collection}")

    def update(self, member_id: str, mutate: Callable[[Member], T]) -> tuple[Member, T]:
        """
        Apply ``mutate`` to a fresh copy of the member and write it back only if
        nobody else wrote in between. Conflicting writes are retried up to
        ``max_write_attempts`` times within ``write_timeout_seconds``.
        """
        deadline = time.monotonic() + self.settings.write_timeout_seconds
        attempts = self.settings.max_write_attempts
        for attempt in range(1, attempts + 1):
            loaded = self.load(member_id)
            result = mutate(loaded.member)
            try:
                self.save(loaded)
            except VersionConflict as exc:
                log.info("Write conflict on member %s (attempt %s/%s): %s", member_id, attempt, attempts, exc)
                if time.monotonic() >= deadline:
                    raise PersistenceConflictError(
                        f"Timed out updating member {member_id} after {attempt} attempts"
                    )
                continue
            return loaded.member, result
        raise PersistenceConflictError(f"Member {member_id} changed concurrently {attempts} times; try again")

    def member_ids(self) -> Iterator[str]:
        seen: set[str] = set()
        for adapter in self.adapters:
            for doc_id in self.store.ids(adapter.collection):
                if doc_id in seen:
                    continue
                stored = self.store.get(adapter.collection, doc_id)
                if stored is None or not adapter.accepts(stored.data):
                    continue
                seen.add(doc_id)
                yield doc_id


class CatalogLookup(ABC):
    @abstractmethod
    def get(self, catalog_package_id: str) -> Optional[CatalogPackage]:
        ...


class InMemoryCatalog(CatalogLookup):
    def __init__(self, packages: Optional[Sequence[CatalogPackage]] = None):
        self.packages: dict[str, CatalogPackage] = {p.id: p for p in packages or ()}

    def add(self, package: CatalogPackage) -> CatalogPackage:
        self.packages[package.id] = package
        return package

    def get(self, catalog_package_id: str) -> Optional[CatalogPackage]:
        return self.packages.get(catalog_package_id)
