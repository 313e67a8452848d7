"""
Ordered resolver chains for package terms.

Each resolver looks at one source (catalog entry, explicit terms, legacy
record fields) and returns a value or ``None``; the first present value wins.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional, Sequence

from .config import Settings
from .models import CatalogPackage, LegacyCredits, PackageTerms, PackageType

Resolver = Callable[["TermSources"], Any]


@dataclass
class TermSources:
    settings: Settings
    today: date
    catalog: Optional[CatalogPackage] = None
    terms: Optional[PackageTerms] = None
    legacy: Optional[LegacyCredits] = None


def resolve_first(resolvers: Sequence[Resolver], sources: TermSources) -> Any:
    for resolver in resolvers:
        value = resolver(sources)
        if value is not None:
            return value
    return None


def _from_catalog(attr: str) -> Resolver:
    return lambda s: getattr(s.catalog, attr) if s.catalog else None


def _from_terms(attr: str) -> Resolver:
    return lambda s: getattr(s.terms, attr) if s.terms else None


def _from_legacy(attr: str) -> Resolver:
    return lambda s: getattr(s.legacy, attr) if s.legacy else None


def _legacy_datetime_date(attr: str) -> Resolver:
    def resolver(s: TermSources):
        value = getattr(s.legacy, attr) if s.legacy else None
        return value.date() if value else None
    return resolver


def _legacy_lesson_count(s: TermSources) -> Optional[int]:
    # Older records sometimes hold a lesson count smaller than what is left.
    if not s.legacy:
        return None
    return max(s.legacy.lesson_count or 0, s.legacy.remaining_classes) or None


NAME_RESOLVERS: list[Resolver] = [
    _from_catalog("name"),
    _from_terms("name"),
    _from_legacy("package_name"),
    lambda s: s.settings.legacy_package_name if s.legacy else None,
    lambda s: s.settings.default_package_name,
]

TYPE_RESOLVERS: list[Resolver] = [
    _from_catalog("type"),
    _from_terms("type"),
    _from_legacy("package_type"),
    lambda s: PackageType.GROUP,
]

TOTAL_LESSONS_RESOLVERS: list[Resolver] = [
    _from_catalog("total_lessons"),
    _from_terms("total_lessons"),
    _legacy_lesson_count,
    lambda s: s.settings.default_lesson_count,
]

DURATION_RESOLVERS: list[Resolver] = [
    _from_catalog("duration_months"),
    _from_terms("duration_months"),
    lambda s: s.settings.default_duration_months,
]

PRICE_RESOLVERS: list[Resolver] = [
    _from_terms("price"),
    _from_catalog("price"),
    lambda s: 0,
]

START_DATE_RESOLVERS: list[Resolver] = [
    _from_terms("start_date"),
    _from_legacy("package_start_date"),
    _legacy_datetime_date("assigned_at"),
    _legacy_datetime_date("approved_at"),
    lambda s: s.today,
]

LEGACY_EXPIRY_RESOLVERS: list[Resolver] = [
    _from_legacy("package_expiry_date"),
    lambda s: s.today,
]
