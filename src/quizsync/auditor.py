from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable

from .models import QuestionRecord

log = logging.getLogger("quizsync.auditor")

CHECKS = ("counts", "linkage", "duplicates")


@dataclass(frozen=True)
class AuditScope:
    locales: tuple[str, ...]
    checks: tuple[str, ...] = CHECKS
    sample: int | None = None

    def __post_init__(self) -> None:
        unknown = set(self.checks) - set(CHECKS)
        if unknown:
            raise ValueError(f"unknown audit checks: {sorted(unknown)}")


@dataclass(frozen=True)
class Orphan:
    record: QuestionRecord
    relinkable: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record.record_id,
            "link_id": self.record.link_id,
            "base_id": self.record.base_id,
            "locale": self.record.locale,
            "relinkable": self.relinkable,
        }


@dataclass(frozen=True)
class DuplicateGroup:
    base_id: str
    locale: str
    records: tuple[QuestionRecord, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_id": self.base_id,
            "locale": self.locale,
            "record_ids": [r.record_id for r in self.records],
            "link_ids": [r.link_id for r in self.records],
        }


@dataclass
class AuditReport:
    source_locale: str
    counts: dict[str, int] = field(default_factory=dict)
    missing: dict[str, int] = field(default_factory=dict)
    excess: dict[str, int] = field(default_factory=dict)
    orphans: list[Orphan] = field(default_factory=list)
    mismatched: list[QuestionRecord] = field(default_factory=list)
    duplicates: list[DuplicateGroup] = field(default_factory=list)
    checked: tuple[str, ...] = ()

    @property
    def consistent(self) -> bool:
        return not (
            self.missing or self.excess or self.orphans or self.mismatched or self.duplicates
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_locale": self.source_locale,
            "checked": list(self.checked),
            "consistent": self.consistent,
            "counts": self.counts,
            "missing_translations": self.missing,
            "possible_duplicates": self.excess,
            "orphans": [o.to_dict() for o in self.orphans],
            "mismatched": [
                {"record_id": r.record_id, "base_id": r.base_id, "locale": r.locale}
                for r in self.mismatched
            ],
            "duplicates": [d.to_dict() for d in self.duplicates],
        }


def find_duplicates(variants: Iterable[QuestionRecord]) -> list[DuplicateGroup]:
    groups: dict[tuple[str, str], list[QuestionRecord]] = defaultdict(list)
    for record in variants:
        if record.base_id:
            groups[(record.base_id, record.locale)].append(record)
    return [
        DuplicateGroup(base_id, locale, tuple(records))
        for (base_id, locale), records in sorted(groups.items())
        if len(records) > 1
    ]


def find_orphans(
    sources: Iterable[QuestionRecord], variants: Iterable[QuestionRecord]
) -> tuple[list[Orphan], list[QuestionRecord]]:
    source_list = list(sources)
    by_link = {s.link_id: s for s in source_list if s.link_id}
    by_base = {s.base_id: s for s in source_list if s.base_id}
    orphans: list[Orphan] = []
    mismatched: list[QuestionRecord] = []
    for variant in variants:
        source = by_link.get(variant.link_id) if variant.link_id else None
        if source is None:
            target = by_base.get(variant.base_id) if variant.base_id else None
            orphans.append(Orphan(variant, relinkable=bool(target and target.link_id)))
        elif variant.base_id and source.base_id != variant.base_id:
            mismatched.append(variant)
    return orphans, mismatched


class Auditor:
    """Read-only diagnostics over the store; never writes."""

    def __init__(self, store, source_locale: str) -> None:
        self.store = store
        self.source_locale = source_locale

    def _records(self, locale: str, sample: int | None = None) -> list[QuestionRecord]:
        out: list[QuestionRecord] = []
        for record in self.store.iter_records(locale):
            out.append(record)
            if sample is not None and len(out) >= sample:
                break
        return out

    def count_parity(self, locales: Iterable[str]) -> tuple[dict[str, int], dict[str, int], dict[str, int]]:
        source_total = self.store.count_records(self.source_locale)
        counts = {self.source_locale: source_total}
        missing: dict[str, int] = {}
        excess: dict[str, int] = {}
        for locale in locales:
            if locale == self.source_locale:
                continue
            total = self.store.count_records(locale)
            counts[locale] = total
            if total < source_total:
                missing[locale] = source_total - total
            elif total > source_total:
                excess[locale] = total - source_total
        return counts, missing, excess

    def linkage(
        self, locales: Iterable[str], sample: int | None = None
    ) -> tuple[list[Orphan], list[QuestionRecord]]:
        sources = self._records(self.source_locale)
        variants: list[QuestionRecord] = []
        for locale in locales:
            if locale != self.source_locale:
                variants.extend(self._records(locale, sample))
        return find_orphans(sources, variants)

    def duplicates(self, locales: Iterable[str]) -> list[DuplicateGroup]:
        variants: list[QuestionRecord] = []
        for locale in locales:
            variants.extend(self._records(locale))
        return find_duplicates(variants)

    def audit(self, scope: AuditScope) -> AuditReport:
        report = AuditReport(source_locale=self.source_locale, checked=tuple(scope.checks))
        if "counts" in scope.checks:
            report.counts, report.missing, report.excess = self.count_parity(scope.locales)
        if "linkage" in scope.checks:
            report.orphans, report.mismatched = self.linkage(scope.locales, scope.sample)
        if "duplicates" in scope.checks:
            # the source locale is included: one baseId must map to one source entry
            report.duplicates = self.duplicates(
                dict.fromkeys((self.source_locale, *scope.locales))
            )
        log.info(
            "audit: missing=%s excess=%s orphans=%s mismatched=%s duplicates=%s",
            report.missing,
            report.excess,
            len(report.orphans),
            len(report.mismatched),
            len(report.duplicates),
        )
        return report
