from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from .models import Conflict, QuestionRecord, TranslationJob

log = logging.getLogger("quizsync.planner")


@dataclass
class SyncPlan:
    jobs: list[TranslationJob] = field(default_factory=list)
    already_translated: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    unlinked: list[QuestionRecord] = field(default_factory=list)

    @property
    def total_pairs(self) -> int:
        return len(self.jobs) + self.already_translated


def group_by_base(records: Iterable[QuestionRecord]) -> dict[str, list[QuestionRecord]]:
    grouped: dict[str, list[QuestionRecord]] = defaultdict(list)
    for record in records:
        if record.base_id:
            grouped[record.base_id].append(record)
    return grouped


def plan(
    source_records: Iterable[QuestionRecord],
    target_locales: Iterable[str],
    existing_variants: Iterable[QuestionRecord],
) -> SyncPlan:
    """Work out which (baseId, locale) pairs still need a translation.

    A pair is skipped when a linked, non-empty variant already exists, so
    repeated runs only pick up what earlier runs did not finish. Duplicate
    and unlinked variants are reported instead of being acted on.
    """
    locales = list(dict.fromkeys(target_locales))
    sources = list(source_records)
    for record in sources:
        if not record.base_id:
            log.warning("source record %s has no baseId; skipping", record.record_id)

    variants_by_key: dict[tuple[str, str], list[QuestionRecord]] = defaultdict(list)
    for variant in existing_variants:
        if variant.base_id:
            variants_by_key[(variant.base_id, variant.locale)].append(variant)

    result = SyncPlan()
    for base_id, group in sorted(group_by_base(sources).items()):
        if len(group) > 1:
            for locale in locales:
                result.conflicts.append(
                    Conflict("source", base_id, locale, tuple(r.record_id for r in group))
                )
            continue
        source = group[0]
        for locale in locales:
            found = variants_by_key.get((base_id, locale), [])
            if len(found) > 1:
                result.conflicts.append(
                    Conflict("variant", base_id, locale, tuple(r.record_id for r in found))
                )
                continue
            if not found:
                result.jobs.append(TranslationJob(base_id, locale, source, "create"))
                continue
            variant = found[0]
            if source.link_id is None or variant.link_id != source.link_id:
                result.unlinked.append(variant)
                continue
            if variant.is_complete_translation_of(source):
                result.already_translated += 1
                continue
            result.jobs.append(TranslationJob(base_id, locale, source, "update", variant))

    log.info(
        "plan: %s jobs, %s already translated, %s conflicts, %s unlinked",
        len(result.jobs),
        result.already_translated,
        len(result.conflicts),
        len(result.unlinked),
    )
    return result
