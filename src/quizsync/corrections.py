from __future__ import annotations

import hashlib
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from .auditor import Auditor, find_orphans
from .errors import FATAL, LinkConflict, StoreError
from .linker import DocumentLinker
from .models import QuestionRecord

log = logging.getLogger("quizsync.corrections")


@dataclass
class Correction:
    operation: str
    locale: str
    count: int
    token: str
    applied: bool = False
    affected: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        key = "relinked_count" if self.operation == "relink" else "deleted_count"
        return {
            "operation": self.operation,
            "locale": self.locale,
            "dry_run": not self.applied,
            "count": self.count,
            "token": self.token,
            key: self.affected,
            "errors": self.errors,
        }


def confirmation_token(operation: str, locale: str, records: Iterable[QuestionRecord]) -> str:
    """Digest of the exact set an operation would touch.

    The token changes whenever the set changes, so a token copied from a
    dry run cannot confirm a different set of deletions later.
    """
    keys = sorted(f"{r.record_id}:{r.link_id}" for r in records)
    raw = f"{operation}|{locale}|" + ",".join(keys)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:12]


class Corrector:
    def __init__(self, store, source_locale: str) -> None:
        self.store = store
        self.source_locale = source_locale
        self.auditor = Auditor(store, source_locale)
        self.linker = DocumentLinker(store, source_locale)

    def _guard_locale(self, locale: str) -> None:
        if locale == self.source_locale:
            raise ValueError(f"refusing to modify source locale {locale}")

    def _confirmed(self, preview: Correction, confirm: str | None) -> bool:
        if confirm is None:
            log.info(
                "dry run %s %s: %s records; confirm with token %s",
                preview.operation,
                preview.locale,
                preview.count,
                preview.token,
            )
            return False
        if confirm != preview.token:
            log.warning(
                "%s %s: confirmation token %s does not match current state (%s); nothing done",
                preview.operation,
                preview.locale,
                confirm,
                preview.token,
            )
            preview.errors.append("confirmation token mismatch")
            return False
        return True

    def _delete_all(self, preview: Correction, records: list[QuestionRecord]) -> Correction:
        preview.applied = True
        for record in records:
            try:
                self.store.delete_record(record)
                preview.affected += 1
            except FATAL:
                raise
            except StoreError as exc:
                log.warning("delete failed %s/%s: %s", record.record_id, record.locale, exc)
                preview.errors.append(f"{record.record_id}: {exc}")
        log.info("%s %s: deleted %s/%s", preview.operation, preview.locale, preview.affected, preview.count)
        return preview

    def delete_orphans(self, locale: str, confirm: str | None = None) -> Correction:
        self._guard_locale(locale)
        orphans, _ = self.auditor.linkage([locale])
        records = [o.record for o in orphans]
        preview = Correction(
            "delete-orphans", locale, len(records), confirmation_token("delete-orphans", locale, records)
        )
        if not self._confirmed(preview, confirm):
            return preview
        return self._delete_all(preview, records)

    def purge_locale(self, locale: str, confirm: str | None = None) -> Correction:
        self._guard_locale(locale)
        records = list(self.store.iter_records(locale))
        preview = Correction(
            "purge-locale", locale, len(records), confirmation_token("purge-locale", locale, records)
        )
        if not self._confirmed(preview, confirm):
            return preview
        return self._delete_all(preview, records)

    def relink_candidates(self, locale: str) -> list[tuple[QuestionRecord, QuestionRecord]]:
        """Pairs of (unlinked variant, source) that can be moved under the source's link.

        Skips a baseId when the source already has a linked variant in the
        locale or when several unlinked variants compete for it.
        """
        published = self.store.published_link_ids(self.source_locale)
        sources = [
            replace(s, published=True) if s.link_id in published else s
            for s in self.store.iter_records(self.source_locale)
        ]
        variants = list(self.store.iter_records(locale))
        by_base = {s.base_id: s for s in sources if s.base_id and s.link_id}
        linked_bases = {
            v.base_id
            for v in variants
            if v.base_id in by_base and v.link_id == by_base[v.base_id].link_id
        }
        orphans, _ = find_orphans(sources, variants)
        per_base: dict[str, list[QuestionRecord]] = defaultdict(list)
        for orphan in orphans:
            if orphan.relinkable and orphan.record.base_id not in linked_bases:
                per_base[orphan.record.base_id].append(orphan.record)
        pairs: list[tuple[QuestionRecord, QuestionRecord]] = []
        for base_id, records in sorted(per_base.items()):
            if len(records) > 1:
                log.warning("relink %s %s: %s unlinked variants; resolve manually", base_id, locale, len(records))
                continue
            pairs.append((records[0], by_base[base_id]))
        return pairs

    def relink(self, locale: str, confirm: str | None = None) -> Correction:
        self._guard_locale(locale)
        pairs = self.relink_candidates(locale)
        records = [variant for variant, _ in pairs]
        preview = Correction(
            "relink", locale, len(records), confirmation_token("relink", locale, records)
        )
        if not self._confirmed(preview, confirm):
            return preview
        preview.applied = True
        for variant, source in pairs:
            try:
                # Existing text is reused as-is; no provider call is made.
                self.linker.attach_variant(
                    source.link_id,
                    locale,
                    variant.text_fields(),
                    source,
                    replacing=variant,
                )
                self.store.delete_record(variant)
                preview.affected += 1
            except FATAL:
                raise
            except (StoreError, LinkConflict) as exc:
                log.warning("relink failed %s/%s: %s", variant.base_id, locale, exc)
                preview.errors.append(f"{variant.base_id}: {exc}")
        return preview

    def ensure_locales(self, locales: Iterable[str]) -> list[str]:
        done: list[str] = []
        for locale in dict.fromkeys(locales):
            self.store.ensure_locale_exists(locale)
            done.append(locale)
        return done
