from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .errors import LinkConflict, StoreError, StoreWriteError
from .models import PRESERVED_FIELDS, QuestionRecord

log = logging.getLogger("quizsync.linker")


@dataclass(frozen=True)
class LinkStatus:
    base_id: str
    linked: bool
    source: QuestionRecord | None
    variants: list[QuestionRecord] = field(default_factory=list)


def variant_payload(source: QuestionRecord, translated: dict[str, str]) -> dict[str, Any]:
    payload: dict[str, Any] = dict(translated)
    for name in PRESERVED_FIELDS:
        if source.content.get(name) is not None:
            payload[name] = source.content[name]
    payload["baseId"] = source.base_id
    return payload


class DocumentLinker:
    """Keeps localizations attached to their source entry's document link."""

    def __init__(self, store, source_locale: str, target_locales: tuple[str, ...] = ()) -> None:
        self.store = store
        self.source_locale = source_locale
        self.target_locales = tuple(target_locales)

    def ensure_link(self, source: QuestionRecord) -> str:
        if source.link_id:
            return source.link_id
        link_id = self.store.assign_link(source)
        log.info("linked source baseId=%s to document %s", source.base_id, link_id)
        return link_id

    def attach_variant(
        self,
        link_id: str,
        locale: str,
        content: dict[str, Any],
        source: QuestionRecord,
        replacing: QuestionRecord | None = None,
    ) -> QuestionRecord:
        if locale == self.source_locale:
            raise StoreWriteError(f"refusing to overwrite source locale {locale}")
        payload = variant_payload(source, content)
        try:
            existing = self.store.get_variant(link_id, locale)
            if existing is not None:
                record = self.store.update_variant(existing, payload, publish=source.published)
                log.info("updated %s variant of %s", locale, link_id)
            else:
                # Someone may have added an unlinked copy since planning.
                others = [
                    r
                    for r in self.store.find_records(source.base_id, locale)
                    if r.link_id != link_id
                    and not (replacing is not None and r.record_id == replacing.record_id)
                ]
                if others:
                    raise LinkConflict(link_id, locale, [r.record_id for r in others])
                record = self.store.create_variant(link_id, locale, payload, publish=source.published)
                log.info("created %s variant of %s", locale, link_id)
        except (StoreWriteError, LinkConflict):
            raise
        except StoreError as exc:
            raise StoreWriteError(str(exc)) from exc
        if record.link_id and record.link_id != link_id:
            raise StoreWriteError(
                f"store returned document {record.link_id} for link {link_id} ({locale})"
            )
        return record

    def verify_link(self, base_id: str) -> LinkStatus:
        sources = self.store.find_records(base_id, self.source_locale)
        if len(sources) != 1:
            return LinkStatus(base_id, False, sources[0] if sources else None, [])
        source = sources[0]
        linked = bool(source.link_id)
        variants: list[QuestionRecord] = []
        for locale in self.target_locales:
            found = self.store.find_records(base_id, locale)
            variants.extend(found)
            if len(found) > 1 or any(v.link_id != source.link_id for v in found):
                linked = False
        return LinkStatus(base_id, linked, source, variants)
