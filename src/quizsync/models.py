from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

TRANSLATABLE_FIELDS: tuple[str, ...] = (
    "question",
    "optionA",
    "optionB",
    "optionC",
    "optionD",
    "explanation",
    "topic",
)

# Copied verbatim from the source entry to every localization.
PRESERVED_FIELDS: tuple[str, ...] = (
    "correctOption",
    "level",
    "questionType",
    "topicKey",
    "imageUrl",
)

_META_KEYS = {
    "id",
    "documentId",
    "locale",
    "baseId",
    "createdAt",
    "updatedAt",
    "publishedAt",
    "localizations",
}


@dataclass(frozen=True)
class QuestionRecord:
    record_id: int | None
    link_id: str | None
    base_id: str | None
    locale: str
    content: dict[str, Any] = field(default_factory=dict)
    published: bool = False

    @classmethod
    def from_payload(cls, item: dict[str, Any]) -> "QuestionRecord":
        # Strapi v4 nests fields under "attributes"; v5 returns them flat.
        attrs = item.get("attributes")
        data = {**attrs, "id": item.get("id")} if isinstance(attrs, dict) else item
        content = {k: v for k, v in data.items() if k not in _META_KEYS}
        record_id = data.get("id")
        return cls(
            record_id=int(record_id) if record_id is not None else None,
            link_id=data.get("documentId") or None,
            base_id=data.get("baseId") or None,
            locale=str(data.get("locale") or ""),
            content=content,
            published=bool(data.get("publishedAt")),
        )

    def text_fields(self) -> dict[str, str]:
        return {
            name: str(self.content.get(name) or "") for name in TRANSLATABLE_FIELDS
        }

    def is_complete_translation_of(self, source: "QuestionRecord") -> bool:
        source_fields = source.text_fields()
        own_fields = self.text_fields()
        for name, text in source_fields.items():
            if text.strip() and not own_fields[name].strip():
                return False
        return any(value.strip() for value in own_fields.values())


@dataclass(frozen=True)
class TranslationJob:
    base_id: str
    target_locale: str
    source: QuestionRecord
    action: str = "create"
    existing: QuestionRecord | None = None

    def character_count(self) -> int:
        return sum(len(text) for text in self.source.text_fields().values())


@dataclass(frozen=True)
class QuotaState:
    characters_used: int
    character_limit: int | None

    @property
    def unlimited(self) -> bool:
        return self.character_limit is None

    @property
    def remaining(self) -> int | None:
        if self.character_limit is None:
            return None
        return max(self.character_limit - self.characters_used, 0)


@dataclass(frozen=True)
class Conflict:
    kind: str
    base_id: str
    locale: str
    record_ids: tuple[int | None, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "base_id": self.base_id,
            "locale": self.locale,
            "record_ids": list(self.record_ids),
        }


@dataclass
class SyncReport:
    source_locale: str
    target_locales: tuple[str, ...]
    status: str = "completed"
    already_translated: int = 0
    translated: int = 0
    failed: int = 0
    skipped_quota: int = 0
    error_log: list[tuple[str, str, str]] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    unlinked: list[QuestionRecord] = field(default_factory=list)

    def log_error(self, base_id: str, locale: str, reason: str) -> None:
        self.error_log.append((base_id, locale, reason))

    def counts(self) -> dict[str, int]:
        return {
            "already_translated": self.already_translated,
            "translated": self.translated,
            "failed": self.failed,
            "skipped_quota": self.skipped_quota,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "source_locale": self.source_locale,
            "target_locales": list(self.target_locales),
            **self.counts(),
            "errors": [
                {"base_id": base_id, "locale": locale, "reason": reason}
                for base_id, locale, reason in self.error_log
            ],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "unlinked": [
                {"base_id": r.base_id, "locale": r.locale, "record_id": r.record_id}
                for r in self.unlinked
            ],
        }
