from __future__ import annotations

from typing import Protocol

from ..models import QuotaState


class TranslationProvider(Protocol):
    name: str

    def translate(self, text: str, target_locale: str) -> str:
        ...

    def translate_batch(self, texts: list[str], target_locale: str) -> list[str]:
        ...

    def get_usage(self) -> QuotaState:
        ...


def split_blank(texts: list[str]) -> tuple[list[int], list[str]]:
    """Return positions and values of the non-blank texts.

    Blank strings are never sent to a provider; callers put them back in
    place so the output keeps the input's length and order.
    """
    positions: list[int] = []
    values: list[str] = []
    for idx, text in enumerate(texts):
        if text and text.strip():
            positions.append(idx)
            values.append(text)
    return positions, values


def merge_blank(texts: list[str], positions: list[int], translated: list[str]) -> list[str]:
    out = ["" if not (t and t.strip()) else t for t in texts]
    for idx, value in zip(positions, translated):
        out[idx] = value
    return out
