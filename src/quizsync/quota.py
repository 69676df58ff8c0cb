from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from .engines.base import TranslationProvider
from .errors import ProviderQuotaExceeded
from .models import QuotaState, TranslationJob

log = logging.getLogger("quizsync.quota")


@dataclass(frozen=True)
class Reservation:
    allowed: bool
    estimated: int
    remaining: int | None
    state: QuotaState | None = None
    reason: str | None = None


def estimate_characters(jobs: Iterable[TranslationJob]) -> int:
    return sum(job.character_count() for job in jobs)


class QuotaGuard:
    """Checks a batch's character estimate against the provider's live budget.

    The budget is shared with every other consumer of the same credential, so
    usage is fetched again on each reservation instead of being tracked here.
    """

    def __init__(self, provider: TranslationProvider, reserve_margin: int = 0) -> None:
        self.provider = provider
        self.reserve_margin = max(reserve_margin, 0)

    def reserve(self, estimated: int) -> Reservation:
        try:
            state = self.provider.get_usage()
        except ProviderQuotaExceeded as exc:
            log.warning("quota exhausted while reading usage: %s", exc)
            return Reservation(False, estimated, 0, None, str(exc))

        if state.unlimited:
            return Reservation(True, estimated, None, state)

        remaining = state.remaining or 0
        budget = remaining - self.reserve_margin
        if estimated > budget:
            log.warning(
                "quota denied: need %s chars, %s remaining (margin %s)",
                estimated,
                remaining,
                self.reserve_margin,
            )
            return Reservation(
                False,
                estimated,
                remaining,
                state,
                f"estimated {estimated} chars exceeds remaining {remaining}",
            )
        log.info(
            "quota ok: %s/%s used, reserving %s",
            state.characters_used,
            state.character_limit,
            estimated,
        )
        return Reservation(True, estimated, remaining, state)
