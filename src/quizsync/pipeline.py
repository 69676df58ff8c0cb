from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable

from .config import Config
from .engines.base import TranslationProvider
from .errors import (
    FATAL,
    RETRYABLE,
    LinkConflict,
    ProviderError,
    ProviderQuotaExceeded,
    ProviderRateLimited,
    StoreError,
)
from .linker import DocumentLinker
from .models import Conflict, QuestionRecord, SyncReport, TranslationJob
from .planner import SyncPlan, plan
from .quota import QuotaGuard, Reservation, estimate_characters

log = logging.getLogger("quizsync.pipeline")

RecordFn = Callable[[str, str, str | None, str | None, str | None], None]


class RunState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class JobOutcome:
    job: TranslationJob
    status: str
    reason: str | None = None
    conflict: Conflict | None = None


class RunAborted(Exception):
    pass


def chunk(items: list[TranslationJob], size: int) -> list[list[TranslationJob]]:
    size = max(size, 1)
    return [items[i : i + size] for i in range(0, len(items), size)]


class SyncPipeline:
    def __init__(
        self,
        store,
        provider: TranslationProvider,
        cfg: Config,
        sleep: Callable[[float], None] = time.sleep,
        record: RecordFn | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.cfg = cfg
        self.sleep = sleep
        self.record = record
        self.linker = DocumentLinker(store, cfg.source_lang, cfg.target_langs)
        self.guard = QuotaGuard(provider, reserve_margin=cfg.quota_reserve)
        self.state = RunState.IDLE

    def _record(self, status: str, base_id: str | None, locale: str | None, message: str | None = None) -> None:
        if self.record is not None:
            self.record("translate", status, base_id, locale, message)

    def load_state(
        self, source_locale: str, target_locales: Iterable[str]
    ) -> tuple[list[QuestionRecord], list[QuestionRecord]]:
        # Listings return draft versions, whose publishedAt is always empty.
        published = self.store.published_link_ids(source_locale)
        sources = [
            replace(s, published=True) if s.link_id in published else s
            for s in self.store.iter_records(source_locale)
        ]
        variants: list[QuestionRecord] = []
        for locale in target_locales:
            variants.extend(self.store.iter_records(locale))
        log.info("loaded %s source records and %s variants", len(sources), len(variants))
        return sources, variants

    def plan(self, source_locale: str, target_locales: tuple[str, ...]) -> SyncPlan:
        sources, variants = self.load_state(source_locale, target_locales)
        return plan(sources, target_locales, variants)

    def run_sync(
        self,
        source_locale: str | None = None,
        target_locales: Iterable[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> SyncReport:
        source_locale = source_locale or self.cfg.source_lang
        targets = tuple(
            dict.fromkeys(
                l for l in (target_locales or self.cfg.target_langs) if l != source_locale
            )
        )
        report = SyncReport(source_locale=source_locale, target_locales=targets)

        self.state = RunState.PLANNING
        try:
            for locale in targets:
                self.store.ensure_locale_exists(locale)
            sync_plan = self.plan(source_locale, targets)
        except (StoreError, ProviderError) as exc:
            log.error("planning failed: %s", exc)
            report.log_error("*", "*", f"planning failed: {exc}")
            return self._finish(report, RunState.ABORTED)

        report.already_translated = sync_plan.already_translated
        report.conflicts.extend(sync_plan.conflicts)
        report.unlinked.extend(sync_plan.unlinked)
        for conflict in sync_plan.conflicts:
            self._record("warning", conflict.base_id, conflict.locale, f"conflict:{conflict.kind}")
        for variant in sync_plan.unlinked:
            self._record("warning", variant.base_id, variant.locale, "unlinked variant")

        self.state = RunState.EXECUTING
        batches = chunk(sync_plan.jobs, self.cfg.batch_size)
        try:
            for idx, batch in enumerate(batches):
                pending = sum(len(b) for b in batches[idx:])
                if cancel is not None and cancel.is_set():
                    log.warning("cancelled; %s jobs not started", pending)
                    report.log_error("*", "*", f"cancelled: {pending} jobs not started")
                    return self._finish(report, RunState.ABORTED)
                if idx > 0 and self.cfg.batch_delay_ms > 0:
                    self.sleep(self.cfg.batch_delay_ms / 1000)

                reservation = self._reserve(batch)
                if not reservation.allowed:
                    self._skip_quota(report, [j for b in batches[idx:] for j in b], reservation.reason)
                    break

                log.info(
                    "batch %s/%s: %s jobs, ~%s chars",
                    idx + 1,
                    len(batches),
                    len(batch),
                    reservation.estimated,
                )
                outcomes = self._execute_batch(batch)
                quota_hit = self._apply(report, outcomes)
                if quota_hit:
                    self._skip_quota(
                        report,
                        [j for b in batches[idx + 1 :] for j in b],
                        "provider quota exceeded",
                    )
                    break
        except RunAborted as exc:
            log.error("run aborted: %s", exc)
            report.log_error("*", "*", f"aborted: {exc}")
            return self._finish(report, RunState.ABORTED)

        return self._finish(report, RunState.COMPLETED)

    def _finish(self, report: SyncReport, state: RunState) -> SyncReport:
        self.state = state
        report.status = state.value
        log.info(
            "run %s: translated=%s already=%s failed=%s skipped_quota=%s",
            state.value,
            report.translated,
            report.already_translated,
            report.failed,
            report.skipped_quota,
        )
        return report

    def _reserve(self, batch: list[TranslationJob]) -> Reservation:
        estimated = estimate_characters(batch)
        last_error = "usage unavailable"
        for attempt in range(self.cfg.max_retries):
            try:
                return self.guard.reserve(estimated)
            except FATAL as exc:
                raise RunAborted(str(exc)) from exc
            except RETRYABLE as exc:
                last_error = f"usage check failed: {exc}"
                if attempt < self.cfg.max_retries - 1:
                    self.sleep(self._backoff(attempt, exc))
            except ProviderError as exc:
                raise RunAborted(f"usage check failed: {exc}") from exc
        # An unverifiable budget is treated like an exhausted one.
        return Reservation(False, estimated, None, None, last_error)

    def _skip_quota(self, report: SyncReport, jobs: list[TranslationJob], reason: str | None) -> None:
        if not jobs:
            return
        log.warning("quota: withholding %s jobs (%s)", len(jobs), reason)
        report.skipped_quota += len(jobs)
        for job in jobs:
            self._record("skip", job.base_id, job.target_locale, "quota")

    def _apply(self, report: SyncReport, outcomes: list[JobOutcome]) -> bool:
        quota_hit = False
        fatal: str | None = None
        not_started: list[TranslationJob] = []
        for outcome in outcomes:
            job = outcome.job
            if outcome.status == "not_started":
                not_started.append(job)
            elif outcome.status == "translated":
                report.translated += 1
                self._record("ok", job.base_id, job.target_locale, job.action)
            elif outcome.status == "skipped_quota":
                quota_hit = True
                report.skipped_quota += 1
                self._record("skip", job.base_id, job.target_locale, "quota")
            elif outcome.status == "aborted":
                fatal = fatal or outcome.reason
                report.log_error(job.base_id, job.target_locale, outcome.reason or "aborted")
                self._record("error", job.base_id, job.target_locale, outcome.reason)
            else:
                report.failed += 1
                report.log_error(job.base_id, job.target_locale, outcome.reason or "failed")
                if outcome.conflict is not None:
                    report.conflicts.append(outcome.conflict)
                self._record("error", job.base_id, job.target_locale, outcome.reason)
        if fatal is not None:
            raise RunAborted(fatal)
        if quota_hit:
            self._skip_quota(report, not_started, "provider quota exceeded")
        return quota_hit

    def _execute_batch(self, batch: list[TranslationJob]) -> list[JobOutcome]:
        stop = threading.Event()
        if self.cfg.concurrency <= 1 or len(batch) <= 1:
            return self._run_group(batch, stop)

        # Jobs sharing a baseId stay in one worker so their upserts never race.
        groups: dict[str, list[TranslationJob]] = defaultdict(list)
        for job in batch:
            groups[job.base_id].append(job)
        outcomes: list[JobOutcome] = []
        with ThreadPoolExecutor(max_workers=self.cfg.concurrency) as executor:
            futures = [executor.submit(self._run_group, jobs, stop) for jobs in groups.values()]
            for future in futures:
                outcomes.extend(future.result())
        return outcomes

    def _run_group(self, jobs: list[TranslationJob], stop: threading.Event) -> list[JobOutcome]:
        outcomes: list[JobOutcome] = []
        for job in jobs:
            if stop.is_set():
                outcomes.append(JobOutcome(job, "not_started"))
                continue
            outcome = self.run_job(job)
            if outcome.status in ("skipped_quota", "aborted"):
                stop.set()
            outcomes.append(outcome)
        return outcomes

    def _backoff(self, attempt: int, exc: Exception) -> float:
        delay = self.cfg.retry_base_delay * (2**attempt)
        if isinstance(exc, ProviderRateLimited) and exc.retry_after:
            delay = max(delay, exc.retry_after)
        return delay

    def run_job(self, job: TranslationJob) -> JobOutcome:
        """Link, translate and write back one (baseId, locale) pair as a unit."""
        locale = job.target_locale
        try:
            link_id = self.linker.ensure_link(job.source)
        except FATAL as exc:
            return JobOutcome(job, "aborted", str(exc))
        except StoreError as exc:
            return JobOutcome(job, "failed", f"link failed: {exc}")

        fields = job.source.text_fields()
        names = list(fields)
        translated: list[str] | None = None
        for attempt in range(self.cfg.max_retries):
            try:
                translated = self.provider.translate_batch([fields[n] for n in names], locale)
                break
            except ProviderQuotaExceeded as exc:
                return JobOutcome(job, "skipped_quota", str(exc))
            except FATAL as exc:
                return JobOutcome(job, "aborted", str(exc))
            except RETRYABLE as exc:
                if attempt == self.cfg.max_retries - 1:
                    return JobOutcome(
                        job, "failed", f"translate failed after {attempt + 1} attempts: {exc}"
                    )
                delay = self._backoff(attempt, exc)
                log.warning(
                    "retrying %s/%s in %.1fs after: %s", job.base_id, locale, delay, exc
                )
                self.sleep(delay)
            except ProviderError as exc:
                return JobOutcome(job, "failed", f"translate failed: {exc}")
        if translated is None:
            return JobOutcome(job, "failed", "translate produced no output")

        try:
            self.linker.attach_variant(link_id, locale, dict(zip(names, translated)), job.source)
        except LinkConflict as exc:
            conflict = Conflict("variant", job.base_id, locale, tuple(exc.record_ids))
            return JobOutcome(job, "failed", str(exc), conflict)
        except FATAL as exc:
            return JobOutcome(job, "aborted", str(exc))
        except StoreError as exc:
            return JobOutcome(job, "failed", f"write failed: {exc}")
        return JobOutcome(job, "translated")
