from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

import requests

from .auditor import CHECKS, Auditor, AuditScope
from .config import Config, load_config
from .corrections import Corrector
from .db import get_conn
from .engines.factory import build_provider
from .logging import attach_file_logging, configure_logging
from .models import SyncReport
from .pipeline import SyncPipeline
from .run_report import (
    close_stale_running_runs,
    finish_run,
    log_item,
    report_last_run,
    start_run,
    write_report_file,
)
from .store import StrapiClient

log = logging.getLogger("quizsync.runner")


def build_store(cfg: Config, session: requests.Session) -> StrapiClient:
    return StrapiClient(
        api_url=cfg.strapi_api_url,
        api_token=cfg.strapi_api_token,
        session=session,
        collection=cfg.strapi_collection,
        user_agent=cfg.strapi_user_agent,
        timeout=cfg.request_timeout,
        page_size=cfg.page_size,
    )


def _emit(payload: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    for key, value in payload.items():
        if isinstance(value, (list, dict)) and not value:
            continue
        if isinstance(value, list):
            print(f"{key}={len(value)}")
            for item in value[:10]:
                print(f"  - {item}")
        else:
            print(f"{key}={value}")


def install_cancel_handlers(cancel: threading.Event) -> None:
    def _handler(signum, _frame) -> None:
        log.warning("signal %s received; stopping after the current batch", signum)
        cancel.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run_sync(
    cfg: Config,
    store,
    provider,
    langs: tuple[str, ...],
    cancel: threading.Event | None = None,
) -> SyncReport:
    if not cfg.pg_dsn:
        return SyncPipeline(store, provider, cfg).run_sync(cfg.source_lang, langs, cancel)

    with get_conn(cfg.pg_dsn) as conn:
        for stale_id in close_stale_running_runs(conn):
            log.warning("closed stale run as interrupted: run_id=%s", stale_id)
        run_id = start_run(conn, "sync", cfg)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    attach_file_logging(f"docs/runs/raw/run-{run_id}-{stamp}.log")

    report: SyncReport | None = None
    try:
        with get_conn(cfg.pg_dsn) as conn:

            def _record(kind: str, status: str, base_id, locale, message) -> None:
                log_item(conn, run_id, kind, status, base_id, locale, message)

            pipeline = SyncPipeline(store, provider, cfg, record=_record)
            report = pipeline.run_sync(cfg.source_lang, langs, cancel)
            for base_id, locale, reason in report.error_log:
                if base_id == "*":
                    log_item(conn, run_id, "run", "error", None, None, reason)
    finally:
        with get_conn(cfg.pg_dsn) as conn:
            finish_run(conn, run_id, report.status if report else "error")
            path = write_report_file(conn, run_id)
        log.info("run report written to %s", path)
    return report


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="quizsync")
    parser.add_argument("--sync", action="store_true", help="translate and link missing variants (default)")
    parser.add_argument("--audit", action="store_true", help="run read-only consistency checks")
    parser.add_argument(
        "--checks",
        default=",".join(CHECKS),
        help=f"comma-separated audit checks ({','.join(CHECKS)})",
    )
    parser.add_argument("--sample", type=int, default=None, help="audit linkage on the first N variants per locale")
    parser.add_argument(
        "--fail-on-issues",
        action="store_true",
        help="with --audit, exit 1 when any inconsistency is found",
    )
    parser.add_argument("--delete-orphans", metavar="LOCALE", help="delete variants linked to no source")
    parser.add_argument("--purge-locale", metavar="LOCALE", help="delete every record of a locale")
    parser.add_argument("--relink", metavar="LOCALE", help="move unlinked variants under their source's link")
    parser.add_argument("--confirm", metavar="TOKEN", help="token printed by the dry run of a destructive operation")
    parser.add_argument("--ensure-locales", action="store_true", help="register target locales in the store")
    parser.add_argument("--usage", action="store_true", help="print the provider's character usage")
    parser.add_argument("--report-last", action="store_true", help="print last run summary as JSON")
    parser.add_argument("--langs", default=None, help="comma-separated target locales; defaults to BOT_TARGET_LANGS")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--json", action="store_true", help="print results as JSON")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)
    cfg = load_config()
    if args.batch_size is not None:
        if args.batch_size < 1:
            raise SystemExit("--batch-size must be at least 1")
        cfg = replace(cfg, batch_size=args.batch_size)
    langs = tuple(
        l.strip() for l in (args.langs.split(",") if args.langs else cfg.target_langs) if l.strip()
    )
    if not langs:
        raise SystemExit("no languages configured")

    destructive = [a for a in (args.delete_orphans, args.purge_locale, args.relink) if a]
    if len(destructive) > 1:
        raise SystemExit("run one destructive operation at a time")
    if args.confirm and not destructive:
        raise SystemExit("--confirm is only valid with --delete-orphans, --purge-locale or --relink")

    if args.report_last:
        if not cfg.pg_dsn:
            raise SystemExit("--report-last requires DATABASE_URL")
        with get_conn(cfg.pg_dsn) as conn:
            print(report_last_run(conn))
        return

    session = requests.Session()
    store = build_store(cfg, session)

    if args.usage:
        state = build_provider(cfg, session).get_usage()
        _emit(
            {
                "characters_used": state.characters_used,
                "character_limit": state.character_limit,
                "remaining": state.remaining,
            },
            args.json,
        )
        return

    corrector = Corrector(store, cfg.source_lang)

    if args.ensure_locales:
        done = corrector.ensure_locales(langs)
        print(f"locales_ready={','.join(done)}")
        return

    if args.audit:
        checks = tuple(c.strip() for c in args.checks.split(",") if c.strip())
        try:
            scope = AuditScope(locales=langs, checks=checks, sample=args.sample)
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
        report = Auditor(store, cfg.source_lang).audit(scope)
        _emit(report.to_dict(), args.json)
        if args.fail_on_issues and not report.consistent:
            raise SystemExit(1)
        return

    if destructive:
        try:
            if args.delete_orphans:
                result = corrector.delete_orphans(args.delete_orphans, args.confirm)
            elif args.purge_locale:
                result = corrector.purge_locale(args.purge_locale, args.confirm)
            else:
                result = corrector.relink(args.relink, args.confirm)
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
        _emit(result.to_dict(), args.json)
        if args.confirm and not result.applied:
            raise SystemExit(1)
        if not result.applied:
            flag = f"--{result.operation} {result.locale}"
            print(f"dry run only; re-run with {flag} --confirm {result.token} to apply")
        return

    cancel = threading.Event()
    install_cancel_handlers(cancel)
    provider = build_provider(cfg, session)
    report = run_sync(cfg, store, provider, langs, cancel)
    _emit(report.to_dict(), args.json)
    if report.status == "aborted":
        raise SystemExit(2)


if __name__ == "__main__":
    main()
