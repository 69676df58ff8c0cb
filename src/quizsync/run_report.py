from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .config import Config


@dataclass(frozen=True)
class RunSummary:
    run_id: int
    started_at: str
    finished_at: str | None
    status: str | None
    mode: str
    source_lang: str
    target_langs: str
    totals: dict[str, int]


def start_run(conn, mode: str, cfg: Config) -> int:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO sync_runs (mode, source_lang, target_langs, status)
            VALUES (%s, %s, %s, %s)
            RETURNING id
            """,
            (mode, cfg.source_lang, ",".join(cfg.target_langs), "running"),
        )
        run_id = cur.fetchone()[0]
    return int(run_id)


def finish_run(conn, run_id: int, status: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE sync_runs
            SET finished_at = NOW(), status = %s
            WHERE id = %s
            """,
            (status, run_id),
        )


def close_stale_running_runs(conn) -> list[int]:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE sync_runs
            SET finished_at = NOW(), status = 'interrupted'
            WHERE status = 'running'
            RETURNING id
            """
        )
        rows = cur.fetchall()
    return [int(r[0]) for r in rows]


def log_item(
    conn,
    run_id: int,
    kind: str,
    status: str,
    base_id: str | None = None,
    locale: str | None = None,
    message: str | None = None,
) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO run_items (run_id, kind, base_id, locale, status, message)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (run_id, kind, base_id, locale, status, message),
        )


def last_run_id(conn) -> int | None:
    with conn.cursor() as cur:
        cur.execute("SELECT id FROM sync_runs ORDER BY id DESC LIMIT 1")
        row = cur.fetchone()
        if not row:
            return None
        return int(row[0])


def fetch_summary(conn, run_id: int) -> RunSummary:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT id, started_at, finished_at, status, mode, source_lang, target_langs
            FROM sync_runs
            WHERE id = %s
            """,
            (run_id,),
        )
        row = cur.fetchone()
        if not row:
            raise RuntimeError(f"Run {run_id} not found")

    totals: dict[str, int] = {}
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT kind, status, COUNT(*)
            FROM run_items
            WHERE run_id = %s
            GROUP BY kind, status
            ORDER BY kind, status
            """,
            (run_id,),
        )
        for kind, status, count in cur.fetchall():
            totals[f"{kind}:{status}"] = int(count)

    started = row[1].astimezone(timezone.utc).isoformat()
    finished = row[2].astimezone(timezone.utc).isoformat() if row[2] else None

    return RunSummary(
        run_id=int(row[0]),
        started_at=started,
        finished_at=finished,
        status=row[3],
        mode=row[4],
        source_lang=row[5],
        target_langs=row[6],
        totals=totals,
    )


def fetch_errors(conn, run_id: int) -> list[dict[str, str | None]]:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT kind, base_id, locale, status, message
            FROM run_items
            WHERE run_id = %s AND status = 'error'
            ORDER BY id ASC
            """,
            (run_id,),
        )
        rows = cur.fetchall()
    return [
        {
            "kind": r[0],
            "base_id": r[1],
            "locale": r[2],
            "status": r[3],
            "message": r[4],
        }
        for r in rows
    ]


def fetch_locale_stats(conn, run_id: int) -> dict[str, dict[str, int]]:
    stats: dict[str, dict[str, int]] = {}
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT locale, status, COUNT(*)
            FROM run_items
            WHERE run_id = %s AND kind = 'translate' AND locale IS NOT NULL
            GROUP BY locale, status
            ORDER BY locale, status
            """,
            (run_id,),
        )
        for locale, status, count in cur.fetchall():
            stats.setdefault(locale, {})[status] = int(count)
    return stats


def write_report_file(conn, run_id: int, directory: str = "docs/runs") -> Path:
    summary = fetch_summary(conn, run_id)
    errors = fetch_errors(conn, run_id)
    stats = fetch_locale_stats(conn, run_id)

    Path(directory).mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    path = Path(directory) / f"run-{summary.run_id}-{timestamp}.md"

    lines: list[str] = []
    lines.append(f"# Sync Run {summary.run_id}")
    lines.append("")
    lines.append(f"- started_at: {summary.started_at}")
    lines.append(f"- finished_at: {summary.finished_at}")
    lines.append(f"- status: {summary.status}")
    lines.append(f"- mode: {summary.mode}")
    lines.append(f"- source_lang: {summary.source_lang}")
    lines.append(f"- target_langs: {summary.target_langs}")
    lines.append("")
    lines.append("## Totals")
    for key in sorted(summary.totals.keys()):
        lines.append(f"- {key}: {summary.totals[key]}")
    lines.append("")

    lines.append("## Per Locale")
    if not stats:
        lines.append("- none")
    for locale in sorted(stats.keys()):
        parts = ", ".join(f"{k}={v}" for k, v in sorted(stats[locale].items()))
        lines.append(f"- {locale}: {parts}")
    lines.append("")

    lines.append("## Errors")
    if not errors:
        lines.append("- none")
    else:
        for err in errors:
            lines.append(
                f"- {err['kind']} {err['base_id']} {err['locale']}: {err['message']}"
            )
    lines.append("")

    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def report_last_run(conn) -> str:
    run_id = last_run_id(conn)
    if run_id is None:
        return "No runs recorded."
    summary = fetch_summary(conn, run_id)
    payload = {
        "run_id": summary.run_id,
        "started_at": summary.started_at,
        "finished_at": summary.finished_at,
        "status": summary.status,
        "mode": summary.mode,
        "source_lang": summary.source_lang,
        "target_langs": summary.target_langs,
        "totals": summary.totals,
        "locales": fetch_locale_stats(conn, run_id),
    }
    return json.dumps(payload, indent=2)
