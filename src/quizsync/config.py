from __future__ import annotations

import os
import json
from dataclasses import dataclass

DEFAULT_PROVIDER_LANGS = {"pt": "PT-BR", "en": "EN-US"}


@dataclass(frozen=True)
class Config:
    strapi_api_url: str
    strapi_api_token: str
    strapi_collection: str = "questions"
    strapi_user_agent: str = "QuizSyncBot/0.1"

    pg_dsn: str | None = None

    source_lang: str = "en"
    target_langs: tuple[str, ...] = ("pt", "es", "fr")

    mt_primary: str = "deepl"
    deepl_api_key: str | None = None
    deepl_api_url: str | None = None
    provider_langs: dict[str, str] | None = None

    gcp_project_id: str | None = None
    gcp_location: str = "global"
    gcp_credentials_path: str | None = None

    batch_size: int = 10
    batch_delay_ms: int = 2000
    max_retries: int = 3
    retry_base_delay: float = 1.0
    request_timeout: float = 30.0
    concurrency: int = 1
    quota_reserve: int = 0
    page_size: int = 100


def load_config() -> Config:
    def _load_provider_langs() -> dict[str, str]:
        raw = os.getenv("BOT_PROVIDER_LANG_MAP")
        if not raw:
            return dict(DEFAULT_PROVIDER_LANGS)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RuntimeError("BOT_PROVIDER_LANG_MAP must be valid JSON") from exc
        if not isinstance(data, dict):
            raise RuntimeError("BOT_PROVIDER_LANG_MAP must be a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def req(name: str) -> str:
        value = os.getenv(name)
        if not value:
            raise RuntimeError(f"Missing required env var: {name}")
        return value

    def positive_int(name: str, default: str) -> int:
        raw = os.getenv(name, default)
        try:
            value = int(raw)
        except ValueError as exc:
            raise RuntimeError(f"{name} must be an integer") from exc
        if value < 0:
            raise RuntimeError(f"{name} must not be negative")
        return value

    target_langs = tuple(
        lang.strip()
        for lang in os.getenv("BOT_TARGET_LANGS", "pt,es,fr").split(",")
        if lang.strip()
    )
    source_lang = os.getenv("BOT_SOURCE_LANG", "en")
    if source_lang in target_langs:
        raise RuntimeError("BOT_TARGET_LANGS must not include BOT_SOURCE_LANG")

    mt_primary = os.getenv("BOT_MT_PRIMARY", "deepl").strip().lower()
    if mt_primary not in ("deepl", "google"):
        raise RuntimeError(f"unsupported BOT_MT_PRIMARY: {mt_primary}")

    cfg = Config(
        strapi_api_url=req("STRAPI_API_URL").rstrip("/"),
        strapi_api_token=req("STRAPI_API_TOKEN"),
        strapi_collection=os.getenv("STRAPI_COLLECTION", "questions"),
        strapi_user_agent=os.getenv("STRAPI_USER_AGENT", "QuizSyncBot/0.1"),
        pg_dsn=os.getenv("DATABASE_URL"),
        source_lang=source_lang,
        target_langs=target_langs,
        mt_primary=mt_primary,
        deepl_api_key=os.getenv("DEEPL_API_KEY"),
        deepl_api_url=os.getenv("DEEPL_API_URL"),
        provider_langs=_load_provider_langs(),
        gcp_project_id=os.getenv("GCP_PROJECT_ID"),
        gcp_location=os.getenv("GCP_LOCATION", "global"),
        gcp_credentials_path=os.getenv("GCP_CREDENTIALS_PATH")
        or os.getenv("GCP_CREDENTIALS_JSON"),
        batch_size=max(positive_int("BOT_BATCH_SIZE", "10"), 1),
        batch_delay_ms=positive_int("BOT_BATCH_DELAY_MS", "2000"),
        max_retries=max(positive_int("BOT_MAX_RETRIES", "3"), 1),
        retry_base_delay=float(os.getenv("BOT_RETRY_BASE_DELAY", "1.0")),
        request_timeout=float(os.getenv("BOT_REQUEST_TIMEOUT", "30")),
        concurrency=max(positive_int("BOT_CONCURRENCY", "1"), 1),
        quota_reserve=positive_int("BOT_QUOTA_RESERVE", "0"),
        page_size=max(positive_int("BOT_PAGE_SIZE", "100"), 1),
    )
    return cfg
