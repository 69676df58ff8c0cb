from __future__ import annotations

import requests

from ..config import Config
from .base import TranslationProvider
from .deepl import DeepLClient


def build_provider(cfg: Config, session: requests.Session | None = None) -> TranslationProvider:
    provider_langs = dict(cfg.provider_langs or {})
    if cfg.mt_primary == "google":
        from .google_v3 import GoogleTranslateV3

        if not cfg.gcp_project_id:
            raise RuntimeError("GCP_PROJECT_ID is required when BOT_MT_PRIMARY=google")
        return GoogleTranslateV3(
            project_id=cfg.gcp_project_id,
            location=cfg.gcp_location,
            credentials_path=cfg.gcp_credentials_path,
            source_lang=cfg.source_lang,
            timeout=cfg.request_timeout,
            provider_langs=provider_langs,
        )

    if not cfg.deepl_api_key:
        raise RuntimeError("Missing required env var: DEEPL_API_KEY")
    return DeepLClient(
        api_key=cfg.deepl_api_key,
        session=session or requests.Session(),
        api_url=cfg.deepl_api_url,
        timeout=cfg.request_timeout,
        source_lang=cfg.source_lang,
        provider_langs=provider_langs,
    )
