from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from ..errors import (
    ProviderAuthError,
    ProviderError,
    ProviderQuotaExceeded,
    ProviderRateLimited,
    ProviderTransientError,
)
from ..models import QuotaState
from .base import merge_blank, split_blank

log = logging.getLogger("quizsync.engines.deepl")

FREE_API_URL = "https://api-free.deepl.com/v2"
PRO_API_URL = "https://api.deepl.com/v2"

# DeepL answers 456 once the billing period's character budget is spent.
QUOTA_STATUS = 456


def api_url_for_key(api_key: str) -> str:
    if api_key.endswith(":fx") or api_key.endswith(":f"):
        return FREE_API_URL
    return PRO_API_URL


def _retry_after(resp: requests.Response) -> float | None:
    raw = resp.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("detail") or data)
    return str(data)


def classify_response(resp: requests.Response) -> ProviderError | None:
    status = resp.status_code
    if status < 400:
        return None
    message = f"DeepL HTTP {status}: {_error_message(resp)}"
    if status in (401, 403):
        return ProviderAuthError(message)
    if status == QUOTA_STATUS or "quota" in message.lower():
        return ProviderQuotaExceeded(message)
    if status == 429:
        return ProviderRateLimited(message, retry_after=_retry_after(resp))
    if status >= 500:
        return ProviderTransientError(message)
    return ProviderError(message)


@dataclass
class DeepLClient:
    api_key: str
    session: requests.Session
    api_url: str | None = None
    timeout: float = 30.0
    source_lang: str = "en"
    provider_langs: dict[str, str] = field(default_factory=dict)

    name: str = "deepl"

    def __post_init__(self) -> None:
        if not self.api_url:
            self.api_url = api_url_for_key(self.api_key)
        self.api_url = self.api_url.rstrip("/")

    def target_code(self, locale: str) -> str:
        return self.provider_langs.get(locale, locale).upper()

    def source_code(self) -> str:
        # Source codes are bare languages ("EN"), never regional variants.
        mapped = self.provider_langs.get(self.source_lang, self.source_lang)
        return mapped.split("-")[0].upper()

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {"Authorization": f"DeepL-Auth-Key {self.api_key}"}
        url = f"{self.api_url}/{path}"
        try:
            if method == "GET":
                resp = self.session.get(url, headers=headers, timeout=self.timeout)
            else:
                resp = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise ProviderTransientError(f"DeepL timeout after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise ProviderTransientError(f"DeepL request failed: {exc}") from exc
        error = classify_response(resp)
        if error is not None:
            raise error
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderTransientError("DeepL returned a non-JSON body") from exc

    def translate_batch(self, texts: list[str], target_locale: str) -> list[str]:
        positions, values = split_blank(texts)
        if not values:
            return merge_blank(texts, [], [])
        data = self._request(
            "POST",
            "translate",
            {
                "text": values,
                "source_lang": self.source_code(),
                "target_lang": self.target_code(target_locale),
            },
        )
        translations = [str(t.get("text", "")) for t in data.get("translations", [])]
        if len(translations) != len(values):
            raise ProviderTransientError(
                f"DeepL returned {len(translations)} translations for {len(values)} texts"
            )
        log.debug("translated %s texts to %s", len(values), target_locale)
        return merge_blank(texts, positions, translations)

    def translate(self, text: str, target_locale: str) -> str:
        return self.translate_batch([text], target_locale)[0]

    def get_usage(self) -> QuotaState:
        data = self._request("GET", "usage")
        limit = data.get("character_limit")
        return QuotaState(
            characters_used=int(data.get("character_count") or 0),
            character_limit=int(limit) if limit is not None else None,
        )
