from __future__ import annotations

from dataclasses import dataclass, field

from google.api_core import exceptions as gexc
from google.cloud import translate

from ..errors import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimited,
    ProviderTransientError,
)
from ..models import QuotaState
from .base import merge_blank, split_blank


def classify_google_error(exc: gexc.GoogleAPICallError) -> ProviderError:
    message = f"Google Translate error: {exc}"
    if isinstance(exc, (gexc.Unauthenticated, gexc.PermissionDenied)):
        return ProviderAuthError(message)
    if isinstance(exc, (gexc.TooManyRequests, gexc.ResourceExhausted)):
        return ProviderRateLimited(message)
    if isinstance(
        exc,
        (
            gexc.ServiceUnavailable,
            gexc.InternalServerError,
            gexc.DeadlineExceeded,
            gexc.GatewayTimeout,
            gexc.BadGateway,
        ),
    ):
        return ProviderTransientError(message)
    return ProviderError(message)


@dataclass
class GoogleTranslateV3:
    project_id: str
    location: str = "global"
    credentials_path: str | None = None
    source_lang: str = "en"
    timeout: float = 30.0
    glossary_id: str | None = None
    provider_langs: dict[str, str] = field(default_factory=dict)

    name: str = "google_v3"
    _cached_client: translate.TranslationServiceClient | None = field(
        default=None, repr=False
    )

    def _client(self) -> translate.TranslationServiceClient:
        if self._cached_client is None:
            if self.credentials_path:
                self._cached_client = (
                    translate.TranslationServiceClient.from_service_account_file(
                        self.credentials_path
                    )
                )
            else:
                self._cached_client = translate.TranslationServiceClient()
        return self._cached_client

    def target_code(self, locale: str) -> str:
        # Google expects BCP-47 ("pt-BR"), so keep the mapped value's case.
        mapped = self.provider_langs.get(locale, locale)
        if "-" in mapped:
            lang, region = mapped.split("-", 1)
            return f"{lang.lower()}-{region.upper()}"
        return mapped.lower()

    def translate_batch(self, texts: list[str], target_locale: str) -> list[str]:
        positions, values = split_blank(texts)
        if not values:
            return merge_blank(texts, [], [])
        if not self.project_id:
            raise ProviderAuthError("GCP project_id is required for Google Translate v3")

        client = self._client()
        parent = f"projects/{self.project_id}/locations/{self.location}"

        request = {
            "parent": parent,
            "contents": values,
            "mime_type": "text/plain",
            "source_language_code": self.source_lang,
            "target_language_code": self.target_code(target_locale),
        }
        if self.glossary_id:
            glossary = client.glossary_path(self.project_id, self.location, self.glossary_id)
            request["glossary_config"] = {"glossary": glossary}

        try:
            response = client.translate_text(request=request, timeout=self.timeout)
        except gexc.GoogleAPICallError as exc:
            raise classify_google_error(exc) from exc

        translations = (
            response.glossary_translations
            if self.glossary_id and response.glossary_translations
            else response.translations
        )
        return merge_blank(texts, positions, [t.translated_text for t in translations])

    def translate(self, text: str, target_locale: str) -> str:
        return self.translate_batch([text], target_locale)[0]

    def get_usage(self) -> QuotaState:
        # The v3 API exposes no usage endpoint; budgets live in Cloud quotas.
        return QuotaState(characters_used=0, character_limit=None)
