from __future__ import annotations


class SyncError(RuntimeError):
    pass


class ProviderError(SyncError):
    pass


class ProviderAuthError(ProviderError):
    pass


class ProviderQuotaExceeded(ProviderError):
    pass


class ProviderTransientError(ProviderError):
    pass


class ProviderRateLimited(ProviderError):
    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class StoreError(SyncError):
    pass


class StoreWriteError(StoreError):
    pass


class StoreAuthError(StoreError):
    pass


class LinkConflict(SyncError):
    def __init__(self, link_id: str, locale: str, record_ids: list[int]) -> None:
        super().__init__(
            f"multiple {locale} variants for link {link_id}: {record_ids}"
        )
        self.link_id = link_id
        self.locale = locale
        self.record_ids = record_ids


# Errors worth retrying on the same job.
RETRYABLE = (ProviderTransientError, ProviderRateLimited)

# Errors no job in the run can recover from.
FATAL = (ProviderAuthError, StoreAuthError)
