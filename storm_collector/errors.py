"""Error taxonomy shared by the collection pipeline."""

from __future__ import annotations


class CollectorError(Exception):
    """Base class for pipeline errors."""


class ConfigError(CollectorError):
    """Configuration could not be located or parsed."""


class FetchFailed(CollectorError):
    """Network-level failure while retrieving a report."""

    def __init__(self, url: str, cause: BaseException) -> None:
        super().__init__(f"fetch failed for {url}: {cause}")
        self.url = url
        self.cause = cause


class NonOkStatus(CollectorError):
    """Remote returned a status other than 200."""

    def __init__(self, url: str, code: int, status: str) -> None:
        super().__init__(f"non-200 status code returned for {url}: {code} {status}".rstrip())
        self.url = url
        self.code = code
        self.status = status


class DedupStoreUnavailable(CollectorError):
    """Lookup or mark against the deduplication store failed."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"dedup store {operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class PublishFailed(CollectorError):
    """Broker write failed."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"publish failed: {cause}")
        self.cause = cause


class FatalAuthFailure(CollectorError):
    """Broker or store rejected our credentials; retrying will not help."""

    def __init__(self, component: str, cause: BaseException) -> None:
        super().__init__(f"{component} rejected credentials: {cause}")
        self.component = component
        self.cause = cause


__all__ = [
    "CollectorError",
    "ConfigError",
    "DedupStoreUnavailable",
    "FatalAuthFailure",
    "FetchFailed",
    "NonOkStatus",
    "PublishFailed",
]
