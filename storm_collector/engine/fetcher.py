"""HTTP retrieval of report bodies."""

from __future__ import annotations

import httpx
import structlog

from ..config import FetchConfig
from ..errors import FetchFailed, NonOkStatus


class Fetcher:
    """Issue one GET per report and hand back the raw body."""

    def __init__(
        self,
        config: FetchConfig | None = None,
        logger: structlog.BoundLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or FetchConfig()
        self.logger = logger or structlog.get_logger("storm_collector.fetcher")
        headers = {"User-Agent": self.config.user_agent} if self.config.user_agent else None
        self._client = httpx.AsyncClient(
            follow_redirects=self.config.follow_redirects,
            timeout=self.config.timeout,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch(self, url: str) -> bytes:
        """Return the body of ``url``; anything but HTTP 200 is an error.

        No retries happen here. Cancelling the calling task aborts the
        request.
        """

        try:
            response = await self._client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FetchFailed(url, exc) from exc

        if not self._is_ok(response):
            self.logger.debug(
                "response_status",
                url=url,
                status_code=response.status_code,
                status=response.reason_phrase,
            )
            raise NonOkStatus(url, response.status_code, response.reason_phrase)
        return response.content

    @staticmethod
    def _is_ok(response: httpx.Response) -> bool:
        return response.status_code == httpx.codes.OK


__all__ = ["Fetcher"]
