from __future__ import annotations

from typing import Any, Optional

import httpx
from loguru import logger

from .errors import TransientRemoteError


USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36"
)


class TsdmClient:
    """Shared HTTP session for every account loop.

    Cookies are passed per request so one connection pool serves all
    accounts. Transport errors and error statuses surface as
    ``TransientRemoteError``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        max_keepalive: int = 100,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_keepalive_connections=max_keepalive),
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "TsdmClient":
        return cls(
            settings.base_url,
            timeout=settings.http_timeout,
            max_keepalive=settings.http_max_keepalive,
            **kwargs,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        cookie: str = "",
        data: Optional[dict[str, str]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> str:
        req_headers = dict(headers or {})
        if cookie:
            req_headers["Cookie"] = cookie

        url = self.url(path)
        try:
            resp = await self._client.request(method, url, data=data, headers=req_headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransientRemoteError(
                f"HTTP {e.response.status_code} from {e.request.url.path}"
            ) from e
        except httpx.RequestError as e:
            raise TransientRemoteError(f"{type(e).__name__} on {method} {url}: {e}") from e

        logger.trace(f"{method} {url} -> {resp.status_code} ({len(resp.content)} bytes)")
        return resp.text

    async def get(self, path: str, *, cookie: str = "", headers: Optional[dict[str, str]] = None) -> str:
        return await self.request("GET", path, cookie=cookie, headers=headers)

    async def post(
        self,
        path: str,
        data: dict[str, str],
        *,
        cookie: str = "",
        headers: Optional[dict[str, str]] = None,
    ) -> str:
        return await self.request("POST", path, cookie=cookie, data=data, headers=headers)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "TsdmClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
