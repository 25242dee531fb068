# quickbite/infra/http_client.py
"""
Базовый HTTP-клиент для межсервисных вызовов.

- у каждого запроса ограниченный таймаут;
- GET идемпотентен и повторяется при сетевых сбоях и ответах 5xx;
- POST/PUT/PATCH не повторяются, чтобы не дублировать побочные эффекты;
- ошибки переводятся в доменные исключения (404 → NotFoundError, прочее → UpstreamError).
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from quickbite.common.exceptions import NotFoundError, UpstreamError
from quickbite.common.logger import log_warning


class BaseClient:
    """Клиент одного сервиса-коллаборатора."""

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        connect_timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        from quickbite.config import settings

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http.HTTP_TIMEOUT
        connect = connect_timeout if connect_timeout is not None else settings.http.HTTP_CONNECT_TIMEOUT
        self.retry_attempts = max(1, retry_attempts if retry_attempts is not None else settings.http.HTTP_RETRY_ATTEMPTS)
        self.retry_delay = retry_delay if retry_delay is not None else settings.http.HTTP_RETRY_DELAY
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=connect),
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    # =========================================================================
    # ЗАПРОСЫ
    # =========================================================================

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET с ограниченным числом повторов (линейная задержка)."""
        last_error: Exception | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                response = await self.client.get(path, params=params)
            except httpx.TransportError as e:
                last_error = e
            else:
                if response.status_code < 500:
                    return self._handle(response, "GET", path)
                last_error = UpstreamError(
                    f"{self.base_url}{path} responded {response.status_code}",
                    {"status_code": response.status_code},
                )

            if attempt < self.retry_attempts:
                await log_warning(
                    f"GET {self.base_url}{path} не удался (попытка {attempt}/{self.retry_attempts}): {last_error}"
                )
                await asyncio.sleep(self.retry_delay * attempt)

        if isinstance(last_error, UpstreamError):
            raise last_error
        raise UpstreamError(f"GET {self.base_url}{path} failed: {last_error}") from last_error

    async def _post(self, path: str, json: dict[str, Any] | None = None) -> Any:
        return await self._send("POST", path, json)

    async def _put(self, path: str, json: dict[str, Any] | None = None) -> Any:
        return await self._send("PUT", path, json)

    async def _send(self, method: str, path: str, json: dict[str, Any] | None) -> Any:
        """Мутирующий запрос: ровно одна попытка."""
        try:
            response = await self.client.request(method, path, json=json)
        except httpx.TransportError as e:
            raise UpstreamError(f"{method} {self.base_url}{path} failed: {e}") from e
        return self._handle(response, method, path)

    def _handle(self, response: httpx.Response, method: str, path: str) -> Any:
        if response.status_code == 404:
            raise NotFoundError(f"{method} {self.base_url}{path}: not found")
        if response.status_code >= 400:
            raise UpstreamError(
                f"{method} {self.base_url}{path} responded {response.status_code}",
                {"status_code": response.status_code, "body": response.text[:500]},
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"{method} {self.base_url}{path}: invalid JSON response") from e
