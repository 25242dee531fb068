# tests/infra/test_http_client.py
"""
Тесты базового HTTP-клиента.
"""

from __future__ import annotations

import httpx
import pytest

from quickbite.common.exceptions import NotFoundError, UpstreamError
from quickbite.infra.http_client import BaseClient
from quickbite.shared.clients import unwrap_envelope


def _client(handler) -> BaseClient:
    return BaseClient(
        "http://collaborator",
        retry_attempts=3,
        retry_delay=0,
        transport=httpx.MockTransport(handler),
    )


class TestGet:
    """GET повторяется при сбоях."""

    @pytest.mark.asyncio
    async def test_retries_on_5xx(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"ok": True})

        client = _client(handler)
        try:
            assert await client._get("/x") == {"ok": True}
        finally:
            await client.close()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)
        try:
            with pytest.raises(UpstreamError):
                await client._get("/x")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_404_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        client = _client(handler)
        try:
            with pytest.raises(NotFoundError):
                await client._get("/missing")
        finally:
            await client.close()
        assert len(calls) == 1


class TestMutatingRequests:
    """POST/PUT выполняются ровно один раз."""

    @pytest.mark.asyncio
    async def test_put_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="boom")

        client = _client(handler)
        try:
            with pytest.raises(UpstreamError) as exc_info:
                await client._put("/y", json={"a": 1})
        finally:
            await client.close()
        assert len(calls) == 1
        assert exc_info.value.details["status_code"] == 500

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self) -> None:
        client = _client(lambda request: httpx.Response(204))
        try:
            assert await client._post("/z") is None
        finally:
            await client.close()


class TestUnwrapEnvelope:
    """Разбор ответов коллабораторов."""

    def test_nested(self) -> None:
        assert unwrap_envelope({"data": {"user": {"id": "u1"}}}, "user") == {"id": "u1"}

    def test_flat(self) -> None:
        assert unwrap_envelope({"id": "u1"}, "user") == {"id": "u1"}

    def test_not_a_dict(self) -> None:
        assert unwrap_envelope(None, "user") == {}
