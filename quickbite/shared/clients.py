# quickbite/shared/clients.py
"""
Клиенты коллабораторов, общие для обоих сервисов.
"""

from __future__ import annotations

from typing import Any

from quickbite.infra.http_client import BaseClient


def unwrap_envelope(body: Any, key: str) -> dict[str, Any]:
    """Ответы коллабораторов бывают вида {"data": {key: {...}}} или плоскими."""
    if not isinstance(body, dict):
        return {}
    data = body.get("data", body)
    if isinstance(data, dict) and isinstance(data.get(key), dict):
        return data[key]
    return data if isinstance(data, dict) else {}


class UsersClient(BaseClient):
    """Сервис пользователей."""

    async def get_user(self, user_id: str) -> dict[str, Any]:
        body = await self._get(f"/api/users/{user_id}")
        return unwrap_envelope(body, "user")
