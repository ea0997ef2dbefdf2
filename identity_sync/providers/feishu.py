"""Feishu (Lark) provider: departments and staff via the contact v3 API."""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from identity_sync.base_provider import BaseProvider
from identity_sync.config import SyncConfig
from identity_sync.errors import ProviderError
from identity_sync.services import Services

logger = logging.getLogger("identity_sync.feishu")

API_BASE = "https://open.feishu.cn/open-apis"
PAGE_SIZE = 50


class FeiShuProvider(BaseProvider):
    PROVIDER_NAME = "feishu"

    def __init__(self, config: SyncConfig, services: Services) -> None:
        super().__init__(config, services)
        self._session = requests.Session()
        self._token: Optional[str] = None

    @staticmethod
    def _check(payload: dict, api: str) -> dict:
        if payload.get("code", 0) != 0:
            raise ProviderError(f"Feishu {api} failed: {payload.get('code')} {payload.get('msg')}")
        return payload

    def _access_token(self) -> str:
        if self._token is None:
            resp = self._session.post(
                f"{API_BASE}/auth/v3/tenant_access_token/internal",
                json={"app_id": self.settings.app_key, "app_secret": self.settings.app_secret},
                timeout=30,
            )
            resp.raise_for_status()
            self._token = self._check(resp.json(), "tenant_access_token")["tenant_access_token"]
        return self._token

    def _get_paginated(self, path: str, params: dict) -> list[dict]:
        """Fetch every page of a contact v3 listing."""
        items: list[dict] = []
        params = dict(params, page_size=PAGE_SIZE)
        while True:
            resp = self._session.get(
                f"{API_BASE}{path}",
                params=dict(params),
                headers={"Authorization": f"Bearer {self._access_token()}"},
                timeout=30,
            )
            resp.raise_for_status()
            data = self._check(resp.json(), path).get("data") or {}
            items.extend(data.get("items") or [])
            if not data.get("has_more"):
                return items
            params["page_token"] = data["page_token"]

    def fetch_departments(self) -> list[dict[str, Any]]:
        depts = self._get_paginated(
            f"/contact/v3/departments/{self.settings.root_dept_id}/children",
            {"department_id_type": "open_department_id", "fetch_child": "true"},
        )
        logger.info("Fetched %d Feishu departments", len(depts))
        return depts

    def fetch_users(self) -> list[dict[str, Any]]:
        dept_ids = [self.settings.root_dept_id]
        dept_ids.extend(d["open_department_id"] for d in self.fetch_departments())

        users: dict[str, dict[str, Any]] = {}
        for dept_id in dept_ids:
            for user in self._get_paginated(
                "/contact/v3/users/find_by_department",
                {"department_id": dept_id, "department_id_type": "open_department_id"},
            ):
                user.setdefault("department_ids", [])
                users[user["open_id"]] = user
        logger.info("Fetched %d Feishu users", len(users))
        return list(users.values())
