"""WeCom (WeChat Work) provider: departments and staff via the corp API."""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from identity_sync.base_provider import BaseProvider
from identity_sync.config import SyncConfig
from identity_sync.errors import ProviderError
from identity_sync.services import Services

logger = logging.getLogger("identity_sync.wecom")

API_BASE = "https://qyapi.weixin.qq.com/cgi-bin"


class WeComProvider(BaseProvider):
    PROVIDER_NAME = "wecom"

    def __init__(self, config: SyncConfig, services: Services) -> None:
        super().__init__(config, services)
        self._session = requests.Session()
        self._token: Optional[str] = None

    def _get(self, path: str, params: dict) -> dict:
        resp = self._session.get(f"{API_BASE}{path}", params=params, timeout=30)
        resp.raise_for_status()
        payload = resp.json()
        if payload.get("errcode", 0) != 0:
            raise ProviderError(f"WeCom {path} failed: {payload.get('errcode')} {payload.get('errmsg')}")
        return payload

    def _access_token(self) -> str:
        if self._token is None:
            payload = self._get(
                "/gettoken",
                {"corpid": self.settings.app_key, "corpsecret": self.settings.app_secret},
            )
            self._token = payload["access_token"]
        return self._token

    def fetch_departments(self) -> list[dict[str, Any]]:
        payload = self._get(
            "/department/list",
            {"access_token": self._access_token(), "id": self.settings.root_dept_id},
        )
        # The listing includes the root department itself
        root = str(self.settings.root_dept_id)
        depts = [d for d in payload.get("department", []) if str(d["id"]) != root]
        logger.info("Fetched %d WeCom departments", len(depts))
        return depts

    def fetch_users(self) -> list[dict[str, Any]]:
        payload = self._get(
            "/user/list",
            {
                "access_token": self._access_token(),
                "department_id": self.settings.root_dept_id,
                "fetch_child": 1,
            },
        )
        users = payload.get("userlist", [])
        for user in users:
            user["department_ids"] = user.get("department", [])
        logger.info("Fetched %d WeCom users", len(users))
        return users
