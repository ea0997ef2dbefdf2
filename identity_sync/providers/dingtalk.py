"""DingTalk provider: departments and staff via the open platform API."""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from identity_sync.base_provider import BaseProvider
from identity_sync.config import SyncConfig
from identity_sync.errors import ProviderError
from identity_sync.services import Services

logger = logging.getLogger("identity_sync.dingtalk")

API_BASE = "https://oapi.dingtalk.com"
PAGE_SIZE = 100


class DingTalkProvider(BaseProvider):
    PROVIDER_NAME = "dingtalk"

    def __init__(self, config: SyncConfig, services: Services) -> None:
        super().__init__(config, services)
        self._session = requests.Session()
        self._token: Optional[str] = None

    def _access_token(self) -> str:
        if self._token is None:
            resp = self._session.get(
                f"{API_BASE}/gettoken",
                params={"appkey": self.settings.app_key, "appsecret": self.settings.app_secret},
                timeout=30,
            )
            resp.raise_for_status()
            self._token = self._check(resp.json(), "gettoken")["access_token"]
        return self._token

    @staticmethod
    def _check(payload: dict, api: str) -> dict:
        if payload.get("errcode", 0) != 0:
            raise ProviderError(f"DingTalk {api} failed: {payload.get('errcode')} {payload.get('errmsg')}")
        return payload

    def _post(self, path: str, body: dict) -> Any:
        resp = self._session.post(
            f"{API_BASE}{path}",
            params={"access_token": self._access_token()},
            json=body,
            timeout=30,
        )
        resp.raise_for_status()
        return self._check(resp.json(), path).get("result")

    def fetch_departments(self) -> list[dict[str, Any]]:
        depts: list[dict[str, Any]] = []
        pending = [int(self.settings.root_dept_id)]
        while pending:
            dept_id = pending.pop(0)
            for dept in self._post("/topapi/v2/department/listsub", {"dept_id": dept_id}) or []:
                depts.append(dept)
                pending.append(dept["dept_id"])
        logger.info("Fetched %d DingTalk departments", len(depts))
        return depts

    def fetch_users(self) -> list[dict[str, Any]]:
        dept_ids = [int(self.settings.root_dept_id)]
        dept_ids.extend(d["dept_id"] for d in self.fetch_departments())

        # Staff in several departments are listed once per department
        users: dict[str, dict[str, Any]] = {}
        for dept_id in dept_ids:
            cursor = 0
            while True:
                result = self._post(
                    "/topapi/v2/user/list",
                    {"dept_id": dept_id, "cursor": cursor, "size": PAGE_SIZE},
                ) or {}
                for user in result.get("list", []):
                    user["department_ids"] = user.get("dept_id_list", [])
                    users[user["userid"]] = user
                if not result.get("has_more"):
                    break
                cursor = result["next_cursor"]
        logger.info("Fetched %d DingTalk users", len(users))
        return list(users.values())
