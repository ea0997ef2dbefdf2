"""Configuration via environment variables (optionally from a .env file).

Provider sync jobs are registered only for providers whose
``<PROVIDER>_ENABLE_SYNC`` flag is true when the process starts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

PROVIDER_NAMES = ("dingtalk", "wecom", "feishu")

# Root department id each provider's org chart hangs from
_DEFAULT_ROOT_DEPT_IDS = {"dingtalk": "1", "wecom": "1", "feishu": "0"}


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    min_connections: int = 2
    max_connections: int = 10


@dataclass(frozen=True)
class LdapConfig:
    url: str
    admin_dn: str
    admin_password: str
    base_dn: str
    user_dn: str
    group_name_modify: bool = False
    user_name_modify: bool = False
    user_init_password: str = ""


@dataclass(frozen=True)
class ProviderConfig:
    flag: str
    enable_sync: bool = False
    app_key: str = ""
    app_secret: str = ""
    root_dept_id: str = "1"

    @property
    def root_source_id(self) -> str:
        return f"{self.flag}_{self.root_dept_id}"


@dataclass(frozen=True)
class SchedulerConfig:
    misfire_grace_time: int = 300
    timezone: Optional[str] = None  # None = local timezone


@dataclass(frozen=True)
class SyncConfig:
    ldap: LdapConfig
    database: DatabaseConfig
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    dingtalk: Optional[ProviderConfig] = None
    wecom: Optional[ProviderConfig] = None
    feishu: Optional[ProviderConfig] = None
    # Relational id of the bootstrap admin added to every new group
    admin_user_id: int = 1

    def provider(self, name: str) -> Optional[ProviderConfig]:
        return getattr(self, name, None)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _database_url() -> str:
    url = os.environ.get("DATABASE_URL", "")
    if url:
        return url

    # Fall back to PG_* variables
    host = os.environ.get("PG_HOST", "localhost")
    port = os.environ.get("PG_PORT", "5432")
    user = os.environ.get("PG_USER", "identity_sync")
    password = os.environ.get("PG_PASSWORD", "localdev-change-me")
    database = os.environ.get("PG_DATABASE", "identity_sync")
    return f"postgresql://{user}:{password}@{host}:{port}/{database}"


def _provider_config(name: str) -> ProviderConfig:
    prefix = name.upper()
    return ProviderConfig(
        flag=os.environ.get(f"{prefix}_FLAG", name),
        enable_sync=_env_bool(f"{prefix}_ENABLE_SYNC"),
        app_key=os.environ.get(f"{prefix}_APP_KEY", ""),
        app_secret=os.environ.get(f"{prefix}_APP_SECRET", ""),
        root_dept_id=os.environ.get(f"{prefix}_ROOT_DEPT_ID", _DEFAULT_ROOT_DEPT_IDS[name]),
    )


def load_config() -> SyncConfig:
    """Load configuration from environment variables."""
    load_dotenv()

    base_dn = os.environ.get("LDAP_BASE_DN", "")
    if not base_dn:
        raise ValueError("LDAP_BASE_DN environment variable is required")

    ldap = LdapConfig(
        url=os.environ.get("LDAP_URL", "ldap://localhost:389"),
        admin_dn=os.environ.get("LDAP_ADMIN_DN", f"cn=admin,{base_dn}"),
        admin_password=os.environ.get("LDAP_ADMIN_PASSWORD", ""),
        base_dn=base_dn,
        user_dn=os.environ.get("LDAP_USER_DN", f"ou=people,{base_dn}"),
        group_name_modify=_env_bool("LDAP_GROUP_NAME_MODIFY"),
        user_name_modify=_env_bool("LDAP_USER_NAME_MODIFY"),
        user_init_password=os.environ.get("LDAP_USER_INIT_PASSWORD", ""),
    )

    database = DatabaseConfig(
        url=_database_url(),
        min_connections=int(os.environ.get("DB_MIN_CONNECTIONS", "2")),
        max_connections=int(os.environ.get("DB_MAX_CONNECTIONS", "10")),
    )

    scheduler = SchedulerConfig(
        misfire_grace_time=int(os.environ.get("SCHEDULER_MISFIRE_GRACE_TIME", "300")),
        timezone=os.environ.get("SCHEDULER_TIMEZONE") or None,
    )

    providers = {name: _provider_config(name) for name in PROVIDER_NAMES}

    return SyncConfig(
        ldap=ldap,
        database=database,
        scheduler=scheduler,
        admin_user_id=int(os.environ.get("ADMIN_USER_ID", "1")),
        **providers,
    )
