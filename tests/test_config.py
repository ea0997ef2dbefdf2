import pytest

from identity_sync import config as config_module
from identity_sync.config import load_config

ENV_VARS = [
    "LDAP_BASE_DN", "LDAP_URL", "LDAP_ADMIN_DN", "LDAP_USER_DN", "LDAP_GROUP_NAME_MODIFY",
    "LDAP_USER_NAME_MODIFY", "DATABASE_URL", "PG_HOST", "ADMIN_USER_ID",
    "DINGTALK_ENABLE_SYNC", "DINGTALK_APP_KEY", "WECOM_ENABLE_SYNC", "FEISHU_ENABLE_SYNC",
    "FEISHU_ROOT_DEPT_ID", "SCHEDULER_TIMEZONE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Never pick up a developer's .env file
    monkeypatch.setattr(config_module, "load_dotenv", lambda: None)


def test_base_dn_is_required():
    with pytest.raises(ValueError):
        load_config()


def test_defaults_derive_from_base_dn(monkeypatch):
    monkeypatch.setenv("LDAP_BASE_DN", "dc=example,dc=com")
    cfg = load_config()

    assert cfg.ldap.admin_dn == "cn=admin,dc=example,dc=com"
    assert cfg.ldap.user_dn == "ou=people,dc=example,dc=com"
    assert cfg.ldap.group_name_modify is False
    assert cfg.ldap.user_name_modify is False
    assert cfg.admin_user_id == 1
    assert cfg.database.url.startswith("postgresql://")
    assert cfg.scheduler.timezone is None


def test_provider_flags_and_roots(monkeypatch):
    monkeypatch.setenv("LDAP_BASE_DN", "dc=example,dc=com")
    monkeypatch.setenv("DINGTALK_ENABLE_SYNC", "true")
    monkeypatch.setenv("DINGTALK_APP_KEY", "key")
    monkeypatch.setenv("WECOM_ENABLE_SYNC", "0")
    monkeypatch.setenv("LDAP_GROUP_NAME_MODIFY", "yes")
    cfg = load_config()

    assert cfg.dingtalk.enable_sync is True
    assert cfg.dingtalk.app_key == "key"
    assert cfg.dingtalk.root_source_id == "dingtalk_1"
    assert cfg.wecom.enable_sync is False
    assert cfg.feishu.root_source_id == "feishu_0"
    assert cfg.provider("feishu") is cfg.feishu
    assert cfg.ldap.group_name_modify is True


def test_database_url_wins_over_pg_parts(monkeypatch):
    monkeypatch.setenv("LDAP_BASE_DN", "dc=example,dc=com")
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/sync")
    monkeypatch.setenv("PG_HOST", "ignored")
    assert load_config().database.url == "postgresql://u:p@db/sync"
