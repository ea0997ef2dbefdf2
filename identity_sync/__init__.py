"""Identity synchronization engine.

Pulls departments and staff from HR/IM providers (DingTalk, WeCom, Feishu),
maps them onto canonical users and groups through stored field-mapping rules,
and writes them to both an LDAP directory and a PostgreSQL metadata store.
"""
