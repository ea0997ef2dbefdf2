"""CLI entry point: sync, scheduler, tree."""

from __future__ import annotations

import argparse
import importlib
import logging
import os
from typing import Optional

from identity_sync.base_provider import BaseProvider
from identity_sync.config import PROVIDER_NAMES, SyncConfig, load_config
from identity_sync.logging_config import configure_logging
from identity_sync.models import Group
from identity_sync.services import Services, build_services
from identity_sync.tree import build_tree

logger = logging.getLogger("identity_sync.cli")

PROVIDER_REGISTRY: dict[str, tuple[str, str]] = {
    # name -> (module_path, class_name)
    "dingtalk": ("identity_sync.providers.dingtalk", "DingTalkProvider"),
    "wecom": ("identity_sync.providers.wecom", "WeComProvider"),
    "feishu": ("identity_sync.providers.feishu", "FeiShuProvider"),
}

KIND_CHOICES = ["all", "departments", "users"]


def get_provider(name: str, config: SyncConfig, services: Services) -> Optional[BaseProvider]:
    """Instantiate a provider by name. Returns None if unknown or unconfigured."""
    entry = PROVIDER_REGISTRY.get(name)
    if not entry or config.provider(name) is None:
        logger.warning("%s not configured, skipping", name)
        return None

    module_path, class_name = entry
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls(config, services)


def cmd_sync(args: argparse.Namespace) -> None:
    """Run a one-shot sync for the selected provider(s)."""
    config = load_config()
    services = build_services(config)

    try:
        if args.provider == "all":
            names = [n for n in PROVIDER_NAMES if config.provider(n).enable_sync]
        else:
            names = [args.provider]

        for name in names:
            provider = get_provider(name, config, services)
            if provider is None:
                continue
            # Departments first: users resolve their groups from them
            if args.kind in ("all", "departments"):
                logger.info("Department sync results for %s: %s", name, provider.sync_departments())
            if args.kind in ("all", "users"):
                logger.info("User sync results for %s: %s", name, provider.sync_users())
    finally:
        services.close()


def cmd_scheduler(args: argparse.Namespace) -> None:
    """Start the APScheduler-based scheduling loop."""
    from identity_sync.scheduler import start_scheduler

    config = load_config()
    services = build_services(config)
    try:
        start_scheduler(config, services)
    finally:
        services.close()


def format_tree(node: Group) -> list[str]:
    lines = []
    stack = [(child, 0) for child in reversed(node.children)]
    while stack:
        child, depth = stack.pop()
        lines.append(f"{'  ' * depth}{child.group_name}  ({child.group_dn})")
        stack.extend((grandchild, depth + 1) for grandchild in reversed(child.children))
    return lines


def cmd_tree(args: argparse.Namespace) -> None:
    """Print one provider's department hierarchy as stored relationally."""
    config = load_config()
    services = build_services(config)

    try:
        settings = config.provider(args.provider)
        groups = services.db.list_groups(source=settings.flag)
        tree = build_tree(settings.root_source_id, groups)
        lines = format_tree(tree)
        if not lines:
            print(f"No {args.provider} groups found.")
            return
        print("\n".join(lines))
    finally:
        services.close()


def main() -> None:
    """Main CLI entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    parser = argparse.ArgumentParser(
        prog="identity-sync",
        description="Sync HR/IM provider identities into LDAP and PostgreSQL",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Run one-shot sync")
    sync_parser.add_argument(
        "--provider", "-p",
        choices=["all", *PROVIDER_NAMES],
        default="all",
        help="Provider to sync (default: all enabled)",
    )
    sync_parser.add_argument(
        "--kind", "-k",
        choices=KIND_CHOICES,
        default="all",
        help="What to sync (default: departments then users)",
    )
    sync_parser.set_defaults(func=cmd_sync)

    # scheduler command
    sched_parser = subparsers.add_parser("scheduler", help="Start scheduled sync loop")
    sched_parser.set_defaults(func=cmd_scheduler)

    # tree command
    tree_parser = subparsers.add_parser("tree", help="Show a provider's group hierarchy")
    tree_parser.add_argument(
        "--provider", "-p",
        choices=list(PROVIDER_NAMES),
        required=True,
    )
    tree_parser.set_defaults(func=cmd_tree)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
