#!/usr/bin/env python3
"""
GWS to RT Group and User Import

This script imports groups from the UW Groups Web Service (GWS) into RT,
along with their members, looked up in the Person Web Service (PWS).
Membership differences are computed with the diffsync library.

By default nothing is changed: every action is logged as what would happen.
Pass --import to write to RT.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from config import ConfigError, SyncConfig
from directory_client import GroupsWebService, PersonWebService
from group_reconciler import GroupReconciler
from models import ExternalGroup, ExternalMemberRef
from rt_store import JsonFileRTStore, RTStore
from user_cache import UserCache
from user_reconciler import ImportCounts, UserReconciler


logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    users: ImportCounts = field(default_factory=ImportCounts)
    groups_processed: int = 0
    groups_skipped: int = 0
    groups_failed: int = 0
    groups_created: int = 0
    members_added: int = 0
    members_removed: int = 0
    members_failed: int = 0

    def log(self, dry_run: bool):
        prefix = "[DRY RUN] " if dry_run else ""
        logger.info(
            f"{prefix}Users: {self.users.processed} processed, {self.users.resolved} resolved, "
            f"{self.users.skipped} skipped, {self.users.failed} failed"
        )
        logger.info(
            f"{prefix}Groups: {self.groups_processed} processed, {self.groups_created} created, "
            f"{self.groups_skipped} skipped, {self.groups_failed} failed"
        )
        logger.info(
            f"{prefix}Members: {self.members_added} added, {self.members_removed} removed, "
            f"{self.members_failed} failed"
        )


def run_group_search(config: SyncConfig, gws) -> List[Dict[str, Any]]:
    """List the GWS groups to import, filtered by stem and SYNC_GROUPS."""
    search = config.group_search_path
    if not search:
        logger.warning("Not running a group import, configuration not set")
        return []

    entries = []
    for entry in gws.search(search):
        group_id = entry.get("id", "")
        if not group_id:
            logger.warning(f"GWS group without an id, skipping: {entry!r}")
            continue
        if config.group_stem and not group_id.startswith(config.group_stem):
            logger.debug(f"Skipping group '{group_id}' - outside stem {config.group_stem}")
            continue
        if config.sync_groups is not None and group_id not in config.sync_groups:
            logger.debug(f"Skipping group '{group_id}' - not in SYNC_GROUPS config")
            continue
        entries.append(entry)
    return entries


def load_external_group(config: SyncConfig, gws, entry: Dict[str, Any]) -> ExternalGroup:
    members = [
        ExternalMemberRef.from_gws(member, config.member_type)
        for member in gws.effective_members(entry["id"])
    ]
    return ExternalGroup.from_gws(entry, members)


def import_groups(config: SyncConfig, gws, reconciler: GroupReconciler, summary: RunSummary):
    entries = run_group_search(config, gws)
    if not entries:
        logger.debug("No results found, no group import")
        return

    total = len(entries)
    for entry in entries:
        summary.groups_processed += 1
        try:
            group = load_external_group(config, gws, entry)
            result = reconciler.reconcile_group(group)
        except Exception as e:
            summary.groups_failed += 1
            logger.error(f"Group {entry.get('id')} failed: {e}", exc_info=True)
            continue

        if result.skipped:
            summary.groups_skipped += 1
        if result.created:
            summary.groups_created += 1
        summary.members_added += result.added
        summary.members_removed += result.removed
        summary.members_failed += result.failed
        logger.debug(f"Imported {summary.groups_processed}/{total} groups")


def import_users(config: SyncConfig, pws, reconciler: UserReconciler, summary: RunSummary):
    if not config.user_search:
        return
    if pws is None:
        logger.warning("Not running a user import, PWS is not configured")
        return
    logger.info(f"Importing users from PWS search {config.user_search}")
    summary.users = reconciler.import_users(pws.search(config.user_search))


def run_import(config: SyncConfig, store: RTStore, gws, pws=None,
               user_cache: Optional[UserCache] = None) -> RunSummary:
    """
    One full import pass: users from the flat PWS search, then every GWS group.
    """
    if config.dry_run:
        logger.info("Running in DRY RUN mode - no changes will be made")

    user_cache = user_cache if user_cache is not None else UserCache()
    user_reconciler = UserReconciler(config, store, user_cache, pws=pws)
    group_reconciler = GroupReconciler(config, store, user_reconciler)

    summary = RunSummary()
    import_users(config, pws, user_reconciler, summary)
    import_groups(config, gws, group_reconciler, summary)
    summary.log(config.dry_run)
    return summary


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description="Import groups and users from GWS/PWS into RT")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--import", dest="do_import", default=False, action="store_true",
                      help="write changes to RT (default is a dry run)")
    mode.add_argument("--dry-run", dest="dry_run", default=False, action="store_true",
                      help="only log what would change, even if SYNC_DRY_RUN is false")
    parser.add_argument("--verbose", default=False, action="store_true",
                        help="log per-user and per-group debug trails")
    parser.add_argument("--store", default=None,
                        help="path of the JSON RT store (overrides RT_STORE_FILE)")
    parser.add_argument("--env-file", default=None,
                        help="read settings from this .env file")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_arguments(argv)
    load_dotenv(args.env_file)

    try:
        config = SyncConfig.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Invalid configuration: {e}")
        return 1

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.do_import:
        config.dry_run = False
    elif args.dry_run:
        config.dry_run = True
    if args.store:
        config.store_file = args.store

    missing = config.missing_settings()
    if missing:
        for var, description in missing.items():
            logger.error(f"Missing {var}: {description}")
        return 1

    logger.info("Starting GWS to RT import")

    store = JsonFileRTStore(config.store_file)
    gws = GroupsWebService.from_config(config)
    pws = PersonWebService.from_config(config) if config.pws_host else None

    try:
        summary = run_import(config, store, gws, pws)
        if not config.dry_run:
            store.save()
        if summary.groups_failed or summary.users.failed:
            logger.warning(f"Import completed with {summary.groups_failed} failed groups "
                           f"and {summary.users.failed} failed users")
        else:
            logger.info("Import completed successfully")
    finally:
        gws.close()
        if pws:
            pws.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
