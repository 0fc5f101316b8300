"""
Import of GWS groups into RT.

For each GWS group: find the matching RT group, create or update it, then
bring its direct membership in line with the GWS member list. Membership
changes are computed with diffsync between a DirectoryAdapter (what GWS
says) and an RTAdapter (what RT has).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from config import SyncConfig
from directory_adapter import DirectoryAdapter
from field_mapper import build_object
from group_resolver import GroupResolution, GroupResolver
from models import ExternalGroup
from rt_adapter import RTAdapter
from rt_store import GROUP_FIELD_ACCESSORS, LocalGroup, RTStore, RTStoreError
from user_reconciler import UserReconciler, show_field_info


logger = logging.getLogger(__name__)


@dataclass
class GroupResult:
    """What happened to one GWS group during a run."""

    name: str
    skipped: bool = False
    created: bool = False
    operations: List[Tuple[str, str, str]] = field(default_factory=list)
    unchanged: int = 0
    added: int = 0
    removed: int = 0
    failed: int = 0
    skipped_members: int = 0


class GroupReconciler:

    def __init__(self, config: SyncConfig, store: RTStore, user_reconciler: UserReconciler,
                 resolver: Optional[GroupResolver] = None):
        self.config = config
        self.store = store
        self.user_reconciler = user_reconciler
        self.resolver = resolver or GroupResolver(config, store)

    @property
    def user_cache(self):
        return self.user_reconciler.user_cache

    def reconcile_group(self, group: ExternalGroup) -> GroupResult:
        logger.debug(f"Processing group {group.id}")
        result = GroupResult(name=group.id)

        resolution = self.resolver.resolve(group.id, group.external_group_id)
        if resolution is None:
            logger.error(f"Couldn't resolve RT group for {group.id}, skipping")
            result.skipped = True
            return result

        outcome = self.create_or_update_group(group, resolution)
        if outcome is None:
            result.skipped = True
            return result
        rt_group, result.created = outcome

        self.import_members(group)
        self.sync_members(group, rt_group, result)
        return result

    def create_or_update_group(self, group: ExternalGroup,
                               resolution: GroupResolution) -> Optional[Tuple[Optional[LocalGroup], bool]]:
        """
        Apply the mapped group fields to RT.

        Returns (rt_group, created), or None when the group must be skipped.
        In a dry run a group that would be created comes back as (None, False).
        """
        fields = build_object(group.as_record(), self.config.group_mapping, reconciler=self)
        name = fields.get("Name")
        if not name:
            logger.warning(f"No Name for group {group.id}, skipping")
            return None

        rt_group = resolution.group
        if rt_group is not None:
            if self.config.dry_run:
                logger.info(f"[DRY RUN] Found existing group {name} to update")
                show_field_info(fields, GROUP_FIELD_ACCESSORS, rt_group)
                return rt_group, False

            logger.debug(f"Group {name} already exists as {rt_group.id}, updating their data")
            try:
                results = self.store.update_group(rt_group, fields)
            except RTStoreError as e:
                logger.error(f"Couldn't update group {name}: {e}")
                return None
            logger.debug('\n'.join(results) or 'no change')
            return rt_group, False

        if self.config.update_only:
            logger.debug(f"Group {name} doesn't exist in RT, skipping")
            return None

        if self.config.dry_run:
            logger.info(f"[DRY RUN] Found new group {name} to create in RT")
            show_field_info(fields, GROUP_FIELD_ACCESSORS)
            return None, False

        try:
            rt_group = self.store.create_group(fields)
        except RTStoreError as e:
            logger.error(f"Couldn't create group for {name}: {e}")
            return None
        logger.info(f"Created group for {name} with id {rt_group.id}")

        if group.external_group_id:
            try:
                self.store.set_attribute(rt_group, self.config.anchor_attribute(group.external_group_id), 1)
            except RTStoreError as e:
                logger.error(f"Couldn't set attribute: {e}")
                return None

        return rt_group, True

    def import_members(self, group: ExternalGroup):
        """Bring every person in the group into RT before linking memberships."""
        if not self.config.import_group_members:
            return

        logger.debug(f"Importing members of group {group.id}")
        entries = []
        seen = set()
        for member in group.person_members:
            key = member.subject_id.lower()
            if key in seen or member.subject_id in self.user_cache:
                continue
            seen.add(key)
            entries.append(self.user_reconciler.fetch_person(member.subject_id))

        counts = self.user_reconciler.import_users(entries)
        if counts.failed:
            logger.debug(f"Importing {counts.failed} members of {group.id} failed")

    def sync_members(self, group: ExternalGroup, rt_group: Optional[LocalGroup], result: GroupResult):
        """Add GWS members missing from RT and remove RT members GWS no longer lists."""
        logger.debug(f"Processing group membership for {group.id}")
        if rt_group is None:
            logger.debug(f"No group {group.id} in RT, would create with members:")

        directory = DirectoryAdapter(
            user_cache=self.user_cache,
            resolve_subject=self.user_reconciler.cache_subject,
        )
        directory.load(group.id, group.person_members)
        result.skipped_members = directory.skipped_members

        rt = RTAdapter(store=self.store, dry_run=self.config.dry_run)
        rt.load(rt_group, group.id, new=result.created)

        rt_members = {m.user_name for m in rt.get_all("membership")}
        for membership in directory.get_all("membership"):
            if membership.user_name in rt_members:
                result.unchanged += 1
                logger.debug(f"\t{membership.user_name}\tin RT and GWS")

        rt.sync_from(directory)
        result.operations = list(rt.pending_operations)
        for operation, user_name, _ in result.operations:
            if operation == 'create':
                logger.debug(f"\t{user_name}\tin GWS, adding to RT")
            else:
                logger.debug(f"\t{user_name}\tin RT, not in GWS, removing")

        counts = rt.execute_pending_operations()
        result.added = counts["added"]
        result.removed = counts["removed"]
        result.failed = counts["failed"]
