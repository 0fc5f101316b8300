"""
RT adapter for diffsync
"""

import logging
from typing import Dict, Optional

from diffsync import Adapter

from models import GroupMembership
from rt_store import LocalGroup, RTStore, RTStoreError


logger = logging.getLogger(__name__)


class RTAdapter(Adapter):
    """
    DiffSync adapter for RT.
    Reads the direct members of one RT group and writes membership changes back.
    """

    membership = GroupMembership
    top_level = ["membership"]

    def __init__(self, *args, store: RTStore, dry_run: bool = True, **kwargs):
        super().__init__(*args, **kwargs)
        self.rt_store = store
        self.dry_run: bool = dry_run
        self.group: Optional[LocalGroup] = None
        self.pending_operations: list = []

    def load(self, group: Optional[LocalGroup], group_name: str, new: bool = False):
        """Load the current direct members of the RT group, if it exists."""
        self.group = group
        if group is None or new:
            logger.debug(f"Group {group_name} is new to RT, starting with no members")
            return

        membership_count = 0
        for user_name in self.rt_store.member_names(group):
            membership = GroupMembership(
                user_name=user_name,
                group_name=group_name
            )
            self.add(membership)
            membership_count += 1
            logger.debug(f"Loaded membership: {user_name} -> {group_name}")

        logger.debug(f"Loaded {membership_count} memberships from RT for {group_name}")

    def add_membership(self, user_name: str, group_name: str) -> bool:
        """Add a user to the RT group."""
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add {user_name} to {group_name}")
            return True

        if self.group is None:
            logger.error(f"Can't add {user_name}: group {group_name} is not in RT")
            return False

        user = self.rt_store.load_user(user_name)
        if user is None:
            logger.warning(f"Unable to load {user_name}: user not found")
            return False

        try:
            self.rt_store.add_member(self.group, user)
        except RTStoreError as e:
            logger.warning(f"Failed to add {user_name} to {group_name}: {e}")
            return False
        logger.info(f"Added {user_name} to {group_name}")
        return True

    def remove_membership(self, user_name: str, group_name: str) -> bool:
        """Remove a user from the RT group."""
        if self.dry_run:
            logger.info(f"[DRY RUN] Would remove {user_name} from {group_name}")
            return True

        user = self.rt_store.load_user(user_name)
        if user is None or self.group is None:
            logger.warning(f"Failed to remove {user_name} from {group_name}: user not found")
            return False

        try:
            self.rt_store.delete_member(self.group, user)
        except RTStoreError as e:
            logger.warning(f"Failed to remove {user_name} from {group_name}: {e}")
            return False
        logger.info(f"Removed {user_name} from {group_name}")
        return True

    def execute_pending_operations(self) -> Dict[str, int]:
        """Execute all pending operations that were queued during sync."""
        counts = {"added": 0, "removed": 0, "failed": 0}
        if not self.pending_operations:
            logger.debug("No pending operations to execute")
            return counts

        logger.debug(f"Executing {len(self.pending_operations)} pending operations")

        for operation, user_name, group_name in self.pending_operations:
            if operation == 'create':
                ok = self.add_membership(user_name, group_name)
                counts["added" if ok else "failed"] += 1
            elif operation == 'delete':
                ok = self.remove_membership(user_name, group_name)
                counts["removed" if ok else "failed"] += 1

        self.pending_operations = []
        return counts
